import io

import pytest

from vx import (
    BUILTINS,
    Builtin,
    ConstantAssignmentError,
    ControlFlowError,
    Interpreter,
    MatchError,
    NotCallableError,
    Number,
    Pending,
    ScriptError,
    ScriptTypeError,
    String,
    UndefinedVariableError,
    parse_source,
)


def run(source, capsys, **kwargs):
    Interpreter(**kwargs).eval(source)
    return capsys.readouterr().out


def test_let_and_print(capsys):
    assert run("let x = 1\nlet y = 2\nprint x + y", capsys) == "3\n"


def test_function_call(capsys):
    source = "fn add(a, b) { return a + b }\nprint add(2, 3)"
    assert run(source, capsys) == "5\n"


def test_return_value_on_the_next_line(capsys):
    source = "fn f(a, b) {\n  return\n    a + b\n}\nprint f(2, 3)"
    assert run(source, capsys) == "5\n"


def test_deep_recursion(capsys):
    source = """
    fn depth(n) {
        if n == 0 { return 0 }
        return 1 + depth(n - 1)
    }
    print depth(300)
    """
    assert run(source, capsys) == "300\n"


def test_runaway_recursion_is_a_catchable_script_error(capsys):
    source = "fn forever(n) { return forever(n + 1) }"
    caught = source + "\ntry { forever(0) } catch (e) { print e }\nprint \"after\""
    assert run(caught, capsys) == "maximum call depth exceeded\nafter\n"
    with pytest.raises(ScriptError) as e:
        Interpreter().eval(source + "\nforever(0)")
    assert e.value.message == "maximum call depth exceeded"


def test_loop_over_array(capsys):
    source = "let arr = [1,2,3]\nloop v in arr { print v }"
    assert run(source, capsys) == "1\n2\n3\n"


def test_throw_and_catch(capsys):
    source = """
    try {
        throw "boom"
        print "unreachable"
    } catch(e) {
        print e
    }
    """
    assert run(source, capsys) == "boom\n"


def test_inherited_method(capsys):
    source = 'class A { speak(){ return "A" } } class B extends A {} print new B().speak()'
    assert run(source, capsys) == "A\n"


def test_nullish_keeps_zero(capsys):
    assert run("let a = 0 ?? 5\nprint a", capsys) == "0\n"


def test_run_returns_last_statement_value():
    interpreter = Interpreter()
    assert interpreter.eval("1 + 2") == Number(3)
    assert interpreter.eval("let x = 40") == Number(40)
    assert interpreter.eval("1\nlet y = 2") == Number(2)
    assert interpreter.eval("let [a, b] = [1, 2]").elements == [Number(1), Number(2)]
    assert interpreter.eval("y += 5") == Number(7)
    assert interpreter.eval("y &&= 0") == Number(0)
    assert interpreter.eval("y ||= 3") == Number(3)
    assert interpreter.eval("y ??= 9") == Number(3)
    assert interpreter.eval("fn f() {}") is None
    assert interpreter.eval("x + 2") == Number(42)
    assert interpreter.run(parse_source('"a" + "b"')) == String("ab")


def test_closures_share_environment(capsys):
    source = """
    fn make() {
        let n = 0
        let inc = fn() { n += 1 }
        let get = fn() { return n }
        return [inc, get]
    }
    let [inc, get] = make()
    inc()
    inc()
    print get()
    """
    assert run(source, capsys) == "2\n"


def test_closure_captures_definition_scope_not_caller(capsys):
    source = """
    let x = "global"
    fn show() { return x }
    fn caller() {
        let x = "local"
        return show()
    }
    print caller()
    """
    assert run(source, capsys) == "global\n"


def test_block_shadowing(capsys):
    source = """
    let x = 1
    {
        let x = 2
        print x
    }
    print x
    """
    assert run(source, capsys) == "2\n1\n"


def test_const_reassignment_fails_at_any_depth():
    with pytest.raises(ConstantAssignmentError):
        Interpreter().eval("const c = 1\nfn f() { if true { c = 2 } }\nf()")


def test_const_reassignment_is_catchable(capsys):
    source = "const c = 1\ntry { c = 2 } catch (e) { print e }"
    assert run(source, capsys) == "attempted to reassign constant `c`\n"


def test_undefined_variable_reports_line():
    with pytest.raises(UndefinedVariableError) as e:
        Interpreter().eval("let a = 1\nprint b")
    assert e.value.line == 2
    assert e.value.message == "identifier `b` is not defined"


def test_user_throw_surfaces_as_script_error():
    with pytest.raises(ScriptError) as e:
        Interpreter().eval("let a = 1\nthrow 'bad'")
    assert type(e.value) is ScriptError
    assert e.value.message == "bad"
    assert e.value.line == 2


def test_thrown_values_are_kept(capsys):
    source = "try { throw {code: 7} } catch (e) { print e.code }"
    assert run(source, capsys) == "7\n"


def test_subclass_this_binding(capsys):
    source = """
    class Animal {
        name = "animal"
        describe() { return "I am " + this.name }
    }
    class Dog extends Animal {
        constructor(name) { this.name = name }
    }
    print new Dog("rex").describe()
    print new Animal().describe()
    """
    assert run(source, capsys) == "I am rex\nI am animal\n"


def test_super_constructor_and_method(capsys):
    source = """
    class A {
        constructor(x) { this.x = x }
        show() { return "A" + this.x }
    }
    class B extends A {
        constructor(x) { super(x * 2) }
        show() { return "B" + super.show() }
    }
    print new B(1).show()
    """
    assert run(source, capsys) == "BA2\n"


def test_getters_setters_and_statics(capsys):
    source = """
    class Temp {
        static created = 0
        c = 0
        get f() { return this.c * 9 / 5 + 32 }
        set f(v) { this.c = (v - 32) * 5 / 9 }
        static zero() {
            Temp.created += 1
            return new Temp()
        }
    }
    let t = Temp.zero()
    t.f = 212
    print t.c
    print t.f
    print Temp.created
    """
    assert run(source, capsys) == "100\n212\n1\n"


def test_method_lookup_stops_at_direct_parent(capsys):
    source = """
    class A { hello() { return "A" } }
    class B extends A {}
    class C extends B {}
    print new B().hello()
    print new C().hello == null
    print new C() instanceof A
    """
    assert run(source, capsys) == "A\ntrue\ntrue\n"


def test_extending_non_class_fails():
    with pytest.raises(ScriptTypeError):
        Interpreter().eval("let A = 1\nclass B extends A {}")


def test_iteration_protocols(capsys):
    source = """
    for k in {a: 1, b: 2} { print k }
    for c of "hi" { print c }
    for c in "ok" { print c }
    loop v in [7, 8] { print v }
    loop i from 0 to 3 { print i }
    loop i from 3 to 0 step -1 { print i }
    """
    expected = "a\nb\nh\ni\no\nk\n7\n8\n0\n1\n2\n3\n2\n1\n"
    assert run(source, capsys) == expected


def test_for_of_rejects_objects():
    with pytest.raises(ScriptTypeError):
        Interpreter().eval("for x of {a: 1} { }")


def test_zero_step_fails():
    with pytest.raises(ScriptTypeError):
        Interpreter().eval("loop i from 0 to 3 step 0 { }")


def test_loop_iterations_have_fresh_environments(capsys):
    source = """
    let fns = []
    loop i from 0 to 3 { push(fns, fn() { return i }) }
    print [fns[0](), fns[2]()]
    """
    assert run(source, capsys) == "[0, 2]\n"


def test_break_and_continue(capsys):
    source = """
    let out = []
    loop i from 0 to 10 {
        if i == 5 { break }
        if i % 2 == 0 { continue }
        push(out, i)
    }
    let n = 0
    while true {
        n++
        if n >= 3 { break }
    }
    do { n += 10 } while false
    print out
    print n
    """
    assert run(source, capsys) == "[1, 3]\n13\n"


def test_break_outside_loop_is_control_flow_error():
    with pytest.raises(ControlFlowError):
        Interpreter().eval("break")
    with pytest.raises(ControlFlowError):
        Interpreter().eval("fn f() { continue }\nf()")


def test_control_flow_error_is_not_catchable():
    source = """
    fn f() { break }
    try { f() } catch (e) { print "caught" }
    """
    with pytest.raises(ControlFlowError):
        Interpreter().eval(source)


def test_finally_always_runs(capsys):
    source = """
    fn f() {
        try { return "try" } finally { print "finally" }
    }
    fn g() {
        try { throw "x" } finally { return "override" }
    }
    print f()
    print g()
    """
    assert run(source, capsys) == "finally\ntry\noverride\n"


def test_switch_falls_through(capsys):
    source = """
    fn name(n) {
        let r = ""
        switch n {
            case 1:
                r += "one"
            case 2:
                r += "two"
                break
            default:
                r += "other"
        }
        return r
    }
    print name(1)
    print name(2)
    print name(9)
    """
    assert run(source, capsys) == "onetwo\ntwo\nother\n"


def test_match_expression(capsys):
    source = """
    fn describe(v) {
        return match v {
            0 => "zero",
            1..10 => "small",
            [first, ...rest] => "array starting " + first,
            {kind: "circle", r} => "circle " + r,
            s is string => "string " + s,
            n if n < 0 => "negative",
            _ => "other"
        }
    }
    print describe(0)
    print describe(5)
    print describe([7, 8])
    print describe({kind: "circle", r: 2})
    print describe("hi")
    print describe(-3)
    print describe(50)
    """
    expected = [
        "zero",
        "small",
        "array starting 7",
        "circle 2",
        "string hi",
        "negative",
        "other",
    ]
    assert run(source, capsys) == "\n".join(expected) + "\n"


def test_match_block_arm_and_class_pattern(capsys):
    source = """
    class Point { x = 1 }
    let r = match 3 {
        x if x > 2 => {
            let y = x * 2
            y + 1
        },
        _ => 0
    }
    print r
    print match new Point() { p is Point => p.x, _ => 0 }
    """
    assert run(source, capsys) == "7\n1\n"


def test_match_without_arm_fails():
    with pytest.raises(MatchError):
        Interpreter().eval('match 5 { 1 => "a" }')


def test_destructuring(capsys):
    source = """
    let [a, , b = 5, [c, d], ...rest] = [1, 2, null, [3, 4], 6, 7]
    print [a, b, c, d, rest]
    let {name, age: years = 30, address: {city}, ...others} = {name: "Ann", address: {city: "Oslo"}, x: 1}
    print [name, years, city, others]
    """
    assert run(source, capsys) == (
        '[1, 5, 3, 4, [6, 7]]\n["Ann", 30, "Oslo", {x: 1}]\n'
    )


def test_destructuring_non_object_fails():
    with pytest.raises(ScriptTypeError):
        Interpreter().eval("let {a} = 5")


def test_async_and_await(capsys):
    source = """
    async fn fetch(x) { return x * 2 }
    async fn fails() { throw "bad" }
    let p = fetch(21)
    print typeof p
    print await p
    print await 7
    print await resolve(5)
    await sleep(0)
    try { await fails() } catch (e) { print e }
    """
    assert run(source, capsys) == "pending\n42\n7\n5\nbad\n"


def test_call_protocol(capsys):
    source = """
    fn sum(...xs) {
        let t = 0
        for x of xs { t += x }
        return t
    }
    fn twice(a, b = a * 2) { return b }
    fn second(a, b) { return b }
    print sum(...[1, 2], 3)
    print twice(3)
    print second(1)
    print second(1, 2, 3)
    """
    assert run(source, capsys) == "6\n6\nnull\n2\n"


def test_arrow_functions_capture_this(capsys):
    source = """
    let counter = {
        count: 0,
        bump() {
            let add = () => { this.count += 1 }
            add()
            add()
            return this.count
        }
    }
    print counter.bump()
    """
    assert run(source, capsys) == "2\n"


def test_calling_non_callables_fails():
    with pytest.raises(NotCallableError):
        Interpreter().eval("let x = 5\nx()")
    with pytest.raises(NotCallableError):
        Interpreter().eval("class K {}\nK()")


def test_equality_and_arithmetic(capsys):
    source = """
    let a = [1]
    print [1] == [1]
    print a == a
    print 1 == "1"
    print 1 / 0
    print 0 / 0
    print 5 % 0
    print 2 ** 3 ** 2
    print "a" + 1
    print -7 >> 1
    print 5 & 3 | 8
    print not 0 and "yes"
    print "" or "fallback"
    """
    expected = "false\ntrue\nfalse\nInfinity\nNaN\nNaN\n512\na1\n-4\n9\nyes\nfallback\n"
    assert run(source, capsys) == expected


def test_arithmetic_type_error():
    with pytest.raises(ScriptTypeError) as e:
        Interpreter().eval('1 - "a"')
    assert e.value.message == "attempted - operation with types `number` and `string`"


def test_optional_chaining_and_logical_assignment(capsys):
    source = """
    let o = null
    let f = null
    print o?.a ?? "none"
    print f?.()
    let cfg = {port: null, debug: false}
    cfg.port ??= 8080
    cfg.debug ||= true
    cfg.name &&= "ignored"
    print cfg
    """
    assert run(source, capsys) == 'none\nnull\n{port: 8080, debug: true}\n'


def test_template_pipe_and_ranges(capsys):
    source = """
    let name = "Vox"
    fn double(x) { return x * 2 }
    print `hi ${name}, ${1 + 2}`
    print 5 |> double
    print 1..4
    print 1..=3
    print 3..0
    """
    assert run(source, capsys) == "hi Vox, 3\n10\n[1, 2, 3]\n[1, 2, 3]\n[3, 2, 1]\n"


def test_update_typeof_delete(capsys):
    source = """
    let i = 0
    i++
    ++i
    print i
    print typeof nothing
    print typeof fn() {}
    let o = {a: 1, b: 2}
    delete o.a
    print o
    """
    assert run(source, capsys) == "2\nundefined\nfunction\n{b: 2}\n"


def test_input_reads_a_line(capsys, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("Ada\n"))
    source = 'let n = input("name? ")\nprint "hi " + n\nprint input()'
    assert run(source, capsys) == "name? hi Ada\nnull\n"


def test_default_builtins(capsys):
    source = """
    class P {}
    let xs = [3, 1]
    push(xs, 2)
    print [len(xs), pop(xs), len("abc")]
    print [str(1.5), num("2.5"), int(-3.7), type(new P()), typeof new P()]
    print [abs(-2), floor(1.5), ceil(1.2), round(2.5), sqrt(9)]
    print [min(4, 1), max([4, 9])]
    print join(split("a,b", ","), "-")
    print [upper("a"), lower("B"), contains([1, 2], 2), contains("abc", "d")]
    print range(3)
    print keys({a: 1})
    print values({a: 1})
    """
    expected = (
        "[3, 2, 3]\n"
        '["1.5", 2.5, -3, "P", "object"]\n'
        "[2, 1, 2, 3, 3]\n"
        "[1, 9]\n"
        "a-b\n"
        '["A", "b", true, false]\n'
        "[0, 1, 2]\n"
        '["a"]\n'
        "[1]\n"
    )
    assert run(source, capsys) == expected


def test_regex_and_json_builtins(capsys):
    source = """
    print test("abc123", "[0-9]+")
    print findall("a1b22", "[0-9]+")
    print replace("a-b-c", "-", "+")
    print json({a: [1, 2.5, null]})
    let o = parse('{"k": [1, 2]}')
    print o.k[1]
    """
    expected = 'true\n["1", "22"]\na+b+c\n{"a": [1, 2.5, null]}\n2\n'
    assert run(source, capsys) == expected


def test_builtin_errors_are_catchable(capsys):
    source = "try { sqrt(\"x\") } catch (e) { print e }"
    assert run(source, capsys) == "expected number value for argument 0, received string\n"


def test_python_callables_as_builtins(capsys):
    def fail():
        raise ValueError("nope")

    builtins = {"double": lambda x: x * 2, "boom": fail}
    source = "print double(21)\ntry { boom() } catch (e) { print e }"
    assert run(source, capsys, builtins=builtins) == "42\nnope\n"


def test_builtin_subclasses_are_registered(capsys):
    class Greet(Builtin):
        name = "greet"

        def function(self, arguments):
            Builtin.expect_argument_count(arguments, 1)
            return String("hello " + str(arguments[0]))

    source = "print greet(\"vox\")\nprint greet"
    assert run(source, capsys, builtins={"greet": Greet()}) == (
        "hello vox\n<builtin greet>\n"
    )


def test_empty_registry_has_no_builtins():
    with pytest.raises(UndefinedVariableError):
        Interpreter(builtins={}).eval("len([1])")


def test_builtins_can_be_shadowed_but_not_reassigned(capsys):
    interpreter = Interpreter()
    with pytest.raises(ConstantAssignmentError):
        interpreter.eval("len = 1")
    interpreter.eval('let len = "mine"\nprint len')
    assert capsys.readouterr().out == "mine\n"


def test_register_overwrite_is_logged(caplog):
    caplog.set_level("DEBUG", logger="voxelscript")
    interpreter = Interpreter(builtins={})
    interpreter.register("answer", lambda: 42)
    interpreter.register("answer", lambda: 43)
    assert "Overwriting builtin answer" in caplog.text
    assert interpreter.eval("answer()") == Number(43)


def test_default_registry_names():
    assert sorted(BUILTINS) == sorted(
        "len str num int type keys values push pop range abs floor ceil round "
        "sqrt min max join split upper lower contains test findall replace "
        "json parse resolve sleep".split()
    )


def test_pending_from_builtin_is_resolved_by_the_call(capsys):
    calls = []

    class Later(Builtin):
        name = "later"

        def function(self, arguments):
            def thunk():
                calls.append(len(arguments))
                return Number(7)

            return Pending(thunk)

    assert run("print later(1, 2) + 1", capsys, builtins={"later": Later()}) == "8\n"
    assert calls == [2]
