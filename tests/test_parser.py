import pytest

from vx import (
    AstExpressionBinary,
    AstExpressionCall,
    AstExpressionFunction,
    AstExpressionIdentifier,
    AstExpressionMatch,
    AstExpressionMember,
    AstExpressionTernary,
    AstPatternArray,
    AstPatternBinding,
    AstPatternLiteral,
    AstPatternOr,
    AstPatternRange,
    AstPatternType,
    AstPatternWildcard,
    AstStatementAssignment,
    AstStatementClass,
    AstStatementDestructure,
    AstStatementExpression,
    AstStatementForIn,
    AstStatementLet,
    AstStatementLoopRange,
    AstStatementReturn,
    ParseError,
    TokenKind,
    parse,
    parse_source,
    tokenize,
)


def expression(source):
    (statement,) = parse_source(source).statements
    assert isinstance(statement, AstStatementExpression)
    return statement.expression


def test_parse_accepts_token_list():
    program = parse(tokenize("let x = 1; let y = 2"))
    assert len(program.statements) == 2


def test_multiplication_binds_tighter_than_addition():
    tree = expression("1 + 2 * 3")
    assert isinstance(tree, AstExpressionBinary)
    assert tree.operator == TokenKind.ADD
    assert isinstance(tree.rhs, AstExpressionBinary)
    assert tree.rhs.operator == TokenKind.MUL


def test_power_is_right_associative():
    tree = expression("2 ** 3 ** 2")
    assert tree.operator == TokenKind.POW
    assert isinstance(tree.rhs, AstExpressionBinary)
    assert tree.rhs.operator == TokenKind.POW


def test_comparison_binds_tighter_than_equality_and_logic():
    tree = expression("a < b == c and d")
    assert tree.lhs.operator == TokenKind.EQ
    assert tree.lhs.lhs.operator == TokenKind.LT


def test_ternary_is_lowest():
    tree = expression("a ?? b ? c : d")
    assert isinstance(tree, AstExpressionTernary)


def test_arrow_function_with_parameters():
    (statement,) = parse_source("let add = (a, b = 1 + 2) => a + b").statements
    assert isinstance(statement, AstStatementLet)
    function = statement.expression
    assert isinstance(function, AstExpressionFunction)
    assert function.is_arrow
    assert [p.name for p in function.parameters] == ["a", "b"]
    assert function.parameters[1].default is not None
    (body,) = function.body.statements
    assert isinstance(body, AstStatementReturn)


def test_grouping_is_not_an_arrow():
    tree = expression("(a + b) * 2")
    assert tree.operator == TokenKind.MUL
    assert tree.lhs.operator == TokenKind.ADD


def test_single_parameter_arrow():
    tree = expression("map(xs, x => x * 2)")
    assert isinstance(tree, AstExpressionCall)
    arrow = tree.arguments[1]
    assert isinstance(arrow, AstExpressionFunction)
    assert arrow.is_arrow


def test_method_call_chain():
    tree = expression("new B().speak()")
    assert isinstance(tree, AstExpressionCall)
    assert isinstance(tree.function, AstExpressionMember)
    assert tree.function.name == "speak"


def test_newlines_are_not_significant():
    (statement,) = parse_source("let a = b\n(c)").statements
    assert isinstance(statement.expression, AstExpressionCall)
    program = parse_source("i++\n++j\nk")
    assert len(program.statements) == 3


def test_return_value_may_start_on_the_next_line():
    (function,) = parse_source("fn f(a, b) {\n  return\n    a + b\n}").statements
    (statement,) = function.function.body.statements
    assert isinstance(statement, AstStatementReturn)
    assert isinstance(statement.expression, AstExpressionBinary)


@pytest.mark.parametrize("after", ["}", "let y = 1 }", "if x { } }", "print 1 }"])
def test_return_without_value(after):
    (function,) = parse_source("fn f() { return " + after).statements
    statement = function.function.body.statements[0]
    assert isinstance(statement, AstStatementReturn)
    assert statement.expression is None


def test_leading_dot_continues_expression():
    program = parse_source("let a = xs\n  .length")
    assert len(program.statements) == 1


def test_compound_assignment():
    (statement,) = parse_source("obj.count += 1").statements
    assert isinstance(statement, AstStatementAssignment)
    assert statement.operator == TokenKind.ADD_ASSIGN


def test_destructuring_declaration():
    (statement,) = parse_source("let [a, , b = 1, [c], ...rest] = xs").statements
    assert isinstance(statement, AstStatementDestructure)
    assert statement.pattern.names() == ["a", "b", "c", "rest"]
    assert statement.pattern.elements[1] is None


def test_loop_headers():
    (loop,) = parse_source("loop i from 0 to 10 step 2 { }").statements
    assert isinstance(loop, AstStatementLoopRange)
    (loop,) = parse_source("for (let x of xs) { }").statements
    assert isinstance(loop, AstStatementForIn)
    assert not loop.keys
    (loop,) = parse_source("loop k in obj { }").statements
    assert loop.keys


def test_class_members():
    source = """
    class Circle extends Shape {
        static count = 0
        r = 1
        constructor(r) { this.r = r }
        get area() { return 3 * this.r * this.r }
        set radius(v) { this.r = v }
        static unit() { return new Circle(1) }
    }
    """
    (statement,) = parse_source(source).statements
    assert isinstance(statement, AstStatementClass)
    kinds = [(m.name, m.kind, m.is_static) for m in statement.members]
    assert kinds == [
        ("count", "property", True),
        ("r", "property", False),
        ("constructor", "method", False),
        ("area", "getter", False),
        ("radius", "setter", False),
        ("unit", "method", True),
    ]


def test_match_patterns():
    source = """
    match v {
        0 | 1 => "bit",
        -5..=5 => "small",
        [x, ...] => x,
        s is string => s,
        is number => "number",
        n when n > 100 => n,
        _ => null
    }
    """
    tree = expression(source)
    assert isinstance(tree, AstExpressionMatch)
    patterns = [arm.pattern for arm in tree.arms]
    assert isinstance(patterns[0], AstPatternOr)
    assert isinstance(patterns[1], AstPatternRange)
    assert patterns[1].inclusive
    assert isinstance(patterns[2], AstPatternArray)
    assert isinstance(patterns[3], AstPatternType)
    assert patterns[3].name == "s"
    assert patterns[4].name is None
    assert isinstance(patterns[5], AstPatternBinding)
    assert isinstance(tree.arms[5].guard, AstExpressionBinary)
    assert isinstance(patterns[6], AstPatternWildcard)
    assert isinstance(patterns[0].alternatives[0], AstPatternLiteral)


def test_template_segments_are_parsed():
    tree = expression("`sum: ${a + b}`")
    (text, segment) = tree.template
    assert text == "sum: "
    assert isinstance(segment, AstExpressionBinary)


@pytest.mark.parametrize(
    "source",
    [
        "fn f(a, a) { }",
        "fn f(...a, b) { }",
        "1 = 2",
        "let = 1",
        "const x",
        "`${1 +}`",
        "if x { ",
        "try { }",
        "delete x",
    ],
)
def test_syntax_errors(source):
    with pytest.raises(ParseError):
        parse_source(source)


def test_parse_error_carries_token_kind_and_line():
    with pytest.raises(ParseError) as e:
        parse_source("let a = 1\nlet = 2")
    assert e.value.kind == TokenKind.ASSIGN
    assert e.value.line == 2
    assert "expected `identifier`" in e.value.message


def test_identifier_arrow_is_not_taken_in_match_guard():
    tree = expression("match v { x when ok => 1 }")
    assert isinstance(tree.arms[0].guard, AstExpressionIdentifier)


def test_template_segment_lex_error_is_parse_error():
    with pytest.raises(ParseError) as e:
        parse_source("`a ${ @ } b`")
    assert e.value.kind == TokenKind.TEMPLATE
    assert "unexpected character" in e.value.message
