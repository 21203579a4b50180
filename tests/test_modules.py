import os

import pytest

from vx import ConstantAssignmentError, Interpreter, ModuleError


def write(path, source):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(source, encoding="utf-8")
    return path


def test_import_forms(tmp_path, capsys):
    write(
        tmp_path / "math.voxel",
        'export fn square(x) { return x * x }\nexport const PI = 3\nexport default "main"',
    )
    main = write(
        tmp_path / "main.voxel",
        """
        import name, {square, PI as pi} from "./math"
        import * as m from "math.voxel"
        print square(4)
        print pi
        print name
        print m.square(3)
        """,
    )
    Interpreter().eval_file(main)
    assert capsys.readouterr().out == "16\n3\nmain\n9\n"


def test_export_specifiers(tmp_path, capsys):
    write(
        tmp_path / "shapes.vxl",
        """
        class Square { constructor(s) { this.s = s } }
        let [w, h] = [2, 3]
        export {Square as Box, w}
        export let {area} = {area: w * h}
        """,
    )
    main = write(
        tmp_path / "main.voxel",
        'import {Box, w, area} from "shapes"\nprint new Box(5).s\nprint [w, area]',
    )
    Interpreter().eval_file(main)
    assert capsys.readouterr().out == "5\n[2, 6]\n"


def test_modules_evaluate_once(tmp_path, capsys):
    write(tmp_path / "lib.voxel", 'print "loaded"\nexport let a = 1')
    write(tmp_path / "other.voxel", 'import {a} from "lib"\nexport let b = a + 1')
    main = write(
        tmp_path / "main.voxel",
        'import {a} from "lib"\nimport {b} from "other"\nprint a + b',
    )
    Interpreter().eval_file(main)
    assert capsys.readouterr().out == "loaded\n3\n"


def test_imports_resolve_relative_to_importing_module(tmp_path, capsys):
    write(tmp_path / "pkg" / "helper.voxel", "export let value = 7")
    write(
        tmp_path / "pkg" / "lib.voxel",
        'import {value} from "./helper"\nexport let doubled = value * 2',
    )
    main = write(tmp_path / "main.voxel", 'import {doubled} from "pkg"\nprint doubled')
    Interpreter().eval_file(main)
    assert capsys.readouterr().out == "14\n"


def test_search_path_argument(tmp_path, capsys):
    write(tmp_path / "libs" / "util.voxel", "export let v = 42")
    interpreter = Interpreter(search_path=[tmp_path / "libs"])
    interpreter.eval('import {v} from "util"\nprint v')
    assert capsys.readouterr().out == "42\n"


def test_search_path_environment_variable(tmp_path, capsys, monkeypatch):
    write(tmp_path / "one" / "a.voxel", "export let x = 1")
    write(tmp_path / "two" / "b.voxel", "export let y = 2")
    paths = [str(tmp_path / "one"), str(tmp_path / "two")]
    monkeypatch.setenv("VOXEL_SEARCH_PATH", os.pathsep.join(paths))
    interpreter = Interpreter()
    assert interpreter.search_path == paths
    interpreter.eval('import {x} from "a"\nimport {y} from "b"\nprint x + y')
    assert capsys.readouterr().out == "3\n"


def test_missing_module(tmp_path):
    with pytest.raises(ModuleError) as e:
        Interpreter(search_path=[tmp_path]).eval('import {x} from "nowhere"')
    assert e.value.message == "module `nowhere` not found"


def test_missing_export(tmp_path):
    write(tmp_path / "lib.voxel", "export let a = 1")
    with pytest.raises(ModuleError) as e:
        Interpreter(search_path=[tmp_path]).eval('import {b} from "lib"')
    assert e.value.message == "module `lib` has no export `b`"


def test_module_syntax_error_is_module_error(tmp_path):
    write(tmp_path / "broken.voxel", "let = 1")
    with pytest.raises(ModuleError) as e:
        Interpreter(search_path=[tmp_path]).eval('import "broken"')
    assert "failed to load module `broken`" in e.value.message


def test_module_errors_are_catchable(tmp_path, capsys):
    source = 'try { import {x} from "nowhere" } catch (e) { print "caught" }'
    Interpreter(search_path=[tmp_path]).eval(source)
    assert capsys.readouterr().out == "caught\n"


def test_imported_bindings_are_constant(tmp_path):
    write(tmp_path / "lib.voxel", "export let a = 1")
    with pytest.raises(ConstantAssignmentError):
        Interpreter(search_path=[tmp_path]).eval('import {a} from "lib"\na = 2')


def test_module_loading_is_logged(tmp_path, caplog):
    write(tmp_path / "lib.voxel", "export let a = 1")
    caplog.set_level("DEBUG", logger="voxelscript")
    interpreter = Interpreter(search_path=[tmp_path])
    interpreter.eval('import {a} from "lib"')
    interpreter.eval('import {a as b} from "lib"')
    assert "Loading module lib" in caplog.text
    assert "Using cached module" in caplog.text
