from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from newt_re.cli import main
from newt_re.nscript.bytecode import FuncOp, OpClass, SimpleOp, assemble

_ADD_ARGS = assemble(
    [
        (OpClass.GET_VAR, 3),
        (OpClass.GET_VAR, 4),
        (OpClass.FUNC, FuncOp.ADD),
        (OpClass.SIMPLE, SimpleOp.RETURN),
    ]
)


def _write_function(tmp_path: Path, **overrides) -> Path:
    data = {
        "class": 50,
        "instructions": _ADD_ARGS.hex(),
        "literals": [{"symbol": "unused"}],
        "numArgs": 2 << 2,
        "argFrame": None,
    }
    data.update(overrides)
    path = tmp_path / "func.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_decompile_to_stdout(tmp_path) -> None:
    path = _write_function(tmp_path)
    result = CliRunner().invoke(main, ["decompile", str(path)])
    assert result.exit_code == 0, result.output
    assert result.output == "func(arg0, arg1)\nbegin\n  return arg0 + arg1;\nend\n"


def test_decompile_to_file(tmp_path) -> None:
    path = _write_function(tmp_path)
    out = tmp_path / "func.nsc"
    result = CliRunner().invoke(main, ["decompile", str(path), "-o", str(out)])
    assert result.exit_code == 0, result.output
    assert out.read_text(encoding="utf-8").startswith("func(arg0, arg1)\n")


def test_decompile_legacy_function(tmp_path) -> None:
    path = _write_function(
        tmp_path,
        **{
            "class": "CodeBlock",
            "numArgs": 2,
            "argFrame": ["_nextArgFrame", "_parent", "_implementor", "left", "right"],
        },
    )
    result = CliRunner().invoke(main, ["decompile", str(path)])
    assert result.exit_code == 0, result.output
    assert "return left + right;" in result.output


def test_decompile_reports_malformed_input(tmp_path) -> None:
    path = _write_function(tmp_path, **{"class": "Widget"})
    result = CliRunner().invoke(main, ["decompile", str(path)])
    assert result.exit_code == 1
    assert "unknown function class" in result.output


def test_strict_fails_on_unresolved_nodes(tmp_path) -> None:
    code = assemble([(30, 0), (OpClass.PUSH_CONST, 2), (OpClass.SIMPLE, SimpleOp.RETURN)])
    path = _write_function(tmp_path, instructions=code.hex())
    runner = CliRunner()
    assert runner.invoke(main, ["decompile", str(path)]).exit_code == 0
    result = runner.invoke(main, ["decompile", "--strict", str(path)])
    assert result.exit_code == 1
    assert "unresolved" in result.output


def test_disasm(tmp_path) -> None:
    path = _write_function(tmp_path)
    result = CliRunner().invoke(main, ["disasm", str(path)])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [
        "; 4 bytes, 1 literals",
        ";   literal[0] = 'unused",
        "    0: get-var 3",
        "    1: get-var 4",
        "    2: add",
        "    3: return",
    ]


def test_dump_ast(tmp_path) -> None:
    path = _write_function(tmp_path)
    result = CliRunner().invoke(main, ["dump-ast", "--deep", str(path)])
    assert result.exit_code == 0, result.output
    assert "###[ 0]   3: Return return a=0, b=2 ###" in result.output
    assert "  ###[ 1]   2: BinaryOperator + ###" in result.output


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output
