from __future__ import annotations

import pytest

from newt_re.nscript.bytecode import (
    FuncOp,
    OpClass,
    SimpleOp,
    assemble,
    disassemble,
    encode_instruction,
    iter_instructions,
    opcode_name,
)
from newt_re.nscript.errors import MalformedFunctionError


def _decode(code: bytes) -> list[tuple[int, int, int]]:
    return [(ins.offset, ins.op_class, ins.operand) for ins in iter_instructions(code)]


def test_short_operand_in_low_bits() -> None:
    # 0x1B = class 3 (push), operand 3
    assert _decode(bytes([0x1B])) == [(0, OpClass.PUSH, 3)]


def test_operand_seven_reads_big_endian_word() -> None:
    code = bytes([0x5F, 0x01, 0x02, 0x02])  # branch 0x0102; return
    decoded = list(iter_instructions(code))
    assert [(i.offset, i.op_class, i.operand, i.size) for i in decoded] == [
        (0, OpClass.BRANCH, 0x0102, 3),
        (3, OpClass.SIMPLE, SimpleOp.RETURN, 1),
    ]


def test_truncated_extension_is_malformed() -> None:
    with pytest.raises(MalformedFunctionError):
        list(iter_instructions(bytes([0x02, 0x5F, 0x01])))


def test_decoder_is_lazy() -> None:
    # the bad tail is only reached when iteration gets there
    it = iter_instructions(bytes([0x02, 0x5F]))
    assert next(it).operand == SimpleOp.RETURN
    with pytest.raises(MalformedFunctionError):
        next(it)


def test_encode_picks_short_or_extended_form() -> None:
    assert encode_instruction(OpClass.GET_VAR, 3) == bytes([0x7B])
    assert encode_instruction(OpClass.GET_VAR, 7) == bytes([0x7F, 0x00, 0x07])
    assert encode_instruction(OpClass.PUSH_CONST, -4) == bytes([0x27, 0xFF, 0xFC])


def test_encode_rejects_out_of_range() -> None:
    with pytest.raises(ValueError):
        encode_instruction(32, 0)
    with pytest.raises(ValueError):
        encode_instruction(OpClass.BRANCH, 0x10000)


def test_assemble_matches_decoder() -> None:
    program = [
        (OpClass.GET_VAR, 3),
        (OpClass.PUSH_CONST, 400),
        (OpClass.FUNC, FuncOp.ADD),
        (OpClass.SIMPLE, SimpleOp.RETURN),
    ]
    code = assemble(program)
    assert [(a, b) for _, a, b in _decode(code)] == program
    assert [i.offset for i in iter_instructions(code)] == [0, 1, 4, 5]


def test_opcode_names() -> None:
    assert opcode_name(OpClass.BRANCH_IF_FALSE, 12) == "branch-if-false"
    assert opcode_name(OpClass.SIMPLE, SimpleOp.SET_LEX_SCOPE) == "set-lex-scope"
    assert opcode_name(OpClass.FUNC, FuncOp.STRINGER) == "stringer"
    assert opcode_name(OpClass.MAKE_ARRAY, 0xFFFF) == "new-array"
    assert opcode_name(30, 0) == "op_30"


def test_disassemble_marks_branch_targets() -> None:
    code = assemble(
        [
            (OpClass.GET_VAR, 3),
            (OpClass.BRANCH_IF_FALSE, 3),
            (OpClass.PUSH_CONST, 4),
            (OpClass.SIMPLE, SimpleOp.RETURN),
        ]
    )
    assert disassemble(code) == [
        "    0: get-var 3",
        "    1: branch-if-false 3",
        "    2: push-const 4",
        ">   3: return",
    ]
