"""NewtonScript bytecode definitions and instruction decoder.

Every instruction starts with one byte: the high five bits select the
opcode class (``A``), the low three bits hold the operand (``B``).  An
operand field of 7 means the real operand follows as a big-endian
16-bit word, so the instruction is three bytes long.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Iterator

from .errors import MalformedFunctionError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Opcode definitions
# ---------------------------------------------------------------------------


class OpClass(IntEnum):
    """Opcode classes (the ``A`` field)."""

    SIMPLE = 0  # B selects a SimpleOp
    PUSH = 3  # push literal[B]
    PUSH_CONST = 4  # push immediate Ref B
    CALL = 5
    INVOKE = 6
    SEND = 7
    SEND_IF_DEFINED = 8
    RESEND = 9
    RESEND_IF_DEFINED = 10
    BRANCH = 11
    BRANCH_IF_TRUE = 12
    BRANCH_IF_FALSE = 13
    FIND_VAR = 14
    GET_VAR = 15
    MAKE_FRAME = 16
    MAKE_ARRAY = 17
    GET_PATH = 18
    SET_PATH = 19
    SET_VAR = 20
    FIND_AND_SET_VAR = 21
    INCR_VAR = 22
    BRANCH_LOOP = 23
    FUNC = 24  # B selects a FuncOp
    NEW_HANDLERS = 25


class SimpleOp(IntEnum):
    """Operand values of OpClass.SIMPLE."""

    POP = 0
    DUP = 1
    RETURN = 2
    PUSH_SELF = 3
    SET_LEX_SCOPE = 4
    ITER_NEXT = 5
    ITER_DONE = 6
    POP_HANDLERS = 7


class FuncOp(IntEnum):
    """Operand values of OpClass.FUNC (the frequently used built-ins)."""

    ADD = 0
    SUBTRACT = 1
    AREF = 2
    SET_AREF = 3
    EQUALS = 4
    NOT = 5
    NOT_EQUALS = 6
    MULTIPLY = 7
    DIVIDE = 8
    DIV = 9
    LESS_THAN = 10
    GREATER_THAN = 11
    GREATER_OR_EQUAL = 12
    LESS_OR_EQUAL = 13
    BIT_AND = 14
    BIT_OR = 15
    BIT_NOT = 16
    NEW_ITERATOR = 17
    LENGTH = 18
    CLONE = 19
    SET_CLASS = 20
    ADD_ARRAY_SLOT = 21
    STRINGER = 22
    HAS_PATH = 23
    CLASS_OF = 24


# Operand field value that announces a 16-bit extension word
EXTENDED_OPERAND = 7

# make-array with this operand allocates an array of a given size
NEW_ARRAY_OPERAND = 0xFFFF

# Classes whose operand is a branch destination address
BRANCH_CLASSES = frozenset(
    {
        OpClass.BRANCH,
        OpClass.BRANCH_IF_TRUE,
        OpClass.BRANCH_IF_FALSE,
        OpClass.BRANCH_LOOP,
    }
)


def _mnemonic(name: str) -> str:
    return name.lower().replace("_", "-")


def opcode_name(op_class: int, operand: int = 0) -> str:
    """Return the mnemonic for an instruction, e.g. ``branch-if-false``."""
    if op_class == OpClass.SIMPLE:
        try:
            return _mnemonic(SimpleOp(operand).name)
        except ValueError:
            return f"simple-{operand}"
    if op_class == OpClass.FUNC:
        try:
            return _mnemonic(FuncOp(operand).name)
        except ValueError:
            return f"func-{operand}"
    if op_class == OpClass.MAKE_ARRAY and operand == NEW_ARRAY_OPERAND:
        return "new-array"
    try:
        return _mnemonic(OpClass(op_class).name)
    except ValueError:
        return f"op_{op_class:02d}"


def has_operand(op_class: int, operand: int = 0) -> bool:
    """True if the operand is shown in listings (not a sub-opcode)."""
    if op_class in (OpClass.SIMPLE, OpClass.FUNC):
        return False
    return not (op_class == OpClass.MAKE_ARRAY and operand == NEW_ARRAY_OPERAND)


# ---------------------------------------------------------------------------
# Decoded instructions
# ---------------------------------------------------------------------------


@dataclass
class Instruction:
    """A single decoded bytecode instruction."""

    offset: int  # Byte offset in the instruction string
    op_class: int  # A field
    operand: int  # B field, or the 16-bit extension
    size: int = 1  # 1, or 3 with an extension word

    @property
    def name(self) -> str:
        return opcode_name(self.op_class, self.operand)

    @property
    def is_branch(self) -> bool:
        return self.op_class in BRANCH_CLASSES

    def __repr__(self) -> str:
        if has_operand(self.op_class, self.operand):
            return f"<{self.offset:04d}: {self.name} {self.operand}>"
        return f"<{self.offset:04d}: {self.name}>"


def iter_instructions(code: bytes) -> Iterator[Instruction]:
    """Decode an instruction string lazily.

    Raises MalformedFunctionError if a 16-bit extension runs past the
    end of *code*.
    """
    pos = 0
    end = len(code)
    while pos < end:
        cmd = code[pos]
        op_class = (cmd & 0xF8) >> 3
        operand = cmd & 0x07
        size = 1
        if operand == EXTENDED_OPERAND:
            if pos + 2 >= end:
                raise MalformedFunctionError(
                    f"truncated operand extension at offset {pos} "
                    f"(instruction string is {end} bytes)"
                )
            operand = struct.unpack_from(">H", code, pos + 1)[0]
            size = 3
        yield Instruction(offset=pos, op_class=op_class, operand=operand, size=size)
        pos += size


def encode_instruction(op_class: int, operand: int = 0) -> bytes:
    """Encode one instruction; the inverse of :func:`iter_instructions`.

    Negative operands (push-constant immediates) are stored as their
    16-bit two's complement.
    """
    if not 0 <= op_class < 32:
        raise ValueError(f"opcode class out of range: {op_class}")
    if not -0x8000 <= operand <= 0xFFFF:
        raise ValueError(f"operand out of range: {operand}")
    operand &= 0xFFFF
    if operand < EXTENDED_OPERAND:
        return bytes([(op_class << 3) | operand])
    return bytes([(op_class << 3) | EXTENDED_OPERAND]) + struct.pack(">H", operand)


def assemble(instructions: Iterable[tuple[int, int]]) -> bytes:
    """Encode a sequence of ``(op_class, operand)`` pairs."""
    return b"".join(encode_instruction(a, b) for a, b in instructions)


def disassemble(code: bytes) -> list[str]:
    """Return a listing with one line per instruction.

    Branch destinations are marked with ``>`` in front of the address.
    """
    targets = {ins.operand for ins in iter_instructions(code) if ins.is_branch}
    lines: list[str] = []
    for ins in iter_instructions(code):
        mark = ">" if ins.offset in targets else " "
        text = f"{mark}{ins.offset:4d}: {ins.name}"
        if has_operand(ins.op_class, ins.operand):
            text += f" {ins.operand}"
        lines.append(text)
    log.debug("Disassembled %d instructions (%d bytes)", len(lines), len(code))
    return lines
