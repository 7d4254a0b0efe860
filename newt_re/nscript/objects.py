"""In-memory model of the NewtonScript values a function object refers to.

Function objects, their literal tables and argument frames are loaded from
a JSON description (see :func:`function_from_json`).  The module also knows
how to print any such value in NewtonScript source syntax.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .errors import MalformedFunctionError

log = logging.getLogger(__name__)


# Immediate Ref encodings
NIL_REF = 0x02
TRUE_REF = 0x1A
CHAR_TAG_MASK = 0x0F
CHAR_TAG = 0x06

# Class tag of a function object using the bit-packed argument encoding
PLAIN_FUNC_CLASS = 0x32

# _nextArgFrame, _parent and _implementor precede the arguments
FIXED_ARG_SLOTS = ("_nextArgFrame", "_parent", "_implementor")

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Symbol:
    """An interned name; compares case-insensitively like NewtonScript."""

    name: str

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Symbol):
            return self.name.lower() == other.name.lower()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.name.lower())

    def __repr__(self) -> str:
        return f"Symbol({self.name!r})"


@dataclass(frozen=True)
class Character:
    char: str


@dataclass(frozen=True)
class Immediate:
    """An immediate Ref with no dedicated source syntax."""

    ref: int


ARRAY_CLASS = Symbol("array")
PATH_EXPR_CLASS = Symbol("pathExpr")
CODE_BLOCK = Symbol("CodeBlock")


@dataclass
class ArrayObject:
    items: list = field(default_factory=list)
    klass: Symbol = ARRAY_CLASS


@dataclass
class Frame:
    """A frame; slot order is significant for argument frames."""

    slots: dict = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return list(self.slots)


@dataclass
class FunctionObject:
    """A compiled function: class tag, bytecode, literals and arg metadata."""

    klass: Union[Symbol, int, Any]
    instructions: Any = b""
    literals: list = field(default_factory=list)
    num_args: int = 0
    arg_frame: Optional[Frame] = None


# ---------------------------------------------------------------------------
# Immediates
# ---------------------------------------------------------------------------


def decode_immediate(raw: int) -> Any:
    """Turn a push-constant operand into a Python value.

    The operand is a 16-bit Ref: integers carry a zero tag in the low two
    bits, characters the tag 6 in the low nibble.
    """
    raw &= 0xFFFF
    if raw & 0x8000:
        raw -= 0x10000
    if (raw & 3) == 0:
        return raw >> 2
    if raw == NIL_REF:
        return None
    if raw == TRUE_REF:
        return True
    if (raw & CHAR_TAG_MASK) == CHAR_TAG:
        return Character(chr((raw & 0xFFFF) >> 4))
    return Immediate(raw & 0xFFFF)


def encode_immediate(value: Any) -> int:
    """Inverse of :func:`decode_immediate` for the values it produces."""
    if value is None:
        return NIL_REF
    if value is True:
        return TRUE_REF
    if isinstance(value, Character):
        return (ord(value.char) << 4) | CHAR_TAG
    if isinstance(value, int) and not isinstance(value, bool):
        if not -0x2000 <= value < 0x2000:
            raise ValueError(f"integer does not fit an immediate: {value}")
        return (value << 2) & 0xFFFF
    if isinstance(value, Immediate):
        return value.ref
    raise ValueError(f"no immediate encoding for {value!r}")


# ---------------------------------------------------------------------------
# Source syntax
# ---------------------------------------------------------------------------

_STRING_ESCAPES = {'"': '\\"', "\\": "\\\\", "\n": "\\n", "\t": "\\t"}


def format_symbol(name: str) -> str:
    if _IDENTIFIER.match(name):
        return name
    return "|" + name.replace("|", "\\|") + "|"


def format_string(text: str) -> str:
    return '"' + "".join(_STRING_ESCAPES.get(ch, ch) for ch in text) + '"'


def format_character(char: str) -> str:
    if " " < char < "\x7f" and char != "\\":
        return "$" + char
    if char == "\\":
        return "$\\\\"
    return f"$\\u{ord(char):04X}"


def format_path(value: Any) -> Optional[str]:
    """Print a path literal (``foo`` or ``foo.bar``), or None if it isn't one."""
    if isinstance(value, Symbol):
        return format_symbol(value.name)
    if isinstance(value, ArrayObject) and value.klass == PATH_EXPR_CLASS:
        parts = []
        for item in value.items:
            if isinstance(item, Symbol):
                parts.append(format_symbol(item.name))
            else:
                parts.append("(" + format_ref(item, tick=False) + ")")
        return ".".join(parts)
    return None


def contains_function(value: Any) -> bool:
    """True if *value* is, or holds at any depth, a function object."""
    if isinstance(value, FunctionObject):
        return True
    if isinstance(value, ArrayObject):
        return any(contains_function(v) for v in value.items)
    if isinstance(value, Frame):
        return any(contains_function(v) for v in value.slots.values())
    return False


def format_ref(
    value: Any,
    tick: bool = True,
    function_formatter: Optional[Callable[[FunctionObject], str]] = None,
) -> str:
    """Print *value* in NewtonScript source syntax.

    With *tick* set, symbols and aggregate literals are quoted the way they
    appear in value position (``'foo``, ``'[1, 2]``).  Nothing inside an
    aggregate literal is quoted again.
    """
    prefix = "'" if tick else ""
    if value is None or value is False:
        return "nil"
    if value is True:
        return "true"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return format_string(value)
    if isinstance(value, Character):
        return format_character(value.char)
    if isinstance(value, Symbol):
        return prefix + format_symbol(value.name)
    if isinstance(value, ArrayObject):
        items = ", ".join(
            format_ref(v, tick=False, function_formatter=function_formatter)
            for v in value.items
        )
        if value.klass == ARRAY_CLASS:
            return f"{prefix}[{items}]"
        klass = format_ref(value.klass, tick=False)
        return f"{prefix}[{klass}: {items}]" if items else f"{prefix}[{klass}:]"
    if isinstance(value, Frame):
        slots = ", ".join(
            f"{format_symbol(name)}: "
            + format_ref(v, tick=False, function_formatter=function_formatter)
            for name, v in value.slots.items()
        )
        return prefix + "{" + slots + "}"
    if isinstance(value, FunctionObject):
        if function_formatter is None:
            return "<function>"
        return function_formatter(value)
    if isinstance(value, Immediate):
        return f"#{value.ref:X}"
    raise TypeError(f"cannot print {type(value).__name__} as NewtonScript")


# ---------------------------------------------------------------------------
# JSON loader
# ---------------------------------------------------------------------------


def _literal_from_json(data: Any) -> Any:
    if data is None or isinstance(data, (bool, int, float, str)):
        return data
    if isinstance(data, list):
        return ArrayObject([_literal_from_json(v) for v in data])
    if not isinstance(data, dict):
        raise MalformedFunctionError(f"unsupported literal: {data!r}")

    if "symbol" in data:
        return Symbol(str(data["symbol"]))
    if "char" in data:
        char = data["char"]
        if not isinstance(char, str) or len(char) != 1:
            raise MalformedFunctionError(f"bad character literal: {char!r}")
        return Character(char)
    if "array" in data:
        klass = Symbol(data.get("class", "array"))
        return ArrayObject([_literal_from_json(v) for v in data["array"]], klass)
    if "frame" in data:
        return Frame({str(k): _literal_from_json(v) for k, v in data["frame"].items()})
    if "function" in data:
        return function_from_json(data["function"])
    if "immediate" in data:
        return Immediate(int(data["immediate"]))
    raise MalformedFunctionError(f"unknown literal encoding: {sorted(data)}")


def _class_from_json(data: Any) -> Any:
    if isinstance(data, str):
        return Symbol(data)
    return data


def function_from_json(data: dict) -> FunctionObject:
    """Build a FunctionObject from its JSON description.

    Shape checks that depend on the encoding (argument counts, class tag)
    are left to the decompiler; this only translates the value syntax.
    """
    if not isinstance(data, dict):
        raise MalformedFunctionError("function description must be a JSON object")

    code = data.get("instructions", "")
    if isinstance(code, str):
        try:
            code = bytes.fromhex(code)
        except ValueError as e:
            raise MalformedFunctionError(f"instructions are not hex: {e}") from e

    arg_frame = data.get("argFrame")
    if isinstance(arg_frame, dict):
        arg_frame = Frame({str(k): _literal_from_json(v) for k, v in arg_frame.items()})
    elif isinstance(arg_frame, list):
        arg_frame = Frame({str(name): None for name in arg_frame})
    elif arg_frame is not None:
        raise MalformedFunctionError(f"bad argFrame: {arg_frame!r}")

    literals = data.get("literals") or []
    if not isinstance(literals, list):
        raise MalformedFunctionError("literals must be a list")

    return FunctionObject(
        klass=_class_from_json(data.get("class", "CodeBlock")),
        instructions=code,
        literals=[_literal_from_json(v) for v in literals],
        num_args=int(data.get("numArgs", 0)),
        arg_frame=arg_frame,
    )


def load_function(path) -> FunctionObject:
    """Read a function object from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MalformedFunctionError(f"{path}: invalid JSON: {e}") from e
    log.debug("Loaded function description from %s", path)
    return function_from_json(data)
