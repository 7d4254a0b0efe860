"""NewtonScript bytecode decoder, object model and decompiler."""

from .bytecode import assemble, disassemble, iter_instructions
from .decompiler import Decompiler, decompile_function, dump_ast
from .errors import (
    DecompileError,
    IncompleteDecompileError,
    MalformedFunctionError,
    NodeOwnershipError,
    PatternError,
)
from .objects import FunctionObject, function_from_json, load_function

__all__ = [
    "assemble",
    "disassemble",
    "iter_instructions",
    "Decompiler",
    "decompile_function",
    "dump_ast",
    "DecompileError",
    "IncompleteDecompileError",
    "MalformedFunctionError",
    "NodeOwnershipError",
    "PatternError",
    "FunctionObject",
    "function_from_json",
    "load_function",
]
