"""Exception types raised by the NewtonScript decompiler."""

from __future__ import annotations


class DecompileError(Exception):
    pass


class MalformedFunctionError(DecompileError):
    """The function object does not have the shape of compiled NewtonScript."""


class PatternError(DecompileError):
    """A control-flow rewrite found bytecode no known compiler emits."""


class NodeOwnershipError(DecompileError):
    """A node was unlinked twice, or attached while still in the sequence."""


class IncompleteDecompileError(DecompileError):
    """Resolution stopped with nodes that have no source form (strict mode)."""

    def __init__(self, message: str, unresolved: list | None = None):
        super().__init__(message)
        self.unresolved = unresolved or []
