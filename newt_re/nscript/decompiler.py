"""NewtonScript bytecode decompiler.

Turns a compiled function object back into NewtonScript source text.

Approach:
- Decode the instruction string once to find every branch destination
- Decode it again into a doubly linked sequence of AST nodes, with a
  jump-target node in front of each destination
- Alternate two rewrite passes until neither changes anything: the
  data-flow pass attaches value-producing nodes to their consumers, the
  control-flow pass folds branch shapes into loop, while and if nodes
- Print what is left; nodes that never resolved are printed as
  ``###`` diagnostic lines
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .ast_nodes import (
    HeadNode,
    JumpTarget,
    Node,
    PrintMode,
    Return,
    TailNode,
    make_node,
)
from .bytecode import BRANCH_CLASSES, OpClass, iter_instructions
from .errors import (
    DecompileError,
    IncompleteDecompileError,
    MalformedFunctionError,
)
from .objects import (
    ARRAY_CLASS,
    CODE_BLOCK,
    FIXED_ARG_SLOTS,
    PLAIN_FUNC_CLASS,
    Frame,
    FunctionObject,
    contains_function,
    format_ref,
    format_symbol,
)
from .printer import Printer

log = logging.getLogger(__name__)

__all__ = [
    "DecompileError",
    "Decompiler",
    "decompile_function",
    "dump_ast",
]

# Instructions whose operand indexes the literal table
_LITERAL_OPERANDS = frozenset(
    {OpClass.PUSH, OpClass.FIND_VAR, OpClass.FIND_AND_SET_VAR}
)
# Instructions whose operand indexes the argument/local name table
_NAME_OPERANDS = frozenset({OpClass.GET_VAR, OpClass.SET_VAR, OpClass.INCR_VAR})


class Decompiler:
    """Decompiles one function object.

    All state (literal and name tables, jump targets, the node sequence)
    belongs to this instance; nested function literals get their own.
    """

    def __init__(
        self,
        func: FunctionObject,
        *,
        debug_ast: bool = False,
        strict: bool = False,
        indent: str = "  ",
    ):
        self.func = func
        self.debug_ast = debug_ast
        self.strict = strict
        self.indent_text = indent

        self.literals: list = list(func.literals or [])
        self.names: list[str] = []
        self.num_args = 0
        self.num_locals = 0
        self.targets: dict[int, JumpTarget] = {}
        self.diagnostics: list[str] = []

        self.head: Node = HeadNode()
        self.tail: Node = TailNode()
        self.head.next = self.tail
        self.tail.prev = self.head

        # printing state
        self.p = Printer(indent)
        self.output = PrintMode.SCRIPT
        self.precedence = 0

        self._read_signature()
        self.code: bytes = self._instruction_bytes()

    # -- function metadata --------------------------------------------------

    def _read_signature(self) -> None:
        func = self.func
        if func.klass == CODE_BLOCK:
            frame = func.arg_frame
            if not isinstance(frame, Frame):
                raise MalformedFunctionError("CodeBlock function without an argFrame")
            names = frame.names
            self.num_args = func.num_args
            self.num_locals = len(names) - len(FIXED_ARG_SLOTS) - self.num_args
            if self.num_args < 0 or self.num_locals < 0:
                raise MalformedFunctionError(
                    f"argFrame has {len(names)} slots, too few for "
                    f"{self.num_args} arguments"
                )
            self.names = names
        elif func.klass == PLAIN_FUNC_CLASS:
            packed = func.num_args
            self.num_args = (packed >> 2) & 0x3FFF
            self.num_locals = packed >> 18
            self.names = (
                list(FIXED_ARG_SLOTS)
                + [f"arg{i}" for i in range(self.num_args)]
                + [f"loc{i}" for i in range(self.num_locals)]
            )
        else:
            raise MalformedFunctionError(f"unknown function class {func.klass!r}")
        log.debug(
            "Function class %r: %d args, %d locals",
            func.klass,
            self.num_args,
            self.num_locals,
        )

    def _instruction_bytes(self) -> bytes:
        code = self.func.instructions
        if not isinstance(code, (bytes, bytearray)):
            raise MalformedFunctionError(
                f"instructions must be a binary object, not {type(code).__name__}"
            )
        return bytes(code)

    @property
    def arg_names(self) -> list[str]:
        start = len(FIXED_ARG_SLOTS)
        return self.names[start : start + self.num_args]

    @property
    def local_names(self) -> list[str]:
        start = len(FIXED_ARG_SLOTS) + self.num_args
        return self.names[start : start + self.num_locals]

    def literal(self, index: int) -> Any:
        return self.literals[index]

    def local_name(self, index: int) -> str:
        return self.names[index]

    # -- building the node sequence -----------------------------------------

    def _add_to_targets(self, target: int, origin: int) -> None:
        jt = self.targets.get(target)
        if jt is None:
            jt = self.targets[target] = JumpTarget(target)
        jt.add_origin(origin)
        log.debug("Jump target: %d to %d", origin, target)

    def _register_targets(self) -> None:
        for ins in iter_instructions(self.code):
            if ins.op_class in BRANCH_CLASSES:
                self._add_to_targets(ins.operand, ins.offset)

    def _check_operand(self, pc: int, op_class: int, operand: int) -> None:
        if op_class in _LITERAL_OPERANDS and operand >= len(self.literals):
            raise MalformedFunctionError(
                f"instruction at {pc} uses literal {operand}, "
                f"but there are only {len(self.literals)}"
            )
        if op_class in _NAME_OPERANDS and operand >= len(self.names):
            raise MalformedFunctionError(
                f"instruction at {pc} uses variable {operand}, "
                f"but there are only {len(self.names)}"
            )

    def _generate_ast(self) -> None:
        node = self.head
        spliced: set[int] = set()
        last: Optional[Node] = None
        for ins in iter_instructions(self.code):
            jt = self.targets.get(ins.offset)
            if jt is not None:
                node = node.insert_after(jt)
                spliced.add(ins.offset)
            self._check_operand(ins.offset, ins.op_class, ins.operand)
            node = node.insert_after(make_node(ins.offset, ins.op_class, ins.operand))
            last = node

        for address in sorted(set(self.targets) - spliced):
            log.warning(
                "Jump target %d from %s is not on an instruction boundary",
                address,
                self.targets[address].origins,
            )
            del self.targets[address]

        # the compiler always appends a return; drop it after an explicit one
        if isinstance(last, Return) and isinstance(last.prev, Return):
            last.unlink()

    def build(self) -> None:
        """Decode the instruction string into the node sequence."""
        self._register_targets()
        self._generate_ast()
        self._trace("initial")

    # -- helpers for the rewrite rules --------------------------------------

    def release_target(self, jt: JumpTarget, origin: int) -> None:
        """Remove *origin* from *jt*; drop the target once nothing jumps there."""
        jt.remove_origin(origin)
        if jt.empty:
            jt.unlink()
            del self.targets[jt.pc]
            log.debug("Jump target %d removed", jt.pc)

    def find_target(self, start: Node, address: int) -> Optional[JumpTarget]:
        """Find the jump target for *address* after *start* in the sequence."""
        node = start.next
        while node is not None:
            if isinstance(node, JumpTarget) and node.pc == address:
                return node
            node = node.next
        return None

    def diagnose(self, message: str) -> None:
        if message not in self.diagnostics:
            log.warning("%s", message)
            self.diagnostics.append(message)

    # -- fixed-point driver -------------------------------------------------

    def _resolve_data_flow(self) -> bool:
        changed = False
        node = self.head
        while node is not None:
            did, following = node.resolve_data_flow(self)
            if did:
                changed = True
                self._trace(f"data flow at {node.pc}")
                node = self.head
            else:
                node = following
        return changed

    def _resolve_control_flow(self) -> bool:
        node = self.head
        while node is not None:
            did, following = node.resolve_control_flow(self)
            if did:
                self._trace(f"control flow at {following.pc}")
                return True
            node = following
        return False

    def solve(self) -> None:
        """Run both rewrite passes until a whole cycle changes nothing."""
        while True:
            changed = self._resolve_data_flow()
            if self._resolve_control_flow():
                continue
            if not changed:
                break

    def _trace(self, reason: str) -> None:
        if self.debug_ast and log.isEnabledFor(logging.DEBUG):
            log.debug("AST after %s:\n%s", reason, self.dump(PrintMode.DEEP))

    # -- inspection ---------------------------------------------------------

    def nodes(self) -> list[Node]:
        """Top-level nodes between the sentinels."""
        result = []
        node = self.head.next
        while node is not None and node is not self.tail:
            result.append(node)
            node = node.next
        return result

    def unresolved_nodes(self) -> list[Node]:
        pending = self.nodes()
        found = []
        while pending:
            node = pending.pop(0)
            if not node.resolved:
                found.append(node)
            pending.extend(node.children())
        return found

    @property
    def complete(self) -> bool:
        return not self.unresolved_nodes()

    # -- output -------------------------------------------------------------

    def write_literal(self, index: int, tick: bool = True) -> None:
        self._write_value(self.literal(index), tick)

    def _write_value(self, value: Any, tick: bool) -> None:
        # Aggregates holding functions go through the printer item by item
        # so the nested source picks up the current indentation.
        p = self.p
        if isinstance(value, FunctionObject):
            self._write_lines(self._format_function(value))
        elif not contains_function(value):
            p.write(format_ref(value, tick=tick))
        elif isinstance(value, Frame):
            p.write("'{" if tick else "{")
            for name, slot in value.slots.items():
                p.write(f"{format_symbol(name)}: ")
                self._write_value(slot, False)
                p.divider(", ")
            p.clear_divider()
            p.write("}")
        else:
            p.write("'[" if tick else "[")
            if value.klass != ARRAY_CLASS:
                p.write(format_ref(value.klass, tick=False) + ": ")
            for item in value.items:
                self._write_value(item, False)
                p.divider(", ")
            p.clear_divider()
            p.write("]")

    def _write_lines(self, text: str) -> None:
        lines = text.rstrip("\n").split("\n")
        self.p.write(lines[0])
        for line in lines[1:]:
            self.p.new_line()
            self.p.write(line)

    def _format_function(self, func: FunctionObject) -> str:
        nested = Decompiler(
            func, debug_ast=self.debug_ast, strict=self.strict, indent=self.indent_text
        )
        return nested.decompile()

    def dump(self, mode: PrintMode = PrintMode.BYTECODE) -> str:
        """Return the node sequence as ``###`` diagnostic lines."""
        saved = self.p, self.output
        self.p, self.output = Printer(self.indent_text), mode
        node = self.head
        while node is not None:
            node.dump(self)
            node = node.next
        text = self.p.getvalue()
        self.p, self.output = saved
        return text

    def source(self) -> str:
        """Print the (solved) node sequence as NewtonScript source."""
        self.p = p = Printer(self.indent_text)
        self.output = PrintMode.SCRIPT
        self.precedence = 0

        for message in self.diagnostics:
            p.write(f"// {message}")
            p.new_line()
        p.write("func(" + ", ".join(self.arg_names) + ")")
        p.new_line()
        p.begin()
        self.head.emit(self)
        if self.local_names:
            for name in self.local_names:
                p.write(f"local {name};")
                p.new_line()
            p.begin()
            p.new_line()
        node = self.head.next
        while node is not self.tail:
            node.render_statement(self)
            node = node.next
        self.tail.emit(self)
        return p.getvalue()

    def decompile(self) -> str:
        self.build()
        self.solve()
        unresolved = self.unresolved_nodes()
        if unresolved:
            summary = ", ".join(f"{n.kind}@{n.pc}" for n in unresolved[:8])
            if self.strict:
                raise IncompleteDecompileError(
                    f"{len(unresolved)} nodes left unresolved: {summary}", unresolved
                )
            log.warning("Decompilation incomplete, unresolved: %s", summary)
        return self.source()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decompile_function(func: FunctionObject, **options) -> str:
    """Decompile a function object to NewtonScript source text."""
    return Decompiler(func, **options).decompile()


def dump_ast(func: FunctionObject, deep: bool = False, **options) -> str:
    """Resolve a function object and dump the resulting node sequence."""
    d = Decompiler(func, **options)
    d.build()
    d.solve()
    return d.dump(PrintMode.DEEP if deep else PrintMode.BYTECODE)
