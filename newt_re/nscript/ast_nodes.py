"""AST node catalogue for the NewtonScript decompiler.

Every bytecode instruction becomes one node in a doubly linked sequence.
The data-flow pass moves preceding expressions into a node as its
operands; the control-flow pass folds branch shapes into loop, while and
if nodes.  Whatever is left once nothing changes is printed as source.

Each node answers three questions: how many values it leaves on the
stack (``provides``), how many it takes (``consumes``) and whether it
has a source form (``resolved``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .bytecode import NEW_ARRAY_OPERAND, FuncOp, OpClass, SimpleOp, opcode_name
from .errors import NodeOwnershipError, PatternError
from .objects import (
    ARRAY_CLASS,
    ArrayObject,
    Symbol,
    decode_immediate,
    format_path,
    format_ref,
)

if TYPE_CHECKING:
    from .decompiler import Decompiler

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stack-effect markers and precedence
# ---------------------------------------------------------------------------

PROVIDES_NONE = 0
PROVIDES_UNKNOWN = -1
SPECIAL_NODE = -2
JUMP_TARGET = -3
BRANCH = -4
BRANCH_IF_FALSE = -5
BRANCH_IF_TRUE = -6

# pc of nodes that do not come from an instruction
SYNTHETIC_PC = -1

# Higher binds tighter
PREC_ASSIGN = 0
PREC_AND_OR = 1
PREC_NOT = 2
PREC_COMPARE = 3
PREC_EXISTS = 4
PREC_STRINGER = 5
PREC_ADD = 6
PREC_MULTIPLY = 7
PREC_SHIFT = 8
PREC_UNARY_MINUS = 9
PREC_AREF = 10
PREC_SEND = 11
PREC_PATH = 12


class PrintMode(Enum):
    BYTECODE = "bytecode"  # flat node dump
    DEEP = "deep"  # node dump including attached children
    SCRIPT = "script"  # NewtonScript source


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Node:
    pc: int = SYNTHETIC_PC
    prev: Optional[Node] = field(default=None, init=False, repr=False, compare=False)
    next: Optional[Node] = field(default=None, init=False, repr=False, compare=False)

    @property
    def provides(self) -> int:
        return PROVIDES_UNKNOWN

    @property
    def consumes(self) -> int:
        return 0

    @property
    def resolved(self) -> bool:
        return False

    @property
    def is_expr(self) -> bool:
        return self.provides == 1

    @property
    def is_statement(self) -> bool:
        return self.provides == PROVIDES_NONE

    @property
    def linked(self) -> bool:
        return self.prev is not None or self.next is not None

    @property
    def kind(self) -> str:
        return type(self).__name__

    def is_nil(self, dec: Decompiler) -> bool:
        return False

    def children(self) -> list[Node]:
        return []

    # -- sequence surgery ---------------------------------------------------

    def unlink(self) -> Node:
        """Take this node out of its sequence and hand it to the caller."""
        if self.prev is None or self.next is None:
            raise NodeOwnershipError(f"{self.kind} at {self.pc} is not in a sequence")
        self.prev.next = self.next
        self.next.prev = self.prev
        self.prev = self.next = None
        return self

    def replace_with(self, node: Node) -> Node:
        """Put *node* where this node is; this node becomes unlinked."""
        if node.linked:
            raise NodeOwnershipError(f"{node.kind} at {node.pc} is still linked")
        if self.prev is None or self.next is None:
            raise NodeOwnershipError(f"{self.kind} at {self.pc} is not in a sequence")
        node.prev, node.next = self.prev, self.next
        self.prev.next = node
        self.next.prev = node
        self.prev = self.next = None
        return node

    def insert_after(self, node: Node) -> Node:
        if node.linked:
            raise NodeOwnershipError(f"{node.kind} at {node.pc} is still linked")
        node.prev, node.next = self, self.next
        if self.next is not None:
            self.next.prev = node
        self.next = node
        return node

    # -- resolution ---------------------------------------------------------

    def resolve_data_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        return False, self.next

    def resolve_control_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        return False, self.next

    # -- output -------------------------------------------------------------

    def emit(self, dec: Decompiler) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind

    def dump(self, dec: Decompiler) -> None:
        p = dec.p
        if dec.output is PrintMode.DEEP and self.children():
            p.indent(+1)
            for child in self.children():
                child.dump(dec)
            p.indent(-1)
        p.begin()
        p.write(f"###[{self.provides:2d}] {self.pc:3d}: {self.describe()} ###")
        p.new_line()

    def render(self, dec: Decompiler) -> None:
        if dec.output is PrintMode.SCRIPT and self.resolved:
            self.emit(dec)
        else:
            self.dump(dec)

    def render_statement(self, dec: Decompiler) -> None:
        if dec.output is PrintMode.SCRIPT and self.resolved:
            dec.p.begin()
            self.emit(dec)
            dec.p.new_line(";")
        else:
            self.dump(dec)


def _render_operand(dec: Decompiler, node: Node, precedence: int) -> None:
    saved = dec.precedence
    dec.precedence = precedence
    node.render(dec)
    dec.precedence = saved


def _render_list(dec: Decompiler, nodes: list[Node], open_: str, close: str) -> None:
    p = dec.p
    p.write(open_)
    for node in nodes:
        p.begin()
        _render_operand(dec, node, PREC_ASSIGN)
        p.divider(", ")
    p.clear_divider()
    p.write(close)


def _render_statements(dec: Decompiler, nodes: list[Node]) -> None:
    for node in nodes:
        node.render_statement(dec)


def _detach_run(first: Node, count: int) -> list[Node]:
    """Unlink *count* consecutive nodes starting at *first*."""
    run = []
    node = first
    for _ in range(count):
        following = node.next
        run.append(node.unlink())
        node = following
    return run


def _check_detached(nodes: list[Node]) -> None:
    for node in nodes:
        if node.linked:
            raise NodeOwnershipError(f"{node.kind} at {node.pc} is still linked")


class HeadNode(Node):
    @property
    def provides(self) -> int:
        return SPECIAL_NODE

    @property
    def resolved(self) -> bool:
        return True

    def emit(self, dec: Decompiler) -> None:
        dec.p.write("begin")
        dec.p.new_line(delta=+1)


class TailNode(Node):
    @property
    def provides(self) -> int:
        return SPECIAL_NODE

    @property
    def resolved(self) -> bool:
        return True

    def emit(self, dec: Decompiler) -> None:
        dec.p.begin(-1)
        dec.p.write("end")
        dec.p.new_line()


@dataclass(eq=False)
class JumpTarget(Node):
    """Marks a branch destination; lists the addresses that jump here."""

    origins: list[int] = field(default_factory=list)

    @property
    def provides(self) -> int:
        return JUMP_TARGET

    @property
    def empty(self) -> bool:
        return not self.origins

    def add_origin(self, origin: int) -> None:
        if origin not in self.origins:
            self.origins.append(origin)

    def contains_origin(self, origin: int) -> bool:
        return origin in self.origins

    def contains_only(self, origin: int) -> bool:
        return self.origins == [origin]

    def remove_origin(self, origin: int) -> None:
        if origin not in self.origins:
            raise PatternError(f"jump target {self.pc} has no origin {origin}")
        self.origins.remove(origin)

    def describe(self) -> str:
        return "JumpTarget from " + ", ".join(str(o) for o in self.origins)


# ---------------------------------------------------------------------------
# Instruction nodes
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class BytecodeNode(Node):
    """A node made from one instruction; also used for unknown opcodes."""

    a: int = 0
    b: int = 0

    def describe(self) -> str:
        return f"{self.kind} {opcode_name(self.a, self.b)} a={self.a}, b={self.b}"


class PopHandlers(BytecodeNode):
    @property
    def provides(self) -> int:
        return PROVIDES_NONE


class ValueNode(BytecodeNode):
    """Pushes exactly one value and takes nothing."""

    @property
    def provides(self) -> int:
        return 1

    @property
    def resolved(self) -> bool:
        return True


class PushLiteral(ValueNode):
    def literal(self, dec: Decompiler):
        return dec.literal(self.b)

    def is_nil(self, dec: Decompiler) -> bool:
        return self.literal(dec) is None

    def is_symbol(self, dec: Decompiler) -> bool:
        return isinstance(self.literal(dec), Symbol)

    def emit(self, dec: Decompiler) -> None:
        dec.write_literal(self.b)

    def emit_bare(self, dec: Decompiler) -> None:
        """Print symbols without the tick (call and message names)."""
        dec.write_literal(self.b, tick=False)

    def describe(self) -> str:
        return f"Push literal[{self.b}]"


class PushConst(ValueNode):
    def value(self):
        return decode_immediate(self.b)

    def is_nil(self, dec: Decompiler) -> bool:
        return self.value() is None

    def emit(self, dec: Decompiler) -> None:
        dec.p.write(format_ref(self.value()))

    def describe(self) -> str:
        return f"PushConst {format_ref(self.value())}"


class PushSelf(ValueNode):
    def emit(self, dec: Decompiler) -> None:
        dec.p.write("self")


class FindVar(ValueNode):
    def emit(self, dec: Decompiler) -> None:
        dec.write_literal(self.b, tick=False)

    def describe(self) -> str:
        return f"FindVar literal[{self.b}]"


class GetVar(ValueNode):
    def emit(self, dec: Decompiler) -> None:
        dec.p.write(dec.local_name(self.b))

    def describe(self) -> str:
        return f"GetVar {self.b}"


class Branch(BytecodeNode):
    """Unconditional jump; the loop shape ends with a backwards one."""

    @property
    def provides(self) -> int:
        return BRANCH

    def describe(self) -> str:
        return f"Branch pc:{self.b}"

    def resolve_control_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        # target A; stmt*; branch A
        if self.b > self.pc:
            return False, self.next
        count = 0
        node = self.prev
        while node.is_statement:
            count += 1
            node = node.prev
        if not isinstance(node, JumpTarget) or not node.contains_origin(self.pc):
            return False, self.next

        first = node.next
        dec.release_target(node, self.pc)
        loop = LoopNode(self.pc, body=_detach_run(first, count))
        self.replace_with(loop)
        log.debug("Loop at %d with %d statements", self.pc, count)
        return True, loop


# ---------------------------------------------------------------------------
# Operand-consuming nodes
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class OperandNode(BytecodeNode):
    """A node that takes ``arity`` values from the nodes in front of it.

    Operands are kept in stack order: the nearest predecessor becomes the
    last operand.
    """

    ins: list[Node] = field(default_factory=list, init=False)

    # values left on the stack once the operands are attached
    yields = 1
    # False for kinds that have no NewtonScript source form
    has_source = True

    @property
    def arity(self) -> int:
        return 1

    @property
    def consumes(self) -> int:
        return self.arity

    @property
    def attached(self) -> bool:
        return len(self.ins) == self.arity

    @property
    def provides(self) -> int:
        return self.yields if self.attached else PROVIDES_UNKNOWN

    @property
    def resolved(self) -> bool:
        return self.attached and self.has_source

    def children(self) -> list[Node]:
        return list(self.ins)

    def take_operands(self, dec: Decompiler) -> bool:
        node: Node = self
        for _ in range(self.arity):
            node = node.prev
            if node is None or not node.is_expr:
                return False
        operands = _detach_run(node, self.arity)
        for operand in operands:
            if isinstance(operand, LoopNode) and not operand.has_break():
                dec.diagnose(
                    f"loop at {operand.pc} has no break but its value is used "
                    f"by {self.kind} at {self.pc}"
                )
        self.ins = operands
        return True

    def resolve_data_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        if self.attached:
            return False, self.next
        if not self.take_operands(dec):
            return False, self.next
        log.debug("Attached %d operands to %s at %d", self.arity, self.kind, self.pc)
        return True, self


class Return(OperandNode):
    @property
    def provides(self) -> int:
        return PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        dec.p.write("return ")
        _render_operand(dec, self.ins[0], PREC_ASSIGN)


class Pop(OperandNode):
    yields = PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], PREC_ASSIGN)

    def resolve_control_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        # branch F; pop  ->  break (F a forward address)
        if self.attached:
            return False, self.next
        branch = self.prev
        if not isinstance(branch, Branch) or branch.b <= self.pc:
            return False, self.next

        target = dec.find_target(self, branch.b)
        if target is None:
            raise PatternError(
                f"break at {branch.pc}: no jump target at {branch.b} after it"
            )
        if not target.contains_origin(branch.pc):
            raise PatternError(
                f"break at {branch.pc}: jump target {branch.b} does not list it"
            )
        dec.release_target(target, branch.pc)
        brk = Break(branch.pc, branch.a, branch.b)
        branch.unlink()
        self.replace_with(brk)
        log.debug("Break at %d to %d", brk.pc, brk.b)
        return True, brk


class Break(OperandNode):
    """Synthesized from ``branch F; pop``; takes the loop's result value."""

    yields = PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        dec.p.write("break")
        value = self.ins[0]
        if not value.is_nil(dec):
            dec.p.write(" ")
            _render_operand(dec, value, PREC_ASSIGN)

    def describe(self) -> str:
        return f"Break pc:{self.b}"


class Dup(OperandNode):
    yields = 2
    has_source = False


class SetLexScope(OperandNode):
    """Closes a function literal over the current environment."""

    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], dec.precedence)


class SetVar(OperandNode):
    yields = PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        dec.p.write(dec.local_name(self.b) + " := ")
        _render_operand(dec, self.ins[0], PREC_ASSIGN)


class FindAndSetVar(OperandNode):
    yields = PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        dec.write_literal(self.b, tick=False)
        dec.p.write(" := ")
        _render_operand(dec, self.ins[0], PREC_ASSIGN)


class IncrVar(OperandNode):
    yields = 2
    has_source = False


class IterNext(OperandNode):
    yields = PROVIDES_NONE
    has_source = False


class IterDone(OperandNode):
    has_source = False


class Not(OperandNode):
    def emit(self, dec: Decompiler) -> None:
        parens = dec.precedence > PREC_NOT
        if parens:
            dec.p.write("(")
        dec.p.write("not ")
        _render_operand(dec, self.ins[0], PREC_NOT)
        if parens:
            dec.p.write(")")


@dataclass(eq=False)
class UnaryFunction(OperandNode):
    """A built-in printed as a one-argument call, e.g. ``length(x)``."""

    function: str = ""

    def emit(self, dec: Decompiler) -> None:
        dec.p.write(self.function)
        _render_list(dec, self.ins, "(", ")")


class Stringer(OperandNode):
    """String concatenation; the operand is the array of parts."""

    def _parts(self, dec: Decompiler) -> Optional[list[Node]]:
        array = self.ins[0]
        if isinstance(array, MakeArray) and array.attached and array.is_plain(dec):
            return array.items
        return None

    def emit(self, dec: Decompiler) -> None:
        parts = self._parts(dec)
        if not parts:
            dec.p.write("Stringer")
            _render_list(dec, self.ins, "(", ")")
            return

        parens = dec.precedence > PREC_STRINGER
        if parens:
            dec.p.write("(")
        _render_operand(dec, parts[0], PREC_STRINGER)
        i = 1
        while i < len(parts):
            if i + 1 < len(parts) and _is_space(dec, parts[i]):
                dec.p.write(" && ")
                i += 1
            else:
                dec.p.write(" & ")
            _render_operand(dec, parts[i], PREC_STRINGER + 1)
            i += 1
        if parens:
            dec.p.write(")")


def _is_space(dec: Decompiler, node: Node) -> bool:
    return isinstance(node, PushLiteral) and node.literal(dec) == " "


class BinaryNode(OperandNode):
    @property
    def arity(self) -> int:
        return 2


@dataclass(eq=False)
class BinaryOperator(BinaryNode):
    op: str = ""
    precedence: int = 0

    def emit(self, dec: Decompiler) -> None:
        parens = dec.precedence > self.precedence
        if parens:
            dec.p.write("(")
        _render_operand(dec, self.ins[0], self.precedence)
        dec.p.write(f" {self.op} ")
        _render_operand(dec, self.ins[1], self.precedence + 1)
        if parens:
            dec.p.write(")")

    def describe(self) -> str:
        return f"BinaryOperator {self.op}"


@dataclass(eq=False)
class BinaryFunction(BinaryNode):
    function: str = ""

    def emit(self, dec: Decompiler) -> None:
        dec.p.write(self.function)
        _render_list(dec, self.ins, "(", ")")


class NewArray(BinaryNode):
    has_source = False


class NewIterator(BinaryNode):
    has_source = False


def _render_path(dec: Decompiler, node: Node) -> None:
    if isinstance(node, PushLiteral):
        path = format_path(node.literal(dec))
        if path is not None:
            dec.p.write(path)
            return
    dec.p.write("(")
    _render_operand(dec, node, PREC_ASSIGN)
    dec.p.write(")")


class GetPath(BinaryNode):
    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], PREC_PATH)
        dec.p.write(".")
        _render_path(dec, self.ins[1])


class HasPath(BinaryNode):
    def emit(self, dec: Decompiler) -> None:
        parens = dec.precedence > PREC_EXISTS
        if parens:
            dec.p.write("(")
        _render_operand(dec, self.ins[0], PREC_PATH)
        dec.p.write(".")
        _render_path(dec, self.ins[1])
        dec.p.write(" exists")
        if parens:
            dec.p.write(")")


class ARef(BinaryNode):
    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], PREC_AREF)
        dec.p.write("[")
        _render_operand(dec, self.ins[1], PREC_ASSIGN)
        dec.p.write("]")


class TernaryNode(OperandNode):
    @property
    def arity(self) -> int:
        return 3


class SetPath(TernaryNode):
    """``obj.path := value``; with B=1 the value stays on the stack."""

    @property
    def yields(self) -> int:
        return 1 if self.b else PROVIDES_NONE

    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], PREC_PATH)
        dec.p.write(".")
        _render_path(dec, self.ins[1])
        dec.p.write(" := ")
        _render_operand(dec, self.ins[2], PREC_ASSIGN)


class SetARef(TernaryNode):
    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[0], PREC_AREF)
        dec.p.write("[")
        _render_operand(dec, self.ins[1], PREC_ASSIGN)
        dec.p.write("] := ")
        _render_operand(dec, self.ins[2], PREC_ASSIGN)


class BranchLoop(TernaryNode):
    yields = PROVIDES_NONE
    has_source = False

    def describe(self) -> str:
        return f"BranchLoop pc:{self.b}"


class BranchIfTrue(OperandNode):
    yields = BRANCH_IF_TRUE
    has_source = False

    def describe(self) -> str:
        return f"BranchIfTrue pc:{self.b}"

    def resolve_control_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        # branch C; target B; stmt*; target C; branch-if-true(cond) B
        if not self.attached or self.b > self.pc:
            return False, self.next
        cond_target = self.prev
        if not isinstance(cond_target, JumpTarget):
            return False, self.next
        count = 0
        node = cond_target.prev
        while node.is_statement:
            count += 1
            node = node.prev
        body_target = node
        if (
            not isinstance(body_target, JumpTarget)
            or body_target.pc != self.b
            or not body_target.contains_only(self.pc)
        ):
            return False, self.next
        head = body_target.prev
        if (
            not isinstance(head, Branch)
            or head.b != cond_target.pc
            or not cond_target.contains_only(head.pc)
        ):
            return False, self.next

        body = _detach_run(body_target.next, count)
        dec.release_target(body_target, self.pc)
        dec.release_target(cond_target, head.pc)
        head.unlink()
        condition = self.ins.pop()

        # The value of a while loop is the nil pushed right after it.  If a
        # consumer already took that nil, the loop takes its place.
        following = self.next
        host, index = None, -1
        if isinstance(following, OperandNode):
            later = [i for i, op in enumerate(following.ins) if op.pc > self.pc]
            if later and following.ins[later[0]].is_nil(dec):
                host, index = following, later[0]

        yields_value = host is not None
        if isinstance(following, PushConst) and following.is_nil(dec):
            following.unlink()
            yields_value = True

        node = WhileNode(head.pc, condition=condition, body=body, yields_value=yields_value)
        log.debug("While at %d with %d statements", node.pc, count)
        if host is not None:
            self.unlink()
            host.ins[index] = node
            return True, host
        self.replace_with(node)
        return True, node


class BranchIfFalse(OperandNode):
    yields = BRANCH_IF_FALSE
    has_source = False

    def describe(self) -> str:
        return f"BranchIfFalse pc:{self.b}"

    def resolve_control_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        if not self.attached:
            return False, self.next

        # then-branch: statements, optionally ending in one expression
        returns_value = False
        count_if = 0
        node = self.next
        while node.is_statement:
            count_if += 1
            node = node.next
        if node.is_expr:
            returns_value = True
            count_if += 1
            node = node.next

        branch = else_target = None
        count_else = 0
        if node.provides == BRANCH:
            # ... branch B; target A; stmt*; target B
            branch = node
            else_target = branch.next
            if not isinstance(else_target, JumpTarget) or not else_target.contains_only(
                self.pc
            ):
                return False, self.next
            node = else_target.next
            while node.is_statement:
                count_else += 1
                node = node.next
            if returns_value:
                if not node.is_expr:
                    return False, self.next
                count_else += 1
                node = node.next
            if not isinstance(node, JumpTarget) or not node.contains_origin(branch.pc):
                return False, self.next
            end_target, end_origin = node, branch.pc
        elif isinstance(node, JumpTarget) and node.contains_origin(self.pc):
            end_target, end_origin = node, self.pc
        else:
            return False, self.next

        condition = self.ins.pop()
        if_branch = _detach_run(self.next, count_if)
        if branch is not None:
            branch.unlink()
            dec.release_target(else_target, self.pc)
        else_branch = _detach_run(self.next, count_else)
        dec.release_target(end_target, end_origin)

        node = IfNode(
            self.pc,
            condition=condition,
            if_branch=if_branch,
            else_branch=else_branch,
            returns_value=returns_value,
        )
        self.replace_with(node)
        log.debug(
            "If at %d: %d then, %d else%s",
            self.pc,
            count_if,
            count_else,
            " (expression)" if returns_value else "",
        )
        return True, node


# ---------------------------------------------------------------------------
# Variable-arity nodes
# ---------------------------------------------------------------------------


# call operators the compiler emits as a function call by name
_CALL_OPERATORS = {
    "<<": ("<<", PREC_SHIFT),
    ">>": (">>", PREC_SHIFT),
    "mod": ("mod", PREC_MULTIPLY),
}


class Call(OperandNode):
    """``name(args)``; the last operand is the function name."""

    @property
    def arity(self) -> int:
        return self.b + 1

    def resolve_data_flow(self, dec: Decompiler) -> tuple[bool, Optional[Node]]:
        if not self.attached and self.arity == 3:
            name = self.prev
            if (
                isinstance(name, PushLiteral)
                and name.prev.is_expr
                and name.prev.prev.is_expr
                and name.is_symbol(dec)
            ):
                operator = _CALL_OPERATORS.get(name.literal(dec).name.lower())
                if operator is not None:
                    node = BinaryOperator(
                        self.pc, self.a, self.b, op=operator[0], precedence=operator[1]
                    )
                    name.unlink()
                    self.replace_with(node)
                    node.take_operands(dec)
                    log.debug("Call to %s at %d is an operator", operator[0], self.pc)
                    return True, node
        return super().resolve_data_flow(dec)

    def emit(self, dec: Decompiler) -> None:
        name = self.ins[-1]
        if isinstance(name, PushLiteral):
            name.emit_bare(dec)
        else:
            _render_operand(dec, name, PREC_SEND)
        _render_list(dec, self.ins[:-1], "(", ")")


class Invoke(OperandNode):
    """``call fn with (args)``; the last operand is the function value."""

    @property
    def arity(self) -> int:
        return self.b + 1

    def emit(self, dec: Decompiler) -> None:
        dec.p.write("call ")
        _render_operand(dec, self.ins[-1], PREC_SEND)
        dec.p.write(" with ")
        _render_list(dec, self.ins[:-1], "(", ")")


@dataclass(eq=False)
class Send(OperandNode):
    """``receiver:message(args)``; receiver and message come last."""

    if_defined: bool = False

    @property
    def arity(self) -> int:
        return self.b + 2

    def emit(self, dec: Decompiler) -> None:
        _render_operand(dec, self.ins[-2], PREC_SEND)
        dec.p.write(":?" if self.if_defined else ":")
        message = self.ins[-1]
        if isinstance(message, PushLiteral):
            message.emit_bare(dec)
        else:
            _render_operand(dec, message, PREC_SEND)
        _render_list(dec, self.ins[:-2], "(", ")")


@dataclass(eq=False)
class Resend(OperandNode):
    """``inherited:message(args)``."""

    if_defined: bool = False

    @property
    def arity(self) -> int:
        return self.b + 1

    def emit(self, dec: Decompiler) -> None:
        dec.p.write("inherited:?" if self.if_defined else "inherited:")
        message = self.ins[-1]
        if isinstance(message, PushLiteral):
            message.emit_bare(dec)
        else:
            _render_operand(dec, message, PREC_SEND)
        _render_list(dec, self.ins[:-1], "(", ")")


class MakeFrame(OperandNode):
    """``{slot: value, ...}``; the last operand is the frame map literal."""

    @property
    def arity(self) -> int:
        return self.b + 1

    def _slot_names(self, dec: Decompiler) -> list[str]:
        frame_map = self.ins[-1]
        if isinstance(frame_map, PushLiteral):
            value = frame_map.literal(dec)
            if isinstance(value, ArrayObject):
                # slot 0 of a frame map holds flags and the supermap
                return [format_ref(name, tick=False) for name in value.items[1:]]
        return []

    def take_operands(self, dec: Decompiler) -> bool:
        if not super().take_operands(dec):
            return False
        named = len(self._slot_names(dec))
        if named < self.b:
            dec.diagnose(
                f"frame at {self.pc} has {self.b} values but its map names "
                f"only {named} slots"
            )
        return True

    def emit(self, dec: Decompiler) -> None:
        p = dec.p
        names = self._slot_names(dec)
        values = self.ins[:-1]
        # unnamed values keep a placeholder name instead of being dropped
        names += [f"slot{i}" for i in range(len(names), len(values))]
        p.write("{")
        for i, name in enumerate(names):
            p.begin()
            p.write(f"{name}: ")
            if i < len(values):
                _render_operand(dec, values[i], PREC_ASSIGN)
            else:
                p.write("nil")
            p.divider(", ")
        p.clear_divider()
        p.write("}")


class MakeArray(OperandNode):
    """``[a, b]`` or ``[class: a, b]``; the last operand is the class."""

    @property
    def arity(self) -> int:
        return self.b + 1

    @property
    def items(self) -> list[Node]:
        return self.ins[:-1]

    def is_plain(self, dec: Decompiler) -> bool:
        klass = self.ins[-1]
        return isinstance(klass, PushLiteral) and klass.literal(dec) == ARRAY_CLASS

    def emit(self, dec: Decompiler) -> None:
        if self.is_plain(dec):
            _render_list(dec, self.items, "[", "]")
            return
        klass = self.ins[-1]
        dec.p.write("[")
        if isinstance(klass, PushLiteral):
            klass.emit_bare(dec)
        else:
            _render_operand(dec, klass, PREC_ASSIGN)
        dec.p.write(": ")
        _render_list(dec, self.items, "", "]")


class NewHandlers(OperandNode):
    yields = PROVIDES_NONE
    has_source = False

    @property
    def arity(self) -> int:
        return 2 * self.b


# ---------------------------------------------------------------------------
# Composite nodes
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class LoopNode(Node):
    """``loop ...``; leaves its break value on the stack."""

    body: list[Node] = field(default_factory=list)

    def __post_init__(self):
        _check_detached(self.body)

    @property
    def provides(self) -> int:
        return 1

    @property
    def resolved(self) -> bool:
        return True

    def children(self) -> list[Node]:
        return list(self.body)

    def has_break(self) -> bool:
        pending = list(self.body)
        while pending:
            node = pending.pop()
            if isinstance(node, Break):
                return True
            # a nested loop owns its own breaks
            if not isinstance(node, (LoopNode, WhileNode)):
                pending.extend(node.children())
        return False

    def emit(self, dec: Decompiler) -> None:
        p = dec.p
        if len(self.body) > 1:
            p.write("loop begin")
            p.new_line(delta=+1)
            _render_statements(dec, self.body)
            p.begin(-1)
            p.write("end")
        elif self.body:
            p.write("loop")
            p.new_line(delta=+1)
            _render_statements(dec, self.body)
            p.end(-1)
        else:
            p.write("loop nil")


@dataclass(eq=False)
class WhileNode(Node):
    condition: Optional[Node] = None
    body: list[Node] = field(default_factory=list)
    yields_value: bool = False

    def __post_init__(self):
        _check_detached(self.body + [self.condition])

    @property
    def provides(self) -> int:
        return 1 if self.yields_value else PROVIDES_NONE

    @property
    def resolved(self) -> bool:
        return True

    def children(self) -> list[Node]:
        return [self.condition] + self.body

    def emit(self, dec: Decompiler) -> None:
        p = dec.p
        p.write("while ")
        _render_operand(dec, self.condition, PREC_ASSIGN)
        if len(self.body) > 1:
            p.write(" do begin")
            p.new_line(delta=+1)
            _render_statements(dec, self.body)
            p.begin(-1)
            p.write("end")
        elif self.body:
            p.write(" do")
            p.new_line(delta=+1)
            _render_statements(dec, self.body)
            p.end(-1)
        else:
            p.write(" do nil")


@dataclass(eq=False)
class IfNode(Node):
    """``if cond then ... [else ...]``; an expression if ``returns_value``."""

    condition: Optional[Node] = None
    if_branch: list[Node] = field(default_factory=list)
    else_branch: list[Node] = field(default_factory=list)
    returns_value: bool = False

    def __post_init__(self):
        _check_detached(self.if_branch + self.else_branch + [self.condition])

    @property
    def provides(self) -> int:
        return 1 if self.returns_value else PROVIDES_NONE

    @property
    def resolved(self) -> bool:
        return True

    def children(self) -> list[Node]:
        return [self.condition] + self.if_branch + self.else_branch

    def _else_is_nil(self, dec: Decompiler) -> bool:
        return len(self.else_branch) == 1 and self.else_branch[0].is_nil(dec)

    def emit(self, dec: Decompiler) -> None:
        p = dec.p
        blocks = len(self.if_branch) > 1 or len(self.else_branch) > 1
        if self.returns_value and not blocks:
            self._emit_inline(dec)
            return

        p.write("if ")
        _render_operand(dec, self.condition, PREC_ASSIGN)
        p.write(" then begin" if blocks else " then")
        p.new_line(delta=+1)
        _render_statements(dec, self.if_branch)
        if self.else_branch and not (self.returns_value and self._else_is_nil(dec)):
            if not blocks:
                p.clear_divider()
            p.begin(-1)
            p.write("end else begin" if blocks else "else")
            p.new_line(delta=+1)
            _render_statements(dec, self.else_branch)
        if blocks:
            p.begin(-1)
            p.write("end")
        else:
            p.end(-1)

    def _emit_inline(self, dec: Decompiler) -> None:
        p = dec.p
        parens = dec.precedence > PREC_ASSIGN
        if parens:
            p.write("(")
        p.write("if ")
        _render_operand(dec, self.condition, PREC_ASSIGN)
        p.write(" then ")
        _render_operand(dec, self.if_branch[0], PREC_ASSIGN)
        if self.else_branch and not self._else_is_nil(dec):
            p.write(" else ")
            _render_operand(dec, self.else_branch[0], PREC_ASSIGN)
        if parens:
            p.write(")")


# ---------------------------------------------------------------------------
# Instruction -> node
# ---------------------------------------------------------------------------

_SIMPLE_NODES = {
    SimpleOp.POP: Pop,
    SimpleOp.DUP: Dup,
    SimpleOp.RETURN: Return,
    SimpleOp.PUSH_SELF: PushSelf,
    SimpleOp.SET_LEX_SCOPE: SetLexScope,
    SimpleOp.ITER_NEXT: IterNext,
    SimpleOp.ITER_DONE: IterDone,
    SimpleOp.POP_HANDLERS: PopHandlers,
}

_BINARY_OPERATORS = {
    FuncOp.ADD: ("+", PREC_ADD),
    FuncOp.SUBTRACT: ("-", PREC_ADD),
    FuncOp.EQUALS: ("=", PREC_COMPARE),
    FuncOp.NOT_EQUALS: ("<>", PREC_COMPARE),
    FuncOp.MULTIPLY: ("*", PREC_MULTIPLY),
    FuncOp.DIVIDE: ("/", PREC_MULTIPLY),
    FuncOp.DIV: ("div", PREC_MULTIPLY),
    FuncOp.LESS_THAN: ("<", PREC_COMPARE),
    FuncOp.GREATER_THAN: (">", PREC_COMPARE),
    FuncOp.GREATER_OR_EQUAL: (">=", PREC_COMPARE),
    FuncOp.LESS_OR_EQUAL: ("<=", PREC_COMPARE),
}

_BINARY_FUNCTIONS = {
    FuncOp.BIT_AND: "bAnd",
    FuncOp.BIT_OR: "bOr",
    FuncOp.SET_CLASS: "SetClass",
    FuncOp.ADD_ARRAY_SLOT: "AddArraySlot",
}

_UNARY_FUNCTIONS = {
    FuncOp.BIT_NOT: "bNot",
    FuncOp.LENGTH: "length",
    FuncOp.CLONE: "clone",
    FuncOp.CLASS_OF: "ClassOf",
}

_FUNC_NODES = {
    FuncOp.AREF: ARef,
    FuncOp.SET_AREF: SetARef,
    FuncOp.NOT: Not,
    FuncOp.NEW_ITERATOR: NewIterator,
    FuncOp.STRINGER: Stringer,
    FuncOp.HAS_PATH: HasPath,
}

_CLASS_NODES = {
    OpClass.PUSH: PushLiteral,
    OpClass.PUSH_CONST: PushConst,
    OpClass.CALL: Call,
    OpClass.INVOKE: Invoke,
    OpClass.RESEND: Resend,
    OpClass.BRANCH: Branch,
    OpClass.BRANCH_IF_TRUE: BranchIfTrue,
    OpClass.BRANCH_IF_FALSE: BranchIfFalse,
    OpClass.FIND_VAR: FindVar,
    OpClass.GET_VAR: GetVar,
    OpClass.MAKE_FRAME: MakeFrame,
    OpClass.GET_PATH: GetPath,
    OpClass.SET_PATH: SetPath,
    OpClass.SET_VAR: SetVar,
    OpClass.FIND_AND_SET_VAR: FindAndSetVar,
    OpClass.INCR_VAR: IncrVar,
    OpClass.BRANCH_LOOP: BranchLoop,
    OpClass.NEW_HANDLERS: NewHandlers,
}


def make_node(pc: int, a: int, b: int) -> Node:
    """Create the node for instruction ``(a, b)`` at address *pc*.

    Unknown opcodes become a plain BytecodeNode, which never resolves.
    """
    if a == OpClass.SIMPLE:
        cls = _SIMPLE_NODES.get(b, BytecodeNode)
        return cls(pc, a, b)
    if a == OpClass.FUNC:
        if b in _BINARY_OPERATORS:
            op, precedence = _BINARY_OPERATORS[b]
            return BinaryOperator(pc, a, b, op=op, precedence=precedence)
        if b in _BINARY_FUNCTIONS:
            return BinaryFunction(pc, a, b, function=_BINARY_FUNCTIONS[b])
        if b in _UNARY_FUNCTIONS:
            return UnaryFunction(pc, a, b, function=_UNARY_FUNCTIONS[b])
        return _FUNC_NODES.get(b, BytecodeNode)(pc, a, b)
    if a == OpClass.MAKE_ARRAY:
        return (NewArray if b == NEW_ARRAY_OPERAND else MakeArray)(pc, a, b)
    if a == OpClass.SEND:
        return Send(pc, a, b)
    if a == OpClass.SEND_IF_DEFINED:
        return Send(pc, a, b, if_defined=True)
    if a == OpClass.RESEND_IF_DEFINED:
        return Resend(pc, a, b, if_defined=True)
    return _CLASS_NODES.get(a, BytecodeNode)(pc, a, b)
