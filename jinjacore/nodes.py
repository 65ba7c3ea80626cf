"""Syntax tree nodes for templates and expressions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List as PyList, Optional, Tuple, Union

from .tokens import Span


class KwargsMap(dict):
    """A mapping of keyword arguments, kept apart from ordinary maps."""

    def __repr__(self) -> str:
        return f"KwargsMap({dict.__repr__(self)})"


@dataclass
class Stmt:
    """Base class of statement nodes."""

    span: Span = field(default_factory=Span, kw_only=True)


@dataclass
class Expr:
    """Base class of expression nodes."""

    span: Span = field(default_factory=Span, kw_only=True)

    _DESCRIPTION: ClassVar[str] = "expression"

    def description(self) -> str:
        """Short human readable name of the kind of expression."""
        return self._DESCRIPTION


# -- statements -------------------------------------------------------------


@dataclass
class Template(Stmt):
    """Root template node."""

    children: PyList[Stmt] = field(default_factory=list)


@dataclass
class EmitExpr(Stmt):
    """Outputs the expression."""

    expr: Expr


@dataclass
class EmitRaw(Stmt):
    """Outputs raw template code."""

    raw: str


@dataclass
class ForLoop(Stmt):
    """A for loop."""

    target: Expr
    iter: Expr
    filter_expr: Optional[Expr] = None
    recursive: bool = False
    body: PyList[Stmt] = field(default_factory=list)
    else_body: PyList[Stmt] = field(default_factory=list)


@dataclass
class IfCond(Stmt):
    """An if/else condition."""

    expr: Expr
    true_body: PyList[Stmt] = field(default_factory=list)
    false_body: PyList[Stmt] = field(default_factory=list)


@dataclass
class WithBlock(Stmt):
    """A with block."""

    assignments: PyList[Tuple[Expr, Expr]] = field(default_factory=list)
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class Set(Stmt):
    """A set statement."""

    target: Expr
    expr: Expr


@dataclass
class SetBlock(Stmt):
    """A set capture statement."""

    target: Expr
    filter: Optional[Expr] = None
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class Block(Stmt):
    """A block for inheritance elements."""

    name: str
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class Extends(Stmt):
    """An extends statement."""

    name: Expr


@dataclass
class Include(Stmt):
    """An include statement."""

    name: Expr
    ignore_missing: bool = False


@dataclass
class AutoEscape(Stmt):
    """An auto escape control block."""

    enabled: Expr
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class FilterBlock(Stmt):
    """Applies filters to a block."""

    filter: Expr
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class Macro(Stmt):
    """Declares a macro."""

    name: str
    args: PyList[Expr] = field(default_factory=list)
    defaults: PyList[Expr] = field(default_factory=list)
    body: PyList[Stmt] = field(default_factory=list)


@dataclass
class CallBlock(Stmt):
    """A call block."""

    call: "Call"
    macro_decl: Macro


@dataclass
class Do(Stmt):
    """A do statement."""

    call: "Call"


@dataclass
class FromImport(Stmt):
    """A "from" import."""

    expr: Expr
    names: PyList[Tuple[Expr, Optional[Expr]]] = field(default_factory=list)


@dataclass
class Import(Stmt):
    """A full module import."""

    expr: Expr
    name: Expr


# -- expressions ------------------------------------------------------------


@dataclass
class Var(Expr):
    """Looks up a variable."""

    id: str

    _DESCRIPTION: ClassVar[str] = "variable"


@dataclass
class Const(Expr):
    """Loads a constant."""

    value: Any

    _DESCRIPTION: ClassVar[str] = "constant"


@dataclass
class Slice(Expr):
    """Represents a slice."""

    expr: Expr
    start: Optional[Expr] = None
    stop: Optional[Expr] = None
    step: Optional[Expr] = None


class UnaryOpKind(Enum):
    """A kind of unary operator."""

    NOT = "Not"
    NEG = "Neg"


@dataclass
class UnaryOp(Expr):
    """A unary operator expression."""

    op: UnaryOpKind
    expr: Expr


class BinOpKind(Enum):
    """A kind of binary operator."""

    EQ = "Eq"
    NE = "Ne"
    LT = "Lt"
    LTE = "Lte"
    GT = "Gt"
    GTE = "Gte"
    SC_AND = "ScAnd"
    SC_OR = "ScOr"
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    FLOOR_DIV = "FloorDiv"
    REM = "Rem"
    POW = "Pow"
    CONCAT = "Concat"
    IN = "In"


@dataclass
class BinOp(Expr):
    """A binary operator expression."""

    op: BinOpKind
    left: Expr
    right: Expr


@dataclass
class IfExpr(Expr):
    """An if expression."""

    test_expr: Expr
    true_expr: Expr
    false_expr: Optional[Expr] = None


@dataclass
class Filter(Expr):
    """A filter expression."""

    name: str
    expr: Optional[Expr] = None
    args: PyList[Expr] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "filter expression"


@dataclass
class Test(Expr):
    """A test expression."""

    __test__ = False

    name: str
    expr: Expr
    args: PyList[Expr] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "test expression"


@dataclass
class GetAttr(Expr):
    """An attribute lookup expression."""

    expr: Expr
    name: str


@dataclass
class GetItem(Expr):
    """An item lookup expression."""

    expr: Expr
    subscript_expr: Expr


@dataclass(frozen=True)
class FunctionCall:
    """A call of a named function."""

    name: str


@dataclass(frozen=True)
class MethodCall:
    """A call of a method on an object."""

    expr: Expr
    name: str


@dataclass(frozen=True)
class BlockCall:
    """A call of a block through ``self``."""

    name: str


@dataclass(frozen=True)
class ObjectCall:
    """A call of an arbitrary callable expression."""

    expr: Expr


CallType = Union[FunctionCall, MethodCall, BlockCall, ObjectCall]


@dataclass
class Call(Expr):
    """Calls something."""

    expr: Expr
    args: PyList[Expr] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "call"

    def identify_call(self) -> CallType:
        """Classifies the call as function, method, block or object call."""
        target = self.expr
        if isinstance(target, Var):
            return FunctionCall(target.id)
        if isinstance(target, GetAttr):
            inner = target.expr
            if isinstance(inner, Var) and inner.id == "self":
                return BlockCall(target.name)
            return MethodCall(inner, target.name)
        return ObjectCall(target)


def _all_const(exprs) -> bool:
    return all(isinstance(e, Const) for e in exprs)


@dataclass
class List(Expr):
    """Creates a list of values."""

    items: PyList[Expr] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "list literal"

    def as_const(self) -> Optional[PyList[Any]]:
        """The list's value when every item is a constant, else None."""
        if not _all_const(self.items):
            return None
        return [item.value for item in self.items]


@dataclass
class Kwargs(Expr):
    """Creates a map of keyword arguments."""

    pairs: PyList[Tuple[str, Expr]] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "keyword arguments"

    def as_const(self) -> Optional[KwargsMap]:
        """The keyword arguments when every value is a constant, else None."""
        if not _all_const(value for _, value in self.pairs):
            return None
        return KwargsMap((key, value.value) for key, value in self.pairs)


@dataclass
class Map(Expr):
    """Creates a map of values."""

    keys: PyList[Expr] = field(default_factory=list)
    values: PyList[Expr] = field(default_factory=list)

    _DESCRIPTION: ClassVar[str] = "map literal"

    def as_const(self) -> Optional[Dict[Any, Any]]:
        """The map's value when all keys and values are usable constants."""
        if not _all_const(self.keys) or not _all_const(self.values):
            return None
        rv: Dict[Any, Any] = {}
        for key, value in zip(self.keys, self.values):
            try:
                rv[key.value] = value.value
            except TypeError:
                return None
        return rv