"""Instructions for the template VM and the container that locates them."""

from __future__ import annotations

from bisect import bisect_right
from enum import Enum
from typing import Any, List, Optional, Tuple

from .tokens import Span

#: This loop has the loop var.
LOOP_FLAG_WITH_LOOP_VAR = 1
#: This loop is recursive.
LOOP_FLAG_RECURSIVE = 2
#: This macro uses the caller var.
MACRO_CALLER = 2
#: The maximum number of filters/tests that can be cached.
MAX_LOCALS = 50


class Op(Enum):
    """Operation codes of the VM."""

    EMIT_RAW = "EmitRaw"
    STORE_LOCAL = "StoreLocal"
    LOOKUP = "Lookup"
    GET_ATTR = "GetAttr"
    GET_ITEM = "GetItem"
    SLICE = "Slice"
    LOAD_CONST = "LoadConst"
    BUILD_MAP = "BuildMap"
    BUILD_KWARGS = "BuildKwargs"
    BUILD_LIST = "BuildList"
    UNPACK_LIST = "UnpackList"
    LIST_APPEND = "ListAppend"
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    INT_DIV = "IntDiv"
    REM = "Rem"
    POW = "Pow"
    NEG = "Neg"
    EQ = "Eq"
    NE = "Ne"
    GT = "Gt"
    GTE = "Gte"
    LT = "Lt"
    LTE = "Lte"
    NOT = "Not"
    STRING_CONCAT = "StringConcat"
    IN = "In"
    APPLY_FILTER = "ApplyFilter"
    PERFORM_TEST = "PerformTest"
    EMIT = "Emit"
    PUSH_LOOP = "PushLoop"
    PUSH_WITH = "PushWith"
    ITERATE = "Iterate"
    PUSH_DID_NOT_ITERATE = "PushDidNotIterate"
    POP_FRAME = "PopFrame"
    JUMP = "Jump"
    JUMP_IF_FALSE = "JumpIfFalse"
    JUMP_IF_FALSE_OR_POP = "JumpIfFalseOrPop"
    JUMP_IF_TRUE_OR_POP = "JumpIfTrueOrPop"
    PUSH_AUTO_ESCAPE = "PushAutoEscape"
    POP_AUTO_ESCAPE = "PopAutoEscape"
    BEGIN_CAPTURE = "BeginCapture"
    END_CAPTURE = "EndCapture"
    CALL_FUNCTION = "CallFunction"
    CALL_METHOD = "CallMethod"
    CALL_OBJECT = "CallObject"
    DUP_TOP = "DupTop"
    DISCARD_TOP = "DiscardTop"
    FAST_SUPER = "FastSuper"
    FAST_RECURSE = "FastRecurse"
    CALL_BLOCK = "CallBlock"
    LOAD_BLOCKS = "LoadBlocks"
    RENDER_PARENT = "RenderParent"
    INCLUDE = "Include"
    EXPORT_LOCALS = "ExportLocals"
    BUILD_MACRO = "BuildMacro"
    RETURN = "Return"
    IS_UNDEFINED = "IsUndefined"
    ENCLOSE = "Enclose"
    GET_CLOSURE = "GetClosure"


class CaptureMode(Enum):
    """Whether captured output is kept or thrown away."""

    CAPTURE = "Capture"
    DISCARD = "Discard"


class Undefined:
    """The single undefined value; it is falsy."""

    _instance: Optional["Undefined"] = None

    def __new__(cls) -> "Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "Undefined"


UNDEFINED = Undefined()


def _format_arg(arg: Any) -> str:
    if isinstance(arg, Enum):
        return str(arg.value)
    return repr(arg)


class Instruction:
    """One VM instruction: an opcode and its arguments."""

    __slots__ = ("op", "args")

    def __init__(self, op: Op, *args: Any) -> None:
        self.op = op
        self.args: Tuple[Any, ...] = args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Instruction):
            return NotImplemented
        return self.op is other.op and self.args == other.args

    def __hash__(self) -> int:
        return hash((self.op, self.args))

    def __repr__(self) -> str:
        if not self.args:
            return self.op.value
        return f"{self.op.value}({', '.join(_format_arg(a) for a in self.args)})"


class Instructions:
    """A list of instructions that remembers lines and spans."""

    def __init__(self, name: str, source: str) -> None:
        self.name = name
        self.source = source
        self._instructions: List[Instruction] = []
        self._line_starts: List[int] = []
        self._lines: List[int] = []
        self._span_starts: List[int] = []
        self._spans: List[Optional[Span]] = []

    def __len__(self) -> int:
        return len(self._instructions)

    def __getitem__(self, idx: int) -> Instruction:
        return self._instructions[idx]

    def __setitem__(self, idx: int, instr: Instruction) -> None:
        self._instructions[idx] = instr

    def get(self, idx: int) -> Optional[Instruction]:
        """Returns the instruction at ``idx`` or None when out of range."""
        if 0 <= idx < len(self._instructions):
            return self._instructions[idx]
        return None

    def add(self, instr: Instruction) -> int:
        """Appends an instruction and returns its index."""
        self._instructions.append(instr)
        return len(self._instructions) - 1

    def _add_line_record(self, instr: int, line: int) -> None:
        if not self._lines or self._lines[-1] != line:
            self._line_starts.append(instr)
            self._lines.append(line)

    def add_with_line(self, instr: Instruction, line: int) -> int:
        """Appends an instruction located at ``line``."""
        rv = self.add(instr)
        self._add_line_record(rv, line)
        if self._spans and self._spans[-1] is not None:
            self._span_starts.append(rv)
            self._spans.append(None)
        return rv

    def add_with_span(self, instr: Instruction, span: Span) -> int:
        """Appends an instruction located at ``span``."""
        rv = self.add(instr)
        if not self._spans or self._spans[-1] != span:
            self._span_starts.append(rv)
            self._spans.append(span)
        self._add_line_record(rv, span.start_line)
        return rv

    def get_line(self, idx: int) -> Optional[int]:
        """Looks up the line for an instruction."""
        pos = bisect_right(self._line_starts, idx)
        return self._lines[pos - 1] if pos else None

    def get_span(self, idx: int) -> Optional[Span]:
        """Looks up the span for an instruction."""
        pos = bisect_right(self._span_starts, idx)
        return self._spans[pos - 1] if pos else None

    def get_referenced_names(self, idx: int) -> List[str]:
        """Names referenced in the current block, walking back from ``idx``."""
        rv: List[str] = []
        if not self._instructions:
            return rv
        idx = min(idx, len(self._instructions) - 1)
        for instr in reversed(self._instructions[: idx + 1]):
            if instr.op in (Op.LOOKUP, Op.STORE_LOCAL, Op.CALL_FUNCTION):
                name = instr.args[0]
            elif instr.op is Op.PUSH_LOOP and instr.args[0] & LOOP_FLAG_WITH_LOOP_VAR:
                name = "loop"
            elif instr.op in (Op.PUSH_LOOP, Op.PUSH_WITH):
                break
            else:
                continue
            if name not in rv:
                rv.append(name)
        return rv

    def dump(self) -> str:
        """Returns a listing of the instructions with line markers."""
        entries = []
        last_line: Optional[int] = None
        for idx, instr in enumerate(self._instructions):
            line = self.get_line(idx)
            entry = f"{idx:05} | {instr!r}"
            if line is not None and line != last_line:
                entry += f"  [line {line}]"
            entries.append(entry)
            last_line = line
        return "\n".join(entries)