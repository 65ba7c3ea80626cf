"""Low level instruction emission with jump patching and location tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from .instructions import (
    LOOP_FLAG_RECURSIVE,
    LOOP_FLAG_WITH_LOOP_VAR,
    MAX_LOCALS,
    Instruction,
    Instructions,
    Op,
)
from .tokens import Span

#: Identifier handed out once the cache of local ids is full.
NO_LOCAL_ID = 0xFF

#: Placeholder jump target until the real target is known.
_PENDING = -1


def get_local_id(ids: Dict[str, int], name: str) -> int:
    """Returns a cached id for a filter or test name, or ``NO_LOCAL_ID``."""
    existing = ids.get(name)
    if existing is not None:
        return existing
    if len(ids) >= MAX_LOCALS:
        return NO_LOCAL_ID
    next_id = len(ids)
    ids[name] = next_id
    return next_id


@dataclass
class _Branch:
    instr: int


@dataclass
class _Loop:
    instr: int


@dataclass
class _ScBool:
    instrs: List[int] = field(default_factory=list)


_PendingBlock = Union[_Branch, _Loop, _ScBool]


class Emitter:
    """Builds instructions for the VM and patches jump targets."""

    def __init__(self, name: str, source: str) -> None:
        self.instructions = Instructions(name, source)
        self.blocks: Dict[str, Instructions] = {}
        self.current_line = 0
        self.span_stack: List[Span] = []
        self.filter_local_ids: Dict[str, int] = {}
        self.test_local_ids: Dict[str, int] = {}
        self.raw_template_bytes = 0
        self.has_extends = False
        self._pending: List[_PendingBlock] = []

    def set_line(self, lineno: int) -> None:
        """Sets the current location's line."""
        self.current_line = lineno

    def set_line_from_span(self, span: Span) -> None:
        """Sets the current line from the start of a span."""
        self.set_line(span.start_line)

    def push_span(self, span: Span) -> None:
        """Pushes a span and moves the current line to it."""
        self.span_stack.append(span)
        self.set_line_from_span(span)

    def pop_span(self) -> None:
        """Pops the topmost span."""
        if self.span_stack:
            self.span_stack.pop()

    def add(self, instr: Instruction) -> int:
        """Adds an instruction at the current location."""
        if self.span_stack:
            span = self.span_stack[-1]
            if span.start_line == self.current_line:
                return self.instructions.add_with_span(instr, span)
        return self.instructions.add_with_line(instr, self.current_line)

    def add_with_span(self, instr: Instruction, span: Span) -> int:
        """Adds an instruction located at an explicit span."""
        return self.instructions.add_with_span(instr, span)

    def next_instruction(self) -> int:
        """Returns the index the next instruction will get."""
        return len(self.instructions)

    def _new_subgenerator(self) -> "Emitter":
        sub = type(self)(self.instructions.name, self.instructions.source)
        sub.current_line = self.current_line
        sub.span_stack = self.span_stack[-1:]
        return sub

    def _finish_subgenerator(self, sub: "Emitter") -> Instructions:
        self.current_line = sub.current_line
        instructions, blocks = sub.finish()
        self.blocks.update(blocks)
        return instructions

    def _patch(self, idx: int, target: int) -> None:
        self.instructions[idx] = Instruction(self.instructions[idx].op, target)

    def start_for_loop(self, with_loop_var: bool, recursive: bool) -> None:
        """Starts a for loop."""
        flags = 0
        if with_loop_var:
            flags |= LOOP_FLAG_WITH_LOOP_VAR
        if recursive:
            flags |= LOOP_FLAG_RECURSIVE
        self.add(Instruction(Op.PUSH_LOOP, flags))
        iter_instr = self.add(Instruction(Op.ITERATE, _PENDING))
        self._pending.append(_Loop(iter_instr))

    def end_for_loop(self, push_did_not_iterate: bool) -> None:
        """Ends the open for loop."""
        block = self._pending.pop() if self._pending else None
        if not isinstance(block, _Loop):
            raise RuntimeError("no open for loop")
        self.add(Instruction(Op.JUMP, block.instr))
        loop_end = self.next_instruction()
        if push_did_not_iterate:
            self.add(Instruction(Op.PUSH_DID_NOT_ITERATE))
        self.add(Instruction(Op.POP_FRAME))
        if self.instructions[block.instr].op is not Op.ITERATE:
            raise RuntimeError("loop does not start with an iterate instruction")
        self._patch(block.instr, loop_end)

    def start_if(self) -> None:
        """Begins an if conditional."""
        jump_instr = self.add(Instruction(Op.JUMP_IF_FALSE, _PENDING))
        self._pending.append(_Branch(jump_instr))

    def start_else(self) -> None:
        """Begins the else branch of an if conditional."""
        jump_instr = self.add(Instruction(Op.JUMP, _PENDING))
        self._end_condition(jump_instr + 1)
        self._pending.append(_Branch(jump_instr))

    def end_if(self) -> None:
        """Closes the current if block."""
        self._end_condition(self.next_instruction())

    def _end_condition(self, jump_target: int) -> None:
        block = self._pending.pop() if self._pending else None
        if not isinstance(block, _Branch):
            raise RuntimeError("no open conditional")
        if self.instructions[block.instr].op in (Op.JUMP_IF_FALSE, Op.JUMP):
            self._patch(block.instr, jump_target)

    def start_sc_bool(self) -> None:
        """Starts a short circuited bool block."""
        self._pending.append(_ScBool())

    def sc_bool(self, and_: bool) -> None:
        """Emits a short circuited bool operator."""
        block = self._pending[-1] if self._pending else None
        if not isinstance(block, _ScBool):
            raise RuntimeError("no open short circuit block")
        op = Op.JUMP_IF_FALSE_OR_POP if and_ else Op.JUMP_IF_TRUE_OR_POP
        block.instrs.append(self.instructions.add(Instruction(op, _PENDING)))

    def end_sc_bool(self) -> None:
        """Ends a short circuited bool block."""
        end = self.next_instruction()
        block = self._pending.pop() if self._pending else None
        if not isinstance(block, _ScBool):
            return
        for idx in block.instrs:
            if self.instructions[idx].op not in (
                Op.JUMP_IF_FALSE_OR_POP,
                Op.JUMP_IF_TRUE_OR_POP,
            ):
                raise RuntimeError("short circuit block holds a foreign jump")
            self._patch(idx, end)

    def buffer_size_hint(self) -> int:
        """Proposed initial buffer size: twice the raw bytes, rounded to a power of two."""
        size = self.raw_template_bytes * 2
        if size <= 1:
            return 1
        return 1 << (size - 1).bit_length()

    def finish(self) -> Tuple[Instructions, Dict[str, Instructions]]:
        """Returns the instructions and the compiled blocks."""
        if self._pending:
            raise RuntimeError("unfinished blocks remain")
        return self.instructions, self.blocks