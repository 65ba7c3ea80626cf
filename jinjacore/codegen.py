"""Compiles syntax tree nodes into VM instructions."""

from __future__ import annotations

from typing import Optional, Sequence

from . import nodes
from .emitter import _PENDING, Emitter, get_local_id
from .instructions import (
    MACRO_CALLER,
    UNDEFINED,
    CaptureMode,
    Instruction,
    Op,
)
from .meta import find_macro_closure

_BIN_OPS = {
    nodes.BinOpKind.EQ: Op.EQ,
    nodes.BinOpKind.NE: Op.NE,
    nodes.BinOpKind.LT: Op.LT,
    nodes.BinOpKind.LTE: Op.LTE,
    nodes.BinOpKind.GT: Op.GT,
    nodes.BinOpKind.GTE: Op.GTE,
    nodes.BinOpKind.ADD: Op.ADD,
    nodes.BinOpKind.SUB: Op.SUB,
    nodes.BinOpKind.MUL: Op.MUL,
    nodes.BinOpKind.DIV: Op.DIV,
    nodes.BinOpKind.FLOOR_DIV: Op.INT_DIV,
    nodes.BinOpKind.REM: Op.REM,
    nodes.BinOpKind.POW: Op.POW,
    nodes.BinOpKind.CONCAT: Op.STRING_CONCAT,
    nodes.BinOpKind.IN: Op.IN,
}

_SC_OPS = (nodes.BinOpKind.SC_AND, nodes.BinOpKind.SC_OR)


class CodeGenerator(Emitter):
    """Turns statements and expressions into instructions."""

    # -- statements -----------------------------------------------------

    def compile_stmt(self, stmt: nodes.Stmt) -> None:
        """Compiles a statement."""
        match stmt:
            case nodes.Template():
                self.set_line_from_span(stmt.span)
                self._compile_body(stmt.children)
                if self.has_extends:
                    self.add(Instruction(Op.RENDER_PARENT))
            case nodes.EmitExpr():
                self._compile_emit_expr(stmt)
            case nodes.EmitRaw():
                self.set_line_from_span(stmt.span)
                self.add(Instruction(Op.EMIT_RAW, stmt.raw))
                self.raw_template_bytes += len(stmt.raw.encode("utf-8"))
            case nodes.ForLoop():
                self._compile_for_loop(stmt)
            case nodes.IfCond():
                self._compile_if_stmt(stmt)
            case nodes.WithBlock():
                self.set_line_from_span(stmt.span)
                self.add(Instruction(Op.PUSH_WITH))
                for target, expr in stmt.assignments:
                    self.compile_expr(expr)
                    self.compile_assignment(target)
                self._compile_body(stmt.body)
                self.add(Instruction(Op.POP_FRAME))
            case nodes.Set():
                self.set_line_from_span(stmt.span)
                self.compile_expr(stmt.expr)
                self.compile_assignment(stmt.target)
            case nodes.SetBlock():
                self.set_line_from_span(stmt.span)
                self.add(Instruction(Op.BEGIN_CAPTURE, CaptureMode.CAPTURE))
                self._compile_body(stmt.body)
                self.add(Instruction(Op.END_CAPTURE))
                if stmt.filter is not None:
                    self.compile_expr(stmt.filter)
                self.compile_assignment(stmt.target)
            case nodes.AutoEscape():
                self.set_line_from_span(stmt.span)
                self.compile_expr(stmt.enabled)
                self.add(Instruction(Op.PUSH_AUTO_ESCAPE))
                self._compile_body(stmt.body)
                self.add(Instruction(Op.POP_AUTO_ESCAPE))
            case nodes.FilterBlock():
                self.set_line_from_span(stmt.span)
                self.add(Instruction(Op.BEGIN_CAPTURE, CaptureMode.CAPTURE))
                self._compile_body(stmt.body)
                self.add(Instruction(Op.END_CAPTURE))
                self.compile_expr(stmt.filter)
                self.add(Instruction(Op.EMIT))
            case nodes.Block():
                self._compile_block(stmt)
            case nodes.Import():
                self.add(Instruction(Op.BEGIN_CAPTURE, CaptureMode.DISCARD))
                self.add(Instruction(Op.PUSH_WITH))
                self.compile_expr(stmt.expr)
                self.add_with_span(Instruction(Op.INCLUDE, False), stmt.span)
                self.add(Instruction(Op.EXPORT_LOCALS))
                self.add(Instruction(Op.POP_FRAME))
                self.compile_assignment(stmt.name)
                self.add(Instruction(Op.END_CAPTURE))
            case nodes.FromImport():
                self.add(Instruction(Op.BEGIN_CAPTURE, CaptureMode.DISCARD))
                self.add(Instruction(Op.PUSH_WITH))
                self.compile_expr(stmt.expr)
                self.add_with_span(Instruction(Op.INCLUDE, False), stmt.span)
                for name, _ in stmt.names:
                    self.compile_expr(name)
                self.add(Instruction(Op.POP_FRAME))
                for name, alias in reversed(stmt.names):
                    self.compile_assignment(alias if alias is not None else name)
                self.add(Instruction(Op.END_CAPTURE))
            case nodes.Extends():
                self.set_line_from_span(stmt.span)
                self.compile_expr(stmt.name)
                self.add_with_span(Instruction(Op.LOAD_BLOCKS), stmt.span)
                self.has_extends = True
            case nodes.Include():
                self.set_line_from_span(stmt.span)
                self.compile_expr(stmt.name)
                self.add_with_span(
                    Instruction(Op.INCLUDE, stmt.ignore_missing), stmt.span
                )
            case nodes.Macro():
                self._compile_macro_expression(stmt)
                self.add(Instruction(Op.STORE_LOCAL, stmt.name))
            case nodes.CallBlock():
                self._compile_call(stmt.call, stmt.macro_decl)
                self.add(Instruction(Op.EMIT))
            case nodes.Do():
                self._compile_call(stmt.call, None)
            case _:
                raise TypeError(f"cannot compile statement {stmt!r}")

    def _compile_body(self, body: Sequence[nodes.Stmt]) -> None:
        for node in body:
            self.compile_stmt(node)

    def _compile_block(self, block: nodes.Block) -> None:
        self.set_line_from_span(block.span)
        sub = self._new_subgenerator()
        sub._compile_body(block.body)
        self.blocks[block.name] = self._finish_subgenerator(sub)
        self.add(Instruction(Op.CALL_BLOCK, block.name))

    def _compile_macro_expression(self, macro: nodes.Macro) -> None:
        arg_names = []
        for arg in macro.args:
            if not isinstance(arg, nodes.Var):
                raise ValueError(f"macro argument must be a variable, got {arg.description()}")
            arg_names.append(arg.id)

        self.set_line_from_span(macro.span)
        jump = self.add(Instruction(Op.JUMP, _PENDING))
        defaults = reversed(macro.defaults)
        for arg in reversed(macro.args):
            default = next(defaults, None)
            if default is not None:
                self.add(Instruction(Op.DUP_TOP))
                self.add(Instruction(Op.IS_UNDEFINED))
                self.start_if()
                self.add(Instruction(Op.DISCARD_TOP))
                self.compile_expr(default)
                self.end_if()
            self.compile_assignment(arg)
        self._compile_body(macro.body)
        self.add(Instruction(Op.RETURN))

        undeclared = find_macro_closure(macro)
        caller_reference = "caller" in undeclared
        undeclared.discard("caller")
        macro_instr = self.next_instruction()
        for name in sorted(undeclared):
            self.add(Instruction(Op.ENCLOSE, name))
        self.add(Instruction(Op.GET_CLOSURE))
        self.add(Instruction(Op.LOAD_CONST, arg_names))
        flags = MACRO_CALLER if caller_reference else 0
        self.add(Instruction(Op.BUILD_MACRO, macro.name, jump + 1, flags))
        self._patch(jump, macro_instr)

    def _compile_if_stmt(self, if_cond: nodes.IfCond) -> None:
        self.set_line_from_span(if_cond.span)
        self.compile_expr(if_cond.expr)
        self.start_if()
        self._compile_body(if_cond.true_body)
        if if_cond.false_body:
            self.start_else()
            self._compile_body(if_cond.false_body)
        self.end_if()

    def _compile_emit_expr(self, emit: nodes.EmitExpr) -> None:
        self.set_line_from_span(emit.span)
        expr = emit.expr
        if isinstance(expr, nodes.Call):
            match expr.identify_call():
                case nodes.FunctionCall(name="super") if not expr.args:
                    self.add_with_span(Instruction(Op.FAST_SUPER), expr.span)
                    return
                case nodes.FunctionCall(name="loop") if len(expr.args) == 1:
                    self.compile_expr(expr.args[0])
                    self.add(Instruction(Op.FAST_RECURSE))
                    return
                case nodes.BlockCall(name=name):
                    self.add(Instruction(Op.CALL_BLOCK, name))
                    return
        self.compile_expr(expr)
        self.add(Instruction(Op.EMIT))

    def _compile_for_loop(self, for_loop: nodes.ForLoop) -> None:
        self.set_line_from_span(for_loop.span)
        if for_loop.filter_expr is not None:
            # a filtered loop first builds the filtered list in a nested loop
            self.add(Instruction(Op.BUILD_LIST, 0))
            self.compile_expr(for_loop.iter)
            self.start_for_loop(False, False)
            self.add(Instruction(Op.DUP_TOP))
            self.compile_assignment(for_loop.target)
            self.compile_expr(for_loop.filter_expr)
            self.start_if()
            self.add(Instruction(Op.LIST_APPEND))
            self.start_else()
            self.add(Instruction(Op.DISCARD_TOP))
            self.end_if()
            self.end_for_loop(False)
        else:
            self.compile_expr(for_loop.iter)
        self.start_for_loop(True, for_loop.recursive)
        self.compile_assignment(for_loop.target)
        self._compile_body(for_loop.body)
        self.end_for_loop(bool(for_loop.else_body))
        if for_loop.else_body:
            self.start_if()
            self._compile_body(for_loop.else_body)
            self.end_if()

    # -- assignments ----------------------------------------------------

    def compile_assignment(self, expr: nodes.Expr) -> None:
        """Compiles an assignment target."""
        match expr:
            case nodes.Var():
                self.add(Instruction(Op.STORE_LOCAL, expr.id))
            case nodes.List():
                self.push_span(expr.span)
                self.add(Instruction(Op.UNPACK_LIST, len(expr.items)))
                for item in expr.items:
                    self.compile_assignment(item)
                self.pop_span()
            case _:
                raise ValueError(f"cannot assign to {expr.description()}")

    # -- expressions ----------------------------------------------------

    def compile_expr(self, expr: nodes.Expr) -> None:
        """Compiles an expression."""
        match expr:
            case nodes.Var():
                self.set_line_from_span(expr.span)
                self.add(Instruction(Op.LOOKUP, expr.id))
            case nodes.Const():
                self.set_line_from_span(expr.span)
                self.add(Instruction(Op.LOAD_CONST, expr.value))
            case nodes.Slice():
                self.push_span(expr.span)
                self.compile_expr(expr.expr)
                self._compile_opt_or_const(expr.start, 0)
                self._compile_opt_or_const(expr.stop, None)
                self._compile_opt_or_const(expr.step, 1)
                self.add(Instruction(Op.SLICE))
                self.pop_span()
            case nodes.UnaryOp():
                self.set_line_from_span(expr.span)
                self.compile_expr(expr.expr)
                if expr.op is nodes.UnaryOpKind.NOT:
                    self.add(Instruction(Op.NOT))
                else:
                    self.add_with_span(Instruction(Op.NEG), expr.span)
            case nodes.BinOp():
                self._compile_bin_op(expr)
            case nodes.IfExpr():
                self.set_line_from_span(expr.span)
                self.compile_expr(expr.test_expr)
                self.start_if()
                self.compile_expr(expr.true_expr)
                self.start_else()
                self._compile_opt_or_const(expr.false_expr, UNDEFINED)
                self.end_if()
            case nodes.Filter():
                self.push_span(expr.span)
                if expr.expr is not None:
                    self.compile_expr(expr.expr)
                for arg in expr.args:
                    self.compile_expr(arg)
                local_id = get_local_id(self.filter_local_ids, expr.name)
                self.add(
                    Instruction(Op.APPLY_FILTER, expr.name, len(expr.args) + 1, local_id)
                )
                self.pop_span()
            case nodes.Test():
                self.push_span(expr.span)
                self.compile_expr(expr.expr)
                for arg in expr.args:
                    self.compile_expr(arg)
                local_id = get_local_id(self.test_local_ids, expr.name)
                self.add(
                    Instruction(Op.PERFORM_TEST, expr.name, len(expr.args) + 1, local_id)
                )
                self.pop_span()
            case nodes.GetAttr():
                self.push_span(expr.span)
                self.compile_expr(expr.expr)
                self.add(Instruction(Op.GET_ATTR, expr.name))
                self.pop_span()
            case nodes.GetItem():
                self.push_span(expr.span)
                self.compile_expr(expr.expr)
                self.compile_expr(expr.subscript_expr)
                self.add(Instruction(Op.GET_ITEM))
                self.pop_span()
            case nodes.Call():
                self._compile_call(expr, None)
            case nodes.List():
                value = expr.as_const()
                if value is not None:
                    self.add(Instruction(Op.LOAD_CONST, value))
                else:
                    self.set_line_from_span(expr.span)
                    for item in expr.items:
                        self.compile_expr(item)
                    self.add(Instruction(Op.BUILD_LIST, len(expr.items)))
            case nodes.Map():
                value = expr.as_const()
                if value is not None:
                    self.add(Instruction(Op.LOAD_CONST, value))
                else:
                    if len(expr.keys) != len(expr.values):
                        raise ValueError("map literal has unequal keys and values")
                    self.set_line_from_span(expr.span)
                    for key, item in zip(expr.keys, expr.values):
                        self.compile_expr(key)
                        self.compile_expr(item)
                    self.add(Instruction(Op.BUILD_MAP, len(expr.keys)))
            case nodes.Kwargs():
                value = expr.as_const()
                if value is not None:
                    self.add(Instruction(Op.LOAD_CONST, value))
                else:
                    self.set_line_from_span(expr.span)
                    self._compile_kwarg_pairs(expr)
                    self.add(Instruction(Op.BUILD_KWARGS, len(expr.pairs)))
            case _:
                raise TypeError(f"cannot compile expression {expr!r}")

    def _compile_opt_or_const(self, expr: Optional[nodes.Expr], default) -> None:
        if expr is not None:
            self.compile_expr(expr)
        else:
            self.add(Instruction(Op.LOAD_CONST, default))

    def _compile_kwarg_pairs(self, kwargs: nodes.Kwargs) -> None:
        for key, value in kwargs.pairs:
            self.add(Instruction(Op.LOAD_CONST, key))
            self.compile_expr(value)

    def _compile_call(self, call: nodes.Call, caller: Optional[nodes.Macro]) -> None:
        self.push_span(call.span)
        match call.identify_call():
            case nodes.FunctionCall(name=name):
                count = self._compile_call_args(call.args, caller)
                self.add(Instruction(Op.CALL_FUNCTION, name, count))
            case nodes.BlockCall(name=name):
                self.add(Instruction(Op.BEGIN_CAPTURE, CaptureMode.CAPTURE))
                self.add(Instruction(Op.CALL_BLOCK, name))
                self.add(Instruction(Op.END_CAPTURE))
            case nodes.MethodCall(expr=target, name=name):
                self.compile_expr(target)
                count = self._compile_call_args(call.args, caller)
                self.add(Instruction(Op.CALL_METHOD, name, count + 1))
            case nodes.ObjectCall(expr=target):
                self.compile_expr(target)
                count = self._compile_call_args(call.args, caller)
                self.add(Instruction(Op.CALL_OBJECT, count + 1))
        self.pop_span()

    def _compile_call_args(
        self, args: Sequence[nodes.Expr], caller: Optional[nodes.Macro]
    ) -> int:
        if caller is not None:
            return self._compile_call_args_with_caller(args, caller)
        for arg in args:
            self.compile_expr(arg)
        return len(args)

    def _compile_call_args_with_caller(
        self, args: Sequence[nodes.Expr], caller: nodes.Macro
    ) -> int:
        injected_caller = False
        # add the caller to already existing keyword arguments if there are any
        for arg in args:
            if isinstance(arg, nodes.Kwargs):
                self.set_line_from_span(arg.span)
                self._compile_kwarg_pairs(arg)
                self.add(Instruction(Op.LOAD_CONST, "caller"))
                self._compile_macro_expression(caller)
                self.add(Instruction(Op.BUILD_KWARGS, len(arg.pairs) + 1))
                injected_caller = True
            else:
                self.compile_expr(arg)
        if injected_caller:
            return len(args)
        self.add(Instruction(Op.LOAD_CONST, "caller"))
        self._compile_macro_expression(caller)
        self.add(Instruction(Op.BUILD_KWARGS, 1))
        return len(args) + 1

    def _compile_bin_op(self, expr: nodes.BinOp) -> None:
        self.push_span(expr.span)
        if expr.op in _SC_OPS:
            self.start_sc_bool()
            self.compile_expr(expr.left)
            self.sc_bool(expr.op is nodes.BinOpKind.SC_AND)
            self.compile_expr(expr.right)
            self.end_sc_bool()
        else:
            self.compile_expr(expr.left)
            self.compile_expr(expr.right)
            self.add(Instruction(_BIN_OPS[expr.op]))
        self.pop_span()