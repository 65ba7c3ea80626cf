"""Static analysis helpers over the syntax tree."""

from __future__ import annotations

from typing import Iterable, List, Optional, Set as PySet

from . import nodes


class _AssignmentTracker:
    """Tracks assigned names per scope and collects unassigned references."""

    def __init__(self) -> None:
        self.out: PySet[str] = set()
        self._assigned: List[PySet[str]] = [set()]

    def is_assigned(self, name: str) -> bool:
        return any(name in scope for scope in self._assigned)

    def assign(self, name: str) -> None:
        self._assigned[-1].add(name)

    def push(self) -> None:
        self._assigned.append(set())

    def pop(self) -> None:
        self._assigned.pop()

    # -- expressions ----------------------------------------------------

    def visit_opt(self, expr: Optional[nodes.Expr]) -> None:
        if expr is not None:
            self.visit(expr)

    def visit_all(self, exprs: Iterable[nodes.Expr]) -> None:
        for expr in exprs:
            self.visit(expr)

    def visit(self, expr: nodes.Expr) -> None:
        if isinstance(expr, nodes.Var):
            if not self.is_assigned(expr.id):
                self.out.add(expr.id)
                self.assign(expr.id)
        elif isinstance(expr, nodes.UnaryOp):
            self.visit(expr.expr)
        elif isinstance(expr, nodes.BinOp):
            self.visit(expr.left)
            self.visit(expr.right)
        elif isinstance(expr, nodes.IfExpr):
            self.visit(expr.test_expr)
            self.visit(expr.true_expr)
            self.visit_opt(expr.false_expr)
        elif isinstance(expr, nodes.Filter):
            self.visit_opt(expr.expr)
            self.visit_all(expr.args)
        elif isinstance(expr, nodes.Test):
            self.visit(expr.expr)
            self.visit_all(expr.args)
        elif isinstance(expr, nodes.GetAttr):
            self.visit(expr.expr)
        elif isinstance(expr, nodes.GetItem):
            self.visit(expr.expr)
            self.visit(expr.subscript_expr)
        elif isinstance(expr, nodes.Slice):
            self.visit_opt(expr.start)
            self.visit_opt(expr.stop)
            self.visit_opt(expr.step)
        elif isinstance(expr, nodes.Call):
            self.visit(expr.expr)
            self.visit_all(expr.args)
        elif isinstance(expr, nodes.List):
            self.visit_all(expr.items)
        elif isinstance(expr, nodes.Map):
            for key, value in zip(expr.keys, expr.values):
                self.visit(key)
                self.visit(value)
        elif isinstance(expr, nodes.Kwargs):
            self.visit_all(value for _, value in expr.pairs)

    def assign_nested(self, expr: nodes.Expr) -> None:
        if isinstance(expr, nodes.Var):
            self.assign(expr.id)
        elif isinstance(expr, nodes.List):
            for item in expr.items:
                self.assign_nested(item)

    # -- statements -----------------------------------------------------

    def walk_scoped(self, body: Iterable[nodes.Stmt]) -> None:
        self.push()
        self.walk_all(body)
        self.pop()

    def walk_all(self, body: Iterable[nodes.Stmt]) -> None:
        for stmt in body:
            self.walk(stmt)

    def walk(self, node: nodes.Stmt) -> None:
        if isinstance(node, nodes.Template):
            self.assign("self")
            self.walk_all(node.children)
        elif isinstance(node, nodes.EmitExpr):
            self.visit(node.expr)
        elif isinstance(node, nodes.ForLoop):
            self.push()
            self.assign("loop")
            self.visit(node.iter)
            self.assign_nested(node.target)
            self.visit_opt(node.filter_expr)
            self.walk_all(node.body)
            self.pop()
            self.walk_scoped(node.else_body)
        elif isinstance(node, nodes.IfCond):
            self.visit(node.expr)
            self.walk_scoped(node.true_body)
            self.walk_scoped(node.false_body)
        elif isinstance(node, nodes.WithBlock):
            self.push()
            for target, expr in node.assignments:
                self.assign_nested(target)
                self.visit(expr)
            self.walk_all(node.body)
            self.pop()
        elif isinstance(node, nodes.Set):
            self.assign_nested(node.target)
            self.visit(node.expr)
        elif isinstance(node, (nodes.AutoEscape, nodes.FilterBlock)):
            self.walk_scoped(node.body)
        elif isinstance(node, nodes.SetBlock):
            self.assign_nested(node.target)
            self.walk_scoped(node.body)
        elif isinstance(node, nodes.Block):
            self.push()
            self.assign("super")
            self.walk_all(node.body)
            self.pop()
        elif isinstance(node, nodes.Import):
            self.assign_nested(node.name)
        elif isinstance(node, nodes.FromImport):
            for name, alias in node.names:
                self.assign_nested(alias if alias is not None else name)
        elif isinstance(node, nodes.Macro):
            self.assign(node.name)
        elif isinstance(node, nodes.Do):
            self.visit(node.call.expr)
            self.visit_all(node.call.args)


def find_macro_closure(macro: nodes.Macro) -> PySet[str]:
    """Finds all variables that need to be captured as closure for a macro."""
    tracker = _AssignmentTracker()
    for arg in macro.args:
        tracker.assign_nested(arg)
    tracker.walk_all(macro.body)
    return tracker.out