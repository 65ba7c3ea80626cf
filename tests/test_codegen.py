import pytest

from jinjacore import nodes
from jinjacore.codegen import CodeGenerator
from jinjacore.instructions import (
    MACRO_CALLER,
    UNDEFINED,
    CaptureMode,
    Instruction as I,
    Op,
)
from jinjacore.tokens import Span


def compile_body(*stmts):
    gen = CodeGenerator("<test>", "")
    gen.compile_stmt(nodes.Template(children=list(stmts)))
    instructions, blocks = gen.finish()
    return list(instructions), blocks


def compile_expr(expr):
    gen = CodeGenerator("<expr>", "")
    gen.compile_expr(expr)
    instructions, _ = gen.finish()
    return list(instructions)


def test_emit_raw_and_variable():
    instrs, blocks = compile_body(
        nodes.EmitRaw("hello "), nodes.EmitExpr(nodes.Var("name"))
    )
    assert instrs == [
        I(Op.EMIT_RAW, "hello "),
        I(Op.LOOKUP, "name"),
        I(Op.EMIT),
    ]
    assert blocks == {}


def test_if_else_jump_targets():
    stmt = nodes.IfCond(
        expr=nodes.Var("x"),
        true_body=[nodes.EmitRaw("a")],
        false_body=[nodes.EmitRaw("b")],
    )
    instrs, _ = compile_body(stmt)
    assert instrs == [
        I(Op.LOOKUP, "x"),
        I(Op.JUMP_IF_FALSE, 4),
        I(Op.EMIT_RAW, "a"),
        I(Op.JUMP, 5),
        I(Op.EMIT_RAW, "b"),
    ]


def test_if_without_else_jumps_past_body():
    stmt = nodes.IfCond(expr=nodes.Var("x"), true_body=[nodes.EmitRaw("a")])
    instrs, _ = compile_body(stmt)
    assert instrs[1].op is Op.JUMP_IF_FALSE
    assert instrs[1].args[0] == len(instrs)


def test_for_loop():
    loop = nodes.ForLoop(
        target=nodes.Var("item"),
        iter=nodes.Var("items"),
        body=[nodes.EmitExpr(nodes.Var("item"))],
    )
    instrs, _ = compile_body(loop)
    assert instrs == [
        I(Op.LOOKUP, "items"),
        I(Op.PUSH_LOOP, 1),
        I(Op.ITERATE, 7),
        I(Op.STORE_LOCAL, "item"),
        I(Op.LOOKUP, "item"),
        I(Op.EMIT),
        I(Op.JUMP, 2),
        I(Op.POP_FRAME),
    ]


def test_for_loop_with_else_and_filter():
    loop = nodes.ForLoop(
        target=nodes.Var("x"),
        iter=nodes.Var("xs"),
        filter_expr=nodes.Var("x"),
        recursive=True,
        body=[nodes.EmitRaw("y")],
        else_body=[nodes.EmitRaw("n")],
    )
    instrs, _ = compile_body(loop)
    ops = [i.op for i in instrs]
    assert ops[0] is Op.BUILD_LIST
    assert Op.LIST_APPEND in ops
    assert I(Op.PUSH_LOOP, 0) in instrs
    assert I(Op.PUSH_LOOP, 3) in instrs
    assert Op.PUSH_DID_NOT_ITERATE in ops
    for idx, instr in enumerate(instrs):
        if instr.op is Op.ITERATE:
            assert instrs[instr.args[0]].op in (Op.POP_FRAME, Op.PUSH_DID_NOT_ITERATE)
    assert instrs[-1] == I(Op.EMIT_RAW, "n")


def test_short_circuit_and():
    expr = nodes.BinOp(nodes.BinOpKind.SC_AND, nodes.Var("a"), nodes.Var("b"))
    instrs, _ = compile_body(nodes.EmitExpr(expr))
    assert instrs == [
        I(Op.LOOKUP, "a"),
        I(Op.JUMP_IF_FALSE_OR_POP, 3),
        I(Op.LOOKUP, "b"),
        I(Op.EMIT),
    ]


def test_short_circuit_or_uses_true_jump():
    expr = nodes.BinOp(nodes.BinOpKind.SC_OR, nodes.Var("a"), nodes.Var("b"))
    instrs = compile_expr(expr)
    assert instrs[1].op is Op.JUMP_IF_TRUE_OR_POP
    assert instrs[1].args[0] == len(instrs)


@pytest.mark.parametrize(
    "kind,op",
    [
        (nodes.BinOpKind.FLOOR_DIV, Op.INT_DIV),
        (nodes.BinOpKind.CONCAT, Op.STRING_CONCAT),
        (nodes.BinOpKind.ADD, Op.ADD),
        (nodes.BinOpKind.IN, Op.IN),
    ],
)
def test_binary_operators(kind, op):
    instrs = compile_expr(nodes.BinOp(kind, nodes.Var("a"), nodes.Var("b")))
    assert instrs == [I(Op.LOOKUP, "a"), I(Op.LOOKUP, "b"), I(op)]


def test_constant_list_is_folded():
    instrs = compile_expr(nodes.List([nodes.Const(1), nodes.Const(2)]))
    assert instrs == [I(Op.LOAD_CONST, [1, 2])]


def test_non_constant_list_is_built():
    instrs = compile_expr(nodes.List([nodes.Const(1), nodes.Var("x")]))
    assert instrs == [I(Op.LOAD_CONST, 1), I(Op.LOOKUP, "x"), I(Op.BUILD_LIST, 2)]


def test_constant_kwargs_are_folded():
    instrs = compile_expr(nodes.Kwargs([("a", nodes.Const(1))]))
    assert len(instrs) == 1
    assert isinstance(instrs[0].args[0], nodes.KwargsMap)
    assert instrs[0].args[0] == {"a": 1}


def test_non_constant_map_is_built():
    instrs = compile_expr(nodes.Map([nodes.Const("k")], [nodes.Var("v")]))
    assert instrs == [I(Op.LOAD_CONST, "k"), I(Op.LOOKUP, "v"), I(Op.BUILD_MAP, 1)]


def test_slice_defaults():
    instrs = compile_expr(nodes.Slice(nodes.Var("s")))
    assert instrs == [
        I(Op.LOOKUP, "s"),
        I(Op.LOAD_CONST, 0),
        I(Op.LOAD_CONST, None),
        I(Op.LOAD_CONST, 1),
        I(Op.SLICE),
    ]


def test_if_expr_without_else_loads_undefined():
    instrs = compile_expr(nodes.IfExpr(nodes.Var("c"), nodes.Var("t")))
    assert I(Op.LOAD_CONST, UNDEFINED) in instrs


def test_filter_local_ids_are_reused():
    first = nodes.Filter("upper", nodes.Var("a"))
    second = nodes.Filter("lower", nodes.Var("b"))
    third = nodes.Filter("upper", nodes.Var("c"))
    instrs, _ = compile_body(
        nodes.EmitExpr(first), nodes.EmitExpr(second), nodes.EmitExpr(third)
    )
    filters = [i for i in instrs if i.op is Op.APPLY_FILTER]
    assert filters == [
        I(Op.APPLY_FILTER, "upper", 1, 0),
        I(Op.APPLY_FILTER, "lower", 1, 1),
        I(Op.APPLY_FILTER, "upper", 1, 0),
    ]


def test_test_expression_counts_arguments():
    instrs = compile_expr(nodes.Test("eq", nodes.Var("a"), [nodes.Const(1)]))
    assert instrs[-1] == I(Op.PERFORM_TEST, "eq", 2, 0)


def test_method_call():
    call = nodes.Call(nodes.GetAttr(nodes.Var("s"), "upper"))
    instrs = compile_expr(call)
    assert instrs == [I(Op.LOOKUP, "s"), I(Op.CALL_METHOD, "upper", 1)]


def test_fast_super_and_recurse():
    instrs, _ = compile_body(
        nodes.EmitExpr(nodes.Call(nodes.Var("super"))),
        nodes.EmitExpr(nodes.Call(nodes.Var("loop"), [nodes.Var("kids")])),
    )
    assert instrs == [
        I(Op.FAST_SUPER),
        I(Op.LOOKUP, "kids"),
        I(Op.FAST_RECURSE),
    ]


def test_self_block_call_in_emit():
    call = nodes.Call(nodes.GetAttr(nodes.Var("self"), "title"))
    instrs, _ = compile_body(nodes.EmitExpr(call))
    assert instrs == [I(Op.CALL_BLOCK, "title")]


def test_self_block_call_in_expression_captures():
    call = nodes.Call(nodes.GetAttr(nodes.Var("self"), "title"))
    instrs = compile_expr(call)
    assert instrs == [
        I(Op.BEGIN_CAPTURE, CaptureMode.CAPTURE),
        I(Op.CALL_BLOCK, "title"),
        I(Op.END_CAPTURE),
    ]


def test_block_and_extends():
    instrs, blocks = compile_body(
        nodes.Extends(nodes.Const("base.html")),
        nodes.Block("body", [nodes.EmitRaw("content")]),
    )
    assert instrs == [
        I(Op.LOAD_CONST, "base.html"),
        I(Op.LOAD_BLOCKS),
        I(Op.CALL_BLOCK, "body"),
        I(Op.RENDER_PARENT),
    ]
    assert list(blocks["body"]) == [I(Op.EMIT_RAW, "content")]


def test_set_block_captures():
    stmt = nodes.SetBlock(target=nodes.Var("x"), body=[nodes.EmitRaw("v")])
    instrs, _ = compile_body(stmt)
    assert instrs == [
        I(Op.BEGIN_CAPTURE, CaptureMode.CAPTURE),
        I(Op.EMIT_RAW, "v"),
        I(Op.END_CAPTURE),
        I(Op.STORE_LOCAL, "x"),
    ]


def test_macro_with_closure():
    macro = nodes.Macro(
        name="m",
        args=[nodes.Var("x")],
        body=[nodes.EmitExpr(nodes.Var("x")), nodes.EmitExpr(nodes.Var("y"))],
    )
    instrs, _ = compile_body(macro)
    assert instrs == [
        I(Op.JUMP, 7),
        I(Op.STORE_LOCAL, "x"),
        I(Op.LOOKUP, "x"),
        I(Op.EMIT),
        I(Op.LOOKUP, "y"),
        I(Op.EMIT),
        I(Op.RETURN),
        I(Op.ENCLOSE, "y"),
        I(Op.GET_CLOSURE),
        I(Op.LOAD_CONST, ["x"]),
        I(Op.BUILD_MACRO, "m", 1, 0),
        I(Op.STORE_LOCAL, "m"),
    ]


def test_macro_default_argument():
    macro = nodes.Macro(name="m", args=[nodes.Var("x")], defaults=[nodes.Const(1)])
    instrs, _ = compile_body(macro)
    assert instrs[1:7] == [
        I(Op.DUP_TOP),
        I(Op.IS_UNDEFINED),
        I(Op.JUMP_IF_FALSE, 6),
        I(Op.DISCARD_TOP),
        I(Op.LOAD_CONST, 1),
        I(Op.STORE_LOCAL, "x"),
    ]


def test_macro_referencing_caller_sets_flag():
    macro = nodes.Macro(name="m", body=[nodes.EmitExpr(nodes.Call(nodes.Var("caller")))])
    instrs, _ = compile_body(macro)
    build = [i for i in instrs if i.op is Op.BUILD_MACRO]
    assert build[0].args[2] == MACRO_CALLER
    assert I(Op.ENCLOSE, "caller") not in instrs


def test_call_block_injects_caller():
    stmt = nodes.CallBlock(
        call=nodes.Call(nodes.Var("m")),
        macro_decl=nodes.Macro(name="caller", body=[nodes.EmitRaw("hi")]),
    )
    instrs, _ = compile_body(stmt)
    assert instrs[0] == I(Op.LOAD_CONST, "caller")
    assert I(Op.BUILD_KWARGS, 1) in instrs
    assert instrs[-2:] == [I(Op.CALL_FUNCTION, "m", 1), I(Op.EMIT)]


def test_call_block_extends_existing_kwargs():
    stmt = nodes.CallBlock(
        call=nodes.Call(nodes.Var("m"), [nodes.Kwargs([("a", nodes.Const(1))])]),
        macro_decl=nodes.Macro(name="caller"),
    )
    instrs, _ = compile_body(stmt)
    assert I(Op.BUILD_KWARGS, 2) in instrs
    assert instrs[-2] == I(Op.CALL_FUNCTION, "m", 1)


def test_unpack_assignment():
    gen = CodeGenerator("<t>", "")
    gen.compile_assignment(nodes.List([nodes.Var("a"), nodes.Var("b")]))
    instrs, _ = gen.finish()
    assert list(instrs) == [
        I(Op.UNPACK_LIST, 2),
        I(Op.STORE_LOCAL, "a"),
        I(Op.STORE_LOCAL, "b"),
    ]


def test_invalid_assignment_target():
    gen = CodeGenerator("<t>", "")
    with pytest.raises(ValueError):
        gen.compile_assignment(nodes.Const(1))


def test_unknown_statement():
    gen = CodeGenerator("<t>", "")
    with pytest.raises(TypeError):
        gen.compile_stmt(object())


def test_line_numbers_follow_spans():
    gen = CodeGenerator("<t>", "")
    gen.compile_stmt(nodes.EmitRaw("x", span=Span(3, 0, 3, 1)))
    gen.compile_stmt(nodes.EmitExpr(nodes.Var("y", span=Span(5, 2, 5, 3)), span=Span(5, 0, 5, 5)))
    instrs, _ = gen.finish()
    assert instrs.get_line(0) == 3
    assert instrs.get_line(1) == 5


def test_buffer_size_hint_is_power_of_two():
    gen = CodeGenerator("<t>", "")
    gen.compile_stmt(nodes.EmitRaw("hello world"))
    hint = gen.buffer_size_hint()
    assert hint >= 2 * len("hello world")
    assert hint & (hint - 1) == 0


def test_import_discards_output():
    stmt = nodes.Import(expr=nodes.Const("lib.html"), name=nodes.Var("lib"))
    instrs, _ = compile_body(stmt)
    assert instrs[0] == I(Op.BEGIN_CAPTURE, CaptureMode.DISCARD)
    assert I(Op.INCLUDE, False) in instrs
    assert instrs[-2:] == [I(Op.STORE_LOCAL, "lib"), I(Op.END_CAPTURE)]