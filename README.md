# jinjacore

This is the compiler core of a Jinja-style template language. Template text goes to the lexer, which turns it into tokens with source spans. A syntax tree built from the node classes is compiled into a flat list of instructions for a stack-based virtual machine. The package uses only the standard library.

## Modules

- `jinjacore.tokens`
  - `TokenKind` names each kind of token.
  - `Token` holds a kind and an optional payload: the text, the integer or the float. `str(token)` gives the kind's description, for example `` `+` `` or `identifier`.
  - `Span` records the start and end line and column. Its repr looks like ` @ 1:3-1:7`.
- `jinjacore.lexer`
  - `tokenize(source, in_expr=False)` is a generator of `(Token, Span)` pairs. It handles the following:
    - variable, block and comment tags;
    - whitespace control (`{{-`, `-}}`, `{%-`, `-%}`, `-#}`);
    - `{% raw %}…{% endraw %}`;
    - strings with escapes, integers (up to the signed 64-bit range) and floats.
  - Bad input raises `TemplateSyntaxError`.
  - Helpers: `find_marker`, `skip_basic_tag`, `lex_identifier` and `unescape`.
- `jinjacore.nodes`: dataclasses for the syntax tree.
  - Statements: `Template`, `EmitExpr`, `EmitRaw`, `ForLoop`, `IfCond`, `WithBlock`, `Set`, `SetBlock`, `Block`, `Extends`, `Include`, `AutoEscape`, `FilterBlock`, `Macro`, `CallBlock`, `Do`, `FromImport` and `Import`.
  - Expressions: `Var`, `Const`, `Slice`, `UnaryOp`, `BinOp`, `IfExpr`, `Filter`, `Test`, `GetAttr`, `GetItem`, `Call`, `List`, `Map` and `Kwargs`.
  - Every node takes a keyword-only `span`.
  - `Expr.description()` names the kind of an expression.
  - `as_const()` on `List`, `Map` and `Kwargs` folds all-constant literals. For `Kwargs` the result is a `KwargsMap`.
  - `Call.identify_call()` returns a `FunctionCall`, `MethodCall`, `BlockCall` (a call through `self.`) or `ObjectCall`.
- `jinjacore.meta`: `find_macro_closure(macro)` returns the set of names that a macro body reads from outside itself.
- `jinjacore.instructions`
  - `Op` is the set of opcodes, and `Instruction` is an opcode with its arguments.
  - `CaptureMode` and the falsy `Undefined` singleton (`UNDEFINED`) are defined here.
  - `Instructions` is the container. It records the line and span of each instruction. It has:
    - `get_line` and `get_span`, which look those up;
    - `get_referenced_names`, which walks back through the current block;
    - `dump()`, which prints a numbered listing.
- `jinjacore.emitter`
  - `Emitter` is the low-level builder. It tracks the current line and a span stack, and it opens and patches jumps for loops, conditionals and short-circuit `and`/`or`.
  - `buffer_size_hint()` suggests an output buffer size.
  - `get_local_id` hands out cached ids for filter and test names, up to `MAX_LOCALS`.
- `jinjacore.codegen`
  - `CodeGenerator` extends `Emitter` with `compile_stmt`, `compile_expr` and `compile_assignment`.
  - `finish()` returns the main `Instructions` and a dict of block name to `Instructions`.
- `jinjacore.debug`
  - `DebugInfo` holds the template source and the referenced locals.
  - `render_debug_info(name, kind, line, span, info)` returns a text report. The report shows up to three lines of source on each side of the error line and a caret marker under the span. It ends with the referenced variables, which `format_referenced_locals` formats.

## Examples

Tokenizing:

```python
from jinjacore.lexer import tokenize

for token, span in tokenize("Hello {{ name }}!"):
    print(token, token.value, repr(span))
```

Compiling a tree:

```python
from jinjacore import nodes
from jinjacore.codegen import CodeGenerator
from jinjacore.tokens import Span

tree = nodes.Template(
    children=[
        nodes.EmitRaw("Hello ", span=Span(1, 0, 1, 6)),
        nodes.EmitExpr(nodes.Var("name", span=Span(1, 9, 1, 13)), span=Span(1, 6, 1, 16)),
    ],
    span=Span(1, 0, 1, 16),
)

gen = CodeGenerator("hello.txt", "Hello {{ name }}")
gen.compile_stmt(tree)
instructions, blocks = gen.finish()
print(instructions.dump())
```

## What it does not do

- There is no parser. The lexer produces tokens, and syntax trees are built by hand from `jinjacore.nodes`.
- There is no virtual machine and there are no filters, tests, globals or environment. The package produces instructions but does not run them or render output.
- There is no command-line tool.

## Running the tests

```
pip install -e .[test]
pytest
```