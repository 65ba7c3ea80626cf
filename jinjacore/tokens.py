"""Tokens produced by the template lexer and the spans that locate them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class TokenKind(Enum):
    """The kinds of tokens found in a template."""

    TEMPLATE_DATA = "TemplateData"
    VARIABLE_START = "VariableStart"
    VARIABLE_END = "VariableEnd"
    BLOCK_START = "BlockStart"
    BLOCK_END = "BlockEnd"
    IDENT = "Ident"
    STR = "Str"
    STRING = "String"
    INT = "Int"
    FLOAT = "Float"
    PLUS = "Plus"
    MINUS = "Minus"
    MUL = "Mul"
    DIV = "Div"
    FLOOR_DIV = "FloorDiv"
    POW = "Pow"
    MOD = "Mod"
    BANG = "Bang"
    DOT = "Dot"
    COMMA = "Comma"
    COLON = "Colon"
    TILDE = "Tilde"
    ASSIGN = "Assign"
    PIPE = "Pipe"
    EQ = "Eq"
    NE = "Ne"
    GT = "Gt"
    GTE = "Gte"
    LT = "Lt"
    LTE = "Lte"
    BRACKET_OPEN = "BracketOpen"
    BRACKET_CLOSE = "BracketClose"
    PAREN_OPEN = "ParenOpen"
    PAREN_CLOSE = "ParenClose"
    BRACE_OPEN = "BraceOpen"
    BRACE_CLOSE = "BraceClose"

    @property
    def description(self) -> str:
        """Human readable name used in error messages."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    TokenKind.TEMPLATE_DATA: "template-data",
    TokenKind.VARIABLE_START: "start of variable block",
    TokenKind.VARIABLE_END: "end of variable block",
    TokenKind.BLOCK_START: "start of block",
    TokenKind.BLOCK_END: "end of block",
    TokenKind.IDENT: "identifier",
    TokenKind.STR: "string",
    TokenKind.STRING: "string",
    TokenKind.INT: "integer",
    TokenKind.FLOAT: "float",
    TokenKind.PLUS: "`+`",
    TokenKind.MINUS: "`-`",
    TokenKind.MUL: "`*`",
    TokenKind.DIV: "`/`",
    TokenKind.FLOOR_DIV: "`//`",
    TokenKind.POW: "`**`",
    TokenKind.MOD: "`%`",
    TokenKind.BANG: "`!`",
    TokenKind.DOT: "`.`",
    TokenKind.COMMA: "`,`",
    TokenKind.COLON: "`:`",
    TokenKind.TILDE: "`~`",
    TokenKind.ASSIGN: "`=`",
    TokenKind.PIPE: "`|`",
    TokenKind.EQ: "`==`",
    TokenKind.NE: "`!=`",
    TokenKind.GT: "`>`",
    TokenKind.GTE: "`>=`",
    TokenKind.LT: "`<`",
    TokenKind.LTE: "`<=`",
    TokenKind.BRACKET_OPEN: "`[`",
    TokenKind.BRACKET_CLOSE: "`]`",
    TokenKind.PAREN_OPEN: "`(`",
    TokenKind.PAREN_CLOSE: "`)`",
    TokenKind.BRACE_OPEN: "`{`",
    TokenKind.BRACE_CLOSE: "`}`",
}


@dataclass(frozen=True)
class Token:
    """A single token; ``value`` carries the payload of data-bearing kinds."""

    kind: TokenKind
    value: Union[str, int, float, None] = None

    def __str__(self) -> str:
        return self.kind.description


@dataclass(frozen=True)
class Span:
    """Start and end location of a token or node in the source."""

    start_line: int = 0
    start_col: int = 0
    end_line: int = 0
    end_col: int = 0

    def __repr__(self) -> str:
        return (
            f" @ {self.start_line}:{self.start_col}"
            f"-{self.end_line}:{self.end_col}"
        )