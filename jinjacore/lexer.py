"""Splits template source into tokens with their spans."""

from __future__ import annotations

from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .tokens import Span, Token, TokenKind

_ASCII_WHITESPACE = " \t\n\r\x0c"
_DIGITS = "0123456789"
_I64_MAX = 2**63 - 1

_TWO_CHAR_OPS = {
    "//": TokenKind.FLOOR_DIV,
    "**": TokenKind.POW,
    "==": TokenKind.EQ,
    "!=": TokenKind.NE,
    ">=": TokenKind.GTE,
    "<=": TokenKind.LTE,
}

_ONE_CHAR_OPS = {
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.MUL,
    "/": TokenKind.DIV,
    "%": TokenKind.MOD,
    "!": TokenKind.BANG,
    ".": TokenKind.DOT,
    ",": TokenKind.COMMA,
    ":": TokenKind.COLON,
    "~": TokenKind.TILDE,
    "|": TokenKind.PIPE,
    "=": TokenKind.ASSIGN,
    ">": TokenKind.GT,
    "<": TokenKind.LT,
    "(": TokenKind.PAREN_OPEN,
    ")": TokenKind.PAREN_CLOSE,
    "[": TokenKind.BRACKET_OPEN,
    "]": TokenKind.BRACKET_CLOSE,
    "{": TokenKind.BRACE_OPEN,
    "}": TokenKind.BRACE_CLOSE,
}

_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "'": "'",
    "b": "\x08",
    "f": "\x0c",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


class TemplateSyntaxError(Exception):
    """Raised when the template source cannot be tokenized."""

    def __init__(self, message: str, kind: str = "syntax error") -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class _LexerState(Enum):
    TEMPLATE = "Template"
    IN_VARIABLE = "InVariable"
    IN_BLOCK = "InBlock"


class _NumberState(Enum):
    INTEGER = "Integer"
    FRACTION = "Fraction"
    EXPONENT = "Exponent"
    EXPONENT_SIGN = "ExponentSign"


def _find_marker_at(s: str, start: int) -> Optional[Tuple[int, bool]]:
    offset = start
    while True:
        idx = s.find("{", offset)
        if idx < 0:
            return None
        following = s[idx + 1 : idx + 2]
        if following and following in "{%#":
            return idx, s[idx + 2 : idx + 3] == "-"
        offset = idx + 1


def find_marker(a: str) -> Optional[Tuple[int, bool]]:
    """Finds the next ``{{``, ``{%`` or ``{#`` and whether a ``-`` follows it."""
    return _find_marker_at(a, 0)


def _skip_ascii_whitespace(s: str, pos: int) -> int:
    while pos < len(s) and s[pos] in _ASCII_WHITESPACE:
        pos += 1
    return pos


def _skip_basic_tag_at(s: str, start: int, name: str) -> Optional[Tuple[int, bool]]:
    ptr = start
    if s.startswith("-", ptr):
        ptr += 1
    ptr = _skip_ascii_whitespace(s, ptr)
    if not s.startswith(name, ptr):
        return None
    ptr = _skip_ascii_whitespace(s, ptr + len(name))
    trim = False
    if s.startswith("-", ptr):
        ptr += 1
        trim = True
    if not s.startswith("%}", ptr):
        return None
    return ptr + 2 - start, trim


def skip_basic_tag(block_str: str, name: str) -> Optional[Tuple[int, bool]]:
    """Matches the rest of a ``{% name %}`` tag; returns its length and trim flag."""
    return _skip_basic_tag_at(block_str, 0, name)


def _is_ident_char(c: str, first: bool) -> bool:
    if c == "_":
        return True
    if first:
        return c.isidentifier()
    return ("a" + c).isidentifier()


def _lex_identifier_at(s: str, start: int) -> int:
    pos = start
    while pos < len(s) and _is_ident_char(s[pos], pos == start):
        pos += 1
    return pos - start


def lex_identifier(s: str) -> int:
    """Returns the number of characters of the identifier at the start of ``s``."""
    return _lex_identifier_at(s, 0)


def _bad_escape() -> TemplateSyntaxError:
    return TemplateSyntaxError("invalid string escape", kind="bad escape")


def _parse_hex4(s: str, pos: int) -> int:
    digits = s[pos : pos + 4]
    if len(digits) != 4 or not all(c in "0123456789abcdefABCDEF" for c in digits):
        raise _bad_escape()
    return int(digits, 16)


def unescape(s: str) -> str:
    """Resolves backslash escapes in a string literal body."""
    out: List[str] = []
    pos = 0
    length = len(s)
    while pos < length:
        backslash = s.find("\\", pos)
        if backslash < 0:
            out.append(s[pos:])
            break
        out.append(s[pos:backslash])
        pos = backslash + 1
        if pos >= length:
            raise _bad_escape()
        code = s[pos]
        pos += 1
        if code in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[code])
            continue
        if code != "u":
            raise _bad_escape()
        value = _parse_hex4(s, pos)
        pos += 4
        if 0xD800 <= value <= 0xDBFF:
            if not s.startswith("\\u", pos):
                raise _bad_escape()
            low = _parse_hex4(s, pos + 2)
            if not 0xDC00 <= low <= 0xDFFF:
                raise _bad_escape()
            pos += 6
            value = 0x10000 + ((value - 0xD800) << 10) + (low - 0xDC00)
        elif 0xDC00 <= value <= 0xDFFF:
            raise _bad_escape()
        out.append(chr(value))
    return "".join(out)


class _Cursor:
    """Position in the source together with line and column tracking."""

    __slots__ = ("source", "pos", "line", "col")

    def __init__(self, source: str) -> None:
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 0

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.source)

    def startswith(self, prefix: str, offset: int = 0) -> bool:
        return self.source.startswith(prefix, self.pos + offset)

    def peek(self, offset: int = 0) -> str:
        start = self.pos + offset
        return self.source[start : start + 1]

    def advance(self, count: int) -> str:
        skipped = self.source[self.pos : self.pos + count]
        last_newline = skipped.rfind("\n")
        if last_newline < 0:
            self.col += len(skipped)
        else:
            self.line += skipped.count("\n")
            self.col = len(skipped) - last_newline - 1
        self.pos += len(skipped)
        return skipped

    def loc(self) -> Tuple[int, int]:
        return self.line, self.col

    def span(self, start: Tuple[int, int]) -> Span:
        return Span(start[0], start[1], self.line, self.col)

    def skip_whitespace(self) -> None:
        end = self.pos
        while end < len(self.source) and self.source[end].isspace():
            end += 1
        if end > self.pos:
            self.advance(end - self.pos)


def _eat_number(cur: _Cursor) -> Tuple[Token, Span]:
    old_loc = cur.loc()
    src = cur.source
    end = cur.pos
    while end < len(src) and src[end] in _DIGITS:
        end += 1
    state = _NumberState.INTEGER
    while end < len(src):
        c = src[end]
        if c == "." and state is _NumberState.INTEGER:
            state = _NumberState.FRACTION
        elif c in "Ee" and state in (_NumberState.INTEGER, _NumberState.FRACTION):
            state = _NumberState.EXPONENT
        elif c in "+-" and state is _NumberState.EXPONENT:
            state = _NumberState.EXPONENT_SIGN
        elif c in _DIGITS:
            if state is _NumberState.EXPONENT:
                state = _NumberState.EXPONENT_SIGN
        else:
            break
        end += 1

    num = cur.advance(end - cur.pos)
    if state is _NumberState.INTEGER:
        value = int(num)
        if value > _I64_MAX:
            raise TemplateSyntaxError("invalid integer")
        token = Token(TokenKind.INT, value)
    else:
        try:
            token = Token(TokenKind.FLOAT, float(num))
        except ValueError:
            raise TemplateSyntaxError("invalid float") from None
    return token, cur.span(old_loc)


def _eat_identifier(cur: _Cursor) -> Tuple[Token, Span]:
    length = _lex_identifier_at(cur.source, cur.pos)
    if length == 0:
        raise TemplateSyntaxError("unexpected character")
    old_loc = cur.loc()
    ident = cur.advance(length)
    return Token(TokenKind.IDENT, ident), cur.span(old_loc)


def _eat_string(cur: _Cursor, delim: str) -> Tuple[Token, Span]:
    old_loc = cur.loc()
    src = cur.source
    escaped = False
    has_escapes = False
    end = cur.pos + 1
    while end < len(src):
        c = src[end]
        if escaped:
            escaped = False
        elif c == "\\":
            escaped = True
            has_escapes = True
        elif c == delim:
            break
        end += 1
    if escaped or src[end : end + 1] != delim:
        raise TemplateSyntaxError("unexpected end of string")
    literal = cur.advance(end + 1 - cur.pos)
    body = literal[1:-1]
    if has_escapes:
        return Token(TokenKind.STRING, unescape(body)), cur.span(old_loc)
    return Token(TokenKind.STR, body), cur.span(old_loc)


def _find_raw_block_end(src: str, start: int, tag_len: int) -> Optional[Tuple[int, bool]]:
    """Locates ``{% endraw %}`` for a raw block starting at ``start``."""
    ptr = start + 2 + tag_len
    while True:
        block = src.find("{%", ptr)
        if block < 0:
            return None
        ptr = block + 2
        endraw = _skip_basic_tag_at(src, ptr, "endraw")
        if endraw is not None:
            return ptr + endraw[0] - start, endraw[1]


def tokenize(source: str, in_expr: bool = False) -> Iterator[Tuple[Token, Span]]:
    """Yields ``(token, span)`` pairs; raises TemplateSyntaxError on bad input."""
    cur = _Cursor(source)
    stack = [_LexerState.IN_VARIABLE if in_expr else _LexerState.TEMPLATE]
    trim_leading_whitespace = False

    while not cur.at_end:
        old_loc = cur.loc()
        if not stack:
            raise RuntimeError("empty lexer state")
        state = stack[-1]

        if state is _LexerState.TEMPLATE:
            if cur.startswith("{{"):
                cur.advance(3 if cur.peek(2) == "-" else 2)
                stack.append(_LexerState.IN_VARIABLE)
                yield Token(TokenKind.VARIABLE_START), cur.span(old_loc)
                continue

            if cur.startswith("{%"):
                raw_tag = _skip_basic_tag_at(source, cur.pos + 2, "raw")
                if raw_tag is not None:
                    found = _find_raw_block_end(source, cur.pos, raw_tag[0])
                    if found is None:
                        raise TemplateSyntaxError("unexpected end of raw block")
                    length, trim = found
                    result = cur.advance(length)
                    trim_leading_whitespace = trim
                    yield Token(TokenKind.TEMPLATE_DATA, result), cur.span(old_loc)
                    continue
                cur.advance(3 if cur.peek(2) == "-" else 2)
                stack.append(_LexerState.IN_BLOCK)
                yield Token(TokenKind.BLOCK_START), cur.span(old_loc)
                continue

            if cur.startswith("{#"):
                comment_end = source.find("#}", cur.pos)
                if comment_end < 0:
                    raise TemplateSyntaxError("unexpected end of comment")
                rel = comment_end - cur.pos
                if source[cur.pos + max(rel - 1, 0)] == "-":
                    trim_leading_whitespace = True
                cur.advance(rel + 2)
                continue

            if trim_leading_whitespace:
                trim_leading_whitespace = False
                cur.skip_whitespace()
                old_loc = cur.loc()

            marker = _find_marker_at(source, cur.pos)
            if marker is None:
                lead = cur.advance(len(source) - cur.pos)
                span = cur.span(old_loc)
            elif not marker[1]:
                lead = cur.advance(marker[0] - cur.pos)
                span = cur.span(old_loc)
            else:
                peeked = source[cur.pos : marker[0]]
                trimmed = peeked.rstrip()
                lead = cur.advance(len(trimmed))
                span = cur.span(old_loc)
                cur.advance(len(peeked) - len(trimmed))
            if lead:
                yield Token(TokenKind.TEMPLATE_DATA, lead), span
            continue

        # inside blocks and variables whitespace is ignored
        content = _skip_ascii_whitespace(source, cur.pos)
        if content > cur.pos:
            cur.advance(content - cur.pos)
            continue

        if state is _LexerState.IN_BLOCK:
            if cur.startswith("-%}"):
                stack.pop()
                trim_leading_whitespace = True
                cur.advance(3)
                yield Token(TokenKind.BLOCK_END), cur.span(old_loc)
                continue
            if cur.startswith("%}"):
                stack.pop()
                cur.advance(2)
                yield Token(TokenKind.BLOCK_END), cur.span(old_loc)
                continue
        else:
            if cur.startswith("-}}"):
                stack.pop()
                cur.advance(3)
                trim_leading_whitespace = True
                yield Token(TokenKind.VARIABLE_END), cur.span(old_loc)
                continue
            if cur.startswith("}}"):
                stack.pop()
                cur.advance(2)
                yield Token(TokenKind.VARIABLE_END), cur.span(old_loc)
                continue

        kind = _TWO_CHAR_OPS.get(source[cur.pos : cur.pos + 2])
        if kind is not None:
            cur.advance(2)
            yield Token(kind), cur.span(old_loc)
            continue

        c = cur.peek()
        kind = _ONE_CHAR_OPS.get(c)
        if kind is not None:
            cur.advance(1)
            yield Token(kind), cur.span(old_loc)
        elif c in ("'", '"'):
            yield _eat_string(cur, c)
        elif c in _DIGITS:
            yield _eat_number(cur)
        else:
            yield _eat_identifier(cur)