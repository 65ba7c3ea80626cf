import pytest

from jinjacore.lexer import (
    TemplateSyntaxError,
    find_marker,
    lex_identifier,
    skip_basic_tag,
    tokenize,
    unescape,
)
from jinjacore.tokens import Span, Token, TokenKind


def _kinds(source, in_expr=False):
    return [tok.kind for tok, _ in tokenize(source, in_expr)]


def _tokens(source, in_expr=False):
    return [tok for tok, _ in tokenize(source, in_expr)]


def _is_single_ident(s):
    try:
        tokens = _tokens(s, True)
    except TemplateSyntaxError:
        return False
    return len(tokens) == 1 and tokens[0].kind is TokenKind.IDENT


def _first_is_ident(s):
    first, _ = next(iter(tokenize(s, True)))
    return first == Token(TokenKind.IDENT, s)


def test_find_marker():
    assert find_marker("{") is None
    assert find_marker("foo") is None
    assert find_marker("foo {") is None
    assert find_marker("foo {{") == (4, False)
    assert find_marker("foo {{-") == (4, True)


def test_find_marker_comment_and_block():
    assert find_marker("ab {# x") == (3, False)
    assert find_marker("{ x {%- y") == (4, True)


def test_is_basic_tag():
    assert skip_basic_tag(" raw %}", "raw") == (7, False)
    assert skip_basic_tag(" raw %}", "endraw") is None
    assert skip_basic_tag("  raw  %}", "raw") == (9, False)
    assert skip_basic_tag("-  raw  -%}", "raw") == (11, True)


def test_basic_identifiers():
    for s in ["foo_bar_baz", "_foo_bar_baz", "_42world", "_world42", "world42"]:
        assert _first_is_ident(s), s
    assert not _is_single_ident("42world")


def test_unicode_identifiers():
    for s in ["foo", "föö", "き", "_", "ᢅ", "ᢆ", "℘", "℮", "a·"]:
        assert _first_is_ident(s), s
    for s in ["1a", "a-", "🐍a", "a🐍🐍", "·"]:
        assert not _is_single_ident(s), s


def test_lex_identifier_length():
    assert lex_identifier("foo bar") == 3
    assert lex_identifier("42") == 0
    assert lex_identifier("_a1.b") == 3


def test_simple_template():
    result = list(tokenize("Hello {{ name }}!"))
    assert result == [
        (Token(TokenKind.TEMPLATE_DATA, "Hello "), Span(1, 0, 1, 6)),
        (Token(TokenKind.VARIABLE_START), Span(1, 6, 1, 8)),
        (Token(TokenKind.IDENT, "name"), Span(1, 9, 1, 13)),
        (Token(TokenKind.VARIABLE_END), Span(1, 14, 1, 16)),
        (Token(TokenKind.TEMPLATE_DATA, "!"), Span(1, 16, 1, 17)),
    ]


def test_spans_across_lines():
    result = list(tokenize("a\n{{ b }}"))
    assert result[2] == (Token(TokenKind.IDENT, "b"), Span(2, 3, 2, 4))


def test_block_tokens():
    assert _kinds("{% if x %}y{% endif %}") == [
        TokenKind.BLOCK_START,
        TokenKind.IDENT,
        TokenKind.IDENT,
        TokenKind.BLOCK_END,
        TokenKind.TEMPLATE_DATA,
        TokenKind.BLOCK_START,
        TokenKind.IDENT,
        TokenKind.BLOCK_END,
    ]


def test_whitespace_control_variable():
    tokens = _tokens("a  {{- x -}}  b")
    assert tokens == [
        Token(TokenKind.TEMPLATE_DATA, "a"),
        Token(TokenKind.VARIABLE_START),
        Token(TokenKind.IDENT, "x"),
        Token(TokenKind.VARIABLE_END),
        Token(TokenKind.TEMPLATE_DATA, "b"),
    ]


def test_whitespace_control_block():
    tokens = _tokens("{%- if x -%}  \n y")
    assert tokens[-1] == Token(TokenKind.TEMPLATE_DATA, "y")


def test_comments():
    assert _tokens("a {# c #} b") == [
        Token(TokenKind.TEMPLATE_DATA, "a "),
        Token(TokenKind.TEMPLATE_DATA, " b"),
    ]
    assert _tokens("a {#- c -#} b") == [
        Token(TokenKind.TEMPLATE_DATA, "a"),
        Token(TokenKind.TEMPLATE_DATA, "b"),
    ]


def test_unterminated_comment():
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize("{# abc"))
    assert exc.value.message == "unexpected end of comment"


def test_raw_block():
    source = "{% raw %}{{ x }}{% endraw %}"
    assert _tokens(source) == [Token(TokenKind.TEMPLATE_DATA, source)]


def test_raw_block_with_trim():
    tokens = _tokens("{% raw %}x{% endraw -%}   y")
    assert tokens[-1] == Token(TokenKind.TEMPLATE_DATA, "y")


def test_unterminated_raw_block():
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize("{% raw %}{{ x }}"))
    assert exc.value.message == "unexpected end of raw block"


def test_numbers():
    assert _tokens("42", True) == [Token(TokenKind.INT, 42)]
    assert _tokens("1.5", True) == [Token(TokenKind.FLOAT, 1.5)]
    assert _tokens("1e3", True) == [Token(TokenKind.FLOAT, 1000.0)]
    assert _tokens("2E-1", True) == [Token(TokenKind.FLOAT, 0.2)]


def test_number_followed_by_ident():
    assert _tokens("42world", True) == [
        Token(TokenKind.INT, 42),
        Token(TokenKind.IDENT, "world"),
    ]


def test_invalid_float():
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize("1e", True))
    assert exc.value.message == "invalid float"


def test_invalid_integer():
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize("99999999999999999999", True))
    assert exc.value.message == "invalid integer"


def test_strings():
    assert _tokens("'foo'", True) == [Token(TokenKind.STR, "foo")]
    assert _tokens('"a\\nb"', True) == [Token(TokenKind.STRING, "a\nb")]
    assert _tokens("'it\\'s'", True) == [Token(TokenKind.STRING, "it's")]


@pytest.mark.parametrize("source", ["'abc", "'a\\'"])
def test_unterminated_string(source):
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize(source, True))
    assert exc.value.message == "unexpected end of string"


def test_operators():
    assert _kinds("a // b ** c == d != e >= f <= g", True) == [
        TokenKind.IDENT,
        TokenKind.FLOOR_DIV,
        TokenKind.IDENT,
        TokenKind.POW,
        TokenKind.IDENT,
        TokenKind.EQ,
        TokenKind.IDENT,
        TokenKind.NE,
        TokenKind.IDENT,
        TokenKind.GTE,
        TokenKind.IDENT,
        TokenKind.LTE,
        TokenKind.IDENT,
    ]
    assert _kinds("(x|y)[0]~{}", True) == [
        TokenKind.PAREN_OPEN,
        TokenKind.IDENT,
        TokenKind.PIPE,
        TokenKind.IDENT,
        TokenKind.PAREN_CLOSE,
        TokenKind.BRACKET_OPEN,
        TokenKind.INT,
        TokenKind.BRACKET_CLOSE,
        TokenKind.TILDE,
        TokenKind.BRACE_OPEN,
        TokenKind.BRACE_CLOSE,
    ]


def test_unexpected_character():
    with pytest.raises(TemplateSyntaxError) as exc:
        list(tokenize("{{ $ }}"))
    assert exc.value.message == "unexpected character"
    assert str(exc.value) == "syntax error: unexpected character"


def test_tokens_before_error_are_yielded():
    stream = tokenize("{{ a $ }}")
    assert next(stream)[0] == Token(TokenKind.VARIABLE_START)
    assert next(stream)[0] == Token(TokenKind.IDENT, "a")
    with pytest.raises(TemplateSyntaxError):
        next(stream)


def test_empty_lexer_state():
    with pytest.raises(RuntimeError):
        list(tokenize("x }} y", True))


def test_unescape():
    assert unescape("a\\tb") == "a\tb"
    assert unescape("\\u00e9") == "é"
    assert unescape("\\ud83d\\ude00") == "\U0001F600"
    assert unescape("\\/\\\\\\\"") == '/\\"'
    assert unescape("plain") == "plain"


@pytest.mark.parametrize("text", ["\\x", "\\u12", "\\ud83d", "\\ude00", "abc\\"])
def test_unescape_errors(text):
    with pytest.raises(TemplateSyntaxError) as exc:
        unescape(text)
    assert exc.value.kind == "bad escape"