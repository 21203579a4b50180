import pytest

from vx import LexError, TemplateSegment, TokenKind, tokenize


def kinds(source):
    return [token.kind for token in tokenize(source)]


def test_simple_statement():
    assert kinds("let x = 1") == [
        TokenKind.LET,
        TokenKind.IDENTIFIER,
        TokenKind.ASSIGN,
        TokenKind.NUMBER,
        TokenKind.EOF,
    ]


def test_token_locations():
    tokens = tokenize("let x\n  = 1", "main.voxel")
    assert tokens[0].location.filename == "main.voxel"
    assert (tokens[0].line, tokens[0].column) == (1, 1)
    assert (tokens[1].line, tokens[1].column) == (1, 5)
    assert tokens[2].kind == TokenKind.NEWLINE
    assert (tokens[3].line, tokens[3].column) == (2, 3)


def test_number_literals():
    tokens = tokenize("0x1F 0b101 0o17 1_000 2.5E-2 1e3 42")
    values = [t.value for t in tokens if t.kind == TokenKind.NUMBER]
    assert values == [31.0, 5.0, 15.0, 1000.0, 0.025, 1000.0, 42.0]
    assert all(isinstance(v, float) for v in values)


def test_fraction_requires_digit_so_ranges_lex():
    assert kinds("1..5") == [
        TokenKind.NUMBER,
        TokenKind.RANGE,
        TokenKind.NUMBER,
        TokenKind.EOF,
    ]
    assert kinds("1..=5")[1] == TokenKind.RANGE_INCLUSIVE


def test_maximal_munch():
    source = "**= ** * >>> >> > ..= ... .. . ??= ?? ?. ? |> || | => == ="
    assert kinds(source)[:-1] == [
        TokenKind.POW_ASSIGN,
        TokenKind.POW,
        TokenKind.MUL,
        TokenKind.USHR,
        TokenKind.SHR,
        TokenKind.GT,
        TokenKind.RANGE_INCLUSIVE,
        TokenKind.SPREAD,
        TokenKind.RANGE,
        TokenKind.DOT,
        TokenKind.NULLISH_ASSIGN,
        TokenKind.NULLISH,
        TokenKind.OPTIONAL,
        TokenKind.QUESTION,
        TokenKind.PIPE,
        TokenKind.OR,
        TokenKind.BITOR,
        TokenKind.ARROW,
        TokenKind.EQ,
        TokenKind.ASSIGN,
    ]


def test_symbolic_and_keyword_aliases():
    assert kinds("&& || ! === !==")[:-1] == [
        TokenKind.AND,
        TokenKind.OR,
        TokenKind.NOT,
        TokenKind.EQ,
        TokenKind.NE,
    ]
    assert kinds("function self nil none and")[:-1] == [
        TokenKind.FN,
        TokenKind.THIS,
        TokenKind.NULL,
        TokenKind.NULL,
        TokenKind.AND,
    ]


def test_string_escapes():
    (token, _) = tokenize(r'"a\nb\x41é\q"')
    assert token.kind == TokenKind.STRING
    assert token.value == "a\nbAéq"
    (token, _) = tokenize("'it\\'s'")
    assert token.value == "it's"


def test_strings_may_span_lines():
    (token, _) = tokenize('"one\ntwo"')
    assert token.value == "one\ntwo"


def test_template_segments_are_not_lexed():
    (token, _) = tokenize("`a ${x + 1} b ${ {k: 1}.k }`")
    assert token.kind == TokenKind.TEMPLATE
    assert token.value[0] == "a "
    assert isinstance(token.value[1], TemplateSegment)
    assert token.value[1].source == "x + 1"
    assert token.value[2] == " b "
    assert token.value[3].source == " {k: 1}.k "


def test_template_escapes():
    (token, _) = tokenize(r"`cost: \${x} \``")
    assert token.value == ["cost: ${x} `"]


def test_comments():
    assert kinds("1 // line\n# hash\n/* block\n */ 2") == [
        TokenKind.NUMBER,
        TokenKind.NEWLINE,
        TokenKind.NEWLINE,
        TokenKind.NUMBER,
        TokenKind.EOF,
    ]


@pytest.mark.parametrize(
    "source, why",
    [
        ('"abc', "unterminated string literal"),
        ("`abc", "unterminated template literal"),
        ("`${abc`", "unterminated template expression"),
        ("/* abc", "unterminated block comment"),
        (r'"\xZZ"', "expected hexadecimal escape sequence"),
        ("0x", "invalid number literal"),
        ("0b_ + 1", "invalid number literal"),
        ("let n = 0o", "invalid number literal"),
    ],
)
def test_lex_errors(source, why):
    with pytest.raises(LexError) as e:
        tokenize(source)
    assert e.value.message.startswith(why)


def test_unexpected_character_reports_line_and_column():
    with pytest.raises(LexError) as e:
        tokenize("let x = 1\n  @")
    assert e.value.line == 2
    assert e.value.column == 3
    assert "unexpected character" in str(e.value)
