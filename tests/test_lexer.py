import pytest

from lexer import Lexer, LoxLexError


def _types(source):
    return [token.type for token in Lexer(source).tokenize()]


def test_operators_and_two_char_tokens():
    assert _types("( ) { } , . - + ; * / ! != = == < <= > >=") == [
        "LPAREN", "RPAREN", "LBRACE", "RBRACE", "COMMA", "DOT", "MINUS", "PLUS",
        "SEMICOLON", "STAR", "SLASH", "BANG", "BANG_EQUAL", "EQUAL", "EQUAL_EQUAL",
        "LESS", "LESS_EQUAL", "GREATER", "GREATER_EQUAL", "EOF",
    ]


def test_keywords_and_identifiers():
    tokens = Lexer("var classy = nil; class _x1").tokenize()
    assert [(t.type, t.lexeme) for t in tokens] == [
        ("VAR", "var"),
        ("IDENT", "classy"),
        ("EQUAL", "="),
        ("NIL", "nil"),
        ("SEMICOLON", ";"),
        ("CLASS", "class"),
        ("IDENT", "_x1"),
        ("EOF", ""),
    ]


def test_number_literals_are_floats():
    tokens = Lexer("12 3.5 7.").tokenize()
    assert tokens[0].literal == 12.0
    assert tokens[1].literal == 3.5
    # trailing dot is not part of the number
    assert [t.type for t in tokens[2:]] == ["NUMBER", "DOT", "EOF"]


def test_multiline_string_tracks_lines():
    tokens = Lexer('"a\nb"\nx').tokenize()
    assert tokens[0].type == "STRING"
    assert tokens[0].literal == "a\nb"
    assert tokens[0].lexeme == '"a\nb"'
    assert tokens[1].line == 3


def test_comments_are_skipped():
    source = "1 // line comment\n/* block\ncomment */ 2"
    tokens = Lexer(source).tokenize()
    assert [t.literal for t in tokens if t.type == "NUMBER"] == [1.0, 2.0]
    assert tokens[1].line == 3


def test_errors_are_collected_until_the_end():
    with pytest.raises(LoxLexError) as excinfo:
        Lexer('@ 1 #\n"open').tokenize()
    messages = [str(d) for d in excinfo.value.diagnostics]
    assert messages == [
        "[line 1] Error: Unexpected character '@'.",
        "[line 1] Error: Unexpected character '#'.",
        "[line 2] Error: Unterminated string.",
    ]


def test_unterminated_block_comment():
    with pytest.raises(LoxLexError, match="Unterminated block comment"):
        Lexer("/* never closed").tokenize()
