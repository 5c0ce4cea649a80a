from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional


class LoxError(Exception):
    """Base class for interpreter errors."""


@dataclass
class Diagnostic:
    line: int
    where: str
    message: str

    def __str__(self) -> str:
        return f"[line {self.line}] Error{self.where}: {self.message}"


class LoxSyntaxError(LoxError):
    """Raised once per phase with every diagnostic that phase collected."""

    def __init__(self, diagnostics: List[Diagnostic]) -> None:
        super().__init__("\n".join(str(d) for d in diagnostics))
        self.diagnostics = diagnostics


class LoxLexError(LoxSyntaxError):
    """Raised when scanning fails."""


class LoxParseError(LoxSyntaxError):
    """Raised when parsing fails."""


@dataclass
class Token:
    type: str
    lexeme: str
    literal: Any
    line: int
    column: int = 0


KEYWORDS = {
    "and": "AND",
    "class": "CLASS",
    "else": "ELSE",
    "false": "FALSE",
    "for": "FOR",
    "fun": "FUN",
    "if": "IF",
    "nil": "NIL",
    "or": "OR",
    "print": "PRINT",
    "return": "RETURN",
    "super": "SUPER",
    "this": "THIS",
    "true": "TRUE",
    "var": "VAR",
    "while": "WHILE",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
    ".": "DOT",
    "-": "MINUS",
    "+": "PLUS",
    ";": "SEMICOLON",
    "*": "STAR",
}

# Operators that may be followed by '=' to form a two-character token.
COMPARATORS = {
    "!": ("BANG", "BANG_EQUAL"),
    "=": ("EQUAL", "EQUAL_EQUAL"),
    "<": ("LESS", "LESS_EQUAL"),
    ">": ("GREATER", "GREATER_EQUAL"),
}


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1
        self.errors: List[Diagnostic] = []

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r\n":
                _advance()
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, None, self.line, self.column))
                _advance()
                continue
            if ch in COMPARATORS:
                line, col = self.line, self.column
                single, double = COMPARATORS[ch]
                _advance()
                if not self._eof and self._peek() == "=":
                    _advance()
                    tokens_append(Token(double, ch + "=", None, line, col))
                else:
                    tokens_append(Token(single, ch, None, line, col))
                continue
            if ch == "/":
                nxt = text[self.index + 1] if self.index + 1 < n else ""
                if nxt == "/":
                    self._consume_line_comment()
                elif nxt == "*":
                    self._consume_block_comment()
                else:
                    tokens_append(Token("SLASH", ch, None, self.line, self.column))
                    _advance()
                continue
            if ch == '"':
                token = self._consume_string()
                if token is not None:
                    tokens_append(token)
                continue
            if self._is_digit(ch):
                tokens_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                tokens_append(self._consume_identifier())
                continue
            self.errors.append(Diagnostic(self.line, "", f"Unexpected character '{ch}'."))
            _advance()
        tokens_append(Token("EOF", "", None, self.line, self.column))
        if self.errors:
            raise LoxLexError(self.errors)
        return tokens

    def _consume_line_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_block_comment(self) -> None:
        start_line = self.line
        self._advance()
        self._advance()
        end = self.text.find("*/", self.index)
        if end == -1:
            while not self._eof:
                self._advance()
            self.errors.append(Diagnostic(start_line, "", "Unterminated block comment."))
            return
        while self.index < end + 2:
            self._advance()

    def _consume_string(self) -> Optional[Token]:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                value = "".join(chars)
                return Token("STRING", f'"{value}"', value, line, col)
            chars.append(ch)
            self._advance()
        self.errors.append(Diagnostic(self.line, "", "Unterminated string."))
        return None

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        start = self.index
        self._consume_digits()
        # A trailing '.' without digits is left for the DOT token.
        if (
            not self._eof
            and self._peek() == "."
            and self.index + 1 < len(self.text)
            and self._is_digit(self.text[self.index + 1])
        ):
            self._advance()
            self._consume_digits()
        lexeme = self.text[start:self.index]
        return Token("NUMBER", lexeme, float(lexeme), line, col)

    def _consume_digits(self) -> None:
        while not self._eof and self._is_digit(self._peek()):
            self._advance()

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if self._is_identifier_start(ch) or self._is_digit(ch):
                chars.append(ch)
                _advance()
                continue
            break
        value = "".join(chars)
        token_type: str = KEYWORDS.get(value, "IDENT")
        return Token(token_type, value, None, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")

    def _is_digit(self, ch: str) -> bool:
        return "0" <= ch <= "9"

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
