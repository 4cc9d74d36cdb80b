"""Tokenizer for the resource query language."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from iam_grapher.exceptions import QuerySyntaxError


class TokenType(Enum):
    IDENTIFIER = "identifier"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EQ = "=="
    NE = "!="
    LIKE = "LIKE"
    IN = "IN"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    COMMA = ","
    DOT = "."
    EOF = "end of input"


KEYWORDS = {
    "AND": TokenType.AND,
    "OR": TokenType.OR,
    "NOT": TokenType.NOT,
    "LIKE": TokenType.LIKE,
    "IN": TokenType.IN,
}

PUNCTUATION = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
}

ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any = None
    position: int = 0

    def describe(self) -> str:
        if self.type is TokenType.EOF:
            return "end of input"
        if self.type is TokenType.STRING:
            return f'string "{self.value}"'
        if self.value is not None:
            return f"'{self.value}'"
        return f"'{self.type.value}'"


class Lexer:
    """Turns query text into a list of tokens terminated by EOF."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            token = self._next_token()
            tokens.append(token)
            if token.type is TokenType.EOF:
                return tokens

    def _current(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _peek(self) -> str:
        nxt = self.pos + 1
        return self.text[nxt] if nxt < len(self.text) else ""

    def _next_token(self) -> Token:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1
        start = self.pos
        ch = self._current()
        if not ch:
            return Token(TokenType.EOF, position=start)

        if ch in PUNCTUATION:
            self.pos += 1
            return Token(PUNCTUATION[ch], position=start)
        if ch in ('"', "'"):
            return self._read_string()
        if ch == "!":
            return self._read_comparison("!=", TokenType.NE)
        if ch == "=":
            return self._read_comparison("==", TokenType.EQ)
        if ch.isdigit() or (ch == "-" and self._peek().isdigit()):
            return self._read_number()
        if ch.isalpha() or ch == "_":
            return self._read_identifier()
        raise QuerySyntaxError(f"Unexpected character: '{ch}'", position=start)

    def _read_comparison(self, operator: str, token_type: TokenType) -> Token:
        start = self.pos
        if self.text.startswith(operator, self.pos):
            self.pos += len(operator)
            return Token(token_type, operator, start)
        raise QuerySyntaxError(
            f"Unexpected character '{operator[0]}' (did you mean '{operator}'?)",
            position=start,
        )

    def _read_string(self) -> Token:
        start = self.pos
        quote = self._current()
        self.pos += 1
        chars: List[str] = []
        while self.pos < len(self.text) and self.text[self.pos] != quote:
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                self.pos += 1
                escaped = self.text[self.pos]
                # Unknown escapes are kept verbatim
                chars.append(ESCAPES.get(escaped, "\\" + escaped))
            else:
                chars.append(ch)
            self.pos += 1
        if self.pos >= len(self.text):
            raise QuerySyntaxError(
                f"Unterminated string: {self.text[start:]}", position=start
            )
        self.pos += 1
        return Token(TokenType.STRING, "".join(chars), start)

    def _read_number(self) -> Token:
        start = self.pos
        if self._current() == "-":
            self.pos += 1
        while self.pos < len(self.text) and (
            self.text[self.pos].isdigit() or self.text[self.pos] == "."
        ):
            self.pos += 1
        literal = self.text[start : self.pos]
        try:
            value = float(literal)
        except ValueError:
            raise QuerySyntaxError(f"Invalid number: {literal}", position=start) from None
        return Token(TokenType.NUMBER, value, start)

    def _read_identifier(self) -> Token:
        start = self.pos
        while self.pos < len(self.text) and (
            self.text[self.pos].isalnum() or self.text[self.pos] == "_"
        ):
            self.pos += 1
        word = self.text[start : self.pos]
        if word in ("true", "false"):
            return Token(TokenType.BOOLEAN, word == "true", start)
        if word in KEYWORDS:
            return Token(KEYWORDS[word], word, start)
        return Token(TokenType.IDENTIFIER, word, start)


def tokenize(text: str) -> List[Token]:
    return Lexer(text).tokenize()
