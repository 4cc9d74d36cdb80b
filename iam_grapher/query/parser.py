"""
Recursive-descent parser for the resource query language.

Grammar, lowest precedence first:

    or         := and (OR and)*
    and        := not (AND not)*
    not        := NOT? primary
    primary    := '(' or ')' | comparison
    comparison := field_path op value
    field_path := IDENT ('.' IDENT)*
    op         := '==' | '!=' | LIKE | IN
    value      := STRING | NUMBER | BOOLEAN | '[' (value (',' value)*)? ']'
"""

from typing import List, Tuple

from iam_grapher.exceptions import QuerySyntaxError
from iam_grapher.query.expressions import (
    And,
    Comparison,
    Expr,
    Not,
    Operator,
    Or,
    Value,
)
from iam_grapher.query.lexer import Token, TokenType, tokenize

OPERATORS = {
    TokenType.EQ: Operator.EQ,
    TokenType.NE: Operator.NE,
    TokenType.LIKE: Operator.LIKE,
    TokenType.IN: Operator.IN,
}

SCALARS = (TokenType.STRING, TokenType.NUMBER, TokenType.BOOLEAN)


class QueryParser:
    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def parse(self) -> Expr:
        expr = self._parse_or()
        if self._current.type is not TokenType.EOF:
            raise self._error("end of input")
        return expr

    @property
    def _current(self) -> Token:
        return self.tokens[min(self.pos, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current
        self.pos += 1
        return token

    def _check(self, token_type: TokenType) -> bool:
        return self._current.type is token_type

    def _expect(self, token_type: TokenType, expected: str) -> Token:
        if not self._check(token_type):
            raise self._error(expected)
        return self._advance()

    def _error(self, expected: str) -> QuerySyntaxError:
        token = self._current
        return QuerySyntaxError(
            f"Expected {expected}, got {token.describe()}", position=token.position
        )

    def _parse_or(self) -> Expr:
        expr = self._parse_and()
        while self._check(TokenType.OR):
            self._advance()
            expr = Or(expr, self._parse_and())
        return expr

    def _parse_and(self) -> Expr:
        expr = self._parse_not()
        while self._check(TokenType.AND):
            self._advance()
            expr = And(expr, self._parse_not())
        return expr

    def _parse_not(self) -> Expr:
        if self._check(TokenType.NOT):
            self._advance()
            return Not(self._parse_primary())
        return self._parse_primary()

    def _parse_primary(self) -> Expr:
        if self._check(TokenType.LPAREN):
            self._advance()
            expr = self._parse_or()
            self._expect(TokenType.RPAREN, "closing parenthesis ')'")
            return expr
        return self._parse_comparison()

    def _parse_comparison(self) -> Comparison:
        path = self._parse_field_path()
        if self._current.type not in OPERATORS:
            raise self._error("operator (==, !=, LIKE, IN)")
        operator = OPERATORS[self._advance().type]
        return Comparison(path, operator, self._parse_value())

    def _parse_field_path(self) -> Tuple[str, ...]:
        parts = [self._expect(TokenType.IDENTIFIER, "field name").value]
        while self._check(TokenType.DOT):
            self._advance()
            parts.append(self._expect(TokenType.IDENTIFIER, "field name after '.'").value)
        return tuple(parts)

    def _parse_value(self) -> Value:
        if self._current.type in SCALARS:
            return self._advance().value
        if self._check(TokenType.LBRACKET):
            return self._parse_array()
        raise self._error("value (string, number, boolean or array)")

    def _parse_array(self) -> Value:
        self._expect(TokenType.LBRACKET, "'['")
        items = []
        if not self._check(TokenType.RBRACKET):
            items.append(self._parse_value())
            while self._check(TokenType.COMMA):
                self._advance()
                items.append(self._parse_value())
        self._expect(TokenType.RBRACKET, "']'")
        return tuple(items)


def parse_query(text: str) -> Expr:
    """Lex and parse query text. Raises QuerySyntaxError on bad input."""
    return QueryParser(tokenize(text)).parse()
