"""Resource query language: lexer, parser and evaluator."""

from typing import Any, Iterable, List, Mapping

from iam_grapher.query.evaluator import evaluate, values_equal, wildcard_match
from iam_grapher.query.expressions import And, Comparison, Expr, Not, Operator, Or
from iam_grapher.query.lexer import Lexer, Token, TokenType, tokenize
from iam_grapher.query.parser import QueryParser, parse_query


def filter_records(
    expr: Expr, records: Iterable[Mapping[str, Any]]
) -> List[Mapping[str, Any]]:
    """Return the records matching a compiled query, in order."""
    return [record for record in records if evaluate(expr, record)]


__all__ = [
    "And",
    "Comparison",
    "Expr",
    "Lexer",
    "Not",
    "Operator",
    "Or",
    "QueryParser",
    "Token",
    "TokenType",
    "evaluate",
    "filter_records",
    "parse_query",
    "tokenize",
    "values_equal",
    "wildcard_match",
]
