"""Evaluates a parsed query against one resource record. Pure, never raises."""

from typing import Any, Mapping

from iam_grapher.query.expressions import (
    And,
    Comparison,
    Expr,
    Not,
    Operator,
    Or,
    Value,
)
from iam_grapher.records import resolve_path

NUMBER_EPSILON = 1e-9


def evaluate(expr: Expr, record: Mapping[str, Any]) -> bool:
    if isinstance(expr, Comparison):
        found, value = resolve_path(record, expr.field_path)
        if not found:
            return False
        return _compare(value, expr.operator, expr.value)
    if isinstance(expr, And):
        return evaluate(expr.left, record) and evaluate(expr.right, record)
    if isinstance(expr, Or):
        return evaluate(expr.left, record) or evaluate(expr.right, record)
    if isinstance(expr, Not):
        return not evaluate(expr.expr, record)
    raise TypeError(f"Unknown expression node: {expr!r}")


def _compare(actual: Any, operator: Operator, expected: Value) -> bool:
    if operator is Operator.EQ:
        return values_equal(actual, expected)
    if operator is Operator.NE:
        return not values_equal(actual, expected)
    if operator is Operator.LIKE:
        return (
            isinstance(actual, str)
            and isinstance(expected, str)
            and wildcard_match(actual, expected)
        )
    if operator is Operator.IN:
        return isinstance(expected, tuple) and any(
            values_equal(actual, item) for item in expected
        )
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(actual: Any, expected: Value) -> bool:
    """Type-strict equality; mismatched types compare unequal."""
    if isinstance(expected, bool):
        return isinstance(actual, bool) and actual == expected
    if _is_number(expected):
        if not _is_number(actual):
            return False
        if isinstance(actual, int) and isinstance(expected, int):
            return actual == expected
        try:
            return abs(actual - expected) < NUMBER_EPSILON
        except OverflowError:
            # Integer too large to convert to float
            return False
    if isinstance(expected, str):
        return isinstance(actual, str) and actual == expected
    return False


def wildcard_match(text: str, pattern: str) -> bool:
    """
    Match text against a pattern where '*' stands for any run of characters.

    The first segment must be a prefix, the last a suffix, and interior
    segments are found left to right without backtracking.
    """
    parts = pattern.split("*")
    if len(parts) == 1:
        return text == pattern

    pos = 0
    last = len(parts) - 1
    for i, part in enumerate(parts):
        if not part:
            continue
        if i == 0:
            if not text.startswith(part):
                return False
            pos = len(part)
        elif i == last:
            if not text.endswith(part) or pos > len(text) - len(part):
                return False
        else:
            found = text.find(part, pos)
            if found < 0:
                return False
            pos = found + len(part)
    return True
