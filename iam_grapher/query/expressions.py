"""Query AST. Nodes are immutable and can be evaluated against any record."""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union


class Operator(Enum):
    EQ = "=="
    NE = "!="
    LIKE = "LIKE"
    IN = "IN"


# str | float | bool | tuple of values
Value = Union[str, float, bool, Tuple["Value", ...]]


@dataclass(frozen=True)
class Comparison:
    field_path: Tuple[str, ...]
    operator: Operator
    value: Value


@dataclass(frozen=True)
class And:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Or:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Not:
    expr: "Expr"


Expr = Union[Comparison, And, Or, Not]
