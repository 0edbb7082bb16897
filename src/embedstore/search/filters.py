"""Filter AST — index-agnostic filter expressions over vector metadata."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class FilterOp(Enum):
    """Comparison operators supported by every VectorIndex."""

    EQ = "eq"
    NE = "ne"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"


class LogicalOp(Enum):
    """How a LogicalGroup combines its children."""

    AND = "and"
    OR = "or"


# ------------------------------------------------------------------
# AST nodes
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Comparison:
    """One predicate on an index entry field, e.g. ``content_type == "comment"``.

    Attributes:
        field: Entry field (``content_id``, ``content_type``, ``embedding_model``,
            ``chunk_index``) or a key of the record's metadata.
        op: Comparison operator.
        value: Value to compare against.  For ``EXISTS``, this is a bool.
    """

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class LogicalGroup:
    """AND or OR over child expressions.

    Attributes:
        op: Logical operator (AND / OR).
        expressions: Child expressions to combine.
    """

    op: LogicalOp
    expressions: list[FilterExpression]


FilterExpression = Comparison | LogicalGroup
"""Union type for the filter AST: either a leaf :class:`Comparison` or a
:class:`LogicalGroup` combining sub-expressions."""


# ------------------------------------------------------------------
# Builder helpers
# ------------------------------------------------------------------


def eq(field: str, value: Any) -> Comparison:
    """``field == value``."""
    return Comparison(field=field, op=FilterOp.EQ, value=value)


def ne(field: str, value: Any) -> Comparison:
    """``field != value``."""
    return Comparison(field=field, op=FilterOp.NE, value=value)


def in_(field: str, values: list[Any]) -> Comparison:
    """``field IN values``."""
    return Comparison(field=field, op=FilterOp.IN, value=list(values))


def not_in(field: str, values: list[Any]) -> Comparison:
    """``field NOT IN values``."""
    return Comparison(field=field, op=FilterOp.NOT_IN, value=list(values))


def exists(field: str, *, exists: bool = True) -> Comparison:
    """``field EXISTS`` (or ``NOT EXISTS`` if ``exists=False``)."""
    return Comparison(field=field, op=FilterOp.EXISTS, value=exists)


def and_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with AND."""
    return LogicalGroup(op=LogicalOp.AND, expressions=list(exprs))


def or_(*exprs: FilterExpression) -> LogicalGroup:
    """Combine expressions with OR."""
    return LogicalGroup(op=LogicalOp.OR, expressions=list(exprs))


# ------------------------------------------------------------------
# Evaluation
# ------------------------------------------------------------------


def evaluate(expr: FilterExpression, metadata: dict[str, Any]) -> bool:
    """Evaluate *expr* against one metadata dict (in-process indexes).

    Examples::

        evaluate(eq("content_type", "comment"), {"content_type": "comment"})
        # True

        evaluate(and_(eq("a", 1), exists("b", exists=False)), {"a": 1})
        # True
    """
    if isinstance(expr, Comparison):
        present = expr.field in metadata
        actual = metadata.get(expr.field)
        if expr.op == FilterOp.EXISTS:
            return present == bool(expr.value)
        if expr.op == FilterOp.EQ:
            return present and actual == expr.value
        if expr.op == FilterOp.NE:
            return not present or actual != expr.value
        if expr.op == FilterOp.IN:
            return present and actual in expr.value
        return not present or actual not in expr.value

    # LogicalGroup
    results = (evaluate(child, metadata) for child in expr.expressions)
    if expr.op == LogicalOp.AND:
        return all(results)
    return any(results)
