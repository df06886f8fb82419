"""Backend-independent metadata filter expressions.

A filter is an immutable tree of Comparison, Combinator and Not nodes.
Trees are built with the functions in this module (eq, in_, and_, ...) or
parsed from the portable text form (see vecstore.filters.parser), and are
consumed only by backend translators.

Example:
    >>> from vecstore.filters import and_, eq, in_
    >>> expr = and_(in_("author", ["john", "jill"]), eq("article_type", "blog"))
    >>> str(expr)
    "author in ['john', 'jill'] && article_type == 'blog'"
"""

import math
import re
from collections.abc import Iterable
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, model_validator

from vecstore.exceptions import InvalidExpressionError

Scalar = bool | int | float | str
FilterValue = Scalar | tuple[Scalar, ...]


class Operator(str, Enum):
    """Comparison operators, valued by their canonical text token."""

    EQ = "=="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "in"
    NIN = "nin"

    @property
    def is_membership(self) -> bool:
        """True for IN/NIN, which take a list of values."""
        return self in (Operator.IN, Operator.NIN)

    @property
    def is_ordering(self) -> bool:
        """True for GT/GTE/LT/LTE."""
        return self in (Operator.GT, Operator.GTE, Operator.LT, Operator.LTE)


class LogicalOperator(str, Enum):
    """Boolean combinators, valued by their canonical text token."""

    AND = "&&"
    OR = "||"


class _Node(BaseModel):
    """Common configuration for filter tree nodes."""

    model_config = ConfigDict(frozen=True, strict=True)

    def __str__(self) -> str:
        return to_text(self)  # type: ignore[arg-type]


def _check_scalar(value: Any, field: str) -> None:
    if value is None:
        raise InvalidExpressionError(
            f"Filter value for '{field}' must not be null",
            details={"field": field},
        )
    if not isinstance(value, (bool, int, float, str)):
        raise InvalidExpressionError(
            f"Unsupported filter value type {type(value).__name__} for '{field}'",
            details={"field": field},
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidExpressionError(
            f"Filter value for '{field}' must be finite",
            details={"field": field},
        )


class Comparison(_Node):
    """Leaf predicate comparing one metadata field against a value."""

    field: str
    operator: Operator
    value: FilterValue

    @model_validator(mode="before")
    @classmethod
    def _validate_leaf(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        field = data.get("field")
        operator = data.get("operator")
        value = data.get("value")

        if not isinstance(field, str) or not field.strip():
            raise InvalidExpressionError("Filter field name must be a non-empty string")
        if not isinstance(operator, Operator):
            raise InvalidExpressionError(
                f"Unknown comparison operator: {operator!r}",
                details={"field": field},
            )

        if operator.is_membership:
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
                raise InvalidExpressionError(
                    f"Operator '{operator.value}' requires a list of values",
                    details={"field": field},
                )
            for item in value:
                _check_scalar(item, field)
            return {**data, "value": tuple(value)}

        if isinstance(value, (list, tuple, set, dict)):
            raise InvalidExpressionError(
                f"Operator '{operator.value}' requires a single value",
                details={"field": field},
            )
        _check_scalar(value, field)
        return data


class Combinator(_Node):
    """AND/OR over two or more operands."""

    operator: LogicalOperator
    operands: tuple["FilterExpression", ...]

    @model_validator(mode="before")
    @classmethod
    def _validate_operands(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        operator = data.get("operator")
        operands = data.get("operands")

        if not isinstance(operator, LogicalOperator):
            raise InvalidExpressionError(f"Unknown logical operator: {operator!r}")
        if not isinstance(operands, (list, tuple)) or len(operands) < 2:
            raise InvalidExpressionError(
                f"'{operator.value}' requires at least two operands",
                details={"operands": len(operands) if isinstance(operands, (list, tuple)) else 0},
            )
        for operand in operands:
            if not isinstance(operand, _Node):
                raise InvalidExpressionError(
                    f"'{operator.value}' operands must be filter expressions"
                )
        return {**data, "operands": tuple(operands)}


class Not(_Node):
    """Negation of a single operand."""

    operand: "FilterExpression"

    @model_validator(mode="before")
    @classmethod
    def _validate_operand(cls, data: Any) -> Any:
        if isinstance(data, dict) and not isinstance(data.get("operand"), _Node):
            raise InvalidExpressionError("NOT requires a filter expression operand")
        return data


FilterExpression = Union[Comparison, Combinator, Not]

Combinator.model_rebuild()
Not.model_rebuild()


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def eq(field: str, value: Scalar) -> Comparison:
    """field == value"""
    return Comparison(field=field, operator=Operator.EQ, value=value)


def ne(field: str, value: Scalar) -> Comparison:
    """field != value"""
    return Comparison(field=field, operator=Operator.NE, value=value)


def gt(field: str, value: Scalar) -> Comparison:
    """field > value"""
    return Comparison(field=field, operator=Operator.GT, value=value)


def gte(field: str, value: Scalar) -> Comparison:
    """field >= value"""
    return Comparison(field=field, operator=Operator.GTE, value=value)


def lt(field: str, value: Scalar) -> Comparison:
    """field < value"""
    return Comparison(field=field, operator=Operator.LT, value=value)


def lte(field: str, value: Scalar) -> Comparison:
    """field <= value"""
    return Comparison(field=field, operator=Operator.LTE, value=value)


def _as_values(field: str, values: Iterable[Scalar]) -> tuple[Scalar, ...]:
    if isinstance(values, (str, bytes)):
        raise InvalidExpressionError(
            "Set membership takes a list of values, not a string",
            details={"field": field},
        )
    return tuple(values)


def in_(field: str, values: Iterable[Scalar]) -> Comparison:
    """field in [values]"""
    return Comparison(field=field, operator=Operator.IN, value=_as_values(field, values))


def not_in(field: str, values: Iterable[Scalar]) -> Comparison:
    """field nin [values]"""
    return Comparison(field=field, operator=Operator.NIN, value=_as_values(field, values))


def and_(*operands: FilterExpression) -> Combinator:
    """Conjunction of two or more expressions."""
    return Combinator(operator=LogicalOperator.AND, operands=operands)


def or_(*operands: FilterExpression) -> Combinator:
    """Disjunction of two or more expressions."""
    return Combinator(operator=LogicalOperator.OR, operands=operands)


def not_(operand: FilterExpression) -> Not:
    """Negation."""
    return Not(operand=operand)


# ---------------------------------------------------------------------------
# Canonical text form
# ---------------------------------------------------------------------------

_PRECEDENCE = {LogicalOperator.OR: 1, LogicalOperator.AND: 2}

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*\Z")

KEYWORDS = frozenset({"and", "or", "not", "in", "nin", "true", "false"})


def _quote(text: str, quote: str) -> str:
    escaped = text.replace("\\", "\\\\").replace(quote, "\\" + quote)
    return f"{quote}{escaped}{quote}"


def _render_field(field: str) -> str:
    if _IDENTIFIER.match(field) and field.lower() not in KEYWORDS:
        return field
    return _quote(field, '"')


def _render_scalar(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return _quote(value, "'")
    return repr(value)


def _render_value(value: FilterValue) -> str:
    if isinstance(value, tuple):
        return "[" + ", ".join(_render_scalar(item) for item in value) + "]"
    return _render_scalar(value)


def to_text(expression: FilterExpression) -> str:
    """Render an expression in the canonical portable text form.

    NOT binds tightest, then AND, then OR. A nested combinator is wrapped in
    parentheses when it binds looser than its parent or repeats the parent's
    operator, so explicit grouping survives a parse round trip.
    """
    if isinstance(expression, Comparison):
        return (
            f"{_render_field(expression.field)} {expression.operator.value} "
            f"{_render_value(expression.value)}"
        )
    if isinstance(expression, Not):
        return f"NOT ({to_text(expression.operand)})"

    parts: list[str] = []
    for operand in expression.operands:
        text = to_text(operand)
        if isinstance(operand, Combinator) and (
            operand.operator == expression.operator
            or _PRECEDENCE[operand.operator] < _PRECEDENCE[expression.operator]
        ):
            text = f"({text})"
        parts.append(text)
    return f" {expression.operator.value} ".join(parts)

