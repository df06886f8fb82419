"""Portable metadata filter expressions and their backend translators."""

from vecstore.filters.expression import (
    Comparison,
    Combinator,
    FilterExpression,
    LogicalOperator,
    Not,
    Operator,
    and_,
    eq,
    gt,
    gte,
    in_,
    lt,
    lte,
    ne,
    not_,
    not_in,
    or_,
    to_text,
)
from vecstore.filters.parser import parse_filter
from vecstore.filters.translator import FilterTranslator

__all__ = [
    "Comparison",
    "Combinator",
    "FilterExpression",
    "FilterTranslator",
    "LogicalOperator",
    "Not",
    "Operator",
    "and_",
    "eq",
    "gt",
    "gte",
    "in_",
    "lt",
    "lte",
    "ne",
    "not_",
    "not_in",
    "or_",
    "parse_filter",
    "to_text",
]
