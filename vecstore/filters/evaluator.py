"""In-process filter evaluation for the in-memory backend.

Predicates follow SQL three-valued logic so the in-memory store agrees with
the database backends: a comparison against a missing key is unknown
(None), unknown stays unknown under NOT, and only True matches.
"""

import operator as op
from collections.abc import Callable, Mapping
from typing import Any

from vecstore.filters.expression import Comparison, Not, Operator
from vecstore.filters.translator import FilterTranslator, value_kind

Predicate = Callable[[Mapping[str, Any]], bool | None]

_ORDERING = {
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
}

_MISSING = object()


def _same_kind(left: Any, right: Any) -> bool:
    if not isinstance(left, (bool, int, float, str)):
        return False
    return value_kind(left) == value_kind(right)


class InMemoryFilterTranslator(FilterTranslator[Predicate]):
    """Compile filters into predicates over metadata mappings."""

    backend = "in_memory"

    def visit_comparison(self, comparison: Comparison) -> Predicate:
        field = comparison.field
        operator = comparison.operator
        expected = comparison.value
        if operator.is_ordering and value_kind(expected) == "bool":  # type: ignore[arg-type]
            raise self.unsupported(comparison, "ordering is undefined for bool values")

        def predicate(metadata: Mapping[str, Any]) -> bool | None:
            actual = metadata.get(field, _MISSING)
            if operator == Operator.IN:
                if not expected:
                    return False
                if actual is _MISSING or actual is None:
                    return None
                return any(_same_kind(actual, v) and actual == v for v in expected)  # type: ignore
            if operator == Operator.NIN:
                if not expected:
                    return True
                if actual is _MISSING or actual is None:
                    return None
                return not any(
                    _same_kind(actual, v) and actual == v for v in expected  # type: ignore
                )
            if actual is _MISSING or actual is None:
                return None
            if operator == Operator.EQ:
                return _same_kind(actual, expected) and actual == expected
            if operator == Operator.NE:
                return not (_same_kind(actual, expected) and actual == expected)
            if not _same_kind(actual, expected):
                return False
            return bool(_ORDERING[operator](actual, expected))

        return predicate

    def visit_and(self, operands: list[Predicate]) -> Predicate:
        def predicate(metadata: Mapping[str, Any]) -> bool | None:
            result: bool | None = True
            for operand in operands:
                value = operand(metadata)
                if value is False:
                    return False
                if value is None:
                    result = None
            return result

        return predicate

    def visit_or(self, operands: list[Predicate]) -> Predicate:
        def predicate(metadata: Mapping[str, Any]) -> bool | None:
            result: bool | None = False
            for operand in operands:
                value = operand(metadata)
                if value is True:
                    return True
                if value is None:
                    result = None
            return result

        return predicate

    def visit_not(self, node: Not) -> Predicate:
        inner = self.visit(node.operand)

        def predicate(metadata: Mapping[str, Any]) -> bool | None:
            value = inner(metadata)
            return None if value is None else not value

        return predicate


def matches(predicate: Predicate, metadata: Mapping[str, Any]) -> bool:
    """True only when the predicate evaluates to True (unknown is a miss)."""
    return predicate(metadata) is True
