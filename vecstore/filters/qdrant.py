"""Qdrant filter translator."""

from qdrant_client import models

from vecstore.filters.expression import Comparison, Not, Operator
from vecstore.filters.translator import FilterTranslator, list_kind, value_kind

QdrantCondition = models.Filter | models.FieldCondition

_RANGE_KEYS = {
    Operator.GT: "gt",
    Operator.GTE: "gte",
    Operator.LT: "lt",
    Operator.LTE: "lte",
}


class QdrantFilterTranslator(FilterTranslator[QdrantCondition]):
    """Translate filters into native Qdrant payload conditions.

    Metadata lives under a payload key (default ``metadata``), so ``author``
    becomes the condition key ``metadata.author``. Qdrant ranges are numeric
    only and keyword matches take strings or integers.
    """

    backend = "qdrant"

    def __init__(self, payload_key: str = "metadata") -> None:
        self._payload_key = payload_key

    def to_filter(self, condition: QdrantCondition) -> models.Filter:
        """Wrap a bare field condition so it can be passed as query_filter."""
        if isinstance(condition, models.Filter):
            return condition
        return models.Filter(must=[condition])

    def visit_comparison(self, comparison: Comparison) -> QdrantCondition:
        key = f"{self._payload_key}.{comparison.field}"
        operator = comparison.operator
        value = comparison.value

        if operator.is_membership:
            values = list(value)  # type: ignore[arg-type]
            if list_kind(value) not in ("string", "number") or any(  # type: ignore[arg-type]
                isinstance(item, float) for item in values
            ):
                raise self.unsupported(comparison, "lists must hold only strings or only integers")
            if operator == Operator.IN:
                return models.FieldCondition(key=key, match=models.MatchAny(any=values))
            return models.FieldCondition(
                key=key, match=models.MatchExcept(**{"except": values})
            )

        if operator.is_ordering:
            if value_kind(value) != "number":  # type: ignore[arg-type]
                raise self.unsupported(comparison, "ranges are numeric only")
            return models.FieldCondition(
                key=key, range=models.Range(**{_RANGE_KEYS[operator]: value})
            )

        if isinstance(value, float):
            condition = models.FieldCondition(key=key, range=models.Range(gte=value, lte=value))
        else:
            condition = models.FieldCondition(key=key, match=models.MatchValue(value=value))
        if operator == Operator.NE:
            return models.Filter(must_not=[condition])
        return condition

    def visit_and(self, operands: list[QdrantCondition]) -> QdrantCondition:
        return models.Filter(must=operands)

    def visit_or(self, operands: list[QdrantCondition]) -> QdrantCondition:
        return models.Filter(should=operands)

    def visit_not(self, node: Not) -> QdrantCondition:
        return models.Filter(must_not=[self.visit(node.operand)])
