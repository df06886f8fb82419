"""PostgreSQL (pgvector) filter translator.

Renders filters as a WHERE fragment over a JSONB metadata column. Both the
metadata key and the value are bound as parameters (psycopg ``%s``
placeholders); values are wrapped in ``Jsonb`` so comparisons happen between
JSON values and never cast stored text at query time.
"""

import re
from typing import Any, NamedTuple

from psycopg.types.json import Jsonb

from vecstore.exceptions import ConfigurationError
from vecstore.filters.expression import Comparison, Not, Operator
from vecstore.filters.translator import FilterTranslator, value_kind

SQL_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]{0,62}\Z")

_JSON_TYPES = {"number": "number", "string": "string"}

_SQL_OPERATORS = {
    Operator.EQ: "=",
    Operator.NE: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


class SqlClause(NamedTuple):
    """SQL text with ``%s`` placeholders and the matching parameters."""

    text: str
    params: tuple[Any, ...]


class SqlFilterTranslator(FilterTranslator[SqlClause]):
    """Translate filters into a parameterized PostgreSQL predicate.

    Missing keys yield NULL, so they drop out of both a comparison and its
    negation. Ordering operators only match stored values of the same JSON
    type as the filter value.
    """

    backend = "pg_vector"

    def __init__(self, metadata_column: str = "metadata") -> None:
        if not SQL_IDENTIFIER.match(metadata_column):
            raise ConfigurationError(
                f"Invalid metadata column name: {metadata_column!r}",
                details={"column": metadata_column},
            )
        self._column = metadata_column

    def visit_comparison(self, comparison: Comparison) -> SqlClause:
        ref = f"({self._column} -> %s)"
        field = comparison.field
        operator = comparison.operator

        if operator == Operator.IN:
            values = [Jsonb(value) for value in comparison.value]  # type: ignore[union-attr]
            return SqlClause(f"({ref} = ANY(%s::jsonb[]))", (field, values))
        if operator == Operator.NIN:
            values = [Jsonb(value) for value in comparison.value]  # type: ignore[union-attr]
            return SqlClause(f"({ref} <> ALL(%s::jsonb[]))", (field, values))

        sql_op = _SQL_OPERATORS[operator]
        if operator.is_ordering:
            kind = value_kind(comparison.value)  # type: ignore[arg-type]
            if kind not in _JSON_TYPES:
                raise self.unsupported(comparison, f"ordering is undefined for {kind} values")
            return SqlClause(
                f"(jsonb_typeof{ref} = '{_JSON_TYPES[kind]}' AND {ref} {sql_op} %s)",
                (field, field, Jsonb(comparison.value)),
            )
        return SqlClause(f"({ref} {sql_op} %s)", (field, Jsonb(comparison.value)))

    def visit_and(self, operands: list[SqlClause]) -> SqlClause:
        return self._join(" AND ", operands)

    def visit_or(self, operands: list[SqlClause]) -> SqlClause:
        return self._join(" OR ", operands)

    def visit_not(self, node: Not) -> SqlClause:
        inner = self.visit(node.operand)
        return SqlClause(f"(NOT {inner.text})", inner.params)

    @staticmethod
    def _join(separator: str, operands: list[SqlClause]) -> SqlClause:
        text = "(" + separator.join(operand.text for operand in operands) + ")"
        params: tuple[Any, ...] = ()
        for operand in operands:
            params += operand.params
        return SqlClause(text, params)
