"""Neo4j (Cypher) filter translator."""

from typing import Any, NamedTuple

from vecstore.filters.expression import Comparison, FilterExpression, Not, Operator
from vecstore.filters.translator import FilterTranslator

_CYPHER_OPERATORS = {
    Operator.EQ: "=",
    Operator.NE: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.IN: "IN",
}


class CypherClause(NamedTuple):
    """Cypher predicate text and its named parameters."""

    text: str
    params: dict[str, Any]


def quote_name(name: str) -> str:
    """Backtick-quote a Cypher name, doubling embedded backticks."""
    return "`" + name.replace("`", "``") + "`"


class CypherFilterTranslator(FilterTranslator[CypherClause]):
    """Translate filters into a Cypher WHERE predicate.

    Metadata keys are stored as node properties under a prefix, so
    ``author`` becomes ``node.`metadata.author```. Every value is bound as a
    ``$filter_N`` parameter.
    """

    backend = "neo4j"

    def __init__(
        self,
        variable: str = "node",
        property_prefix: str = "metadata.",
        parameter_prefix: str = "filter_",
    ) -> None:
        self._variable = variable
        self._property_prefix = property_prefix
        self._parameter_prefix = parameter_prefix
        self._params: dict[str, Any] = {}

    def translate(self, expression: FilterExpression) -> CypherClause:
        # Parameter numbering is per call.
        renderer = CypherFilterTranslator(
            self._variable, self._property_prefix, self._parameter_prefix
        )
        clause = renderer.visit(expression)
        return CypherClause(clause.text, renderer._params)

    def _bind(self, value: Any) -> str:
        name = f"{self._parameter_prefix}{len(self._params)}"
        self._params[name] = value
        return f"${name}"

    def property_ref(self, field: str) -> str:
        """Cypher reference to the property holding a metadata key."""
        return f"{self._variable}.{quote_name(self._property_prefix + field)}"

    def visit_comparison(self, comparison: Comparison) -> CypherClause:
        ref = self.property_ref(comparison.field)
        value = comparison.value
        if comparison.operator.is_membership:
            value = list(value)  # type: ignore[arg-type]
        placeholder = self._bind(value)

        if comparison.operator == Operator.NIN:
            return CypherClause(f"NOT ({ref} IN {placeholder})", {})
        operator = _CYPHER_OPERATORS[comparison.operator]
        return CypherClause(f"{ref} {operator} {placeholder}", {})

    def visit_and(self, operands: list[CypherClause]) -> CypherClause:
        return CypherClause("(" + " AND ".join(o.text for o in operands) + ")", {})

    def visit_or(self, operands: list[CypherClause]) -> CypherClause:
        return CypherClause("(" + " OR ".join(o.text for o in operands) + ")", {})

    def visit_not(self, node: Not) -> CypherClause:
        inner = self.visit(node.operand)
        return CypherClause(f"NOT ({inner.text})", {})
