"""Filter translator interface.

A translator renders a portable filter expression into one backend's native
predicate form. Values always travel as parameters, never inside query text.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from vecstore.exceptions import UnsupportedOperatorError
from vecstore.filters.expression import (
    Comparison,
    Combinator,
    FilterExpression,
    LogicalOperator,
    Not,
    Scalar,
)

T = TypeVar("T")


class FilterTranslator(ABC, Generic[T]):
    """Abstract base class for backend filter translators."""

    backend: str = "unknown"

    def translate(self, expression: FilterExpression) -> T:
        """Render an expression for this backend.

        Args:
            expression: Filter tree to render.

        Returns:
            Backend-specific predicate.

        Raises:
            UnsupportedOperatorError: If the backend cannot express a node.
        """
        return self.visit(expression)

    def visit(self, expression: FilterExpression) -> T:
        """Dispatch one node to the matching visit_* method."""
        if isinstance(expression, Comparison):
            return self.visit_comparison(expression)
        if isinstance(expression, Not):
            return self.visit_not(expression)
        if isinstance(expression, Combinator):
            operands = [self.visit(operand) for operand in expression.operands]
            if expression.operator == LogicalOperator.AND:
                return self.visit_and(operands)
            return self.visit_or(operands)
        raise UnsupportedOperatorError(
            f"Unknown filter node {type(expression).__name__}",
            details={"backend": self.backend},
        )

    @abstractmethod
    def visit_comparison(self, comparison: Comparison) -> T:
        """Render a leaf comparison."""
        ...

    @abstractmethod
    def visit_and(self, operands: list[T]) -> T:
        """Combine translated operands with AND."""
        ...

    @abstractmethod
    def visit_or(self, operands: list[T]) -> T:
        """Combine translated operands with OR."""
        ...

    @abstractmethod
    def visit_not(self, node: Not) -> T:
        """Render a negation."""
        ...

    def unsupported(self, comparison: Comparison, reason: str) -> UnsupportedOperatorError:
        """Build the error raised for an inexpressible comparison."""
        return UnsupportedOperatorError(
            f"{self.backend} cannot express '{comparison.field} "
            f"{comparison.operator.value} ...': {reason}",
            details={
                "backend": self.backend,
                "field": comparison.field,
                "operator": comparison.operator.name,
            },
        )


def value_kind(value: Scalar) -> str:
    """Classify a scalar as 'bool', 'number' or 'string'."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def list_kind(values: tuple[Scalar, ...]) -> str | None:
    """Common kind of a value list, None when mixed; empty lists count as strings."""
    kinds = {value_kind(value) for value in values}
    if not kinds:
        return "string"
    if len(kinds) == 1:
        return kinds.pop()
    return None
