"""Schema initializer interface."""

from abc import ABC, abstractmethod

from vecstore.logging_config import get_logger

logger = get_logger(__name__)


class SchemaInitializer(ABC):
    """Creates or validates the structures a store needs in its backend."""

    @abstractmethod
    async def ensure_schema(self) -> None:
        """Create missing structures. Safe to call repeatedly and concurrently.

        Raises:
            SchemaConflictError: If an existing structure is incompatible.
        """
        ...

    @abstractmethod
    async def validate_schema(self) -> None:
        """Check that the structures exist and match the configuration.

        Raises:
            SchemaNotFoundError: If a required structure is absent.
            SchemaConflictError: If dimensions or distance metric differ.
        """
        ...

    async def prepare(self, create: bool) -> None:
        """ensure_schema() when ``create`` is set, validate_schema() otherwise."""
        if create:
            logger.info(f"Ensuring schema via {type(self).__name__}")
            await self.ensure_schema()
        else:
            await self.validate_schema()
