"""Minimal generic repository for SQLAlchemy models.

Session is always explicit: the caller owns the transaction. For queries not
covered here, use the session directly.

Example:
    class OutboxRepository(BaseRepository[OutboxMessage]):
        async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
            ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from reliable_delivery.core.database.exceptions import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Minimal generic repository.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - create(session, instance) -> T
    """

    __slots__ = ("model", "_logger")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class (e.g., OutboxMessage)
        """
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key.

        The row is always re-read so attributes changed by bulk UPDATE
        statements are current.

        Args:
            session: Database session
            id: Primary key value (a tuple for composite keys)

        Returns:
            Entity if found, None otherwise
        """
        instance = await session.get(self.model, id, populate_existing=True)
        self._logger.debug(
            "db.get",
            extra={"entity": self.model.__name__, "id": str(id), "found": instance is not None},
        )
        return instance

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError.

        Raises:
            NotFoundError: If entity doesn't exist
        """
        instance = await self.get(session, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={
                    "entity": self.model.__name__,
                    "id": str(id),
                    "operation": "db.get_or_raise",
                },
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Add a new entity to the session and flush it.

        Flushing assigns generated values and surfaces constraint errors
        inside the caller's transaction.
        """
        session.add(instance)
        await session.flush()
        return instance


__all__ = ["BaseRepository"]
