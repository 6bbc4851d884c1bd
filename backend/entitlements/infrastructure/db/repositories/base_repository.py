"""
Base Repository for the Entitlements service

Generic async repository over a session owned by the caller. Repositories
flush but never commit; the service that opened the transaction decides.
"""

from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with read helpers.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    def insert(self):
        """
        Dialect-specific INSERT supporting ON CONFLICT.

        PostgreSQL in production, SQLite in local runs and tests.
        """
        if self.dialect_name == "sqlite":
            return sqlite.insert(self._model)
        return postgresql.insert(self._model)

    async def get_model(self, id: UUID) -> Optional[ModelType]:
        """Get a single row by its primary key."""
        return await self._session.get(self._model, id)

