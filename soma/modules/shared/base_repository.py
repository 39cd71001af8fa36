"""
Base Repository Pattern

Purpose
-------
Provides a type-safe, generic repository abstraction for database operations
following SQLAlchemy 2.0 async patterns. Repositories encapsulate data access
and give every service the same vocabulary for lookups, locking and counting.

Design Notes
------------
This base repository provides:
- Primary-key lookups with and without a row lock
- Filtered single/multi-row queries
- Existence/counting utilities
- Bulk delete for retention cleanup
- Dialect-aware INSERT ... ON CONFLICT for claims and counters
- Debug-level structured logging for every call

What this class does NOT do:
- Manage transactions (the engine and DatabaseService handle that)
- Contain business logic

Usage
-----
    from soma.database.models import Transaction
    from soma.modules.shared import BaseRepository

    class TransactionRepository(BaseRepository[Transaction]):
        async def for_user(self, session, user_id):
            return await self.find_many_where(
                session, Transaction.to_user_id == user_id
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository for type-safe database operations.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def _name(self) -> str:
        return self.model_class.__name__

    async def get(self, session: AsyncSession, pk: Any, refresh: bool = False) -> Optional[T]:
        """
        Get a single record by primary key (no lock).

        Composite keys are passed as a tuple in column order. `refresh`
        re-reads a row already in the session, for tables written through
        Core statements such as `upsert`.
        """
        instance = await session.get(self.model_class, pk, populate_existing=refresh)

        self.log.debug(
            f"Repository.get: {self._name}",
            extra={"model": self._name, "pk": pk, "found": instance is not None},
        )

        return instance

    async def get_for_update(self, session: AsyncSession, pk: Any) -> Optional[T]:
        """
        Get a single record by primary key with SELECT FOR UPDATE lock.

        The row is re-read even if already present in the session so callers
        always act on the locked version.
        """
        instance = await session.get(
            self.model_class, pk, with_for_update=True, populate_existing=True
        )

        self.log.debug(
            f"Repository.get_for_update: {self._name}",
            extra={
                "model": self._name,
                "pk": pk,
                "found": instance is not None,
                "locked": True,
            },
        )

        return instance

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        """
        Find a single record matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            for_update: If True, use SELECT FOR UPDATE

        Returns:
            Model instance or None if not found
        """
        stmt = select(self.model_class).where(*conditions)

        if for_update:
            stmt = stmt.with_for_update()

        result = await session.execute(stmt)
        instance = result.scalars().first()

        self.log.debug(
            f"Repository.find_one_where: {self._name}",
            extra={
                "model": self._name,
                "found": instance is not None,
                "locked": for_update,
            },
        )

        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[List[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        """
        Find multiple records matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            order_by: Optional ordering clauses
            limit: Optional maximum number of results

        Returns:
            List of model instances
        """
        stmt = select(self.model_class).where(*conditions)

        if order_by:
            stmt = stmt.order_by(*order_by)

        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self._name}",
            extra={
                "model": self._name,
                "found_count": len(instances),
                "limit": limit,
            },
        )

        return instances

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = result.scalar_one()

        self.log.debug(
            f"Repository.count: {self._name}",
            extra={"model": self._name, "count": count},
        )

        return count

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)

        self.log.debug(f"Repository.add: {self._name}", extra={"model": self._name})

        return instance

    async def delete_where(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        """
        Bulk-delete rows matching conditions.

        Returns:
            Number of rows removed
        """
        stmt = delete(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        removed = result.rowcount or 0

        self.log.debug(
            f"Repository.delete_where: {self._name}",
            extra={"model": self._name, "removed": removed},
        )

        return removed

    # ------------------------------------------------------------------
    # Dialect-aware upserts
    # ------------------------------------------------------------------

    def _dialect_insert(self, session: AsyncSession) -> Any:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(self.model_class)
        if dialect == "sqlite":
            return sqlite_insert(self.model_class)
        raise NotImplementedError(f"upsert is not supported on dialect '{dialect}'")

    async def insert_ignore(
        self,
        session: AsyncSession,
        values: Dict[str, Any],
        index_elements: List[str],
    ) -> bool:
        """
        INSERT ... ON CONFLICT DO NOTHING.

        Returns:
            True if a row was inserted, False if it already existed
        """
        stmt = self._dialect_insert(session).values(**values).on_conflict_do_nothing(
            index_elements=index_elements
        )
        result = await session.execute(stmt)
        inserted = (result.rowcount or 0) > 0  # type: ignore[attr-defined]

        self.log.debug(
            f"Repository.insert_ignore: {self._name}",
            extra={"model": self._name, "inserted": inserted},
        )

        return inserted

    async def upsert(
        self,
        session: AsyncSession,
        values: Dict[str, Any],
        index_elements: List[str],
        update_values: Dict[str, Any],
    ) -> None:
        """
        INSERT ... ON CONFLICT DO UPDATE.

        Column references in `update_values` resolve against the existing row.
        """
        stmt = self._dialect_insert(session).values(**values).on_conflict_do_update(
            index_elements=index_elements,
            set_=update_values,
        )
        await session.execute(stmt)

        self.log.debug(
            f"Repository.upsert: {self._name}",
            extra={"model": self._name, "keys": index_elements},
        )
