"""
Document Store — serialized read-modify-write access to the database.

Every task tick, forecast publish and alert evaluation runs inside exactly one
``transaction()`` block. Blocks are serialized by a single asyncio lock, so two
task drivers can never observe each other's half-applied changes. Blocks must
not be nested: the lock is not reentrant.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import structlog
from sqlalchemy import delete, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()

ModelT = TypeVar("ModelT")


class StoreTransaction:
    """Operations available inside one serialized unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, model: type[ModelT], *criteria: Any) -> ModelT | None:
        result = await self.session.execute(select(model).where(*criteria).limit(1))
        return result.scalar_one_or_none()

    async def find_all(
        self,
        model: type[ModelT],
        *criteria: Any,
        order_by: Any = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[ModelT]:
        query = select(model).where(*criteria)
        if order_by is not None:
            query = query.order_by(order_by)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def add(self, record: Any) -> None:
        self.session.add(record)

    async def replace_collection(
        self,
        model: type[ModelT],
        criteria: Sequence[Any],
        records: Iterable[ModelT],
    ) -> int:
        """Delete every row matching ``criteria`` and insert ``records`` in their place."""
        if not criteria:
            raise ValueError("replace_collection requires at least one criterion")
        await self.session.execute(delete(model).where(*criteria))
        # Deletes must hit the database before inserts that reuse the same keys.
        await self.session.flush()
        rows = list(records)
        self.session.add_all(rows)
        return len(rows)

    async def append_unique(self, record: Any) -> bool:
        """Add ``record`` unless a row with the same primary key already exists."""
        mapper = inspect(type(record))
        identity = mapper.primary_key_from_instance(record)
        if all(value is not None for value in identity):
            key = identity[0] if len(identity) == 1 else tuple(identity)
            existing = await self.session.get(type(record), key)
            if existing is not None:
                return False
        self.session.add(record)
        return True

    async def persist(self) -> None:
        await self.session.commit()


class DocumentStore:
    """Single-writer gateway over an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """Atomic read-modify-write; commits on exit, rolls back on any error."""
        async with self._lock:
            async with self._session_factory() as session:
                tx = StoreTransaction(session)
                try:
                    yield tx
                    await tx.persist()
                except BaseException:
                    await session.rollback()
                    raise

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[StoreTransaction]:
        """Consistent read view; closing the session discards any accidental writes."""
        async with self._lock:
            async with self._session_factory() as session:
                yield StoreTransaction(session)

    async def find(self, model: type[ModelT], *criteria: Any) -> ModelT | None:
        async with self.snapshot() as tx:
            return await tx.find(model, *criteria)

    async def find_all(self, model: type[ModelT], *criteria: Any, **kwargs: Any) -> list[ModelT]:
        async with self.snapshot() as tx:
            return await tx.find_all(model, *criteria, **kwargs)
