"""Append-only document store used for cache entries, tombstones and audit records.

The store is deliberately minimal: records are appended under a category and
read back by category in insertion order. Nothing is updated in place.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from semantic_mediator.models.enums import RecordCategory
from semantic_mediator.models.record import StoredRecord

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Protocol for durable, append-only record storage."""

    async def append(self, category: RecordCategory, record: dict[str, Any]) -> str:
        """Append a record and return its storage id."""
        ...

    async def query_by_category(
        self,
        category: RecordCategory,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return records in insertion order.

        With a limit, only the most recent ``limit`` records are returned
        (still oldest first).
        """
        ...


class InMemoryDocumentStore:
    """Process-local DocumentStore.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[RecordCategory, list[dict[str, Any]]] = defaultdict(list)

    async def append(self, category: RecordCategory, record: dict[str, Any]) -> str:
        record_id = str(uuid4())
        self._records[category].append(copy.deepcopy(record))
        return record_id

    async def query_by_category(
        self,
        category: RecordCategory,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        records = self._records.get(category, [])
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return [copy.deepcopy(r) for r in records]

    def count(self, category: RecordCategory) -> int:
        """Number of records appended under a category."""
        return len(self._records.get(category, []))


class SqlDocumentStore:
    """DocumentStore backed by the ``stored_records`` table.

    Usage:
        store = SqlDocumentStore(async_session_factory)
        record_id = await store.append(RecordCategory.DATA_SOURCE, {...})
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, category: RecordCategory, record: dict[str, Any]) -> str:
        row = StoredRecord(
            record_id=uuid4(),
            category=category.value,
            content=record,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        logger.debug("Appended %s record %s", category.value, row.record_id)
        return str(row.record_id)

    async def query_by_category(
        self,
        category: RecordCategory,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(StoredRecord.content).where(StoredRecord.category == category.value)
        if limit is not None:
            stmt = stmt.order_by(StoredRecord.sequence.desc()).limit(limit)
        else:
            stmt = stmt.order_by(StoredRecord.sequence)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            contents = [dict(c) for c in result.scalars().all()]

        if limit is not None:
            contents.reverse()
        return contents
