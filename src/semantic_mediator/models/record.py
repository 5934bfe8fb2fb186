"""StoredRecord model backing the append-only document store."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from semantic_mediator.models.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class StoredRecord(Base):
    """A single appended record.

    Records are never updated or deleted. Newer versions of a logical object
    (e.g. a cache entry after a hit) are appended as new rows, and deletions
    are expressed as tombstone records in the system category.
    """

    __tablename__ = "stored_records"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Monotonic insertion order. Query results are ordered by this column."""

    record_id: Mapped[UUID] = mapped_column(unique=True, index=True)

    category: Mapped[str] = mapped_column(String(64), index=True)
    """RecordCategory value."""

    content: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
