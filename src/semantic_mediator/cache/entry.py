"""Cache entry and lookup result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from semantic_mediator.models.enums import MatchStage

HIT_KIND = "cache_hit"


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_aware(value)
    return as_aware(datetime.fromisoformat(str(value)))


@dataclass
class CacheEntry:
    """One cached transformation, folded from its stored records.

    Entries are never updated in place. store() appends the full entry once;
    each hit appends a small usage record with the same id (see hit_record),
    which readers fold onto the entry. Full records sharing an id are also
    accepted, the latest one replacing the earlier.

    Attributes:
        id: Stable entry id shared by all versions
        source_descriptor: Source descriptor as a plain dict
        target_descriptor: Target descriptor as a plain dict
        semantic_key: Key for exact/key-similarity lookup, None when unkeyed
        transformation_path: Opaque replayable recipe or cached result
        usage_count: Number of stores plus hits, always >= 1
        created_at: When the entry was first stored
        last_used: Last hit, never before created_at
        metadata: Free-form metadata merged on hits
        similarity_memo: Key similarity scores keyed by ``{query_key}_{entry_key}``
    """

    id: UUID
    source_descriptor: dict[str, Any]
    target_descriptor: dict[str, Any]
    semantic_key: str | None
    transformation_path: Any
    usage_count: int
    created_at: datetime
    last_used: datetime
    metadata: dict[str, Any] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    similarity_memo: dict[str, float] = field(default_factory=dict, repr=False, compare=False)  # pyright: ignore[reportUnknownVariableType]

    @property
    def last_activity(self) -> datetime:
        """Timestamp used for retention: last_used, else created_at."""
        return self.last_used or self.created_at

    def to_record(self) -> dict[str, Any]:
        """Document persisted for this version (the memo stays in memory)."""
        return {
            "id": str(self.id),
            "source_descriptor": self.source_descriptor,
            "target_descriptor": self.target_descriptor,
            "semantic_key": self.semantic_key,
            "transformation_path": self.transformation_path,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat(),
            "metadata": self.metadata,
        }

    def hit_record(
        self,
        metadata: dict[str, Any] | None = None,
        semantic_key: str | None = None,
    ) -> dict[str, Any]:
        """Usage record for a hit on this entry (already bumped).

        Carries the new counters and the metadata delta, never the
        descriptors or the transformation path.
        """
        record: dict[str, Any] = {
            "kind": HIT_KIND,
            "id": str(self.id),
            "usage_count": self.usage_count,
            "last_used": self.last_used.isoformat(),
            "metadata": dict(metadata or {}),
        }
        if semantic_key:
            record["semantic_key"] = semantic_key
        return record

    def apply_hit(self, record: dict[str, Any]) -> None:
        """Fold a usage record written by hit_record() onto this entry."""
        self.usage_count = max(self.usage_count, int(record.get("usage_count") or 1))
        last_used_raw = record.get("last_used")
        if last_used_raw:
            self.last_used = max(self.last_used, _parse_datetime(last_used_raw))
        self.metadata = {**self.metadata, **(record.get("metadata") or {})}
        self.semantic_key = record.get("semantic_key") or self.semantic_key

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CacheEntry:
        """Rebuild an entry version from its stored document.

        Raises:
            KeyError, ValueError: If the record is not a cache entry.
        """
        created_at = _parse_datetime(record["created_at"])
        last_used_raw = record.get("last_used")
        last_used = _parse_datetime(last_used_raw) if last_used_raw else created_at
        return cls(
            id=UUID(str(record["id"])),
            source_descriptor=dict(record.get("source_descriptor") or {}),
            target_descriptor=dict(record.get("target_descriptor") or {}),
            semantic_key=record.get("semantic_key") or None,
            transformation_path=record.get("transformation_path"),
            usage_count=max(1, int(record.get("usage_count") or 1)),
            created_at=created_at,
            last_used=max(last_used, created_at),
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass(frozen=True)
class CacheMatch:
    """A successful cache lookup.

    Attributes:
        entry: The entry version written by the hit (usage already bumped)
        score: Match score in [0, 1]; exact key matches score 1.0
        stage: Which lookup stage produced the match
    """

    entry: CacheEntry
    score: float
    stage: MatchStage

    @property
    def transformation_path(self) -> Any:
        return self.entry.transformation_path


@dataclass(frozen=True)
class Prediction:
    """A transformation path predicted to be needed soon."""

    entry_id: UUID
    transformation_path: Any
    score: float
