"""Transformation cache: remembers how past conflicts were resolved.

Storage is append-only. Every write is a new record in the document store:

- store() appends the full entry (usage_count=1)
- a hit or touch() appends a usage record for the same entry id holding
  only the new counters and the metadata delta
- purge() appends tombstones to the SYSTEM category

Readers fold usage records onto their entry (first-seen position kept)
and skip tombstoned ids. Duplicate entries for the same descriptor pair
are allowed; lookup simply finds the first one. Callers can narrow a
lookup to the payloads they can use with ``accept``.

Lookup (retrieve / retrieve_match) runs up to three stages and stops at
the first that produces a match meeting the threshold:

1. Exact semantic key match among keyed entries (first wins)
2. Key similarity among keyed entries (highest score wins, first on ties),
   memoized per entry in process memory
3. Oracle descriptor similarity over all entries,
   0.6 * source + 0.4 * target (highest wins, first on ties)

A stage-3 hit backfills the entry's semantic key. Stages 1-2 are skipped
when the query key is a fallback key, because fallback keys never match.

No cache operation raises; failures are logged and surface as a miss, an
empty result, or (for store) a None id.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from semantic_mediator.cache.entry import HIT_KIND, CacheEntry, CacheMatch, Prediction, as_aware
from semantic_mediator.cache.semantic_key import (
    descriptor_document,
    entity_type_of,
    is_fallback_key,
    make_key,
)
from semantic_mediator.cache.similarity import DescriptorSimilarity, key_similarity
from semantic_mediator.clients.oracle import InferenceOracle
from semantic_mediator.config import settings
from semantic_mediator.inference.parsing import parse_json_object
from semantic_mediator.inference.prompts import (
    build_optimization_prompt,
    build_usage_analysis_prompt,
)
from semantic_mediator.inference.schemas import CacheOptimization, UsageAnalysis
from semantic_mediator.models.enums import MatchStage, RecordCategory, ThresholdDirection
from semantic_mediator.schemas import SemanticDescriptor
from semantic_mediator.storage import DocumentStore

logger = logging.getLogger(__name__)

Descriptor = SemanticDescriptor | Mapping[str, Any]
PathFilter = Callable[[Any], bool]

TOMBSTONE_KIND = "cache_tombstone"

NO_USAGE_INSIGHT = "No usage data available for analysis"
ANALYSIS_FAILED_INSIGHT = "Failed to analyze usage patterns due to an error"

ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 2000

CONTEXT_WEIGHT = 0.5
RECENCY_WEIGHT = 0.25
USAGE_WEIGHT = 0.25

_LOWER_THRESHOLD = re.compile(
    r"\b(?:lower|decreas|reduc)\w*\b[^.\n]*\bthreshold|\bthreshold\b[^.\n]*\b(?:lower|decreas|reduc)\w*",
    re.IGNORECASE,
)
_RAISE_THRESHOLD = re.compile(
    r"\b(?:rais|increas|higher)\w*\b[^.\n]*\bthreshold|\bthreshold\b[^.\n]*\b(?:rais|increas|higher)\w*",
    re.IGNORECASE,
)


def threshold_direction(text: str) -> ThresholdDirection:
    """Direction a free-text recommendation asks the threshold to move.

    Returns KEEP when the text asks for neither, or for both.
    """
    lower = bool(_LOWER_THRESHOLD.search(text))
    raise_ = bool(_RAISE_THRESHOLD.search(text))
    if lower and not raise_:
        return ThresholdDirection.LOWER
    if raise_ and not lower:
        return ThresholdDirection.RAISE
    return ThresholdDirection.KEEP


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransformationCache:
    """Semantic cache of transformation paths over an append-only store.

    Usage:
        cache = TransformationCache(store, oracle)
        entry_id = await cache.store(source, target, path)
        path = await cache.retrieve(source, target)
    """

    def __init__(
        self,
        store: DocumentStore,
        oracle: InferenceOracle,
        *,
        similarity: DescriptorSimilarity | None = None,
        category: RecordCategory = RecordCategory.SEMANTIC_TRANSFORMATION,
        similarity_threshold: float | None = None,
        source_weight: float | None = None,
        target_weight: float | None = None,
        predictive_enabled: bool | None = None,
        predictive_threshold: float | None = None,
        predictive_threshold_min: float | None = None,
        predictive_threshold_max: float | None = None,
        adaptive_rate: float | None = None,
        recent_window_days: float | None = None,
        high_usage_count: int | None = None,
        pool_size: int | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        def pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        self._store = store
        self._oracle = oracle
        self._similarity = similarity or DescriptorSimilarity(oracle)
        self._category = category
        self._similarity_threshold: float = pick(
            similarity_threshold, settings.cache_similarity_threshold
        )
        self._source_weight: float = pick(source_weight, settings.descriptor_source_weight)
        self._target_weight: float = pick(target_weight, settings.descriptor_target_weight)
        self._predictive_enabled: bool = pick(
            predictive_enabled, settings.predictive_cache_enabled
        )
        self._threshold_min: float = pick(
            predictive_threshold_min, settings.predictive_threshold_min
        )
        self._threshold_max: float = pick(
            predictive_threshold_max, settings.predictive_threshold_max
        )
        self._adaptive_rate: float = pick(adaptive_rate, settings.adaptive_rate)
        self._recent_window = timedelta(
            days=pick(recent_window_days, settings.predictive_recent_window_days)
        )
        self._high_usage_count: int = pick(high_usage_count, settings.predictive_high_usage_count)
        self._pool_size: int = pick(pool_size, settings.predictive_pool_size)
        self._now = now_fn or _utcnow
        self._predictive_threshold = self._clamp_threshold(
            pick(predictive_threshold, settings.predictive_threshold)
        )

        # Key-similarity memo per entry id; never persisted
        self._memo: dict[UUID, dict[str, float]] = {}

    @property
    def category(self) -> RecordCategory:
        return self._category

    @property
    def similarity_threshold(self) -> float:
        return self._similarity_threshold

    @property
    def adaptive_threshold(self) -> float:
        """Current predictive threshold, moved by usage analysis."""
        return self._predictive_threshold

    # ── Writes ───────────────────────────────────────────────────────────────

    async def store(
        self,
        source: Descriptor,
        target: Descriptor,
        path: Any,
        metadata: dict[str, Any] | None = None,
    ) -> UUID | None:
        """Append a new entry with usage_count=1 and return its id.

        Never deduplicates. The entry is stored unkeyed when the semantic key
        codec had to fall back. Returns None when the write failed.
        """
        key = make_key(source, target)
        now = self._now()
        entry = CacheEntry(
            id=uuid4(),
            source_descriptor=descriptor_document(source),
            target_descriptor=descriptor_document(target),
            semantic_key=None if is_fallback_key(key) else key,
            transformation_path=path,
            usage_count=1,
            created_at=now,
            last_used=now,
            metadata=dict(metadata or {}),
        )
        try:
            await self._store.append(self._category, entry.to_record())
        except Exception:
            logger.exception(
                "Failed to cache transformation (%s -> %s)",
                entity_type_of(entry.source_descriptor),
                entity_type_of(entry.target_descriptor),
            )
            return None
        logger.info(
            "Cached transformation %s (%s -> %s)",
            entry.id,
            entity_type_of(entry.source_descriptor),
            entity_type_of(entry.target_descriptor),
        )
        return entry.id

    async def touch(self, entry_id: UUID | str, metadata: dict[str, Any] | None = None) -> bool:
        """Bump usage, refresh last_used and merge metadata.

        Returns False, without writing anything, when the id is unknown.
        """
        try:
            wanted = UUID(str(entry_id))
        except ValueError:
            return False

        try:
            entries = await self._load_entries()
            entry = next((e for e in entries if e.id == wanted), None)
            if entry is None:
                logger.debug("touch: unknown cache entry %s", entry_id)
                return False
            await self._record_hit(entry, metadata=metadata)
        except Exception:
            logger.exception("touch failed for cache entry %s", entry_id)
            return False
        return True

    async def purge(self, older_than: datetime | None = None) -> int:
        """Tombstone entries last active strictly before ``older_than``.

        With no cutoff every live entry is tombstoned. Returns the number of
        tombstones written.
        """
        purged = 0
        try:
            entries = await self._load_entries()
            if older_than is None:
                targets = entries
            else:
                cutoff = as_aware(older_than)
                targets = [e for e in entries if e.last_activity < cutoff]

            deleted_at = self._now().isoformat()
            for entry in targets:
                await self._store.append(
                    RecordCategory.SYSTEM,
                    {
                        "kind": TOMBSTONE_KIND,
                        "category": self._category.value,
                        "entry_id": str(entry.id),
                        "deleted_at": deleted_at,
                    },
                )
                self._memo.pop(entry.id, None)
                purged += 1
        except Exception:
            logger.exception("Cache purge failed after %d tombstones", purged)
            return purged

        if purged:
            logger.info("Purged %d cache entries (cutoff=%s)", purged, older_than)
        return purged

    # ── Lookup ───────────────────────────────────────────────────────────────

    async def retrieve(
        self,
        source: Descriptor,
        target: Descriptor,
        threshold: float | None = None,
        accept: PathFilter | None = None,
    ) -> Any | None:
        """Return the best matching transformation path, or None on a miss."""
        match = await self.retrieve_match(source, target, threshold, accept)
        return match.transformation_path if match is not None else None

    async def retrieve_match(
        self,
        source: Descriptor,
        target: Descriptor,
        threshold: float | None = None,
        accept: PathFilter | None = None,
    ) -> CacheMatch | None:
        """Like retrieve(), but also report the entry, score and stage.

        With ``accept``, entries whose transformation path it rejects are
        invisible to every stage and are not bumped.
        """
        if threshold is None:
            threshold = self._similarity_threshold

        try:
            query_key = make_key(source, target)
            entries = await self._load_entries()
            if accept is not None:
                entries = [e for e in entries if accept(e.transformation_path)]
            if not entries:
                return None

            match: CacheMatch | None = None
            if not is_fallback_key(query_key):
                match = self._match_by_key(query_key, entries, threshold)
            if match is None:
                match = await self._match_by_descriptors(source, target, entries, threshold)
            if match is None:
                logger.debug("Cache miss (threshold=%.2f)", threshold)
                return None

            backfill = None
            if match.stage is MatchStage.DESCRIPTOR_SIMILARITY and not match.entry.semantic_key:
                own_key = make_key(match.entry.source_descriptor, match.entry.target_descriptor)
                if not is_fallback_key(own_key):
                    backfill = own_key

            updated = await self._record_hit(match.entry, semantic_key=backfill)
        except Exception:
            logger.exception("Cache lookup failed, treating as miss")
            return None

        logger.debug(
            "Cache hit %s via %s (score=%.3f)", updated.id, match.stage.value, match.score
        )
        return CacheMatch(entry=updated, score=match.score, stage=match.stage)

    def _match_by_key(
        self,
        query_key: str,
        entries: list[CacheEntry],
        threshold: float,
    ) -> CacheMatch | None:
        keyed = [
            e for e in entries if e.semantic_key and not is_fallback_key(e.semantic_key)
        ]

        for entry in keyed:
            if entry.semantic_key == query_key:
                return CacheMatch(entry=entry, score=1.0, stage=MatchStage.EXACT_KEY)

        best: CacheEntry | None = None
        best_score = -1.0
        for entry in keyed:
            entry_key = entry.semantic_key or ""
            memo_key = f"{query_key}_{entry_key}"
            score = entry.similarity_memo.get(memo_key)
            if score is None:
                score = key_similarity(query_key, entry_key)
                entry.similarity_memo[memo_key] = score
            if score >= threshold and score > best_score:
                best, best_score = entry, score

        if best is None:
            return None
        return CacheMatch(entry=best, score=best_score, stage=MatchStage.KEY_SIMILARITY)

    async def _match_by_descriptors(
        self,
        source: Descriptor,
        target: Descriptor,
        entries: list[CacheEntry],
        threshold: float,
    ) -> CacheMatch | None:
        best: CacheEntry | None = None
        best_score = -1.0
        for entry in entries:
            source_score = await self._similarity.score(source, entry.source_descriptor)
            target_score = await self._similarity.score(target, entry.target_descriptor)
            score = self._source_weight * source_score + self._target_weight * target_score
            if score >= threshold and score > best_score:
                best, best_score = entry, score

        if best is None:
            return None
        return CacheMatch(entry=best, score=best_score, stage=MatchStage.DESCRIPTOR_SIMILARITY)

    # ── Ranked views ─────────────────────────────────────────────────────────

    async def entries(self) -> list[CacheEntry]:
        """Live entries (latest version of each id) in first-stored order."""
        try:
            return await self._load_entries()
        except Exception:
            logger.exception("Failed to load cache entries")
            return []

    async def most_used(self, limit: int = 10) -> list[CacheEntry]:
        """Entries by usage_count, highest first."""
        return _rank_by_usage(await self.entries())[:max(limit, 0)]

    async def most_recent(self, limit: int = 10) -> list[CacheEntry]:
        """Entries by last_used, newest first."""
        return _rank_by_recency(await self.entries())[:max(limit, 0)]

    # ── Prediction ───────────────────────────────────────────────────────────

    async def predict_needed(self, context: Descriptor) -> list[Prediction]:
        """Predict which cached transformations the given context will need.

        Candidates are the union of the most recent and most used entries.
        Each is scored as 0.5 * context similarity + 0.25 * recency +
        0.25 * usage; candidates at or above the adaptive threshold are
        returned, highest score first.
        """
        if not self._predictive_enabled:
            return []

        try:
            context_doc = descriptor_document(context)
            entries = await self._load_entries()
            pool: dict[UUID, CacheEntry] = {}
            for entry in _rank_by_recency(entries)[:self._pool_size]:
                pool.setdefault(entry.id, entry)
            for entry in _rank_by_usage(entries)[:self._pool_size]:
                pool.setdefault(entry.id, entry)

            now = self._now()
            window = self._recent_window.total_seconds()
            predictions: list[Prediction] = []
            for entry in pool.values():
                context_score = await self._similarity.context_score(
                    context_doc,
                    {"source": entry.source_descriptor, "target": entry.target_descriptor},
                )
                age = (now - entry.last_used).total_seconds()
                recency = max(0.0, min(1.0, 1 - age / window)) if window > 0 else 0.0
                usage = min(1.0, entry.usage_count / self._high_usage_count)
                score = (
                    CONTEXT_WEIGHT * context_score
                    + RECENCY_WEIGHT * recency
                    + USAGE_WEIGHT * usage
                )
                if score >= self._predictive_threshold:
                    predictions.append(
                        Prediction(
                            entry_id=entry.id,
                            transformation_path=entry.transformation_path,
                            score=score,
                        )
                    )
        except Exception:
            logger.exception("Predictive lookup failed")
            return []

        predictions.sort(key=lambda p: p.score, reverse=True)
        logger.debug(
            "Predicted %d transformations (threshold=%.2f)",
            len(predictions),
            self._predictive_threshold,
        )
        return predictions

    # ── Usage analysis ───────────────────────────────────────────────────────

    async def analyze_usage(self) -> UsageAnalysis:
        """Summarize cache usage with the oracle and adapt the predictive threshold.

        Best effort: an empty cache, oracle failure or unparseable response
        yields empty patterns and an explanatory ``insights`` string.
        """
        try:
            entries = await self._load_entries()
        except Exception as e:
            logger.exception("Failed to load cache entries for usage analysis")
            return UsageAnalysis(insights=ANALYSIS_FAILED_INSIGHT, error=str(e))

        if not entries:
            logger.debug("No cache entries to analyze")
            return UsageAnalysis(insights=NO_USAGE_INSIGHT)

        usage_data = [
            {
                "id": str(e.id),
                "sourceType": entity_type_of(e.source_descriptor),
                "targetType": entity_type_of(e.target_descriptor),
                "usageCount": e.usage_count,
                "lastUsed": e.last_used.isoformat(),
                "createdAt": e.created_at.isoformat(),
                "metadata": e.metadata,
            }
            for e in entries
        ]

        try:
            response = await self._oracle.infer(
                build_usage_analysis_prompt(usage_data),
                temperature=ANALYSIS_TEMPERATURE,
                max_tokens=ANALYSIS_MAX_TOKENS,
            )
            payload = parse_json_object(str(response))
            if payload is None:
                raise ValueError("usage analysis response contained no JSON object")
            analysis = UsageAnalysis.model_validate(payload)
        except Exception as e:
            logger.error("Error analyzing usage patterns: %s", e)
            return UsageAnalysis(insights=ANALYSIS_FAILED_INSIGHT, error=str(e))

        self._adapt_threshold(analysis)
        return analysis

    async def recommend_optimizations(self) -> CacheOptimization:
        """Ask the oracle for an optimization plan based on a fresh usage analysis.

        A proposed ``predictiveThreshold`` is applied (clamped). Best effort.
        """
        analysis = await self.analyze_usage()
        if analysis.error:
            return CacheOptimization(error=analysis.error)
        if analysis.insights == NO_USAGE_INSIGHT:
            return CacheOptimization()

        try:
            response = await self._oracle.infer(
                build_optimization_prompt(
                    analysis.model_dump(exclude={"error"}), self._predictive_threshold
                ),
                temperature=ANALYSIS_TEMPERATURE,
                max_tokens=ANALYSIS_MAX_TOKENS,
            )
            payload = parse_json_object(str(response))
            if payload is None:
                raise ValueError("optimization response contained no JSON object")
            optimization = CacheOptimization.model_validate(payload)
        except Exception as e:
            logger.error("Error generating cache optimizations: %s", e)
            return CacheOptimization(error=str(e))

        adjustments = optimization.threshold_adjustments
        proposed = adjustments.get("predictiveThreshold", adjustments.get("predictive_threshold"))
        if isinstance(proposed, (int, float)) and not isinstance(proposed, bool):
            self._set_threshold(float(proposed), reason="optimization plan")
            optimization = optimization.model_copy(
                update={"applied_threshold": self._predictive_threshold}
            )
        return optimization

    # ── Internals ────────────────────────────────────────────────────────────

    def _adapt_threshold(self, analysis: UsageAnalysis) -> None:
        text = "\n".join([*analysis.recommendations, analysis.insights])
        direction = threshold_direction(text)
        if direction is ThresholdDirection.LOWER:
            self._set_threshold(
                self._predictive_threshold - self._adaptive_rate, reason="usage analysis"
            )
        elif direction is ThresholdDirection.RAISE:
            self._set_threshold(
                self._predictive_threshold + self._adaptive_rate, reason="usage analysis"
            )

    def _clamp_threshold(self, value: float) -> float:
        return max(self._threshold_min, min(self._threshold_max, value))

    def _set_threshold(self, value: float, *, reason: str) -> None:
        previous = self._predictive_threshold
        self._predictive_threshold = round(self._clamp_threshold(value), 6)
        if self._predictive_threshold != previous:
            logger.info(
                "Predictive threshold %.2f -> %.2f (%s)",
                previous,
                self._predictive_threshold,
                reason,
            )

    async def _record_hit(
        self,
        entry: CacheEntry,
        *,
        metadata: dict[str, Any] | None = None,
        semantic_key: str | None = None,
    ) -> CacheEntry:
        updated = dataclasses.replace(
            entry,
            usage_count=entry.usage_count + 1,
            last_used=max(self._now(), entry.created_at),
            metadata={**entry.metadata, **(metadata or {})},
            semantic_key=semantic_key or entry.semantic_key,
            similarity_memo=self._memo.setdefault(entry.id, entry.similarity_memo),
        )
        await self._store.append(
            self._category, updated.hit_record(metadata=metadata, semantic_key=semantic_key)
        )
        if semantic_key:
            logger.info("Backfilled semantic key for cache entry %s", entry.id)
        return updated

    async def _tombstoned_ids(self) -> set[str]:
        records = await self._store.query_by_category(RecordCategory.SYSTEM)
        return {
            str(r.get("entry_id"))
            for r in records
            if r.get("kind") == TOMBSTONE_KIND and r.get("category") == self._category.value
        }

    async def _load_entries(self) -> list[CacheEntry]:
        records = await self._store.query_by_category(self._category)
        tombstoned = await self._tombstoned_ids()

        latest: dict[UUID, CacheEntry] = {}
        for record in records:
            if record.get("kind") == HIT_KIND:
                try:
                    base = latest.get(UUID(str(record["id"])))
                    if base is not None:
                        base.apply_hit(record)
                except (KeyError, TypeError, ValueError) as e:
                    logger.debug("Skipping malformed cache usage record: %s", e)
                continue
            try:
                entry = CacheEntry.from_record(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping malformed cache record: %s", e)
                continue
            latest[entry.id] = entry

        live: list[CacheEntry] = []
        for entry_id, entry in latest.items():
            if str(entry_id) in tombstoned:
                continue
            entry.similarity_memo = self._memo.setdefault(entry_id, {})
            live.append(entry)
        return live


def _rank_by_usage(entries: list[CacheEntry]) -> list[CacheEntry]:
    return sorted(entries, key=lambda e: e.usage_count, reverse=True)


def _rank_by_recency(entries: list[CacheEntry]) -> list[CacheEntry]:
    return sorted(entries, key=lambda e: e.last_used, reverse=True)
