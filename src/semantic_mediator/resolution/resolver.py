"""Conflict resolver: the mediator's public entry point.

resolve() mediates between two modules' data:

1. Build ephemeral descriptors for both sides from the module ids and the
   runtime type of each payload
2. Unless a strategy is forced, look for a near-exact cached resolution
   (threshold 0.95, cached results only; plain recipes are left to pattern
   matching); a hit is returned as-is and skips the strategy chain
3. Otherwise pick a strategy: the forced one if registered, else the first
   in descending priority whose can_resolve() says yes, else the oracle
   fallback
4. On success (and unless caching is disabled) store the result in the
   transformation cache and append an audit record tagged with both modules.
   A failed cache write is logged; a failed audit write fails the call

The whole call runs inside a telemetry debug session. Any exception is
caught and turned into a failed result with strategy_used="error";
resolve() never raises. Telemetry failures are logged and ignored.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.clients.oracle import InferenceOracle
from semantic_mediator.clients.telemetry import LoggingTelemetry, Telemetry
from semantic_mediator.config import settings
from semantic_mediator.models.enums import RecordCategory
from semantic_mediator.resolution.strategies import (
    ExplicitMappingStrategy,
    OracleFallbackStrategy,
    PatternMatchingStrategy,
    ResolutionStrategy,
)
from semantic_mediator.resolution.strategies.base import elapsed_ms
from semantic_mediator.resolution.strategies.explicit_mapping import MappingFn
from semantic_mediator.schemas import (
    AttributeSpec,
    CandidateSource,
    ConflictNote,
    DataSource,
    ResolutionMetadata,
    ResolutionResult,
    SemanticDescriptor,
)
from semantic_mediator.storage import DocumentStore

logger = logging.getLogger(__name__)

ERROR_STRATEGY = "error"

KEYWORD_WEIGHT = 0.2
CAPABILITY_WEIGHT = 0.3
MIN_KEYWORD_LENGTH = 4

SOURCE_TOMBSTONE_KIND = "data_source_tombstone"


def json_type_name(value: Any) -> str:
    """JSON-style name of a value's runtime type."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def build_module_descriptor(module_id: str, data: Any) -> SemanticDescriptor:
    """Ephemeral descriptor for a module's payload."""
    return SemanticDescriptor(
        entity=module_id,
        description=f"Data from {module_id} module",
        attributes={
            "data": AttributeSpec(
                type=json_type_name(data),
                description=f"Data content from {module_id}",
            )
        },
        metadata={"module": module_id},
    )


def _cached_result(path: Any) -> ResolutionResult | None:
    if not isinstance(path, Mapping) or "strategy_used" not in path:
        return None
    try:
        return ResolutionResult.model_validate(path)
    except ValidationError as e:
        logger.debug("Cached path is not a resolution result: %s", e)
        return None


def is_cached_result(path: Any) -> bool:
    """Whether a cached transformation path is a stored ResolutionResult."""
    return _cached_result(path) is not None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ConflictResolver:
    """Resolves semantic conflicts between two modules' data.

    Usage:
        resolver = ConflictResolver(cache, store, oracle)
        resolver.register_mapping("crm", "billing", crm_to_billing)
        result = await resolver.resolve("crm", crm_data, "billing", billing_data)
    """

    def __init__(
        self,
        cache: TransformationCache,
        store: DocumentStore,
        oracle: InferenceOracle,
        telemetry: Telemetry | None = None,
        strategies: Sequence[ResolutionStrategy] | None = None,
        *,
        cache_threshold: float | None = None,
        min_source_relevance: float | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            cache: Transformation cache for reuse and pattern matching.
            store: Document store for audit records and data sources.
            oracle: Inference oracle used by the fallback strategy.
            telemetry: Debug-session/event/error sink (default: LoggingTelemetry).
            strategies: Strategy chain (default: explicit mapping, pattern
                matching, oracle fallback).
            cache_threshold: Threshold for reusing cached results (default from config).
            min_source_relevance: Relevance a data source must exceed (default from config).
        """
        self._cache = cache
        self._store = store
        self._telemetry: Telemetry = telemetry or LoggingTelemetry()
        self._cache_threshold = (
            settings.resolver_cache_threshold if cache_threshold is None else cache_threshold
        )
        self._min_source_relevance = (
            settings.source_min_relevance if min_source_relevance is None else min_source_relevance
        )

        self._strategies: list[ResolutionStrategy] = []
        if strategies is None:
            strategies = [
                ExplicitMappingStrategy(),
                PatternMatchingStrategy(cache),
                OracleFallbackStrategy(oracle),
            ]
        for strategy in strategies:
            self.register_strategy(strategy)

        self._default_fallback = OracleFallbackStrategy(oracle)

    # ── Strategy chain ───────────────────────────────────────────────────────

    @property
    def strategies(self) -> list[ResolutionStrategy]:
        """Registered strategies in dispatch order."""
        return list(self._strategies)

    def register_strategy(self, strategy: ResolutionStrategy) -> None:
        """Add a strategy (replacing any with the same name) and re-sort by priority."""
        self._strategies = [s for s in self._strategies if s.name != strategy.name]
        self._strategies.append(strategy)
        self._strategies.sort(key=lambda s: s.priority, reverse=True)
        logger.info("Registered resolution strategy: %s (priority %d)", strategy.name, strategy.priority)

    def get_strategy(self, name: str) -> ResolutionStrategy | None:
        return next((s for s in self._strategies if s.name == name), None)

    @property
    def explicit_mapping(self) -> ExplicitMappingStrategy | None:
        """The registered explicit mapping strategy, if any."""
        return next(
            (s for s in self._strategies if isinstance(s, ExplicitMappingStrategy)), None
        )

    def register_mapping(self, source_module: str, target_module: str, mapping_fn: MappingFn) -> None:
        """Register an explicit mapping between two modules.

        Raises:
            LookupError: If no explicit mapping strategy is registered.
        """
        strategy = self.explicit_mapping
        if strategy is None:
            raise LookupError("No explicit mapping strategy registered")
        strategy.register_mapping(source_module, target_module, mapping_fn)

    @property
    def _fallback(self) -> ResolutionStrategy:
        return self.get_strategy(OracleFallbackStrategy.name) or self._default_fallback

    async def _select_strategy(
        self,
        source: SemanticDescriptor,
        target: SemanticDescriptor,
        context: dict[str, Any] | None,
        force_strategy: str | None,
    ) -> ResolutionStrategy:
        if force_strategy:
            forced = self.get_strategy(force_strategy)
            if forced is not None:
                return forced
            logger.warning("Forced strategy %s is not registered, trying the chain", force_strategy)

        for strategy in self._strategies:
            try:
                if await strategy.can_resolve(source, target, context):
                    return strategy
            except Exception as e:
                logger.warning("Strategy %s can_resolve failed: %s", strategy.name, e)

        return self._fallback

    # ── Resolution ───────────────────────────────────────────────────────────

    async def resolve(
        self,
        module_a: str,
        data_a: Any,
        module_b: str,
        data_b: Any,
        *,
        force_strategy: str | None = None,
        context: dict[str, Any] | None = None,
        cache_results: bool = True,
    ) -> ResolutionResult:
        """Resolve conflicts between module_a's data and module_b's data.

        Never raises; failures come back as ``success=False`` results.
        """
        start = time.perf_counter()
        session_id = await self._open_session({
            "operation": "resolve",
            "module_a": module_a,
            "module_b": module_b,
            "force_strategy": force_strategy,
            "timestamp": _now_iso(),
        })

        try:
            logger.debug("Resolving conflicts between %s and %s", module_a, module_b)
            source = build_module_descriptor(module_a, data_a)
            target = build_module_descriptor(module_b, data_b)

            if force_strategy is None:
                cached = _cached_result(
                    await self._cache.retrieve(
                        source, target, self._cache_threshold, accept=is_cached_result
                    )
                )
                if cached is not None:
                    logger.debug("Found cached resolution for %s and %s", module_a, module_b)
                    await self._log_event({
                        "type": "conflict_resolution_cache_hit",
                        "module_a": module_a,
                        "module_b": module_b,
                        "strategy_used": cached.strategy_used,
                        "timestamp": _now_iso(),
                        "debug_session_id": session_id,
                    })
                    return cached

            strategy = await self._select_strategy(source, target, context, force_strategy)
            logger.debug("Using strategy %s for %s -> %s", strategy.name, module_a, module_b)
            result = await strategy.resolve(data_a, data_b, source, target, context)

            if result.success and cache_results is not False:
                await self._persist(module_a, module_b, source, target, result)

            await self._log_event({
                "type": "conflict_resolution",
                "module_a": module_a,
                "module_b": module_b,
                "strategy_used": result.strategy_used,
                "success": result.success,
                "confidence": result.confidence,
                "execution_time_ms": elapsed_ms(start),
                "timestamp": _now_iso(),
                "debug_session_id": session_id,
            })
            return result

        except Exception as e:
            logger.exception("Error resolving conflicts between %s and %s", module_a, module_b)
            await self._log_error(e, {
                "operation": "resolve",
                "module_a": module_a,
                "module_b": module_b,
                "debug_session_id": session_id,
            })
            return ResolutionResult(
                success=False,
                resolved_data=None,
                strategy_used=ERROR_STRATEGY,
                confidence=0.0,
                unresolved_conflicts=[
                    ConflictNote(
                        type="resolution_error",
                        description=f"Error resolving conflicts between {module_a} and {module_b}",
                        reason=str(e),
                    )
                ],
                metadata=ResolutionMetadata(
                    execution_time_ms=elapsed_ms(start),
                    extra={"error": str(e), "error_type": type(e).__name__},
                ),
            )

        finally:
            if session_id is not None:
                await self._close_session(session_id)

    async def _persist(
        self,
        module_a: str,
        module_b: str,
        source: SemanticDescriptor,
        target: SemanticDescriptor,
        result: ResolutionResult,
    ) -> None:
        timestamp = _now_iso()
        entry_id = await self._cache.store(
            source,
            target,
            result.model_dump(),
            metadata={
                "strategy_used": result.strategy_used,
                "confidence": result.confidence,
                "timestamp": timestamp,
            },
        )
        if entry_id is None:
            logger.warning(
                "Resolution %s -> %s was not cached; it will be recomputed next time",
                module_a,
                module_b,
            )
        await self._store.append(
            RecordCategory.CONFLICT_RESOLUTION,
            {
                "module_a": module_a,
                "module_b": module_b,
                "tags": [module_a, module_b],
                "strategy_used": result.strategy_used,
                "confidence": result.confidence,
                "resolved_data": result.resolved_data,
                "timestamp": timestamp,
            },
        )

    # ── Data sources ─────────────────────────────────────────────────────────
    #
    # Sources are append-only like cache entries: register and update append
    # a full version under DATA_SOURCE, remove appends a tombstone to SYSTEM.
    # Readers keep the latest version of each source_id.

    async def register_data_source(
        self,
        name: str,
        description: str,
        capabilities: Sequence[str] = (),
        module_id: str | None = None,
    ) -> str:
        """Register a data source for find_candidate_sources() and return its id."""
        source_id = f"source:{name}:{uuid4().hex[:8]}"
        await self._store.append(
            RecordCategory.DATA_SOURCE,
            {
                "source_id": source_id,
                "name": name,
                "description": description,
                "capabilities": list(capabilities),
                "module_id": module_id,
                "registered_at": _now_iso(),
            },
        )
        logger.info("Registered data source %s (%s)", name, source_id)
        return source_id

    async def get_data_source(self, source_id: str) -> DataSource | None:
        """Latest version of a registered source, or None if unknown or removed."""
        try:
            sources = await self._load_data_sources()
        except Exception:
            logger.exception("Failed to load data source %s", source_id)
            return None
        return next((s for s in sources if s.source_id == source_id), None)

    async def list_data_sources(self, module_id: str | None = None) -> list[DataSource]:
        """Live data sources in registration order, optionally for one module."""
        try:
            sources = await self._load_data_sources()
        except Exception:
            logger.exception("Failed to list data sources")
            return []
        if module_id is None:
            return sources
        return [s for s in sources if s.module_id == module_id]

    async def update_data_source(
        self,
        source_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        capabilities: Sequence[str] | None = None,
        module_id: str | None = None,
    ) -> DataSource | None:
        """Append a new version of a source with the given fields replaced.

        Returns the new version, or None when the source is unknown or removed.
        """
        current = await self.get_data_source(source_id)
        if current is None:
            logger.debug("update: unknown data source %s", source_id)
            return None

        changes: dict[str, Any] = {"updated_at": _now_iso()}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if capabilities is not None:
            changes["capabilities"] = list(capabilities)
        if module_id is not None:
            changes["module_id"] = module_id

        updated = current.model_copy(update=changes)
        await self._store.append(RecordCategory.DATA_SOURCE, updated.model_dump())
        logger.info("Updated data source %s", source_id)
        return updated

    async def remove_data_source(self, source_id: str) -> bool:
        """Tombstone a source. Returns False when it is unknown or already removed."""
        if await self.get_data_source(source_id) is None:
            return False
        await self._store.append(
            RecordCategory.SYSTEM,
            {"kind": SOURCE_TOMBSTONE_KIND, "source_id": source_id, "deleted_at": _now_iso()},
        )
        logger.info("Removed data source %s", source_id)
        return True

    async def _load_data_sources(self) -> list[DataSource]:
        records = await self._store.query_by_category(RecordCategory.DATA_SOURCE)
        system = await self._store.query_by_category(RecordCategory.SYSTEM)
        removed = {
            str(r.get("source_id")) for r in system if r.get("kind") == SOURCE_TOMBSTONE_KIND
        }

        latest: dict[str, DataSource] = {}
        for record in records:
            source_id = record.get("source_id") or record.get("name")
            if not source_id:
                continue
            try:
                source = DataSource.model_validate({**record, "source_id": str(source_id)})
            except ValidationError as e:
                logger.debug("Skipping malformed data source record: %s", e)
                continue
            latest[source.source_id] = source
        return [s for s in latest.values() if s.source_id not in removed]

    async def find_candidate_sources(
        self,
        intent: str,
        context: dict[str, Any] | None = None,
    ) -> list[CandidateSource]:
        """Rank registered data sources against a semantic intent.

        Keyword heuristic, no oracle: +0.2 per intent word longer than three
        characters found in the description, +0.3 per capability contained
        in (or containing) the intent, clamped to [0, 1]. Only live sources
        above the minimum relevance are returned, most relevant first.
        """
        try:
            logger.debug("Finding candidate sources for intent: %s", intent)
            sources = await self._load_data_sources()
            if not sources:
                logger.debug("No registered data sources found")
                return []

            intent_lower = intent.lower()
            keywords = [w for w in intent_lower.split() if len(w) >= MIN_KEYWORD_LENGTH]

            candidates: list[CandidateSource] = []
            for source in sources:
                description = source.description.lower()

                relevance = KEYWORD_WEIGHT * sum(1 for k in keywords if k in description)
                for capability in source.capabilities:
                    cap = capability.lower()
                    if cap and (cap in intent_lower or intent_lower in cap):
                        relevance += CAPABILITY_WEIGHT
                relevance = max(0.0, min(1.0, relevance))

                if relevance > self._min_source_relevance:
                    candidates.append(
                        CandidateSource(
                            source_id=source.source_id,
                            relevance=relevance,
                            metadata={
                                "name": source.name,
                                "description": source.description,
                                "capabilities": source.capabilities,
                                "module_id": source.module_id,
                            },
                        )
                    )
        except Exception:
            logger.exception("Error finding candidate sources")
            return []

        candidates.sort(key=lambda c: c.relevance, reverse=True)
        logger.debug("Found %d relevant candidate sources", len(candidates))
        return candidates

    # ── Telemetry (never fatal) ──────────────────────────────────────────────

    async def _open_session(self, context: dict[str, Any]) -> str | None:
        try:
            return await self._telemetry.open_session(context)
        except Exception as e:
            logger.warning("Telemetry open_session failed: %s", e)
            return None

    async def _close_session(self, session_id: str) -> None:
        try:
            await self._telemetry.close_session(session_id)
        except Exception as e:
            logger.warning("Telemetry close_session failed: %s", e)

    async def _log_event(self, event: dict[str, Any]) -> None:
        try:
            await self._telemetry.log_event(event)
        except Exception as e:
            logger.warning("Telemetry log_event failed: %s", e)

    async def _log_error(self, error: BaseException, context: dict[str, Any]) -> None:
        try:
            await self._telemetry.log_error(error, context)
        except Exception as e:
            logger.warning("Telemetry log_error failed: %s", e)
