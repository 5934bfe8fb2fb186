"""Tests for the ConflictResolver orchestrator."""

from __future__ import annotations

import json
import re
from typing import Any

import pytest

from conftest import FakeOracle, RecordingTelemetry
from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.clients.oracle import OracleError
from semantic_mediator.models.enums import RecordCategory
from semantic_mediator.resolution.resolver import (
    ConflictResolver,
    build_module_descriptor,
    json_type_name,
)
from semantic_mediator.resolution.strategies import (
    ExplicitMappingStrategy,
    OracleFallbackStrategy,
    PatternMatchingStrategy,
)
from semantic_mediator.schemas import ResolutionResult
from semantic_mediator.storage import InMemoryDocumentStore

CRM = {"full_name": "Ada Lovelace", "mail": "ada@example.com"}
BILLING = {"name": "A. Lovelace", "email": None, "plan": "pro"}


def crm_to_billing(src: dict[str, Any], tgt: dict[str, Any]) -> dict[str, Any]:
    return {**tgt, "name": src["full_name"], "email": src["mail"]}


def oracle_resolution(data: Any, confidence: float = 0.9) -> str:
    return json.dumps(
        {"success": True, "resolvedData": data, "confidence": confidence, "summary": "merged"}
    )


class FailingTelemetry:
    async def open_session(self, context: dict[str, Any]) -> str:
        raise RuntimeError("telemetry down")

    async def close_session(self, session_id: str) -> None:
        raise RuntimeError("telemetry down")

    async def log_event(self, event: dict[str, Any]) -> None:
        raise RuntimeError("telemetry down")

    async def log_error(self, error: BaseException, context: dict[str, Any]) -> None:
        raise RuntimeError("telemetry down")


class AuditFailingStore(InMemoryDocumentStore):
    async def append(self, category: RecordCategory, record: dict[str, Any]) -> str:
        if category is RecordCategory.CONFLICT_RESOLUTION:
            raise RuntimeError("disk full")
        return await super().append(category, record)


class CacheFailingStore(InMemoryDocumentStore):
    async def append(self, category: RecordCategory, record: dict[str, Any]) -> str:
        if category is RecordCategory.SEMANTIC_TRANSFORMATION:
            raise RuntimeError("disk full")
        return await super().append(category, record)


class StaticStrategy:
    """Strategy with a fixed answer, for chain ordering tests."""

    def __init__(self, name: str, priority: int, applicable: bool = True) -> None:
        self.name = name
        self.priority = priority
        self.applicable = applicable
        self.resolved = 0

    async def can_resolve(self, source: Any, target: Any, context: Any = None) -> bool:
        return self.applicable

    async def resolve(
        self, source_data: Any, target_data: Any, source: Any, target: Any, context: Any = None
    ) -> ResolutionResult:
        self.resolved += 1
        return ResolutionResult(
            success=True, resolved_data=self.name, strategy_used=self.name, confidence=0.6
        )


class TestModuleDescriptor:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            (True, "boolean"),
            (3, "number"),
            (2.5, "number"),
            ("x", "string"),
            ({}, "object"),
            ([], "array"),
        ],
    )
    def test_json_type_name(self, value: Any, expected: str) -> None:
        assert json_type_name(value) == expected

    def test_descriptor(self) -> None:
        descriptor = build_module_descriptor("crm", CRM)

        assert descriptor.entity == "crm"
        assert descriptor.attributes["data"].type == "object"
        assert descriptor.metadata == {"module": "crm"}


class TestResolve:
    async def test_explicit_mapping(
        self,
        resolver: ConflictResolver,
        cache: TransformationCache,
        store: InMemoryDocumentStore,
        oracle: FakeOracle,
    ) -> None:
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.success
        assert result.strategy_used == "explicit_mapping"
        assert result.confidence == 1.0
        assert result.resolved_data == {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "plan": "pro",
        }
        assert oracle.calls == []

        [entry] = await cache.entries()
        assert entry.metadata["strategy_used"] == "explicit_mapping"
        assert entry.transformation_path["strategy_used"] == "explicit_mapping"

        [audit] = await store.query_by_category(RecordCategory.CONFLICT_RESOLUTION)
        assert audit["tags"] == ["crm", "billing"]
        assert audit["resolved_data"] == result.resolved_data

    async def test_cached_pair_is_reused(
        self,
        resolver: ConflictResolver,
        cache: TransformationCache,
        telemetry: RecordingTelemetry,
    ) -> None:
        calls: list[int] = []

        def mapping(src: Any, tgt: Any) -> Any:
            calls.append(1)
            return crm_to_billing(src, tgt)

        resolver.register_mapping("crm", "billing", mapping)
        first = await resolver.resolve("crm", CRM, "billing", BILLING)
        second = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert second == first
        assert len(calls) == 1
        [entry] = await cache.entries()
        assert entry.usage_count == 2
        assert telemetry.events[-1]["type"] == "conflict_resolution_cache_hit"
        assert telemetry.events[-1]["strategy_used"] == "explicit_mapping"

    async def test_oracle_fallback_success(
        self, resolver: ConflictResolver, oracle: FakeOracle, store: InMemoryDocumentStore
    ) -> None:
        oracle.replies = [oracle_resolution({"name": "Ada Lovelace"})]

        result = await resolver.resolve("crm", CRM, "billing", BILLING, context={"goal": "invoice"})

        assert result.success
        assert result.strategy_used == "oracle_fallback"
        assert result.confidence == pytest.approx(0.9)
        assert '"goal": "invoice"' in oracle.calls[-1]["prompt"]
        assert store.count(RecordCategory.CONFLICT_RESOLUTION) == 1

    async def test_oracle_transport_failure_becomes_error_result(
        self,
        resolver: ConflictResolver,
        oracle: FakeOracle,
        telemetry: RecordingTelemetry,
        cache: TransformationCache,
    ) -> None:
        oracle.error = OracleError("gateway timeout")

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert not result.success
        assert result.strategy_used == "error"
        assert result.confidence == 0.0
        assert result.unresolved_conflicts[0].type == "resolution_error"
        assert "gateway timeout" in (result.unresolved_conflicts[0].reason or "")
        assert result.metadata.extra["error_type"] == "OracleError"
        assert len(telemetry.errors) == 1
        assert telemetry.closed == ["session-1"]
        assert await cache.entries() == []

    async def test_failed_result_is_not_cached(
        self, resolver: ConflictResolver, oracle: FakeOracle, store: InMemoryDocumentStore
    ) -> None:
        oracle.replies = ["I cannot reconcile these."]

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert not result.success
        assert result.strategy_used == "oracle_fallback"
        assert store.count(RecordCategory.SEMANTIC_TRANSFORMATION) == 0
        assert store.count(RecordCategory.CONFLICT_RESOLUTION) == 0

    async def test_cache_results_disabled(
        self, resolver: ConflictResolver, store: InMemoryDocumentStore
    ) -> None:
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING, cache_results=False)

        assert result.success
        assert store.count(RecordCategory.SEMANTIC_TRANSFORMATION) == 0
        assert store.count(RecordCategory.CONFLICT_RESOLUTION) == 0

    async def test_forced_strategy_skips_cache(
        self, resolver: ConflictResolver, oracle: FakeOracle
    ) -> None:
        resolver.register_mapping("crm", "billing", crm_to_billing)
        await resolver.resolve("crm", CRM, "billing", BILLING)
        oracle.replies = [oracle_resolution({"forced": True})]

        result = await resolver.resolve(
            "crm", CRM, "billing", BILLING, force_strategy="oracle_fallback"
        )

        assert result.strategy_used == "oracle_fallback"
        assert result.resolved_data == {"forced": True}

    async def test_unknown_forced_strategy_tries_chain(self, resolver: ConflictResolver) -> None:
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING, force_strategy="magic")

        assert result.strategy_used == "explicit_mapping"

    async def test_pattern_matching_replays_stored_path(
        self, resolver: ConflictResolver, cache: TransformationCache
    ) -> None:
        source = build_module_descriptor("crm", CRM)
        target = build_module_descriptor("billing", BILLING)
        await cache.store(
            source,
            target,
            {"steps": [{"type": "field_mapping", "mapping": {"name": "full_name"}}]},
        )

        # A path is not a cached result, so the chain runs
        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.strategy_used == "pattern_matching"
        assert result.resolved_data == {"name": "Ada Lovelace"}

    async def test_replayed_recipe_converges_to_cached_result(
        self,
        resolver: ConflictResolver,
        cache: TransformationCache,
        store: InMemoryDocumentStore,
    ) -> None:
        source = build_module_descriptor("crm", CRM)
        target = build_module_descriptor("billing", BILLING)
        recipe_id = await cache.store(
            source,
            target,
            {"steps": [{"type": "field_mapping", "mapping": {"name": "full_name"}}]},
        )

        results = [await resolver.resolve("crm", CRM, "billing", BILLING) for _ in range(4)]

        assert [r.strategy_used for r in results] == ["pattern_matching"] * 4
        assert all(r == results[0] for r in results)
        recipe, cached = await cache.entries()
        assert recipe.id == recipe_id
        # One can_resolve hit from the first resolution, none afterwards
        assert recipe.usage_count == 2
        assert cached.transformation_path["strategy_used"] == "pattern_matching"
        assert cached.usage_count == 4
        assert store.count(RecordCategory.CONFLICT_RESOLUTION) == 1

    async def test_falls_back_when_nothing_applies(
        self,
        cache: TransformationCache,
        store: InMemoryDocumentStore,
        oracle: FakeOracle,
    ) -> None:
        resolver = ConflictResolver(
            cache, store, oracle, strategies=[StaticStrategy("never", 5, applicable=False)]
        )
        oracle.replies = [oracle_resolution({"ok": 1})]

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.strategy_used == "oracle_fallback"

    async def test_telemetry_session_lifecycle(
        self, resolver: ConflictResolver, telemetry: RecordingTelemetry
    ) -> None:
        resolver.register_mapping("crm", "billing", crm_to_billing)

        await resolver.resolve("crm", CRM, "billing", BILLING)

        assert telemetry.opened[0]["module_a"] == "crm"
        assert telemetry.closed == ["session-1"]
        [event] = telemetry.events
        assert event["type"] == "conflict_resolution"
        assert event["debug_session_id"] == "session-1"
        assert event["success"] is True

    async def test_telemetry_failures_are_ignored(
        self, cache: TransformationCache, store: InMemoryDocumentStore, oracle: FakeOracle
    ) -> None:
        resolver = ConflictResolver(cache, store, oracle, FailingTelemetry())
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.success

    async def test_persistence_failure_becomes_error_result(
        self, cache: TransformationCache, oracle: FakeOracle, telemetry: RecordingTelemetry
    ) -> None:
        resolver = ConflictResolver(cache, AuditFailingStore(), oracle, telemetry)
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.strategy_used == "error"
        assert "disk full" in (result.unresolved_conflicts[0].reason or "")

    async def test_cache_write_failure_keeps_result(
        self, oracle: FakeOracle, telemetry: RecordingTelemetry
    ) -> None:
        store = CacheFailingStore()
        cache = TransformationCache(store, oracle)
        resolver = ConflictResolver(cache, store, oracle, telemetry)
        resolver.register_mapping("crm", "billing", crm_to_billing)

        result = await resolver.resolve("crm", CRM, "billing", BILLING)

        assert result.success
        assert result.strategy_used == "explicit_mapping"
        assert await cache.entries() == []
        assert store.count(RecordCategory.CONFLICT_RESOLUTION) == 1


class TestStrategyChain:
    def test_default_chain(self, resolver: ConflictResolver) -> None:
        assert [s.name for s in resolver.strategies] == [
            "explicit_mapping",
            "pattern_matching",
            "oracle_fallback",
        ]
        assert isinstance(resolver.explicit_mapping, ExplicitMappingStrategy)
        assert isinstance(resolver.get_strategy("pattern_matching"), PatternMatchingStrategy)
        assert isinstance(resolver.get_strategy("oracle_fallback"), OracleFallbackStrategy)

    def test_register_sorts_by_priority(self, resolver: ConflictResolver) -> None:
        resolver.register_strategy(StaticStrategy("rules", 4))
        resolver.register_strategy(StaticStrategy("heuristic", 2))

        assert [s.name for s in resolver.strategies] == [
            "rules",
            "explicit_mapping",
            "pattern_matching",
            "heuristic",
            "oracle_fallback",
        ]

    def test_register_replaces_same_name(self, resolver: ConflictResolver) -> None:
        replacement = StaticStrategy("pattern_matching", 0)
        resolver.register_strategy(replacement)

        assert resolver.get_strategy("pattern_matching") is replacement
        assert [s.name for s in resolver.strategies][-1] == "pattern_matching"

    async def test_highest_priority_applicable_wins(
        self, cache: TransformationCache, store: InMemoryDocumentStore, oracle: FakeOracle
    ) -> None:
        low = StaticStrategy("low", 1)
        high = StaticStrategy("high", 9)
        resolver = ConflictResolver(cache, store, oracle, strategies=[low, high])

        result = await resolver.resolve("crm", CRM, "billing", BILLING, cache_results=False)

        assert result.strategy_used == "high"
        assert low.resolved == 0

    def test_register_mapping_without_explicit_strategy(
        self, cache: TransformationCache, store: InMemoryDocumentStore, oracle: FakeOracle
    ) -> None:
        resolver = ConflictResolver(cache, store, oracle, strategies=[])
        with pytest.raises(LookupError):
            resolver.register_mapping("crm", "billing", crm_to_billing)


class TestDataSources:
    async def test_register_data_source(
        self, resolver: ConflictResolver, store: InMemoryDocumentStore
    ) -> None:
        source_id = await resolver.register_data_source(
            "crm", "Customer profiles", ["customer"], module_id="crm-module"
        )

        assert re.fullmatch(r"source:crm:[0-9a-f]{8}", source_id)
        [record] = await store.query_by_category(RecordCategory.DATA_SOURCE)
        assert record["source_id"] == source_id
        assert record["module_id"] == "crm-module"

    async def test_no_sources(self, resolver: ConflictResolver) -> None:
        assert await resolver.find_candidate_sources("customer contact lookup") == []

    async def test_ranking(self, resolver: ConflictResolver) -> None:
        crm = await resolver.register_data_source(
            "crm", "Customer profiles and contact details", ["customer"]
        )
        support = await resolver.register_data_source(
            "support", "Support tickets with customer contact history", []
        )
        await resolver.register_data_source("ledger", "General ledger entries", ["accounting"])
        await resolver.register_data_source("phonebook", "Phone numbers", ["contact"])

        candidates = await resolver.find_candidate_sources("customer contact lookup")

        assert [c.source_id for c in candidates] == [crm, support]
        assert candidates[0].relevance == pytest.approx(0.7)
        assert candidates[1].relevance == pytest.approx(0.4)
        assert candidates[0].metadata["capabilities"] == ["customer"]

    async def test_short_words_are_ignored(self, resolver: ConflictResolver) -> None:
        await resolver.register_data_source("misc", "get all of the data", [])
        assert await resolver.find_candidate_sources("get all of the") == []

    async def test_relevance_is_clamped(self, resolver: ConflictResolver) -> None:
        await resolver.register_data_source(
            "crm", "customer contact address phone email", ["customer", "contact"]
        )

        [candidate] = await resolver.find_candidate_sources(
            "customer contact address phone email"
        )
        assert candidate.relevance == 1.0

    async def test_get_and_list(self, resolver: ConflictResolver) -> None:
        crm = await resolver.register_data_source("crm", "Customers", ["customer"], "sales")
        ledger = await resolver.register_data_source("ledger", "Ledger entries", [], "finance")

        source = await resolver.get_data_source(crm)
        assert source is not None
        assert source.name == "crm"
        assert source.capabilities == ["customer"]
        assert await resolver.get_data_source("source:missing:00000000") is None

        assert [s.source_id for s in await resolver.list_data_sources()] == [crm, ledger]
        assert [s.source_id for s in await resolver.list_data_sources("finance")] == [ledger]

    async def test_update_appends_a_version(
        self, resolver: ConflictResolver, store: InMemoryDocumentStore
    ) -> None:
        crm = await resolver.register_data_source("crm", "Customer profiles", ["customer"])
        ledger = await resolver.register_data_source("ledger", "Ledger entries", [])

        updated = await resolver.update_data_source(
            crm, description="Customer profiles and contact details", capabilities=["contact"]
        )

        assert updated is not None
        assert updated.name == "crm"
        assert updated.capabilities == ["contact"]
        assert updated.updated_at is not None
        assert store.count(RecordCategory.DATA_SOURCE) == 3
        # Latest version wins and keeps its registration position
        sources = await resolver.list_data_sources()
        assert [s.source_id for s in sources] == [crm, ledger]
        assert sources[0].description == "Customer profiles and contact details"

        [candidate] = await resolver.find_candidate_sources("contact details")
        assert candidate.source_id == crm

        assert await resolver.update_data_source("source:missing:00000000", name="x") is None

    async def test_removed_source_is_not_a_candidate(
        self, resolver: ConflictResolver, store: InMemoryDocumentStore
    ) -> None:
        crm = await resolver.register_data_source(
            "crm", "Customer profiles and contact details", ["customer"]
        )
        assert await resolver.find_candidate_sources("customer contact")

        assert await resolver.remove_data_source(crm) is True

        assert await resolver.find_candidate_sources("customer contact") == []
        assert await resolver.get_data_source(crm) is None
        assert await resolver.list_data_sources() == []
        assert await resolver.remove_data_source(crm) is False
        assert await resolver.update_data_source(crm, name="crm2") is None
        # Nothing is physically removed
        assert store.count(RecordCategory.DATA_SOURCE) == 1
