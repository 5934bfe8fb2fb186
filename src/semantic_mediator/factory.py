"""Wiring of the default mediator components from settings."""

from __future__ import annotations

from dataclasses import dataclass

from semantic_mediator.cache.purge import CachePurgeScheduler
from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.clients.oracle import InferenceOracle, PydanticAIOracle
from semantic_mediator.clients.telemetry import LoggingTelemetry, Telemetry
from semantic_mediator.db import async_session_factory
from semantic_mediator.resolution.resolver import ConflictResolver
from semantic_mediator.storage import DocumentStore, SqlDocumentStore


@dataclass
class Mediator:
    """The assembled components a CLI command or the API works with."""

    store: DocumentStore
    oracle: InferenceOracle
    telemetry: Telemetry
    cache: TransformationCache
    resolver: ConflictResolver

    def purge_scheduler(self) -> CachePurgeScheduler:
        return CachePurgeScheduler(self.cache)


def build_mediator(
    *,
    store: DocumentStore | None = None,
    oracle: InferenceOracle | None = None,
    telemetry: Telemetry | None = None,
) -> Mediator:
    """Build the default component graph.

    Anything not passed in is created from settings: a SQL-backed store,
    the pydantic-ai oracle and logging telemetry.
    """
    store = store or SqlDocumentStore(async_session_factory)
    oracle = oracle or PydanticAIOracle()
    telemetry = telemetry or LoggingTelemetry()
    cache = TransformationCache(store, oracle)
    resolver = ConflictResolver(cache, store, oracle, telemetry)
    return Mediator(
        store=store,
        oracle=oracle,
        telemetry=telemetry,
        cache=cache,
        resolver=resolver,
    )


def build_resolver(
    *,
    store: DocumentStore | None = None,
    oracle: InferenceOracle | None = None,
    telemetry: Telemetry | None = None,
) -> ConflictResolver:
    """Build a ConflictResolver with default collaborators."""
    return build_mediator(store=store, oracle=oracle, telemetry=telemetry).resolver
