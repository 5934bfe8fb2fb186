"""Shared pytest fixtures for SemanticMediator tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.resolution.resolver import ConflictResolver
from semantic_mediator.schemas import AttributeSpec, SemanticDescriptor
from semantic_mediator.storage import InMemoryDocumentStore

START_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeOracle:
    """Scripted InferenceOracle.

    Replies are consumed in order; exceptions in the script are raised.
    Once the script is exhausted, ``default`` is returned (or ``error``
    raised, when set). Every call is recorded.
    """

    def __init__(
        self,
        replies: list[str | BaseException] | None = None,
        *,
        default: str = "0.0",
        error: BaseException | None = None,
    ) -> None:
        self.replies: list[str | BaseException] = list(replies or [])
        self.default = default
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def infer(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        if self.error is not None:
            raise self.error
        return self.default


class RecordingTelemetry:
    """Telemetry that records everything it is told."""

    def __init__(self) -> None:
        self.opened: list[dict[str, Any]] = []
        self.closed: list[str] = []
        self.events: list[dict[str, Any]] = []
        self.errors: list[tuple[BaseException, dict[str, Any]]] = []

    async def open_session(self, context: dict[str, Any]) -> str:
        self.opened.append(context)
        return f"session-{len(self.opened)}"

    async def close_session(self, session_id: str) -> None:
        self.closed.append(session_id)

    async def log_event(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    async def log_error(self, error: BaseException, context: dict[str, Any]) -> None:
        self.errors.append((error, context))


class Clock:
    """Manually advanced clock for now_fn injection."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


MakeDescriptor = Callable[..., SemanticDescriptor]


@pytest.fixture
def make_descriptor() -> MakeDescriptor:
    """Factory fixture for creating SemanticDescriptor instances."""

    def _make(
        entity: str = "customer",
        *,
        fields: dict[str, str] | None = None,
        capabilities: set[str] | None = None,
        type: str | None = None,
        components: list[SemanticDescriptor] | None = None,
    ) -> SemanticDescriptor:
        fields = {"name": "string", "email": "string"} if fields is None else fields
        return SemanticDescriptor(
            entity=entity,
            description=f"{entity} record",
            attributes={name: AttributeSpec(type=t) for name, t in fields.items()},
            capabilities=capabilities or set(),
            type=type,
            components=components or [],
        )

    return _make


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def cache(store: InMemoryDocumentStore, oracle: FakeOracle, clock: Clock) -> TransformationCache:
    return TransformationCache(store, oracle, now_fn=clock)


@pytest.fixture
def resolver(
    cache: TransformationCache,
    store: InMemoryDocumentStore,
    oracle: FakeOracle,
    telemetry: RecordingTelemetry,
) -> ConflictResolver:
    return ConflictResolver(cache, store, oracle, telemetry)
