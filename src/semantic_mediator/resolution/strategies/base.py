"""Resolution strategy contract and shared result helpers."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any, Protocol

from semantic_mediator.schemas import (
    ConflictNote,
    ResolutionMetadata,
    ResolutionResult,
    SemanticDescriptor,
)

Descriptor = SemanticDescriptor | Mapping[str, Any]


class ResolutionStrategy(Protocol):
    """A way of resolving a conflict between two data representations.

    Strategies are tried in descending ``priority``. ``can_resolve`` is a
    cheap(ish) check; ``resolve`` does the work and reports failures as a
    ResolutionResult with ``success=False`` rather than raising.
    """

    name: str
    priority: int

    async def can_resolve(
        self,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> bool: ...

    async def resolve(
        self,
        source_data: Any,
        target_data: Any,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> ResolutionResult: ...


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return (time.perf_counter() - start) * 1000


def failure_result(
    strategy: str,
    conflict_type: str,
    description: str,
    *,
    reason: str | None = None,
    start: float | None = None,
    extra: dict[str, Any] | None = None,
    unresolved: list[ConflictNote] | None = None,
) -> ResolutionResult:
    """Zero-confidence failure reported by a strategy."""
    notes = unresolved or [
        ConflictNote(type=conflict_type, description=description, reason=reason)
    ]
    return ResolutionResult(
        success=False,
        resolved_data=None,
        strategy_used=strategy,
        confidence=0.0,
        unresolved_conflicts=notes,
        metadata=ResolutionMetadata(
            execution_time_ms=elapsed_ms(start) if start is not None else 0.0,
            extra=dict(extra or {}),
        ),
    )
