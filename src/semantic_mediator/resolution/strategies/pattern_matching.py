"""Pattern matching strategy: replay a similar cached transformation.

A transformation path is an ordered list of steps:

- ``{"type": "field_mapping", "mapping": {target_field: source_field}}``
  builds a new object holding only the mapped fields
- ``{"type": "structure_transformation", "transformation": fn_or_name}``
  applies a callable, or a transformation registered by name
- ``{"type": "conflict_resolution", "resolution": {...}}``
  shallow-merges current data, target data and the resolution object,
  later keys winning

Steps are read from ``path["steps"]``, or from a cached resolution result
at ``path["metadata"]["transformation_path"]["steps"]``. A path without
steps replays to a shallow copy of the source data.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from semantic_mediator.cache.entry import CacheMatch
from semantic_mediator.cache.semantic_key import is_fallback_key, make_key
from semantic_mediator.cache.transformation_cache import TransformationCache
from semantic_mediator.config import settings
from semantic_mediator.models.enums import StepType
from semantic_mediator.resolution.strategies.base import Descriptor, elapsed_ms, failure_result
from semantic_mediator.schemas import ConflictNote, ResolutionMetadata, ResolutionResult

logger = logging.getLogger(__name__)

TransformationFn = Callable[[Any], Any]


def extract_steps(path: Any) -> list[dict[str, Any]]:
    """Ordered steps of a transformation path (or of a cached result).

    Raises:
        ValueError: If steps are present but not a list of objects.
    """
    if not isinstance(path, Mapping):
        return []

    steps = path.get("steps")
    if steps is None:
        metadata = path.get("metadata")
        if isinstance(metadata, Mapping):
            inner = metadata.get("transformation_path")
            if isinstance(inner, Mapping):
                steps = inner.get("steps")
    if steps is None:
        return []

    if not isinstance(steps, list) or not all(isinstance(s, Mapping) for s in steps):
        raise ValueError("Transformation steps must be a list of objects")
    return [dict(s) for s in steps]


class PatternMatchingStrategy:
    """Resolve by replaying the best matching cached transformation.

    Usage:
        strategy = PatternMatchingStrategy(cache)
        strategy.register_transformation("flatten_address", flatten_address)
    """

    name = "pattern_matching"
    priority = 2

    def __init__(self, cache: TransformationCache, *, threshold: float | None = None) -> None:
        self._cache = cache
        self._threshold = settings.pattern_match_threshold if threshold is None else threshold
        self._transformations: dict[str, TransformationFn] = {}
        # Matches found by can_resolve(), consumed by the following resolve()
        # so one resolution counts as one cache hit
        self._pending: dict[str, CacheMatch] = {}

    @property
    def threshold(self) -> float:
        return self._threshold

    def register_transformation(self, name: str, fn: TransformationFn) -> None:
        """Make a structure transformation addressable by name in stored paths."""
        self._transformations[name] = fn
        logger.info("Registered structure transformation %s", name)

    async def can_resolve(
        self,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> bool:
        try:
            match = await self._cache.retrieve_match(source, target, self._threshold)
        except Exception as e:
            logger.error("Error checking for similar patterns: %s", e)
            return False
        if match is None:
            return False
        key = make_key(source, target)
        if not is_fallback_key(key):
            self._pending[key] = match
        return True

    async def resolve(
        self,
        source_data: Any,
        target_data: Any,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> ResolutionResult:
        start = time.perf_counter()
        try:
            match = self._pending.pop(make_key(source, target), None)
            if match is None:
                match = await self._cache.retrieve_match(source, target, self._threshold)
            if match is None:
                return failure_result(
                    self.name,
                    "no_similar_patterns",
                    "No similar patterns found in the cache",
                    reason="Insufficient pattern data",
                    start=start,
                )
            steps = extract_steps(match.transformation_path)
            resolved = await self._replay(source_data, target_data, steps)
        except Exception as e:
            logger.error("Error in pattern matching resolution: %s", e)
            return failure_result(
                self.name,
                "pattern_matching_error",
                "Error applying pattern matching resolution",
                reason=str(e),
                start=start,
                extra={"error": str(e), "error_type": type(e).__name__},
            )

        score = max(0.0, min(1.0, match.score))
        return ResolutionResult(
            success=True,
            resolved_data=resolved,
            strategy_used=self.name,
            confidence=score,
            resolved_conflicts=[
                ConflictNote(
                    type="pattern_matching",
                    description=f"Applied pattern transformation with similarity {score:.2f}",
                    resolution="Used similar transformation pattern from cache",
                )
            ],
            metadata=ResolutionMetadata(
                execution_time_ms=elapsed_ms(start),
                transformation_path={"type": "pattern", "steps": steps},
                extra={
                    "pattern_similarity": score,
                    "pattern_id": str(match.entry.id),
                    "match_stage": match.stage.value,
                },
            ),
        )

    async def _replay(self, source_data: Any, target_data: Any, steps: list[dict[str, Any]]) -> Any:
        result = dict(source_data) if isinstance(source_data, Mapping) else source_data

        for step in steps:
            raw_type = step.get("type")
            try:
                step_type = StepType(raw_type)
            except ValueError:
                raise ValueError(f"Unknown transformation step type: {raw_type}") from None

            if step_type is StepType.FIELD_MAPPING:
                result = _apply_field_mapping(result, step.get("mapping") or {})
            elif step_type is StepType.STRUCTURE_TRANSFORMATION:
                result = await self._apply_structure_transformation(
                    result, step.get("transformation")
                )
            else:
                result = _apply_conflict_resolution(result, target_data, step.get("resolution"))
        return result

    async def _apply_structure_transformation(self, data: Any, transformation: Any) -> Any:
        if isinstance(transformation, str):
            fn = self._transformations.get(transformation)
            if fn is None:
                raise ValueError(f"Unknown structure transformation: {transformation}")
        elif callable(transformation):
            fn = transformation
        else:
            raise TypeError("structure_transformation step needs a callable or a registered name")

        transformed = fn(data)
        if inspect.isawaitable(transformed):
            transformed = await transformed
        return transformed


def _apply_field_mapping(data: Any, mapping: Mapping[str, str]) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError("field_mapping step needs object data")
    return {target_field: data.get(source_field) for target_field, source_field in mapping.items()}


def _apply_conflict_resolution(data: Any, target_data: Any, resolution: Any) -> dict[str, Any]:
    parts = [data, target_data if target_data is not None else {}, resolution or {}]
    if not all(isinstance(p, Mapping) for p in parts):
        raise TypeError("conflict_resolution step needs object data")
    merged: dict[str, Any] = {}
    for part in parts:
        merged.update(part)
    return merged
