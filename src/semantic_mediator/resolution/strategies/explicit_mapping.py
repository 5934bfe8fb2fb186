"""Explicit mapping strategy: registered functions for known type pairs.

The fastest and most reliable strategy, limited to pairs someone has
written a mapping for. Entity types are looked up the same way the
semantic key codec does (type, entity, entity_type/entityType).
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from semantic_mediator.cache.semantic_key import entity_type_of
from semantic_mediator.resolution.strategies.base import Descriptor, elapsed_ms, failure_result
from semantic_mediator.schemas import ConflictNote, ResolutionMetadata, ResolutionResult

logger = logging.getLogger(__name__)

MappingFn = Callable[[Any, Any], Any]


class ExplicitMappingStrategy:
    """Resolve with a mapping function registered for the exact type pair.

    Usage:
        strategy = ExplicitMappingStrategy()
        strategy.register_mapping("crm", "billing", lambda src, tgt: {...})
    """

    name = "explicit_mapping"
    priority = 3

    def __init__(self) -> None:
        self._mappings: dict[str, dict[str, MappingFn]] = {}

    def register_mapping(self, source_type: str, target_type: str, mapping_fn: MappingFn) -> None:
        """Register (or replace) the mapping for a source/target type pair.

        ``mapping_fn(source_data, target_data)`` may be sync or async.
        """
        self._mappings.setdefault(source_type, {})[target_type] = mapping_fn
        logger.info("Registered explicit mapping from %s to %s", source_type, target_type)

    def get_mapping(self, source_type: str, target_type: str) -> MappingFn | None:
        return self._mappings.get(source_type, {}).get(target_type)

    def registered_pairs(self) -> list[tuple[str, str]]:
        return [(src, tgt) for src, targets in self._mappings.items() for tgt in targets]

    async def can_resolve(
        self,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> bool:
        return self.get_mapping(entity_type_of(source), entity_type_of(target)) is not None

    async def resolve(
        self,
        source_data: Any,
        target_data: Any,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> ResolutionResult:
        start = time.perf_counter()
        source_type = entity_type_of(source)
        target_type = entity_type_of(target)

        mapping_fn = self.get_mapping(source_type, target_type)
        if mapping_fn is None:
            return failure_result(
                self.name,
                "missing_mapping",
                f"No explicit mapping found from {source_type} to {target_type}",
                reason="No registered mapping",
                start=start,
            )

        try:
            resolved = mapping_fn(source_data, target_data)
            if inspect.isawaitable(resolved):
                resolved = await resolved
        except Exception as e:
            logger.error(
                "Explicit mapping %s -> %s failed: %s", source_type, target_type, e
            )
            return failure_result(
                self.name,
                "mapping_error",
                f"Error applying explicit mapping from {source_type} to {target_type}",
                reason=str(e),
                start=start,
                extra={"error": str(e), "error_type": type(e).__name__},
            )

        return ResolutionResult(
            success=True,
            resolved_data=resolved,
            strategy_used=self.name,
            confidence=1.0,
            resolved_conflicts=[
                ConflictNote(
                    type="explicit_mapping",
                    description=f"Applied explicit mapping from {source_type} to {target_type}",
                    resolution="Used predefined mapping function",
                )
            ],
            metadata=ResolutionMetadata(
                execution_time_ms=elapsed_ms(start),
                transformation_path={
                    "type": "direct",
                    "source_type": source_type,
                    "target_type": target_type,
                },
            ),
        )
