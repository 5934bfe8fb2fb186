"""Oracle fallback strategy: ask the inference oracle to reconcile the data.

Always applicable, always last. Parse failures, ``success: false`` and
missing resolved data are reported as failed results. A failure of the
oracle call itself is not caught here; it propagates to the resolver.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import UTC, datetime
from typing import Any

from semantic_mediator.cache.semantic_key import descriptor_document
from semantic_mediator.clients.oracle import InferenceOracle
from semantic_mediator.inference.parsing import ResolutionParseError, parse_oracle_resolution
from semantic_mediator.inference.prompts import build_resolution_prompt
from semantic_mediator.resolution.strategies.base import Descriptor, elapsed_ms, failure_result
from semantic_mediator.schemas import ConflictNote, ResolutionMetadata, ResolutionResult

logger = logging.getLogger(__name__)

RESOLUTION_TEMPERATURE = 0.2
RESOLUTION_MAX_TOKENS = 4000


def _clamp_confidence(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


class OracleFallbackStrategy:
    """Universal fallback that delegates resolution to the oracle."""

    name = "oracle_fallback"
    priority = 1

    def __init__(self, oracle: InferenceOracle) -> None:
        self._oracle = oracle

    async def can_resolve(
        self,
        source: Descriptor,
        target: Descriptor,
        context: dict[str, Any] | None = None,
    ) -> bool:
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
        prompt = build_resolution_prompt(
            source_data,
            target_data,
            descriptor_document(source),
            descriptor_document(target),
            context,
        )

        # Transport failures propagate
        text = await self._oracle.infer(
            prompt,
            temperature=RESOLUTION_TEMPERATURE,
            max_tokens=RESOLUTION_MAX_TOKENS,
        )

        try:
            parsed = parse_oracle_resolution(str(text))
        except ResolutionParseError as e:
            logger.warning("Could not parse oracle resolution: %s", e)
            return failure_result(
                self.name,
                "oracle_error",
                "Failed to parse oracle resolution result",
                reason=str(e),
                start=start,
            )

        resolution = parsed.resolution
        extra: dict[str, Any] = {"resolution_summary": resolution.summary, "parse_mode": parsed.mode}

        if not resolution.success:
            return failure_result(
                self.name,
                "oracle_error",
                "Oracle could not resolve the conflict",
                reason=resolution.summary or "Unknown error",
                start=start,
                extra=extra,
                unresolved=resolution.unresolved_conflicts or None,
            )

        if not resolution.has_resolved_data:
            return failure_result(
                self.name,
                "oracle_error",
                "Oracle did not provide valid resolved data",
                reason="Missing or invalid resolvedData in oracle response",
                start=start,
                extra=extra,
            )

        confidence = _clamp_confidence(resolution.confidence)
        extra["oracle_confidence"] = confidence
        logger.debug("Oracle resolution parsed (%s, confidence=%.2f)", parsed.mode, confidence)

        return ResolutionResult(
            success=True,
            resolved_data=resolution.resolved_data,
            strategy_used=self.name,
            confidence=confidence,
            resolved_conflicts=resolution.resolved_conflicts
            or [
                ConflictNote(
                    type="oracle_resolution",
                    description="Resolved using oracle semantic analysis",
                    resolution="Applied oracle-generated transformation",
                )
            ],
            unresolved_conflicts=resolution.unresolved_conflicts,
            metadata=ResolutionMetadata(
                execution_time_ms=elapsed_ms(start),
                transformation_path={
                    "type": "oracle_generated",
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                extra=extra,
            ),
        )
