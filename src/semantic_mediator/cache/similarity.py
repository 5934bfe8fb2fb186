"""Similarity scoring for cache lookup and prediction.

Two notions of similarity are used, at different costs:

- Key similarity compares two semantic keys locally. It is cheap and is
  used for the second lookup stage over every keyed cache entry.
- Descriptor similarity asks the inference oracle to score two descriptors.
  It is expensive and is only reached when key lookup finds nothing.

Both return a score in [0, 1]. Neither raises: descriptor similarity falls
back to a fixed low default when the oracle fails or answers nonsense.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from semantic_mediator.cache.semantic_key import descriptor_document, parse_key
from semantic_mediator.clients.oracle import InferenceOracle
from semantic_mediator.config import settings
from semantic_mediator.inference.parsing import parse_score
from semantic_mediator.inference.prompts import (
    build_context_similarity_prompt,
    build_descriptor_similarity_prompt,
)
from semantic_mediator.schemas import SemanticDescriptor

logger = logging.getLogger(__name__)

TYPE_MATCH_WEIGHT = 0.3
SOURCE_DATA_WEIGHT = 0.35
TARGET_DATA_WEIGHT = 0.35

SIMILARITY_TEMPERATURE = 0.1
SIMILARITY_MAX_TOKENS = 10


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def structural_similarity(a: Any, b: Any) -> float:
    """Structural similarity of two values.

    For two mappings: the average of key overlap (shared / union) and the
    mean match over shared keys, where nested mappings recurse, scalars
    compare by equality and a type mismatch scores 0. Non-mappings compare
    by equality.
    """
    if not isinstance(a, Mapping) or not isinstance(b, Mapping):
        return 1.0 if a == b else 0.0

    keys_a = set(a.keys())
    keys_b = set(b.keys())
    union = keys_a | keys_b
    if not union:
        return 1.0

    shared = keys_a & keys_b
    key_overlap = len(shared) / len(union)
    if not shared:
        return key_overlap / 2

    matches: list[float] = []
    for key in shared:
        va, vb = a[key], b[key]
        if isinstance(va, Mapping) and isinstance(vb, Mapping):
            matches.append(structural_similarity(va, vb))
        elif type(va) is not type(vb):
            matches.append(0.0)
        else:
            matches.append(1.0 if va == vb else 0.0)

    value_match = sum(matches) / len(matches)
    return (key_overlap + value_match) / 2


def _half_similarity(a: dict[str, Any] | str, b: dict[str, Any] | str) -> float:
    if isinstance(a, dict) and isinstance(b, dict):
        return structural_similarity(a, b)
    return 1.0 if a == b else 0.0


def key_similarity(key_a: str, key_b: str) -> float:
    """Similarity of two semantic keys, computed locally."""
    if key_a == key_b:
        return 1.0

    parsed_a = parse_key(key_a)
    parsed_b = parse_key(key_b)

    score = 0.0
    if (
        parsed_a.source_type == parsed_b.source_type
        and parsed_a.target_type == parsed_b.target_type
    ):
        score += TYPE_MATCH_WEIGHT
    score += SOURCE_DATA_WEIGHT * _half_similarity(parsed_a.source_data, parsed_b.source_data)
    score += TARGET_DATA_WEIGHT * _half_similarity(parsed_a.target_data, parsed_b.target_data)
    return _clamp(score)


class DescriptorSimilarity:
    """Oracle-backed descriptor similarity.

    Usage:
        similarity = DescriptorSimilarity(oracle)
        score = await similarity.score(descriptor_a, descriptor_b)
    """

    def __init__(self, oracle: InferenceOracle, *, default: float | None = None) -> None:
        self._oracle = oracle
        self._default = settings.descriptor_similarity_default if default is None else default

    @property
    def default(self) -> float:
        return self._default

    async def score(
        self,
        descriptor_a: SemanticDescriptor | Mapping[str, Any],
        descriptor_b: SemanticDescriptor | Mapping[str, Any],
    ) -> float:
        """Score two descriptors in [0, 1]. Returns the default on any failure."""
        try:
            prompt = build_descriptor_similarity_prompt(
                descriptor_document(descriptor_a), descriptor_document(descriptor_b)
            )
        except Exception as e:
            logger.warning("Could not build descriptor similarity prompt: %s", e)
            return self._default
        return await self._ask(prompt, "descriptor similarity")

    async def context_score(self, context: Mapping[str, Any], candidate: Mapping[str, Any]) -> float:
        """Score how relevant a cached candidate is to a context. Same contract as score()."""
        try:
            prompt = build_context_similarity_prompt(dict(context), dict(candidate))
        except Exception as e:
            logger.warning("Could not build context similarity prompt: %s", e)
            return self._default
        return await self._ask(prompt, "context similarity")

    async def _ask(self, prompt: str, label: str) -> float:
        try:
            response = await self._oracle.infer(
                prompt,
                temperature=SIMILARITY_TEMPERATURE,
                max_tokens=SIMILARITY_MAX_TOKENS,
            )
        except Exception as e:
            logger.warning("Oracle %s call failed, using default %.2f: %s", label, self._default, e)
            return self._default

        value = parse_score(str(response))
        if value is None:
            logger.warning("Unparseable %s response %r, using default", label, response)
            return self._default
        return _clamp(value)
