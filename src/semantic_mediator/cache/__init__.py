"""Semantic transformation cache: keys, similarity, storage and retention."""

from semantic_mediator.cache.entry import CacheEntry, CacheMatch, Prediction
from semantic_mediator.cache.purge import CachePurgeScheduler
from semantic_mediator.cache.semantic_key import (
    ParsedKey,
    entity_type_of,
    is_fallback_key,
    make_key,
    parse_key,
)
from semantic_mediator.cache.similarity import (
    DescriptorSimilarity,
    key_similarity,
    structural_similarity,
)
from semantic_mediator.cache.transformation_cache import TransformationCache

__all__ = [
    "CacheEntry",
    "CacheMatch",
    "CachePurgeScheduler",
    "DescriptorSimilarity",
    "ParsedKey",
    "Prediction",
    "TransformationCache",
    "entity_type_of",
    "is_fallback_key",
    "key_similarity",
    "make_key",
    "parse_key",
    "structural_similarity",
]
