"""Resolution strategies, tried in descending priority."""

from semantic_mediator.resolution.strategies.base import ResolutionStrategy, failure_result
from semantic_mediator.resolution.strategies.explicit_mapping import ExplicitMappingStrategy
from semantic_mediator.resolution.strategies.oracle_fallback import OracleFallbackStrategy
from semantic_mediator.resolution.strategies.pattern_matching import PatternMatchingStrategy

__all__ = [
    "ExplicitMappingStrategy",
    "OracleFallbackStrategy",
    "PatternMatchingStrategy",
    "ResolutionStrategy",
    "failure_result",
]
