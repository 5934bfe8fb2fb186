"""Conflict resolution for SemanticMediator.

Submodules:
- strategies: explicit mapping, pattern matching and oracle fallback
- resolver: orchestrator that picks a strategy, caches and audits results
"""

from semantic_mediator.resolution.resolver import (
    ConflictResolver,
    build_module_descriptor,
    json_type_name,
)
from semantic_mediator.resolution.strategies import (
    ExplicitMappingStrategy,
    OracleFallbackStrategy,
    PatternMatchingStrategy,
    ResolutionStrategy,
)

__all__ = [
    "ConflictResolver",
    "ExplicitMappingStrategy",
    "OracleFallbackStrategy",
    "PatternMatchingStrategy",
    "ResolutionStrategy",
    "build_module_descriptor",
    "json_type_name",
]
