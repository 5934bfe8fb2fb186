"""Oracle prompts, response schemas and response parsing."""

from semantic_mediator.inference.parsing import (
    ParsedResolution,
    ResolutionParseError,
    parse_json_object,
    parse_oracle_resolution,
    parse_score,
)
from semantic_mediator.inference.schemas import CacheOptimization, OracleResolution, UsageAnalysis

__all__ = [
    "CacheOptimization",
    "OracleResolution",
    "ParsedResolution",
    "ResolutionParseError",
    "UsageAnalysis",
    "parse_json_object",
    "parse_oracle_resolution",
    "parse_score",
]
