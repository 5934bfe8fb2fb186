"""Enumerations for SemanticMediator data model."""

from enum import Enum


class RecordCategory(str, Enum):
    """Category a record is appended under in the document store."""

    SEMANTIC_TRANSFORMATION = "semantic_transformation"  # Cache entry versions
    SYSTEM = "system"  # Tombstones and other system markers
    CONFLICT_RESOLUTION = "conflict_resolution"  # Audit trail of resolutions
    DATA_SOURCE = "data_source"  # Registered data sources


class StepType(str, Enum):
    """Step kinds a replayable transformation path can contain."""

    FIELD_MAPPING = "field_mapping"
    STRUCTURE_TRANSFORMATION = "structure_transformation"
    CONFLICT_RESOLUTION = "conflict_resolution"


class MatchStage(str, Enum):
    """Which lookup stage of the cache produced a hit."""

    EXACT_KEY = "exact_key"
    KEY_SIMILARITY = "key_similarity"
    DESCRIPTOR_SIMILARITY = "descriptor_similarity"


class ThresholdDirection(str, Enum):
    """Adaptive threshold adjustment extracted from a usage analysis."""

    RAISE = "raise"
    LOWER = "lower"
    KEEP = "keep"
