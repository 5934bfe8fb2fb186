"""Database models for SemanticMediator."""

from semantic_mediator.models.base import Base
from semantic_mediator.models.enums import (
    MatchStage,
    RecordCategory,
    StepType,
    ThresholdDirection,
)
from semantic_mediator.models.record import StoredRecord

__all__ = [
    "Base",
    "MatchStage",
    "RecordCategory",
    "StepType",
    "StoredRecord",
    "ThresholdDirection",
]
