"""Pydantic schemas for oracle responses.

The oracle answers in free text; these models describe the JSON we ask it
to embed in that text. Field aliases follow the camelCase the prompts use,
and population by field name is allowed so the same models can be built
from Python code.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from semantic_mediator.schemas import ConflictNote


def _coerce_conflicts(v: Any) -> list[Any]:
    """Accept bare strings (or a single object) where a list of conflicts is expected."""
    if v is None:
        return []
    if isinstance(v, dict):
        v = [v]
    if not isinstance(v, list):
        v = [v]
    return [item if isinstance(item, dict) else {"description": item} for item in v]


def _coerce_string_list(v: Any) -> list[str]:
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return [str(item) for item in v]
    return [str(v)]


def _coerce_insights(v: Any) -> str:
    """LLMs sometimes return insights as a list of bullet strings."""
    if v is None:
        return ""
    if isinstance(v, (list, tuple)):
        return "\n".join(str(item) for item in v)
    return str(v)


class OracleResolution(BaseModel):
    """Conflict resolution proposed by the oracle."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = True
    resolved_data: Any | None = Field(default=None, alias="resolvedData")
    confidence: float = 0.5
    resolved_conflicts: Annotated[list[ConflictNote], BeforeValidator(_coerce_conflicts)] = Field(
        default_factory=list, alias="resolvedConflicts"
    )
    unresolved_conflicts: Annotated[
        list[ConflictNote], BeforeValidator(_coerce_conflicts)
    ] = Field(default_factory=list, alias="unresolvedConflicts")
    summary: Annotated[str, BeforeValidator(_coerce_insights)] = ""

    @property
    def has_resolved_data(self) -> bool:
        """True if the oracle supplied a non-null resolvedData."""
        return "resolved_data" in self.model_fields_set and self.resolved_data is not None


class UsageAnalysis(BaseModel):
    """Oracle summary of cache usage."""

    model_config = ConfigDict(extra="ignore")

    patterns: list[Any] = Field(default_factory=list)
    insights: Annotated[str, BeforeValidator(_coerce_insights)] = ""
    recommendations: Annotated[list[str], BeforeValidator(_coerce_string_list)] = Field(
        default_factory=list
    )
    error: str | None = None


class CacheOptimization(BaseModel):
    """Oracle-proposed cache optimization plan."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    retain_types: Annotated[list[str], BeforeValidator(_coerce_string_list)] = Field(
        default_factory=list, alias="retainTypes"
    )
    purge_types: Annotated[list[str], BeforeValidator(_coerce_string_list)] = Field(
        default_factory=list, alias="purgeTypes"
    )
    threshold_adjustments: dict[str, Any] = Field(
        default_factory=dict, alias="thresholdAdjustments"
    )
    additional_suggestions: Annotated[list[str], BeforeValidator(_coerce_string_list)] = Field(
        default_factory=list, alias="additionalSuggestions"
    )
    applied_threshold: float | None = None
    """Predictive threshold after applying the plan, when it proposed one."""

    error: str | None = None
