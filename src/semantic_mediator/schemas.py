"""Pydantic schemas shared across the resolution pipeline.

SemanticDescriptor describes a module's data independent of the payload.
ResolutionResult is what every strategy returns and what the orchestrator
hands back to callers (and caches).
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _coerce_to_string(v: Any) -> str:
    """Coerce conflict note fields to strings.

    Oracle responses may carry numbers, lists or nulls where text is expected.
    """
    if v is None:
        return ""
    return str(v)


def _coerce_optional_string(v: Any) -> str | None:
    if v is None:
        return None
    return str(v)


class AttributeSpec(BaseModel):
    """Declared shape of a single attribute of a descriptor."""

    model_config = ConfigDict(frozen=True)

    type: str
    description: str = ""
    format: str | None = None
    constraints: list[str] = Field(default_factory=list)


class SemanticDescriptor(BaseModel):
    """Structured metadata describing an entity's type, fields and capabilities.

    ``type`` and ``components`` are set for wrapper descriptors that bundle
    several component descriptors.
    """

    model_config = ConfigDict(frozen=True)

    entity: str
    description: str = ""
    attributes: dict[str, AttributeSpec] = Field(default_factory=dict)
    capabilities: set[str] = Field(default_factory=set)
    metadata: dict[str, Any] = Field(default_factory=dict)
    type: str | None = None
    components: list[SemanticDescriptor] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        """Plain-dict form used for persistence and prompts."""
        doc = self.model_dump(mode="json", exclude_none=True)
        doc["capabilities"] = sorted(self.capabilities)
        if not self.components:
            doc.pop("components", None)
        return doc


class ConflictNote(BaseModel):
    """A resolved or unresolved conflict reported by a strategy."""

    type: Annotated[str, BeforeValidator(_coerce_to_string)] = ""
    description: Annotated[str, BeforeValidator(_coerce_to_string)] = ""
    resolution: Annotated[str | None, BeforeValidator(_coerce_optional_string)] = None
    """How the conflict was resolved (resolved conflicts only)."""

    reason: Annotated[str | None, BeforeValidator(_coerce_optional_string)] = None
    """Why the conflict stayed unresolved (unresolved conflicts only)."""


class ResolutionMetadata(BaseModel):
    """Execution details attached to a ResolutionResult."""

    model_config = ConfigDict(frozen=True)

    execution_time_ms: float = 0.0
    transformation_path: Any | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ResolutionResult(BaseModel):
    """Outcome of a single resolution call. Immutable once returned."""

    model_config = ConfigDict(frozen=True)

    success: bool
    resolved_data: Any | None = None
    strategy_used: str
    confidence: float = Field(ge=0.0, le=1.0)
    resolved_conflicts: list[ConflictNote] = Field(default_factory=list)
    unresolved_conflicts: list[ConflictNote] = Field(default_factory=list)
    metadata: ResolutionMetadata = Field(default_factory=ResolutionMetadata)


class DataSource(BaseModel):
    """A registered data source (latest version)."""

    source_id: str
    name: str
    description: Annotated[str, BeforeValidator(_coerce_to_string)] = ""
    capabilities: list[str] = Field(default_factory=list)
    module_id: str | None = None
    registered_at: str | None = None
    updated_at: str | None = None


class CandidateSource(BaseModel):
    """A registered data source ranked against a semantic intent."""

    source_id: str
    relevance: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
