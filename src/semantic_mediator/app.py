"""FastAPI application for SemanticMediator."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, FastAPI, Query, Request
from pydantic import BaseModel, Field

from semantic_mediator import __version__
from semantic_mediator.cache.entry import CacheEntry
from semantic_mediator.cache.semantic_key import entity_type_of
from semantic_mediator.config import settings
from semantic_mediator.db import close_db, init_db
from semantic_mediator.factory import Mediator, build_mediator
from semantic_mediator.schemas import CandidateSource, DataSource, ResolutionResult


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    mediator = build_mediator()
    app.state.mediator = mediator

    scheduler = mediator.purge_scheduler()
    if settings.cache_purge_enabled:
        scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await close_db()


app = FastAPI(
    title="SemanticMediator",
    description="Semantic conflict resolution with a learning transformation cache",
    version=__version__,
    lifespan=lifespan,
)


def get_mediator(request: Request) -> Mediator:
    """Dependency returning the mediator built at startup."""
    return request.app.state.mediator


MediatorDep = Annotated[Mediator, Depends(get_mediator)]


class ResolveRequest(BaseModel):
    module_a: str
    data_a: Any = None
    module_b: str
    data_b: Any = None
    force_strategy: str | None = None
    context: dict[str, Any] | None = None
    cache_results: bool = True


class SourceSearchRequest(BaseModel):
    intent: str = Field(min_length=1)
    context: dict[str, Any] | None = None


class CacheEntryView(BaseModel):
    """Public view of a cache entry (no descriptors or paths)."""

    id: UUID
    source_type: str
    target_type: str
    semantic_key: str | None
    usage_count: int
    created_at: datetime
    last_used: datetime
    metadata: dict[str, Any]

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "CacheEntryView":
        return cls(
            id=entry.id,
            source_type=entity_type_of(entry.source_descriptor),
            target_type=entity_type_of(entry.target_descriptor),
            semantic_key=entry.semantic_key,
            usage_count=entry.usage_count,
            created_at=entry.created_at,
            last_used=entry.last_used,
            metadata=entry.metadata,
        )


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.post("/resolve")
async def resolve(body: ResolveRequest, mediator: MediatorDep) -> ResolutionResult:
    """Resolve conflicts between two modules' data."""
    return await mediator.resolver.resolve(
        body.module_a,
        body.data_a,
        body.module_b,
        body.data_b,
        force_strategy=body.force_strategy,
        context=body.context,
        cache_results=body.cache_results,
    )


@app.get("/cache/most-used")
async def most_used(
    mediator: MediatorDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> list[CacheEntryView]:
    """Most used cached transformations."""
    return [CacheEntryView.from_entry(e) for e in await mediator.cache.most_used(limit)]


@app.get("/cache/recent")
async def most_recent(
    mediator: MediatorDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> list[CacheEntryView]:
    """Most recently used cached transformations."""
    return [CacheEntryView.from_entry(e) for e in await mediator.cache.most_recent(limit)]


@app.get("/sources")
async def list_sources(
    mediator: MediatorDep,
    module_id: str | None = None,
) -> list[DataSource]:
    """Registered data sources, optionally for one module."""
    return await mediator.resolver.list_data_sources(module_id)


@app.post("/sources/search")
async def search_sources(body: SourceSearchRequest, mediator: MediatorDep) -> list[CandidateSource]:
    """Rank registered data sources against a semantic intent."""
    return await mediator.resolver.find_candidate_sources(body.intent, body.context)
