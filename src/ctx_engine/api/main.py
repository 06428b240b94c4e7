import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from ctx_engine.cli import EngineDeps, _build_dependencies
from ctx_engine.config import settings
from ctx_engine.core.models import (
    AssembledContext,
    AssemblyOptions,
    ContextFormat,
    Direction,
    GraphStats,
    Neighborhood,
    PathResult,
    SearchOptions,
    SearchResult,
    SearchStrategy,
)
from ctx_engine.services.context import ContextAssembler
from ctx_engine.services.retrieval import RetrievalService

# Global engine dependencies holding the opened stores and the search pipeline
_services: dict[str, EngineDeps] = {}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown events for the API."""
    logger.info("[Startup] Opening knowledge base at {}...", settings.db_path)

    try:
        _services["engine"] = _build_dependencies()
        logger.info("[Startup] API is ready to accept concurrent requests.")
    except Exception as e:
        logger.error("[Startup] Failed to initialize retrieval services: {}", e)
        raise

    yield

    logger.info("[Shutdown] Cleaning up resources...")
    _services.clear()


app = FastAPI(
    title="ctx-engine Retrieval API",
    description="Async API for multi-strategy search, graph queries and context assembly.",
    version="0.1.0",
    lifespan=lifespan,
)


class SearchRequest(BaseModel):
    """Schema for a fused search request."""

    query: str = Field(..., description="Natural-language query.")
    limit: int = Field(10, ge=1, le=100, description="Maximum number of results to return.")
    strategies: list[SearchStrategy] | None = Field(None, description="Strategies to run.")
    entity_types: list[str] = Field(default_factory=list, description="Entity type filter.")
    min_score: float = Field(0.0, description="Minimum fused score.")
    graph_depth: int = Field(2, ge=0, le=5, description="Traversal depth for the graph strategy.")


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]


class ContextRequest(BaseModel):
    """Schema for a context assembly request."""

    query: str = Field(..., description="Natural-language query.")
    limit: int = Field(20, ge=1, le=100, description="Maximum number of search results to assemble.")
    max_tokens: int = Field(4000, ge=1, description="Token budget.")
    format: ContextFormat = Field(ContextFormat.MARKDOWN, description="Output format.")
    include_sources: bool = True
    group_by_type: bool = True
    min_relevance: float = 0.0


class ContextResponse(BaseModel):
    query: str
    context: AssembledContext


class NeighborhoodRequest(BaseModel):
    entity_id: str
    max_depth: int = Field(2, ge=0, le=10)
    direction: Direction = Direction.BOTH
    relationship_types: list[str] | None = None
    min_weight: float | None = None


class PathsRequest(BaseModel):
    from_id: str
    to_id: str
    max_depth: int | None = Field(None, ge=0, le=10)
    limit: int | None = Field(None, ge=1)
    relationship_types: list[str] | None = None


def _engine() -> EngineDeps:
    deps = _services.get("engine")
    if deps is None:
        raise HTTPException(status_code=503, detail="Retrieval service is not initialized.")
    return deps


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    if not _services:
        raise HTTPException(status_code=503, detail="Retrieval service initializing or failed")

    deps = _services["engine"]
    return {
        "status": "healthy",
        "entities": len(deps.similarity_index),
        "strategies": [str(s) for s in deps.search.available_strategies],
    }


@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest) -> SearchResponse:
    """Executes a fused multi-strategy search."""
    deps = _engine()
    options = SearchOptions(
        strategies=request.strategies or settings.search.strategies,
        limit=request.limit,
        entity_types=request.entity_types,
        weights=settings.search.weights,
        min_score=request.min_score,
        graph_depth=request.graph_depth,
    )
    try:
        results = await deps.search.search(request.query, options)
        return SearchResponse(query=request.query, results=results)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Search execution failed: {e}") from e


@app.post("/context", response_model=ContextResponse)
async def assemble_context(request: ContextRequest) -> ContextResponse:
    """Searches and assembles a token-budgeted context block."""
    deps = _engine()
    # The file cache is not shared across concurrent requests
    service = RetrievalService(deps.search, ContextAssembler(settings.file_cache_size))
    search_options = SearchOptions(
        strategies=settings.search.strategies,
        limit=request.limit,
        weights=settings.search.weights,
        graph_depth=settings.search.graph_depth,
    )
    assembly_options = AssemblyOptions(
        max_tokens=request.max_tokens,
        format=request.format,
        include_sources=request.include_sources,
        group_by_type=request.group_by_type,
        min_relevance=request.min_relevance,
        project_root=settings.project_root,
    )
    try:
        retrieval = await service.retrieve(request.query, search_options, assembly_options)
        return ContextResponse(query=request.query, context=retrieval.context)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Context assembly failed: {e}") from e


@app.post("/graph/neighborhood", response_model=Neighborhood)
async def neighborhood(request: NeighborhoodRequest) -> Neighborhood:
    deps = _engine()
    try:
        return await asyncio.to_thread(
            deps.graph.get_neighborhood,
            request.entity_id,
            max_depth=request.max_depth,
            direction=request.direction,
            relationship_types=request.relationship_types,
            min_weight=request.min_weight,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Graph query failed: {e}") from e


@app.post("/graph/paths", response_model=PathResult)
async def graph_paths(request: PathsRequest) -> PathResult:
    deps = _engine()
    try:
        return await asyncio.to_thread(
            deps.graph.find_paths,
            request.from_id,
            request.to_id,
            max_depth=request.max_depth,
            limit=request.limit or settings.graph.path_limit,
            relationship_types=request.relationship_types,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Graph query failed: {e}") from e


@app.get("/graph/stats", response_model=GraphStats)
async def graph_stats() -> GraphStats:
    deps = _engine()
    try:
        return await asyncio.to_thread(deps.graph.get_graph_stats)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Graph query failed: {e}") from e
