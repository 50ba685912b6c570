"""
Tagging API Service.

FastAPI application providing REST endpoints for recording user/item/tag
associations and querying them.

Writes:
    POST /api/v1/tag, POST /api/v1/untag

Reads:
    POST /api/v1/query (general form), plus shortcuts for common rankings
"""
# Load .env file if present (for local development)
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

import redis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..services.errors import TaggingError
from ..services.query import QueryConditions
from ..services.registry import Reference, ResourceKind
from ..services.service import TaggingService
from ..services.settings import TaggingSettings
from ..services.store import connect_redis

logger = logging.getLogger(__name__)

# Global instances
settings: Optional[TaggingSettings] = None
service: Optional[TaggingService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Reads settings from the environment and builds the Redis client and
    tagging service on startup.
    """
    global settings, service

    settings = TaggingSettings.from_env()
    client = connect_redis(settings.redis_url)
    service = TaggingService.from_settings(settings, client=client)

    yield

    # Cleanup
    client.close()


app = FastAPI(
    title="Tagging API",
    description="REST API for recording and querying user/item/tag associations",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(TaggingError)
async def tagging_error_handler(request: Request, exc: TaggingError):
    """Invalid kinds and references are client errors."""
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Request/Response Models

# JSON ids may arrive as numbers or strings; they are stored as strings
Identifier = Union[int, str]


class TagRequest(BaseModel):
    """Request model for tagging or untagging an item."""
    user: Identifier
    item: Identifier
    tag: Identifier


class TagResponse(BaseModel):
    """Response model for tag/untag."""
    user: str
    item: str
    tag: str
    changed: bool  # scoped tagging was added/removed by this call


class ResourceRef(BaseModel):
    """A resource (kind + id) or, without an id, the kind itself."""
    kind: str
    id: Optional[Identifier] = None


class QueryRequest(BaseModel):
    """Request model for a general query."""
    response_kind: str
    scope: Optional[ResourceRef] = None
    via: Optional[Union[ResourceRef, list[ResourceRef]]] = None
    limit: int = 0
    with_scores: bool = True
    similar: bool = False


class QueryResponse(BaseModel):
    """Response model for query results."""
    response_kind: str
    results: list[str]
    scores: Optional[list[float]] = None  # parallel to results for tag rankings


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    redis_connected: bool
    consistency: Optional[str]


def _resources(req: TagRequest):
    return (
        service.resource(ResourceKind.USER, req.user),
        service.resource(ResourceKind.ITEM, req.item),
        service.resource(ResourceKind.TAG, req.tag),
    )


def _tag_response(user, item, tag, changed: bool) -> TagResponse:
    return TagResponse(
        user=user.identifier, item=item.identifier, tag=tag.identifier, changed=changed
    )


def _reference(ref: Optional[ResourceRef]) -> Optional[Reference]:
    if ref is None:
        return None
    if ref.id is None:
        return ResourceKind.parse(ref.kind)
    return service.resource(ref.kind, ref.id)


def _query_response(response_kind: ResourceKind, results: list[Any]) -> QueryResponse:
    """Split (name, score) pairs into parallel lists."""
    if results and isinstance(results[0], (tuple, list)):
        return QueryResponse(
            response_kind=response_kind.value,
            results=[str(name) for name, _ in results],
            scores=[float(score) for _, score in results],
        )
    return QueryResponse(response_kind=response_kind.value, results=[str(r) for r in results])


# API Endpoints

@app.post("/api/v1/tag", response_model=TagResponse)
async def tag_item(req: TagRequest):
    """
    Record that a user tagged an item.

    Args:
        req: TagRequest with user, item and tag identifiers

    Returns:
        TagResponse; changed is False when the user had already applied
        this tag to this item
    """
    user, item, tag = _resources(req)
    changed = service.tag(user, item, tag)
    return _tag_response(user, item, tag, changed)


@app.post("/api/v1/untag", response_model=TagResponse)
async def untag_item(req: TagRequest):
    """
    Remove a user's tag from an item.

    Args:
        req: TagRequest with user, item and tag identifiers

    Returns:
        TagResponse; changed is False when there was nothing to remove
    """
    user, item, tag = _resources(req)
    changed = service.untag(user, item, tag)
    return _tag_response(user, item, tag, changed)


@app.post("/api/v1/query", response_model=QueryResponse)
async def query(req: QueryRequest):
    """
    Run a query.

    Args:
        req: QueryRequest; scope/via references without an id mean the
            kind itself (e.g. {"kind": "tag"} for the global tag ranking)

    Returns:
        QueryResponse with identifiers (and scores for tag rankings)
    """
    if isinstance(req.via, list):
        via = [_reference(ref) for ref in req.via]
    else:
        via = _reference(req.via)

    results = service.get(req.response_kind, QueryConditions(
        scope=_reference(req.scope),
        via=via,
        limit=req.limit,
        with_scores=req.with_scores,
        similar=req.similar,
    ))
    return _query_response(ResourceKind.parse(req.response_kind), results)


@app.get("/api/v1/tags", response_model=QueryResponse)
async def top_tags(limit: int = 0):
    """Global tag ranking, most used first."""
    results = service.get_all(ResourceKind.TAG, limit=limit)
    return _query_response(ResourceKind.TAG, results)


@app.get("/api/v1/users/{user_id}/tags", response_model=QueryResponse)
async def user_tags(user_id: str, limit: int = 0):
    """Tags a user applied, by number of items tagged."""
    user = service.resource(ResourceKind.USER, user_id)
    results = service.get_for(user, ResourceKind.TAG, limit=limit)
    return _query_response(ResourceKind.TAG, results)


@app.get("/api/v1/items/{item_id}/tags", response_model=QueryResponse)
async def item_tags(item_id: str, limit: int = 0):
    """Tags on an item, by number of users who applied them."""
    item = service.resource(ResourceKind.ITEM, item_id)
    results = service.get_for(item, ResourceKind.TAG, limit=limit)
    return _query_response(ResourceKind.TAG, results)


@app.get("/api/v1/items/{item_id}/similar", response_model=QueryResponse)
async def similar_items(item_id: str, limit: int = 0):
    """Items sharing this item's top 3 tags."""
    item = service.resource(ResourceKind.ITEM, item_id)
    results = service.get_for(item, ResourceKind.ITEM, similar=True, limit=limit)
    return _query_response(ResourceKind.ITEM, results)


@app.get("/health", response_model=HealthResponse)
async def health():
    """
    Health check endpoint.

    Returns:
        HealthResponse with Redis connectivity and consistency mode
    """
    connected = False
    if service:
        try:
            connected = bool(service.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")

    return HealthResponse(
        status="healthy" if connected else "degraded",
        redis_connected=connected,
        consistency=service.consistency.value if service else None,
    )


@app.get("/")
async def root():
    """
    Root endpoint with API information.

    Returns:
        API info and available endpoints
    """
    return {
        "name": "Tagging API",
        "version": "1.0.0",
        "endpoints": {
            "tag": "POST /api/v1/tag",
            "untag": "POST /api/v1/untag",
            "query": "POST /api/v1/query",
            "top_tags": "GET /api/v1/tags",
            "user_tags": "GET /api/v1/users/{user_id}/tags",
            "item_tags": "GET /api/v1/items/{item_id}/tags",
            "similar_items": "GET /api/v1/items/{item_id}/similar",
            "health": "GET /health",
        }
    }
