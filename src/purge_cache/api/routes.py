"""Purge-cache v1 endpoints."""
from __future__ import annotations

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from purge_cache.api.auth import authenticate, purge_scope, require_scope
from purge_cache.api.deps import get_config, get_service
from purge_cache.config import ClientCredentials, PurgeCacheConfig
from purge_cache.schema import validate_output
from purge_cache.service import DEFAULT_LIST_LIMIT, PurgeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/purge-cache/v1", tags=["purge-cache"])

IDENTIFIER = r"^[a-zA-Z0-9_-]{1,38}$"


class PurgeCacheRequest(BaseModel):
    """Body of a purge request."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    cache_name: str = Field(alias="cacheName", min_length=1, max_length=255)


def _reply(config: PurgeCacheConfig, schema: str, payload: dict) -> dict:
    if config.validate_output:
        validate_output(schema, payload)
    return payload


@router.post("/purge-cache/{provisionerId}/{workerType}", status_code=204)
async def purge_cache(
    body: PurgeCacheRequest,
    provisionerId: str = Path(pattern=IDENTIFIER),
    workerType: str = Path(pattern=IDENTIFIER),
    client: ClientCredentials = Depends(authenticate),
    service: PurgeService = Depends(get_service),
):
    """Publish a purge-cache message for caches named `cacheName`.

    Workers listening for the message purge right away; the others find the
    request the next time they poll.
    """
    require_scope(client, purge_scope(provisionerId, workerType, body.cache_name))
    await service.submit_purge(provisionerId, workerType, body.cache_name)
    return Response(status_code=204)


@router.get("/purge-cache/list")
async def all_purge_requests(
    continuation_token: str | None = Query(default=None, alias="continuationToken", min_length=1),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1),
    service: PurgeService = Depends(get_service),
    config: PurgeCacheConfig = Depends(get_config),
):
    """All open purge requests. Meant for administrators, not for workers."""
    records, token = await service.list_all_purges(continuation_token, limit)
    return _reply(config, "all-purge-cache-request-list", {
        "continuationToken": token or "",
        "requests": [r.to_json() for r in records],
    })


@router.get("/purge-cache/{provisionerId}/{workerType}")
async def purge_requests(
    provisionerId: str = Path(pattern=IDENTIFIER),
    workerType: str = Path(pattern=IDENTIFIER),
    since: datetime | None = Query(default=None),
    service: PurgeService = Depends(get_service),
    config: PurgeCacheConfig = Depends(get_config),
):
    """Open purge requests for one provisionerId/workerType pair.

    Safe for workers to poll; replies may be served from a short-lived cache.
    """
    records, cache_hit = await service.list_purges(provisionerId, workerType, since)
    return _reply(config, "purge-cache-request-list", {
        "cacheHit": cache_hit,
        "requests": [r.to_json() for r in records],
    })


@router.get("/ping")
async def ping(request: Request, config: PurgeCacheConfig = Depends(get_config)):
    """Unauthenticated liveness check. Uptime counts from application startup."""
    return _reply(config, "ping", {
        "alive": True,
        "uptime": time.monotonic() - request.app.state.started_at,
    })
