"""Shared dependencies -- objects the app keeps on `app.state`."""
from __future__ import annotations

from fastapi import Request

from purge_cache.config import PurgeCacheConfig
from purge_cache.service import PurgeService


def get_service(request: Request) -> PurgeService:
    return request.app.state.service


def get_config(request: Request) -> PurgeCacheConfig:
    return request.app.state.config
