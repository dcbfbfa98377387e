"""FastAPI application -- entry point for the purge-cache API."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from purge_cache.api import routes
from purge_cache.api.auth import ClientRegistry
from purge_cache.config import PurgeCacheConfig
from purge_cache.errors import (
    AuthorizationError,
    InvalidContinuationError,
    OutputValidationError,
    PublishError,
    StoreError,
)
from purge_cache.models import utcnow
from purge_cache.publisher import PurgePublisher, create_publisher
from purge_cache.reaper import ExpirationReaper
from purge_cache.service import PurgeService
from purge_cache.store import PurgeRecordStore

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "message": message, **extra})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _validation(request: Request, exc: RequestValidationError):
        return _error(400, "InputValidationError", "Request failed validation",
                      details=jsonable_encoder(exc.errors()))

    @app.exception_handler(InvalidContinuationError)
    async def _continuation(request: Request, exc: InvalidContinuationError):
        return _error(400, "InputValidationError", str(exc))

    @app.exception_handler(AuthorizationError)
    async def _authorization(request: Request, exc: AuthorizationError):
        return _error(exc.status_code, exc.code, str(exc))

    @app.exception_handler(StoreError)
    @app.exception_handler(PublishError)
    @app.exception_handler(OutputValidationError)
    async def _internal(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} failed", exc_info=exc)
        return _error(500, "InternalServerError", "Internal error, the request did not complete")


def create_app(
    config: PurgeCacheConfig | None = None,
    store: PurgeRecordStore | None = None,
    publisher: PurgePublisher | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    config = config or PurgeCacheConfig()
    store = store or PurgeRecordStore(
        config.database_url,
        clock=clock,
        max_modify_attempts=config.max_modify_attempts,
    )
    publisher = publisher or create_publisher(config.publisher, config.exchange_prefix, config.redis_url)
    service = PurgeService(
        store=store,
        publisher=publisher,
        retention=config.retention_delta,
        cache_time=config.cache_time,
        clock=clock,
    )
    reaper = ExpirationReaper(
        store,
        interval_seconds=config.reap_interval_seconds,
        delay=config.expiration_delay_delta,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.init()
        reaper.start()
        app.state.started_at = time.monotonic()
        logger.info(f"purge-cache started ({config.env}), store {store.database_url}")
        try:
            yield
        finally:
            reaper.shutdown()
            await publisher.close()
            await store.close()

    app = FastAPI(
        title="Purge Cache API",
        version="1.0.0",
        description=(
            "Publishes purge-cache messages for workers and keeps a durable list "
            "of open purge requests that workers can poll."
        ),
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.started_at = time.monotonic()
    app.state.service = service
    app.state.reaper = reaper
    app.state.clients = ClientRegistry(config.clients)

    register_error_handlers(app)
    app.include_router(routes.router)
    return app
