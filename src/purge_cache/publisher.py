"""Purge announcements for workers that listen instead of polling.

The message envelope is built here; delivery is delegated to a backend.
InMemoryPublisher is used in tests and development. Production uses a Redis
stream per exchange.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from purge_cache.errors import PublishError
from purge_cache.models import to_json_time, utcnow

logger = logging.getLogger(__name__)

EXCHANGE_ROOT = "exchange/taskcluster-purge-cache/"


@dataclass
class PurgeMessage:
    exchange: str
    routing_key: str
    payload: dict
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    time: str = field(default_factory=lambda: to_json_time(utcnow()))

    def to_fields(self) -> dict[str, str]:
        return {
            "id": self.id,
            "time": self.time,
            "exchange": self.exchange,
            "routingKey": self.routing_key,
            "payload": json.dumps(self.payload),
        }


def build_purge_message(
    provisioner_id: str,
    worker_type: str,
    cache_name: str,
    exchange_prefix: str = "v1/",
) -> PurgeMessage:
    return PurgeMessage(
        exchange=f"{EXCHANGE_ROOT}{exchange_prefix}purge-cache",
        routing_key=f"primary.{provisioner_id}.{worker_type}",
        payload={
            "provisionerId": provisioner_id,
            "workerType": worker_type,
            "cacheName": cache_name,
        },
    )


MessageHandler = Callable[[PurgeMessage], Awaitable[None]]


class PurgePublisher:
    """Abstract publisher interface."""

    def __init__(self, exchange_prefix: str = "v1/") -> None:
        self.exchange_prefix = exchange_prefix

    async def purge_cache(self, provisioner_id: str, worker_type: str, cache_name: str) -> PurgeMessage:
        message = build_purge_message(provisioner_id, worker_type, cache_name, self.exchange_prefix)
        await self.send(message)
        logger.debug(f"Published purge for {message.routing_key} cache {cache_name}")
        return message

    async def send(self, message: PurgeMessage) -> None: ...

    async def close(self) -> None:
        pass


class InMemoryPublisher(PurgePublisher):
    def __init__(self, exchange_prefix: str = "v1/") -> None:
        super().__init__(exchange_prefix)
        self.messages: list[PurgeMessage] = []
        self._handlers: list[MessageHandler] = []

    def subscribe(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    async def send(self, message: PurgeMessage) -> None:
        self.messages.append(message)
        for handler in self._handlers:
            try:
                await handler(message)
            except Exception as e:
                raise PublishError(f"Subscriber failed for {message.id}: {e}") from e


class RedisStreamPublisher(PurgePublisher):
    """Appends each message to a Redis stream named after its exchange."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/2",
        exchange_prefix: str = "v1/",
        max_len: int = 10000,
    ) -> None:
        super().__init__(exchange_prefix)
        self.url = url
        self.max_len = max_len
        self._client: aioredis.Redis | None = None

    async def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        return self._client

    async def send(self, message: PurgeMessage) -> None:
        client = await self._get_client()
        try:
            await client.xadd(message.exchange, message.to_fields(), maxlen=self.max_len, approximate=True)
        except RedisError as e:
            raise PublishError(f"Failed to publish to {message.exchange}: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_publisher(kind: str, exchange_prefix: str = "v1/", redis_url: str | None = None) -> PurgePublisher:
    if kind == "redis":
        return RedisStreamPublisher(url=redis_url or "redis://localhost:6379/2", exchange_prefix=exchange_prefix)
    return InMemoryPublisher(exchange_prefix=exchange_prefix)
