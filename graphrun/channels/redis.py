"""Redis event channel for cross-process status viewers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis

from ..contracts import ExecutionEvent
from .base import EventChannel

logger = logging.getLogger(__name__)


class RedisEventChannel(EventChannel):
    """Redis-based channel; each topic is a list used as a queue.

    Each publish trims the list to the newest ``max_events`` entries and
    refreshes its expiry, so lists of executions nobody reads age out.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_events: int = 1000,
        event_ttl_seconds: int = 3600,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.max_events = max_events
        self.event_ttl_seconds = event_ttl_seconds
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, event: ExecutionEvent) -> None:
        """Push event onto the topic's Redis list."""
        if not self._redis:
            await self.connect()
        queue_name = f"graphrun:{topic}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(queue_name, event.to_json())
            pipe.ltrim(queue_name, 0, self.max_events - 1)
            pipe.expire(queue_name, self.event_ttl_seconds)
            await pipe.execute()

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[ExecutionEvent]:
        """Pop events from the topic's Redis list."""
        if not self._redis:
            await self.connect()

        queue_name = f"graphrun:{topic}"
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if result:
                _, event_json = result
                try:
                    yield ExecutionEvent.model_validate(json.loads(event_json))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(f"Failed to parse event on {queue_name}: {e}")
                    continue

            await asyncio.sleep(0.01)
