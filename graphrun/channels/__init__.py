"""Event channel factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import GraphrunConfig, load_config
from .base import EventChannel, execution_topic
from .inmemory import InMemoryEventChannel


def get_channel(
    backend: Optional[str] = None, config: Optional[GraphrunConfig] = None
) -> EventChannel:
    """Factory function to get the configured event channel."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("GRAPHRUN_EVENTS")
        or config.events.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryEventChannel()
    elif backend == "redis":
        from .redis import RedisEventChannel

        redis_conf = config.events.redis
        return RedisEventChannel(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            max_events=redis_conf.max_events,
            event_ttl_seconds=redis_conf.event_ttl_seconds,
        )
    else:
        raise ValueError(f"Unsupported event backend: {backend}")


__all__ = ["EventChannel", "InMemoryEventChannel", "execution_topic", "get_channel"]
