"""Base event channel interface for execution events."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Optional

from ..contracts import ExecutionEvent


class EventChannel(metaclass=abc.ABCMeta):
    """Abstract publish channel for execution lifecycle events."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: ExecutionEvent) -> None:
        """Send an event to a topic."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[ExecutionEvent]:
        """Yield events published on ``topic``.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        raise NotImplementedError


def execution_topic(execution_id: str) -> str:
    """Topic on which the scheduler publishes events for one execution."""
    return f"execution:{execution_id}"
