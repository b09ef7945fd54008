"""In-memory event channel for testing and single-process viewers."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional

from ..contracts import ExecutionEvent
from .base import EventChannel


class InMemoryEventChannel(EventChannel):
    """In-process fan-out channel.

    Events are delivered to the subscribers listening when they are
    published and are otherwise dropped, so topics nobody watches hold no
    memory. A subscriber's topic entry is removed when it stops listening.

    With ``keep_history`` the last ``history_limit`` events of each topic are
    also kept in ``history`` so tests can inspect the sequence without
    subscribing.
    """

    def __init__(self, keep_history: bool = False, history_limit: int = 1000) -> None:
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self.keep_history = keep_history
        self.history: Dict[str, Deque[ExecutionEvent]] = defaultdict(
            lambda: deque(maxlen=history_limit)
        )

    async def publish(self, topic: str, event: ExecutionEvent) -> None:
        """Hand the event to every current subscriber of ``topic``."""
        if self.keep_history:
            self.history[topic].append(event)
        for queue in self._subscribers.get(topic, ()):
            queue.put_nowait(event)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[ExecutionEvent]:
        """Subscribe to events from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep listening. If None, runs indefinitely.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(topic, []).append(queue)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        try:
            while True:
                if deadline is None:
                    yield await queue.get()
                    continue
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break
                yield event
        finally:
            listeners = self._subscribers.get(topic, [])
            if queue in listeners:
                listeners.remove(queue)
            if not listeners:
                self._subscribers.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def active_topics(self) -> List[str]:
        return list(self._subscribers)
