from __future__ import annotations

import asyncio
import threading
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

_Subscriber = tuple[asyncio.AbstractEventLoop, "asyncio.Queue[dict[str, Any]]"]


class EventBus:
    """Fan-out of per-unit events to asyncio subscribers.

    ``publish`` is synchronous and safe to call from worker threads; events are
    handed to each subscriber's own loop.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[_Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish(self, unit_id: str, event: dict[str, Any]) -> int:
        with self._lock:
            targets = list(self._subscribers.get(unit_id, []))

        delivered = 0
        for loop, queue in targets:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(queue.put_nowait, event)
            delivered += 1
        return delivered

    def subscriber_count(self, unit_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(unit_id, []))

    async def subscribe(self, unit_id: str) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        subscriber = (asyncio.get_running_loop(), queue)
        with self._lock:
            self._subscribers[unit_id].append(subscriber)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            with self._lock:
                if subscriber in self._subscribers.get(unit_id, []):
                    self._subscribers[unit_id].remove(subscriber)
                if not self._subscribers.get(unit_id):
                    self._subscribers.pop(unit_id, None)
