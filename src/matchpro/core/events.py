from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any


class EventBus:
    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, event: dict[str, Any]) -> None:
        async with self._lock:
            for queue in list(self._queues.get(channel, [])):
                await queue.put(event)

    async def register(self, channel: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        async with self._lock:
            self._queues[channel].append(queue)
        return queue

    async def unregister(self, channel: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        async with self._lock:
            if queue in self._queues.get(channel, []):
                self._queues[channel].remove(queue)
            if not self._queues.get(channel):
                self._queues.pop(channel, None)

    async def subscribe(self, channel: str) -> AsyncIterator[dict[str, Any]]:
        queue = await self.register(channel)
        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            await self.unregister(channel, queue)
