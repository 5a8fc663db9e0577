"""In-process channel provider backed by asyncio queues.

Used by the local CLI and by tests. Subscribers attach with subscribe()
and receive every event sent after they attached; there is no replay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from smelt_processor.realtime.interface import ChannelProvider
from smelt_processor.utils.errors import BroadcastError

logger = logging.getLogger(__name__)


@dataclass
class ChannelEvent:
    topic: str
    event: str
    payload: dict[str, Any]


class InMemoryChannelProvider(ChannelProvider):
    """Fan events out to in-process subscriber queues.

    Every delivered event is also appended to ``history`` so callers can
    inspect what was sent without subscribing first.
    """

    def __init__(self) -> None:
        self.history: list[ChannelEvent] = []
        self._joined: set[str] = set()
        self._subscribers: dict[str, list[asyncio.Queue[ChannelEvent]]] = {}

    def subscribe(self, topic: str) -> asyncio.Queue[ChannelEvent]:
        """Return a queue receiving every subsequent event on the topic."""
        queue: asyncio.Queue[ChannelEvent] = asyncio.Queue()
        self._subscribers.setdefault(topic, []).append(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue[ChannelEvent]) -> None:
        queues = self._subscribers.get(topic, [])
        if queue in queues:
            queues.remove(queue)

    def is_joined(self, topic: str) -> bool:
        return topic in self._joined

    def events_for(self, topic: str) -> list[ChannelEvent]:
        return [e for e in self.history if e.topic == topic]

    async def join(self, topic: str) -> None:
        self._joined.add(topic)

    async def send(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        if topic not in self._joined:
            raise BroadcastError(f"Topic '{topic}' is not joined", topic=topic)
        message = ChannelEvent(topic=topic, event=event, payload=payload)
        self.history.append(message)
        for queue in self._subscribers.get(topic, []):
            queue.put_nowait(message)

    async def leave(self, topic: str) -> None:
        self._joined.discard(topic)
        logger.debug("Left topic %s", topic)
