"""Abstract channel provider interface for broadcasting job events.

Concrete implementations (in-memory, Supabase Realtime) subclass
ChannelProvider. Delivery is best-effort: a provider that cannot deliver
raises BroadcastError and the caller decides what to do with it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


def channel_topic(job_id: str) -> str:
    """Return the broadcast topic for a job."""
    return f"job:{job_id}"


class ChannelProvider(ABC):
    """Abstract base class for publish-only realtime channel backends."""

    @abstractmethod
    async def join(self, topic: str) -> None:
        """Make the topic ready for sending.

        Raises:
            BroadcastError: If the provider rejects the subscription.
        """

    @abstractmethod
    async def send(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event on the topic.

        Raises:
            BroadcastError: If the event could not be delivered.
        """

    @abstractmethod
    async def leave(self, topic: str) -> None:
        """Release any resources held for the topic."""

    async def close(self) -> None:
        """Release the provider's own resources. No-op by default."""
