"""Supabase Realtime channel provider.

Publishes broadcast messages through the Realtime REST endpoint, so no
websocket is held open while a job runs. Subscribers listen on the same
topic with any Supabase Realtime client.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from smelt_processor.realtime.interface import ChannelProvider
from smelt_processor.utils.errors import BroadcastError, StorageError

logger = logging.getLogger(__name__)


class SupabaseRealtimeProvider(ChannelProvider):
    """Broadcast job events via Supabase Realtime.

    Reads configuration from environment variables:
        SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY
    """

    def __init__(
        self,
        supabase_url: str | None = None,
        service_role_key: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.supabase_url = (
            supabase_url or os.environ.get("SUPABASE_URL", "")
        ).rstrip("/")
        self.service_role_key = service_role_key or os.environ.get(
            "SUPABASE_SERVICE_ROLE_KEY", ""
        )

        if not self.supabase_url:
            raise StorageError("SUPABASE_URL is required", operation="init")
        if not self.service_role_key:
            raise StorageError(
                "SUPABASE_SERVICE_ROLE_KEY is required", operation="init"
            )

        self._client = httpx.AsyncClient(timeout=timeout)
        self._joined: set[str] = set()

    @property
    def broadcast_url(self) -> str:
        return f"{self.supabase_url}/realtime/v1/api/broadcast"

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def join(self, topic: str) -> None:
        # The REST endpoint needs no subscription handshake.
        self._joined.add(topic)

    async def send(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        """POST one broadcast message.

        Raises:
            BroadcastError: If the Realtime API call fails.
        """
        body = {
            "messages": [
                {"topic": topic, "event": event, "payload": payload, "private": False}
            ]
        }
        try:
            response = await self._client.post(
                self.broadcast_url, headers=self._headers(), json=body
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BroadcastError(
                f"Broadcast of '{event}' on '{topic}' failed: "
                f"HTTP {exc.response.status_code}",
                topic=topic,
            ) from exc
        except httpx.RequestError as exc:
            raise BroadcastError(
                f"Broadcast of '{event}' on '{topic}' failed: {exc}",
                topic=topic,
            ) from exc

    async def leave(self, topic: str) -> None:
        self._joined.discard(topic)
