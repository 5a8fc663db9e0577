"""Tests for the per-job progress broadcaster and channel providers."""

import asyncio
import json
import logging
from typing import Any

import httpx
import pytest

from smelt_processor.models import FileProgress, FileStage, JobResult, JobStage
from smelt_processor.realtime.broadcaster import JobChannel, ProgressBroadcaster
from smelt_processor.realtime.interface import ChannelProvider, channel_topic
from smelt_processor.realtime.memory import InMemoryChannelProvider
from smelt_processor.realtime.registry import get_channel_provider
from smelt_processor.realtime.supabase import SupabaseRealtimeProvider
from smelt_processor.utils.errors import BroadcastError, ChannelSetupError, StorageError


class _FlakyProvider(ChannelProvider):
    """Provider whose join and send can be told to misbehave."""

    def __init__(
        self,
        join_delay: float = 0.0,
        fail_join: bool = False,
        join_error: Exception | None = None,
    ) -> None:
        self.join_delay = join_delay
        self.fail_join = fail_join
        self.join_error = join_error
        self.fail_sends = False
        self.sent: list[tuple[str, str]] = []
        self.left: list[str] = []

    async def join(self, topic: str) -> None:
        if self.join_delay:
            await asyncio.sleep(self.join_delay)
        if self.fail_join:
            raise BroadcastError("rejected", topic=topic)
        if self.join_error is not None:
            raise self.join_error

    async def send(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        if self.fail_sends:
            raise BroadcastError("socket closed", topic=topic)
        self.sent.append((topic, event))

    async def leave(self, topic: str) -> None:
        self.left.append(topic)


def test_channel_topic() -> None:
    assert channel_topic("abc") == "job:abc"


class TestJobChannelPayloads:
    """Wire shapes of the three event kinds."""

    async def test_progress_payload(self) -> None:
        provider = InMemoryChannelProvider()
        queue = provider.subscribe("job:j1")

        async with ProgressBroadcaster(provider).open("j1") as channel:
            await channel.publish_progress(
                JobStage.DECODING,
                15,
                "Decoding audio...",
                [FileProgress(id="f1", status=FileStage.PROCESSING, progress=50)],
            )

        event = queue.get_nowait()
        assert event.event == "progress"
        assert event.payload == {
            "job_id": "j1",
            "status": "decoding",
            "progress": {"percentage": 15, "stage": "decoding", "message": "Decoding audio..."},
            "files": [{"id": "f1", "status": "processing", "progress": 50}],
        }

    async def test_completed_payload(self) -> None:
        provider = InMemoryChannelProvider()

        async with ProgressBroadcaster(provider).open("j1") as channel:
            await channel.publish_completed(
                [JobResult(file_id="f1", filename="a.mp3", content="# Notes")]
            )

        (event,) = provider.events_for("job:j1")
        assert event.event == "completed"
        assert event.payload == {
            "job_id": "j1",
            "status": "completed",
            "results": [{"file_id": "f1", "filename": "a.mp3", "content": "# Notes"}],
        }

    async def test_failed_payload(self) -> None:
        provider = InMemoryChannelProvider()

        async with ProgressBroadcaster(provider).open("j1") as channel:
            await channel.publish_failed("file_too_large", "FILE TOO LARGE")

        (event,) = provider.events_for("job:j1")
        assert event.event == "failed"
        assert event.payload == {
            "job_id": "j1",
            "status": "failed",
            "error_code": "file_too_large",
            "error_message": "FILE TOO LARGE",
        }

    async def test_payload_is_json_serializable(self) -> None:
        provider = InMemoryChannelProvider()
        async with ProgressBroadcaster(provider).open("j1") as channel:
            await channel.publish_progress(JobStage.VALIDATING, 5, "Validating files...", [])
        json.dumps(provider.history[0].payload)


class TestChannelLifecycle:
    """Channel opening, release and failure handling."""

    async def test_channel_released_on_normal_exit(self) -> None:
        provider = InMemoryChannelProvider()
        async with ProgressBroadcaster(provider).open("j1") as channel:
            assert provider.is_joined("job:j1")
        assert channel.closed
        assert not provider.is_joined("job:j1")

    async def test_channel_released_on_exception(self) -> None:
        provider = _FlakyProvider()
        with pytest.raises(RuntimeError):
            async with ProgressBroadcaster(provider).open("j1"):
                raise RuntimeError("stage blew up")
        assert provider.left == ["job:j1"]

    async def test_close_is_idempotent(self) -> None:
        provider = _FlakyProvider()
        channel = JobChannel(provider, "j1")
        await channel.close()
        await channel.close()
        assert provider.left == ["job:j1"]

    async def test_join_timeout_raises_setup_error(self) -> None:
        provider = _FlakyProvider(join_delay=1.0)
        broadcaster = ProgressBroadcaster(provider, subscribe_timeout=0.01)

        with pytest.raises(ChannelSetupError, match="timed out"):
            async with broadcaster.open("j1"):
                pass

        assert provider.left == []

    async def test_join_rejection_raises_setup_error(self) -> None:
        provider = _FlakyProvider(fail_join=True)

        with pytest.raises(ChannelSetupError, match="rejected"):
            async with ProgressBroadcaster(provider).open("j1"):
                pass

    async def test_unexpected_join_error_raises_setup_error(self) -> None:
        cause = httpx.ConnectError("connection refused")
        provider = _FlakyProvider(join_error=cause)

        with pytest.raises(ChannelSetupError, match="ConnectError") as exc_info:
            async with ProgressBroadcaster(provider).open("j1"):
                pass

        assert exc_info.value.__cause__ is cause
        assert provider.left == []

    async def test_send_failure_is_logged_not_raised(self, caplog) -> None:
        provider = _FlakyProvider()
        async with ProgressBroadcaster(provider).open("j1") as channel:
            provider.fail_sends = True
            with caplog.at_level(logging.WARNING):
                await channel.publish_failed("internal_error", "oops")
            assert channel.sent_count == 0

        assert any("Failed to publish" in r.message for r in caplog.records)

    async def test_send_after_close_dropped(self) -> None:
        provider = _FlakyProvider()
        async with ProgressBroadcaster(provider).open("j1") as channel:
            pass
        await channel.publish_completed([])
        assert provider.sent == []

    async def test_events_arrive_in_send_order(self) -> None:
        provider = InMemoryChannelProvider()
        queue = provider.subscribe("job:j1")

        async with ProgressBroadcaster(provider).open("j1") as channel:
            for pct in (2, 5, 10):
                await channel.publish_progress(JobStage.VALIDATING, pct, "x", [])
            await channel.publish_completed([])

        received = [queue.get_nowait() for _ in range(4)]
        assert [e.event for e in received] == ["progress"] * 3 + ["completed"]
        assert [e.payload["progress"]["percentage"] for e in received[:3]] == [2, 5, 10]


class TestInMemoryChannelProvider:
    async def test_send_requires_join(self) -> None:
        provider = InMemoryChannelProvider()
        with pytest.raises(BroadcastError, match="not joined"):
            await provider.send("job:x", "progress", {})

    async def test_unsubscribed_queue_stops_receiving(self) -> None:
        provider = InMemoryChannelProvider()
        queue = provider.subscribe("job:x")
        provider.unsubscribe("job:x", queue)
        await provider.join("job:x")
        await provider.send("job:x", "progress", {})
        assert queue.empty()
        assert len(provider.history) == 1

    async def test_topics_are_isolated(self) -> None:
        provider = InMemoryChannelProvider()
        other = provider.subscribe("job:b")
        await provider.join("job:a")
        await provider.send("job:a", "progress", {})
        assert other.empty()
        assert provider.events_for("job:b") == []


class TestSupabaseRealtimeProvider:
    """REST broadcast provider, exercised with httpx_mock."""

    @pytest.fixture
    def provider(self):
        return SupabaseRealtimeProvider(
            supabase_url="https://proj.supabase.co/", service_role_key="service-key"
        )

    async def test_send_posts_broadcast_message(self, provider, httpx_mock) -> None:
        httpx_mock.add_response(
            method="POST",
            url="https://proj.supabase.co/realtime/v1/api/broadcast",
            status_code=202,
        )

        await provider.join("job:j1")
        await provider.send("job:j1", "progress", {"job_id": "j1"})
        await provider.close()

        request = httpx_mock.get_request()
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert json.loads(request.content) == {
            "messages": [
                {
                    "topic": "job:j1",
                    "event": "progress",
                    "payload": {"job_id": "j1"},
                    "private": False,
                }
            ]
        }

    async def test_http_error_raises_broadcast_error(self, provider, httpx_mock) -> None:
        httpx_mock.add_response(status_code=500)

        with pytest.raises(BroadcastError, match="HTTP 500") as exc_info:
            await provider.send("job:j1", "failed", {})

        assert exc_info.value.topic == "job:j1"
        await provider.close()

    async def test_transport_error_raises_broadcast_error(self, provider, httpx_mock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(BroadcastError):
            await provider.send("job:j1", "progress", {})
        await provider.close()

    def test_requires_configuration(self, monkeypatch) -> None:
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
        with pytest.raises(StorageError, match="SUPABASE_URL is required"):
            SupabaseRealtimeProvider()

    def test_reads_env(self, monkeypatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "k")
        provider = SupabaseRealtimeProvider()
        assert provider.broadcast_url == "https://env.supabase.co/realtime/v1/api/broadcast"


class TestChannelRegistry:
    def test_memory_provider(self) -> None:
        assert isinstance(get_channel_provider("memory"), InMemoryChannelProvider)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ChannelSetupError, match="Unknown channel provider"):
            get_channel_provider("carrier-pigeon")
