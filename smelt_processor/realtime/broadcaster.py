"""Per-job progress broadcaster.

ProgressBroadcaster.open(job_id) joins the job's topic and yields a
JobChannel for the lifetime of one run. Events are best-effort and
at-most-once: a failed send is logged and the job carries on. Failing to
open the channel is fatal for the job.

Wire contract on ``job:<id>``:
    progress  {job_id, status, progress{percentage, stage, message}, files[]}
    completed {job_id, status, results[]}
    failed    {job_id, status, error_code, error_message}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from smelt_processor.models import FileProgress, JobResult, JobStage
from smelt_processor.realtime.interface import ChannelProvider, channel_topic
from smelt_processor.utils.errors import BroadcastError, ChannelSetupError

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIBE_TIMEOUT_SECONDS = 10.0


class JobChannel:
    """An open channel for one job. Obtain via ProgressBroadcaster.open()."""

    def __init__(self, provider: ChannelProvider, job_id: str) -> None:
        self.provider = provider
        self.job_id = job_id
        self.topic = channel_topic(job_id)
        self.sent_count = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _send(self, event: str, payload: dict[str, Any]) -> None:
        if self._closed:
            logger.warning(
                "Dropping '%s' event on closed channel %s",
                event,
                self.topic,
                extra={"job_id": self.job_id},
            )
            return
        try:
            await self.provider.send(self.topic, event, payload)
            self.sent_count += 1
        except BroadcastError as exc:
            logger.warning(
                "Failed to publish '%s' event: %s",
                event,
                exc,
                extra={"job_id": self.job_id, "error": str(exc)},
            )

    async def publish_progress(
        self,
        stage: JobStage,
        percentage: int,
        message: str,
        files: Sequence[FileProgress],
    ) -> None:
        await self._send(
            "progress",
            {
                "job_id": self.job_id,
                "status": stage.value,
                "progress": {
                    "percentage": percentage,
                    "stage": stage.value,
                    "message": message,
                },
                "files": [f.to_payload() for f in files],
            },
        )

    async def publish_completed(self, results: Sequence[JobResult]) -> None:
        await self._send(
            "completed",
            {
                "job_id": self.job_id,
                "status": JobStage.COMPLETED.value,
                "results": [r.to_payload() for r in results],
            },
        )

    async def publish_failed(self, error_code: str, error_message: str) -> None:
        await self._send(
            "failed",
            {
                "job_id": self.job_id,
                "status": JobStage.FAILED.value,
                "error_code": error_code,
                "error_message": error_message,
            },
        )

    async def close(self) -> None:
        """Leave the topic. Safe to call more than once; errors are logged."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.provider.leave(self.topic)
        except Exception as exc:
            logger.warning(
                "Failed to release channel %s: %s",
                self.topic,
                exc,
                extra={"job_id": self.job_id, "error": str(exc)},
            )


class ProgressBroadcaster:
    """Opens scoped per-job channels on a channel provider.

    Args:
        provider: Backend that delivers events.
        subscribe_timeout: Bound on the join in seconds.
    """

    def __init__(
        self,
        provider: ChannelProvider,
        subscribe_timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT_SECONDS,
    ) -> None:
        self.provider = provider
        self.subscribe_timeout = subscribe_timeout

    @asynccontextmanager
    async def open(self, job_id: str) -> AsyncIterator[JobChannel]:
        """Join the job's topic and yield its channel.

        The channel is closed exactly once when the block exits, whether
        it exits normally or by exception.

        Raises:
            ChannelSetupError: If the join fails or times out.
        """
        topic = channel_topic(job_id)
        try:
            await asyncio.wait_for(
                self.provider.join(topic), timeout=self.subscribe_timeout
            )
        except TimeoutError as exc:
            raise ChannelSetupError(
                f"Channel subscription timed out after {self.subscribe_timeout}s",
                job_id=job_id,
            ) from exc
        except BroadcastError as exc:
            raise ChannelSetupError(
                f"Channel subscription failed: {exc.message}", job_id=job_id
            ) from exc
        except Exception as exc:
            raise ChannelSetupError(
                f"Channel subscription failed: {type(exc).__name__}: {exc}", job_id=job_id
            ) from exc

        channel = JobChannel(self.provider, job_id)
        try:
            yield channel
        finally:
            await channel.close()
