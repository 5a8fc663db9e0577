"""Job orchestrator: validate -> decode -> transcribe -> synthesize.

JobOrchestrator.run() drives one job through the fixed stage sequence,
persisting each transition, publishing progress on the job's channel and
finishing with exactly one completed or failed event. Any error that
escapes a stage is classified and ends the job; there is no retry at this
level (the LLM client retries its own calls).

Progress bands per stage:
    validating 0-10, decoding 10-20, transcribing 20-70, synthesizing 70-100
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TextIO, TypeVar

from smelt_processor.audio.transcode import transcode
from smelt_processor.audio.validation import AudioFormat, AudioMetadata, validate
from smelt_processor.llm.interface import CompletionOptions, LLMClient
from smelt_processor.models import (
    COMBINED_FILE_ID,
    FileProgress,
    FileStage,
    Job,
    JobFile,
    JobMode,
    JobResult,
    JobStage,
    ProgressEvent,
    can_transition,
)
from smelt_processor.observability.metrics import JobMetrics, StageTimer, log_job_metrics
from smelt_processor.prompts.loader import PromptLoader
from smelt_processor.realtime.broadcaster import JobChannel, ProgressBroadcaster
from smelt_processor.storage.interface import JobStore
from smelt_processor.synthesis import combine_transcripts, synthesize_with_prompts
from smelt_processor.transcription import (
    TranscriptionResult,
    process_text_input,
    transcribe_audio,
)
from smelt_processor.utils.classify import classify_error
from smelt_processor.utils.errors import (
    ChannelSetupError,
    CorruptedFileError,
    ErrorKind,
    PipelineError,
    StorageError,
)
from smelt_processor.utils.optimistic import apply_optimistic

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_BANDS: dict[JobStage, tuple[int, int]] = {
    JobStage.VALIDATING: (0, 10),
    JobStage.DECODING: (10, 20),
    JobStage.TRANSCRIBING: (20, 70),
    JobStage.SYNTHESIZING: (70, 100),
}

# Codes that describe a single file rather than the job as a whole.
FILE_ERROR_KINDS = frozenset(
    {
        ErrorKind.INVALID_FORMAT,
        ErrorKind.FILE_TOO_LARGE,
        ErrorKind.CORRUPTED_FILE,
        ErrorKind.DURATION_EXCEEDED,
        ErrorKind.DECODING_FAILED,
        ErrorKind.TRANSCRIPTION_FAILED,
    }
)

DEFAULT_SUBSCRIBER_GRACE_SECONDS = 0.5


def band_percentage(stage: JobStage, fraction: float) -> int:
    """Map a fraction of a stage's work to an overall percentage."""
    start, end = STAGE_BANDS[stage]
    fraction = min(max(fraction, 0.0), 1.0)
    return start + math.floor(fraction * (end - start))


@dataclass
class _DecodedInput:
    job_file: JobFile
    audio: bytes | None = None
    mime_type: str = ""
    text: str | None = None


@dataclass
class _JobRun:
    """Mutable state of one run."""

    job: Job
    channel: JobChannel
    metrics: JobMetrics
    percentage: int = 0
    formats: dict[str, AudioFormat] = field(default_factory=dict)
    options: CompletionOptions = field(default_factory=CompletionOptions)

    async def report(self, stage: JobStage, fraction: float, message: str) -> ProgressEvent:
        # Never let the bar move backwards.
        self.percentage = max(self.percentage, band_percentage(stage, fraction))
        event = ProgressEvent(
            stage=stage,
            percentage=self.percentage,
            message=message,
            files=[FileProgress.from_file(f) for f in self.job.files],
        )
        await self.channel.publish_progress(
            event.stage, event.percentage, event.message, event.files
        )
        return event


class _FileSliceSink:
    """Maps one file's local progress into its slice of the transcribing band."""

    def __init__(self, run: _JobRun, index: int, total: int) -> None:
        self._run = run
        self._index = index
        self._total = total

    async def accept(self, fraction: float) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        overall = (self._index + fraction) / self._total
        await self._run.report(JobStage.TRANSCRIBING, overall, "Transcribing audio...")


class JobOrchestrator:
    """Runs jobs through the processing pipeline.

    Args:
        store: Durable store for job state, content and results.
        broadcaster: Opens the per-job progress channel.
        llm_client: Client used for transcription and synthesis.
        prompt_loader: Resolves prompt bodies (defaults to one over ``store``).
        subscriber_grace_seconds: Pause after opening the channel so
            observers can attach before the first event.
        step_delay_seconds: Pause between files and stages.
        metrics_stream: Where the per-job metrics line goes (default stdout).
    """

    def __init__(
        self,
        store: JobStore,
        broadcaster: ProgressBroadcaster,
        llm_client: LLMClient,
        prompt_loader: PromptLoader | None = None,
        subscriber_grace_seconds: float = DEFAULT_SUBSCRIBER_GRACE_SECONDS,
        step_delay_seconds: float = 0.0,
        metrics_stream: TextIO | None = None,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.llm_client = llm_client
        self.prompt_loader = prompt_loader or PromptLoader(store)
        self.subscriber_grace_seconds = subscriber_grace_seconds
        self.step_delay_seconds = step_delay_seconds
        self.metrics_stream = metrics_stream

    async def run(self, job: Job) -> None:
        """Process one job to a terminal stage.

        Never raises for pipeline failures: they are persisted on the job
        and published as a ``failed`` event.
        """
        if job.stage.is_terminal:
            logger.warning(
                "Job already %s, skipping", job.stage.value, extra={"job_id": job.id}
            )
            return

        wall_start = time.monotonic()
        metrics = JobMetrics(job_id=job.id, user_id=job.user_id, mode=job.mode.value)
        logger.info("Starting job", extra={"job_id": job.id})

        try:
            async with self.broadcaster.open(job.id) as channel:
                await self._execute(_JobRun(job=job, channel=channel, metrics=metrics))
        except ChannelSetupError as exc:
            classified = classify_error(exc)
            logger.error(
                "Could not open progress channel: %s",
                exc,
                exc_info=True,
                extra={"job_id": job.id, "error_code": classified.code},
            )
            metrics.status = JobStage.FAILED.value
            metrics.error_stage = job.stage.value
            metrics.error_code = classified.code
            await self._best_effort(
                job,
                "update_job_stage",
                lambda: self.store.update_job_stage(
                    job.id, JobStage.FAILED, classified.code, classified.message
                ),
            )
            job.stage = JobStage.FAILED
        finally:
            metrics.processing_wall_time_seconds = round(time.monotonic() - wall_start, 3)
            log_job_metrics(metrics, self.metrics_stream)

    async def _execute(self, run: _JobRun) -> None:
        job = run.job
        try:
            if self.subscriber_grace_seconds > 0:
                await asyncio.sleep(self.subscriber_grace_seconds)

            if not job.files:
                job.files = await self.store.list_files(job.id)
            if not job.files:
                raise CorruptedFileError("NO FILES TO PROCESS", job_id=job.id)
            run.metrics.file_count = len(job.files)

            with StageTimer(JobStage.VALIDATING.value, run.metrics.stage_durations):
                await self._validate(run)
            with StageTimer(JobStage.DECODING.value, run.metrics.stage_durations):
                decoded = await self._decode(run)
            with StageTimer(JobStage.TRANSCRIBING.value, run.metrics.stage_durations):
                transcripts = await self._transcribe(run, decoded)
            with StageTimer(JobStage.SYNTHESIZING.value, run.metrics.stage_durations):
                results = await self._synthesize(run, transcripts)

            await self.store.store_results(job.id, results)
            for job_file in job.files:
                await self._set_file_stage(run, job_file, FileStage.COMPLETED)
            await self._transition(run, JobStage.COMPLETED)
            await run.channel.publish_completed(results)

            run.metrics.status = JobStage.COMPLETED.value
            logger.info(
                "Job completed with %d results",
                len(results),
                extra={"job_id": job.id},
            )
        except Exception as exc:
            await self._fail(run, exc)

    # -- stages --

    async def _validate(self, run: _JobRun) -> None:
        await self._transition(run, JobStage.VALIDATING)
        for job_file in run.job.files:
            await self._set_file_stage(run, job_file, FileStage.PROCESSING)
        await run.report(JobStage.VALIDATING, 0.5, "Validating files...")

        for job_file in run.job.files:
            if not job_file.is_audio:
                continue
            metadata = AudioMetadata(
                filename=job_file.filename,
                mime_type=job_file.mime_type,
                size_bytes=job_file.size_bytes,
            )
            run.formats[job_file.id] = await self._for_file(
                run, job_file, lambda: _as_awaitable(validate, metadata)
            )

        await run.report(JobStage.VALIDATING, 1.0, "Files validated")

    async def _decode(self, run: _JobRun) -> list[_DecodedInput]:
        await self._step_delay()
        await self._transition(run, JobStage.DECODING)
        await run.report(JobStage.DECODING, 0.5, "Decoding audio...")

        decoded: list[_DecodedInput] = []
        for job_file in run.job.files:
            data = await self.store.fetch_file_content(job_file)
            if not job_file.is_audio:
                text = await self._for_file(
                    run, job_file, lambda: _as_awaitable(_decode_text, job_file, data)
                )
                decoded.append(_DecodedInput(job_file=job_file, text=text))
                continue

            source_format = run.formats[job_file.id].format
            result = await self._for_file(
                run, job_file, lambda: asyncio.to_thread(transcode, data, source_format)
            )
            await self._persist_file(
                run,
                job_file,
                lambda f: setattr(f, "duration_seconds", result.duration_seconds),
                duration_seconds=result.duration_seconds,
            )
            run.metrics.audio_duration_seconds += result.duration_seconds
            decoded.append(
                _DecodedInput(
                    job_file=job_file, audio=result.data, mime_type=result.mime_type
                )
            )

        await run.report(JobStage.DECODING, 1.0, "Audio decoded")
        return decoded

    async def _transcribe(
        self, run: _JobRun, decoded: list[_DecodedInput]
    ) -> list[tuple[JobFile, str]]:
        await self._step_delay()
        await self._transition(run, JobStage.TRANSCRIBING)
        run.options = await self._completion_options(run.job)
        await run.report(JobStage.TRANSCRIBING, 0.0, "Transcribing audio...")

        transcripts: list[tuple[JobFile, str]] = []
        for index, item in enumerate(decoded):
            sink = _FileSliceSink(run, index, len(decoded))
            if item.audio is not None:
                audio, mime_type = item.audio, item.mime_type
                result: TranscriptionResult = await self._for_file(
                    run,
                    item.job_file,
                    lambda: transcribe_audio(
                        self.llm_client, audio, mime_type, run.options, sink
                    ),
                )
            else:
                result = await process_text_input(item.text or "", sink)
            if result.api_call:
                run.metrics.record_call(result.usage)
            transcripts.append((item.job_file, result.transcript))
            await self._step_delay()

        await run.report(JobStage.TRANSCRIBING, 1.0, "Transcription complete")
        return transcripts

    async def _synthesize(
        self, run: _JobRun, transcripts: list[tuple[JobFile, str]]
    ) -> list[JobResult]:
        await self._transition(run, JobStage.SYNTHESIZING)
        prompts = await self.prompt_loader.load_for_job(run.job)
        await run.report(JobStage.SYNTHESIZING, 0.5, "Generating output...")

        if run.job.mode is JobMode.COMBINE:
            units = [
                (
                    COMBINED_FILE_ID,
                    COMBINED_FILE_ID,
                    combine_transcripts([(f.filename, t) for f, t in transcripts]),
                )
            ]
        else:
            units = [(f.id, f.filename, t) for f, t in transcripts]

        results: list[JobResult] = []
        for index, (file_id, filename, transcript) in enumerate(units):
            content, outputs = await synthesize_with_prompts(
                self.llm_client, transcript, prompts, run.options
            )
            for output in outputs:
                run.metrics.record_call(output.usage)
            results.append(JobResult(file_id=file_id, filename=filename, content=content))
            await run.report(
                JobStage.SYNTHESIZING,
                0.5 + 0.3 * (index + 1) / len(units),
                "Generating output...",
            )

        await run.report(JobStage.SYNTHESIZING, 0.9, "Finalizing...")
        return results

    # -- helpers --

    async def _completion_options(self, job: Job) -> CompletionOptions:
        """Use the owner's saved credential when there is one."""
        if job.user_id is None:
            return CompletionOptions()
        credential = await self.store.get_user_credential(job.user_id)
        return CompletionOptions(api_key=credential or None)

    async def _for_file(
        self,
        run: _JobRun,
        job_file: JobFile,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run per-file work, recording a file-level error code on failure."""
        try:
            return await work()
        except PipelineError as exc:
            code = exc.kind.value if exc.kind in FILE_ERROR_KINDS else None
            await self._best_effort(
                run.job,
                "update_file",
                lambda: self._set_file_stage(run, job_file, FileStage.FAILED, code),
            )
            raise

    async def _transition(self, run: _JobRun, stage: JobStage) -> None:
        job = run.job
        if not can_transition(job.stage, stage):
            raise PipelineError(
                f"Invalid stage transition {job.stage.value} -> {stage.value}",
                job_id=job.id,
            )
        await self._write(
            job, "update_job_stage", lambda: self.store.update_job_stage(job.id, stage)
        )
        job.stage = stage
        logger.info(
            "Entered stage %s", stage.value, extra={"job_id": job.id, "stage": stage.value}
        )

    async def _set_file_stage(
        self,
        run: _JobRun,
        job_file: JobFile,
        stage: FileStage,
        error_code: str | None = None,
    ) -> None:
        def mutate(f: JobFile) -> None:
            f.stage = stage
            if error_code is not None:
                f.error_code = error_code

        await self._persist_file(run, job_file, mutate, stage=stage, error_code=error_code)

    async def _persist_file(
        self,
        run: _JobRun,
        job_file: JobFile,
        mutate: Callable[[JobFile], None],
        **changes: object,
    ) -> None:
        await apply_optimistic(
            job_file,
            mutate,
            lambda: self._write(
                run.job,
                "update_file",
                lambda: self.store.update_file(job_file.id, **changes),
            ),
        )

    async def _write(
        self, job: Job, operation: str, write: Callable[[], Awaitable[None]]
    ) -> None:
        """Perform a status write. Failures are ignored for anonymous jobs."""
        try:
            await write()
        except StorageError as exc:
            if not job.is_anonymous:
                raise
            logger.warning(
                "Ignoring failed %s for anonymous job: %s",
                operation,
                exc,
                extra={"job_id": job.id, "error": str(exc)},
            )

    async def _best_effort(
        self, job: Job, operation: str, write: Callable[[], Awaitable[None]]
    ) -> None:
        """Failure-path write: logged, never raised."""
        try:
            await self._write(job, operation, write)
        except StorageError as exc:
            logger.error(
                "Failure-path %s failed: %s",
                operation,
                exc,
                exc_info=True,
                extra={"job_id": job.id, "error": str(exc)},
            )

    async def _fail(self, run: _JobRun, exc: Exception) -> None:
        job = run.job
        failed_stage = job.stage
        classified = classify_error(exc)

        logger.error(
            "Job failed at stage '%s': %s",
            failed_stage.value,
            exc,
            exc_info=True,
            extra={
                "job_id": job.id,
                "stage": failed_stage.value,
                "error_code": classified.code,
            },
        )

        run.metrics.status = JobStage.FAILED.value
        run.metrics.error_stage = failed_stage.value
        run.metrics.error_code = classified.code

        for job_file in job.files:
            if job_file.stage is not FileStage.FAILED:
                await self._best_effort(
                    job,
                    "update_file",
                    lambda f=job_file: self._set_file_stage(run, f, FileStage.FAILED),
                )

        if can_transition(job.stage, JobStage.FAILED):
            await self._best_effort(
                job,
                "update_job_stage",
                lambda: self.store.update_job_stage(
                    job.id, JobStage.FAILED, classified.code, classified.message
                ),
            )
            job.stage = JobStage.FAILED
            job.error_code = classified.code
            job.error_message = classified.message

        await run.channel.publish_failed(classified.code, classified.message)

    async def _step_delay(self) -> None:
        if self.step_delay_seconds > 0:
            await asyncio.sleep(self.step_delay_seconds)


async def _as_awaitable(func: Callable[..., T], *args: Any) -> T:
    return func(*args)


def _decode_text(job_file: JobFile, data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CorruptedFileError(
            "TEXT INPUT IS NOT VALID UTF-8", job_id=job_file.job_id
        ) from exc
