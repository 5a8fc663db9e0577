"""Turn a job file into transcript text.

Audio goes through the LLM client's transcribe(); text input is passed
through unchanged apart from trimming. Progress is reported as a fraction
of the file's own work through a ProgressSink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from smelt_processor.llm.interface import CompletionOptions, LLMClient, TokenUsage
from smelt_processor.utils.errors import ProviderRequestError, TranscriptionError

logger = logging.getLogger(__name__)

TEXT_INPUT_MODEL = "text-input"


class ProgressSink(Protocol):
    """Receives progress of one unit of work as a fraction in [0, 1]."""

    async def accept(self, fraction: float) -> None: ...


@dataclass
class TranscriptionResult:
    transcript: str
    model: str
    usage: TokenUsage | None = None
    api_call: bool = True


async def transcribe_audio(
    client: LLMClient,
    audio: bytes,
    mime_type: str,
    options: CompletionOptions | None = None,
    sink: ProgressSink | None = None,
) -> TranscriptionResult:
    """Transcribe canonical audio bytes.

    Args:
        client: LLM client used for the call.
        audio: Audio bytes in the canonical format.
        mime_type: MIME type of ``audio``.
        options: Per-call options, typically carrying the caller's key.
        sink: Optional progress receiver.

    Returns:
        TranscriptionResult with the trimmed transcript.

    Raises:
        TranscriptionError: If the provider rejects the request.
        ProviderError: Credential, quota, rate-limit or availability
            failures, unchanged so they keep their own kind.
    """
    if sink is not None:
        await sink.accept(0.3)

    try:
        result = await client.transcribe(audio, mime_type, options)
    except ProviderRequestError as exc:
        raise TranscriptionError(f"TRANSCRIPTION FAILED: {exc.message}") from exc

    if sink is not None:
        await sink.accept(1.0)

    return TranscriptionResult(
        transcript=result.content.strip(),
        model=result.model,
        usage=result.usage,
    )


async def process_text_input(
    text: str, sink: ProgressSink | None = None
) -> TranscriptionResult:
    """Pass text input through as its own transcript."""
    if sink is not None:
        await sink.accept(1.0)
    return TranscriptionResult(
        transcript=text.strip(), model=TEXT_INPUT_MODEL, api_call=False
    )
