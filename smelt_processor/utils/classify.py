"""Map any caught exception onto the closed error taxonomy.

Typed PipelineErrors classify as their own kind; internal and store
failures show only the generic message. Anything else falls back
to message-substring heuristics; unrecognised failures become
internal_error with the generic message so no internals reach users.
"""

from __future__ import annotations

import logging

from smelt_processor.utils.errors import (
    DEFAULT_MESSAGES,
    ClassifiedError,
    ErrorKind,
    PipelineError,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching rule wins.
_MESSAGE_RULES: list[tuple[ErrorKind, tuple[tuple[str, ...], ...]]] = [
    (ErrorKind.API_RATE_LIMITED, (("rate", "limit"),)),
    (ErrorKind.API_QUOTA_EXHAUSTED, (("quota",), ("exhausted",))),
    (ErrorKind.API_KEY_INVALID, (("api", "key"), ("unauthorized",))),
    (ErrorKind.FILE_TOO_LARGE, (("too large",), ("size",))),
    (ErrorKind.INVALID_FORMAT, (("format",), ("invalid",))),
    (ErrorKind.DURATION_EXCEEDED, (("duration",), ("too long",))),
    (ErrorKind.CORRUPTED_FILE, (("corrupt",), ("empty",))),
    (ErrorKind.DECODING_FAILED, (("ffmpeg",), ("conversion",), ("decod",))),
    (ErrorKind.TRANSCRIPTION_FAILED, (("transcri",),)),
    (ErrorKind.SYNTHESIS_FAILED, (("synthesis",), ("prompt",))),
    (ErrorKind.API_UNAVAILABLE, (("timed out",), ("timeout",), ("unavailable",))),
    (ErrorKind.CONNECTION_LOST, (("connection",), ("lost",))),
]


def _kind_from_message(message: str) -> ErrorKind:
    lowered = message.lower()
    for kind, alternatives in _MESSAGE_RULES:
        for needles in alternatives:
            if all(needle in lowered for needle in needles):
                return kind
    return ErrorKind.INTERNAL_ERROR


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify a failure into a (kind, display message) pair.

    Args:
        exc: Any exception that escaped a pipeline stage.

    Returns:
        ClassifiedError. Typed errors keep their own kind, and their message
        unless it may carry internal detail. Untyped errors are matched on
        message text and only take the default message of the matched kind.
    """
    if isinstance(exc, PipelineError):
        return exc.to_classified()

    kind = _kind_from_message(str(exc))
    if kind is ErrorKind.INTERNAL_ERROR:
        logger.debug("Unclassified %s mapped to internal_error", type(exc).__name__)
    return ClassifiedError(kind=kind, message=DEFAULT_MESSAGES[kind])
