"""Custom exception hierarchy for the job processing pipeline.

All exceptions inherit from PipelineError and carry an ErrorKind drawn
from a closed taxonomy. The kind's value is the code persisted on the
job and sent to subscribers; the default message is safe for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure kinds a job can terminate with."""

    INVALID_FORMAT = "invalid_format"
    FILE_TOO_LARGE = "file_too_large"
    CORRUPTED_FILE = "corrupted_file"
    DURATION_EXCEEDED = "duration_exceeded"
    DECODING_FAILED = "decoding_failed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    SYNTHESIS_FAILED = "synthesis_failed"
    API_RATE_LIMITED = "api_rate_limited"
    API_QUOTA_EXHAUSTED = "api_quota_exhausted"
    API_KEY_INVALID = "api_key_invalid"
    API_UNAVAILABLE = "api_unavailable"
    CONNECTION_LOST = "connection_lost"
    INTERNAL_ERROR = "internal_error"


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_FORMAT: "INVALID FILE FORMAT",
    ErrorKind.FILE_TOO_LARGE: "FILE TOO LARGE. MAX 25MB ALLOWED",
    ErrorKind.CORRUPTED_FILE: "FILE APPEARS CORRUPTED",
    ErrorKind.DURATION_EXCEEDED: "AUDIO TOO LONG. MAX 30 MINUTES ALLOWED",
    ErrorKind.DECODING_FAILED: "AUDIO CONVERSION FAILED",
    ErrorKind.TRANSCRIPTION_FAILED: "TRANSCRIPTION FAILED",
    ErrorKind.SYNTHESIS_FAILED: "SYNTHESIS FAILED",
    ErrorKind.API_RATE_LIMITED: "RATE LIMIT EXCEEDED. TRY AGAIN LATER",
    ErrorKind.API_QUOTA_EXHAUSTED: "API QUOTA EXHAUSTED. CHECK YOUR CREDITS",
    ErrorKind.API_KEY_INVALID: "API KEY INVALID. CHECK YOUR SETTINGS",
    ErrorKind.API_UNAVAILABLE: "LLM SERVICE UNAVAILABLE",
    ErrorKind.CONNECTION_LOST: "CONNECTION LOST. TRY AGAIN",
    ErrorKind.INTERNAL_ERROR: "SOMETHING WENT WRONG. TRY AGAIN",
}


@dataclass(frozen=True)
class ClassifiedError:
    """A failure kind paired with a message suitable for direct display."""

    kind: ErrorKind
    message: str

    @property
    def code(self) -> str:
        return self.kind.value


class PipelineError(Exception):
    """Base exception for all job pipeline errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    # False when the message may carry ids, keys or paths.
    exposes_message: bool = True

    def __init__(self, message: str | None = None, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message or DEFAULT_MESSAGES[self.kind])

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        if self.job_id:
            return f"[job={self.job_id}] {super().__str__()}"
        return super().__str__()

    def to_classified(self) -> ClassifiedError:
        if self.kind is ErrorKind.INTERNAL_ERROR or not self.exposes_message:
            return ClassifiedError(kind=self.kind, message=DEFAULT_MESSAGES[self.kind])
        return ClassifiedError(kind=self.kind, message=self.message)


class InvalidFormatError(PipelineError):
    """Raised when an input file is not a supported audio format."""

    kind = ErrorKind.INVALID_FORMAT


class FileTooLargeError(PipelineError):
    """Raised when an input file exceeds the size ceiling."""

    kind = ErrorKind.FILE_TOO_LARGE


class CorruptedFileError(PipelineError):
    """Raised when an input file is empty or unreadable."""

    kind = ErrorKind.CORRUPTED_FILE


class DurationExceededError(PipelineError):
    """Raised when audio is longer than the duration ceiling."""

    kind = ErrorKind.DURATION_EXCEEDED


class TranscodeError(PipelineError):
    """Raised when ffmpeg/ffprobe fails to decode or convert audio."""

    kind = ErrorKind.DECODING_FAILED

    def __init__(
        self,
        message: str | None = None,
        job_id: str | None = None,
        input_path: str | None = None,
    ) -> None:
        self.input_path = input_path
        super().__init__(message, job_id)


class TranscriptionError(PipelineError):
    """Raised when a file cannot be turned into a transcript."""

    kind = ErrorKind.TRANSCRIPTION_FAILED


class SynthesisError(PipelineError):
    """Raised when applying a prompt to a transcript fails."""

    kind = ErrorKind.SYNTHESIS_FAILED


class ProviderError(PipelineError):
    """Base for failures reported by the external LLM provider."""

    kind = ErrorKind.API_UNAVAILABLE

    def __init__(
        self,
        message: str | None = None,
        job_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, job_id)


class RateLimitError(ProviderError):
    """Raised on HTTP 429. Carries the provider's Retry-After hint."""

    kind = ErrorKind.API_RATE_LIMITED

    def __init__(
        self,
        message: str | None = None,
        job_id: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, job_id, status_code=429)


class QuotaExhaustedError(ProviderError):
    """Raised when the credential has no credits left."""

    kind = ErrorKind.API_QUOTA_EXHAUSTED


class CredentialInvalidError(ProviderError):
    """Raised when the provider rejects the credential, or none is configured."""

    kind = ErrorKind.API_KEY_INVALID


class ProviderUnavailableError(ProviderError):
    """Raised on 5xx responses and request timeouts."""

    kind = ErrorKind.API_UNAVAILABLE


class ConnectionLostError(ProviderError):
    """Raised when the provider cannot be reached at the transport level."""

    kind = ErrorKind.CONNECTION_LOST


class ProviderRequestError(ProviderError):
    """Raised when the provider rejects a request as malformed.

    Not transient. The calling stage rewraps it as a transcription or
    synthesis failure.
    """


class StorageError(PipelineError):
    """Raised when durable store or object storage operations fail."""

    def __init__(
        self,
        message: str | None = None,
        job_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, job_id)


class ChannelSetupError(PipelineError):
    """Raised when a job's broadcast channel cannot be opened in time."""

    kind = ErrorKind.CONNECTION_LOST
    exposes_message = False


class BroadcastError(PipelineError):
    """Raised by a channel provider when an event cannot be delivered."""

    kind = ErrorKind.CONNECTION_LOST
    exposes_message = False

    def __init__(
        self,
        message: str | None = None,
        job_id: str | None = None,
        topic: str | None = None,
    ) -> None:
        self.topic = topic
        super().__init__(message, job_id)
