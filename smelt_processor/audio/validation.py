"""Audio file validation: size, format and duration limits.

Gates are ordered cheapest first: size, then format detection. Duration
needs a probe and is checked by the transcoder before conversion.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from smelt_processor.utils.errors import (
    CorruptedFileError,
    DurationExceededError,
    FileTooLargeError,
    InvalidFormatError,
)

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024
MAX_DURATION_SECONDS = 30 * 60

# First MIME type of each entry is the canonical one for that format.
SUPPORTED_FORMATS: dict[str, list[str]] = {
    "mp3": ["audio/mpeg", "audio/mp3"],
    "wav": ["audio/wav", "audio/wave", "audio/x-wav"],
    "m4a": ["audio/m4a", "audio/x-m4a", "audio/mp4", "audio/x-m4a-protected"],
    "ogg": ["audio/ogg", "application/ogg"],
    "flac": ["audio/flac", "audio/x-flac"],
    "aac": ["audio/aac", "audio/x-aac"],
    "webm": ["audio/webm"],
}

EXTENSION_MAP: dict[str, str] = {f".{name}": name for name in SUPPORTED_FORMATS}

GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "audio/basic"})


@dataclass(frozen=True)
class AudioMetadata:
    """What is known about an upload before any bytes are decoded."""

    filename: str
    mime_type: str
    size_bytes: int


@dataclass(frozen=True)
class AudioFormat:
    """Detected container format and its canonical MIME type."""

    format: str
    mime_type: str


def validate_size(size_bytes: int) -> None:
    """Reject empty and oversize payloads.

    Raises:
        CorruptedFileError: If the payload is zero bytes.
        FileTooLargeError: If the payload exceeds MAX_FILE_SIZE_BYTES.
    """
    if size_bytes > MAX_FILE_SIZE_BYTES:
        size_mb = size_bytes / (1024 * 1024)
        raise FileTooLargeError(f"FILE SIZE {size_mb:.1f}MB EXCEEDS 25MB LIMIT")
    if size_bytes <= 0:
        raise CorruptedFileError("FILE IS EMPTY")


def validate_format(mime_type: str, filename: str | None = None) -> AudioFormat:
    """Detect the audio format from the MIME type, falling back to extension.

    The extension is only consulted when the declared MIME type is
    generic or missing.

    Raises:
        InvalidFormatError: If the format is not supported.
    """
    normalized = (mime_type or "").strip().lower()

    for name, mime_types in SUPPORTED_FORMATS.items():
        if normalized in mime_types:
            return AudioFormat(format=name, mime_type=normalized)

    if filename and normalized in GENERIC_MIME_TYPES:
        ext = os.path.splitext(filename)[1].lower()
        name = EXTENSION_MAP.get(ext)
        if name:
            return AudioFormat(format=name, mime_type=SUPPORTED_FORMATS[name][0])

    raise InvalidFormatError(
        f"UNSUPPORTED FORMAT: {mime_type or 'unknown'}. "
        "USE MP3, WAV, M4A, OGG, FLAC, OR AAC"
    )


def validate_duration(duration_seconds: float) -> None:
    """Reject audio longer than MAX_DURATION_SECONDS.

    Raises:
        DurationExceededError: If the duration is over the ceiling.
    """
    if duration_seconds > MAX_DURATION_SECONDS:
        minutes = -(-int(duration_seconds) // 60)
        raise DurationExceededError(
            f"DURATION {minutes} MINUTES EXCEEDS 30 MINUTE LIMIT"
        )


def validate(metadata: AudioMetadata) -> AudioFormat:
    """Validate an upload's metadata. Size is checked before format.

    Pure: the same metadata always yields the same result or rejection.
    """
    validate_size(metadata.size_bytes)
    return validate_format(metadata.mime_type, metadata.filename)
