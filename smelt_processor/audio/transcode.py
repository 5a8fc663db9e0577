"""Audio to canonical MP3 transcoder using ffmpeg.

Converts any supported input to MP3 (libmp3lame, 128 kbit/s, mono,
16 kHz) for transcription. Duration is probed with ffprobe and checked
against the ceiling before the costlier conversion runs.
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile
import uuid
from dataclasses import dataclass

from smelt_processor.audio.validation import validate_duration
from smelt_processor.utils.errors import TranscodeError

logger = logging.getLogger(__name__)

TARGET_FORMAT = "mp3"
TARGET_CODEC = "libmp3lame"
TARGET_BITRATE = "128k"
TARGET_CHANNELS = 1
TARGET_SAMPLE_RATE = 16000
TARGET_MIME_TYPE = "audio/mpeg"

FFPROBE_TIMEOUT_SECONDS = 10
FFMPEG_TIMEOUT_SECONDS = 120


@dataclass
class TranscodeResult:
    """Audio in the canonical format plus its measured duration."""

    data: bytes
    duration_seconds: float
    mime_type: str = TARGET_MIME_TYPE


def _find_binary(name: str) -> str:
    """Locate an ffmpeg tool on PATH.

    Raises:
        TranscodeError: If the binary is not found.
    """
    path = shutil.which(name)
    if path is None:
        logger.error("%s binary not found on PATH", name)
        raise TranscodeError("AUDIO CONVERSION UNAVAILABLE")
    return path


def needs_transcode(source_format: str) -> bool:
    """MP3 input is already canonical and is passed through."""
    return source_format.lower() != TARGET_FORMAT


def probe_duration(input_path: str) -> float:
    """Read the container duration with ffprobe.

    Args:
        input_path: Path to the audio file.

    Returns:
        Duration in seconds (0.0 if the container does not report one).

    Raises:
        TranscodeError: If ffprobe fails, times out, or the file is unreadable.
    """
    cmd = [
        _find_binary("ffprobe"),
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        input_path,
    ]

    try:
        completed = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=FFPROBE_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "unknown error"
        logger.error("ffprobe failed for %s: %s", input_path, stderr)
        raise TranscodeError(
            "COULD NOT READ AUDIO FILE", input_path=input_path
        ) from exc
    except subprocess.TimeoutExpired as exc:
        logger.error("ffprobe timed out after %ss for %s", FFPROBE_TIMEOUT_SECONDS, input_path)
        raise TranscodeError(
            "AUDIO FILE TIMED OUT DURING PROBING", input_path=input_path
        ) from exc

    try:
        info = json.loads(completed.stdout or "{}")
        return float(info.get("format", {}).get("duration") or 0.0)
    except (ValueError, TypeError) as exc:
        raise TranscodeError(
            "COULD NOT READ AUDIO FILE", input_path=input_path
        ) from exc


def _convert(input_path: str, output_path: str) -> None:
    cmd = [
        _find_binary("ffmpeg"),
        "-y",
        "-i", input_path,
        "-vn",
        "-acodec", TARGET_CODEC,
        "-b:a", TARGET_BITRATE,
        "-ac", str(TARGET_CHANNELS),
        "-ar", str(TARGET_SAMPLE_RATE),
        "-f", TARGET_FORMAT,
        output_path,
    ]

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=FFMPEG_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else ""
        logger.error("ffmpeg transcode failed for %s: %s", input_path, stderr[:500])
        raise TranscodeError(
            "AUDIO CONVERSION FAILED", input_path=input_path
        ) from exc
    except subprocess.TimeoutExpired as exc:
        logger.error(
            "ffmpeg transcode timed out after %ss for %s", FFMPEG_TIMEOUT_SECONDS, input_path
        )
        raise TranscodeError(
            "AUDIO CONVERSION TIMED OUT", input_path=input_path
        ) from exc

    if not os.path.exists(output_path):
        logger.error("ffmpeg produced no output file: %s", output_path)
        raise TranscodeError("AUDIO CONVERSION FAILED", input_path=input_path)


def _cleanup(work_dir: str) -> None:
    try:
        shutil.rmtree(work_dir)
    except OSError:
        logger.warning("Failed to remove temp dir %s", work_dir, exc_info=True)


def transcode(data: bytes, source_format: str) -> TranscodeResult:
    """Convert an audio payload to the canonical transcription format.

    Writes the payload to a private temp dir, probes and checks duration,
    then converts unless the input is already MP3. The temp dir is removed
    on every exit path.

    Args:
        data: Raw audio bytes.
        source_format: Detected container format (e.g., "m4a").

    Returns:
        TranscodeResult with canonical bytes and measured duration.

    Raises:
        DurationExceededError: If the audio is longer than the ceiling.
        TranscodeError: If probing or conversion fails.
    """
    work_dir = tempfile.mkdtemp(prefix="smelt-")
    token = uuid.uuid4().hex
    input_path = os.path.join(work_dir, f"input-{token}.{source_format}")
    output_path = os.path.join(work_dir, f"output-{token}.{TARGET_FORMAT}")

    try:
        with open(input_path, "wb") as f:
            f.write(data)

        duration = probe_duration(input_path)
        validate_duration(duration)

        if not needs_transcode(source_format):
            return TranscodeResult(data=data, duration_seconds=duration)

        _convert(input_path, output_path)
        with open(output_path, "rb") as f:
            converted = f.read()

        logger.info(
            "Transcoded %s -> %s (%d -> %d bytes, %.1fs)",
            source_format,
            TARGET_FORMAT,
            len(data),
            len(converted),
            duration,
            extra={"duration_seconds": duration},
        )
        return TranscodeResult(data=converted, duration_seconds=duration)
    finally:
        _cleanup(work_dir)
