"""Data models for jobs, their input files, progress events and results.

Jobs are created by the intake layer in the ``pending`` stage and are
mutated only by the orchestrator afterwards. Stages move forward only;
``completed`` and ``failed`` are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

COMBINED_FILE_ID = "combined"


class JobStage(str, Enum):
    """Overall job stage, in pipeline order."""

    PENDING = "pending"
    VALIDATING = "validating"
    DECODING = "decoding"
    TRANSCRIBING = "transcribing"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED)


STAGE_ORDER: list[JobStage] = [
    JobStage.PENDING,
    JobStage.VALIDATING,
    JobStage.DECODING,
    JobStage.TRANSCRIBING,
    JobStage.SYNTHESIZING,
    JobStage.COMPLETED,
]


def can_transition(current: JobStage, target: JobStage) -> bool:
    """Return True if the state machine allows current -> target."""
    if current.is_terminal:
        return False
    if target is JobStage.FAILED:
        return True
    return STAGE_ORDER.index(target) > STAGE_ORDER.index(current)


class JobMode(str, Enum):
    SEPARATE = "separate"
    COMBINE = "combine"


class InputKind(str, Enum):
    AUDIO = "audio"
    TEXT = "text"


class FileStage(str, Enum):
    """Coarse per-file stage mirrored from the job stage."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_FILE_STAGE_PROGRESS: dict[FileStage, int] = {
    FileStage.PENDING: 0,
    FileStage.PROCESSING: 50,
    FileStage.COMPLETED: 100,
    FileStage.FAILED: 0,
}


@dataclass
class JobFile:
    """One input unit of a job: an uploaded audio file or pasted text."""

    id: str
    job_id: str
    input_kind: InputKind
    filename: str
    size_bytes: int
    position: int = 0
    mime_type: str = ""
    duration_seconds: float | None = None
    stage: FileStage = FileStage.PENDING
    error_code: str | None = None

    @property
    def is_audio(self) -> bool:
        return self.input_kind is InputKind.AUDIO


@dataclass
class Job:
    """One user-submitted unit of audio/text-to-document work."""

    id: str
    mode: JobMode
    user_id: str | None = None
    default_prompt_names: list[str] = field(default_factory=list)
    user_prompt_id: str | None = None
    stage: JobStage = JobStage.PENDING
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    files: list[JobFile] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def prompt_ids(self) -> list[str]:
        ids = list(self.default_prompt_names)
        if self.user_prompt_id:
            ids.append(self.user_prompt_id)
        return ids


@dataclass
class FileProgress:
    """Per-file snapshot carried on every progress event."""

    id: str
    status: FileStage
    progress: int

    @classmethod
    def from_file(cls, job_file: JobFile) -> FileProgress:
        return cls(
            id=job_file.id,
            status=job_file.stage,
            progress=_FILE_STAGE_PROGRESS[job_file.stage],
        )

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "status": self.status.value, "progress": self.progress}


@dataclass
class ProgressEvent:
    """Ephemeral progress message. Never stored."""

    stage: JobStage
    percentage: int
    message: str
    files: list[FileProgress] = field(default_factory=list)


@dataclass
class JobResult:
    """Generated output for one file, or for the whole job in combine mode."""

    file_id: str
    filename: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {
            "file_id": self.file_id,
            "filename": self.filename,
            "content": self.content,
        }


@dataclass
class Prompt:
    """A prompt body and the display name used in logs and outputs."""

    name: str
    content: str


# -- Job read-back: one variant per status, no shared nullable fields --

_STAGE_CHECKPOINTS: dict[JobStage, tuple[int, str]] = {
    JobStage.PENDING: (0, "Waiting to process..."),
    JobStage.VALIDATING: (10, "Validating files..."),
    JobStage.DECODING: (20, "Decoding audio..."),
    JobStage.TRANSCRIBING: (50, "Transcribing audio..."),
    JobStage.SYNTHESIZING: (85, "Generating output..."),
}


@dataclass
class ProcessingJobView:
    job_id: str
    stage: JobStage
    percentage: int
    message: str
    files: list[FileProgress]
    status: Literal["processing"] = "processing"


@dataclass
class CompletedJobView:
    job_id: str
    results: list[JobResult]
    completed_at: datetime | None
    status: Literal["completed"] = "completed"


@dataclass
class FailedJobView:
    job_id: str
    error_code: str
    error_message: str
    status: Literal["failed"] = "failed"


JobView = ProcessingJobView | CompletedJobView | FailedJobView


def build_job_view(job: Job, results: list[JobResult] | None = None) -> JobView:
    """Build the status-appropriate view of a job read back from the store."""
    if job.stage is JobStage.COMPLETED:
        return CompletedJobView(
            job_id=job.id,
            results=list(results or []),
            completed_at=job.completed_at,
        )
    if job.stage is JobStage.FAILED:
        return FailedJobView(
            job_id=job.id,
            error_code=job.error_code or "internal_error",
            error_message=job.error_message or "",
        )
    percentage, message = _STAGE_CHECKPOINTS[job.stage]
    return ProcessingJobView(
        job_id=job.id,
        stage=job.stage,
        percentage=percentage,
        message=message,
        files=[FileProgress.from_file(f) for f in job.files],
    )
