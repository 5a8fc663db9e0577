"""Abstract durable store consumed by the job pipeline.

The store owns job and file records, user credentials, prompt bodies,
uploaded file content and generated results. Implementations raise
StorageError on any backend failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from smelt_processor.models import FileStage, Job, JobFile, JobResult, JobStage


class JobStore(ABC):
    """Abstract base class for job persistence backends."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Job:
        """Load a job together with its files.

        Raises:
            StorageError: If the job does not exist or cannot be read.
        """

    @abstractmethod
    async def list_files(self, job_id: str) -> list[JobFile]:
        """Return the job's files ordered by position."""

    @abstractmethod
    async def update_job_stage(
        self,
        job_id: str,
        stage: JobStage,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Persist a stage transition. Terminal stages also set completed_at."""

    @abstractmethod
    async def update_file(
        self,
        file_id: str,
        stage: FileStage | None = None,
        duration_seconds: float | None = None,
        error_code: str | None = None,
    ) -> None:
        """Persist per-file changes. None fields are left untouched."""

    @abstractmethod
    async def get_user_credential(self, user_id: str) -> str | None:
        """Return the user's saved provider credential, if any."""

    @abstractmethod
    async def get_predefined_prompt(self, name: str) -> str | None:
        """Return the body of a predefined prompt, or None if unknown."""

    @abstractmethod
    async def list_predefined_prompts(self) -> dict[str, str]:
        """Return every predefined prompt body keyed by name."""

    @abstractmethod
    async def get_custom_prompt(self, prompt_id: str, user_id: str | None) -> str | None:
        """Return the body of a custom prompt owned by the user, or None."""

    @abstractmethod
    async def fetch_file_content(self, job_file: JobFile) -> bytes:
        """Return the uploaded bytes for a file.

        Raises:
            StorageError: If the content cannot be retrieved.
        """

    @abstractmethod
    async def store_results(self, job_id: str, results: Sequence[JobResult]) -> None:
        """Persist the generated results of a completed job."""
