"""Dict-backed JobStore for the local CLI and tests."""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from smelt_processor.models import FileStage, Job, JobFile, JobResult, JobStage
from smelt_processor.storage.interface import JobStore
from smelt_processor.utils.errors import StorageError


@dataclass
class _CustomPrompt:
    user_id: str | None
    body: str


class InMemoryJobStore(JobStore):
    """Keeps jobs, files, prompts and results in process memory.

    ``stage_history`` records every (job_id, stage) write in order.
    """

    def __init__(self, predefined_prompts: dict[str, str] | None = None) -> None:
        self.jobs: dict[str, Job] = {}
        self.files: dict[str, JobFile] = {}
        self.contents: dict[str, bytes] = {}
        self.credentials: dict[str, str] = {}
        self.predefined_prompts: dict[str, str] = dict(predefined_prompts or {})
        self.custom_prompts: dict[str, _CustomPrompt] = {}
        self.results: dict[str, list[JobResult]] = {}
        self.stage_history: list[tuple[str, JobStage]] = []

    def add_job(self, job: Job, contents: dict[str, bytes] | None = None) -> None:
        """Register a job, its files and their uploaded bytes."""
        self.jobs[job.id] = copy.deepcopy(job)
        self.jobs[job.id].files = []
        for job_file in job.files:
            self.files[job_file.id] = copy.deepcopy(job_file)
        for file_id, data in (contents or {}).items():
            self.contents[file_id] = data

    def add_custom_prompt(self, prompt_id: str, body: str, user_id: str | None = None) -> None:
        self.custom_prompts[prompt_id] = _CustomPrompt(user_id=user_id, body=body)

    def _job(self, job_id: str) -> Job:
        job = self.jobs.get(job_id)
        if job is None:
            raise StorageError(f"Job '{job_id}' not found", operation="get_job")
        return job

    async def get_job(self, job_id: str) -> Job:
        job = copy.deepcopy(self._job(job_id))
        job.files = await self.list_files(job_id)
        return job

    async def list_files(self, job_id: str) -> list[JobFile]:
        files = [f for f in self.files.values() if f.job_id == job_id]
        return [copy.deepcopy(f) for f in sorted(files, key=lambda f: f.position)]

    async def update_job_stage(
        self,
        job_id: str,
        stage: JobStage,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        job = self._job(job_id)
        job.stage = stage
        if error_code is not None:
            job.error_code = error_code
        if error_message is not None:
            job.error_message = error_message
        if stage.is_terminal:
            job.completed_at = datetime.now(UTC)
        self.stage_history.append((job_id, stage))

    async def update_file(
        self,
        file_id: str,
        stage: FileStage | None = None,
        duration_seconds: float | None = None,
        error_code: str | None = None,
    ) -> None:
        job_file = self.files.get(file_id)
        if job_file is None:
            raise StorageError(f"File '{file_id}' not found", operation="update_file")
        if stage is not None:
            job_file.stage = stage
        if duration_seconds is not None:
            job_file.duration_seconds = duration_seconds
        if error_code is not None:
            job_file.error_code = error_code

    async def get_user_credential(self, user_id: str) -> str | None:
        return self.credentials.get(user_id)

    async def get_predefined_prompt(self, name: str) -> str | None:
        return self.predefined_prompts.get(name)

    async def list_predefined_prompts(self) -> dict[str, str]:
        return dict(self.predefined_prompts)

    async def get_custom_prompt(self, prompt_id: str, user_id: str | None) -> str | None:
        prompt = self.custom_prompts.get(prompt_id)
        if prompt is None or prompt.user_id != user_id:
            return None
        return prompt.body

    async def fetch_file_content(self, job_file: JobFile) -> bytes:
        data = self.contents.get(job_file.id)
        if data is None:
            raise StorageError(
                f"No content stored for file '{job_file.id}'",
                job_id=job_file.job_id,
                operation="fetch_file_content",
            )
        return data

    async def store_results(self, job_id: str, results: Sequence[JobResult]) -> None:
        self.results[job_id] = list(results)
