"""Supabase-backed job store.

Job, file and prompt records are read and written through PostgREST over
httpx. Uploaded content and generated results live in object storage and
are reached through ObjectStorageClient in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import httpx

from smelt_processor.models import (
    FileStage,
    InputKind,
    Job,
    JobFile,
    JobMode,
    JobResult,
    JobStage,
)
from smelt_processor.storage.interface import JobStore
from smelt_processor.storage.object_storage import ObjectStorageClient, source_key
from smelt_processor.utils.errors import StorageError

logger = logging.getLogger(__name__)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _row_to_file(row: dict[str, Any]) -> JobFile:
    duration = row.get("duration_seconds")
    return JobFile(
        id=row["id"],
        job_id=row["smelt_id"],
        input_kind=InputKind(row["input_type"]),
        filename=row.get("filename") or "",
        size_bytes=int(row.get("size_bytes") or 0),
        position=int(row.get("position") or 0),
        mime_type=row.get("mime_type") or "",
        duration_seconds=float(duration) if duration is not None else None,
        stage=FileStage(row.get("status") or FileStage.PENDING.value),
        error_code=row.get("error_code"),
    )


def _row_to_job(row: dict[str, Any], files: list[JobFile]) -> Job:
    return Job(
        id=row["id"],
        mode=JobMode(row.get("mode") or JobMode.SEPARATE.value),
        user_id=row.get("user_id"),
        default_prompt_names=list(row.get("default_prompt_names") or []),
        user_prompt_id=row.get("user_prompt_id"),
        stage=JobStage(row.get("status") or JobStage.PENDING.value),
        error_code=row.get("error_code"),
        error_message=row.get("error_message"),
        created_at=_parse_timestamp(row.get("created_at")),
        completed_at=_parse_timestamp(row.get("completed_at")),
        files=files,
    )


class SupabaseJobStore(JobStore):
    """JobStore over Supabase PostgREST and S3-compatible storage.

    Reads configuration from environment variables:
        SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY
    """

    def __init__(
        self,
        supabase_url: str | None = None,
        service_role_key: str | None = None,
        object_storage: ObjectStorageClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.supabase_url = (
            supabase_url or os.environ.get("SUPABASE_URL", "")
        ).rstrip("/")
        self.service_role_key = service_role_key or os.environ.get(
            "SUPABASE_SERVICE_ROLE_KEY", ""
        )

        if not self.supabase_url:
            raise StorageError("SUPABASE_URL is required", operation="init")
        if not self.service_role_key:
            raise StorageError(
                "SUPABASE_SERVICE_ROLE_KEY is required", operation="init"
            )

        self._object_storage = object_storage
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url}/rest/v1"

    @property
    def object_storage(self) -> ObjectStorageClient:
        if self._object_storage is None:
            self._object_storage = ObjectStorageClient()
        return self._object_storage

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.rest_url}/{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._headers(), params=params, json=json
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"{operation} failed: HTTP {exc.response.status_code}",
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

        if not response.content:
            return None
        return response.json()

    async def get_job(self, job_id: str) -> Job:
        rows = await self._request(
            "GET", "smelts", "get_job", params={"id": f"eq.{job_id}", "select": "*"}
        )
        if not rows:
            raise StorageError(f"Job '{job_id}' not found", operation="get_job")
        return _row_to_job(rows[0], await self.list_files(job_id))

    async def list_files(self, job_id: str) -> list[JobFile]:
        rows = await self._request(
            "GET",
            "smelt_files",
            "list_files",
            params={
                "smelt_id": f"eq.{job_id}",
                "select": "*",
                "order": "position.asc",
            },
        )
        return [_row_to_file(row) for row in rows or []]

    async def update_job_stage(
        self,
        job_id: str,
        stage: JobStage,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"status": stage.value}
        if error_code is not None:
            payload["error_code"] = error_code
        if error_message is not None:
            payload["error_message"] = error_message
        if stage.is_terminal:
            payload["completed_at"] = datetime.now(UTC).isoformat()
        await self._request(
            "PATCH",
            "smelts",
            "update_job_stage",
            params={"id": f"eq.{job_id}"},
            json=payload,
        )

    async def update_file(
        self,
        file_id: str,
        stage: FileStage | None = None,
        duration_seconds: float | None = None,
        error_code: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if stage is not None:
            payload["status"] = stage.value
            if stage in (FileStage.COMPLETED, FileStage.FAILED):
                payload["completed_at"] = datetime.now(UTC).isoformat()
        if duration_seconds is not None:
            # Column is integer seconds.
            payload["duration_seconds"] = round(duration_seconds)
        if error_code is not None:
            payload["error_code"] = error_code
        if not payload:
            return
        await self._request(
            "PATCH",
            "smelt_files",
            "update_file",
            params={"id": f"eq.{file_id}"},
            json=payload,
        )

    async def get_user_credential(self, user_id: str) -> str | None:
        result = await self._request(
            "POST",
            "rpc/get_user_api_key",
            "get_user_credential",
            json={"p_user_id": user_id},
        )
        return result or None

    async def get_predefined_prompt(self, name: str) -> str | None:
        rows = await self._request(
            "GET",
            "default_prompts",
            "get_predefined_prompt",
            params={"name": f"eq.{name}", "select": "name,body"},
        )
        return rows[0]["body"] if rows else None

    async def list_predefined_prompts(self) -> dict[str, str]:
        rows = await self._request(
            "GET",
            "default_prompts",
            "list_predefined_prompts",
            params={"select": "name,body"},
        )
        return {row["name"]: row["body"] for row in rows or []}

    async def get_custom_prompt(self, prompt_id: str, user_id: str | None) -> str | None:
        if user_id is None:
            return None
        rows = await self._request(
            "GET",
            "prompts",
            "get_custom_prompt",
            params={
                "id": f"eq.{prompt_id}",
                "user_id": f"eq.{user_id}",
                "select": "body",
            },
        )
        return rows[0]["body"] if rows else None

    async def fetch_file_content(self, job_file: JobFile) -> bytes:
        key = source_key(job_file.job_id, job_file.id, job_file.filename)
        return await asyncio.to_thread(self.object_storage.fetch_object, key)

    async def store_results(self, job_id: str, results: Sequence[JobResult]) -> None:
        for result in results:
            await asyncio.to_thread(
                self.object_storage.put_result, job_id, result.file_id, result.content
            )
