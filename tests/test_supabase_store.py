"""Tests for smelt_processor.storage.supabase_store module."""

import json
import re
from unittest.mock import MagicMock

import httpx
import pytest

from smelt_processor.models import FileStage, InputKind, JobFile, JobMode, JobResult, JobStage
from smelt_processor.storage.supabase_store import SupabaseJobStore
from smelt_processor.utils.errors import StorageError

BASE = "https://proj.supabase.co/rest/v1"

JOB_ROW = {
    "id": "job1",
    "user_id": "user1",
    "status": "pending",
    "mode": "combine",
    "default_prompt_names": ["summarize"],
    "user_prompt_id": None,
    "error_code": None,
    "error_message": None,
    "created_at": "2025-01-01T12:00:00Z",
    "completed_at": None,
}

FILE_ROWS = [
    {
        "id": "f1",
        "smelt_id": "job1",
        "input_type": "audio",
        "filename": "a.m4a",
        "size_bytes": 2048,
        "position": 0,
        "mime_type": "audio/mp4",
        "duration_seconds": None,
        "status": "pending",
        "error_code": None,
    },
    {
        "id": "f2",
        "smelt_id": "job1",
        "input_type": "text",
        "filename": "notes.txt",
        "size_bytes": 12,
        "position": 1,
        "mime_type": "text/plain",
        "duration_seconds": 61,
        "status": "processing",
        "error_code": None,
    },
]


def _url(path: str) -> re.Pattern:
    return re.compile(re.escape(f"{BASE}/{path}") + r"(\?.*)?$")


class TestSupabaseJobStoreInit:
    """Tests for SupabaseJobStore initialization."""

    def test_init_strips_trailing_slash(self):
        store = SupabaseJobStore(
            supabase_url="https://proj.supabase.co/", service_role_key="k"
        )
        assert store.rest_url == BASE

    def test_init_missing_url_raises_storage_error(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        with pytest.raises(StorageError, match="SUPABASE_URL is required"):
            SupabaseJobStore(service_role_key="k")

    def test_init_missing_key_raises_storage_error(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
        with pytest.raises(StorageError, match="SUPABASE_SERVICE_ROLE_KEY is required"):
            SupabaseJobStore(supabase_url="https://proj.supabase.co")


class TestSupabaseJobStore:
    """PostgREST reads and writes, exercised with httpx_mock."""

    @pytest.fixture
    def object_storage(self):
        return MagicMock()

    @pytest.fixture
    def store(self, object_storage):
        return SupabaseJobStore(
            supabase_url="https://proj.supabase.co",
            service_role_key="service-key",
            object_storage=object_storage,
        )

    async def test_get_job_maps_rows(self, store, httpx_mock):
        httpx_mock.add_response(method="GET", url=_url("smelts"), json=[JOB_ROW])
        httpx_mock.add_response(method="GET", url=_url("smelt_files"), json=FILE_ROWS)

        job = await store.get_job("job1")

        assert job.id == "job1"
        assert job.mode is JobMode.COMBINE
        assert job.stage is JobStage.PENDING
        assert job.default_prompt_names == ["summarize"]
        assert job.created_at.year == 2025
        assert [f.id for f in job.files] == ["f1", "f2"]
        assert job.files[0].input_kind is InputKind.AUDIO
        assert job.files[1].stage is FileStage.PROCESSING
        assert job.files[1].duration_seconds == 61.0

        job_request, files_request = httpx_mock.get_requests()
        assert job_request.url.params["id"] == "eq.job1"
        assert job_request.headers["apikey"] == "service-key"
        assert files_request.url.params["smelt_id"] == "eq.job1"
        assert files_request.url.params["order"] == "position.asc"
        await store.close()

    async def test_get_job_not_found(self, store, httpx_mock):
        httpx_mock.add_response(method="GET", url=_url("smelts"), json=[])

        with pytest.raises(StorageError, match="not found"):
            await store.get_job("missing")
        await store.close()

    async def test_update_job_stage_terminal_sets_completed_at(self, store, httpx_mock):
        httpx_mock.add_response(method="PATCH", url=_url("smelts"), status_code=204)

        await store.update_job_stage(
            "job1", JobStage.FAILED, error_code="file_too_large", error_message="TOO BIG"
        )

        request = httpx_mock.get_request()
        body = json.loads(request.content)
        assert body["status"] == "failed"
        assert body["error_code"] == "file_too_large"
        assert body["error_message"] == "TOO BIG"
        assert "completed_at" in body
        assert request.url.params["id"] == "eq.job1"
        await store.close()

    async def test_update_job_stage_in_progress(self, store, httpx_mock):
        httpx_mock.add_response(method="PATCH", url=_url("smelts"), status_code=204)

        await store.update_job_stage("job1", JobStage.DECODING)

        body = json.loads(httpx_mock.get_request().content)
        assert body == {"status": "decoding"}
        await store.close()

    async def test_update_file_rounds_duration(self, store, httpx_mock):
        httpx_mock.add_response(method="PATCH", url=_url("smelt_files"), status_code=204)

        await store.update_file("f1", duration_seconds=61.6)

        body = json.loads(httpx_mock.get_request().content)
        assert body == {"duration_seconds": 62}
        await store.close()

    async def test_update_file_noop_sends_nothing(self, store, httpx_mock):
        await store.update_file("f1")
        assert httpx_mock.get_requests() == []
        await store.close()

    async def test_http_error_raises_storage_error(self, store, httpx_mock):
        httpx_mock.add_response(method="PATCH", url=_url("smelt_files"), status_code=500)

        with pytest.raises(StorageError, match="update_file failed: HTTP 500") as exc_info:
            await store.update_file("f1", stage=FileStage.FAILED, error_code="corrupted_file")

        assert exc_info.value.operation == "update_file"
        await store.close()

    async def test_transport_error_raises_storage_error(self, store, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(StorageError, match="list_files failed"):
            await store.list_files("job1")
        await store.close()

    async def test_get_user_credential_via_rpc(self, store, httpx_mock):
        httpx_mock.add_response(
            method="POST", url=f"{BASE}/rpc/get_user_api_key", json="sk-user"
        )

        assert await store.get_user_credential("user1") == "sk-user"
        assert json.loads(httpx_mock.get_request().content) == {"p_user_id": "user1"}
        await store.close()

    async def test_get_user_credential_none(self, store, httpx_mock):
        httpx_mock.add_response(method="POST", url=f"{BASE}/rpc/get_user_api_key", json=None)

        assert await store.get_user_credential("user1") is None
        await store.close()

    async def test_prompts(self, store, httpx_mock):
        httpx_mock.add_response(
            method="GET",
            url=_url("default_prompts"),
            json=[{"name": "summarize", "body": "Summarize it."}],
        )
        httpx_mock.add_response(
            method="GET",
            url=_url("default_prompts"),
            json=[{"name": "summarize", "body": "S"}, {"name": "qa_format", "body": "Q"}],
        )
        httpx_mock.add_response(method="GET", url=_url("prompts"), json=[{"body": "Mine."}])

        assert await store.get_predefined_prompt("summarize") == "Summarize it."
        assert await store.list_predefined_prompts() == {"summarize": "S", "qa_format": "Q"}
        assert await store.get_custom_prompt("p1", "user1") == "Mine."

        custom_request = httpx_mock.get_requests()[-1]
        assert custom_request.url.params["user_id"] == "eq.user1"
        await store.close()

    async def test_custom_prompt_requires_owner(self, store, httpx_mock):
        assert await store.get_custom_prompt("p1", None) is None
        await store.close()

    async def test_fetch_file_content_uses_source_key(self, store, object_storage):
        object_storage.fetch_object.return_value = b"bytes"
        job_file = JobFile(
            id="f1", job_id="job1", input_kind=InputKind.AUDIO, filename="a.M4A", size_bytes=5
        )

        assert await store.fetch_file_content(job_file) == b"bytes"
        object_storage.fetch_object.assert_called_once_with("job1/f1.m4a")
        await store.close()

    async def test_store_results_puts_each_result(self, store, object_storage):
        results = [
            JobResult(file_id="f1", filename="a.m4a", content="one"),
            JobResult(file_id="f2", filename="b.m4a", content="two"),
        ]

        await store.store_results("job1", results)

        assert object_storage.put_result.call_count == 2
        object_storage.put_result.assert_any_call("job1", "f2", "two")
        await store.close()
