"""Tests for smelt_processor.observability.metrics module."""

from __future__ import annotations

import io
import json
import time

import pytest

from smelt_processor.llm.interface import TokenUsage
from smelt_processor.observability.metrics import JobMetrics, StageTimer, log_job_metrics


def _make_job_metrics(**overrides) -> JobMetrics:
    """Create a JobMetrics with sensible defaults, applying any overrides."""
    defaults = {
        "job_id": "job-001",
        "user_id": "user-1",
        "mode": "separate",
        "status": "completed",
        "file_count": 2,
        "audio_duration_seconds": 600.0,
        "processing_wall_time_seconds": 32.5,
        "stage_durations": {"validating": 0.01, "decoding": 2.1},
    }
    defaults.update(overrides)
    return JobMetrics(**defaults)


class TestJobMetrics:
    def test_defaults(self) -> None:
        metrics = JobMetrics(job_id="j", user_id=None, mode="combine")
        assert metrics.status == "processing"
        assert metrics.api_calls == 0
        assert metrics.stage_durations == {}

    def test_record_call_accumulates_usage(self) -> None:
        metrics = _make_job_metrics()
        metrics.record_call(TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))
        metrics.record_call(TokenUsage(prompt_tokens=1, completion_tokens=2, total_tokens=3))
        assert metrics.api_calls == 2
        assert metrics.prompt_tokens == 11
        assert metrics.completion_tokens == 7
        assert metrics.total_tokens == 18

    def test_record_call_without_usage(self) -> None:
        metrics = _make_job_metrics()
        metrics.record_call(None)
        assert metrics.api_calls == 1
        assert metrics.total_tokens == 0


class TestStageTimer:
    """Tests for the StageTimer context manager."""

    def test_measures_duration(self) -> None:
        with StageTimer("decoding") as timer:
            time.sleep(0.01)
        assert timer.duration_seconds >= 0.01
        assert timer.start_time is not None
        assert timer.end_time >= timer.start_time

    def test_records_into_durations(self) -> None:
        durations: dict[str, float] = {}
        with StageTimer("validating", durations):
            pass
        assert "validating" in durations

    def test_records_when_stage_raises(self) -> None:
        durations: dict[str, float] = {}
        with pytest.raises(RuntimeError):
            with StageTimer("transcribing", durations):
                raise RuntimeError("boom")
        assert "transcribing" in durations


class TestLogJobMetrics:
    """Tests for log_job_metrics structured output."""

    def test_emits_single_json_line(self) -> None:
        stream = io.StringIO()
        log_job_metrics(_make_job_metrics(), stream)

        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["metric_type"] == "job_completion"
        assert entry["severity"] == "INFO"
        assert entry["job_id"] == "job-001"
        assert entry["stage_durations"]["decoding"] == 2.1

    def test_failure_fields(self) -> None:
        stream = io.StringIO()
        log_job_metrics(
            _make_job_metrics(status="failed", error_stage="decoding", error_code="decoding_failed"),
            stream,
        )
        entry = json.loads(stream.getvalue())
        assert entry["status"] == "failed"
        assert entry["error_stage"] == "decoding"
        assert entry["error_code"] == "decoding_failed"

    def test_defaults_to_stdout(self, capsys) -> None:
        log_job_metrics(_make_job_metrics())
        assert json.loads(capsys.readouterr().out)["mode"] == "separate"
