"""Per-job metrics collection and reporting.

JobMetrics holds everything measured for one run, StageTimer measures a
stage's wall-clock duration, and log_job_metrics() emits the record as one
structured JSON line.
"""

from __future__ import annotations

import json
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TextIO

from smelt_processor.llm.interface import TokenUsage


@dataclass
class JobMetrics:
    """All metrics collected for a single job run."""

    job_id: str
    user_id: str | None
    mode: str
    status: str = "processing"
    file_count: int = 0
    audio_duration_seconds: float = 0.0
    processing_wall_time_seconds: float = 0.0
    stage_durations: dict[str, float] = field(default_factory=dict)
    api_calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    error_stage: str | None = None
    error_code: str | None = None

    def record_call(self, usage: TokenUsage | None) -> None:
        """Count one successful API call and add its token usage."""
        self.api_calls += 1
        if usage is not None:
            self.prompt_tokens += usage.prompt_tokens
            self.completion_tokens += usage.completion_tokens
            self.total_tokens += usage.total_tokens


class StageTimer:
    """Context manager that records wall-clock duration of a pipeline stage.

    When given a ``durations`` dict the elapsed time is stored under the
    stage name on exit, including when the stage raised.

    Usage:
        with StageTimer("decoding", metrics.stage_durations):
            await decode()
    """

    def __init__(self, stage_name: str, durations: dict[str, float] | None = None) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._durations = durations
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        elapsed = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        self.duration_seconds = elapsed
        if self._durations is not None:
            self._durations[self.stage_name] = round(elapsed, 3)


def log_job_metrics(metrics: JobMetrics, stream: TextIO | None = None) -> None:
    """Emit job metrics as a single structured JSON line.

    Args:
        metrics: Populated JobMetrics dataclass.
        stream: Output stream (default stdout).
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "job_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry), file=stream or sys.stdout)
