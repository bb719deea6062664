from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field

SUCCESS_MARKER = "PDF saved to:"
BATCH_MODE_FLAG = "--sequential"


class RunMode(str, Enum):
    parallel = "parallel"
    sequential = "sequential"


class HandleState(str, Enum):
    running = "running"
    succeeded_signal = "succeeded_signal"
    grace_period = "grace_period"
    timed_out = "timed_out"
    exited = "exited"


TERMINAL_STATES = frozenset({HandleState.timed_out, HandleState.exited})


class Classification(str, Enum):
    success = "success"
    failed_exit = "failed_exit"
    timed_out_no_signal = "timed_out_no_signal"
    timed_out_after_signal = "timed_out_after_signal"
    missing_artifact = "missing_artifact"
    spawn_error = "spawn_error"


class JobDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    command: str = Field(min_length=1)
    arguments: tuple[str, ...] = ()
    expected_artifact_paths: tuple[Path, ...] = Field(min_length=1)
    timeout_sec: float = Field(default=120.0, gt=0)
    success_pattern: str = Field(default=SUCCESS_MARKER, min_length=1)

    @property
    def expected_artifact_path(self) -> Path:
        return self.expected_artifact_paths[0]

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]


class RunPaths(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    root: Path
    logs: Path
    artifacts: Path


class RunOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    classification: Classification
    exit_code: int | None = None
    elapsed_sec: float = 0.0
    started_at: datetime
    finished_at: datetime
    had_success_signature: bool = False
    artifact_exists: bool = False
    missing_artifacts: list[Path] = Field(default_factory=list)
    peak_memory_mb: float | None = None
    error: str | None = None
    stderr_tail: str = ""
    stdout_log: Path | None = None
    stderr_log: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.classification is Classification.success


class RunReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    mode: RunMode
    outcomes: list[RunOutcome] = Field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    missing_artifact: list[str] = Field(default_factory=list)
    by_classification: dict[Classification, int] = Field(default_factory=dict)
    elapsed_sec: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ok(self) -> bool:
        return self.total > 0 and self.succeeded == self.total

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class RunRequest(BaseModel):
    command: list[str] = Field(min_length=1)
    count: int = Field(default=1, gt=0, le=200)
    mode: RunMode = RunMode.parallel
    per_process: int = Field(default=1, ge=1)
    timeout_sec: float | None = Field(default=None, gt=0, le=3600)
    success_pattern: str | None = Field(default=None, min_length=1)
    stem: str = Field(default="output", min_length=1, pattern=r"^[\w.-]+$")
