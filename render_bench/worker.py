from __future__ import annotations

import asyncio
import os
import re
import signal
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from render_bench.errors import SpawnError
from render_bench.logging_config import get_logger
from render_bench.models import (
    TERMINAL_STATES,
    Classification,
    HandleState,
    JobDescriptor,
    RunOutcome,
)
from render_bench.report import classify

logger = get_logger(__name__)

# filesystem mtime resolution can be as coarse as one second
ARTIFACT_MTIME_SLACK_SEC = 1.0

_MEMORY_RE = re.compile(
    r"Memory usage:\s*[\d.]+\s*MB\s*\(peak:\s*([\d.]+)\s*MB", re.IGNORECASE
)


class WorkerHandle:
    """Owns one backend process and its append-only stdout/stderr sinks."""

    def __init__(
        self,
        descriptor: JobDescriptor,
        process: asyncio.subprocess.Process,
        stdout_path: Path,
        stderr_path: Path,
        started_at: datetime,
        started_monotonic: float,
        stdout_offset: int = 0,
        stderr_offset: int = 0,
    ) -> None:
        self.descriptor = descriptor
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
        self.started_at = started_at
        self.started_monotonic = started_monotonic
        self.last_output_activity_at = started_monotonic
        self.state = HandleState.running
        self.grace_deadline: float | None = None
        self.idle_warned = False
        self._process = process
        self._activity_marker = self._stat_marker()
        # sinks are append-only and may hold output from an earlier run
        self._stdout_offset = stdout_offset
        self._stderr_offset = stderr_offset
        self._scan_offset = stdout_offset
        self._signature_hits = 0
        self._signature_seen = False
        self._terminated = False
        self._outcome: RunOutcome | None = None

    @classmethod
    async def spawn(cls, descriptor: JobDescriptor, log_dir: Path) -> WorkerHandle:
        stdout_path, stderr_path = sink_paths(descriptor, log_dir)
        stdout_path.parent.mkdir(parents=True, exist_ok=True)
        stdout_offset = _stat(stdout_path)[0]
        stderr_offset = _stat(stderr_path)[0]

        started_at = _now()
        started_monotonic = time.monotonic()
        with stdout_path.open("ab") as out, stderr_path.open("ab") as err:
            try:
                process = await asyncio.create_subprocess_exec(
                    *descriptor.argv,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                    **_detach_kwargs(),
                )
            except OSError as exc:
                _append_line(stderr_path, f"[runner] failed to spawn process: {exc}")
                raise SpawnError(descriptor.id, str(exc)) from exc

        logger.info(
            "job_spawned",
            job_id=descriptor.id,
            pid=process.pid,
            argv=descriptor.argv,
            timeout_sec=descriptor.timeout_sec,
        )
        return cls(
            descriptor,
            process,
            stdout_path,
            stderr_path,
            started_at,
            started_monotonic,
            stdout_offset=stdout_offset,
            stderr_offset=stderr_offset,
        )

    @property
    def job_id(self) -> str:
        return self.descriptor.id

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def outcome(self) -> RunOutcome | None:
        return self._outcome

    def age(self, now: float | None = None) -> float:
        now = time.monotonic() if now is None else now
        return now - self.started_monotonic

    def poll_activity(self, now: float | None = None) -> float:
        """Refresh the last-activity timestamp from the sinks; return idle seconds."""
        now = time.monotonic() if now is None else now
        if not self.is_terminal:
            marker = self._stat_marker()
            if marker != self._activity_marker:
                self._activity_marker = marker
                self.last_output_activity_at = now
        return now - self.last_output_activity_at

    def check_success_signature(self) -> bool:
        if self._signature_seen or self.is_terminal:
            return self._signature_seen
        return self._scan_stdout(final=False)

    async def terminate(self) -> bool:
        """Kill the backend. Returns False when there was nothing left to kill."""
        if self._terminated or self.is_terminal or self._process.returncode is not None:
            return False
        self._terminated = True
        age = self.age()
        try:
            if hasattr(os, "killpg"):
                os.killpg(self._process.pid, signal.SIGKILL)
            else:
                self._process.kill()
        except ProcessLookupError:
            pass
        returncode = await self._process.wait()
        if hasattr(os, "killpg") and returncode != -signal.SIGKILL:
            # exited on its own before the signal landed
            logger.debug("job_exited_before_kill", job_id=self.job_id, exit_code=returncode)
            return False

        seen = "yes" if self._signature_seen else "no"
        _append_line(
            self.stderr_path,
            f"[runner] forced termination after {age:.1f}s (success signature seen: {seen})",
        )
        logger.warning(
            "job_terminated",
            job_id=self.job_id,
            pid=self._process.pid,
            age_sec=round(age, 3),
            success_signature=self._signature_seen,
        )
        return True

    def retire(self, *, timed_out: bool = False, stderr_tail_lines: int = 20) -> RunOutcome:
        """Seal the handle into its outcome. Later calls return the same outcome."""
        if self._outcome is not None:
            return self._outcome

        finished_monotonic = time.monotonic()
        finished_at = _now()
        if not self._signature_seen:
            self._scan_stdout(final=True)
        exit_code = None if timed_out else self._process.returncode
        missing = [
            path
            for path in self.descriptor.expected_artifact_paths
            if not artifact_is_fresh(path, self.started_at)
        ]
        classification = classify(
            exit_code=exit_code,
            timed_out=timed_out,
            had_success_signature=self._signature_seen,
            artifact_exists=not missing,
        )
        self.state = HandleState.timed_out if timed_out else HandleState.exited

        self._outcome = RunOutcome(
            job_id=self.job_id,
            classification=classification,
            exit_code=exit_code,
            elapsed_sec=finished_monotonic - self.started_monotonic,
            started_at=self.started_at,
            finished_at=finished_at,
            had_success_signature=self._signature_seen,
            artifact_exists=not missing,
            missing_artifacts=missing,
            peak_memory_mb=self.peak_memory_mb(),
            error=_describe(classification, self.descriptor, exit_code, missing),
            stderr_tail=(
                "" if classification is Classification.success
                else self.stderr_tail(stderr_tail_lines)
            ),
            stdout_log=self.stdout_path,
            stderr_log=self.stderr_path,
        )
        return self._outcome

    def stderr_tail(self, lines: int = 20) -> str:
        return "\n".join(_tail_lines(self.stderr_path, lines, self._stderr_offset))

    def peak_memory_mb(self) -> float | None:
        """Largest ``peak`` value from this run's ``Memory usage:`` lines."""
        text = _read_from(self.stdout_path, self._stdout_offset)
        if text is None:
            return None
        peaks = [float(match) for match in _MEMORY_RE.findall(text)]
        return max(peaks) if peaks else None

    def _scan_stdout(self, *, final: bool) -> bool:
        try:
            with self.stdout_path.open("rb") as fh:
                fh.seek(self._scan_offset)
                chunk = fh.read()
        except FileNotFoundError:
            return False

        # only whole lines, so a marker split across two writes is not missed
        if not final:
            end = chunk.rfind(b"\n")
            chunk = chunk[: end + 1] if end >= 0 else b""
        if not chunk:
            return self._signature_seen

        self._scan_offset += len(chunk)
        text = chunk.decode("utf-8", errors="replace")
        self._signature_hits += text.count(self.descriptor.success_pattern)
        if self._signature_hits >= len(self.descriptor.expected_artifact_paths):
            self._signature_seen = True
        return self._signature_seen

    def _stat_marker(self) -> tuple[tuple[int, int], ...]:
        return tuple(_stat(path) for path in (self.stdout_path, self.stderr_path))


def sink_paths(descriptor: JobDescriptor, log_dir: Path) -> tuple[Path, Path]:
    job_dir = log_dir / descriptor.id
    return job_dir / "stdout.log", job_dir / "stderr.log"


def spawn_failure_outcome(
    descriptor: JobDescriptor, log_dir: Path, error: SpawnError
) -> RunOutcome:
    now = _now()
    stdout_path, stderr_path = sink_paths(descriptor, log_dir)
    missing = [
        path
        for path in descriptor.expected_artifact_paths
        if not artifact_is_fresh(path, now)
    ]
    return RunOutcome(
        job_id=descriptor.id,
        classification=classify(
            exit_code=None,
            timed_out=False,
            had_success_signature=False,
            artifact_exists=not missing,
            spawn_failed=True,
        ),
        started_at=now,
        finished_at=now,
        missing_artifacts=missing,
        error=f"spawn failed: {error.message}",
        stderr_tail=error.message,
        stdout_log=stdout_path,
        stderr_log=stderr_path,
    )


def artifact_is_fresh(path: Path, since: datetime) -> bool:
    """True if ``path`` exists and was written no earlier than ``since``."""
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return False
    if not path.is_file():
        return False
    return mtime >= since.timestamp() - ARTIFACT_MTIME_SLACK_SEC


def _describe(
    classification: Classification,
    descriptor: JobDescriptor,
    exit_code: int | None,
    missing: list[Path],
) -> str | None:
    if classification is Classification.success:
        return None
    if classification is Classification.failed_exit:
        return f"backend exited with code {exit_code}"
    if classification is Classification.timed_out_no_signal:
        return f"timed out after {descriptor.timeout_sec:g}s without success signature"
    if classification is Classification.timed_out_after_signal:
        return (
            f"timed out after {descriptor.timeout_sec:g}s after success signature; "
            "the timeout is likely too tight"
        )
    return f"exit code {exit_code} but {len(missing)} artifact(s) missing"


def _detach_kwargs() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _stat(path: Path) -> tuple[int, int]:
    try:
        st = path.stat()
    except FileNotFoundError:
        return (0, 0)
    return (st.st_size, st.st_mtime_ns)


def _tail_lines(path: Path, max_lines: int, offset: int = 0) -> list[str]:
    if max_lines <= 0:
        return []
    text = _read_from(path, offset)
    if text is None:
        return []
    return text.splitlines()[-max_lines:]


def _read_from(path: Path, offset: int) -> str | None:
    try:
        with path.open("rb") as fh:
            fh.seek(offset)
            chunk = fh.read()
    except FileNotFoundError:
        return None
    return chunk.decode("utf-8", errors="replace")


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line.rstrip("\n") + "\n")


def _now() -> datetime:
    return datetime.now(timezone.utc)
