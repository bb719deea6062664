from __future__ import annotations

from pathlib import Path
from typing import Sequence
from uuid import uuid4

from render_bench.errors import ConfigurationError, SpawnError
from render_bench.logging_config import bind_run_context, clear_run_context, get_logger
from render_bench.models import JobDescriptor, RunMode, RunOutcome, RunReport
from render_bench.monitor import LivenessMonitor
from render_bench.report import summarize
from render_bench.settings import Settings, get_settings
from render_bench.worker import WorkerHandle, spawn_failure_outcome

logger = get_logger(__name__)


class RunCoordinator:
    """Runs a batch of render jobs in parallel or one at a time.

    Handles are owned here, keyed by job id, from spawn until the monitor
    retires them. A failing job never aborts the batch.
    """

    def __init__(self, log_root: Path, monitor: LivenessMonitor | None = None) -> None:
        self.log_root = Path(log_root)
        self.monitor = monitor or monitor_from_settings(get_settings())
        self._handles: dict[str, WorkerHandle] = {}

    async def run(
        self,
        batch: Sequence[JobDescriptor],
        mode: RunMode,
        run_id: str | None = None,
    ) -> RunReport:
        validate_batch(batch)
        run_id = run_id or uuid4().hex
        self.log_root.mkdir(parents=True, exist_ok=True)

        bind_run_context(run_id)
        logger.info("run_started", mode=mode.value, jobs=len(batch))
        try:
            if mode is RunMode.parallel:
                outcomes = await self._run_parallel(batch)
            else:
                outcomes = await self._run_sequential(batch)
        finally:
            await self._release_all()
            clear_run_context()

        report = summarize(outcomes, mode=mode, run_id=run_id)
        logger.info(
            "run_finished",
            run_id=run_id,
            succeeded=report.succeeded,
            total=report.total,
            elapsed_sec=round(report.elapsed_sec, 3),
        )
        return report

    async def _run_parallel(self, batch: Sequence[JobDescriptor]) -> list[RunOutcome]:
        outcomes: list[RunOutcome] = []
        for descriptor in batch:
            outcome = await self._spawn(descriptor)
            if outcome is not None:
                outcomes.append(outcome)

        async for outcome in self.monitor.watch(list(self._handles.values())):
            self._handles.pop(outcome.job_id, None)
            outcomes.append(outcome)
        return outcomes

    async def _run_sequential(self, batch: Sequence[JobDescriptor]) -> list[RunOutcome]:
        outcomes: list[RunOutcome] = []
        for index, descriptor in enumerate(batch, start=1):
            logger.debug("job_queued", job_id=descriptor.id, position=index, of=len(batch))
            outcome = await self._spawn(descriptor)
            if outcome is None:
                outcome = await self.monitor.watch_one(self._handles[descriptor.id])
                self._handles.pop(descriptor.id, None)
            outcomes.append(outcome)
        return outcomes

    async def _spawn(self, descriptor: JobDescriptor) -> RunOutcome | None:
        """Start one job; a spawn failure comes back as its final outcome."""
        try:
            handle = await WorkerHandle.spawn(descriptor, self.log_root)
        except SpawnError as exc:
            logger.error("job_spawn_failed", job_id=descriptor.id, error=exc.message)
            return spawn_failure_outcome(descriptor, self.log_root, exc)
        self._handles[descriptor.id] = handle
        return None

    async def _release_all(self) -> None:
        # only non-empty when the run was cancelled mid-flight
        for job_id, handle in list(self._handles.items()):
            if await handle.terminate():
                logger.warning("job_abandoned", job_id=job_id)
            handle.retire(timed_out=True)
        self._handles.clear()


def validate_batch(batch: Sequence[JobDescriptor]) -> None:
    if not batch:
        raise ConfigurationError("batch must contain at least one job")
    ids: set[str] = set()
    artifacts: set[Path] = set()
    for descriptor in batch:
        if descriptor.id in ids:
            raise ConfigurationError(f"duplicate job id: {descriptor.id}")
        ids.add(descriptor.id)
        for path in descriptor.expected_artifact_paths:
            resolved = Path(path).resolve()
            if resolved in artifacts:
                raise ConfigurationError(
                    f"artifact path shared between jobs: {resolved}"
                )
            artifacts.add(resolved)


def monitor_from_settings(settings: Settings) -> LivenessMonitor:
    return LivenessMonitor(
        poll_interval_sec=settings.poll_interval_sec,
        grace_period_sec=settings.grace_period_sec,
        idle_warning_sec=settings.idle_warning_sec,
        stderr_tail_lines=settings.stderr_tail_lines,
    )


async def run_batch(
    batch: Sequence[JobDescriptor],
    mode: RunMode,
    log_root: Path,
    *,
    run_id: str | None = None,
    monitor: LivenessMonitor | None = None,
) -> RunReport:
    """Execute a batch and return its report."""
    return await RunCoordinator(log_root, monitor=monitor).run(batch, mode, run_id=run_id)
