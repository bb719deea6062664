from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Iterable

from render_bench.logging_config import get_logger
from render_bench.models import Classification, HandleState, RunOutcome
from render_bench.worker import WorkerHandle

logger = get_logger(__name__)


class LivenessMonitor:
    """Polling state machine that drives worker handles to a terminal state.

    The only signals are exit status, wall-clock age and the log sinks.
    A handle past its timeout that has already printed its success
    signature gets ``grace_period_sec`` more before it is killed, since
    some backends flush the marker before their process exits.
    Idle output only produces a warning; only the timeout kills.
    """

    def __init__(
        self,
        poll_interval_sec: float = 0.5,
        grace_period_sec: float = 2.0,
        idle_warning_sec: float = 30.0,
        stderr_tail_lines: int = 20,
    ) -> None:
        self.poll_interval_sec = poll_interval_sec
        self.grace_period_sec = grace_period_sec
        self.idle_warning_sec = idle_warning_sec
        self.stderr_tail_lines = stderr_tail_lines

    async def watch(self, handles: Iterable[WorkerHandle]) -> AsyncIterator[RunOutcome]:
        """Yield one outcome per handle, in completion order."""
        pending = [handle for handle in handles if not handle.is_terminal]
        while pending:
            still_running: list[WorkerHandle] = []
            for handle in pending:
                outcome = await self._tick(handle)
                if outcome is None:
                    still_running.append(handle)
                else:
                    self._log_outcome(outcome)
                    yield outcome
            pending = still_running
            if pending:
                await asyncio.sleep(self.poll_interval_sec)

    async def watch_one(self, handle: WorkerHandle) -> RunOutcome:
        outcome: RunOutcome | None = None
        async for outcome in self.watch([handle]):
            pass
        if outcome is None:
            # already retired before watching
            outcome = handle.retire(stderr_tail_lines=self.stderr_tail_lines)
        return outcome

    async def _tick(self, handle: WorkerHandle) -> RunOutcome | None:
        now = time.monotonic()

        if handle.returncode is not None:
            return handle.retire(stderr_tail_lines=self.stderr_tail_lines)

        idle = handle.poll_activity(now)
        if idle >= self.idle_warning_sec:
            if not handle.idle_warned:
                handle.idle_warned = True
                logger.warning(
                    "job_idle",
                    job_id=handle.job_id,
                    idle_sec=round(idle, 1),
                    age_sec=round(handle.age(now), 1),
                )
        else:
            handle.idle_warned = False

        signature = handle.check_success_signature()
        if signature and handle.state is HandleState.running:
            handle.state = HandleState.succeeded_signal
            logger.debug("job_signature_seen", job_id=handle.job_id)

        if handle.state is HandleState.grace_period:
            if handle.grace_deadline is not None and now < handle.grace_deadline:
                return None
            return await self._kill(handle)

        if handle.age(now) < handle.descriptor.timeout_sec:
            return None

        if signature:
            handle.state = HandleState.grace_period
            handle.grace_deadline = now + self.grace_period_sec
            logger.info(
                "job_grace_period",
                job_id=handle.job_id,
                grace_sec=self.grace_period_sec,
            )
            return None
        return await self._kill(handle)

    async def _kill(self, handle: WorkerHandle) -> RunOutcome:
        # False when the backend exited on its own between the poll and the kill
        killed = await handle.terminate()
        return handle.retire(timed_out=killed, stderr_tail_lines=self.stderr_tail_lines)

    @staticmethod
    def _log_outcome(outcome: RunOutcome) -> None:
        fields = {
            "job_id": outcome.job_id,
            "classification": outcome.classification.value,
            "exit_code": outcome.exit_code,
            "elapsed_sec": round(outcome.elapsed_sec, 3),
        }
        if outcome.classification is Classification.success:
            logger.info("job_finished", **fields)
        elif outcome.classification is Classification.failed_exit:
            logger.warning("backend_failure", stderr_tail=outcome.stderr_tail, **fields)
        else:
            logger.warning("job_failed", error=outcome.error, **fields)
