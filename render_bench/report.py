from __future__ import annotations

from collections import Counter
from typing import Iterable

from render_bench.models import Classification, RunMode, RunOutcome, RunReport


def classify(
    *,
    exit_code: int | None,
    timed_out: bool,
    had_success_signature: bool,
    artifact_exists: bool,
    spawn_failed: bool = False,
) -> Classification:
    """Map raw job facts to a classification.

    Priority: spawn failure > non-zero exit > timeout > missing artifact.
    ``success`` requires exit code 0 and the artifact on disk.
    """
    if spawn_failed:
        return Classification.spawn_error
    if exit_code is not None and exit_code != 0:
        return Classification.failed_exit
    if timed_out or exit_code is None:
        if had_success_signature:
            return Classification.timed_out_after_signal
        return Classification.timed_out_no_signal
    if not artifact_exists:
        return Classification.missing_artifact
    return Classification.success


def summarize(
    outcomes: Iterable[RunOutcome], *, mode: RunMode, run_id: str
) -> RunReport:
    """Fold per-job outcomes into a run report. Outcome order is preserved."""
    ordered = list(outcomes)
    counts = Counter(outcome.classification for outcome in ordered)
    succeeded = counts.get(Classification.success, 0)

    started_at = min((o.started_at for o in ordered), default=None)
    finished_at = max((o.finished_at for o in ordered), default=None)
    if mode is RunMode.sequential:
        elapsed = sum(o.elapsed_sec for o in ordered)
    elif started_at is not None and finished_at is not None:
        elapsed = (finished_at - started_at).total_seconds()
    else:
        elapsed = 0.0

    return RunReport(
        run_id=run_id,
        mode=mode,
        outcomes=ordered,
        total=len(ordered),
        succeeded=succeeded,
        failed=len(ordered) - succeeded,
        missing_artifact=[o.job_id for o in ordered if o.missing_artifacts],
        by_classification=dict(counts),
        elapsed_sec=max(elapsed, 0.0),
        started_at=started_at,
        finished_at=finished_at,
    )


def render_text(report: RunReport) -> str:
    lines = [
        f"Run {report.run_id} ({report.mode.value}): "
        f"{report.succeeded}/{report.total} succeeded in {report.elapsed_sec:.2f}s",
    ]
    for outcome in sorted(report.outcomes, key=lambda o: o.job_id):
        exit_text = "-" if outcome.exit_code is None else str(outcome.exit_code)
        peak = (
            f"{outcome.peak_memory_mb:.1f}MB"
            if outcome.peak_memory_mb is not None
            else "-"
        )
        lines.append(
            f"  {outcome.job_id:<10} {outcome.classification.value:<24}"
            f" {outcome.elapsed_sec:>8.2f}s  exit={exit_text:<4} peak={peak}"
        )

    if report.by_classification:
        summary = ", ".join(
            f"{cls.value}={count}"
            for cls, count in sorted(
                report.by_classification.items(), key=lambda item: item[0].value
            )
        )
        lines.append(f"Classifications: {summary}")

    missing = [o for o in report.outcomes if o.missing_artifacts]
    if missing:
        lines.append("Missing artifacts:")
        for outcome in sorted(missing, key=lambda o: o.job_id):
            for path in outcome.missing_artifacts:
                lines.append(f"  {outcome.job_id}: {path}")

    failed = [o for o in report.outcomes if not o.succeeded]
    for outcome in sorted(failed, key=lambda o: o.job_id):
        if outcome.error:
            lines.append(f"[{outcome.job_id}] {outcome.error}")
        if outcome.stderr_tail:
            lines.extend(f"    {line}" for line in outcome.stderr_tail.splitlines())

    lines.append("PASS" if report.ok else "FAIL")
    return "\n".join(lines) + "\n"
