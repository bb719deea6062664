from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from render_bench.models import Classification, RunMode, RunOutcome
from render_bench.report import classify, render_text, summarize

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _outcome(job_id, classification, start=0.0, elapsed=1.0, missing=(), **extra):
    return RunOutcome(
        job_id=job_id,
        classification=classification,
        started_at=T0 + timedelta(seconds=start),
        finished_at=T0 + timedelta(seconds=start + elapsed),
        elapsed_sec=elapsed,
        missing_artifacts=[Path(p) for p in missing],
        artifact_exists=not missing,
        **extra,
    )


@pytest.mark.parametrize(
    "facts, expected",
    [
        (dict(exit_code=0, timed_out=False, had_success_signature=True, artifact_exists=True), Classification.success),
        (dict(exit_code=0, timed_out=False, had_success_signature=True, artifact_exists=False), Classification.missing_artifact),
        (dict(exit_code=0, timed_out=False, had_success_signature=False, artifact_exists=True), Classification.success),
        (dict(exit_code=3, timed_out=False, had_success_signature=True, artifact_exists=False), Classification.failed_exit),
        (dict(exit_code=None, timed_out=True, had_success_signature=False, artifact_exists=False), Classification.timed_out_no_signal),
        (dict(exit_code=None, timed_out=True, had_success_signature=True, artifact_exists=True), Classification.timed_out_after_signal),
        (dict(exit_code=None, timed_out=False, had_success_signature=False, artifact_exists=False, spawn_failed=True), Classification.spawn_error),
    ],
)
def test_classify(facts, expected):
    assert classify(**facts) is expected


def test_success_requires_exit_zero_and_artifact():
    for exit_code in (None, 0, 1):
        for artifact in (True, False):
            result = classify(
                exit_code=exit_code,
                timed_out=exit_code is None,
                had_success_signature=True,
                artifact_exists=artifact,
            )
            assert (result is Classification.success) == (exit_code == 0 and artifact)


def test_summarize_parallel_counts_and_span():
    outcomes = [
        _outcome("job-001", Classification.success, start=0.5, elapsed=2.0),
        _outcome("job-000", Classification.missing_artifact, start=0.0, elapsed=1.0, missing=["/tmp/a.pdf"], exit_code=0),
        _outcome("job-002", Classification.failed_exit, start=0.2, elapsed=3.0, exit_code=1),
    ]
    report = summarize(outcomes, mode=RunMode.parallel, run_id="r1")

    assert report.total == 3
    assert report.succeeded == 1
    assert report.failed == 2
    assert report.missing_artifact == ["job-000"]
    assert report.by_classification[Classification.failed_exit] == 1
    assert [o.job_id for o in report.outcomes] == ["job-001", "job-000", "job-002"]
    assert report.elapsed_sec == pytest.approx(3.2)
    assert not report.ok
    assert report.exit_code == 1


def test_summarize_sequential_sums_elapsed():
    outcomes = [
        _outcome("job-000", Classification.success, start=0.0, elapsed=1.5),
        _outcome("job-001", Classification.success, start=10.0, elapsed=2.5),
    ]
    report = summarize(outcomes, mode=RunMode.sequential, run_id="r2")

    assert report.elapsed_sec == pytest.approx(4.0)
    assert report.ok
    assert report.exit_code == 0


def test_summarize_empty_is_not_ok():
    report = summarize([], mode=RunMode.parallel, run_id="empty")
    assert report.total == 0
    assert report.elapsed_sec == 0.0
    assert not report.ok


def test_render_text_lists_missing_artifacts_and_errors():
    outcomes = [
        _outcome("job-000", Classification.success, peak_memory_mb=120.5, exit_code=0),
        _outcome(
            "job-001",
            Classification.missing_artifact,
            missing=["/out/output-2.pdf"],
            exit_code=0,
            error="exit code 0 but 1 artifact(s) missing",
            stderr_tail="[ERROR] disk full",
        ),
    ]
    text = render_text(summarize(outcomes, mode=RunMode.parallel, run_id="r3"))

    assert "1/2 succeeded" in text
    assert "120.5MB" in text
    assert "Missing artifacts:" in text
    assert "job-001: /out/output-2.pdf" in text
    assert "[ERROR] disk full" in text
    assert text.rstrip().endswith("FAIL")


def test_report_round_trips_through_json():
    outcomes = [_outcome("job-000", Classification.timed_out_after_signal, had_success_signature=True)]
    report = summarize(outcomes, mode=RunMode.parallel, run_id="r4")

    restored = type(report).model_validate_json(report.model_dump_json())
    assert restored == report
    assert restored.by_classification == {Classification.timed_out_after_signal: 1}
