import pytest

from render_bench.batch import build_batch, output_paths_for
from render_bench.errors import ConfigurationError
from render_bench.models import BATCH_MODE_FLAG, SUCCESS_MARKER


def test_build_batch_one_job_per_output(tmp_path):
    outputs = output_paths_for(tmp_path, 3)
    batch = build_batch(["render", "--quiet"], outputs, timeout_sec=30)

    assert [job.id for job in batch] == ["job-000", "job-001", "job-002"]
    assert len({job.expected_artifact_path for job in batch}) == 3
    assert {job.success_pattern for job in batch} == {SUCCESS_MARKER}
    for job, output in zip(batch, outputs):
        assert job.command == "render"
        assert job.arguments == ("--quiet", str(output.resolve()))
        assert job.expected_artifact_paths == (output.resolve(),)
        assert job.timeout_sec == 30


def test_build_batch_groups_outputs_per_process(tmp_path):
    outputs = output_paths_for(tmp_path, 5, stem="doc")
    batch = build_batch(["render"], outputs, timeout_sec=10, per_process=2)

    assert len(batch) == 3
    first = batch[0]
    assert first.arguments[0] == BATCH_MODE_FLAG
    assert first.arguments[1:] == tuple(str(p.resolve()) for p in outputs[:2])
    assert len(batch[-1].expected_artifact_paths) == 1


def test_output_paths_are_distinct(tmp_path):
    paths = output_paths_for(tmp_path, 4, stem="report")
    assert [p.name for p in paths] == [
        "report-1.pdf",
        "report-2.pdf",
        "report-3.pdf",
        "report-4.pdf",
    ]


@pytest.mark.parametrize("count", [0, -3])
def test_non_positive_count_rejected(tmp_path, count):
    with pytest.raises(ConfigurationError):
        output_paths_for(tmp_path, count)


def test_empty_output_list_rejected():
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [], timeout_sec=10)


def test_empty_output_path_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [tmp_path / "a.pdf", "  "], timeout_sec=10)


def test_directory_output_path_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [tmp_path], timeout_sec=10)


def test_duplicate_output_path_rejected(tmp_path):
    path = tmp_path / "same.pdf"
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [path, str(path)], timeout_sec=10)


def test_empty_command_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        build_batch([], [tmp_path / "a.pdf"], timeout_sec=10)


def test_invalid_per_process_and_timeout_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [tmp_path / "a.pdf"], timeout_sec=10, per_process=0)
    with pytest.raises(ConfigurationError):
        build_batch(["render"], [tmp_path / "a.pdf"], timeout_sec=0)


def test_build_batch_rejects_unresolvable_path(tmp_path):
    with pytest.raises(ConfigurationError, match="invalid output path"):
        build_batch(["render"], [f"{tmp_path}/a\0b.pdf"], timeout_sec=10)
