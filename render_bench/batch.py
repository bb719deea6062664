from __future__ import annotations

from pathlib import Path
from typing import Sequence

from render_bench.errors import ConfigurationError
from render_bench.models import BATCH_MODE_FLAG, SUCCESS_MARKER, JobDescriptor


def output_paths_for(directory: Path, count: int, stem: str = "output") -> list[Path]:
    """Derive ``count`` distinct artifact paths under ``directory``."""
    if count <= 0:
        raise ConfigurationError(f"job count must be positive, got {count}")
    return [directory / f"{stem}-{i}.pdf" for i in range(1, count + 1)]


def build_batch(
    command: Sequence[str],
    output_paths: Sequence[Path | str],
    *,
    timeout_sec: float,
    success_pattern: str = SUCCESS_MARKER,
    per_process: int = 1,
) -> list[JobDescriptor]:
    """Build one descriptor per backend invocation.

    With ``per_process == 1`` every output path gets its own process and is
    passed as the last argument. Larger values group consecutive paths into
    one batch-mode invocation: ``<command> --sequential <p1> ... <pK>``.
    """
    if not command or not str(command[0]).strip():
        raise ConfigurationError("backend command must not be empty")
    if not output_paths:
        raise ConfigurationError("at least one output path is required")
    if per_process < 1:
        raise ConfigurationError(f"per_process must be >= 1, got {per_process}")
    if timeout_sec <= 0:
        raise ConfigurationError(f"timeout must be positive, got {timeout_sec}")
    if not success_pattern:
        raise ConfigurationError("success pattern must not be empty")

    paths = _validate_paths(output_paths)
    executable, *template = (str(part) for part in command)

    descriptors: list[JobDescriptor] = []
    for index, start in enumerate(range(0, len(paths), per_process)):
        chunk = paths[start : start + per_process]
        if per_process == 1:
            arguments = (*template, str(chunk[0]))
        else:
            arguments = (*template, BATCH_MODE_FLAG, *(str(p) for p in chunk))
        descriptors.append(
            JobDescriptor(
                id=f"job-{index:03d}",
                command=executable,
                arguments=arguments,
                expected_artifact_paths=tuple(chunk),
                timeout_sec=timeout_sec,
                success_pattern=success_pattern,
            )
        )
    return descriptors


def _validate_paths(output_paths: Sequence[Path | str]) -> list[Path]:
    paths: list[Path] = []
    seen: set[Path] = set()
    for raw in output_paths:
        if raw is None or not str(raw).strip():
            raise ConfigurationError("output paths must not be empty")
        try:
            path = Path(raw).expanduser().resolve()
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"invalid output path: {raw!r}") from exc
        if path.is_dir():
            raise ConfigurationError(f"output path is a directory: {path}")
        if path in seen:
            raise ConfigurationError(f"duplicate output path: {path}")
        seen.add(path)
        paths.append(path)
    return paths
