from __future__ import annotations

from pathlib import Path

from render_bench.models import RunPaths
from render_bench.settings import get_settings


def data_dir() -> Path:
    """Root directory for run data (per-run subdirs)."""
    root = Path(get_settings().data_dir).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def run_paths(run_id: str, root: Path | None = None) -> RunPaths:
    base = (root or data_dir()) / run_id
    logs_dir = base / "logs"
    artifacts_dir = base / "artifacts"
    for d in (logs_dir, artifacts_dir):
        d.mkdir(parents=True, exist_ok=True)
    return RunPaths(root=base, logs=logs_dir, artifacts=artifacts_dir)
