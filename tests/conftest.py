import logging
import sys
from pathlib import Path

import pytest
import structlog

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from render_bench.monitor import LivenessMonitor  # noqa: E402
from render_bench.redis_client import reset_redis  # noqa: E402

FAKE_BACKEND = ROOT / "examples" / "fake_backend.py"


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging so handlers never outlive a captured stream."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)


@pytest.fixture
def tmp_data_dir(tmp_path, monkeypatch):
    """Set up temporary run data directory."""
    monkeypatch.setenv("BENCH_DATA_DIR", str(tmp_path / "runs"))
    return tmp_path / "runs"


@pytest.fixture
def fake_redis(monkeypatch):
    monkeypatch.setenv("FAKE_REDIS", "1")
    reset_redis()
    yield
    reset_redis()


@pytest.fixture
def backend():
    """Command template for the fake backend; extra options go before outputs."""

    def _command(*options):
        return [sys.executable, str(FAKE_BACKEND), *options]

    return _command


@pytest.fixture
def fast_monitor():
    return LivenessMonitor(poll_interval_sec=0.05, grace_period_sec=1.0, idle_warning_sec=30.0)
