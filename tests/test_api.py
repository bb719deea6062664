import sys
from pathlib import Path

from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from render_bench.api import app
from render_bench.report_store import ReportStore

FAKE_BACKEND = Path(__file__).resolve().parents[1] / "examples" / "fake_backend.py"


def _request(**overrides):
    body = {
        "command": [sys.executable, str(FAKE_BACKEND)],
        "count": 2,
        "mode": "parallel",
        "timeout_sec": 10,
    }
    body.update(overrides)
    return body


def test_health():
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_run_parallel_batch(tmp_data_dir, fake_redis):
    with TestClient(app) as client:
        resp = client.post("/runs", json=_request())
        assert resp.status_code == 200

        data = resp.json()
        assert data["total"] == 2
        assert data["succeeded"] == 2
        assert data["ok"] is True
        assert data["exit_code"] == 0
        assert {o["classification"] for o in data["outcomes"]} == {"success"}

        fetched = client.get(f"/runs/{data['run_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["outcomes"] == data["outcomes"]

        listed = client.get("/runs")
        assert data["run_id"] in listed.json()["runs"]

        log = client.get(f"/runs/{data['run_id']}/jobs/job-000/logs/stdout")
        assert log.status_code == 200
        assert "PDF saved to:" in log.text

    artifacts = list((tmp_data_dir / data["run_id"] / "artifacts").glob("*.pdf"))
    assert len(artifacts) == 2


def test_run_reports_failures(tmp_data_dir, fake_redis):
    with TestClient(app) as client:
        command = [sys.executable, str(FAKE_BACKEND), "--skip-artifact"]
        resp = client.post("/runs", json=_request(command=command, count=1, mode="sequential"))
        assert resp.status_code == 200

        data = resp.json()
        assert data["ok"] is False
        assert data["exit_code"] == 1
        assert data["missing_artifact"] == ["job-000"]
        assert data["outcomes"][0]["classification"] == "missing_artifact"


def test_run_missing_backend(tmp_data_dir, fake_redis, tmp_path):
    with TestClient(app) as client:
        resp = client.post("/runs", json=_request(command=[str(tmp_path / "nope")], count=1))
        assert resp.status_code == 200

        data = resp.json()
        assert data["outcomes"][0]["classification"] == "spawn_error"

        log = client.get(f"/runs/{data['run_id']}/jobs/job-000/logs/stderr")
        assert log.status_code == 200
        assert "failed to spawn process" in log.text


def test_run_invalid_request(tmp_data_dir, fake_redis):
    client = TestClient(app)
    resp = client.post("/runs", json=_request(count=0))
    assert resp.status_code == 422

    resp = client.post("/runs", json=_request(command=[]))
    assert resp.status_code == 422

    resp = client.post("/runs", json=_request(command=["  "]))
    assert resp.status_code == 422


def test_run_not_found(tmp_data_dir, fake_redis):
    with TestClient(app) as client:
        resp = client.get("/runs/nonexistent")
        assert resp.status_code == 404


def test_log_not_found(tmp_data_dir):
    client = TestClient(app)
    resp = client.get("/runs/nonexistent/jobs/job-000/logs/stdout")
    assert resp.status_code == 404

    resp = client.get("/runs/nonexistent/jobs/job-000/logs/trace")
    assert resp.status_code == 422


def test_run_survives_report_store_failure(tmp_data_dir, fake_redis, monkeypatch):
    async def broken_save(self, report):
        raise RedisConnectionError("redis is down")

    monkeypatch.setattr(ReportStore, "save", broken_save)
    with TestClient(app) as client:
        resp = client.post("/runs", json=_request(count=1))
        assert resp.status_code == 200
        assert resp.json()["succeeded"] == 1


def test_list_runs_limit_bounds(tmp_data_dir, fake_redis):
    with TestClient(app) as client:
        assert client.get("/runs", params={"limit": 0}).status_code == 422
        assert client.get("/runs", params={"limit": 10_000}).status_code == 422
        assert client.get("/runs", params={"limit": 5}).status_code == 200
