from __future__ import annotations

from pathlib import Path
from typing import Literal
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse
from redis.exceptions import RedisError

from render_bench import config
from render_bench.batch import build_batch, output_paths_for
from render_bench.errors import ConfigurationError
from render_bench.logging_config import get_logger
from render_bench.models import RunReport, RunRequest
from render_bench.report_store import ReportStore
from render_bench.runner import monitor_from_settings, run_batch
from render_bench.settings import get_settings

logger = get_logger(__name__)

MAX_LISTED_RUNS = 200

API_DESCRIPTION = """
Render backend benchmark - run a batch of HTML-to-PDF backend invocations
and collect timing, memory and artifact statistics.

## Backend contract

The backend is invoked as `<command...> <output.pdf>`, or as
`<command...> --sequential <out1.pdf> ... <outN.pdf>` when `per_process > 1`.
For every artifact it writes it must print a line containing
`PDF saved to: <path>` to stdout and exit 0 once all artifacts are done.
An optional `Memory usage: X MB (peak: Y MB, delta: Z MB)` line is picked
up as telemetry.

## Outcomes

Each job is classified as `success`, `failed_exit`, `timed_out_no_signal`,
`timed_out_after_signal`, `missing_artifact` or `spawn_error`.
A job only succeeds if it exits 0 *and* its artifact exists on disk.
"""

app = FastAPI(
    title="Render Backend Benchmark",
    version="0.1.0",
    description=API_DESCRIPTION,
)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/runs", response_model=RunReport)
async def create_run(request: RunRequest) -> RunReport:
    settings = get_settings()
    run_id = uuid4().hex
    paths = config.run_paths(run_id)
    try:
        outputs = output_paths_for(paths.artifacts, request.count, request.stem)
        batch = build_batch(
            request.command,
            outputs,
            timeout_sec=request.timeout_sec or settings.job_timeout_sec,
            success_pattern=request.success_pattern or settings.success_pattern,
            per_process=request.per_process,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    report = await run_batch(
        batch,
        request.mode,
        paths.logs,
        run_id=run_id,
        monitor=monitor_from_settings(settings),
    )
    try:
        await ReportStore().save(report)
    except RedisError as exc:
        # a finished run is still returned when storage is down
        logger.error("report_store_failed", run_id=run_id, error=str(exc))
    return report


@app.get("/runs")
async def list_runs(limit: int = Query(20, ge=1, le=MAX_LISTED_RUNS)):
    return {"runs": await ReportStore().recent(limit)}


@app.get("/runs/{run_id}", response_model=RunReport)
async def get_run(run_id: str) -> RunReport:
    try:
        return await ReportStore().get(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="run not found") from exc


@app.get("/runs/{run_id}/jobs/{job_id}/logs/{stream}")
async def download_log(run_id: str, job_id: str, stream: Literal["stdout", "stderr"]):
    path = (
        config.data_dir()
        / Path(run_id).name
        / "logs"
        / Path(job_id).name
        / f"{stream}.log"
    )
    if not path.is_file():
        raise HTTPException(status_code=404, detail="log not found")
    return FileResponse(path, media_type="text/plain")
