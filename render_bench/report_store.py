from __future__ import annotations

import redis.asyncio as redis

from render_bench.models import RunReport
from render_bench.redis_client import get_redis


class ReportStore:
    """Redis-backed store for finished run reports."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.redis = client or get_redis()
        self.key_prefix = "run:"
        self.index_key = "runs:index"

    def _key(self, run_id: str) -> str:
        return f"{self.key_prefix}{run_id}"

    async def save(self, report: RunReport) -> RunReport:
        await self.redis.set(self._key(report.run_id), report.model_dump_json())
        finished = report.finished_at.timestamp() if report.finished_at else 0.0
        await self.redis.zadd(self.index_key, {report.run_id: finished})
        return report

    async def get(self, run_id: str) -> RunReport:
        raw = await self.redis.get(self._key(run_id))
        if raw is None:
            raise KeyError(run_id)
        return RunReport.model_validate_json(raw)

    async def recent(self, limit: int = 20) -> list[str]:
        """Run ids, newest first."""
        ids = await self.redis.zrevrange(self.index_key, 0, limit - 1)
        return [self._decode(run_id) for run_id in ids]

    @staticmethod
    def _decode(value: str | bytes) -> str:
        if isinstance(value, bytes):
            return value.decode()
        return str(value)
