from __future__ import annotations


class BenchError(Exception):
    """Base class for orchestrator errors."""


class ConfigurationError(BenchError):
    """Invalid batch or settings; raised before any process is spawned."""


class SpawnError(BenchError):
    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(f"{job_id}: {message}")
        self.job_id = job_id
        self.message = message
