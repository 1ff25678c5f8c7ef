from __future__ import annotations

import logging
from typing import Any

from forecast_accuracy.analytics.leaderboard import Leaderboard
from forecast_accuracy.api.jobs import WorkerJobClient, build_start_command
from forecast_accuracy.config import AppConfig
from forecast_accuracy.pipeline import reindex

logger = logging.getLogger(__name__)


class AccuracyService:
    """Transport-agnostic surface for score queries and reindex jobs."""

    def __init__(self, conn, config: AppConfig, job_client: WorkerJobClient | None = None) -> None:
        self.conn = conn
        self.config = config
        self.leaderboard = Leaderboard(conn, config.leaderboard, config.scoring)
        self._job_client = job_client

    def forecaster_score(self, attester: str) -> dict[str, Any] | None:
        return self.leaderboard.forecaster_score(attester)

    def top_forecasters(self, limit: int | None = None) -> list[dict[str, Any]]:
        return self.leaderboard.top_forecasters(limit)

    def accuracy_rank_by_address(self, attester: str) -> dict[str, Any]:
        return self.leaderboard.accuracy_rank_by_address(attester)

    def reindex_accuracy(self, address: str | None = None, market_id: str | None = None) -> dict[str, Any]:
        try:
            return reindex.reindex_accuracy(self.conn, self.config, address=address, market_id=market_id)
        finally:
            self.leaderboard.invalidate()

    def backfill_accuracy(self) -> dict[str, Any]:
        try:
            return reindex.backfill_accuracy(self.conn, self.config)
        finally:
            self.leaderboard.invalidate()

    def status(self, job: str = reindex.REINDEX_JOB) -> dict[str, Any]:
        return reindex.job_status(self.conn, job)

    def trigger_reindex(self, address: str | None = None, market_id: str | None = None) -> dict[str, Any]:
        """Run a reindex here, or start it on the background worker when remote jobs are enabled."""
        if not self.config.jobs.remote:
            return {"mode": "local", "result": self.reindex_accuracy(address, market_id)}

        jobs_config = self.config.jobs
        client = self._job_client
        if client is None:
            client = WorkerJobClient(
                base_url=jobs_config.api_base_url,
                timeout_s=jobs_config.request_timeout_s,
            )
        worker = client.find_worker(client.list_services(), jobs_config.service_name_prefix, jobs_config.branch)
        if worker is None:
            raise RuntimeError("Background worker not found")
        start_command = build_start_command(jobs_config.command, "reindex", address, market_id)
        job = client.create_job(worker["id"], start_command)
        logger.info("Started remote job %s on %s: %s", job.get("id"), worker["id"], start_command)
        return {"mode": "remote", "job": job}
