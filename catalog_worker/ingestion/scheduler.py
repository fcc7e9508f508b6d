"""
Scheduler Module
================

Polls for pending ingestion jobs and runs them one at a time.
"""

from __future__ import annotations

import asyncio
import logging

from catalog_worker.ingestion.jobs import IngestionRunner

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 120.0
DEFAULT_BATCH_SIZE = 10


class Scheduler:
    """
    Periodic job poller with an explicit start/stop lifecycle.

    The first tick runs immediately on start(), then one every interval
    seconds. Ticks never overlap: jobs within a tick run sequentially and
    the next wait starts only after the tick finishes.
    """

    def __init__(
        self,
        runner: IngestionRunner,
        interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.runner = runner
        self.interval = interval
        self.batch_size = batch_size
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Spawn the polling task; calling start() twice is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name="catalog-scheduler")
            logger.info(f"Scheduler started (interval={self.interval}s)")
        return self._task

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduler stopped")

    async def run_forever(self) -> None:
        """Run the scheduler until the surrounding task is cancelled."""
        task = self.start()
        try:
            await task
        finally:
            await self.stop()

    async def tick(self) -> int:
        """
        Run one polling cycle.

        Returns:
            Number of jobs attempted
        """
        try:
            job_ids = self.runner.get_pending_job_ids(limit=self.batch_size)
        except Exception:
            logger.exception("Failed to list pending jobs")
            return 0

        for job_id in job_ids:
            try:
                await self.runner.run_job(job_id)
            except Exception as e:
                # The runner has already recorded the failure on the job
                logger.warning(f"Job {job_id} failed: {e}")
        return len(job_ids)

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)
