"""Sync worker: asyncio daemon that fires due schedules and runs queued sync jobs."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from knowledge_core.application.interfaces.sync_job_repository import SyncJobRepositoryScope
from knowledge_core.application.services.ingestion_service import (
    IngestionOptions,
    IngestionPipeline,
)
from knowledge_core.application.services.sync_scheduler import compute_next_run
from knowledge_core.domain.entities.sync import IngestResult, SyncType
from knowledge_core.domain.entities.sync_job import SyncJob
from knowledge_core.domain.exceptions import ValidationError
from knowledge_core.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("SyncWorker")

POLL_INTERVAL = 5.0
MAX_CONCURRENT_JOBS = 2
RETRY_BASE_DELAY = 30.0


@dataclass
class WorkerStats:
    """Outcome counters since the worker started."""

    full: int = 0
    incremental: int = 0
    skipped: int = 0
    failed: int = 0
    retried: int = 0

    def record(self, result: IngestResult) -> None:
        if result.sync_type is SyncType.FULL:
            self.full += 1
        elif result.sync_type is SyncType.INCREMENTAL:
            self.incremental += 1
        else:
            self.skipped += 1


def retry_delay(attempts: int, base_delay: float) -> timedelta:
    """Exponential backoff after the `attempts`-th failed attempt."""
    return timedelta(seconds=base_delay * 2 ** max(attempts - 1, 0))


class SyncWorker:
    """Asyncio daemon that polls the sync job table and executes queued syncs.

    Each tick first turns due schedules into queued jobs, then claims as many
    runnable jobs as there are free slots. Every job runs the ingestion
    pipeline; its outcome (or error) is written back in its own transaction.
    Jobs for different knowledge bases run concurrently; the queue never
    holds two outstanding jobs for the same one.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        job_repository_scope: SyncJobRepositoryScope,
        *,
        poll_interval: float = POLL_INTERVAL,
        max_concurrent_jobs: int = MAX_CONCURRENT_JOBS,
        retry_base_delay: float = RETRY_BASE_DELAY,
        max_attempts: int = 3,
    ) -> None:
        self._pipeline = pipeline
        self._job_scope = job_repository_scope
        self._poll_interval = poll_interval
        self._max_concurrent_jobs = max_concurrent_jobs
        self._retry_base_delay = retry_base_delay
        self._max_attempts = max_attempts
        self._running = False
        self._task: asyncio.Task | None = None
        self._active: set[asyncio.Task] = set()
        self.stats = WorkerStats()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Requeue jobs abandoned by a previous process, then start the polling loop."""
        async with self._job_scope() as repo:
            requeued = await repo.requeue_stale()
        if requeued:
            logger.warning("Requeued %d sync jobs left in processing", requeued)

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "SyncWorker started (poll=%.1fs, max_concurrent_jobs=%d)",
            self._poll_interval,
            self._max_concurrent_jobs,
        )

    async def stop(self) -> None:
        """Stop polling and wait for running jobs to finish their current run."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._active:
            logger.info("Waiting for %d running sync jobs", len(self._active))
            await asyncio.gather(*self._active, return_exceptions=True)
        logger.info("SyncWorker stopped (%s)", self.stats)

    async def run_once(self) -> int:
        """One full tick that also waits for the jobs it started. Returns jobs run."""
        started = await self._tick()
        if started:
            await asyncio.gather(*started, return_exceptions=True)
        return len(started)

    async def _loop(self) -> None:
        """Main polling loop: fires schedules and dispatches queued jobs."""
        while self._running:
            try:
                await self._tick()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("SyncWorker polling error")

            await asyncio.sleep(self._poll_interval)

    async def _tick(self) -> list[asyncio.Task]:
        await self.fire_due_schedules()

        free_slots = self._max_concurrent_jobs - len(self._active)
        if free_slots <= 0:
            return []

        now = datetime.now(timezone.utc)
        async with self._job_scope() as repo:
            jobs = await repo.claim_due(now, limit=free_slots)

        started = []
        for job in jobs:
            task = asyncio.create_task(self.process_job(job))
            self._active.add(task)
            task.add_done_callback(self._active.discard)
            started.append(task)
        return started

    async def fire_due_schedules(self) -> int:
        """Enqueue a job for every due schedule and advance its next run time."""
        now = datetime.now(timezone.utc)
        fired = 0
        async with self._job_scope() as repo:
            for schedule in await repo.get_due_schedules(now):
                job, created = await repo.enqueue(
                    SyncJob(
                        knowledge_base_id=schedule.knowledge_base_id,
                        version=schedule.version,
                        payload=schedule.payload,
                        job_name="sync",
                        max_attempts=self._max_attempts,
                    )
                )
                schedule.next_run_at = compute_next_run(schedule.cron, now)
                schedule.updated_at = now
                await repo.upsert_schedule(schedule)
                fired += 1

                if created:
                    plog.step_start(
                        PipelineStage.SCHEDULE,
                        f"Scheduled sync of {schedule.knowledge_base_id} enqueued",
                        job=job.id,
                        next_run=schedule.next_run_at.isoformat(),
                    )
                else:
                    logger.info(
                        "Schedule %s fired while job %s is %s; not enqueueing",
                        schedule.schedule_key,
                        job.id,
                        job.status.value,
                    )
        return fired

    async def process_job(self, job: SyncJob) -> SyncJob:
        """Run one claimed job and persist its outcome."""
        logger.info(
            "Processing %s job %s for %s/%s (attempt %d/%d)",
            job.job_name,
            job.id,
            job.knowledge_base_id,
            job.version,
            job.attempts,
            job.max_attempts,
        )

        try:
            options = IngestionOptions.from_payload(job.payload)
            result = await self._pipeline.ingest(
                job.knowledge_base_id, job.version, job.payload.source, options
            )
        except ValidationError as e:
            logger.exception("Sync job %s is invalid, not retrying", job.id)
            job.mark_failed(str(e))
            self.stats.failed += 1
        except Exception as e:
            if job.attempts < job.max_attempts:
                delay = retry_delay(job.attempts, self._retry_base_delay)
                logger.exception(
                    "Sync job %s failed, retrying in %ds", job.id, delay.total_seconds()
                )
                job.mark_retry(str(e), delay)
                self.stats.retried += 1
            else:
                logger.exception(
                    "Sync job %s failed after %d attempts", job.id, job.attempts
                )
                job.mark_failed(str(e))
                self.stats.failed += 1
        else:
            job.mark_completed(result.to_dict())
            self.stats.record(result)

        async with self._job_scope() as repo:
            await repo.update(job)
        return job
