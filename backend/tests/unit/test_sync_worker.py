"""Unit tests for the SyncWorker: job execution, retries and schedule firing."""

from datetime import datetime, timedelta, timezone

import pytest

from fakes import FakeSyncJobRepository, scope_for
from knowledge_core.application.services.sync_worker import SyncWorker, WorkerStats, retry_delay
from knowledge_core.domain.entities import (
    IngestResult,
    JobStatus,
    SyncJob,
    SyncJobPayload,
    SyncSchedule,
    SyncType,
)
from knowledge_core.domain.exceptions import ProviderError, ValidationError


# ── Fakes ────────────────────────────────────────────────────────────


class FakePipeline:
    """Ingestion pipeline double that replays scripted outcomes."""

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, str, str, object]] = []

    async def ingest(self, knowledge_base_id, version, source, options=None):
        self.calls.append((knowledge_base_id, version, source, options))
        outcome = self._outcomes.pop(0) if self._outcomes else IngestResult(SyncType.SKIPPED, "sha")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _payload(**kwargs) -> SyncJobPayload:
    return SyncJobPayload(source="https://github.com/acme/docs", **kwargs)


def _job(kb_id: str = "docs", **kwargs) -> SyncJob:
    return SyncJob(knowledge_base_id=kb_id, version="latest", payload=_payload(), **kwargs)


def _worker(
    pipeline: FakePipeline,
    repo: FakeSyncJobRepository,
    *,
    retry_base_delay: float = 30.0,
    **kwargs,
) -> SyncWorker:
    return SyncWorker(
        pipeline,
        scope_for(repo),
        poll_interval=0.01,
        retry_base_delay=retry_base_delay,
        **kwargs,
    )


# ── Tests ────────────────────────────────────────────────────────────


class TestProcessJob:
    async def test_successful_job_completes_with_result(self):
        repo = FakeSyncJobRepository()
        await repo.enqueue(_job())
        pipeline = FakePipeline(
            IngestResult(SyncType.FULL, "abc", documents_processed=3, chunks_created=9, added=3)
        )
        worker = _worker(pipeline, repo)

        assert await worker.run_once() == 1

        (job,) = repo.jobs.values()
        assert job.status is JobStatus.COMPLETED
        assert job.result["type"] == "full"
        assert job.result["chunks_created"] == 9
        assert job.attempts == 1
        assert worker.stats == WorkerStats(full=1)
        kb, version, source, options = pipeline.calls[0]
        assert (kb, version, source) == ("docs", "latest", "https://github.com/acme/docs")
        assert options.extensions == [".md", ".txt"]

    async def test_transient_failure_is_retried_with_backoff(self):
        repo = FakeSyncJobRepository()
        await repo.enqueue(_job(max_attempts=3))
        worker = _worker(FakePipeline(ProviderError("github", "boom", 502)), repo)
        before = datetime.now(timezone.utc)

        await worker.run_once()

        (job,) = repo.jobs.values()
        assert job.status is JobStatus.QUEUED
        assert job.attempts == 1
        assert "boom" in job.error_message
        assert job.run_after >= before + timedelta(seconds=30)
        assert worker.stats.retried == 1

        # not runnable until the backoff expires
        assert await worker.run_once() == 0

    async def test_exhausted_attempts_fail_the_job(self):
        repo = FakeSyncJobRepository()
        await repo.enqueue(_job(max_attempts=2))
        worker = _worker(
            FakePipeline(ProviderError("github", "down"), ProviderError("github", "still down")),
            repo,
            retry_base_delay=0.0,
        )

        await worker.run_once()
        await worker.run_once()

        (job,) = repo.jobs.values()
        assert job.status is JobStatus.FAILED
        assert job.attempts == 2
        assert "still down" in job.error_message
        assert (worker.stats.retried, worker.stats.failed) == (1, 1)

    async def test_validation_error_is_not_retried(self):
        repo = FakeSyncJobRepository()
        await repo.enqueue(_job(max_attempts=5))
        worker = _worker(FakePipeline(ValidationError("bad source url")), repo)

        await worker.run_once()

        (job,) = repo.jobs.values()
        assert job.status is JobStatus.FAILED
        assert job.attempts == 1
        assert worker.stats.failed == 1

    async def test_invalid_payload_fails_without_running_pipeline(self):
        repo = FakeSyncJobRepository()
        job = _job()
        job.payload = _payload(chunk_size=100, chunk_overlap=0, extensions=[])
        await repo.enqueue(job)
        pipeline = FakePipeline()

        await _worker(pipeline, repo).run_once()

        assert pipeline.calls == []
        assert job.status is JobStatus.FAILED

    async def test_completed_job_frees_the_key(self):
        repo = FakeSyncJobRepository()
        first, _ = await repo.enqueue(_job())
        await _worker(FakePipeline(), repo).run_once()

        second, created = await repo.enqueue(_job())

        assert created is True
        assert second.id != first.id

    async def test_concurrency_is_bounded(self):
        repo = FakeSyncJobRepository()
        for kb_id in ("a", "b", "c"):
            await repo.enqueue(_job(kb_id))
        worker = _worker(FakePipeline(), repo, max_concurrent_jobs=2)

        assert await worker.run_once() == 2
        assert await worker.run_once() == 1


class TestSchedules:
    async def test_due_schedule_enqueues_and_advances(self):
        repo = FakeSyncJobRepository()
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        await repo.upsert_schedule(
            SyncSchedule(
                schedule_key="kb-sync-docs",
                knowledge_base_id="docs",
                version="latest",
                cron="*/5 * * * *",
                payload=_payload(),
                next_run_at=past,
            )
        )
        worker = _worker(FakePipeline(), repo, max_attempts=7)

        assert await worker.fire_due_schedules() == 1

        (job,) = repo.jobs.values()
        assert job.job_name == "sync"
        assert job.max_attempts == 7
        assert repo.schedules["kb-sync-docs"].next_run_at > datetime.now(timezone.utc)
        assert await worker.fire_due_schedules() == 0

    async def test_schedule_firing_while_job_outstanding_is_deduplicated(self):
        repo = FakeSyncJobRepository()
        existing, _ = await repo.enqueue(_job(job_name="manual-sync"))
        await repo.upsert_schedule(
            SyncSchedule(
                schedule_key="kb-sync-docs",
                knowledge_base_id="docs",
                version="latest",
                cron="0 * * * *",
                payload=_payload(),
                next_run_at=datetime.now(timezone.utc) - timedelta(seconds=1),
            )
        )

        await _worker(FakePipeline(), repo).fire_due_schedules()

        assert list(repo.jobs) == [existing.id]


class TestLifecycle:
    async def test_start_requeues_stale_jobs(self):
        repo = FakeSyncJobRepository()
        job, _ = await repo.enqueue(_job())
        job.mark_processing()
        worker = _worker(FakePipeline(), repo)

        await worker.start()
        try:
            assert worker.is_running
        finally:
            await worker.stop()

        assert not worker.is_running
        assert job.status in (JobStatus.QUEUED, JobStatus.COMPLETED)
        assert job.status is not JobStatus.PROCESSING


def test_retry_delay_doubles():
    assert retry_delay(1, 30.0) == timedelta(seconds=30)
    assert retry_delay(2, 30.0) == timedelta(seconds=60)
    assert retry_delay(3, 30.0) == timedelta(seconds=120)


def test_stats_record_by_sync_type():
    stats = WorkerStats()
    for sync_type in (SyncType.FULL, SyncType.INCREMENTAL, SyncType.SKIPPED, SyncType.SKIPPED):
        stats.record(IngestResult(sync_type, "sha"))
    assert (stats.full, stats.incremental, stats.skipped) == (1, 1, 2)
