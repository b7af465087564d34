"""Unit tests for the SyncScheduler: schedules, first syncs and manual syncs."""

from datetime import datetime, timezone

import pytest

from fakes import FakeSyncJobRepository, FakeSyncStateRepository, scope_for
from knowledge_core.application.services.knowledge_registry import KnowledgeRegistry
from knowledge_core.application.services.sync_scheduler import (
    SyncScheduler,
    compute_next_run,
    payload_for,
)
from knowledge_core.config import IngestionConfig
from knowledge_core.domain.entities import JobStatus, KnowledgeBase, SyncState
from knowledge_core.domain.exceptions import KnowledgeBaseNotFoundError, ValidationError


def _kb(kb_id: str, schedule: str | None = "0 * * * *", **kwargs) -> KnowledgeBase:
    return KnowledgeBase(
        id=kb_id,
        name=kb_id,
        ingestion=IngestionConfig(
            source=f"https://github.com/acme/{kb_id}",
            refresh_schedule=schedule,
            extensions=[".md"],
            chunk_size=500,
            chunk_overlap=50,
        ),
        **kwargs,
    )


def _scheduler(kbs, states=None):
    repo = FakeSyncJobRepository()
    scheduler = SyncScheduler(
        KnowledgeRegistry(kbs),
        FakeSyncStateRepository(states),
        scope_for(repo),
        max_attempts=4,
    )
    return scheduler, repo


class TestScheduleAll:
    async def test_registers_schedules_and_first_syncs(self):
        scheduler, repo = _scheduler(
            [_kb("docs"), _kb("faq", schedule=None), KnowledgeBase(id="static", name="static")]
        )

        report = await scheduler.schedule_all()

        assert report.scheduled == ["docs"]
        assert report.immediate == ["docs", "faq"]
        assert report.not_ingestible == ["static"]
        assert list(repo.schedules) == ["kb-sync-docs"]
        jobs = sorted(repo.jobs.values(), key=lambda j: j.knowledge_base_id)
        assert [(j.knowledge_base_id, j.job_name) for j in jobs] == [
            ("docs", "immediate-sync"),
            ("faq", "immediate-sync"),
        ]
        assert all(j.max_attempts == 4 for j in jobs)

    async def test_already_synced_base_is_not_enqueued(self):
        scheduler, repo = _scheduler(
            [_kb("docs")], states={"docs": SyncState("docs", "abc123")}
        )

        report = await scheduler.schedule_all()

        assert report.immediate == []
        assert repo.jobs == {}
        assert "kb-sync-docs" in repo.schedules

    async def test_repeated_calls_are_idempotent(self):
        scheduler, repo = _scheduler([_kb("docs")])

        await scheduler.schedule_all()
        first_created = repo.schedules["kb-sync-docs"].created_at
        await scheduler.schedule_all()

        assert len(repo.schedules) == 1
        assert len(repo.jobs) == 1
        assert repo.schedules["kb-sync-docs"].created_at == first_created


class TestSchedule:
    async def test_schedule_carries_payload_and_next_run(self):
        scheduler, repo = _scheduler([_kb("docs", schedule="*/15 * * * *")])
        before = datetime.now(timezone.utc)

        schedule = await scheduler.schedule(_kb("docs", schedule="*/15 * * * *"))

        assert schedule.next_run_at > before
        assert schedule.next_run_at.minute % 15 == 0
        assert schedule.payload.chunk_size == 500
        assert schedule.payload.replace_existing is False
        assert schedule.version == "latest"

    async def test_schedule_without_cron_rejected(self):
        scheduler, _ = _scheduler([])
        with pytest.raises(ValidationError):
            await scheduler.schedule(_kb("docs", schedule=None))

    async def test_unschedule(self):
        scheduler, repo = _scheduler([_kb("docs")])
        await scheduler.schedule_all()

        assert await scheduler.unschedule("docs") is True
        assert await scheduler.unschedule("docs") is False
        assert repo.schedules == {}

    async def test_schedules_of_dropped_bases_are_removed(self):
        scheduler, repo = _scheduler([_kb("docs"), _kb("faq")])
        await scheduler.schedule_all()

        trimmed = SyncScheduler(
            KnowledgeRegistry([_kb("docs"), _kb("faq", schedule=None)]),
            FakeSyncStateRepository(),
            scope_for(repo),
        )
        report = await trimmed.schedule_all()

        assert report.unscheduled == ["faq"]
        assert list(repo.schedules) == ["kb-sync-docs"]


class TestRequestSync:
    async def test_manual_sync_replaces_existing_by_default(self):
        scheduler, repo = _scheduler([_kb("docs", versions=["latest", "v2"])])

        job, created = await scheduler.request_sync("docs/v2")

        assert created is True
        assert job.job_name == "manual-sync"
        assert job.version == "v2"
        assert job.payload.replace_existing is True
        assert job.status is JobStatus.QUEUED

    async def test_outstanding_job_is_reused(self):
        scheduler, repo = _scheduler([_kb("docs")])
        first, _ = await scheduler.request_sync("docs")

        second, created = await scheduler.request_sync("docs", replace_existing=False)

        assert created is False
        assert second.id == first.id
        assert len(repo.jobs) == 1

    async def test_unknown_reference(self):
        scheduler, _ = _scheduler([_kb("docs")])
        with pytest.raises(KnowledgeBaseNotFoundError):
            await scheduler.request_sync("nope")

    async def test_base_without_ingestion_rejected(self):
        scheduler, _ = _scheduler([KnowledgeBase(id="static", name="static")])
        with pytest.raises(ValidationError):
            await scheduler.request_sync("static")


def test_compute_next_run_treats_naive_as_utc():
    after = datetime(2026, 3, 1, 10, 30)
    assert compute_next_run("0 * * * *", after) == datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)


def test_payload_for_copies_ingestion_config():
    payload = payload_for(_kb("docs"), replace_existing=True)
    assert payload.source == "https://github.com/acme/docs"
    assert payload.extensions == [".md"]
    assert (payload.chunk_size, payload.chunk_overlap) == (500, 50)
    assert payload.replace_existing is True
