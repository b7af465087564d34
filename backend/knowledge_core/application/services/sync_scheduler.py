"""Sync scheduler: registers recurring syncs and enqueues one-off sync jobs."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from croniter import croniter

from knowledge_core.application.interfaces.sync_job_repository import SyncJobRepositoryScope
from knowledge_core.application.interfaces.sync_state_repository import SyncStateRepository
from knowledge_core.application.services.knowledge_registry import KnowledgeRegistry
from knowledge_core.domain.entities.knowledge_base import KnowledgeBase
from knowledge_core.domain.entities.sync_job import (
    SyncJob,
    SyncJobPayload,
    SyncSchedule,
    schedule_key_for,
)
from knowledge_core.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)


def compute_next_run(cron: str, after: datetime) -> datetime:
    """First fire time of `cron` strictly after `after` (UTC)."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    return croniter(cron, after).get_next(datetime)


def payload_for(kb: KnowledgeBase, *, replace_existing: bool = False) -> SyncJobPayload:
    if kb.ingestion is None:
        raise ValidationError(f"Knowledge base '{kb.id}' has no ingestion config")
    return SyncJobPayload(
        source=kb.ingestion.source,
        extensions=list(kb.ingestion.extensions),
        chunk_size=kb.ingestion.chunk_size,
        chunk_overlap=kb.ingestion.chunk_overlap,
        replace_existing=replace_existing,
    )


@dataclass
class ScheduleReport:
    """What one `schedule_all` call did, by knowledge base id."""

    scheduled: list[str] = field(default_factory=list)
    immediate: list[str] = field(default_factory=list)
    not_ingestible: list[str] = field(default_factory=list)
    unscheduled: list[str] = field(default_factory=list)


class SyncScheduler:
    """Turns registry ingestion configs into schedules and queued sync jobs."""

    def __init__(
        self,
        registry: KnowledgeRegistry,
        sync_state_repository: SyncStateRepository,
        job_repository_scope: SyncJobRepositoryScope,
        *,
        max_attempts: int = 3,
    ):
        self._registry = registry
        self._states = sync_state_repository
        self._job_scope = job_repository_scope
        self._max_attempts = max_attempts

    async def schedule_all(self) -> ScheduleReport:
        """Register recurring syncs and kick off first syncs for every knowledge base.

        Safe to call on every start: schedules are upserted by key and enqueueing
        is deduplicated per knowledge base.
        """
        report = ScheduleReport()
        report.unscheduled = await self.remove_orphaned_schedules()

        for kb in self._registry.all():
            if kb.ingestion is None:
                report.not_ingestible.append(kb.id)
                continue

            if kb.ingestion.refresh_schedule:
                await self.schedule(kb)
                report.scheduled.append(kb.id)

            if await self._states.get(kb.id) is None:
                await self.enqueue(kb, job_name="immediate-sync")
                report.immediate.append(kb.id)

        logger.info(
            "Scheduling done: %d recurring, %d immediate, %d without ingestion config, %d removed",
            len(report.scheduled),
            len(report.immediate),
            len(report.not_ingestible),
            len(report.unscheduled),
        )
        return report

    async def schedule(self, kb: KnowledgeBase) -> SyncSchedule:
        """Create or replace the recurring sync of one knowledge base."""
        if kb.ingestion is None or not kb.ingestion.refresh_schedule:
            raise ValidationError(f"Knowledge base '{kb.id}' has no refresh schedule")

        cron = kb.ingestion.refresh_schedule
        now = datetime.now(timezone.utc)
        schedule = SyncSchedule(
            schedule_key=schedule_key_for(kb.id),
            knowledge_base_id=kb.id,
            version=kb.default_version,
            cron=cron,
            payload=payload_for(kb),
            next_run_at=compute_next_run(cron, now),
        )
        async with self._job_scope() as repo:
            schedule = await repo.upsert_schedule(schedule)

        logger.info(
            "Scheduled %s with cron %r, next run at %s",
            kb.id,
            cron,
            schedule.next_run_at.isoformat(),
        )
        return schedule

    async def unschedule(self, knowledge_base_id: str) -> bool:
        async with self._job_scope() as repo:
            removed = await repo.remove_schedule(schedule_key_for(knowledge_base_id))
        if removed:
            logger.info("Unscheduled %s", knowledge_base_id)
        return removed

    async def remove_orphaned_schedules(self) -> list[str]:
        """Drop stored schedules of knowledge bases that no longer declare one.

        Returns the knowledge base ids whose schedule was removed.
        """
        wanted = {
            kb.id
            for kb in self._registry.all()
            if kb.ingestion is not None and kb.ingestion.refresh_schedule
        }
        async with self._job_scope() as repo:
            stored = await repo.get_schedules()

        removed = []
        for schedule in stored:
            if schedule.knowledge_base_id in wanted:
                continue
            if await self.unschedule(schedule.knowledge_base_id):
                removed.append(schedule.knowledge_base_id)
        return removed

    async def request_sync(
        self, knowledge_base_ref: str, *, replace_existing: bool = True
    ) -> tuple[SyncJob, bool]:
        """Manually trigger a sync of `kb` or `kb/version`.

        Returns:
            (job, created) where `created` is False when a sync of this
            knowledge base was already queued or running.
        """
        kb, version = self._registry.resolve(knowledge_base_ref)
        return await self.enqueue(
            kb, version=version, job_name="manual-sync", replace_existing=replace_existing
        )

    async def enqueue(
        self,
        kb: KnowledgeBase,
        *,
        version: str | None = None,
        job_name: str = "sync",
        replace_existing: bool = False,
    ) -> tuple[SyncJob, bool]:
        job = SyncJob(
            knowledge_base_id=kb.id,
            version=version or kb.default_version,
            payload=payload_for(kb, replace_existing=replace_existing),
            job_name=job_name,
            max_attempts=self._max_attempts,
        )
        async with self._job_scope() as repo:
            job, created = await repo.enqueue(job)

        if created:
            logger.info("Enqueued %s job %s for %s/%s", job_name, job.id, kb.id, job.version)
        else:
            logger.info(
                "Sync of %s already %s (job %s), not enqueueing %s",
                kb.id,
                job.status.value,
                job.id,
                job_name,
            )
        return job, created
