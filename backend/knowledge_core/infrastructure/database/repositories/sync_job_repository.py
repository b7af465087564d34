"""SQLAlchemy implementation of the SyncJobRepository: job queue plus recurring schedules."""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_core.application.interfaces.sync_job_repository import (
    SyncJobRepository,
    SyncJobRepositoryScope,
)
from knowledge_core.domain.entities.sync_job import (
    OUTSTANDING_STATUSES,
    JobStatus,
    SyncJob,
    SyncJobPayload,
    SyncSchedule,
)
from knowledge_core.infrastructure.database.models.sync_models import (
    KnowledgeSyncJobModel,
    KnowledgeSyncScheduleModel,
)
from knowledge_core.infrastructure.database.session import session_scope

logger = logging.getLogger(__name__)

_OUTSTANDING = [s.value for s in OUTSTANDING_STATUSES]


class SQLAlchemySyncJobRepository(SyncJobRepository):
    """Concrete sync job repository backed by PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_outstanding(self, job_key: str) -> SyncJob | None:
        result = await self._session.execute(
            select(KnowledgeSyncJobModel)
            .where(KnowledgeSyncJobModel.job_key == job_key)
            .where(KnowledgeSyncJobModel.status.in_(_OUTSTANDING))
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def enqueue(self, job: SyncJob) -> tuple[SyncJob, bool]:
        existing = await self.get_outstanding(job.job_key)
        if existing is not None:
            return existing, False

        if not job.id:
            job.id = str(uuid.uuid4())

        # The partial unique index on job_key settles races between workers
        try:
            async with self._session.begin_nested():
                self._session.add(self._to_model(job))
        except IntegrityError:
            existing = await self.get_outstanding(job.job_key)
            if existing is None:
                raise
            return existing, False
        return job, True

    async def claim_due(self, now: datetime, limit: int = 5) -> list[SyncJob]:
        result = await self._session.execute(
            select(KnowledgeSyncJobModel)
            .where(KnowledgeSyncJobModel.status == JobStatus.QUEUED.value)
            .where(KnowledgeSyncJobModel.run_after <= now)
            .order_by(KnowledgeSyncJobModel.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        jobs = []
        for model in result.scalars().all():
            job = self._to_domain(model)
            job.mark_processing(f"Syncing {job.knowledge_base_id}/{job.version}")
            self._apply(model, job)
            jobs.append(job)
        await self._session.flush()
        return jobs

    async def update(self, job: SyncJob) -> SyncJob:
        model = await self._get_model(job.id)
        if model is None:
            raise ValueError(f"SyncJob with id {job.id} not found")
        self._apply(model, job)
        await self._session.flush()
        return job

    async def requeue_stale(self) -> int:
        result = await self._session.execute(
            select(KnowledgeSyncJobModel)
            .where(KnowledgeSyncJobModel.status == JobStatus.PROCESSING.value)
            .with_for_update(skip_locked=True)
        )
        models = result.scalars().all()
        for model in models:
            job = self._to_domain(model)
            job.mark_requeued()
            self._apply(model, job)
        await self._session.flush()
        return len(models)

    # ── Schedules ────────────────────────────────────────────────────

    async def upsert_schedule(self, schedule: SyncSchedule) -> SyncSchedule:
        now = datetime.now(timezone.utc)
        statement = pg_insert(KnowledgeSyncScheduleModel).values(
            schedule_key=schedule.schedule_key,
            knowledge_base_id=schedule.knowledge_base_id,
            version=schedule.version,
            cron=schedule.cron,
            payload=schedule.payload.to_dict(),
            next_run_at=schedule.next_run_at,
            created_at=schedule.created_at,
            updated_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[KnowledgeSyncScheduleModel.schedule_key],
            set_={
                "knowledge_base_id": statement.excluded.knowledge_base_id,
                "version": statement.excluded.version,
                "cron": statement.excluded.cron,
                "payload": statement.excluded.payload,
                "next_run_at": statement.excluded.next_run_at,
                "updated_at": statement.excluded.updated_at,
            },
        )
        await self._session.execute(statement)
        schedule.updated_at = now
        return schedule

    async def remove_schedule(self, schedule_key: str) -> bool:
        result = await self._session.execute(
            delete(KnowledgeSyncScheduleModel)
            .where(KnowledgeSyncScheduleModel.schedule_key == schedule_key)
        )
        await self._session.flush()
        return result.rowcount > 0

    async def get_schedules(self) -> list[SyncSchedule]:
        result = await self._session.execute(
            select(KnowledgeSyncScheduleModel).order_by(KnowledgeSyncScheduleModel.schedule_key)
        )
        return [self._schedule_to_domain(m) for m in result.scalars().all()]

    async def get_due_schedules(self, now: datetime) -> list[SyncSchedule]:
        # Locked until commit so concurrent workers fire each schedule once
        result = await self._session.execute(
            select(KnowledgeSyncScheduleModel)
            .where(KnowledgeSyncScheduleModel.next_run_at <= now)
            .order_by(KnowledgeSyncScheduleModel.next_run_at)
            .with_for_update(skip_locked=True)
        )
        return [self._schedule_to_domain(m) for m in result.scalars().all()]

    # ── Mapping ──────────────────────────────────────────────────────

    async def _get_model(self, job_id: str | None) -> KnowledgeSyncJobModel | None:
        if not job_id:
            return None
        result = await self._session.execute(
            select(KnowledgeSyncJobModel).where(KnowledgeSyncJobModel.id == job_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(model: KnowledgeSyncJobModel, job: SyncJob) -> None:
        model.status = job.status.value
        model.attempts = job.attempts
        model.run_after = job.run_after
        model.progress_message = job.progress_message
        model.result = job.result
        model.error_message = job.error_message
        model.started_at = job.started_at
        model.completed_at = job.completed_at

    @staticmethod
    def _to_model(job: SyncJob) -> KnowledgeSyncJobModel:
        return KnowledgeSyncJobModel(
            id=job.id,
            job_key=job.job_key,
            job_name=job.job_name,
            knowledge_base_id=job.knowledge_base_id,
            version=job.version,
            payload=job.payload.to_dict(),
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            run_after=job.run_after,
            progress_message=job.progress_message,
            result=job.result,
            error_message=job.error_message,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    @staticmethod
    def _to_domain(model: KnowledgeSyncJobModel) -> SyncJob:
        return SyncJob(
            id=model.id,
            job_key=model.job_key,
            job_name=model.job_name,
            knowledge_base_id=model.knowledge_base_id,
            version=model.version,
            payload=SyncJobPayload.from_dict(model.payload or {}),
            status=JobStatus(model.status),
            attempts=model.attempts,
            max_attempts=model.max_attempts,
            run_after=model.run_after,
            progress_message=model.progress_message,
            result=model.result,
            error_message=model.error_message,
            created_at=model.created_at,
            started_at=model.started_at,
            completed_at=model.completed_at,
        )

    @staticmethod
    def _schedule_to_domain(model: KnowledgeSyncScheduleModel) -> SyncSchedule:
        return SyncSchedule(
            schedule_key=model.schedule_key,
            knowledge_base_id=model.knowledge_base_id,
            version=model.version,
            cron=model.cron,
            payload=SyncJobPayload.from_dict(model.payload or {}),
            next_run_at=model.next_run_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


def sync_job_repository_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> SyncJobRepositoryScope:
    """Bind the repository to a session factory: one committed transaction per scope."""

    @asynccontextmanager
    async def scope() -> AsyncIterator[SyncJobRepository]:
        async with session_scope(session_factory) as session:
            yield SQLAlchemySyncJobRepository(session)

    return scope
