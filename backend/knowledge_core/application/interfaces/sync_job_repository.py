"""Abstract repository interface (port) for the sync job queue and its schedules."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from knowledge_core.domain.entities.sync_job import SyncJob, SyncSchedule


class SyncJobRepository(ABC):
    """Port for sync job persistence, implemented in the infrastructure layer.

    Implementations are bound to one unit of work; the caller commits.
    """

    @abstractmethod
    async def get_outstanding(self, job_key: str) -> SyncJob | None:
        """Return the queued or processing job holding `job_key`, if any."""
        ...

    @abstractmethod
    async def enqueue(self, job: SyncJob) -> tuple[SyncJob, bool]:
        """Persist a new job unless one with the same key is outstanding.

        Returns:
            (job, created): the existing outstanding job and False when the
            key is taken, otherwise the new job and True.
        """
        ...

    @abstractmethod
    async def claim_due(self, now: datetime, limit: int = 5) -> list[SyncJob]:
        """Atomically move up to `limit` runnable queued jobs to processing (FIFO)."""
        ...

    @abstractmethod
    async def update(self, job: SyncJob) -> SyncJob:
        """Update an existing job."""
        ...

    @abstractmethod
    async def requeue_stale(self) -> int:
        """Return jobs left in processing (e.g. by a crashed worker) to the queue."""
        ...

    # ── Schedules ────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_schedule(self, schedule: SyncSchedule) -> SyncSchedule:
        """Create or replace the schedule stored under `schedule.schedule_key`."""
        ...

    @abstractmethod
    async def remove_schedule(self, schedule_key: str) -> bool:
        """Delete a schedule. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def get_schedules(self) -> list[SyncSchedule]:
        """Every stored schedule, ordered by key."""
        ...

    @abstractmethod
    async def get_due_schedules(self, now: datetime) -> list[SyncSchedule]:
        """Schedules whose next run time is at or before `now`."""
        ...


# Opens a unit of work: yields a repository, commits on clean exit, rolls back on error.
SyncJobRepositoryScope = Callable[[], AbstractAsyncContextManager[SyncJobRepository]]
