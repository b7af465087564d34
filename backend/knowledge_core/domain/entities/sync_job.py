"""Domain entities for sync jobs: database-backed job queue and recurring schedules."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Lifecycle states of a sync job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


OUTSTANDING_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


def job_key_for(knowledge_base_id: str) -> str:
    """Dedup key: at most one outstanding job per knowledge base."""
    return f"kb-sync:{knowledge_base_id}"


def schedule_key_for(knowledge_base_id: str) -> str:
    return f"kb-sync-{knowledge_base_id}"


@dataclass
class SyncJobPayload:
    """Everything the worker needs to run one ingestion."""

    source: str
    extensions: list[str] = field(default_factory=lambda: [".md", ".txt"])
    chunk_size: int = 1000
    chunk_overlap: int = 200
    replace_existing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "extensions": list(self.extensions),
            "chunk_size": self.chunk_size,
            "chunk_overlap": self.chunk_overlap,
            "replace_existing": self.replace_existing,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncJobPayload":
        return cls(
            source=data.get("source", ""),
            extensions=list(data.get("extensions") or [".md", ".txt"]),
            chunk_size=int(data.get("chunk_size", 1000)),
            chunk_overlap=int(data.get("chunk_overlap", 200)),
            replace_existing=bool(data.get("replace_existing", False)),
        )


@dataclass
class SyncJob:
    """A single unit of work in the sync queue.

    Each job syncs one knowledge base version from its source. Jobs share
    a `job_key` per knowledge base; the queue keeps at most one of them
    queued or processing at a time.
    """

    knowledge_base_id: str
    version: str
    payload: SyncJobPayload
    job_name: str = "sync"  # "sync" | "immediate-sync" | "manual-sync"
    job_key: str = ""
    id: str | None = None
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    max_attempts: int = 3
    run_after: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    progress_message: str | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.job_key:
            self.job_key = job_key_for(self.knowledge_base_id)

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_STATUSES

    def mark_processing(self, message: str = "Sync started") -> None:
        """Transition to processing state and count the attempt."""
        self.status = JobStatus.PROCESSING
        self.attempts += 1
        self.started_at = datetime.now(timezone.utc)
        self.progress_message = message

    def mark_completed(self, result: dict[str, Any]) -> None:
        self.status = JobStatus.COMPLETED
        self.result = result
        self.error_message = None
        self.completed_at = datetime.now(timezone.utc)
        self.progress_message = f"Sync completed ({result.get('type', 'unknown')})"

    def mark_failed(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.error_message = error
        self.completed_at = datetime.now(timezone.utc)
        self.progress_message = f"Failed: {error[:100]}"

    def mark_retry(self, error: str, delay: timedelta) -> None:
        """Put the job back in the queue, not runnable before `delay` has passed."""
        self.status = JobStatus.QUEUED
        self.error_message = error
        self.run_after = datetime.now(timezone.utc) + delay
        self.started_at = None
        self.progress_message = f"Retry {self.attempts + 1}/{self.max_attempts} scheduled"

    def mark_requeued(self) -> None:
        """Reset a job interrupted mid-run (e.g. process crash) for reprocessing."""
        self.status = JobStatus.QUEUED
        self.progress_message = "Re-queued for processing"
        self.started_at = None
        self.run_after = datetime.now(timezone.utc)


@dataclass
class SyncSchedule:
    """A recurring sync registration, keyed uniquely per knowledge base."""

    schedule_key: str
    knowledge_base_id: str
    version: str
    cron: str
    payload: SyncJobPayload
    next_run_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
