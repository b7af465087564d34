"""SQLAlchemy ORM models for sync state, the sync job queue and recurring schedules."""

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from knowledge_core.infrastructure.database.base import Base


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class KnowledgeSyncStateModel(Base):
    """Last successfully ingested source revision per knowledge base."""

    __tablename__ = "knowledge_sync_state"

    knowledge_base_id = Column(String(255), primary_key=True)
    last_commit_sha = Column(String(64), nullable=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class KnowledgeSyncJobModel(Base):
    """A single unit of work in the sync queue."""

    __tablename__ = "knowledge_sync_jobs"

    id = Column(String(36), primary_key=True, default=_generate_uuid)
    job_key = Column(String(300), nullable=False)
    job_name = Column(String(50), nullable=False, default="sync")
    knowledge_base_id = Column(String(255), nullable=False, index=True)
    version = Column(String(100), nullable=False)
    payload = Column(JSONB, nullable=False, server_default="{}")
    status = Column(String(20), nullable=False, default="queued")  # queued | processing | completed | failed
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    run_after = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    progress_message = Column(Text, nullable=True)
    result = Column(JSONB, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_knowledge_sync_jobs_runnable", "status", "run_after", "created_at"),
        # At most one queued or processing job per key
        Index(
            "uq_knowledge_sync_jobs_outstanding_key",
            "job_key",
            unique=True,
            postgresql_where=text("status IN ('queued', 'processing')"),
        ),
    )


class KnowledgeSyncScheduleModel(Base):
    """A recurring sync registration, one per knowledge base."""

    __tablename__ = "knowledge_sync_schedules"

    schedule_key = Column(String(300), primary_key=True)
    knowledge_base_id = Column(String(255), nullable=False)
    version = Column(String(100), nullable=False)
    cron = Column(String(100), nullable=False)
    payload = Column(JSONB, nullable=False, server_default="{}")
    next_run_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
