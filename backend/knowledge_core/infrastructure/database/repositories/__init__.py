from .chunk_repository import PgChunkRepository
from .sync_job_repository import SQLAlchemySyncJobRepository, sync_job_repository_scope
from .sync_state_repository import SQLAlchemySyncStateRepository

__all__ = [
    "PgChunkRepository",
    "SQLAlchemySyncJobRepository",
    "SQLAlchemySyncStateRepository",
    "sync_job_repository_scope",
]
