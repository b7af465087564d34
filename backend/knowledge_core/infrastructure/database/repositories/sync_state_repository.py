"""SQLAlchemy implementation of the SyncStateRepository."""

import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_core.application.interfaces.sync_state_repository import SyncStateRepository
from knowledge_core.domain.entities.sync import SyncState
from knowledge_core.domain.exceptions import StorageError
from knowledge_core.infrastructure.database.models.sync_models import KnowledgeSyncStateModel

logger = logging.getLogger(__name__)


class SQLAlchemySyncStateRepository(SyncStateRepository):
    """Sync checkpoints in PostgreSQL. Each call is its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, knowledge_base_id: str) -> SyncState | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(KnowledgeSyncStateModel).where(
                        KnowledgeSyncStateModel.knowledge_base_id == knowledge_base_id
                    )
                )
                model = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError("get_sync_state", str(e)) from e
        return self._to_domain(model) if model else None

    async def save(self, state: SyncState) -> None:
        statement = pg_insert(KnowledgeSyncStateModel).values(
            knowledge_base_id=state.knowledge_base_id,
            last_commit_sha=state.last_commit_sha,
            last_synced_at=state.last_synced_at,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[KnowledgeSyncStateModel.knowledge_base_id],
            set_={
                "last_commit_sha": statement.excluded.last_commit_sha,
                "last_synced_at": statement.excluded.last_synced_at,
            },
        )
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError("save_sync_state", str(e)) from e
        logger.info(
            "Sync state of %s advanced to %s", state.knowledge_base_id, state.last_commit_sha[:12]
        )

    async def delete(self, knowledge_base_id: str) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(KnowledgeSyncStateModel).where(
                        KnowledgeSyncStateModel.knowledge_base_id == knowledge_base_id
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError("delete_sync_state", str(e)) from e
        return result.rowcount > 0

    # ── Mapping ──────────────────────────────────────────────────────

    @staticmethod
    def _to_domain(model: KnowledgeSyncStateModel) -> SyncState:
        return SyncState(
            knowledge_base_id=model.knowledge_base_id,
            last_commit_sha=model.last_commit_sha,
            last_synced_at=model.last_synced_at,
        )
