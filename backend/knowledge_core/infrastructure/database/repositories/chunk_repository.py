"""SQLAlchemy implementation of ChunkRepository: pgvector similarity and PostgreSQL full-text search."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from knowledge_core.application.interfaces.chunk_repository import ChunkRepository
from knowledge_core.domain.entities.chunk import ChunkSearchHit, DocumentChunk
from knowledge_core.domain.exceptions import StorageError
from knowledge_core.infrastructure.database.models.chunk_models import KnowledgeChunkModel

logger = logging.getLogger(__name__)

# asyncpg caps a statement at 32767 bind parameters
_INSERT_BATCH_SIZE = 500

_TEXT_SEARCH_CONFIG = literal_column("'english'::regconfig")

_UPDATABLE_COLUMNS = (
    "knowledge_base_id",
    "version",
    "source_file",
    "chunk_index",
    "content",
    "content_with_context",
    "document_title",
    "section_path",
    "metadata",
    "embedding",
)

# Everything a search hit needs; the embedding itself is never read back.
_HIT_COLUMNS = (
    KnowledgeChunkModel.id,
    KnowledgeChunkModel.content,
    KnowledgeChunkModel.content_with_context,
    KnowledgeChunkModel.document_title,
    KnowledgeChunkModel.section_path,
    KnowledgeChunkModel.metadata_.label("chunk_metadata"),
)


class PgChunkRepository(ChunkRepository):
    """Concrete chunk repository backed by PostgreSQL + pgvector.

    Opens a short-lived session per operation, so vector and keyword search
    can run concurrently and every write is its own transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error("Chunk storage %s failed: %s", operation, e)
            raise StorageError(operation, str(e)) from e

    # ── Writes ───────────────────────────────────────────────────────

    async def upsert_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Insert chunks, overwriting any row with the same deterministic id."""
        if not chunks:
            return
        async with self._transaction("upsert_chunks") as session:
            await self._insert(session, chunks)
        logger.debug("Upserted %d chunks", len(chunks))

    async def replace_source_file(
        self,
        knowledge_base_id: str,
        version: str,
        source_file: str,
        chunks: list[DocumentChunk],
    ) -> int:
        """Delete a file's chunks and insert the new ones in a single transaction."""
        async with self._transaction("replace_source_file") as session:
            result = await session.execute(
                delete(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
                .where(KnowledgeChunkModel.version == version)
                .where(KnowledgeChunkModel.source_file == source_file)
            )
            await self._insert(session, chunks)

        deleted = result.rowcount
        logger.debug(
            "Replaced %s in %s/%s: -%d +%d chunks",
            source_file,
            knowledge_base_id,
            version,
            deleted,
            len(chunks),
        )
        return deleted

    async def delete_by_source_file(
        self, knowledge_base_id: str, version: str, source_file: str
    ) -> int:
        async with self._transaction("delete_by_source_file") as session:
            result = await session.execute(
                delete(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
                .where(KnowledgeChunkModel.version == version)
                .where(KnowledgeChunkModel.source_file == source_file)
            )
        count = result.rowcount
        if count > 0:
            logger.info("Deleted %d chunks for %s in %s/%s", count, source_file, knowledge_base_id, version)
        return count

    async def delete_by_knowledge_base(self, knowledge_base_id: str, version: str) -> int:
        async with self._transaction("delete_by_knowledge_base") as session:
            result = await session.execute(
                delete(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
                .where(KnowledgeChunkModel.version == version)
            )
        count = result.rowcount
        logger.info("Deleted %d chunks from %s/%s", count, knowledge_base_id, version)
        return count

    async def list_source_files(self, knowledge_base_id: str, version: str) -> list[str]:
        async with self._transaction("list_source_files") as session:
            result = await session.execute(
                select(KnowledgeChunkModel.source_file)
                .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
                .where(KnowledgeChunkModel.version == version)
                .distinct()
                .order_by(KnowledgeChunkModel.source_file)
            )
            return list(result.scalars().all())

    # ── Search ───────────────────────────────────────────────────────

    async def vector_search(
        self,
        knowledge_base_id: str,
        version: str,
        query_embedding: list[float],
        limit: int = 20,
    ) -> list[ChunkSearchHit]:
        """Nearest neighbours by cosine distance (HNSW); score is 1 - distance."""
        distance = KnowledgeChunkModel.embedding.cosine_distance(query_embedding).label("distance")
        query = (
            select(*_HIT_COLUMNS, distance)
            .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
            .where(KnowledgeChunkModel.version == version)
            .order_by(distance)
            .limit(limit)
        )

        async with self._transaction("vector_search") as session:
            rows = (await session.execute(query)).all()

        return [self._to_hit(row, 1.0 - float(row.distance)) for row in rows]

    async def keyword_search(
        self,
        knowledge_base_id: str,
        version: str,
        query: str,
        limit: int = 20,
    ) -> list[ChunkSearchHit]:
        """Full-text search ranked by `ts_rank_cd`; only rows matching the query."""
        if not query.strip():
            return []

        tsquery = func.plainto_tsquery(_TEXT_SEARCH_CONFIG, query)
        rank = func.ts_rank_cd(KnowledgeChunkModel.search_vector, tsquery).label("rank")
        statement = (
            select(*_HIT_COLUMNS, rank)
            .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
            .where(KnowledgeChunkModel.version == version)
            .where(KnowledgeChunkModel.search_vector.op("@@")(tsquery))
            .order_by(rank.desc(), KnowledgeChunkModel.id)
            .limit(limit)
        )

        async with self._transaction("keyword_search") as session:
            rows = (await session.execute(statement)).all()

        return [self._to_hit(row, float(row.rank)) for row in rows]

    async def count(self, knowledge_base_id: str, version: str) -> int:
        async with self._transaction("count") as session:
            result = await session.execute(
                select(func.count())
                .select_from(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.knowledge_base_id == knowledge_base_id)
                .where(KnowledgeChunkModel.version == version)
            )
            return int(result.scalar_one())

    # ── Mapping ──────────────────────────────────────────────────────

    async def _insert(self, session: AsyncSession, chunks: list[DocumentChunk]) -> None:
        table = KnowledgeChunkModel.__table__
        for start in range(0, len(chunks), _INSERT_BATCH_SIZE):
            rows = [self._to_row(c) for c in chunks[start : start + _INSERT_BATCH_SIZE]]
            statement = pg_insert(table).values(rows)
            statement = statement.on_conflict_do_update(
                index_elements=[table.c.id],
                set_={name: statement.excluded[name] for name in _UPDATABLE_COLUMNS},
            )
            await session.execute(statement)

    @staticmethod
    def _to_row(chunk: DocumentChunk) -> dict[str, Any]:
        return {
            "id": chunk.id,
            "knowledge_base_id": chunk.knowledge_base_id,
            "version": chunk.version,
            "source_file": chunk.source_file,
            "chunk_index": chunk.chunk_index,
            "content": chunk.content,
            "content_with_context": chunk.content_with_context,
            "document_title": chunk.document_title,
            "section_path": list(chunk.section_path),
            "metadata": dict(chunk.metadata),
            "embedding": chunk.embedding,
            "created_at": chunk.created_at,
        }

    @staticmethod
    def _to_hit(row: Any, score: float) -> ChunkSearchHit:
        return ChunkSearchHit(
            id=row.id,
            content=row.content,
            score=score,
            content_with_context=row.content_with_context,
            document_title=row.document_title,
            section_path=list(row.section_path or []),
            metadata=dict(row.chunk_metadata or {}),
        )
