"""SQLAlchemy ORM model for knowledge chunks with pgvector embeddings and full-text search."""

from sqlalchemy import (
    Column,
    Computed,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TSVECTOR

from pgvector.sqlalchemy import Vector

from knowledge_core.infrastructure.database.base import Base

EMBEDDING_DIMENSIONS = 1536  # HNSW max: 2000


class KnowledgeChunkModel(Base):
    """A retrievable slice of a source document, scoped to one (knowledge base, version).

    The id is derived from the chunk's provenance, so re-ingesting the same
    file upserts the same rows. `search_vector` is generated by PostgreSQL
    from `content` and backs keyword search.
    """

    __tablename__ = "knowledge_chunks"

    id = Column(String(36), primary_key=True)
    knowledge_base_id = Column(String(255), nullable=False)
    version = Column(String(100), nullable=False)
    source_file = Column(String(1000), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    content_with_context = Column(Text, nullable=True)
    document_title = Column(Text, nullable=True)
    section_path = Column(ARRAY(Text), nullable=False, server_default="{}")
    metadata_ = Column("metadata", JSONB, nullable=False, server_default="{}")
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    search_vector = Column(
        TSVECTOR,
        Computed("to_tsvector('english', content)", persisted=True),
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "knowledge_base_id",
            "version",
            "source_file",
            "chunk_index",
            name="uq_knowledge_chunk_identity",
        ),
        Index("idx_knowledge_chunks_partition", "knowledge_base_id", "version"),
        Index("idx_knowledge_chunks_embedding_hnsw", embedding, postgresql_using="hnsw",
              postgresql_ops={"embedding": "vector_cosine_ops"}),
        Index("idx_knowledge_chunks_search_vector", search_vector, postgresql_using="gin"),
    )
