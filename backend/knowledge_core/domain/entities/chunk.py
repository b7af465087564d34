"""Domain entities for document chunks: text fragments with vector embeddings."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Fixed namespace so chunk ids are stable across processes and hosts.
_CHUNK_NAMESPACE = uuid.UUID("5c3b8f2e-9a41-4d7b-8e0f-2b6a1c9d4e73")


def chunk_id_for(
    knowledge_base_id: str, version: str, source_file: str, chunk_index: int
) -> str:
    """Derive the deterministic identifier of a chunk from its provenance."""
    name = f"{knowledge_base_id}\x1f{version}\x1f{source_file}\x1f{chunk_index}"
    return str(uuid.uuid5(_CHUNK_NAMESPACE, name))


@dataclass
class DocumentChunkDraft:
    """A chunk produced by the chunker, not yet embedded or stored."""

    source_file: str
    chunk_index: int
    content: str
    start_offset: int
    end_offset: int
    document_title: str
    section_path: list[str] = field(default_factory=list)
    content_with_context: str | None = None

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding provider."""
        return self.content_with_context or self.content


@dataclass
class DocumentChunk:
    """A persisted retrieval unit, scoped to one (knowledge base, version) partition.

    The id is derived from (knowledge_base_id, version, source_file, chunk_index)
    so two ingestion runs over unchanged content write the same rows.
    """

    knowledge_base_id: str
    version: str
    source_file: str
    chunk_index: int
    content: str
    embedding: list[float] = field(default_factory=list)
    content_with_context: str | None = None
    document_title: str | None = None
    section_path: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.id:
            self.id = chunk_id_for(
                self.knowledge_base_id, self.version, self.source_file, self.chunk_index
            )


@dataclass
class ChunkSearchHit:
    """A single row returned by vector or keyword search.

    `score` is the raw score of the search that produced it: cosine
    similarity for vector search, text-search rank for keyword search.
    """

    id: str
    content: str
    score: float
    content_with_context: str | None = None
    document_title: str | None = None
    section_path: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
