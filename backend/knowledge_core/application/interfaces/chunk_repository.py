"""Abstract repository interface (port) for document chunks, vector and keyword search."""

from abc import ABC, abstractmethod

from knowledge_core.domain.entities.chunk import ChunkSearchHit, DocumentChunk


class ChunkRepository(ABC):
    """Port for chunk persistence and search.

    Every operation is scoped to one (knowledge_base_id, version) partition and
    must never read or modify another. Failures raise StorageError.
    """

    @abstractmethod
    async def upsert_chunks(self, chunks: list[DocumentChunk]) -> None:
        """Insert chunks, overwriting rows with the same id."""
        ...

    @abstractmethod
    async def replace_source_file(
        self,
        knowledge_base_id: str,
        version: str,
        source_file: str,
        chunks: list[DocumentChunk],
    ) -> int:
        """Atomically delete a file's chunks and insert its new ones.

        Returns the number of rows deleted.
        """
        ...

    @abstractmethod
    async def delete_by_source_file(
        self, knowledge_base_id: str, version: str, source_file: str
    ) -> int:
        """Delete all chunks of one source file. Returns count of deleted rows."""
        ...

    @abstractmethod
    async def delete_by_knowledge_base(self, knowledge_base_id: str, version: str) -> int:
        """Delete every chunk of the partition. Returns count of deleted rows."""
        ...

    @abstractmethod
    async def list_source_files(self, knowledge_base_id: str, version: str) -> list[str]:
        """Distinct source files that have chunks in the partition, sorted."""
        ...

    @abstractmethod
    async def vector_search(
        self,
        knowledge_base_id: str,
        version: str,
        query_embedding: list[float],
        limit: int = 20,
    ) -> list[ChunkSearchHit]:
        """Find chunks most similar to the query embedding.

        Returns:
            Hits ordered by descending cosine similarity (score in [-1, 1]).
        """
        ...

    @abstractmethod
    async def keyword_search(
        self,
        knowledge_base_id: str,
        version: str,
        query: str,
        limit: int = 20,
    ) -> list[ChunkSearchHit]:
        """Full-text search over chunk content.

        Returns:
            Only rows matching at least one query term, ordered by descending rank.
        """
        ...

    @abstractmethod
    async def count(self, knowledge_base_id: str, version: str) -> int:
        """Number of chunks stored in the partition."""
        ...
