"""Hybrid retriever: vector and keyword search fused with Reciprocal Rank Fusion.

Flow:
  1. Keyword search starts right away; it does not need the query vector.
  2. The query is embedded, then vector search runs.
  3. Both ranked lists are fused, scores normalized to [0, 1], filtered
     by `min_score` and truncated to `limit`.
"""

import asyncio
import logging
import time

from knowledge_core.application.interfaces.chunk_repository import ChunkRepository
from knowledge_core.application.services.embedding_service import EmbeddingGenerator
from knowledge_core.application.services.rank_fusion import (
    DEFAULT_RRF_K,
    fuse_ranked_lists,
    normalize_fused_scores,
)
from knowledge_core.domain.entities.chunk import ChunkSearchHit
from knowledge_core.domain.entities.retrieval import RetrievalResult
from knowledge_core.domain.exceptions import ProviderError, RetrievalError, StorageError

logger = logging.getLogger(__name__)

_MIN_CANDIDATES = 20


def candidate_limit(limit: int) -> int:
    """Candidates requested from each sub-search for a final `limit`."""
    return max(limit * 2, _MIN_CANDIDATES)


def to_result(hit: ChunkSearchHit, score: float) -> RetrievalResult:
    return RetrievalResult(
        id=hit.id,
        content=hit.content,
        score=score,
        content_with_context=hit.content_with_context,
        document_title=hit.document_title,
        section_path=list(hit.section_path),
        metadata=dict(hit.metadata),
    )


class HybridRetriever:
    """Application service combining semantic and lexical search over one partition."""

    def __init__(
        self,
        chunk_repository: ChunkRepository,
        embedding_generator: EmbeddingGenerator,
        *,
        rrf_k: int = DEFAULT_RRF_K,
    ):
        self._chunks = chunk_repository
        self._embeddings = embedding_generator
        self._rrf_k = rrf_k

    async def search(
        self,
        knowledge_base_id: str,
        query: str,
        limit: int = 5,
        min_score: float = 0.0,
        *,
        version: str = "latest",
    ) -> list[RetrievalResult]:
        """Run hybrid search and return at most `limit` results, best first.

        Raises:
            RetrievalError: query embedding or a storage read failed.
        """
        if limit <= 0 or not query.strip():
            return []

        start = time.monotonic()
        candidates = candidate_limit(limit)

        keyword_task = asyncio.create_task(
            self._chunks.keyword_search(knowledge_base_id, version, query, candidates)
        )
        try:
            query_vector = await self._embeddings.embed_query(query)
            vector_hits = await self._chunks.vector_search(
                knowledge_base_id, version, query_vector, candidates
            )
            keyword_hits = await keyword_task
        except (ProviderError, StorageError) as e:
            raise RetrievalError(knowledge_base_id, str(e)) from e
        finally:
            if not keyword_task.done():
                keyword_task.cancel()
            # settle the keyword search so a failure there is always retrieved
            await asyncio.gather(keyword_task, return_exceptions=True)

        ranked_lists = [hits for hits in (vector_hits, keyword_hits) if hits]
        fused = fuse_ranked_lists(ranked_lists, k=self._rrf_k)
        fused = normalize_fused_scores(fused, len(ranked_lists), k=self._rrf_k)

        results = [to_result(f.item, f.score) for f in fused if f.score >= min_score][:limit]

        logger.debug(
            "Hybrid search kb=%s/%s: vector=%d keyword=%d fused=%d returned=%d in %dms",
            knowledge_base_id,
            version,
            len(vector_hits),
            len(keyword_hits),
            len(fused),
            len(results),
            int((time.monotonic() - start) * 1000),
        )
        return results
