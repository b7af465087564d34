"""Retrieval service: the entry point the agent layer calls to search a knowledge base."""

import logging
import time

from knowledge_core.application.interfaces.chunk_repository import ChunkRepository
from knowledge_core.application.services.embedding_service import EmbeddingGenerator
from knowledge_core.application.services.hybrid_retriever import (
    HybridRetriever,
    candidate_limit,
    to_result,
)
from knowledge_core.application.services.knowledge_registry import KnowledgeRegistry
from knowledge_core.application.services.reranker import LLMReranker
from knowledge_core.domain.entities.retrieval import RetrievalResponse, SearchMode
from knowledge_core.domain.exceptions import (
    ProviderError,
    RetrievalError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_MIN_RERANK_CANDIDATES = 20


def rerank_candidate_limit(limit: int) -> int:
    """Hybrid results handed to the reranker for a final `limit`."""
    return max(limit * 3, _MIN_RERANK_CANDIDATES)


class RetrievalService:
    """Resolves a knowledge base reference and searches it in the requested mode.

    `fast` runs vector search only and reports the cosine similarity clamped
    to [0, 1]. `balanced` runs the hybrid retriever. `thorough` over-fetches
    hybrid results and lets the LLM reranker pick and score the final ones.
    """

    def __init__(
        self,
        registry: KnowledgeRegistry,
        chunk_repository: ChunkRepository,
        embedding_generator: EmbeddingGenerator,
        hybrid_retriever: HybridRetriever,
        reranker: LLMReranker | None = None,
    ):
        self._registry = registry
        self._chunks = chunk_repository
        self._embeddings = embedding_generator
        self._hybrid = hybrid_retriever
        self._reranker = reranker

    async def retrieve(
        self,
        knowledge_base_ref: str,
        query: str,
        *,
        mode: SearchMode = SearchMode.BALANCED,
        limit: int = 5,
        min_score: float = 0.0,
    ) -> RetrievalResponse:
        kb, version = self._registry.resolve(knowledge_base_ref)
        mode = SearchMode(mode)
        start = time.monotonic()

        if mode is SearchMode.FAST:
            results = await self._vector_only(kb.id, version, query, limit, min_score)
        elif mode is SearchMode.THOROUGH:
            results = await self._thorough(kb.id, version, query, limit, min_score)
        else:
            results = await self._hybrid.search(
                kb.id, query, limit, min_score, version=version
            )

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Retrieved %d results from %s/%s (mode=%s) in %dms",
            len(results),
            kb.id,
            version,
            mode.value,
            latency_ms,
        )
        return RetrievalResponse(results=results, mode=mode, latency_ms=latency_ms)

    async def _vector_only(
        self, knowledge_base_id: str, version: str, query: str, limit: int, min_score: float
    ):
        if limit <= 0 or not query.strip():
            return []
        try:
            query_vector = await self._embeddings.embed_query(query)
            hits = await self._chunks.vector_search(
                knowledge_base_id, version, query_vector, candidate_limit(limit)
            )
        except (ProviderError, StorageError) as e:
            raise RetrievalError(knowledge_base_id, str(e)) from e

        results = [to_result(hit, min(max(hit.score, 0.0), 1.0)) for hit in hits]
        return [r for r in results if r.score >= min_score][:limit]

    async def _thorough(
        self, knowledge_base_id: str, version: str, query: str, limit: int, min_score: float
    ):
        if self._reranker is None:
            raise ValidationError("thorough retrieval needs an LLM reranker")
        candidates = await self._hybrid.search(
            knowledge_base_id, query, rerank_candidate_limit(limit), min_score, version=version
        )
        return await self._reranker.rerank(query, candidates, limit)
