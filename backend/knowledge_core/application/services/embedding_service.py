"""Embedding generator: batched and order-preserving, all-or-nothing.

Wraps an EmbeddingProvider so callers get one vector per input text, in
input order, or a ProviderError. Providers are allowed to answer out of
order; every batch is re-sorted by the index the provider reports.
"""

import logging
import time

from knowledge_core.application.interfaces.embedding_provider import Embedding, EmbeddingProvider
from knowledge_core.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)

# ── Batching constants ──────────────────────────────────────────────
_DEFAULT_MAX_BATCH_SIZE = 100  # Max texts per embedding API call


class EmbeddingGenerator:
    """Application service that turns texts into vectors through a provider."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        *,
        max_batch_size: int = _DEFAULT_MAX_BATCH_SIZE,
    ):
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self._provider = embedding_provider
        self._max_batch_size = max_batch_size

    @property
    def dimensions(self) -> int:
        return self._provider.dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts, returning vectors aligned with the input.

        Raises:
            ProviderError: any batch failed or came back malformed. No partial
                results are returned.
        """
        if not texts:
            return []

        start = time.monotonic()
        vectors: list[list[float]] = []

        for batch_start in range(0, len(texts), self._max_batch_size):
            batch = texts[batch_start : batch_start + self._max_batch_size]
            embeddings = await self._provider.generate_embeddings(batch)
            vectors.extend(self._ordered_vectors(embeddings, len(batch)))

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Embedded %d texts in %dms", len(texts), duration_ms)
        return vectors

    async def embed_query(self, query: str) -> list[float]:
        """Embed a single search query using the provider's query mode."""
        embeddings = await self._provider.generate_embeddings([query], query=True)
        return self._ordered_vectors(embeddings, 1)[0]

    def _ordered_vectors(self, embeddings: list[Embedding], expected: int) -> list[list[float]]:
        """Validate a provider batch and return its vectors in input order."""
        provider = self._provider.name

        if len(embeddings) != expected:
            raise ProviderError(
                provider,
                f"expected {expected} embeddings, got {len(embeddings)}",
            )

        ordered = sorted(embeddings, key=lambda e: e.index)
        if [e.index for e in ordered] != list(range(expected)):
            raise ProviderError(
                provider,
                f"embedding indices do not cover 0..{expected - 1}: "
                f"{sorted(e.index for e in embeddings)}",
            )

        dimensions = self._provider.dimensions
        for embedding in ordered:
            if len(embedding.vector) != dimensions:
                raise ProviderError(
                    provider,
                    f"embedding {embedding.index} has {len(embedding.vector)} "
                    f"dimensions, expected {dimensions}",
                )

        return [e.vector for e in ordered]
