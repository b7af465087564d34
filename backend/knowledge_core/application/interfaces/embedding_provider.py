"""Abstract interface (port) for embedding generation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Embedding:
    """One vector returned by a provider, tagged with the index of its input text."""

    index: int
    vector: list[float]


class EmbeddingProvider(ABC):
    """Port for generating text embeddings: implemented in the infrastructure layer."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def generate_embeddings(
        self, texts: list[str], *, query: bool = False
    ) -> list[Embedding]:
        """Generate embedding vectors for a batch of texts.

        Args:
            texts: List of text strings to embed.
            query: True when embedding a search query rather than a document.

        Returns:
            One Embedding per input text, in whatever order the upstream
            service produced them. Callers re-sort by `Embedding.index`.

        Raises:
            ProviderError: the upstream call failed or returned malformed data.
        """
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return the dimensionality of the embedding vectors produced by this provider."""
        ...
