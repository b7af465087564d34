"""Domain entities for retrieval: ranked results returned to the consuming agent."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SearchMode(str, Enum):
    """Trade-off between latency and ranking quality."""

    FAST = "fast"          # vector search only
    BALANCED = "balanced"  # vector + keyword, fused with RRF
    THOROUGH = "thorough"  # balanced candidates reranked by an LLM


@dataclass
class RetrievalResult:
    """A single search result. Ephemeral: produced per query, never stored."""

    id: str
    content: str
    score: float  # 0.0 – 1.0, higher is better
    content_with_context: str | None = None
    document_title: str | None = None
    section_path: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_text(self) -> str:
        """Text to render for the agent: contextual content when present."""
        return self.content_with_context or self.content

    @property
    def source_file(self) -> str | None:
        return self.metadata.get("sourceFile")


@dataclass
class RetrievalResponse:
    """Results of one retrieval call plus timing."""

    results: list[RetrievalResult]
    mode: SearchMode
    latency_ms: int
