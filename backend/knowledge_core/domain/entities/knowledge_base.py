"""Domain entity for knowledge bases: named, versioned retrieval partitions."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from knowledge_core.config import IngestionConfig


@dataclass
class KnowledgeBase:
    """A registered knowledge base.

    `versions` lists every concurrently indexed version; the default version is
    used whenever a caller references the knowledge base without one.
    """

    id: str
    name: str
    description: str = ""
    default_version: str = "latest"
    versions: list[str] = field(default_factory=list)
    ingestion: "IngestionConfig | None" = None

    def __post_init__(self) -> None:
        if self.default_version not in self.versions:
            self.versions.insert(0, self.default_version)
