"""Domain entities for source synchronisation: sync state, diffs and outcomes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SyncType(str, Enum):
    """How an ingestion run treated the knowledge base."""

    FULL = "full"
    INCREMENTAL = "incremental"
    SKIPPED = "skipped"


@dataclass
class SyncState:
    """Last successfully synced source revision of a knowledge base."""

    knowledge_base_id: str
    last_commit_sha: str
    last_synced_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ChangedFiles:
    """Files that differ between two source revisions."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def filtered(self, extensions: list[str]) -> "ChangedFiles":
        """Keep only paths ending in one of the given extensions (case-insensitive)."""
        return ChangedFiles(
            added=[p for p in self.added if has_extension(p, extensions)],
            modified=[p for p in self.modified if has_extension(p, extensions)],
            removed=[p for p in self.removed if has_extension(p, extensions)],
        )

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


def has_extension(path: str, extensions: list[str]) -> bool:
    lowered = path.lower()
    return any(lowered.endswith(ext.lower()) for ext in extensions)


@dataclass
class IngestResult:
    """Outcome of one ingestion run."""

    sync_type: SyncType
    sha: str
    documents_processed: int = 0
    chunks_created: int = 0
    added: int = 0
    modified: int = 0
    removed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.sync_type.value,
            "sha": self.sha,
            "documents_processed": self.documents_processed,
            "chunks_created": self.chunks_created,
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
        }
