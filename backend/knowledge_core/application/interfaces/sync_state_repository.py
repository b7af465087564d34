"""Abstract repository interface (port) for per-knowledge-base sync checkpoints."""

from abc import ABC, abstractmethod

from knowledge_core.domain.entities.sync import SyncState


class SyncStateRepository(ABC):
    """Port for SyncState persistence: the only durable cross-run state of ingestion."""

    @abstractmethod
    async def get(self, knowledge_base_id: str) -> SyncState | None:
        """Return the last recorded sync state, or None if never synced."""
        ...

    @abstractmethod
    async def save(self, state: SyncState) -> None:
        """Insert or update the sync state and make it durable."""
        ...

    @abstractmethod
    async def delete(self, knowledge_base_id: str) -> bool:
        """Forget the checkpoint so the next run is a full sync."""
        ...
