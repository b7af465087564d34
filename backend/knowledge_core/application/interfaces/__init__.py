from .chat_provider import ChatProvider
from .chunk_repository import ChunkRepository
from .embedding_provider import Embedding, EmbeddingProvider
from .source_provider import SourceTreeProvider
from .sync_job_repository import SyncJobRepository, SyncJobRepositoryScope
from .sync_state_repository import SyncStateRepository

__all__ = [
    "ChatProvider",
    "ChunkRepository",
    "Embedding",
    "EmbeddingProvider",
    "SourceTreeProvider",
    "SyncJobRepository",
    "SyncJobRepositoryScope",
    "SyncStateRepository",
]
