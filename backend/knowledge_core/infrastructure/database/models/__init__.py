from .chunk_models import EMBEDDING_DIMENSIONS, KnowledgeChunkModel
from .sync_models import (
    KnowledgeSyncJobModel,
    KnowledgeSyncScheduleModel,
    KnowledgeSyncStateModel,
)

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "KnowledgeChunkModel",
    "KnowledgeSyncJobModel",
    "KnowledgeSyncScheduleModel",
    "KnowledgeSyncStateModel",
]
