from .chat_message import ChatCompletionResult, ChatMessage, TokenUsage
from .chunk import ChunkSearchHit, DocumentChunk, DocumentChunkDraft, chunk_id_for
from .knowledge_base import KnowledgeBase
from .retrieval import RetrievalResponse, RetrievalResult, SearchMode
from .sync import ChangedFiles, IngestResult, SyncState, SyncType
from .sync_job import JobStatus, SyncJob, SyncJobPayload, SyncSchedule

__all__ = [
    "ChatCompletionResult",
    "ChatMessage",
    "TokenUsage",
    "ChunkSearchHit",
    "DocumentChunk",
    "DocumentChunkDraft",
    "chunk_id_for",
    "KnowledgeBase",
    "RetrievalResponse",
    "RetrievalResult",
    "SearchMode",
    "ChangedFiles",
    "IngestResult",
    "SyncState",
    "SyncType",
    "JobStatus",
    "SyncJob",
    "SyncJobPayload",
    "SyncSchedule",
]
