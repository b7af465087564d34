from .chunker import MarkdownChunker
from .embedding_service import EmbeddingGenerator
from .hybrid_retriever import HybridRetriever
from .ingestion_service import IngestionOptions, IngestionPipeline
from .knowledge_registry import KnowledgeRegistry, load_registry
from .rank_fusion import fuse_ranked_lists, normalize_fused_scores
from .reranker import LLMReranker
from .retrieval_service import RetrievalService
from .sync_scheduler import ScheduleReport, SyncScheduler
from .sync_worker import SyncWorker, WorkerStats

__all__ = [
    "MarkdownChunker",
    "EmbeddingGenerator",
    "HybridRetriever",
    "IngestionOptions",
    "IngestionPipeline",
    "KnowledgeRegistry",
    "load_registry",
    "fuse_ranked_lists",
    "normalize_fused_scores",
    "LLMReranker",
    "RetrievalService",
    "ScheduleReport",
    "SyncScheduler",
    "SyncWorker",
    "WorkerStats",
]
