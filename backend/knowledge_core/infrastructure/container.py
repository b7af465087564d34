"""Service container: wires infrastructure adapters to application services.

Every long-lived handle (engine, HTTP client) is created once here and
released in `aclose()`. Nothing is kept in module-level globals.

Usage:
    async with KnowledgeContainer(get_settings()) as container:
        response = await container.retrieval_service.retrieve("takaro-docs", "hooks")
"""

import logging

import httpx

from knowledge_core.application.services.embedding_service import EmbeddingGenerator
from knowledge_core.application.services.hybrid_retriever import HybridRetriever
from knowledge_core.application.services.ingestion_service import IngestionPipeline
from knowledge_core.application.services.knowledge_registry import (
    KnowledgeRegistry,
    load_registry,
)
from knowledge_core.application.services.reranker import LLMReranker
from knowledge_core.application.services.retrieval_service import RetrievalService
from knowledge_core.application.services.sync_scheduler import SyncScheduler
from knowledge_core.application.services.sync_worker import SyncWorker
from knowledge_core.config import Settings, get_settings, resolve_backend_path
from knowledge_core.domain.exceptions import ValidationError
from knowledge_core.infrastructure.database.models import EMBEDDING_DIMENSIONS
from knowledge_core.infrastructure.database.repositories import (
    PgChunkRepository,
    SQLAlchemySyncStateRepository,
    sync_job_repository_scope,
)
from knowledge_core.infrastructure.database.session import (
    create_engine_and_session_factory,
    init_schema,
)
from knowledge_core.infrastructure.github import github_provider_factory
from knowledge_core.infrastructure.openrouter import OpenRouterClient, OpenRouterEmbeddingProvider

logger = logging.getLogger(__name__)


def check_embedding_dimensions(settings: Settings) -> None:
    """The embedding column has a fixed width; the configured model must match it."""
    if settings.embedding_dimensions != EMBEDDING_DIMENSIONS:
        raise ValidationError(
            f"EMBEDDING_DIMENSIONS={settings.embedding_dimensions} does not match the "
            f"chunk table's vector column ({EMBEDDING_DIMENSIONS})"
        )


class KnowledgeContainer:
    """Builds the knowledge subsystem once and owns its resources."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: KnowledgeRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        check_embedding_dimensions(s)
        self.engine, self.session_factory = create_engine_and_session_factory(s)
        self.http_client = httpx.AsyncClient(timeout=120.0)

        if not s.openrouter_api_key.strip():
            logger.warning(
                "OPENROUTER_API_KEY is not configured; embedding and rerank calls will fail."
            )

        self.embedding_provider = OpenRouterEmbeddingProvider(
            api_key=s.openrouter_api_key.strip(),
            base_url=s.openrouter_base_url,
            app_name=s.openrouter_app_name,
            model=s.embedding_model,
            model_dimensions=s.embedding_dimensions,
            http_client=self.http_client,
        )
        self.embedding_generator = EmbeddingGenerator(
            self.embedding_provider, max_batch_size=s.embedding_batch_size
        )
        self.chat_provider = OpenRouterClient(
            api_key=s.openrouter_api_key.strip(),
            base_url=s.openrouter_base_url,
            app_name=s.openrouter_app_name,
            http_client=self.http_client,
        )

        self.chunk_repository = PgChunkRepository(self.session_factory)
        self.sync_state_repository = SQLAlchemySyncStateRepository(self.session_factory)
        self.job_repository_scope = sync_job_repository_scope(self.session_factory)

        self.registry = registry or load_registry(resolve_backend_path(s.knowledge_bases_file))

        self.ingestion_pipeline = IngestionPipeline(
            self.chunk_repository,
            self.sync_state_repository,
            self.embedding_generator,
            github_provider_factory(
                token=s.github_token,
                api_url=s.github_api_url,
                raw_url=s.github_raw_url,
                http_client=self.http_client,
            ),
            max_concurrent_files=s.ingest_max_concurrent_files,
        )
        self.hybrid_retriever = HybridRetriever(
            self.chunk_repository, self.embedding_generator, rrf_k=s.rrf_k
        )
        self.reranker = LLMReranker(self.chat_provider, model=s.rerank_model)
        self.retrieval_service = RetrievalService(
            self.registry,
            self.chunk_repository,
            self.embedding_generator,
            self.hybrid_retriever,
            self.reranker,
        )
        self.scheduler = SyncScheduler(
            self.registry,
            self.sync_state_repository,
            self.job_repository_scope,
            max_attempts=s.sync_job_max_attempts,
        )
        self.worker = SyncWorker(
            self.ingestion_pipeline,
            self.job_repository_scope,
            poll_interval=s.worker_poll_interval,
            max_concurrent_jobs=s.worker_max_concurrent_jobs,
            retry_base_delay=s.sync_job_retry_base_delay,
            max_attempts=s.sync_job_max_attempts,
        )

    async def init_schema(self) -> None:
        await init_schema(self.engine)

    async def aclose(self) -> None:
        """Stop the worker if running and release the HTTP client and engine."""
        if self.worker.is_running:
            await self.worker.stop()
        await self.http_client.aclose()
        await self.engine.dispose()
        logger.info("Knowledge container closed")

    async def __aenter__(self) -> "KnowledgeContainer":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
