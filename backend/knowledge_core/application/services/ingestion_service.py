"""Ingestion pipeline: keeps one knowledge base partition in step with its source tree.

Pipeline:  Resolve revision → Load SyncState → (Full | Incremental | Skip)
           → per file: Fetch → Chunk → Embed → Replace chunks → Save SyncState

SyncState is the only durable cross-run state. It is written last, and a
full sync drops it before writing, so a failed run is always redone.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from knowledge_core.application.interfaces.chunk_repository import ChunkRepository
from knowledge_core.application.interfaces.source_provider import SourceTreeProvider
from knowledge_core.application.interfaces.sync_state_repository import SyncStateRepository
from knowledge_core.application.services.chunker import MarkdownChunker
from knowledge_core.application.services.embedding_service import EmbeddingGenerator
from knowledge_core.config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, DEFAULT_EXTENSIONS
from knowledge_core.domain.entities.chunk import DocumentChunk
from knowledge_core.domain.entities.sync import ChangedFiles, IngestResult, SyncState, SyncType
from knowledge_core.domain.entities.sync_job import SyncJobPayload
from knowledge_core.domain.exceptions import RevisionNotFoundError, ValidationError
from knowledge_core.infrastructure.logging.colored_logger import PipelineLogger, PipelineStage

logger = logging.getLogger(__name__)
plog = PipelineLogger("IngestionPipeline")

SourceProviderFactory = Callable[[str], SourceTreeProvider]

_DEFAULT_MAX_CONCURRENT_FILES = 4


class IngestionOptions(BaseModel):
    """Per-run ingestion options. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    replace_existing: bool = False

    @field_validator("extensions")
    @classmethod
    def _normalise_extensions(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one extension is required")
        return [ext if ext.startswith(".") else f".{ext}" for ext in value]

    @classmethod
    def from_payload(cls, payload: SyncJobPayload) -> "IngestionOptions":
        try:
            return cls(
                extensions=payload.extensions,
                chunk_size=payload.chunk_size,
                chunk_overlap=payload.chunk_overlap,
                replace_existing=payload.replace_existing,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid ingestion options: {e}") from e


class IngestionPipeline:
    """Application service that syncs a source tree into the chunk store."""

    def __init__(
        self,
        chunk_repository: ChunkRepository,
        sync_state_repository: SyncStateRepository,
        embedding_generator: EmbeddingGenerator,
        source_provider_factory: SourceProviderFactory,
        *,
        max_concurrent_files: int = _DEFAULT_MAX_CONCURRENT_FILES,
    ):
        if max_concurrent_files <= 0:
            raise ValueError("max_concurrent_files must be positive")
        self._chunks = chunk_repository
        self._states = sync_state_repository
        self._embeddings = embedding_generator
        self._provider_factory = source_provider_factory
        self._max_concurrent_files = max_concurrent_files

    async def ingest(
        self,
        knowledge_base_id: str,
        version: str,
        source: str,
        options: IngestionOptions | None = None,
    ) -> IngestResult:
        """Bring the (knowledge_base_id, version) partition up to the source's latest revision.

        Raises:
            ValidationError: invalid chunking options or source location.
            ProviderError: the source or the embedding provider failed.
            StorageError: a chunk or state write failed.
        """
        options = options or IngestionOptions()
        chunker = MarkdownChunker(options.chunk_size, options.chunk_overlap)
        provider = self._provider_factory(source)
        start = time.monotonic()

        plog.separator(f"Sync {knowledge_base_id}/{version}")
        with plog.timed_step(PipelineStage.SOURCE, "Resolving current revision", source=source):
            sha = await provider.current_revision()

        state = await self._states.get(knowledge_base_id)

        if state is None or options.replace_existing:
            reason = "first sync" if state is None else "replace_existing"
            result = await self._full_sync(
                knowledge_base_id, version, sha, provider, chunker, options, reason
            )
        elif state.last_commit_sha == sha:
            plog.step_complete(PipelineStage.SYNC, "Already up to date, skipping", sha=sha[:12])
            return IngestResult(sync_type=SyncType.SKIPPED, sha=sha)
        else:
            try:
                with plog.timed_step(
                    PipelineStage.DIFF,
                    "Comparing revisions",
                    base=state.last_commit_sha[:12],
                    head=sha[:12],
                ):
                    changes = await provider.diff(state.last_commit_sha, sha)
            except RevisionNotFoundError:
                plog.step_warning(
                    PipelineStage.DIFF,
                    "Base revision is gone, falling back to full sync",
                    base=state.last_commit_sha[:12],
                )
                result = await self._full_sync(
                    knowledge_base_id,
                    version,
                    sha,
                    provider,
                    chunker,
                    options,
                    "revision missing",
                )
            else:
                result = await self._incremental_sync(
                    knowledge_base_id, version, sha, provider, chunker, options, changes
                )

        await self._states.save(SyncState(knowledge_base_id=knowledge_base_id, last_commit_sha=sha))

        plog.step_complete(
            PipelineStage.COMPLETE,
            f"{result.sync_type.value.capitalize()} sync of {knowledge_base_id}/{version} done",
            documents=result.documents_processed,
            chunks=result.chunks_created,
        )
        plog.stats(
            added=result.added,
            modified=result.modified,
            removed=result.removed,
            elapsed=f"{time.monotonic() - start:.2f}s",
        )
        return result

    # ── Sync strategies ──────────────────────────────────────────────

    async def _full_sync(
        self,
        knowledge_base_id: str,
        version: str,
        sha: str,
        provider: SourceTreeProvider,
        chunker: MarkdownChunker,
        options: IngestionOptions,
        reason: str,
    ) -> IngestResult:
        """Rebuild the partition from every listed file.

        The checkpoint is dropped first, so a run that fails part way leaves the
        next one to start over with a full sync. Files are replaced one at a time
        and readers keep seeing the previous chunks until then; files that are no
        longer listed are pruned once every listed file has been written.
        """
        plog.step_start(PipelineStage.SYNC, "Full sync", reason=reason, sha=sha[:12])
        await self._states.delete(knowledge_base_id)

        paths = await provider.list_files(options.extensions)
        plog.detail(f"{len(paths)} files to ingest")

        chunks_created = await self._process_files(
            knowledge_base_id, version, provider, chunker, paths
        )

        listed = set(paths)
        stale = [
            path
            for path in await self._chunks.list_source_files(knowledge_base_id, version)
            if path not in listed
        ]
        with plog.timed_step(PipelineStage.STORAGE, "Pruning unlisted files", files=len(stale)):
            if not listed:
                await self._chunks.delete_by_knowledge_base(knowledge_base_id, version)
            else:
                for path in stale:
                    await self._chunks.delete_by_source_file(knowledge_base_id, version, path)

        return IngestResult(
            sync_type=SyncType.FULL,
            sha=sha,
            documents_processed=len(paths),
            chunks_created=chunks_created,
            added=len(paths),
            removed=len(stale),
        )

    async def _incremental_sync(
        self,
        knowledge_base_id: str,
        version: str,
        sha: str,
        provider: SourceTreeProvider,
        chunker: MarkdownChunker,
        options: IngestionOptions,
        changes: ChangedFiles,
    ) -> IngestResult:
        changes = changes.filtered(options.extensions)
        plog.step_start(
            PipelineStage.SYNC,
            "Incremental sync",
            added=len(changes.added),
            modified=len(changes.modified),
            removed=len(changes.removed),
        )

        if changes.is_empty:
            plog.step_complete(PipelineStage.SYNC, "No changes under the tracked extensions")
            return IngestResult(sync_type=SyncType.INCREMENTAL, sha=sha)

        for path in changes.removed:
            deleted = await self._chunks.delete_by_source_file(knowledge_base_id, version, path)
            plog.detail(f"Removed {path}", deleted_chunks=deleted)

        paths = [*changes.added, *changes.modified]
        chunks_created = await self._process_files(
            knowledge_base_id, version, provider, chunker, paths
        )
        return IngestResult(
            sync_type=SyncType.INCREMENTAL,
            sha=sha,
            documents_processed=len(paths),
            chunks_created=chunks_created,
            added=len(changes.added),
            modified=len(changes.modified),
            removed=len(changes.removed),
        )

    # ── Per-file processing ──────────────────────────────────────────

    async def _process_files(
        self,
        knowledge_base_id: str,
        version: str,
        provider: SourceTreeProvider,
        chunker: MarkdownChunker,
        paths: list[str],
    ) -> int:
        """Ingest files concurrently; raise the first failure once all files have settled."""
        if not paths:
            return 0

        semaphore = asyncio.Semaphore(self._max_concurrent_files)

        async def bounded(path: str) -> int:
            async with semaphore:
                return await self._process_file(knowledge_base_id, version, provider, chunker, path)

        outcomes = await asyncio.gather(*(bounded(p) for p in paths), return_exceptions=True)

        failures = [(p, o) for p, o in zip(paths, outcomes) if isinstance(o, BaseException)]
        if failures:
            for path, error in failures:
                plog.step_error(PipelineStage.ERROR, f"Failed to ingest {path}", error=error)
            raise failures[0][1]

        return sum(outcomes)

    async def _process_file(
        self,
        knowledge_base_id: str,
        version: str,
        provider: SourceTreeProvider,
        chunker: MarkdownChunker,
        path: str,
    ) -> int:
        content = await provider.fetch_content(path)
        drafts = chunker.chunk_document(content, path)

        vectors = await self._embeddings.embed([d.embedding_text for d in drafts])

        chunks = [
            DocumentChunk(
                knowledge_base_id=knowledge_base_id,
                version=version,
                source_file=path,
                chunk_index=draft.chunk_index,
                content=draft.content,
                embedding=vector,
                content_with_context=draft.content_with_context,
                document_title=draft.document_title,
                section_path=list(draft.section_path),
                metadata={
                    "sourceFile": path,
                    "chunkIndex": draft.chunk_index,
                    "totalChunks": len(drafts),
                    "startOffset": draft.start_offset,
                    "endOffset": draft.end_offset,
                },
            )
            for draft, vector in zip(drafts, vectors)
        ]

        await self._chunks.replace_source_file(knowledge_base_id, version, path, chunks)
        plog.detail(f"Ingested {path}", chunks=len(chunks))
        return len(chunks)
