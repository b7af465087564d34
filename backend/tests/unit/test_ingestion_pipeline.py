"""Unit tests for the IngestionPipeline: full, incremental and skipped syncs."""

import pytest

from fakes import (
    FakeChunkRepository,
    FakeEmbeddingProvider,
    FakeSourceTree,
    FakeSyncStateRepository,
)
from knowledge_core.application.services.embedding_service import EmbeddingGenerator
from knowledge_core.application.services.ingestion_service import (
    IngestionOptions,
    IngestionPipeline,
)
from knowledge_core.domain.entities import SyncJobPayload, SyncState, SyncType
from knowledge_core.domain.exceptions import ProviderError, StorageError, ValidationError

KB = "takaro-docs"
VERSION = "latest"
SOURCE = "https://github.com/gettakaro/takaro/tree/main/docs"

_DOC_A = "# Alpha\n\nAlpha explains modules.\n"
_DOC_B = "# Beta\n\nBeta explains hooks.\n"
_DOC_C = "# Gamma\n\nGamma explains cronjobs.\n"


# ── Harness ──────────────────────────────────────────────────────────


class Harness:
    def __init__(self, source: FakeSourceTree, states: FakeSyncStateRepository | None = None):
        self.source = source
        self.chunks = FakeChunkRepository()
        self.states = states or FakeSyncStateRepository()
        self.provider = FakeEmbeddingProvider()
        self.sources_requested: list[str] = []

        def factory(location: str) -> FakeSourceTree:
            self.sources_requested.append(location)
            return self.source

        self.pipeline = IngestionPipeline(
            self.chunks,
            self.states,
            EmbeddingGenerator(self.provider),
            factory,
            max_concurrent_files=2,
        )

    async def ingest(self, **options):
        return await self.pipeline.ingest(KB, VERSION, SOURCE, IngestionOptions(**options))

    def files(self) -> set[str]:
        return self.chunks.source_files(KB, VERSION)


def _two_file_tree() -> FakeSourceTree:
    return FakeSourceTree({"sha1": {"a.md": _DOC_A, "b.md": _DOC_B}}, head="sha1")


# ── Tests ────────────────────────────────────────────────────────────


class TestFullSync:
    async def test_first_sync_ingests_everything(self):
        h = Harness(_two_file_tree())

        result = await h.ingest(chunk_size=200, chunk_overlap=20)

        assert result.sync_type is SyncType.FULL
        assert result.sha == "sha1"
        assert result.documents_processed == 2
        assert result.added == 2
        assert result.chunks_created == len(h.chunks.partition(KB, VERSION))
        assert h.files() == {"a.md", "b.md"}
        assert h.states.states[KB].last_commit_sha == "sha1"
        assert h.sources_requested == [SOURCE]

    async def test_chunk_metadata_and_context(self):
        h = Harness(_two_file_tree())
        await h.ingest()

        chunk = next(c for c in h.chunks.partition(KB, VERSION) if c.source_file == "a.md")
        assert chunk.metadata == {
            "sourceFile": "a.md",
            "chunkIndex": 0,
            "totalChunks": 1,
            "startOffset": 0,
            "endOffset": len(_DOC_A),
        }
        assert chunk.document_title == "Alpha"
        assert chunk.content_with_context.startswith("# Alpha\n")
        assert chunk.embedding

    async def test_extension_filter(self):
        source = FakeSourceTree(
            {"sha1": {"a.md": _DOC_A, "logo.png": "binary", "notes.TXT": "plain"}}, head="sha1"
        )
        h = Harness(source)

        await h.ingest(extensions=["md", ".txt"])

        assert h.files() == {"a.md", "notes.TXT"}

    async def test_replace_existing_forces_full_sync(self):
        h = Harness(_two_file_tree())
        await h.ingest()

        result = await h.ingest(replace_existing=True)

        assert result.sync_type is SyncType.FULL
        assert h.source.diff_calls == []
        assert h.files() == {"a.md", "b.md"}

    async def test_replace_existing_prunes_files_no_longer_listed(self):
        h = Harness(_two_file_tree())
        await h.ingest()
        h.source.commit("sha2", {"a.md": _DOC_A, "c.md": _DOC_C})

        result = await h.ingest(replace_existing=True)

        assert result.sync_type is SyncType.FULL
        assert (result.added, result.removed) == (2, 1)
        assert h.files() == {"a.md", "c.md"}
        assert h.states.states[KB].last_commit_sha == "sha2"

    async def test_empty_listing_clears_partition(self):
        h = Harness(_two_file_tree())
        await h.ingest()
        h.source.commit("sha2", {"diagram.svg": "<svg/>"})

        result = await h.ingest(replace_existing=True)

        assert (result.documents_processed, result.removed) == (0, 2)
        assert h.files() == set()

    async def test_reingesting_is_idempotent(self):
        h = Harness(_two_file_tree())
        await h.ingest(chunk_size=50, chunk_overlap=10)
        first = {c.id: c.content for c in h.chunks.partition(KB, VERSION)}

        await h.ingest(chunk_size=50, chunk_overlap=10, replace_existing=True)
        second = {c.id: c.content for c in h.chunks.partition(KB, VERSION)}

        assert first == second


class TestIncrementalSync:
    async def test_unchanged_revision_is_skipped(self):
        h = Harness(_two_file_tree())
        await h.ingest()
        saves_before = len(h.states.saves)
        embed_calls_before = len(h.provider.calls)

        result = await h.ingest()

        assert result.sync_type is SyncType.SKIPPED
        assert result.documents_processed == 0
        assert len(h.states.saves) == saves_before
        assert len(h.provider.calls) == embed_calls_before

    async def test_added_modified_removed_files(self):
        source = FakeSourceTree({"sha1": {"A.md": _DOC_A, "B.md": _DOC_B, "C.md": _DOC_C}}, "sha1")
        h = Harness(source)
        await h.ingest()

        source.commit("sha2", {"A.md": _DOC_A, "B.md": _DOC_B + "More hooks.\n", "D.md": "# Delta\n"})
        source.fetched.clear()

        result = await h.ingest()

        assert result.sync_type is SyncType.INCREMENTAL
        assert (result.added, result.modified, result.removed) == (1, 1, 1)
        assert result.documents_processed == 2
        assert sorted(source.fetched) == ["B.md", "D.md"]
        assert h.files() == {"A.md", "B.md", "D.md"}
        b_chunks = [c for c in h.chunks.partition(KB, VERSION) if c.source_file == "B.md"]
        assert "More hooks." in b_chunks[-1].content
        assert h.states.states[KB].last_commit_sha == "sha2"

    async def test_changes_outside_extensions_ignored(self):
        source = FakeSourceTree({"sha1": {"a.md": _DOC_A}}, "sha1")
        h = Harness(source)
        await h.ingest()

        source.commit("sha2", {"a.md": _DOC_A, "diagram.svg": "<svg/>"})
        embed_calls_before = len(h.provider.calls)
        result = await h.ingest()

        assert result.sync_type is SyncType.INCREMENTAL
        assert result.documents_processed == 0
        assert h.files() == {"a.md"}
        assert len(h.provider.calls) == embed_calls_before
        assert source.fetched == ["a.md"]
        assert h.states.states[KB].last_commit_sha == "sha2"

    async def test_missing_base_revision_falls_back_to_full(self):
        source = FakeSourceTree({"sha2": {"a.md": _DOC_A}}, "sha2")
        states = FakeSyncStateRepository({KB: SyncState(KB, "rewritten-history")})
        h = Harness(source, states)
        h.chunks.rows.clear()

        result = await h.ingest()

        assert result.sync_type is SyncType.FULL
        assert h.files() == {"a.md"}
        assert h.states.states[KB].last_commit_sha == "sha2"


class TestFailures:
    async def test_failed_file_does_not_advance_state(self):
        source = FakeSourceTree({"sha1": {"a.md": _DOC_A}}, "sha1")
        h = Harness(source)
        await h.ingest()

        source.commit("sha2", {"a.md": _DOC_A, "b.md": _DOC_B, "c.md": _DOC_C})
        h.chunks.fail_source_files.add("c.md")

        with pytest.raises(StorageError):
            await h.ingest()

        assert h.states.states[KB].last_commit_sha == "sha1"

        # The retry diffs from the same base and converges
        h.chunks.fail_source_files.clear()
        result = await h.ingest()
        assert result.sync_type is SyncType.INCREMENTAL
        assert h.source.diff_calls[-1] == ("sha1", "sha2")
        assert h.files() == {"a.md", "b.md", "c.md"}

    async def test_failed_forced_full_sync_is_redone_by_next_sync(self):
        h = Harness(_two_file_tree())
        await h.ingest()
        h.source.fail_fetch.add("b.md")

        with pytest.raises(ProviderError):
            await h.ingest(replace_existing=True)

        # previous chunks stay readable while the run fails
        assert h.files() == {"a.md", "b.md"}
        assert KB not in h.states.states

        h.source.fail_fetch.clear()
        h.source.fetched.clear()
        result = await h.ingest()

        assert result.sync_type is SyncType.FULL
        assert h.files() == {"a.md", "b.md"}
        assert h.states.states[KB].last_commit_sha == "sha1"
        assert sorted(h.source.fetched) == ["a.md", "b.md"]

    async def test_embedding_failure_propagates(self):
        source = FakeSourceTree({"sha1": {"a.md": _DOC_A, "poison.md": "poison pill"}}, "sha1")
        h = Harness(source)
        h.provider.fail_on = "poison"

        with pytest.raises(ProviderError):
            await h.ingest()

        assert KB not in h.states.states

    async def test_fetch_failure_propagates(self):
        h = Harness(_two_file_tree())
        h.source.fail_fetch.add("b.md")

        with pytest.raises(ProviderError):
            await h.ingest()
        assert h.states.saves == []

    async def test_invalid_chunking_rejected_before_any_work(self):
        h = Harness(_two_file_tree())

        with pytest.raises(ValidationError):
            await h.pipeline.ingest(
                KB, VERSION, SOURCE, IngestionOptions(chunk_size=100, chunk_overlap=100)
            )
        assert h.sources_requested == []


class TestIngestionOptions:
    def test_from_payload(self):
        payload = SyncJobPayload(source=SOURCE, extensions=["mdx"], replace_existing=True)
        options = IngestionOptions.from_payload(payload)
        assert options.extensions == [".mdx"]
        assert options.replace_existing is True

    def test_from_payload_rejects_empty_extensions(self):
        with pytest.raises(ValidationError):
            IngestionOptions.from_payload(SyncJobPayload(source=SOURCE, extensions=[]))
