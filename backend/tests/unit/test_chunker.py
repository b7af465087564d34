"""Unit tests for the markdown chunker: windowing, overlap and heading context."""

import pytest

from knowledge_core.application.services.chunker import (
    MarkdownChunker,
    build_contextual_prefix,
    chunk_text,
    extract_markdown_structure,
    section_path_at,
)
from knowledge_core.domain.exceptions import ValidationError


def _reassemble(pieces: list[str], overlap: int) -> str:
    return pieces[0] + "".join(p[overlap:] for p in pieces[1:])


class TestChunkText:
    def test_empty_text_yields_no_spans(self):
        assert chunk_text("", 100, 10) == []

    def test_short_text_is_one_span(self):
        spans = chunk_text("hello", 100, 10)
        assert len(spans) == 1
        assert spans[0].text == "hello"
        assert (spans[0].start, spans[0].end) == (0, 5)

    def test_windows_overlap_by_exactly_overlap(self):
        text = "abcdefghijklmnopqrstuvwxyz" * 5
        spans = chunk_text(text, 20, 5)

        for prev, nxt in zip(spans, spans[1:]):
            assert prev.text[-5:] == nxt.text[:5]
            assert nxt.start == prev.start + 15
        assert all(len(s.text) == 20 for s in spans[:-1])
        assert len(spans[-1].text) <= 20

    def test_reassembly_is_lossless(self):
        text = "".join(f"line {i}: some words here\n" for i in range(200))
        spans = chunk_text(text, 300, 60)
        assert _reassemble([s.text for s in spans], 60) == text

    def test_zero_overlap_partitions_text(self):
        spans = chunk_text("x" * 25, 10, 0)
        assert [len(s.text) for s in spans] == [10, 10, 5]

    def test_text_exactly_chunk_size_is_one_span(self):
        assert len(chunk_text("y" * 50, 50, 10)) == 1

    @pytest.mark.parametrize(
        "size, overlap",
        [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 20)],
    )
    def test_invalid_options_rejected(self, size, overlap):
        with pytest.raises(ValidationError):
            chunk_text("text", size, overlap)


class TestMarkdownStructure:
    def test_first_h1_is_title(self):
        structure = extract_markdown_structure("# Hooks\n\nIntro\n## Events\nbody\n", "docs/hooks.md")
        assert structure.title == "Hooks"

    def test_title_falls_back_to_filename(self):
        structure = extract_markdown_structure("plain text only\n", "docs/getting-started.mdx")
        assert structure.title == "getting-started"

    def test_frontmatter_title_used_without_h1(self):
        content = "---\ntitle: Modules Guide\nsidebar_position: 2\n---\n\n## Setup\ntext\n"
        structure = extract_markdown_structure(content, "modules.md")
        assert structure.title == "Modules Guide"

    def test_headings_inside_code_fences_ignored(self):
        content = "# Title\n\n```bash\n# not a heading\n```\n## Real\n"
        structure = extract_markdown_structure(content, "a.md")
        assert [s.heading for s in structure.sections] == ["Title", "Real"]

    def test_section_paths_follow_nesting(self):
        content = (
            "# Guide\n"
            "## Auth\n"
            "### OAuth\n"
            "oauth text\n"
            "## Usage\n"
            "usage text\n"
        )
        structure = extract_markdown_structure(content, "guide.md")

        oauth_pos = content.index("oauth text")
        usage_pos = content.index("usage text")
        assert section_path_at(structure.sections, oauth_pos) == ["Guide", "Auth", "OAuth"]
        assert section_path_at(structure.sections, usage_pos) == ["Guide", "Usage"]

    def test_position_before_first_heading_has_empty_path(self):
        content = "preamble\n# Title\n"
        structure = extract_markdown_structure(content, "a.md")
        assert section_path_at(structure.sections, 0) == []


def test_contextual_prefix_formats():
    assert build_contextual_prefix("API Guide", []) == "# API Guide\n\n"
    assert (
        build_contextual_prefix("API Guide", ["Authentication", "OAuth"])
        == "# API Guide\n## Authentication > OAuth\n\n"
    )


class TestMarkdownChunker:
    def test_drafts_carry_offsets_and_context(self):
        body = "word " * 100
        content = f"# Takaro\n## Modules\n{body}"
        chunker = MarkdownChunker(chunk_size=120, overlap=20)

        drafts = chunker.chunk_document(content, "docs/modules.md")

        assert [d.chunk_index for d in drafts] == list(range(len(drafts)))
        assert all(d.source_file == "docs/modules.md" for d in drafts)
        assert all(d.document_title == "Takaro" for d in drafts)
        for d in drafts:
            assert content[d.start_offset : d.end_offset] == d.content
            assert d.content_with_context.endswith(d.content)
            assert d.content_with_context.startswith("# Takaro\n")
        assert drafts[-1].section_path == ["Takaro", "Modules"]
        assert drafts[-1].embedding_text == drafts[-1].content_with_context

    def test_chunking_is_deterministic(self):
        content = "# A\n" + "lorem ipsum " * 300
        chunker = MarkdownChunker(chunk_size=200, overlap=50)
        first = chunker.chunk_document(content, "a.md")
        second = chunker.chunk_document(content, "a.md")
        assert [d.content for d in first] == [d.content for d in second]

    def test_empty_document_has_no_chunks(self):
        assert MarkdownChunker(100, 10).chunk_document("", "empty.md") == []

    def test_constructor_validates_options(self):
        with pytest.raises(ValidationError):
            MarkdownChunker(chunk_size=100, overlap=100)
