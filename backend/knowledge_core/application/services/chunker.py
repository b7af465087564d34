"""Markdown-aware chunker: fixed-size overlapping windows with heading context.

Windows are cut purely by character count so that chunking is deterministic
and lossless: consecutive chunks share exactly `overlap` characters and
dropping the first `overlap` characters of every chunk after the first, then
concatenating, reproduces the source text. Markdown structure is used only
to annotate each window with its document title and section path.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import yaml

from knowledge_core.config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from knowledge_core.domain.entities.chunk import DocumentChunkDraft
from knowledge_core.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_FRONTMATTER_RE = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
_TITLE_SUFFIXES = (".md", ".mdx", ".markdown", ".txt")


@dataclass
class TextSpan:
    """A contiguous slice `text[start:end]` of a document."""

    start: int
    end: int
    text: str


@dataclass
class Section:
    """A markdown section: a heading and the text up to the next heading."""

    heading: str
    level: int
    start: int
    end: int
    path: list[str] = field(default_factory=list)  # ancestor headings, root first


@dataclass
class MarkdownStructure:
    title: str
    sections: list[Section] = field(default_factory=list)


def validate_chunking(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ValidationError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ValidationError(f"overlap must not be negative, got {overlap}")
    if overlap >= chunk_size:
        raise ValidationError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def chunk_text(text: str, chunk_size: int, overlap: int) -> list[TextSpan]:
    """Split text into fixed-size windows that overlap by exactly `overlap` characters.

    The last window may be shorter than `chunk_size`. Empty text yields no spans.
    """
    validate_chunking(chunk_size, overlap)
    if not text:
        return []

    step = chunk_size - overlap
    spans: list[TextSpan] = []
    start = 0
    while True:
        end = min(start + chunk_size, len(text))
        spans.append(TextSpan(start=start, end=end, text=text[start:end]))
        if end >= len(text):
            break
        start += step
    return spans


def extract_markdown_structure(content: str, filename: str) -> MarkdownStructure:
    """Parse headings into a flat list of sections with their heading paths.

    The document title is the first heading when it is a level-1 heading,
    otherwise a `title` in YAML front matter, otherwise the file name.
    Lines inside fenced code blocks are never treated as headings.
    """
    title = _title_from_filename(filename)
    frontmatter_title = _frontmatter_title(content)
    if frontmatter_title:
        title = frontmatter_title

    sections: list[Section] = []
    stack: list[tuple[int, str]] = []
    in_fence = False
    offset = 0

    for line in content.splitlines(keepends=True):
        line_start = offset
        offset += len(line)

        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        match = _HEADING_RE.match(line.rstrip("\r\n"))
        if not match:
            continue

        level = len(match.group(1))
        heading = match.group(2).strip()

        if sections:
            sections[-1].end = line_start
        elif level == 1:
            title = heading

        while stack and stack[-1][0] >= level:
            stack.pop()

        sections.append(
            Section(
                heading=heading,
                level=level,
                start=line_start,
                end=len(content),
                path=[h for _, h in stack],
            )
        )
        stack.append((level, heading))

    return MarkdownStructure(title=title, sections=sections)


def section_path_at(sections: list[Section], position: int) -> list[str]:
    """Heading path (root to leaf) of the section containing `position`.

    Empty when the position precedes the first heading.
    """
    current: Section | None = None
    for section in sections:
        if section.start > position:
            break
        if position < section.end:
            current = section
    if current is None:
        return []
    return [*current.path, current.heading]


def build_contextual_prefix(title: str, section_path: list[str]) -> str:
    """Markdown header block prepended to a chunk before embedding.

    >>> build_contextual_prefix("API Guide", ["Authentication", "OAuth"])
    '# API Guide\\n## Authentication > OAuth\\n\\n'
    """
    if not section_path:
        return f"# {title}\n\n"
    return f"# {title}\n## {' > '.join(section_path)}\n\n"


class MarkdownChunker:
    """Turns a document into chunk drafts annotated with title and section path."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        validate_chunking(chunk_size, overlap)
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk_document(self, text: str, source_file: str) -> list[DocumentChunkDraft]:
        structure = extract_markdown_structure(text, source_file)
        spans = chunk_text(text, self._chunk_size, self._overlap)

        drafts: list[DocumentChunkDraft] = []
        for index, span in enumerate(spans):
            section_path = section_path_at(structure.sections, span.start)
            drafts.append(
                DocumentChunkDraft(
                    source_file=source_file,
                    chunk_index=index,
                    content=span.text,
                    start_offset=span.start,
                    end_offset=span.end,
                    document_title=structure.title,
                    section_path=section_path,
                    content_with_context=(
                        build_contextual_prefix(structure.title, section_path) + span.text
                    ),
                )
            )

        logger.debug(
            "Chunked %s into %d chunks (size=%d, overlap=%d)",
            source_file,
            len(drafts),
            self._chunk_size,
            self._overlap,
        )
        return drafts


def _title_from_filename(filename: str) -> str:
    name = PurePosixPath(filename).name
    for suffix in _TITLE_SUFFIXES:
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return name


def _frontmatter_title(content: str) -> str | None:
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return None
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    if isinstance(data, dict) and isinstance(data.get("title"), str):
        return data["title"].strip() or None
    return None
