"""
Text chunking for retrieval indexing.

Splits plain text into bounded, optionally overlapping chunks.

Features:
- Selectable strategy: paragraph, sentence, fixed-size windows, or hybrid
  (paragraphs, with oversized paragraphs broken into sentences)
- Greedy merging of small units up to a token budget, never cutting a
  sentence in half
- Character overlap borrowed from the start of the next chunk
- Structure-aware variant that tags titles, code blocks and tables
"""

import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, NamedTuple, Optional

from ..config import get_section, pick_fields
from ..exceptions import InvalidConfigError, UnsupportedStrategyError
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)


class ChunkingStrategy(str, Enum):
    """How raw text is split into units before merging."""
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    FIXED = "fixed"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value) -> "ChunkingStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedStrategyError(f"Unsupported chunking strategy: {value!r}") from None


@dataclass(frozen=True)
class Chunk:
    """A bounded, indexable fragment of a document. Immutable once created."""
    id: str
    content: str
    chunk_index: int
    token_count: int
    start_position: int = 0
    end_position: int = 0
    document_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "token_count": self.token_count,
            "start_position": self.start_position,
            "end_position": self.end_position,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ChunkConfig:
    """Configuration for the chunker."""
    chunk_size: int = 500  # Token budget per chunk
    chunk_overlap: int = 0  # Characters borrowed from the next chunk
    strategy: ChunkingStrategy = ChunkingStrategy.HYBRID
    fixed_chunk_chars: int = 1000  # Window size for the fixed strategy
    merge_paragraphs: bool = False  # Let small paragraphs share a chunk

    def __post_init__(self):
        self.strategy = ChunkingStrategy.parse(self.strategy)
        if self.chunk_size <= 0:
            raise InvalidConfigError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise InvalidConfigError(f"chunk_overlap must be >= 0, got {self.chunk_overlap}")
        if self.fixed_chunk_chars <= 0:
            raise InvalidConfigError(
                f"fixed_chunk_chars must be positive, got {self.fixed_chunk_chars}"
            )

    def __repr__(self):
        return (
            f"ChunkConfig(size={self.chunk_size}, overlap={self.chunk_overlap}, "
            f"strategy={self.strategy.value})"
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkConfig":
        return cls(**pick_fields(cls, data))

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> "ChunkConfig":
        """Build from the `chunking` section of config.yaml."""
        return cls.from_dict(get_section("chunking", path))


class TextUnit(NamedTuple):
    """A trimmed slice of the source text with its character offsets."""
    text: str
    start: int
    end: int


SENTENCE_TERMINATORS = frozenset("。！？.!?\n")
PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


def _trimmed(source: str, start: int, end: int) -> Optional[TextUnit]:
    segment = source[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    lead = len(segment) - len(segment.lstrip())
    return TextUnit(stripped, start + lead, start + lead + len(stripped))


def split_paragraphs(text: str, offset: int = 0) -> list[TextUnit]:
    """Split on blank lines, trimming each paragraph and dropping empties."""
    units = []
    start = 0
    for match in PARAGRAPH_BREAK.finditer(text):
        unit = _trimmed(text, start, match.start())
        if unit:
            units.append(unit)
        start = match.end()
    unit = _trimmed(text, start, len(text))
    if unit:
        units.append(unit)
    if offset:
        units = [TextUnit(u.text, u.start + offset, u.end + offset) for u in units]
    return units


def split_sentences(text: str, offset: int = 0) -> list[TextUnit]:
    """Every terminator (CJK or Latin punctuation, or newline) closes a sentence."""
    units = []
    start = 0
    for i, ch in enumerate(text):
        if ch in SENTENCE_TERMINATORS:
            unit = _trimmed(text, start, i + 1)
            if unit:
                units.append(unit)
            start = i + 1
    unit = _trimmed(text, start, len(text))
    if unit:
        units.append(unit)
    if offset:
        units = [TextUnit(u.text, u.start + offset, u.end + offset) for u in units]
    return units


def split_fixed(text: str, size: int) -> list[TextUnit]:
    """Fixed character windows; whitespace-only windows are dropped."""
    units = []
    for start in range(0, len(text), size):
        window = text[start:start + size]
        if window.strip():
            units.append(TextUnit(window, start, start + len(window)))
    return units


class Chunker:
    """
    Split text into chunks bounded by a token budget.

    Units produced by the strategy are grouped; within a group they are
    greedily joined with newlines until the next unit would push the chunk
    over `chunk_size` tokens. Paragraphs form their own groups unless
    `merge_paragraphs` is set, so paragraph boundaries stay chunk boundaries.

    Usage:
        chunker = Chunker(ChunkConfig(chunk_size=500, strategy="hybrid"))
        chunks = chunker.chunk_text(text)
        chunks = chunker.chunk_document("doc-1", "Title", text, {"source": "kb"})
    """

    def __init__(
        self,
        config: Optional[ChunkConfig] = None,
        token_counter: Callable[[str], int] = estimate_tokens,
    ):
        self.config = config or ChunkConfig()
        self.count_tokens = token_counter

        self._splitters: dict[ChunkingStrategy, Callable[[str], list[list[TextUnit]]]] = {
            ChunkingStrategy.PARAGRAPH: self._group_paragraphs,
            ChunkingStrategy.SENTENCE: self._group_sentences,
            ChunkingStrategy.FIXED: self._group_fixed,
            ChunkingStrategy.HYBRID: self._group_hybrid,
        }

        self._stats_lock = threading.Lock()
        self._total_chunked = 0
        self._total_tokens = 0

    @property
    def strategy(self) -> ChunkingStrategy:
        return self.config.strategy

    def _group_paragraphs(self, text: str) -> list[list[TextUnit]]:
        paragraphs = split_paragraphs(text)
        if self.config.merge_paragraphs:
            return [paragraphs]
        return [[p] for p in paragraphs]

    def _group_sentences(self, text: str) -> list[list[TextUnit]]:
        return [split_sentences(text)]

    def _group_fixed(self, text: str) -> list[list[TextUnit]]:
        return [[w] for w in split_fixed(text, self.config.fixed_chunk_chars)]

    def _group_hybrid(self, text: str) -> list[list[TextUnit]]:
        groups = []
        for paragraph in split_paragraphs(text):
            if self.count_tokens(paragraph.text) <= self.config.chunk_size:
                groups.append([paragraph])
            else:
                # Paragraph too large, fall back to sentences
                groups.append(split_sentences(paragraph.text, offset=paragraph.start))

        if self.config.merge_paragraphs:
            return [[unit for group in groups for unit in group]]
        return groups

    def _merge(self, units: list[TextUnit]) -> list[list[TextUnit]]:
        merged = []
        current: list[TextUnit] = []
        current_tokens = 0

        for unit in units:
            unit_tokens = self.count_tokens(unit.text)
            if current and current_tokens + unit_tokens > self.config.chunk_size:
                merged.append(current)
                current = [unit]
                current_tokens = unit_tokens
            else:
                current.append(unit)
                current_tokens += unit_tokens

        if current:
            merged.append(current)
        return merged

    def _add_overlap(self, contents: list[str]) -> list[str]:
        overlap = self.config.chunk_overlap
        if overlap <= 0:
            return contents

        result = []
        for i, content in enumerate(contents):
            if i < len(contents) - 1:
                content = content + "\n" + contents[i + 1][:overlap]
            result.append(content)
        return result

    def _chunk_metadata(self, content: str, index: int) -> dict[str, Any]:
        """Per-chunk metadata; subclasses add structural flags here."""
        return {"strategy": self.config.strategy.value}

    def _build_chunks(
        self,
        text: str,
        document_id: Optional[str] = None,
        extra_metadata: Optional[dict] = None,
    ) -> list[Chunk]:
        start_time = time.perf_counter()
        if not text or not text.strip():
            return []

        spans = []
        for group in self._splitters[self.config.strategy](text):
            spans.extend(self._merge(group))

        contents = self._add_overlap(["\n".join(u.text for u in span) for span in spans])

        id_prefix = document_id or f"chunk-{uuid.uuid4().hex[:8]}"
        chunks = []
        total_tokens = 0
        for i, (span, content) in enumerate(zip(spans, contents)):
            tokens = self.count_tokens(content)
            metadata = self._chunk_metadata(content, i)
            metadata["tokens"] = tokens
            if extra_metadata:
                metadata.update(extra_metadata)

            chunks.append(Chunk(
                id=f"{id_prefix}-{i}",
                document_id=document_id,
                chunk_index=i,
                content=content,
                token_count=tokens,
                start_position=span[0].start,
                end_position=span[-1].end,
                metadata=metadata,
            ))
            total_tokens += tokens

        with self._stats_lock:
            self._total_chunked += len(chunks)
            self._total_tokens += total_tokens

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Chunked {len(text)} chars into {len(chunks)} chunks "
            f"({self.config.strategy.value}) in {elapsed_ms:.1f}ms"
        )
        return chunks

    def chunk_text(self, text: str) -> list[Chunk]:
        """
        Chunk plain text.

        Args:
            text: Raw text (empty or whitespace-only returns [])

        Returns:
            Chunks with dense chunk_index 0..N-1
        """
        return self._build_chunks(text)

    def chunk_document(
        self,
        document_id: str,
        title: str,
        content: str,
        metadata: Optional[dict] = None,
    ) -> list[Chunk]:
        """
        Chunk a document, linking every chunk back to it.

        Chunk ids are "{document_id}-{index}", so re-chunking the same
        document yields the same ids. Caller metadata is merged last.

        Args:
            document_id: Identifier owned by the metadata store
            title: Document title (used as citation source name)
            content: Plain text produced by a document parser
            metadata: Extra metadata copied onto every chunk

        Returns:
            List of chunks
        """
        doc_metadata = {"title": title, "document_id": document_id}
        doc_metadata.update(metadata or {})
        return self._build_chunks(content, document_id=document_id, extra_metadata=doc_metadata)

    def get_statistics(self) -> dict:
        """Get chunking statistics."""
        with self._stats_lock:
            return {
                "total_chunked": self._total_chunked,
                "total_tokens": self._total_tokens,
                "chunk_size": self.config.chunk_size,
                "chunk_overlap": self.config.chunk_overlap,
                "strategy": self.config.strategy.value,
            }


class StructureAwareChunker(Chunker):
    """
    Hybrid chunker that tags structural content.

    Adds `is_title` (chunk starts with '#'), `is_code` (contains a fenced
    block marker) and `is_table` (contains '|') to chunk metadata. Chunk
    boundaries are identical to the plain hybrid chunker.
    """

    def __init__(
        self,
        chunk_size: int = 500,
        chunk_overlap: int = 0,
        detect_titles: bool = True,
        detect_code_blocks: bool = True,
        detect_tables: bool = True,
    ):
        super().__init__(ChunkConfig(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            strategy=ChunkingStrategy.HYBRID,
        ))
        self.detect_titles = detect_titles
        self.detect_code_blocks = detect_code_blocks
        self.detect_tables = detect_tables

    def detect_structure(self, content: str) -> dict[str, bool]:
        """Structural flags for a piece of content (only true flags are returned)."""
        flags = {}
        if self.detect_titles and content.strip().startswith("#"):
            flags["is_title"] = True
        if self.detect_code_blocks and "```" in content:
            flags["is_code"] = True
        if self.detect_tables and "|" in content:
            flags["is_table"] = True
        return flags

    def _chunk_metadata(self, content: str, index: int) -> dict[str, Any]:
        metadata = super()._chunk_metadata(content, index)
        metadata.update(self.detect_structure(content))
        metadata["index"] = index
        return metadata

    def chunk_with_structure(self, content: str) -> list[Chunk]:
        """Chunk text with structural metadata."""
        return self.chunk_text(content)
