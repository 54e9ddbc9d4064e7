"""
Legal-Aware Structural Chunker

Splits raw document text into bounded, overlapping chunks while keeping
legal structure (section headers, self-contained clauses) intact.

Strategy (recursive separator splitting):
- Separators are tried coarsest -> finest: paragraph, line, sentence,
  clause, word, character (see legal_patterns.SEPARATORS)
- Pieces are packed into a running buffer up to max_size characters
- Each new buffer is seeded with the tail of the previous chunk (overlap),
  cut at a sentence boundary when possible, otherwise at a word boundary
- Oversized pieces are split again with the next finer separator
- At paragraph / line level a piece that looks like a structural unit
  (section header or clause) is emitted on its own when it fits within
  max_size * atomic_tolerance
"""

import logging
from typing import Optional
from dataclasses import dataclass, field

from .legal_patterns import (
    SEPARATORS,
    SENTENCE_BOUNDARY,
    SECTION_HEADER_PATTERNS,
    CLAUSE_TYPE_PATTERNS,
)

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """A chunk of document text with structural metadata."""
    index: int
    text: str
    source_doc_id: str
    source_name: str

    # Structure
    section_title: Optional[str] = None
    section_number: Optional[str] = None
    is_heading: bool = False

    # Filled by the ReferenceExtractor
    citations: list[str] = field(default_factory=list)
    clause_type: Optional[str] = None
    sections: list[str] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    pages: list[str] = field(default_factory=list)

    # Position of the core (non-overlap) text in the source document
    start_char: int = 0
    end_char: int = 0
    # Leading characters of text duplicated from the previous chunk
    overlap_length: int = 0

    @property
    def core_text(self) -> str:
        return self.text[self.overlap_length:]

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "text": self.text,
            "source_doc_id": self.source_doc_id,
            "source_name": self.source_name,
            "section_title": self.section_title,
            "section_number": self.section_number,
            "is_heading": self.is_heading,
            "citations": self.citations,
            "clause_type": self.clause_type,
            "sections": self.sections,
            "paragraphs": self.paragraphs,
            "pages": self.pages,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "overlap_length": self.overlap_length,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters (sizes in characters)."""
    max_size: int = 1000
    overlap: int = 200

    # Structural units may exceed max_size by this factor instead of being split
    atomic_tolerance: float = 1.2

    # Chunks at most this long can be flagged as headings
    heading_max_chars: int = 200


@dataclass
class _Segment:
    """A flushed chunk before metadata is attached."""
    start: int
    end: int
    prefix: str
    structural: bool = False


class _PackState:
    """Running buffer shared across recursion levels for one document."""

    def __init__(self, text: str, max_size: int, overlap: int):
        self.text = text
        self.max_size = max_size
        self.overlap = overlap
        self.segments: list[_Segment] = []
        self.buf_start: Optional[int] = None
        self.buf_end: Optional[int] = None
        self.prefix = ""
        self.last_core = ""

    @property
    def buffer_length(self) -> int:
        if self.buf_start is None:
            return 0
        return len(self.prefix) + (self.buf_end - self.buf_start)


class LegalChunker:
    """
    Chunks legal documents while preserving section and clause boundaries.

    Usage:
        chunker = LegalChunker(ChunkConfig(max_size=800, overlap=100))
        chunks = chunker.chunk(text, "doc-1", "Master Services Agreement")
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()

    def chunk(
        self,
        text: str,
        document_id: str,
        document_name: str,
        max_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> list[Chunk]:
        """
        Split a document into retrieval-ready chunks.

        Args:
            text: Full extracted document text
            document_id: Stable source document id
            document_name: Human-readable document name
            max_size: Maximum chunk length in characters (defaults to config)
            overlap: Overlap length in characters (defaults to config)

        Returns:
            Chunks in document order, indexed from 0. Empty text yields [].
        """
        if not text or not text.strip():
            logger.warning(f"Document {document_id} has no text; producing no chunks")
            return []

        max_size = max_size if max_size is not None else self.config.max_size
        overlap = overlap if overlap is not None else self.config.overlap
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        overlap = max(0, min(overlap, max_size - 1))

        state = _PackState(text, max_size, overlap)
        self._split(state, 0, len(text), 0)
        self._flush(state)

        chunks = []
        for segment in state.segments:
            core = text[segment.start:segment.end]
            prefix = segment.prefix if segment.prefix.strip() else ""
            if prefix:
                chunk_text = (prefix.lstrip() + core).rstrip()
                overlap_length = len(prefix.lstrip())
            else:
                chunk_text = core.strip()
                overlap_length = 0

            chunk = Chunk(
                index=len(chunks),
                text=chunk_text,
                source_doc_id=document_id,
                source_name=document_name,
                start_char=segment.start,
                end_char=segment.end,
                overlap_length=overlap_length,
            )
            self._attach_structure(chunk, core)
            chunks.append(chunk)

        logger.info(
            f"Created {len(chunks)} chunks from document {document_id} "
            f"(max_size={max_size}, overlap={overlap})"
        )
        return chunks

    # =========================================================================
    # Recursive splitting
    # =========================================================================

    def _split(self, state: _PackState, start: int, end: int, level: int) -> None:
        """Pack text[start:end] into the running buffer, recursing on oversized pieces."""
        name, separator, structural = SEPARATORS[level]
        tolerance_size = int(state.max_size * self.config.atomic_tolerance)

        for piece_start, piece_end in self._pieces(state.text, start, end, separator):
            piece = state.text[piece_start:piece_end]
            length = piece_end - piece_start

            if structural and length <= tolerance_size and self._is_structural(piece):
                self._flush(state)
                state.segments.append(_Segment(piece_start, piece_end, "", structural=True))
                state.last_core = piece
                continue

            if length > state.max_size:
                self._flush(state)
                logger.debug(
                    f"Piece of {length} chars exceeds max_size at '{name}' level; splitting finer"
                )
                self._split(state, piece_start, piece_end, level + 1)
                continue

            self._add_piece(state, piece_start, piece_end)

    @staticmethod
    def _pieces(text: str, start: int, end: int, separator) -> list[tuple[int, int]]:
        """Split text[start:end] keeping each separator attached to the preceding piece."""
        if separator is None:
            return [(i, i + 1) for i in range(start, end)]

        pieces = []
        cursor = start
        for match in separator.finditer(text, start, end):
            if match.end() == match.start():
                continue
            pieces.append((cursor, match.end()))
            cursor = match.end()
        if cursor < end:
            pieces.append((cursor, end))
        return [p for p in pieces if p[1] > p[0]]

    def _add_piece(self, state: _PackState, piece_start: int, piece_end: int) -> None:
        length = piece_end - piece_start

        if state.buf_start is not None and state.buffer_length + length > state.max_size:
            self._flush(state)

        if state.buf_start is None:
            budget = min(state.overlap, state.max_size - length)
            state.prefix = self._overlap_tail(state.last_core, budget)
            state.buf_start = piece_start
        state.buf_end = piece_end

    def _flush(self, state: _PackState) -> None:
        """Emit the buffer as a segment (whitespace-only cores are dropped)."""
        if state.buf_start is None:
            return
        core = state.text[state.buf_start:state.buf_end]
        if core.strip():
            state.segments.append(_Segment(state.buf_start, state.buf_end, state.prefix))
            state.last_core = core
        state.buf_start = None
        state.buf_end = None
        state.prefix = ""

    @staticmethod
    def _overlap_tail(core: str, budget: int) -> str:
        """
        Take at most `budget` trailing characters of core as overlap.

        Prefers to start the overlap right after a sentence boundary located
        in the back half of the tail; otherwise drops a partial leading word.
        """
        if budget <= 0 or not core.strip():
            return ""
        tail = core[-budget:]
        half = len(tail) // 2

        for match in SENTENCE_BOUNDARY.finditer(tail):
            if match.end() >= half and tail[match.end():].strip():
                return tail[match.end():]

        # Cut at a word boundary unless the tail already starts on one
        starts_mid_word = len(tail) < len(core) and not core[-len(tail) - 1].isspace()
        if starts_mid_word and not tail[0].isspace():
            for i, ch in enumerate(tail):
                if ch.isspace():
                    remainder = tail[i:]
                    return remainder if remainder.strip() else ""
            # A single unbroken token: keep the raw characters
        return tail

    # =========================================================================
    # Structure detection
    # =========================================================================

    @staticmethod
    def _is_structural(piece: str) -> bool:
        """A section/article header at the start, or any clause-type signal."""
        stripped = piece.strip()
        if not stripped:
            return False
        for _, pattern in SECTION_HEADER_PATTERNS:
            if pattern.match(stripped):
                return True
        for pattern, _ in CLAUSE_TYPE_PATTERNS:
            if pattern.search(stripped):
                return True
        return False

    def _attach_structure(self, chunk: Chunk, core: str) -> None:
        """Set section title/number and heading flag from the first header match."""
        best = None
        for _, pattern in SECTION_HEADER_PATTERNS:
            match = pattern.search(core)
            if match and (best is None or match.start() < best.start()):
                best = match
        if best is None:
            return

        number = best.group("number").rstrip(".")
        title = (best.group("title") or "").strip().strip("*").strip()
        chunk.section_number = number or None
        chunk.section_title = title or None

        body = core.strip()
        matched = best.group(0).strip()
        chunk.is_heading = (
            len(body) <= self.config.heading_max_chars
            and len(matched) > len(body) / 2
        )


# CLI for testing
if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) > 1:
        with open(sys.argv[1], encoding="utf-8") as f:
            sample = f.read()
    else:
        sample = (
            "SECTION 1. Scope.\nThis applies to all widgets.\n\n"
            "SECTION 2. Term.\nFive (5) years from the Effective Date."
        )

    for c in LegalChunker().chunk(sample, "sample", "Sample", max_size=60, overlap=10):
        print(f"[{c.index}] §{c.section_number} {c.section_title!r} heading={c.is_heading}")
        print(f"    {c.text!r}")
