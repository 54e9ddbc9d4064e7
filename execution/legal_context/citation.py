"""
Citation Building and Formatting for Retrieved Legal Excerpts

Groups SearchResults by source document, merges their section / paragraph /
page references and formats them in common legal citation styles:

    bluebook / alwd:  Master Services Agreement, § 2, 7.1
    apa:              Master Services Agreement (p. 3, 4)
    simple:           Master Services Agreement

Also renders the prompt-ready "cited context" block: document headers with
metadata, reference summaries and sentence-numbered excerpts.
"""

import logging
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections import OrderedDict

from .legal_patterns import SENTENCE_BOUNDARY
from .references import ReferenceExtractor
from .vector_store import SearchResult

logger = logging.getLogger(__name__)

CITATION_FORMATS = ("bluebook", "simple", "apa", "alwd")


def _numeric_key(value: str) -> tuple:
    """Sort key for references like "7", "7.2", "12-14"."""
    parts = []
    for piece in value.replace("-", ".").split("."):
        parts.append(int(piece) if piece.isdigit() else 0)
    return tuple(parts)


@dataclass
class DocumentCitation:
    """Merged references for one cited document."""
    document_id: str
    document_name: str
    sections: list[str] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    pages: list[str] = field(default_factory=list)
    citations: list[str] = field(default_factory=list)
    best_score: float = 0.0
    excerpt_count: int = 0

    def format(self, style: str = "bluebook") -> str:
        """Format the citation in the given style."""
        if style not in CITATION_FORMATS:
            raise ValueError(f"Unknown citation format: {style}")

        if style in ("bluebook", "alwd"):
            if self.sections:
                return f"{self.document_name}, § {', '.join(self.sections)}"
            return self.document_name

        if style == "apa":
            if self.pages:
                return f"{self.document_name} (p. {', '.join(self.pages)})"
            return self.document_name

        return self.document_name

    def reference_summary(self) -> str:
        """Section and page references, e.g. "§ 2, § 7.1; p. 3"."""
        parts = []
        if self.sections:
            parts.append("§ " + ", § ".join(self.sections))
        if self.pages:
            parts.append("p. " + ", p. ".join(self.pages))
        return "; ".join(parts)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "sections": self.sections,
            "paragraphs": self.paragraphs,
            "pages": self.pages,
            "citations": self.citations,
            "best_score": self.best_score,
            "excerpt_count": self.excerpt_count,
            "bluebook": self.format("bluebook"),
        }


class CitationBuilder:
    """
    Builds citations and cited context from retrieval results.

    References are taken from the structural metadata recorded at index
    time when present, falling back to re-extracting them from the text.
    """

    def __init__(self, extractor: Optional[ReferenceExtractor] = None):
        self.extractor = extractor or ReferenceExtractor()

    def create_citations(self, results: list[SearchResult]) -> list[DocumentCitation]:
        """One citation per distinct document, in order of first appearance."""
        if not results:
            return []

        citations = []
        for document_id, group in self._group(results).items():
            sections, paragraphs, pages, legal_citations = [], [], [], []
            for result in group:
                refs = self._references(result)
                for target, values in (
                    (sections, refs["sections"]),
                    (paragraphs, refs["paragraphs"]),
                    (pages, refs["pages"]),
                    (legal_citations, refs["citations"]),
                ):
                    for value in values:
                        if value not in target:
                            target.append(value)

            citations.append(DocumentCitation(
                document_id=document_id,
                document_name=group[0].document_name,
                sections=sorted(sections, key=_numeric_key),
                paragraphs=sorted(paragraphs, key=_numeric_key),
                pages=sorted(pages, key=_numeric_key),
                citations=legal_citations,
                best_score=min(r.score for r in group),
                excerpt_count=len(group),
            ))

        logger.debug(f"Created {len(citations)} citations from {len(results)} results")
        return citations

    def cited_context(self, results: list[SearchResult]) -> str:
        """
        Render results as a context block with citation markers.

        Each document gets a header with its simple citation and metadata,
        followed by its excerpts (best first). Every sentence is tagged
        [doc-sentence] so answers can point at it.
        """
        if not results:
            return "No relevant legal documents found."

        lines = ["The following information is retrieved from the indexed legal documents:", ""]
        citations = {c.document_id: c for c in self.create_citations(results)}

        for doc_index, (document_id, group) in enumerate(self._group(results).items()):
            group = sorted(group, key=lambda r: r.score)
            citation = citations[document_id]
            lines.append(f"DOCUMENT {doc_index}: {citation.document_name} [{citation.format('simple')}]")

            metadata = group[0].metadata or {}
            for label, key in (("Type", "content_type"), ("Category", "category")):
                if metadata.get(key):
                    lines.append(f"{label}: {metadata[key]}")
            for label, key in (("Created", "created"), ("Updated", "updated")):
                if metadata.get(key):
                    lines.append(f"{label}: {_format_date(metadata[key])}")
            if metadata.get("parent_folder_name"):
                lines.append(f"Folder: {metadata['parent_folder_name']}")

            summary = citation.reference_summary()
            if summary:
                lines.append(f"References: {summary}")

            lines.append("")
            lines.append("Relevant content:")

            for excerpt_index, result in enumerate(group):
                refs = self._references(result)
                ref_text = ""
                if refs["sections"]:
                    ref_text += " [§ " + ", § ".join(refs["sections"]) + "]"
                if refs["paragraphs"]:
                    ref_text += " [¶ " + ", ¶ ".join(refs["paragraphs"]) + "]"
                if refs["pages"]:
                    ref_text += " [p. " + ", p. ".join(refs["pages"]) + "]"

                relevance = max(0.0, 1.0 - result.score) * 100
                lines.append(
                    f"--- Excerpt {excerpt_index}{ref_text} (Relevance: {relevance:.1f}%, "
                    f"DocIndex: {doc_index}, ChunkIndex: {result.chunk_index}) ---"
                )
                sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(result.text) if s.strip()]
                for sentence_index, sentence in enumerate(sentences):
                    lines.append(f"[{doc_index}-{sentence_index}] {sentence}")
                lines.append("")

            lines.append(f"SOURCE: {document_id}")
            lines.append("")

        return "\n".join(lines)

    @staticmethod
    def citation_metadata(query: str, citations: list[DocumentCitation]) -> dict:
        return {
            "query": query,
            "citations": [c.to_dict() for c in citations],
            "total_documents": len(citations),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _references(self, result: SearchResult) -> dict:
        metadata = result.metadata or {}
        if any(key in metadata for key in ("sections", "paragraphs", "pages")):
            return {
                "sections": list(metadata.get("sections") or []),
                "paragraphs": list(metadata.get("paragraphs") or []),
                "pages": list(metadata.get("pages") or []),
                "citations": list(metadata.get("citations") or []),
            }
        refs = self.extractor.extract(result.text)
        return {
            "sections": refs.sections,
            "paragraphs": refs.paragraphs,
            "pages": refs.pages,
            "citations": refs.citations,
        }

    @staticmethod
    def _group(results: list[SearchResult]) -> OrderedDict:
        groups: OrderedDict = OrderedDict()
        for result in results:
            groups.setdefault(result.document_id, []).append(result)
        return groups


def _format_date(value) -> str:
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return str(value)
