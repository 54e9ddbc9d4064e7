"""
Reference Extraction for Legal Text

Scans a piece of text for legal citations (case law, statutes, regulations),
section / paragraph / page references and the single best clause type.

Extraction is pure: no state, no side effects, never raises. All patterns
come from legal_patterns and are applied in table order.
"""

import re
import logging
from typing import Optional
from dataclasses import dataclass, field

from .legal_patterns import (
    CITATION_PATTERNS,
    SECTION_REFERENCE_PATTERNS,
    PARAGRAPH_REFERENCE_PATTERNS,
    PAGE_REFERENCE_PATTERNS,
    CLAUSE_TYPE_PATTERNS,
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_RANGE_DASH = re.compile(r"\s*[-–]\s*")


@dataclass
class References:
    """Everything the extractor found in one piece of text."""
    citations: list[str] = field(default_factory=list)
    sections: list[str] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    pages: list[str] = field(default_factory=list)
    clause_type: Optional[str] = None

    def is_empty(self) -> bool:
        return not (
            self.citations or self.sections or self.paragraphs
            or self.pages or self.clause_type
        )

    def to_dict(self) -> dict:
        return {
            "citations": self.citations,
            "sections": self.sections,
            "paragraphs": self.paragraphs,
            "pages": self.pages,
            "clause_type": self.clause_type,
        }


def _unique(values) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


class ReferenceExtractor:
    """
    Extracts citations, references and clause type from legal text.

    The pattern tables can be overridden per instance (e.g. for a
    jurisdiction with its own citation forms); defaults come from
    legal_patterns.
    """

    def __init__(
        self,
        citation_patterns: Optional[list] = None,
        clause_patterns: Optional[list] = None,
    ):
        self._citation_patterns = CITATION_PATTERNS if citation_patterns is None else citation_patterns
        self._clause_patterns = CLAUSE_TYPE_PATTERNS if clause_patterns is None else clause_patterns

    def extract(self, text: str) -> References:
        """
        Extract all references from text.

        Args:
            text: Chunk or document text

        Returns:
            References with de-duplicated, insertion-ordered collections
        """
        if not text or not text.strip():
            return References()

        return References(
            citations=self.extract_citations(text),
            sections=self._collect(SECTION_REFERENCE_PATTERNS, text),
            paragraphs=self._collect(PARAGRAPH_REFERENCE_PATTERNS, text),
            pages=[_RANGE_DASH.sub("-", p) for p in self._collect(PAGE_REFERENCE_PATTERNS, text)],
            clause_type=self.classify_clause(text),
        )

    def extract_citations(self, text: str) -> list[str]:
        """Find legal citations, first-seen order, across all pattern families."""
        found = []
        for label, pattern in self._citation_patterns:
            for match in pattern.finditer(text):
                found.append((match.start(), _WHITESPACE.sub(" ", match.group(0)).strip()))
        # Families are tried in priority order, but output follows the text
        found.sort(key=lambda item: item[0])
        return _unique(citation for _, citation in found)

    def classify_clause(self, text: str) -> Optional[str]:
        """Return the first matching clause type by table order, or None."""
        for pattern, clause_type in self._clause_patterns:
            if pattern.search(text):
                return clause_type
        return None

    def apply(self, chunk) -> None:
        """Copy the extraction for chunk.text into the chunk's reference fields."""
        refs = self.extract(chunk.text)
        chunk.citations = refs.citations
        chunk.sections = refs.sections
        chunk.paragraphs = refs.paragraphs
        chunk.pages = refs.pages
        chunk.clause_type = refs.clause_type

    @staticmethod
    def _collect(patterns, text: str) -> list[str]:
        found = []
        for pattern in patterns:
            for match in pattern.finditer(text):
                found.append((match.start(), match.group(1)))
        found.sort(key=lambda item: item[0])
        return _unique(value for _, value in found)


if __name__ == "__main__":
    import sys
    import json

    logging.basicConfig(level=logging.INFO)

    sample = " ".join(sys.argv[1:]) or (
        "See Brown v. Board of Education, 347 U.S. 483 (1954) and 42 U.S.C. § 1983; "
        "the indemnification obligations in Section 7.2 apply (pp. 12-14)."
    )
    print(json.dumps(ReferenceExtractor().extract(sample).to_dict(), indent=2))
