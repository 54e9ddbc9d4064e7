"""
Legal Pattern Tables for the Legal Context Engine

All regex tables used by the chunker, the reference extractor and the
retriever live here as ordered data. Modules iterate these tables in order
instead of defining patterns inline, so priority is the table order.
"""

import re

# =============================================================================
# Split Separators (coarsest -> finest)
# =============================================================================

# (name, compiled separator, structural-unit detection applies at this level)
# A separator of None means "split into single characters".
SEPARATORS = [
    ("paragraph", re.compile(r"\n[ \t]*\n\s*"), True),
    ("line", re.compile(r"\n"), True),
    ("sentence", re.compile(r"(?<=[.!?])\s+"), False),
    ("clause", re.compile(r"(?<=[;:,])\s+"), False),
    ("word", re.compile(r"\s+"), False),
    ("character", None, False),
]

# Sentence boundary used to cut overlap tails and to split cited excerpts
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")

# =============================================================================
# Section / Article Header Patterns
# =============================================================================

_HEADING_PREFIX = r"^[ \t]*(?:#{1,6}[ \t]+)?(?:\*\*)?"

# (label, pattern) with named groups "number" and "title"
SECTION_HEADER_PATTERNS = [
    ("article", re.compile(
        _HEADING_PREFIX
        + r"(?:ARTICLE|Article)[ \t]+(?P<number>[IVXLCDM]+|\d+)\b"
        + r"[ \t]*[.:\-–—]?[ \t]*(?P<title>[^\n.]{0,100})",
        re.MULTILINE,
    )),
    ("section", re.compile(
        _HEADING_PREFIX
        + r"(?:SECTION|Section|§)[ \t]*(?P<number>\d+(?:\.\d+)*)"
        + r"\.?[ \t]*[:\-–—]?[ \t]*(?P<title>[^\n.]{0,100})",
        re.MULTILINE,
    )),
    ("part", re.compile(
        _HEADING_PREFIX
        + r"(?:PART|Part)[ \t]+(?P<number>[IVXLCDM]+|\d+)\b"
        + r"[ \t]*[.:\-–—]?[ \t]*(?P<title>[^\n.]{0,100})",
        re.MULTILINE,
    )),
    ("chapter", re.compile(
        _HEADING_PREFIX
        + r"(?:CHAPTER|Chapter)[ \t]+(?P<number>[IVXLCDM]+|\d+)\b"
        + r"[ \t]*[.:\-–—]?[ \t]*(?P<title>[^\n.]{0,100})",
        re.MULTILINE,
    )),
    ("numbered", re.compile(
        _HEADING_PREFIX
        + r"(?P<number>\d+(?:\.\d+)+|\d+\.)[ \t]+(?P<title>[A-Z][^\n.]{0,100})",
        re.MULTILINE,
    )),
]

# =============================================================================
# Citation Patterns (case law, statutes, regulations)
# =============================================================================

_PARTY = r"[A-Z][\w.'&\-]*(?:\s+(?:[A-Z][\w.'&\-]*|of|the|and|for|&))*"
_REPORTER_TAIL = (
    r",\s+\d+\s+[A-Z][A-Za-z0-9.\s]*?\s+\d+(?:,\s*\d+)?\s*\([^()\n]*\d{4}\)"
)

# (label, pattern), applied in order; matches de-duplicated across families
CITATION_PATTERNS = [
    ("case", re.compile(
        r"\b(?!(?:See|In|Cf|But|Accord|Also|Compare)\b)"
        + _PARTY + r"\s+v\.\s+" + _PARTY + _REPORTER_TAIL
    )),
    ("in_re", re.compile(
        r"\bIn\s+re\s+" + _PARTY + _REPORTER_TAIL
    )),
    ("statute", re.compile(
        r"\b\d+\s+(?!C\.F\.R\.)[A-Z][A-Za-z.]*(?:\s+[A-Z][A-Za-z.]*)*"
        r"\s+§{1,2}\s*\d+[\w.\-]*(?:\([a-z0-9]+\))*"
    )),
    ("state_code", re.compile(
        r"\b(?:[A-Z][a-z]+\.?\s+)+(?:Code|Rev\.\s+Stat\.|Stat\.|Gen\.\s+Laws)"
        r"(?:\s+Ann\.)?\s+§{1,2}\s*\d+[\w.\-]*(?:\([a-z0-9]+\))*"
    )),
    ("regulation", re.compile(
        r"\b\d+\s+C\.F\.R\.\s+(?:(?:§{1,2}|Part)\s*)?\d+(?:\.\d+)*"
    )),
    ("federal_register", re.compile(
        r"\b\d+\s+Fed\.\s+Reg\.\s+\d+(?:\s*\([^()\n]*\d{4}\))?"
    )),
]

# =============================================================================
# Section / Paragraph / Page Reference Patterns
# =============================================================================

SECTION_REFERENCE_PATTERNS = [
    re.compile(r"§{1,2}\s*(\d+(?:\.\d+)*)"),
    re.compile(r"\bSections?\s+(\d+(?:\.\d+)*)", re.IGNORECASE),
]

PARAGRAPH_REFERENCE_PATTERNS = [
    re.compile(r"¶{1,2}\s*(\d+(?:\.\d+)*)"),
    re.compile(r"\b(?:Paragraphs?|para\.)\s*(\d+(?:\.\d+)*)", re.IGNORECASE),
]

PAGE_REFERENCE_PATTERNS = [
    re.compile(r"\b(?:pp?\.|pages?)\s*(\d+(?:\s*[-–]\s*\d+)?)", re.IGNORECASE),
]

# =============================================================================
# Clause Type Patterns (first match wins)
# =============================================================================

CLAUSE_TYPE_PATTERNS = [
    (re.compile(r"\bindemnif(?:y|ies|ied|ication)\b|\bhold\s+harmless\b", re.IGNORECASE),
     "indemnification"),
    (re.compile(
        r"\blimitation\s+of\s+liability\b|\bliabilit(?:y|ies)\s+(?:shall\s+)?not\s+exceed"
        r"|\bconsequential\s+damages\b",
        re.IGNORECASE),
     "limitation_of_liability"),
    (re.compile(r"\bforce\s+majeure\b|\bacts?\s+of\s+god\b", re.IGNORECASE),
     "force_majeure"),
    (re.compile(r"\bnon-?compet(?:e|ition)\b|\bshall\s+not\s+compete\b", re.IGNORECASE),
     "non_compete"),
    (re.compile(r"\bnon-?solicit(?:ation)?\b|\bshall\s+not\s+solicit\b", re.IGNORECASE),
     "non_solicitation"),
    (re.compile(r"\bconfidential(?:ity)?\b|\bnon-?disclosure\b", re.IGNORECASE),
     "confidentiality"),
    (re.compile(r"\bgoverning\s+law\b|\bgoverned\s+by\b[^.\n]{0,60}\blaws?\s+of\b", re.IGNORECASE),
     "governing_law"),
    (re.compile(r"\barbitration\b|\bdispute\s+resolution\b|\bmediation\b", re.IGNORECASE),
     "dispute_resolution"),
    (re.compile(
        r"\bintellectual\s+property\b|\bpatents?\b|\bcopyrights?\b|\btrademarks?\b",
        re.IGNORECASE),
     "intellectual_property"),
    (re.compile(r"\bwarrant(?:y|ies|s)\b", re.IGNORECASE),
     "warranty"),
    (re.compile(r"\bterminat(?:e|es|ed|ion)\b", re.IGNORECASE),
     "termination"),
    (re.compile(r"\bassign(?:ment|s|ed)?\b", re.IGNORECASE),
     "assignment"),
    (re.compile(r"\bpayments?\b|\bfees?\b|\binvoices?\b", re.IGNORECASE),
     "payment"),
]

# =============================================================================
# Keyword Search / Re-ranking Vocabularies
# =============================================================================

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were",
    "be", "have", "has", "had", "do", "does", "did", "to", "from", "in",
    "on", "at", "by", "for", "with", "about", "of",
})

# Document categories that earn the re-ranking category bonus
LEGAL_CATEGORIES = (
    "contract",
    "agreement",
    "filing",
    "case",
    "brief",
    "opinion",
    "legislation",
)

# Characters stripped from queries before keyword tokenization
NON_WORD_PATTERN = re.compile(r"[^\w\s]")
