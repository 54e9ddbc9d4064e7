"""
Documents and Document-Source Collaborators

Defines the Document shape the engine indexes and the call-level interfaces
of the external collaborators that produce it:

    DocumentSource   -- fetch_document(id), download_bytes(id), list_document_ids(limit)
    TextExtractor    -- extract_text(data, name)

DocumentProcessor composes the two into a ready-to-index Document and keeps
a bounded cache of processed documents. DirectoryDocumentSource and
PlainTextExtractor are a filesystem-backed pair used by the CLI scripts.
"""

import json
import time
import logging
from pathlib import Path
from typing import Optional, Protocol
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from collections import OrderedDict

logger = logging.getLogger(__name__)


@dataclass
class DocumentMetadata:
    """Source-system metadata echoed into every indexed chunk."""
    content_type: Optional[str] = None
    category: Optional[str] = None
    created: Optional[str] = None  # ISO-8601
    updated: Optional[str] = None  # ISO-8601
    parent_folder_id: Optional[str] = None
    parent_folder_name: Optional[str] = None
    size: Optional[int] = None

    def __post_init__(self):
        # Connectors may hand over datetimes; the index stores ISO strings
        if isinstance(self.created, datetime):
            self.created = self.created.isoformat()
        if isinstance(self.updated, datetime):
            self.updated = self.updated.isoformat()

    def to_dict(self) -> dict:
        return {
            "content_type": self.content_type,
            "category": self.category,
            "created": self.created,
            "updated": self.updated,
            "parent_folder_id": self.parent_folder_id,
            "parent_folder_name": self.parent_folder_name,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DocumentMetadata":
        if not data:
            return cls()
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Document:
    """A document as handed to the engine. Read-only to the engine."""
    id: str
    name: str
    text: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)


class DocumentSource(Protocol):
    """External document-management connector."""

    def fetch_document(self, document_id: str) -> Document:
        """Return the document's name and metadata (text may be empty)."""
        ...

    def download_bytes(self, document_id: str) -> bytes:
        ...

    def list_document_ids(self, limit: Optional[int] = 100) -> list[str]:
        ...


class TextExtractor(Protocol):
    """Converts raw document bytes into plain text."""

    def extract_text(self, data: bytes, name: str) -> str:
        ...


class DocumentProcessor:
    """
    Fetches, downloads and extracts a document into indexable form.

    Processed documents are cached (bounded, oldest evicted first) so a
    batch that revisits a document does not download it twice.
    """

    def __init__(
        self,
        source: DocumentSource,
        extractor: TextExtractor,
        cache_max_entries: int = 100,
        max_cache_age_seconds: Optional[float] = None,
    ):
        self.source = source
        self.extractor = extractor
        self._cache_max_entries = cache_max_entries
        self._max_cache_age = max_cache_age_seconds
        # {document_id: (Document, cached_at)}
        self._cache: OrderedDict = OrderedDict()

    def process(self, document_id: str, force_refresh: bool = False) -> Document:
        """
        Produce a Document with extracted text.

        Args:
            document_id: Source-system id
            force_refresh: Skip the processed-document cache

        Returns:
            Document with text filled in
        """
        if not force_refresh:
            cached = self._get_cached(document_id)
            if cached is not None:
                logger.debug(f"Document cache hit: {document_id}")
                return cached

        document = self.source.fetch_document(document_id)
        data = self.source.download_bytes(document_id)
        text = self.extractor.extract_text(data, document.name)
        logger.info(f"Extracted {len(text)} chars from {document.name} ({document_id})")

        metadata = document.metadata
        if metadata.size is None:
            metadata = replace(metadata, size=len(data))
        processed = replace(document, text=text, metadata=metadata)

        self._cache[document_id] = (processed, time.time())
        self._cache.move_to_end(document_id)
        while len(self._cache) > self._cache_max_entries:
            self._cache.popitem(last=False)
        return processed

    def invalidate(self, document_id: str) -> None:
        self._cache.pop(document_id, None)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _get_cached(self, document_id: str) -> Optional[Document]:
        entry = self._cache.get(document_id)
        if entry is None:
            return None
        document, cached_at = entry
        if self._max_cache_age is not None and time.time() - cached_at > self._max_cache_age:
            del self._cache[document_id]
            return None
        return document


# =============================================================================
# Filesystem-backed collaborators
# =============================================================================

class DirectoryDocumentSource:
    """
    Serves documents from a local directory.

    Every file matching `patterns` is a document whose id is its path relative
    to the root. An optional sidecar `<file>.meta.json` supplies metadata
    (category, content_type, created, updated, parent folder); otherwise the
    file's mtime is used as the updated timestamp.
    """

    def __init__(self, root: str, patterns: tuple = ("*.txt", "*.md")):
        self.root = Path(root).resolve()
        self.patterns = patterns

    def list_document_ids(self, limit: Optional[int] = 100) -> list[str]:
        """Sorted document ids, at most `limit` of them (None lists all)."""
        paths = set()
        for pattern in self.patterns:
            paths.update(self.root.rglob(pattern))
        ids = sorted(str(p.relative_to(self.root)) for p in paths if p.is_file())
        return ids[:limit]

    def fetch_document(self, document_id: str) -> Document:
        path = self._resolve(document_id)
        stat = path.stat()
        meta = {
            "content_type": "text/markdown" if path.suffix == ".md" else "text/plain",
            "updated": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            "parent_folder_id": str(path.parent.relative_to(self.root)),
            "parent_folder_name": path.parent.name,
            "size": stat.st_size,
        }
        sidecar = path.with_name(path.name + ".meta.json")
        if sidecar.exists():
            with open(sidecar, encoding="utf-8") as f:
                meta.update(json.load(f))
        return Document(
            id=document_id,
            name=meta.pop("name", None) or path.stem,
            text="",
            metadata=DocumentMetadata.from_dict(meta),
        )

    def download_bytes(self, document_id: str) -> bytes:
        return self._resolve(document_id).read_bytes()

    def _resolve(self, document_id: str) -> Path:
        path = (self.root / document_id).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Document id escapes source root: {document_id}")
        if not path.is_file():
            raise FileNotFoundError(f"No such document: {document_id}")
        return path


class PlainTextExtractor:
    """Decodes text files; undecodable bytes are replaced rather than fatal."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract_text(self, data: bytes, name: str) -> str:
        return data.decode(self.encoding, errors="replace")
