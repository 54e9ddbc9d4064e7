"""
Index Store for the Legal Context Engine

Owns the indexed chunks of every document and answers the two search
stages used by the HybridRetriever. One IndexStore is constructed at
process start and passed to every caller.

Write path (upsert):
    fingerprint -> skip if unchanged -> chunk -> enrich -> embed
    -> backend.replace_document (atomic) -> record fingerprint

Read path (search):
    one backend read view -> vector candidates + keyword candidates
    -> normalized SearchHits keyed by (document_id, chunk_index)
"""

import time
import logging
import threading
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone

import numpy as np

from .chunker import LegalChunker
from .references import ReferenceExtractor
from .versioning import VersionTracker
from .vector_store import (
    IndexedChunk,
    SearchHit,
    VectorSearchUnavailable,
)

logger = logging.getLogger(__name__)

EMBEDDING_FAILURE_POLICIES = ("abort", "zero_vector")

# Floor for the normalizing maximum, so an all-zero candidate set stays finite
_MIN_NORMALIZER = 0.0001


@dataclass
class IndexStoreConfig:
    """Configuration for indexing behaviour."""
    # "abort": keep the previous chunk set when embedding fails
    # "zero_vector": store keyword-only chunks, retry on the next upsert
    embedding_failure_policy: str = "abort"
    # Dimension of zero vectors when no embedding service is available
    embedding_dimensions: int = 1024
    vector_top_k: int = 20
    keyword_top_k: int = 20


@dataclass
class IndexStats:
    document_count: int
    chunk_count: int

    def to_dict(self) -> dict:
        return {"document_count": self.document_count, "chunk_count": self.chunk_count}


def normalize_vector(values) -> np.ndarray:
    """L2-normalize; zero or empty input yields a zero vector."""
    vector = np.asarray(values, dtype=np.float32)
    norm = float(np.linalg.norm(vector)) if vector.size else 0.0
    if norm == 0.0 or not np.isfinite(norm):
        return np.zeros_like(vector)
    return vector / norm


class IndexStore:
    """
    Upsert/remove documents and search their chunks.

    Usage:
        store = IndexStore(MemoryVectorStore(), embedding_service=service,
                           version_tracker=VersionTracker("data/indexed_documents.json"))
        store.upsert(document)
        hits = store.search(query_vector, ["termination", "notice"])
    """

    def __init__(
        self,
        backend,
        embedding_service=None,
        chunker: Optional[LegalChunker] = None,
        extractor: Optional[ReferenceExtractor] = None,
        version_tracker: Optional[VersionTracker] = None,
        config: Optional[IndexStoreConfig] = None,
    ):
        self.backend = backend
        self.embeddings = embedding_service
        self.chunker = chunker or LegalChunker()
        self.extractor = extractor or ReferenceExtractor()
        self.versions = version_tracker if version_tracker is not None else VersionTracker()
        self.config = config or IndexStoreConfig()
        if self.config.embedding_failure_policy not in EMBEDDING_FAILURE_POLICIES:
            raise ValueError(
                f"embedding_failure_policy must be one of {EMBEDDING_FAILURE_POLICIES}"
            )

        self._state_lock = threading.Lock()
        self._vector_unavailable_reason: Optional[str] = (
            None if embedding_service is not None else "no embedding service configured"
        )

    # =========================================================================
    # Degraded mode
    # =========================================================================

    @property
    def vector_search_available(self) -> bool:
        return self._vector_unavailable_reason is None

    @property
    def degraded_reason(self) -> Optional[str]:
        return self._vector_unavailable_reason

    def mark_vector_search_unavailable(self, reason: str) -> None:
        """Switch to keyword-only search until restore_vector_search() is called."""
        with self._state_lock:
            if self._vector_unavailable_reason is None:
                logger.warning(f"Vector search unavailable, degrading to keyword-only: {reason}")
            self._vector_unavailable_reason = reason

    def restore_vector_search(self) -> bool:
        """Leave degraded mode (only possible with an embedding service)."""
        with self._state_lock:
            if self.embeddings is None:
                return False
            if self._vector_unavailable_reason is not None:
                logger.info("Vector search restored")
            self._vector_unavailable_reason = None
            return True

    # =========================================================================
    # Write path
    # =========================================================================

    def upsert(self, document, force_reindex: bool = False) -> bool:
        """
        Index a document, replacing any previous chunks.

        Args:
            document: Document to index
            force_reindex: Reindex even when the fingerprint is unchanged

        Returns:
            True on success (including the unchanged no-op), False when the
            reindex failed and the previous chunk set was left in place.
        """
        start_time = time.time()
        try:
            fingerprint = self.versions.fingerprint(document)
            if not force_reindex and self._is_indexed(document.id, fingerprint):
                logger.debug(f"Document {document.id} unchanged, skipping reindex")
                return True

            chunks = self.chunker.chunk(document.text, document.id, document.name)
            for chunk in chunks:
                self.extractor.apply(chunk)
            vectors, complete = self._embed_chunks([c.text for c in chunks], document.id)
        except Exception as e:
            logger.error(f"Failed to prepare document {document.id} for indexing: {e}")
            return False

        if vectors is None:
            return False

        metadata = document.metadata.to_dict()
        indexed_at = datetime.now(timezone.utc)
        indexed = [
            IndexedChunk(
                chunk=chunk,
                vector=vector,
                document_version=fingerprint,
                indexed_at=indexed_at,
                document_metadata=metadata,
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        try:
            self.backend.replace_document(
                document.id,
                indexed,
                document_name=document.name,
                document_version=fingerprint,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Index write failed for document {document.id}; previous chunks kept: {e}")
            return False

        if not complete:
            logger.warning(
                f"Document {document.id} stored with zero vectors; "
                "version not recorded so the next upsert retries embedding"
            )
            return True

        try:
            self.versions.record(document.id, fingerprint)
        except OSError as e:
            logger.error(f"Indexed {document.id} but could not record its version: {e}")
            return False

        elapsed = (time.time() - start_time) * 1000
        logger.info(
            f"Indexed document {document.id} ({document.name}): "
            f"{len(indexed)} chunks in {elapsed:.0f}ms"
        )
        return True

    def needs_reindex(self, document, force: bool = False) -> bool:
        if force:
            return True
        return not self._is_indexed(document.id, self.versions.fingerprint(document))

    def _is_indexed(self, document_id: str, fingerprint: str) -> bool:
        """Fingerprint matches and the backend still holds the document."""
        if not self.versions.is_current(document_id, fingerprint):
            return False
        if self.backend.has_document(document_id):
            return True
        logger.warning(f"Document {document_id} tracked but missing from the index, reindexing")
        return False

    def _embed_chunks(self, texts: list[str], document_id: str):
        """
        Vectorize chunk texts.

        Returns:
            (vectors, complete) where vectors is None when the reindex must
            abort, and complete is False when zero vectors stand in for
            failed embeddings.
        """
        if not texts:
            return [], True

        if self.embeddings is None:
            zero = np.zeros(self.config.embedding_dimensions, dtype=np.float32)
            return [zero.copy() for _ in texts], True

        try:
            raw = self.embeddings.embed_documents(texts)
            if len(raw) != len(texts):
                raise ValueError(f"expected {len(texts)} embeddings, got {len(raw)}")
            return [normalize_vector(v) for v in raw], True
        except Exception as e:
            if self.config.embedding_failure_policy == "abort":
                logger.error(f"Embedding failed for document {document_id}, aborting reindex: {e}")
                return None, False
            logger.warning(f"Embedding failed for document {document_id}, storing zero vectors: {e}")
            dims = getattr(self.embeddings, "dimensions", None) or self.config.embedding_dimensions
            zero = np.zeros(dims, dtype=np.float32)
            return [zero.copy() for _ in texts], False

    def remove(self, document_id: str) -> bool:
        """Delete all chunks and the version entry of a document. Unknown ids succeed."""
        try:
            existed = self.backend.delete_document(document_id)
            self.versions.forget(document_id)
        except Exception as e:
            logger.error(f"Failed to remove document {document_id}: {e}")
            return False
        if existed:
            logger.info(f"Removed document {document_id} from index")
        return True

    # =========================================================================
    # Read path
    # =========================================================================

    def search(
        self,
        query_vector,
        query_keywords: list[str],
        vector_top_k: Optional[int] = None,
        keyword_top_k: Optional[int] = None,
    ) -> list[SearchHit]:
        """
        Run vector and keyword search against one consistent snapshot.

        Args:
            query_vector: Normalized query vector, or None to skip vector search
            query_keywords: Lowercase keywords, or [] to skip keyword search
            vector_top_k: Vector candidates to keep
            keyword_top_k: Keyword candidates to keep

        Returns:
            SearchHits (vector candidates first, then keyword-only ones) with
            both signals normalized to [0, 1].
        """
        vector_top_k = vector_top_k or self.config.vector_top_k
        keyword_top_k = keyword_top_k or self.config.keyword_top_k

        vector_rows = []
        keyword_rows = []
        with self.backend.read_view() as view:
            if query_vector is not None and self.vector_search_available:
                try:
                    vector_rows = view.vector_candidates(np.asarray(query_vector, dtype=np.float32), vector_top_k)
                except VectorSearchUnavailable as e:
                    self.mark_vector_search_unavailable(str(e))
            if query_keywords:
                keyword_rows = view.keyword_candidates(query_keywords, keyword_top_k)

        hits: dict[tuple, SearchHit] = {}

        if vector_rows:
            max_distance = max(max(d for _, d in vector_rows), _MIN_NORMALIZER)
            for chunk, distance in vector_rows:
                hits[chunk.key] = SearchHit(chunk=chunk, vector_distance=distance / max_distance)

        if keyword_rows:
            max_score = max(max(s for _, s, _ in keyword_rows), _MIN_NORMALIZER)
            for chunk, score, matched in keyword_rows:
                hit = hits.get(chunk.key)
                if hit is None:
                    hit = hits[chunk.key] = SearchHit(chunk=chunk)
                hit.keyword_score = score / max_score
                hit.matched_keywords = matched

        logger.debug(
            f"Store search: {len(vector_rows)} vector, {len(keyword_rows)} keyword, "
            f"{len(hits)} unique candidates"
        )
        return list(hits.values())

    def stats(self) -> IndexStats:
        document_count, chunk_count = self.backend.stats()
        return IndexStats(document_count=document_count, chunk_count=chunk_count)
