"""
Vector Store Backends for the Legal Context Engine

Owns the indexed chunks of every document, their vectors and structural
metadata. Two backends share one interface:

    replace_document(document_id, chunks, ...)  -- atomic per-document replace
    delete_document(document_id)
    read_view()                                 -- consistent snapshot for a query
        .vector_candidates(query_vector, top_k) -> [(IndexedChunk, distance)]
        .keyword_candidates(keywords, top_k)    -> [(IndexedChunk, score, matched)]
    stats()                                     -- (document_count, chunk_count)

MemoryVectorStore keeps immutable per-document tuples swapped under a lock
(optionally persisted to JSON). PgVectorStore keeps chunks in PostgreSQL with
pgvector; a replace is one transaction and a read view is one
REPEATABLE READ transaction.
"""

import os
import re
import json
import logging
import threading
from pathlib import Path
from typing import Optional
from functools import lru_cache
from dataclasses import dataclass, field
from contextlib import contextmanager
from datetime import datetime, timezone

import numpy as np

from .chunker import Chunk

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)


class VectorSearchUnavailable(RuntimeError):
    """Raised when the backend cannot serve vector similarity queries."""

    def __init__(self, message: str, backend: str = ""):
        self.backend = backend
        super().__init__(message)


class IndexWriteError(RuntimeError):
    """Raised when a document's chunk set could not be written."""

    def __init__(self, message: str, document_id: str = ""):
        self.document_id = document_id
        super().__init__(message)


@dataclass
class VectorStoreConfig:
    """Configuration for the chunk store."""
    backend: str = "memory"  # "memory" or "postgres"

    # Memory backend: JSON file for persistence (None = not persisted)
    index_path: Optional[str] = None

    # Postgres backend
    connection_string: Optional[str] = None
    documents_table: str = "legal_context_documents"
    chunks_table: str = "legal_context_chunks"
    embedding_dimensions: int = 1024
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    use_pooling: bool = True
    # Upper bound on rows scanned by a keyword query
    keyword_scan_limit: int = 5000


# =============================================================================
# Shared types
# =============================================================================

@dataclass
class IndexedChunk:
    """A chunk with its vector and version, keyed by (document_id, chunk_index)."""
    chunk: Chunk
    vector: Optional[np.ndarray]
    document_version: str
    indexed_at: datetime
    document_metadata: dict = field(default_factory=dict)

    @property
    def document_id(self) -> str:
        return self.chunk.source_doc_id

    @property
    def chunk_index(self) -> int:
        return self.chunk.index

    @property
    def key(self) -> tuple[str, int]:
        return (self.chunk.source_doc_id, self.chunk.index)

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def has_vector(self) -> bool:
        """Zero vectors mark chunks that are only keyword-searchable."""
        return self.vector is not None and bool(np.any(self.vector))

    def to_dict(self) -> dict:
        return {
            "chunk": self.chunk.to_dict(),
            "vector": self.vector.tolist() if self.vector is not None else None,
            "document_version": self.document_version,
            "indexed_at": self.indexed_at.isoformat(),
            "document_metadata": self.document_metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexedChunk":
        vector = data.get("vector")
        return cls(
            chunk=Chunk.from_dict(data["chunk"]),
            vector=np.asarray(vector, dtype=np.float32) if vector is not None else None,
            document_version=data["document_version"],
            indexed_at=datetime.fromisoformat(data["indexed_at"]),
            document_metadata=data.get("document_metadata") or {},
        )


@dataclass
class SearchHit:
    """
    A candidate chunk returned by the store boundary.

    Both signals are normalized to [0, 1]: vector_distance (0 = identical)
    and keyword_score (1 = best keyword match in the candidate set). A signal
    is None when the chunk was not found by that search.
    """
    chunk: IndexedChunk
    vector_distance: Optional[float] = None
    keyword_score: Optional[float] = None
    matched_keywords: list[str] = field(default_factory=list)

    @property
    def keyword_distance(self) -> Optional[float]:
        if self.keyword_score is None:
            return None
        return 1.0 - self.keyword_score


@dataclass
class SearchResult:
    """A single retrieval result. Lower score = more relevant."""
    document_id: str
    document_name: str
    text: str
    score: float
    metadata: dict
    chunk_index: int = 0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "text": self.text,
            "score": self.score,
            "metadata": self.metadata,
            "chunk_index": self.chunk_index,
        }


# =============================================================================
# Keyword scoring (shared by both backends)
# =============================================================================

@lru_cache(maxsize=1024)
def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(keyword) + r"\b", re.IGNORECASE)


def count_keyword(text: str, keyword: str) -> int:
    """Case-insensitive whole-word occurrences of keyword in text."""
    return len(_keyword_pattern(keyword).findall(text))


def score_keywords(text: str, keywords: list[str]) -> tuple[float, list[str]]:
    """
    Raw keyword score: sum of whole-word occurrences weighted by len(keyword) / 4.

    Returns:
        (score, matched keywords in query order)
    """
    score = 0.0
    matched = []
    for keyword in keywords:
        count = count_keyword(text, keyword)
        if count:
            score += count * (len(keyword) / 4)
            matched.append(keyword)
    return score, matched


# =============================================================================
# In-memory backend
# =============================================================================

class _MemoryReadView:
    """Immutable snapshot of the memory store for one query."""

    def __init__(self, documents: dict):
        self._chunks = [c for chunks in documents.values() for c in chunks]

    def vector_candidates(self, query_vector: np.ndarray, top_k: int) -> list[tuple]:
        items = [c for c in self._chunks if c.has_vector]
        if not items or top_k <= 0:
            return []

        matrix = np.vstack([c.vector for c in items])
        if matrix.shape[1] != query_vector.shape[0]:
            raise VectorSearchUnavailable(
                f"Query vector has {query_vector.shape[0]} dimensions, "
                f"index has {matrix.shape[1]}",
                backend="memory",
            )

        # Cosine distance on normalized vectors
        distances = np.clip(1.0 - matrix @ query_vector, 0.0, 2.0)
        order = np.argsort(distances, kind="stable")[:top_k]
        return [(items[i], float(distances[i])) for i in order]

    def keyword_candidates(self, keywords: list[str], top_k: int) -> list[tuple]:
        if not keywords or top_k <= 0:
            return []
        scored = []
        for chunk in self._chunks:
            score, matched = score_keywords(chunk.text, keywords)
            if score > 0:
                scored.append((chunk, score, matched))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_k]


class MemoryVectorStore:
    """
    In-process chunk store.

    Each document maps to an immutable tuple of IndexedChunks. Writers build
    a new mapping and publish it under a lock; readers take the current
    mapping as their snapshot, so a query never sees a half-replaced
    document.
    """

    backend_name = "memory"

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        self.config = config or VectorStoreConfig()
        self._path = Path(self.config.index_path) if self.config.index_path else None
        self._lock = threading.Lock()
        self._documents: dict[str, tuple] = self._load()

    def replace_document(
        self,
        document_id: str,
        chunks: list[IndexedChunk],
        document_name: str = "",
        document_version: str = "",
        metadata: Optional[dict] = None,
    ) -> None:
        """Atomically replace all chunks of a document."""
        with self._lock:
            documents = dict(self._documents)
            documents[document_id] = tuple(chunks)
            self._persist(documents, document_id)
            self._documents = documents
        logger.debug(f"Stored {len(chunks)} chunks for document {document_id}")

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            if document_id not in self._documents:
                return False
            documents = dict(self._documents)
            del documents[document_id]
            self._persist(documents, document_id)
            self._documents = documents
        return True

    def has_document(self, document_id: str) -> bool:
        return document_id in self._documents

    def get_document_chunks(self, document_id: str) -> list[IndexedChunk]:
        return list(self._documents.get(document_id, ()))

    def document_ids(self) -> list[str]:
        return list(self._documents)

    @contextmanager
    def read_view(self):
        yield _MemoryReadView(self._documents)

    def stats(self) -> tuple[int, int]:
        documents = self._documents
        return len(documents), sum(len(chunks) for chunks in documents.values())

    def close(self) -> None:
        pass

    def _load(self) -> dict[str, tuple]:
        if not self._path or not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.load(f)
            documents = {
                doc_id: tuple(IndexedChunk.from_dict(c) for c in chunks)
                for doc_id, chunks in raw.get("documents", {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not load index from {self._path}, starting empty: {e}")
            return {}
        logger.info(f"Loaded {len(documents)} indexed documents from {self._path}")
        return documents

    def _persist(self, documents: dict, document_id: str) -> None:
        if not self._path:
            return
        payload = {
            "version": 1,
            "documents": {
                doc_id: [c.to_dict() for c in chunks]
                for doc_id, chunks in documents.items()
            },
        }
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise IndexWriteError(f"Failed to persist index: {e}", document_id=document_id) from e


# =============================================================================
# PostgreSQL + pgvector backend
# =============================================================================

_CHUNK_COLUMNS = """
    c.document_id, c.chunk_index, c.content, c.section_title, c.section_number,
    c.is_heading, c.citations, c.clause_type, c.sections, c.paragraphs, c.pages,
    c.start_char, c.end_char, c.overlap_length, c.document_version, c.indexed_at,
    c.has_vector, d.name AS document_name, d.metadata AS document_metadata
"""


class _PgReadView:
    """One REPEATABLE READ transaction serving both search stages."""

    def __init__(self, store: "PgVectorStore", conn):
        self._store = store
        self._conn = conn

    def vector_candidates(self, query_vector: np.ndarray, top_k: int) -> list[tuple]:
        if top_k <= 0:
            return []
        cfg = self._store.config
        sql = f"""
        SELECT {_CHUNK_COLUMNS}, c.embedding <=> %s::vector AS distance
        FROM {cfg.chunks_table} c
        JOIN {cfg.documents_table} d ON d.id = c.document_id
        WHERE c.has_vector
        ORDER BY distance
        LIMIT %s
        """
        with self._conn.cursor() as cur:
            cur.execute("SAVEPOINT vector_search")
            try:
                cur.execute(sql, (query_vector.tolist(), top_k))
                rows = cur.fetchall()
            except psycopg2.Error as e:
                cur.execute("ROLLBACK TO SAVEPOINT vector_search")
                raise VectorSearchUnavailable(f"pgvector query failed: {e}", backend="postgres") from e
            cur.execute("RELEASE SAVEPOINT vector_search")

        return [
            (self._store._row_to_chunk(row), max(0.0, float(row["distance"])))
            for row in rows
        ]

    def keyword_candidates(self, keywords: list[str], top_k: int) -> list[tuple]:
        words = [k for k in keywords if re.fullmatch(r"\w+", k)]
        if not words or top_k <= 0:
            return []
        cfg = self._store.config
        # Postgres word boundaries prefilter; exact scoring happens in Python
        pattern = r"\m(" + "|".join(words) + r")\M"
        sql = f"""
        SELECT {_CHUNK_COLUMNS}
        FROM {cfg.chunks_table} c
        JOIN {cfg.documents_table} d ON d.id = c.document_id
        WHERE c.content ~* %s
        LIMIT %s
        """
        with self._conn.cursor() as cur:
            cur.execute(sql, (pattern, cfg.keyword_scan_limit))
            rows = cur.fetchall()

        scored = []
        for row in rows:
            chunk = self._store._row_to_chunk(row)
            score, matched = score_keywords(chunk.text, words)
            if score > 0:
                scored.append((chunk, score, matched))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_k]


class PgVectorStore:
    """
    PostgreSQL chunk store with pgvector.

    Features:
    - Cosine distance search (<=> operator)
    - Per-document replace in a single transaction
    - Connection pooling with one retry on stale connections
    """

    backend_name = "postgres"

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize vector store.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or VectorStoreConfig(backend="postgres")
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/legal_context"
        )

    def connect(self) -> None:
        """Establish database connection (with optional pooling)."""
        if psycopg2 is None:
            raise ImportError("psycopg2 not installed. Run: pip install psycopg2-binary")
        from psycopg2.extras import RealDictCursor

        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(
                    self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                self._conn.autocommit = False
                logger.info("Connected to PostgreSQL with pgvector (single connection)")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        """Get a database connection (from pool or single connection)."""
        if self._pool:
            return self._pool.getconn()

        if self._conn is None or self._conn.closed:
            if self._conn is not None:
                logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn):
        """Release a connection back to the pool (if pooling is enabled)."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        if not self._conn and not self._pool:
            self.connect()
        return self._get_connection()

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        for attempt in range(2):
            conn = self._ensure_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.close()
                    self.connect()
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        cfg = self.config
        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {cfg.documents_table} (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            document_version TEXT NOT NULL,
            metadata JSONB DEFAULT '{{}}',
            chunk_count INT DEFAULT 0,
            indexed_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS {cfg.chunks_table} (
            document_id TEXT NOT NULL REFERENCES {cfg.documents_table}(id) ON DELETE CASCADE,
            chunk_index INT NOT NULL,
            content TEXT NOT NULL,
            section_title TEXT,
            section_number TEXT,
            is_heading BOOLEAN DEFAULT FALSE,
            citations TEXT[] DEFAULT ARRAY[]::TEXT[],
            clause_type TEXT,
            sections TEXT[] DEFAULT ARRAY[]::TEXT[],
            paragraphs TEXT[] DEFAULT ARRAY[]::TEXT[],
            pages TEXT[] DEFAULT ARRAY[]::TEXT[],
            start_char INT,
            end_char INT,
            overlap_length INT DEFAULT 0,
            document_version TEXT NOT NULL,
            indexed_at TIMESTAMPTZ DEFAULT NOW(),
            has_vector BOOLEAN DEFAULT FALSE,
            embedding VECTOR({cfg.embedding_dimensions}),
            PRIMARY KEY (document_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_{cfg.chunks_table}_embedding
            ON {cfg.chunks_table} USING hnsw (embedding vector_cosine_ops);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
            logger.info("Schema initialized successfully")

        self._execute_with_retry(_op, "initialize_schema")

    def replace_document(
        self,
        document_id: str,
        chunks: list[IndexedChunk],
        document_name: str = "",
        document_version: str = "",
        metadata: Optional[dict] = None,
    ) -> None:
        """Replace a document's chunks in one transaction (DELETE + INSERT)."""
        from psycopg2.extras import execute_values

        cfg = self.config
        values = [
            (
                ic.document_id,
                ic.chunk_index,
                ic.chunk.text,
                ic.chunk.section_title,
                ic.chunk.section_number,
                ic.chunk.is_heading,
                ic.chunk.citations,
                ic.chunk.clause_type,
                ic.chunk.sections,
                ic.chunk.paragraphs,
                ic.chunk.pages,
                ic.chunk.start_char,
                ic.chunk.end_char,
                ic.chunk.overlap_length,
                ic.document_version,
                ic.indexed_at,
                ic.has_vector,
                ic.vector.tolist() if ic.has_vector else None,
            )
            for ic in chunks
        ]

        upsert_doc_sql = f"""
        INSERT INTO {cfg.documents_table} (id, name, document_version, metadata, chunk_count, indexed_at)
        VALUES (%s, %s, %s, %s, %s, NOW())
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            document_version = EXCLUDED.document_version,
            metadata = EXCLUDED.metadata,
            chunk_count = EXCLUDED.chunk_count,
            indexed_at = EXCLUDED.indexed_at
        """
        insert_sql = f"""
        INSERT INTO {cfg.chunks_table}
            (document_id, chunk_index, content, section_title, section_number, is_heading,
             citations, clause_type, sections, paragraphs, pages, start_char, end_char,
             overlap_length, document_version, indexed_at, has_vector, embedding)
        VALUES %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(upsert_doc_sql, (
                    document_id, document_name, document_version,
                    json.dumps(metadata or {}), len(chunks),
                ))
                cur.execute(f"DELETE FROM {cfg.chunks_table} WHERE document_id = %s", (document_id,))
                if values:
                    execute_values(
                        cur,
                        insert_sql,
                        values,
                        template="(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::vector)",
                        page_size=500,
                    )
            conn.commit()
            logger.info(f"Replaced document {document_id} with {len(chunks)} chunks")

        try:
            self._execute_with_retry(_op, "replace_document")
        except psycopg2.Error as e:
            raise IndexWriteError(f"Failed to write chunks: {e}", document_id=document_id) from e

    def delete_document(self, document_id: str) -> bool:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.config.documents_table} WHERE id = %s", (document_id,))
                deleted = cur.rowcount > 0
            conn.commit()
            return deleted

        try:
            return self._execute_with_retry(_op, "delete_document")
        except psycopg2.Error as e:
            raise IndexWriteError(f"Failed to delete document: {e}", document_id=document_id) from e

    def has_document(self, document_id: str) -> bool:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT 1 FROM {self.config.documents_table} WHERE id = %s",
                    (document_id,),
                )
                row = cur.fetchone()
            conn.commit()
            return row is not None

        return self._execute_with_retry(_op, "has_document")

    def document_ids(self) -> list[str]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(f"SELECT id FROM {self.config.documents_table} ORDER BY id")
                rows = cur.fetchall()
            conn.commit()
            return [row["id"] for row in rows]

        return self._execute_with_retry(_op, "document_ids")

    @contextmanager
    def read_view(self):
        """Yield a read view pinned to one REPEATABLE READ snapshot."""
        conn = self._ensure_connection()
        try:
            with conn.cursor() as cur:
                cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")
            yield _PgReadView(self, conn)
        finally:
            self._safe_rollback(conn)
            self._release_connection(conn)

    def stats(self) -> tuple[int, int]:
        cfg = self.config

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT (SELECT COUNT(*) FROM {cfg.documents_table}) AS document_count, "
                    f"(SELECT COUNT(*) FROM {cfg.chunks_table}) AS chunk_count"
                )
                row = cur.fetchone()
            conn.commit()
            return int(row["document_count"]), int(row["chunk_count"])

        return self._execute_with_retry(_op, "stats")

    @staticmethod
    def _row_to_chunk(row) -> IndexedChunk:
        row = dict(row)
        chunk = Chunk(
            index=row["chunk_index"],
            text=row["content"],
            source_doc_id=str(row["document_id"]),
            source_name=row.get("document_name") or "",
            section_title=row.get("section_title"),
            section_number=row.get("section_number"),
            is_heading=bool(row.get("is_heading")),
            citations=list(row.get("citations") or []),
            clause_type=row.get("clause_type"),
            sections=list(row.get("sections") or []),
            paragraphs=list(row.get("paragraphs") or []),
            pages=list(row.get("pages") or []),
            start_char=row.get("start_char") or 0,
            end_char=row.get("end_char") or 0,
            overlap_length=row.get("overlap_length") or 0,
        )
        indexed_at = row.get("indexed_at") or datetime.now(timezone.utc)
        metadata = row.get("document_metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return IndexedChunk(
            chunk=chunk,
            # Vectors are not needed past the search stage
            vector=None,
            document_version=row.get("document_version") or "",
            indexed_at=indexed_at,
            document_metadata=metadata,
        )


def create_vector_store(config: Optional[VectorStoreConfig] = None):
    """Build the configured backend (connecting and creating the schema for Postgres)."""
    config = config or VectorStoreConfig()
    if config.backend == "memory":
        return MemoryVectorStore(config)
    if config.backend == "postgres":
        store = PgVectorStore(config)
        store.connect()
        store.initialize_schema()
        return store
    raise ValueError(f"Unknown vector store backend: {config.backend}")
