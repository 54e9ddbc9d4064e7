"""
Legal Context Engine - Structure-Aware Retrieval for Legal Documents

This package provides the chunking, indexing, versioning and hybrid
retrieval engine behind a legal document context service:
- Structure-preserving chunking (sections, articles, clauses)
- Citation / section / page reference extraction
- Content-fingerprint versioning so unchanged documents are never re-embedded
- Hybrid vector + keyword retrieval with legal re-ranking and context packing

The calling application (a protocol server, the CLI scripts) builds one
engine with build_engine() and shares it across requests.
"""

from .documents import Document, DocumentMetadata, DocumentProcessor
from .chunker import LegalChunker, ChunkConfig, Chunk
from .references import ReferenceExtractor, References
from .embeddings import EmbeddingConfig, get_embedding_service
from .versioning import VersionTracker
from .vector_store import (
    MemoryVectorStore,
    PgVectorStore,
    SearchHit,
    SearchResult,
    VectorSearchUnavailable,
)
from .index_store import IndexStore, IndexStats
from .retriever import HybridRetriever, RetrievalOptions, RerankConfig, InvalidQuery
from .citation import CitationBuilder, DocumentCitation
from .batch_indexer import BatchIndexer, BatchIndexingResult
from .config import EngineConfig, build_engine

__all__ = [
    "Document",
    "DocumentMetadata",
    "DocumentProcessor",
    "LegalChunker",
    "ChunkConfig",
    "Chunk",
    "ReferenceExtractor",
    "References",
    "EmbeddingConfig",
    "get_embedding_service",
    "VersionTracker",
    "MemoryVectorStore",
    "PgVectorStore",
    "SearchHit",
    "SearchResult",
    "VectorSearchUnavailable",
    "IndexStore",
    "IndexStats",
    "HybridRetriever",
    "RetrievalOptions",
    "RerankConfig",
    "InvalidQuery",
    "CitationBuilder",
    "DocumentCitation",
    "BatchIndexer",
    "BatchIndexingResult",
    "EngineConfig",
    "build_engine",
]

__version__ = "0.1.0"
