"""
Engine Configuration and Wiring

EngineConfig gathers every component configuration. from_env() reads
LEGAL_CONTEXT_* variables (after loading .env) so deployments configure the
engine without code changes; build_engine() constructs the one IndexStore
and HybridRetriever the process shares.

Environment variables:
    LEGAL_CONTEXT_INDEX_DIR            directory for index + version files (default: data/index)
    LEGAL_CONTEXT_BACKEND              memory | postgres (default: memory)
    LEGAL_CONTEXT_CHUNK_SIZE           max chunk characters (default: 1000)
    LEGAL_CONTEXT_CHUNK_OVERLAP        overlap characters (default: 200)
    LEGAL_CONTEXT_EMBEDDING_PROVIDER   voyage | cohere | local | none (default: voyage)
    LEGAL_CONTEXT_EMBEDDING_MODEL      model override
    LEGAL_CONTEXT_EMBEDDING_CACHE_SIZE max cached embeddings (default: 10000)
    LEGAL_CONTEXT_EMBEDDING_FAILURE    abort | zero_vector (default: abort)
    POSTGRES_URL / DATABASE_URL        Postgres connection string
"""

import os
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .chunker import ChunkConfig, LegalChunker
from .citation import CitationBuilder
from .embeddings import EmbeddingConfig, get_embedding_service
from .index_store import IndexStore, IndexStoreConfig
from .references import ReferenceExtractor
from .retriever import HybridRetriever, RetrievalConfig
from .vector_store import VectorStoreConfig, create_vector_store
from .versioning import VersionTracker, DEFAULT_TRACKING_FILE

logger = logging.getLogger(__name__)

_PROVIDER_DEFAULTS = {
    "voyage": ("voyage-law-2", 1024),
    "cohere": ("embed-english-v3.0", 1024),
    "local": ("sentence-transformers/all-MiniLM-L6-v2", 384),
}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}; using {default}")
        return default


@dataclass
class EngineConfig:
    """Top-level configuration of the legal context engine."""
    index_dir: str = "data/index"
    embedding_provider: Optional[str] = "voyage"  # None disables vector search
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    index: IndexStoreConfig = field(default_factory=IndexStoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)

    @property
    def tracking_file(self) -> Path:
        return Path(self.index_dir) / DEFAULT_TRACKING_FILE

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """Build a configuration from the environment (and .env, if present)."""
        load_dotenv(dotenv_path)

        index_dir = os.getenv("LEGAL_CONTEXT_INDEX_DIR", "data/index")
        provider = os.getenv("LEGAL_CONTEXT_EMBEDDING_PROVIDER", "voyage").lower()
        if provider in ("", "none"):
            provider = None
        elif provider not in _PROVIDER_DEFAULTS:
            raise ValueError(f"Unknown LEGAL_CONTEXT_EMBEDDING_PROVIDER: {provider}")

        model, dimensions = _PROVIDER_DEFAULTS.get(provider or "voyage")
        embedding = EmbeddingConfig(
            provider=provider or "voyage",
            model=os.getenv("LEGAL_CONTEXT_EMBEDDING_MODEL") or model,
            dimensions=dimensions,
            cache_max_entries=_env_int("LEGAL_CONTEXT_EMBEDDING_CACHE_SIZE", 10000),
        )

        backend = os.getenv("LEGAL_CONTEXT_BACKEND", "memory").lower()
        store = VectorStoreConfig(
            backend=backend,
            index_path=str(Path(index_dir) / "chunks.json"),
            connection_string=os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL"),
            embedding_dimensions=dimensions,
        )

        chunk = ChunkConfig(
            max_size=_env_int("LEGAL_CONTEXT_CHUNK_SIZE", 1000),
            overlap=_env_int("LEGAL_CONTEXT_CHUNK_OVERLAP", 200),
        )

        index = IndexStoreConfig(
            embedding_failure_policy=os.getenv("LEGAL_CONTEXT_EMBEDDING_FAILURE", "abort"),
            embedding_dimensions=dimensions,
        )

        return cls(
            index_dir=index_dir,
            embedding_provider=provider,
            chunk=chunk,
            embedding=embedding,
            store=store,
            index=index,
        )


@dataclass
class Engine:
    """The wired engine: one store, one retriever, shared by all callers."""
    store: IndexStore
    retriever: HybridRetriever
    citations: CitationBuilder
    config: EngineConfig

    def close(self) -> None:
        self.store.backend.close()


def build_engine(config: Optional[EngineConfig] = None, embedding_service=None) -> Engine:
    """
    Construct the engine from configuration.

    Args:
        config: Engine configuration (defaults to EngineConfig.from_env())
        embedding_service: Pre-built embedding service; overrides the provider setting

    Returns:
        Engine with store, retriever and citation builder
    """
    config = config or EngineConfig.from_env()

    if embedding_service is None and config.embedding_provider:
        try:
            embedding_service = get_embedding_service(config=config.embedding)
        except ImportError as e:
            logger.warning(f"Embedding provider unavailable, running keyword-only: {e}")
        else:
            if not embedding_service.available:
                logger.warning("Embedding client not initialized, running keyword-only")
                embedding_service = None

    backend = create_vector_store(config.store)
    extractor = ReferenceExtractor()
    store = IndexStore(
        backend,
        embedding_service=embedding_service,
        chunker=LegalChunker(config.chunk),
        extractor=extractor,
        version_tracker=VersionTracker(str(config.tracking_file)),
        config=config.index,
    )
    retriever = HybridRetriever(store, config=config.retrieval)
    logger.info(
        f"Legal context engine ready (backend={config.store.backend}, "
        f"embeddings={config.embedding_provider or 'none'})"
    )
    return Engine(
        store=store,
        retriever=retriever,
        citations=CitationBuilder(extractor),
        config=config,
    )
