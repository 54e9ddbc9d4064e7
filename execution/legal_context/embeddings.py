"""
Embedding Service for the Legal Context Engine

Maps chunk and query text to fixed-length vectors. The engine treats the
service as an opaque collaborator with three calls:

    embed(text)            -- one document-side vector
    embed_query(text)      -- one query-side vector
    embed_documents(texts) -- batched document-side vectors

Architecture:
    BaseEmbeddingService  -- shared batching, bounded cache, input types
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 provider
        CohereEmbeddingService    -- Cohere embed-v3 provider
        LocalEmbeddingService     -- local sentence-transformers model
"""

import os
import hashlib
import logging
import threading
from typing import Optional
from dataclasses import dataclass
from collections import OrderedDict

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "voyage"  # "voyage", "cohere" or "local"
    model: str = "voyage-law-2"
    dimensions: int = 1024
    batch_size: int = 128  # Voyage supports up to 128
    max_tokens_per_batch: int = 100000  # Conservative limit (Voyage max: 120K)
    chars_per_token: float = 4.0
    use_cache: bool = True
    # Bounded in-memory cache, oldest entries evicted first
    cache_max_entries: int = 10000
    # Cache keys hash model, input type, text length and this many leading chars
    cache_prefix_chars: int = 2000


class BaseEmbeddingService:
    """
    Base class for embedding services.

    Provides shared functionality:
    - Batched embedding with progress logging
    - Bounded, thread-safe memory cache keyed by text prefix + length
    - Document vs query input type distinction

    Subclasses implement:
    - _init_client(): Initialize the provider-specific client
    - _call_provider(): only when the client is not `client.embed(...)`-shaped

    And set these class attributes:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _doc_input_type / _query_input_type: provider input type strings
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache: OrderedDict = OrderedDict()
        self._cache_lock = threading.Lock()
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return [list(e) for e in response.embeddings]

    def _require_client(self) -> None:
        if not self._client:
            raise RuntimeError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def embed(self, text: str) -> list[float]:
        """Embed a single piece of document text."""
        result = self.embed_documents([text])
        return result[0] if result else []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for document chunks.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, same order as texts
        """
        if not texts:
            return []

        self._require_client()
        batches = self._create_batches(texts)

        logger.info(
            f"Embedding {len(texts)} documents in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        embeddings = []
        for batch_idx, batch in enumerate(batches):
            embeddings.extend(self._embed_batch(batch, input_type=self._doc_input_type))
            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        return embeddings

    def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Uses the provider's query input type for better query-document matching.
        """
        self._require_client()
        result = self._embed_batch([query], input_type=self._query_input_type)
        return result[0] if result else []

    def _embed_batch(self, texts: list[str], input_type: str = "document") -> list[list[float]]:
        """Embed a batch, serving cached vectors and calling the provider for the rest."""
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        if uncached_texts:
            try:
                embeddings = self._call_provider(uncached_texts, input_type)
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise

            if len(embeddings) != len(uncached_texts):
                raise RuntimeError(
                    f"{self._provider_name} returned {len(embeddings)} embeddings "
                    f"for {len(uncached_texts)} texts"
                )

            for idx, embedding in zip(uncached_indices, embeddings):
                self._set_cached(self._get_cache_key(texts[idx], input_type), embedding)
                results.append((idx, embedding))

        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results]

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key from model, input type, text length and text prefix."""
        prefix = text[:self.config.cache_prefix_chars]
        content = f"{self.config.model}:{input_type}:{len(text)}:{prefix}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        if not self.config.use_cache:
            return None
        with self._cache_lock:
            return self._cache.get(key)

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        if not self.config.use_cache:
            return
        with self._cache_lock:
            self._cache[key] = embedding
            while len(self._cache) > self.config.cache_max_entries:
                self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    @property
    def available(self) -> bool:
        """False when the provider client could not be initialized (e.g. no API key)."""
        return self._client is not None

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class CohereEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Cohere's embed-v3 model.

    - 1024-dimensional embeddings
    - Different input types for documents vs queries
    """

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = os.getenv("COHERE_API_KEY")

        if not api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            import cohere
            self._client = cohere.Client(api_key)
            logger.info(f"Cohere client initialized with model {self.config.model}")
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 is tuned for legal text; 1024-dimensional embeddings with
    separate document / query input types.
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        api_key = os.getenv("VOYAGE_API_KEY")

        if not api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will fail. "
                "Get your free API key at https://dash.voyageai.com/"
            )
            return

        try:
            import voyageai
            self._client = voyageai.Client(api_key=api_key)
            logger.info(f"Voyage AI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("voyageai package not installed. Run: pip install voyageai")
            raise


class LocalEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using a local sentence-transformers model.

    Defaults to all-MiniLM-L6-v2 (384 dimensions, normalized output). Cost-free,
    good for development or air-gapped deployments.
    """

    _provider_name = "sentence-transformers"
    _env_var_name = "LEGAL_CONTEXT_EMBEDDING_MODEL"

    def _init_client(self):
        """Load the local model."""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Run: pip install sentence-transformers"
            )
        self._client = SentenceTransformer(self.config.model)
        self.config.dimensions = self._client.get_sentence_embedding_dimension()
        logger.info(f"Local embedding model loaded: {self.config.model}")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        embeddings = self._client.encode(
            texts,
            normalize_embeddings=True,
            show_progress_bar=len(texts) > 100,
        )
        return embeddings.tolist()


def get_embedding_service(
    provider: str = "voyage",
    model: Optional[str] = None,
    config: Optional[EmbeddingConfig] = None,
) -> BaseEmbeddingService:
    """
    Factory function to get the appropriate embedding service.

    Args:
        provider: "voyage" (default, best for legal), "cohere" or "local"
        model: Optional model override
        config: Full configuration; takes precedence over provider/model

    Returns:
        Configured embedding service
    """
    if config is not None:
        provider = config.provider
    else:
        if provider == "voyage":
            config = EmbeddingConfig(provider="voyage", model="voyage-law-2", dimensions=1024)
        elif provider == "cohere":
            config = EmbeddingConfig(
                provider="cohere", model="embed-english-v3.0", dimensions=1024, batch_size=96,
            )
        elif provider == "local":
            config = EmbeddingConfig(
                provider="local", model="sentence-transformers/all-MiniLM-L6-v2",
                dimensions=384, batch_size=64,
            )
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")
        if model:
            config.model = model

    if provider == "voyage":
        return VoyageEmbeddingService(config)
    if provider == "cohere":
        return CohereEmbeddingService(config)
    if provider == "local":
        return LocalEmbeddingService(config)
    raise ValueError(f"Unknown embedding provider: {provider}")


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    provider = os.getenv("LEGAL_CONTEXT_EMBEDDING_PROVIDER", "voyage")
    print(f"Using embedding provider: {provider}")

    service = get_embedding_service(provider=provider)

    query = " ".join(sys.argv[1:]) or "What are the termination clauses in this contract?"
    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
