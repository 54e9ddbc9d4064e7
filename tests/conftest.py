"""
Shared fixtures and test utilities for the legal context engine tests.

Provides deterministic embedding services, sample documents and store
fixtures so that all tests run without API keys, databases, or network
access.
"""

import re
import sys
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample legal texts
# ---------------------------------------------------------------------------

TWO_SECTION_TEXT = (
    "SECTION 1. Scope.\nThis applies to all widgets.\n\n"
    "SECTION 2. Term.\nFive (5) years from the Effective Date."
)

SAMPLE_CONTRACT = """MASTER SERVICES AGREEMENT

ARTICLE I - DEFINITIONS

Section 1.1 "Services" means the consulting services described in Exhibit A.

Section 1.2 "Deliverables" means the reports produced under this Agreement.

ARTICLE II - TERM AND TERMINATION

Section 2.1 Term. This Agreement continues for two (2) years from the Effective Date.

Section 2.2 Termination. Either party may terminate this Agreement upon thirty (30) days written notice.

ARTICLE III - FEES

Section 3.1 Fees. Client shall pay the fees set out in Exhibit B within thirty (30) days of invoice.

ARTICLE IV - INDEMNIFICATION

Section 4.1 Provider shall indemnify and hold harmless Client against third-party claims.

ARTICLE V - GOVERNING LAW

Section 5.1 This Agreement is governed by the laws of the State of Delaware.
"""


# ---------------------------------------------------------------------------
# Embedding services
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs."""

    def __init__(self, dimensions=64):
        self._dimensions = dimensions
        self.document_calls = 0
        self.query_calls = 0
        self.fail_documents = False
        self.fail_queries = False

    def embed_documents(self, texts):
        self.document_calls += 1
        if self.fail_documents:
            raise RuntimeError("embedding provider unavailable")
        return [self._deterministic_embedding(t) for t in texts]

    def embed_query(self, query):
        self.query_calls += 1
        if self.fail_queries:
            raise RuntimeError("embedding provider unavailable")
        return self._deterministic_embedding(query)

    def embed(self, text):
        return self.embed_documents([text])[0]

    def _deterministic_embedding(self, text):
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


class ConceptEmbeddingService(MockEmbeddingService):
    """
    Bag-of-concepts embedder: one dimension per concept plus a bias.

    Texts about the same concept land close together, so ranking tests can
    rely on semantic similarity without a real model.
    """

    CONCEPTS = [
        {"long", "last", "lasts", "term", "years", "year", "duration", "months"},
        {"scope", "applies", "widgets", "widget"},
        {"agreement", "contract"},
        {"terminate", "termination", "notice"},
        {"pay", "fees", "invoice", "payment"},
    ]

    def __init__(self):
        super().__init__(dimensions=len(self.CONCEPTS) + 1)

    def _deterministic_embedding(self, text):
        words = re.findall(r"[a-z]+", text.lower())
        vector = [float(sum(1 for w in words if w in concept)) for concept in self.CONCEPTS]
        return vector + [1.0]


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService(dimensions=64)


@pytest.fixture
def concept_embedding_service():
    return ConceptEmbeddingService()


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@pytest.fixture
def make_document():
    """Factory for Documents with optional metadata overrides."""
    from execution.legal_context.documents import Document, DocumentMetadata

    def _make(doc_id="doc1", text=TWO_SECTION_TEXT, name=None, **metadata):
        return Document(
            id=doc_id,
            name=name or f"Document {doc_id}",
            text=text,
            metadata=DocumentMetadata(**metadata),
        )

    return _make


@pytest.fixture
def sample_contract(make_document):
    return make_document(
        "msa-1", SAMPLE_CONTRACT, name="Master Services Agreement",
        category="contract", content_type="text/plain",
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_store():
    from execution.legal_context.vector_store import MemoryVectorStore
    return MemoryVectorStore()


@pytest.fixture
def version_tracker(tmp_path):
    from execution.legal_context.versioning import VersionTracker
    return VersionTracker(str(tmp_path / "indexed_documents.json"))


@pytest.fixture
def index_store(memory_store, mock_embedding_service, version_tracker):
    from execution.legal_context.index_store import IndexStore
    return IndexStore(
        memory_store,
        embedding_service=mock_embedding_service,
        version_tracker=version_tracker,
    )


@pytest.fixture
def keyword_only_store(memory_store, version_tracker):
    from execution.legal_context.index_store import IndexStore, IndexStoreConfig
    return IndexStore(
        memory_store,
        version_tracker=version_tracker,
        config=IndexStoreConfig(embedding_dimensions=16),
    )
