"""
Tests for execution/legal_context/retriever.py

Covers: query validation, keyword extraction, weighted fusion,
        re-ranking bonuses, document-diverse context packing, the
        keyword-only fallback and end-to-end ranking.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from conftest import TWO_SECTION_TEXT


def _hit(doc_id, index, text="x" * 100, vector_distance=None, keyword_score=None, metadata=None):
    from execution.legal_context.chunker import Chunk
    from execution.legal_context.vector_store import IndexedChunk, SearchHit
    indexed = IndexedChunk(
        chunk=Chunk(index=index, text=text, source_doc_id=doc_id, source_name=f"Doc {doc_id}"),
        vector=None,
        document_version="v1",
        indexed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        document_metadata=metadata or {},
    )
    return SearchHit(chunk=indexed, vector_distance=vector_distance, keyword_score=keyword_score)


def _retriever():
    from execution.legal_context.retriever import HybridRetriever
    return HybridRetriever(MagicMock(embeddings=None))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:
    """Invalid queries raise InvalidQuery before any search."""

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query(self, keyword_only_store, query):
        from execution.legal_context.retriever import HybridRetriever, InvalidQuery
        with pytest.raises(InvalidQuery):
            HybridRetriever(keyword_only_store).retrieve(query)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit(self, keyword_only_store, limit):
        from execution.legal_context.retriever import HybridRetriever, InvalidQuery
        with pytest.raises(InvalidQuery):
            HybridRetriever(keyword_only_store).retrieve("termination", limit=limit)

    @pytest.mark.parametrize("overrides", [
        {"vector_weight": 1.5},
        {"keyword_weight": -0.1},
        {"context_window_size": 0},
    ])
    def test_bad_options(self, keyword_only_store, overrides):
        from execution.legal_context.retriever import HybridRetriever, InvalidQuery, with_options
        with pytest.raises(InvalidQuery):
            HybridRetriever(keyword_only_store).retrieve("termination", options=with_options(**overrides))

    def test_invalid_query_is_value_error(self):
        from execution.legal_context.retriever import InvalidQuery
        assert issubclass(InvalidQuery, ValueError)


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

class TestExtractKeywords:

    def test_stopwords_and_short_words_removed(self):
        from execution.legal_context.retriever import extract_keywords
        assert extract_keywords("How long does the Agreement last?") == ["how", "long", "agreement", "last"]

    def test_punctuation_and_duplicates(self):
        from execution.legal_context.retriever import extract_keywords
        assert extract_keywords("notice, NOTICE; termination-notice") == ["notice", "termination"]


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------

class TestFusion:
    """Weighted distance fusion and keyword-only filtering."""

    def test_single_signal_scores(self):
        from execution.legal_context.retriever import HybridRetriever, RetrievalOptions
        scored = HybridRetriever._fuse(
            [_hit("a", 0, vector_distance=0.4), _hit("b", 0, keyword_score=0.5)],
            RetrievalOptions(),
        )
        scores = {hit.chunk.document_id: score for score, hit in scored}
        assert scores["a"] == pytest.approx(0.28)
        assert scores["b"] == pytest.approx(0.15)

    def test_both_signals(self):
        from execution.legal_context.retriever import HybridRetriever, RetrievalOptions
        [(score, _)] = HybridRetriever._fuse(
            [_hit("a", 0, vector_distance=0.2, keyword_score=0.6)], RetrievalOptions()
        )
        assert score == pytest.approx(0.7 * 0.2 + 0.3 * 0.4)

    def test_weak_keyword_only_hits_dropped(self):
        from execution.legal_context.retriever import HybridRetriever, RetrievalOptions
        scored = HybridRetriever._fuse(
            [_hit("weak", 0, keyword_score=0.05), _hit("edge", 0, keyword_score=0.1)],
            RetrievalOptions(min_keyword_score=0.1),
        )
        assert [hit.chunk.document_id for _, hit in scored] == ["edge"]

    def test_sorted_ascending(self):
        from execution.legal_context.retriever import HybridRetriever, RetrievalOptions
        scored = HybridRetriever._fuse(
            [_hit("a", 0, vector_distance=0.9), _hit("b", 0, vector_distance=0.1)],
            RetrievalOptions(),
        )
        assert [hit.chunk.document_id for _, hit in scored] == ["b", "a"]

    def test_shifting_weight_to_better_signal_never_worsens(self):
        from execution.legal_context.retriever import HybridRetriever, with_options
        hit = _hit("a", 0, vector_distance=0.2, keyword_score=0.3)
        previous = None
        for step in range(11):
            vw = step / 10
            [(score, _)] = HybridRetriever._fuse([hit], with_options(vector_weight=vw, keyword_weight=1 - vw))
            if previous is not None:
                assert score <= previous + 1e-12
            previous = score


# ---------------------------------------------------------------------------
# Re-ranking
# ---------------------------------------------------------------------------

class TestRerank:
    """Domain bonuses are subtracted (damped) from fused scores."""

    def test_category_bonus(self):
        now = datetime.now(timezone.utc)
        hit = _hit("a", 0, text="plain words", metadata={"category": "Contract"})
        assert _retriever()._rerank_bonus(hit, [], now) == pytest.approx(0.1)

    def test_recency_bonus(self):
        now = datetime.now(timezone.utc)
        updated = (now - timedelta(days=10)).isoformat()
        hit = _hit("a", 0, text="plain words", metadata={"updated": updated})
        assert _retriever()._rerank_bonus(hit, [], now) == pytest.approx(0.2)

    def test_future_date_treated_as_today(self):
        now = datetime.now(timezone.utc)
        updated = (now + timedelta(days=5)).isoformat()
        hit = _hit("a", 0, text="plain words", metadata={"updated": updated})
        assert _retriever()._rerank_bonus(hit, [], now) == pytest.approx(0.3)

    def test_proximity_and_density(self):
        now = datetime.now(timezone.utc)
        hit = _hit("a", 0, text="termination notice")
        bonus = _retriever()._rerank_bonus(hit, ["termination", "notice"], now)
        proximity = (50 - 12) / 100
        density = (2 / (18 / 100)) / 20
        assert bonus == pytest.approx(proximity + density)

    def test_rerank_can_reorder(self):
        plain = _hit("plain", 0, text="plain words")
        contract = _hit("contract", 0, text="plain words", metadata={"category": "contract"})
        reranked = _retriever()._rerank([(0.30, plain), (0.32, contract)], [])
        assert [hit.chunk.document_id for _, hit in reranked] == ["contract", "plain"]
        assert reranked[0][0] == pytest.approx(0.32 - 0.1 * 0.3)

    def test_scores_floored_at_zero(self):
        contract = _hit("contract", 0, text="plain words", metadata={"category": "contract"})
        [(score, _)] = _retriever()._rerank([(0.01, contract)], [])
        assert score == 0.0


# ---------------------------------------------------------------------------
# Context packing
# ---------------------------------------------------------------------------

class TestPackContext:
    """Breadth-first packing within the character budget."""

    def test_best_chunk_always_included(self):
        from execution.legal_context.retriever import HybridRetriever
        scored = [(0.1, _hit("a", 0)), (0.2, _hit("b", 0))]
        packed = HybridRetriever._pack_context(scored, budget=10, limit=5)
        assert [hit.chunk.document_id for _, hit in packed] == ["a"]

    def test_documents_visited_breadth_first(self):
        from execution.legal_context.retriever import HybridRetriever
        scored = [
            (0.1, _hit("a", 0)),
            (0.2, _hit("a", 1)),
            (0.3, _hit("a", 2)),
            (0.4, _hit("b", 0)),
        ]
        packed = HybridRetriever._pack_context(scored, budget=250, limit=5)
        assert [hit.chunk.key for _, hit in packed] == [("a", 0), ("b", 0)]

    def test_budget_bound(self):
        from execution.legal_context.retriever import HybridRetriever
        scored = [(i / 100, _hit(f"d{i % 3}", i, text="y" * (40 + 7 * i))) for i in range(12)]
        budget = 300
        packed = HybridRetriever._pack_context(scored, budget=budget, limit=20)
        total = sum(len(hit.chunk.text) for _, hit in packed)
        largest = max(len(hit.chunk.text) for _, hit in scored)
        assert total <= budget + largest

    def test_truncated_to_limit_in_score_order(self):
        from execution.legal_context.retriever import HybridRetriever
        scored = [(0.5, _hit("a", 0)), (0.1, _hit("b", 0)), (0.3, _hit("c", 0))]
        packed = HybridRetriever._pack_context(scored, budget=10000, limit=2)
        assert [score for score, _ in packed] == [0.1, 0.3]


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

class TestRetrieve:
    """Full retrieval over an IndexStore."""

    def test_duration_query_ranks_term_section_first(
        self, memory_store, concept_embedding_service, version_tracker, make_document
    ):
        from execution.legal_context.chunker import ChunkConfig, LegalChunker
        from execution.legal_context.index_store import IndexStore
        from execution.legal_context.retriever import HybridRetriever

        store = IndexStore(
            memory_store,
            embedding_service=concept_embedding_service,
            chunker=LegalChunker(ChunkConfig(max_size=60, overlap=10)),
            version_tracker=version_tracker,
        )
        store.upsert(make_document("doc1", TWO_SECTION_TEXT))

        results = HybridRetriever(store).retrieve("how long does the agreement last")

        sections = [r.metadata["section_number"] for r in results]
        assert sections.index("2") < sections.index("1")
        assert results[0].document_id == "doc1"

    def test_keyword_only_fallback(self, keyword_only_store, sample_contract):
        from execution.legal_context.retriever import HybridRetriever
        keyword_only_store.upsert(sample_contract)

        results = HybridRetriever(keyword_only_store).retrieve("termination notice", limit=3)

        assert results
        assert all(r.metadata["vector_distance"] is None for r in results)
        assert "notice" in results[0].text.lower()

    def test_query_embedding_failure_falls_back(self, index_store, mock_embedding_service, sample_contract):
        from execution.legal_context.retriever import HybridRetriever
        index_store.upsert(sample_contract)
        mock_embedding_service.fail_queries = True

        results = HybridRetriever(index_store).retrieve("indemnify")

        assert results
        assert all(r.metadata["vector_distance"] is None for r in results)

    def test_result_metadata(self, index_store, sample_contract):
        from execution.legal_context.retriever import HybridRetriever
        index_store.upsert(sample_contract)

        results = HybridRetriever(index_store).retrieve("indemnify hold harmless", limit=2)

        assert len(results) <= 2
        meta = results[0].metadata
        assert meta["category"] == "contract"
        for key in ("chunk_index", "section_number", "clause_type", "citations", "document_version"):
            assert key in meta
        assert results[0].chunk_index == meta["chunk_index"]
        assert [r.score for r in results] == sorted(r.score for r in results)

    def test_empty_index_returns_nothing(self, index_store):
        from execution.legal_context.retriever import HybridRetriever
        assert HybridRetriever(index_store).retrieve("anything at all") == []
