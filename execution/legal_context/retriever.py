"""
Hybrid Retriever for Legal Documents

Combines semantic (vector) search with keyword search over the IndexStore,
fuses the two signals by weighted distance, re-ranks with legal-domain
heuristics and packs the result into a bounded context window.

Scores follow a distance convention throughout: lower = more relevant.

Pipeline:
1. Vector search (skipped in degraded mode or when query embedding fails)
2. Keyword search (whole-word, length-weighted)
3. Weighted fusion
4. Heuristic re-ranking (proximity, recency, category, density)
5. Document-diverse context packing
"""

import time
import logging
from typing import Optional
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from collections import OrderedDict

from .index_store import IndexStore, normalize_vector
from .legal_patterns import STOPWORDS, LEGAL_CATEGORIES, NON_WORD_PATTERN
from .vector_store import SearchHit, SearchResult, count_keyword

logger = logging.getLogger(__name__)


class InvalidQuery(ValueError):
    """Raised for an empty query or out-of-range retrieval options."""

    def __init__(self, message: str, query: Optional[str] = None):
        self.query = query
        super().__init__(message)


@dataclass
class RetrievalOptions:
    """Per-query retrieval options."""
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    # Keyword-only matches below this normalized score are dropped
    min_keyword_score: float = 0.1
    reranking: bool = True
    # Character budget for packed results
    context_window_size: int = 10000


@dataclass
class RerankConfig:
    """
    Re-ranking bonus weights.

    Empirical defaults; exposed so deployments can tune them.
    """
    proximity_window: int = 50
    proximity_divisor: float = 100.0
    recency_days: float = 30.0
    recency_divisor: float = 100.0
    category_bonus: float = 0.1
    legal_categories: tuple = LEGAL_CATEGORIES
    density_divisor: float = 20.0
    # Scales the total bonus before subtracting it from the fused score
    damping: float = 0.3


@dataclass
class RetrievalConfig:
    """Configuration for hybrid retrieval."""
    default_limit: int = 5
    # Candidates fetched per stage = max(limit * multiplier, min_candidates)
    candidate_multiplier: int = 2
    min_candidates: int = 10
    options: RetrievalOptions = field(default_factory=RetrievalOptions)
    rerank: RerankConfig = field(default_factory=RerankConfig)


def extract_keywords(query: str) -> list[str]:
    """
    Lowercase words longer than two characters, minus stopwords.

    Order of first appearance is kept; duplicates are dropped.
    """
    cleaned = NON_WORD_PATTERN.sub(" ", query.lower())
    keywords = []
    for word in cleaned.split():
        if len(word) > 2 and word not in STOPWORDS and word not in keywords:
            keywords.append(word)
    return keywords


class HybridRetriever:
    """
    Multi-stage retrieval pipeline over an IndexStore.

    Usage:
        retriever = HybridRetriever(index_store)
        results = retriever.retrieve("termination for convenience notice period", limit=5)
    """

    def __init__(
        self,
        index_store: IndexStore,
        embedding_service=None,
        config: Optional[RetrievalConfig] = None,
    ):
        """
        Initialize retriever.

        Args:
            index_store: The engine's IndexStore
            embedding_service: Query embedder; defaults to the store's service
            config: Optional retrieval configuration
        """
        self.store = index_store
        self.embeddings = embedding_service or index_store.embeddings
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        query: str,
        limit: Optional[int] = None,
        options: Optional[RetrievalOptions] = None,
    ) -> list[SearchResult]:
        """
        Retrieve relevant chunks for a query.

        Args:
            query: Natural-language query
            limit: Maximum results (defaults to config)
            options: Weights, re-ranking switch and context budget

        Returns:
            SearchResults ordered by ascending score. An empty list means
            nothing relevant was found.

        Raises:
            InvalidQuery: empty query, non-positive limit or bad options
        """
        start_time = time.time()
        limit = self.config.default_limit if limit is None else limit
        options = options or self.config.options
        self._validate(query, limit, options)

        keywords = extract_keywords(query)
        query_vector = self._embed_query(query)
        top_k = max(limit * self.config.candidate_multiplier, self.config.min_candidates)

        logger.info(f"Retrieving for query: {query[:50]}... (keywords={keywords})")

        hits = self.store.search(query_vector, keywords, vector_top_k=top_k, keyword_top_k=top_k)
        if not hits:
            logger.info("No candidates found")
            return []

        scored = self._fuse(hits, options)
        logger.debug(f"Fusion kept {len(scored)} of {len(hits)} candidates")

        if options.reranking and scored:
            scored = self._rerank(scored, keywords)

        packed = self._pack_context(scored, options.context_window_size, limit)
        results = [self._to_result(hit, score) for score, hit in packed]

        elapsed = (time.time() - start_time) * 1000
        mode = "hybrid" if query_vector is not None else "keyword-only"
        logger.info(f"Returning {len(results)} results ({mode}) in {elapsed:.0f}ms")
        return results

    # =========================================================================
    # Stages
    # =========================================================================

    @staticmethod
    def _validate(query: str, limit: int, options: RetrievalOptions) -> None:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQuery("Query must be a non-empty string", query=query)
        if not isinstance(limit, int) or limit <= 0:
            raise InvalidQuery(f"limit must be a positive integer, got {limit!r}", query=query)
        for name in ("vector_weight", "keyword_weight"):
            value = getattr(options, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidQuery(f"{name} must be in [0, 1], got {value}", query=query)
        if options.context_window_size <= 0:
            raise InvalidQuery("context_window_size must be positive", query=query)

    def _embed_query(self, query: str):
        """Embed the query, or return None to run keyword-only."""
        if self.embeddings is None or not self.store.vector_search_available:
            logger.debug(f"Vector search skipped: {self.store.degraded_reason}")
            return None
        try:
            vector = normalize_vector(self.embeddings.embed_query(query))
        except Exception as e:
            logger.warning(f"Query embedding failed, falling back to keyword search: {e}")
            return None
        if not vector.any():
            logger.warning("Query embedding is empty, falling back to keyword search")
            return None
        return vector

    @staticmethod
    def _fuse(hits: list[SearchHit], options: RetrievalOptions) -> list[tuple[float, SearchHit]]:
        """
        Weighted distance fusion.

        A chunk found by one search only uses that search's weighted term.
        Keyword-only chunks must clear min_keyword_score.
        """
        scored = []
        for hit in hits:
            if hit.vector_distance is None:
                if hit.keyword_score is None or hit.keyword_score < options.min_keyword_score:
                    continue
                score = options.keyword_weight * hit.keyword_distance
            elif hit.keyword_score is None:
                score = options.vector_weight * hit.vector_distance
            else:
                score = (
                    options.vector_weight * hit.vector_distance
                    + options.keyword_weight * hit.keyword_distance
                )
            scored.append((score, hit))

        scored.sort(key=lambda item: item[0])
        return scored

    def _rerank(
        self,
        scored: list[tuple[float, SearchHit]],
        keywords: list[str],
    ) -> list[tuple[float, SearchHit]]:
        """Subtract damped domain bonuses from each score and re-sort ascending."""
        cfg = self.config.rerank
        now = datetime.now(timezone.utc)
        reranked = []
        for score, hit in scored:
            bonus = self._rerank_bonus(hit, keywords, now)
            reranked.append((max(0.0, score - bonus * cfg.damping), hit))
        reranked.sort(key=lambda item: item[0])
        return reranked

    def _rerank_bonus(self, hit: SearchHit, keywords: list[str], now: datetime) -> float:
        cfg = self.config.rerank
        text = hit.chunk.text
        lowered = text.lower()
        metadata = hit.chunk.document_metadata
        bonus = 0.0

        # Term proximity: first occurrences of each present keyword pair
        positions = [lowered.find(k) for k in keywords]
        present = [p for p in positions if p >= 0]
        for i in range(len(present)):
            for j in range(i + 1, len(present)):
                distance = abs(present[i] - present[j])
                if distance < cfg.proximity_window:
                    bonus += (cfg.proximity_window - distance) / cfg.proximity_divisor

        # Recency of the source document
        updated = _parse_timestamp(metadata.get("updated"))
        if updated is not None:
            age_days = max(0.0, (now - updated).total_seconds() / 86400)
            if age_days < cfg.recency_days:
                bonus += (cfg.recency_days - age_days) / cfg.recency_divisor

        # Known legal category
        category = (metadata.get("category") or "").lower()
        if category and any(c in category for c in cfg.legal_categories):
            bonus += cfg.category_bonus

        # Keyword density: occurrences per 100 characters
        if keywords and text:
            occurrences = sum(count_keyword(text, k) for k in keywords)
            density = occurrences / (len(text) / 100)
            bonus += density / cfg.density_divisor

        return bonus

    @staticmethod
    def _pack_context(
        scored: list[tuple[float, SearchHit]],
        budget: int,
        limit: int,
    ) -> list[tuple[float, SearchHit]]:
        """
        Pack results breadth-first across documents within a character budget.

        Round one takes each document's best chunk (the overall best chunk is
        always taken); later rounds take each document's next chunk while it
        fits. Output is re-sorted by score and truncated to limit.
        """
        groups: OrderedDict = OrderedDict()
        for item in sorted(scored, key=lambda x: x[0]):
            groups.setdefault(item[1].chunk.document_id, []).append(item)

        selected = []
        total = 0
        cursors = {doc_id: 0 for doc_id in groups}
        active = list(groups)

        while active:
            still_active = []
            for doc_id in active:
                items = groups[doc_id]
                position = cursors[doc_id]
                if position >= len(items):
                    continue
                item = items[position]
                length = len(item[1].chunk.text)
                if selected and total + length > budget:
                    # This document cannot contribute further without overflowing
                    continue
                selected.append(item)
                total += length
                cursors[doc_id] = position + 1
                if cursors[doc_id] < len(items):
                    still_active.append(doc_id)
            if len(still_active) == 0:
                break
            active = still_active

        selected.sort(key=lambda x: x[0])
        return selected[:limit]

    @staticmethod
    def _to_result(hit: SearchHit, score: float) -> SearchResult:
        indexed = hit.chunk
        chunk = indexed.chunk
        metadata = {
            **indexed.document_metadata,
            "chunk_index": chunk.index,
            "section_title": chunk.section_title,
            "section_number": chunk.section_number,
            "is_heading": chunk.is_heading,
            "citations": list(chunk.citations),
            "clause_type": chunk.clause_type,
            "sections": list(chunk.sections),
            "paragraphs": list(chunk.paragraphs),
            "pages": list(chunk.pages),
            "document_version": indexed.document_version,
            "vector_distance": hit.vector_distance,
            "keyword_score": hit.keyword_score,
            "matched_keywords": list(hit.matched_keywords),
        }
        return SearchResult(
            document_id=chunk.source_doc_id,
            document_name=chunk.source_name,
            text=chunk.text,
            score=score,
            metadata=metadata,
            chunk_index=chunk.index,
        )


def _parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (or datetime) into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def with_options(options: Optional[RetrievalOptions] = None, **overrides) -> RetrievalOptions:
    """Copy options (or the defaults) with some fields overridden."""
    return replace(options or RetrievalOptions(), **overrides)
