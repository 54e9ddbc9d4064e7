"""
Tests for execution/legal_context/batch_indexer.py

Covers: batch counts (indexed / unchanged / failed), per-document error
        isolation, forced reindexing, listing failures and the summary.
"""

from unittest.mock import MagicMock

from conftest import SAMPLE_CONTRACT, TWO_SECTION_TEXT


def _processor(texts, broken=()):
    from execution.legal_context.documents import (
        Document, DocumentMetadata, DocumentProcessor, PlainTextExtractor,
    )

    def download(doc_id):
        if doc_id in broken:
            raise IOError(f"download failed for {doc_id}")
        return texts[doc_id].encode("utf-8")

    source = MagicMock()
    source.list_document_ids.return_value = list(texts)
    source.fetch_document.side_effect = lambda doc_id: Document(
        id=doc_id, name=f"Doc {doc_id}", text="", metadata=DocumentMetadata(),
    )
    source.download_bytes.side_effect = download
    return DocumentProcessor(source, PlainTextExtractor())


class TestBatchIndexer:
    """Batch runs over a mocked document source."""

    def test_counts_and_error_isolation(self, index_store):
        from execution.legal_context.batch_indexer import BatchIndexer
        texts = {"d1": SAMPLE_CONTRACT, "d2": TWO_SECTION_TEXT, "d3": "unused"}
        result = BatchIndexer(_processor(texts, broken={"d3"}), index_store).run()

        assert result.total_documents == 3
        assert result.processed_documents == 3
        assert result.successful_documents == 2
        assert result.failed_documents == 1
        assert result.errors[0]["document_id"] == "d3"
        assert "download failed" in result.errors[0]["error"]
        assert index_store.stats().document_count == 2

    def test_second_run_skips_unchanged(self, index_store, mock_embedding_service):
        from execution.legal_context.batch_indexer import BatchIndexer
        indexer = BatchIndexer(_processor({"d1": SAMPLE_CONTRACT, "d2": TWO_SECTION_TEXT}), index_store)
        indexer.run()
        calls = mock_embedding_service.document_calls

        result = indexer.run()

        assert result.skipped_documents == 2
        assert result.successful_documents == 0
        assert mock_embedding_service.document_calls == calls

    def test_force_reindex(self, index_store):
        from execution.legal_context.batch_indexer import BatchIndexer
        indexer = BatchIndexer(_processor({"d1": SAMPLE_CONTRACT}), index_store)
        indexer.run()
        result = indexer.run(force_reindex=True)
        assert result.successful_documents == 1
        assert result.skipped_documents == 0

    def test_failed_upsert_reported(self, index_store, mock_embedding_service):
        from execution.legal_context.batch_indexer import BatchIndexer
        mock_embedding_service.fail_documents = True
        result = BatchIndexer(_processor({"d1": SAMPLE_CONTRACT}), index_store).run()
        assert result.failed_documents == 1
        assert "Doc d1" in result.errors[0]["error"]

    def test_listing_failure(self, index_store):
        from execution.legal_context.batch_indexer import BatchIndexer
        processor = _processor({})
        processor.source.list_document_ids.side_effect = ConnectionError("source offline")

        result = BatchIndexer(processor, index_store).run()

        assert result.total_documents == 0
        assert result.errors == [
            {"document_id": "batch", "error": "Batch indexing process failed: source offline"}
        ]

    def test_max_documents_passed_to_source(self, index_store):
        from execution.legal_context.batch_indexer import BatchIndexer
        processor = _processor({"d1": TWO_SECTION_TEXT})
        BatchIndexer(processor, index_store).run(max_documents=7)
        processor.source.list_document_ids.assert_called_once_with(7)

    def test_summary_and_dict(self, index_store):
        from execution.legal_context.batch_indexer import BatchIndexer
        result = BatchIndexer(_processor({"d1": TWO_SECTION_TEXT}, broken={"d1"}), index_store).run()

        summary = result.summary()
        assert "Failed: 1" in summary
        assert "Document d1:" in summary
        d = result.to_dict()
        assert d["failed_documents"] == 1
        assert d["end_time"] is not None
