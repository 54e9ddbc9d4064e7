"""
Tests for execution/legal_context/documents.py

Covers: DocumentMetadata conversion, DocumentProcessor caching,
        DirectoryDocumentSource listing / sidecar metadata / path
        containment, and PlainTextExtractor decoding.
"""

import json
from unittest.mock import MagicMock

import pytest


def _fake_source(texts):
    from execution.legal_context.documents import Document, DocumentMetadata
    source = MagicMock()
    source.fetch_document.side_effect = lambda doc_id: Document(
        id=doc_id, name=f"Doc {doc_id}", text="", metadata=DocumentMetadata(category="contract"),
    )
    source.download_bytes.side_effect = lambda doc_id: texts[doc_id].encode("utf-8")
    source.list_document_ids.return_value = list(texts)
    return source


# ---------------------------------------------------------------------------
# DocumentMetadata
# ---------------------------------------------------------------------------

class TestDocumentMetadata:

    def test_from_dict_ignores_unknown_keys(self):
        from execution.legal_context.documents import DocumentMetadata
        meta = DocumentMetadata.from_dict({"category": "brief", "owner": "someone"})
        assert meta.category == "brief"
        assert meta.to_dict()["category"] == "brief"

    def test_from_none(self):
        from execution.legal_context.documents import DocumentMetadata
        assert DocumentMetadata.from_dict(None) == DocumentMetadata()

    def test_datetimes_stored_as_iso_strings(self):
        from datetime import datetime, timezone
        from execution.legal_context.documents import DocumentMetadata
        meta = DocumentMetadata(updated=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))
        assert meta.updated == "2024-03-01T12:00:00+00:00"
        assert json.dumps(meta.to_dict())


# ---------------------------------------------------------------------------
# DocumentProcessor
# ---------------------------------------------------------------------------

class TestDocumentProcessor:
    """Fetch + download + extract, with a bounded cache."""

    def test_process_extracts_text_and_size(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "Section 1. Hello."})
        doc = DocumentProcessor(source, PlainTextExtractor()).process("d1")
        assert doc.text == "Section 1. Hello."
        assert doc.name == "Doc d1"
        assert doc.metadata.size == len("Section 1. Hello.")
        assert doc.metadata.category == "contract"

    def test_cache_hit_skips_download(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "text"})
        processor = DocumentProcessor(source, PlainTextExtractor())
        processor.process("d1")
        processor.process("d1")
        assert source.download_bytes.call_count == 1

    def test_force_refresh(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "text"})
        processor = DocumentProcessor(source, PlainTextExtractor())
        processor.process("d1")
        processor.process("d1", force_refresh=True)
        assert source.download_bytes.call_count == 2

    def test_cache_evicts_oldest(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "one", "d2": "two"})
        processor = DocumentProcessor(source, PlainTextExtractor(), cache_max_entries=1)
        processor.process("d1")
        processor.process("d2")
        processor.process("d1")
        assert source.download_bytes.call_count == 3

    def test_expired_entry_refetched(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "text"})
        processor = DocumentProcessor(source, PlainTextExtractor(), max_cache_age_seconds=-1)
        processor.process("d1")
        processor.process("d1")
        assert source.download_bytes.call_count == 2

    def test_invalidate(self):
        from execution.legal_context.documents import DocumentProcessor, PlainTextExtractor
        source = _fake_source({"d1": "text"})
        processor = DocumentProcessor(source, PlainTextExtractor())
        processor.process("d1")
        processor.invalidate("d1")
        processor.process("d1")
        assert source.download_bytes.call_count == 2


# ---------------------------------------------------------------------------
# DirectoryDocumentSource
# ---------------------------------------------------------------------------

class TestDirectoryDocumentSource:
    """Filesystem-backed document source."""

    def test_lists_matching_files(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        (tmp_path / "b.txt").write_text("b", encoding="utf-8")
        (tmp_path / "a.md").write_text("a", encoding="utf-8")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "c.txt").write_text("c", encoding="utf-8")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        ids = DirectoryDocumentSource(str(tmp_path)).list_document_ids()
        assert ids == ["a.md", "b.txt", "sub/c.txt"]

    def test_limit(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        for name in ("a", "b", "c"):
            (tmp_path / f"{name}.txt").write_text(name, encoding="utf-8")
        assert DirectoryDocumentSource(str(tmp_path)).list_document_ids(limit=2) == ["a.txt", "b.txt"]

    def test_no_limit_lists_all(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        for name in ("a", "b", "c"):
            (tmp_path / f"{name}.txt").write_text(name, encoding="utf-8")
        assert DirectoryDocumentSource(str(tmp_path)).list_document_ids(limit=None) == ["a.txt", "b.txt", "c.txt"]

    def test_sidecar_metadata(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        (tmp_path / "msa.txt").write_text("SECTION 1. Scope.", encoding="utf-8")
        (tmp_path / "msa.txt.meta.json").write_text(
            json.dumps({"name": "Master Services Agreement", "category": "contract"}),
            encoding="utf-8",
        )
        doc = DirectoryDocumentSource(str(tmp_path)).fetch_document("msa.txt")
        assert doc.name == "Master Services Agreement"
        assert doc.metadata.category == "contract"
        assert doc.metadata.content_type == "text/plain"
        assert doc.metadata.updated is not None

    def test_name_defaults_to_stem(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        (tmp_path / "lease.md").write_text("# Lease", encoding="utf-8")
        doc = DirectoryDocumentSource(str(tmp_path)).fetch_document("lease.md")
        assert doc.name == "lease"
        assert doc.metadata.content_type == "text/markdown"

    def test_path_escape_rejected(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        root = tmp_path / "docs"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("secret", encoding="utf-8")
        with pytest.raises(ValueError):
            DirectoryDocumentSource(str(root)).download_bytes("../secret.txt")

    def test_missing_document(self, tmp_path):
        from execution.legal_context.documents import DirectoryDocumentSource
        with pytest.raises(FileNotFoundError):
            DirectoryDocumentSource(str(tmp_path)).download_bytes("nope.txt")


def test_plain_text_extractor_replaces_bad_bytes():
    from execution.legal_context.documents import PlainTextExtractor
    assert PlainTextExtractor().extract_text(b"ok \xff", "x.txt") == "ok �"
