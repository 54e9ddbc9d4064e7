"""
Batch Document Indexing

Lists documents from a DocumentSource, processes each one (download +
text extraction) and upserts it into the IndexStore. A failure on one
document is recorded and never stops the batch.

Distinct documents are indexed concurrently on a thread pool; each
document id is handled by exactly one worker.
"""

import time
import logging
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from concurrent.futures import ThreadPoolExecutor, as_completed

from .documents import DocumentProcessor
from .index_store import IndexStore

logger = logging.getLogger(__name__)

MAX_DOCUMENTS = 100


@dataclass
class BatchIndexingResult:
    """Outcome of one batch run."""
    total_documents: int = 0
    processed_documents: int = 0
    successful_documents: int = 0
    skipped_documents: int = 0
    failed_documents: int = 0
    errors: list[dict] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    duration_ms: float = 0.0

    def summary(self) -> str:
        """Human-readable summary for logs and CLI output."""
        lines = [
            "Batch Document Indexing Summary:",
            "------------------------------",
            f"Start time: {self.start_time.isoformat()}",
            f"End time: {self.end_time.isoformat() if self.end_time else '-'}",
            f"Duration: {self.duration_ms / 1000:.2f} seconds",
            "",
            "Documents:",
            f"  Total retrieved: {self.total_documents}",
            f"  Successfully processed: {self.successful_documents}",
            f"  Unchanged (skipped): {self.skipped_documents}",
            f"  Failed: {self.failed_documents}",
            "",
        ]
        if self.errors:
            lines.append("Errors:")
            for err in self.errors:
                lines.append(f"  - Document {err['document_id']}: {err['error']}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "total_documents": self.total_documents,
            "processed_documents": self.processed_documents,
            "successful_documents": self.successful_documents,
            "skipped_documents": self.skipped_documents,
            "failed_documents": self.failed_documents,
            "errors": self.errors,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
        }


class BatchIndexer:
    """
    Indexes every document a source lists.

    Usage:
        indexer = BatchIndexer(DocumentProcessor(source, extractor), index_store)
        result = indexer.run(max_documents=100)
        print(result.summary())
    """

    def __init__(
        self,
        processor: DocumentProcessor,
        index_store: IndexStore,
        max_workers: int = 4,
    ):
        self.processor = processor
        self.store = index_store
        self.max_workers = max(1, max_workers)

    def run(self, max_documents: int = MAX_DOCUMENTS, force_reindex: bool = False) -> BatchIndexingResult:
        """
        Index up to max_documents documents from the source.

        Args:
            max_documents: Upper bound on documents listed from the source
            force_reindex: Reindex even unchanged documents

        Returns:
            BatchIndexingResult with per-document errors
        """
        result = BatchIndexingResult()
        start = time.time()
        logger.info(f"Starting batch document indexing at {result.start_time.isoformat()}")

        try:
            document_ids = list(dict.fromkeys(self.processor.source.list_document_ids(max_documents)))
        except Exception as e:
            message = f"Batch indexing process failed: {e}"
            logger.error(message)
            result.errors.append({"document_id": "batch", "error": message})
            document_ids = []

        result.total_documents = len(document_ids)
        logger.info(f"Retrieved {len(document_ids)} documents from source")

        if document_ids:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(document_ids))) as executor:
                future_map = {
                    executor.submit(self._index_one, doc_id, force_reindex): doc_id
                    for doc_id in document_ids
                }
                for future in as_completed(future_map):
                    doc_id = future_map[future]
                    status, error = future.result()
                    result.processed_documents += 1
                    if status == "indexed":
                        result.successful_documents += 1
                    elif status == "skipped":
                        result.skipped_documents += 1
                    else:
                        result.failed_documents += 1
                        result.errors.append({"document_id": doc_id, "error": error})
                    logger.info(
                        f"Processed {result.processed_documents}/{result.total_documents}: "
                        f"{doc_id} ({status})"
                    )

        stats = self.store.stats()
        logger.info(
            f"Document index now contains {stats.document_count} documents "
            f"with {stats.chunk_count} chunks"
        )

        result.end_time = datetime.now(timezone.utc)
        result.duration_ms = (time.time() - start) * 1000
        logger.info(
            f"Batch indexing completed in {result.duration_ms / 1000:.2f}s: "
            f"{result.successful_documents} indexed, {result.skipped_documents} unchanged, "
            f"{result.failed_documents} failed"
        )
        return result

    def _index_one(self, document_id: str, force_reindex: bool) -> tuple[str, Optional[str]]:
        """Returns (status, error) with status in indexed / skipped / failed."""
        try:
            document = self.processor.process(document_id, force_refresh=force_reindex)
            if not force_reindex and not self.store.needs_reindex(document):
                return "skipped", None
            if self.store.upsert(document, force_reindex=force_reindex):
                return "indexed", None
            return "failed", f"Failed to index document: {document_id} - {document.name}"
        except Exception as e:
            logger.error(f"Error processing document {document_id}: {e}")
            return "failed", f"Error processing document {document_id}: {e}"
