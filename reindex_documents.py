"""
Batch-index a directory of legal documents into the legal context index.

Every .txt / .md file under the source directory is a document (id = its
relative path). Unchanged documents are skipped by fingerprint unless
--force is given. An optional <file>.meta.json sidecar supplies metadata.

Usage:
    python reindex_documents.py docs/                   # Index new / changed documents
    python reindex_documents.py docs/ --force           # Rebuild every document
    python reindex_documents.py docs/ --max-docs 500 --workers 8
    python reindex_documents.py docs/ --remove-missing  # Drop documents no longer on disk
"""

import sys
import json
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

from execution.legal_context.batch_indexer import BatchIndexer
from execution.legal_context.config import EngineConfig, build_engine
from execution.legal_context.documents import (
    DirectoryDocumentSource,
    DocumentProcessor,
    PlainTextExtractor,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def remove_missing(engine, source: DirectoryDocumentSource) -> int:
    """Remove indexed documents whose files no longer exist."""
    on_disk = set(source.list_document_ids(limit=None))
    removed = 0
    for document_id in engine.store.versions.document_ids():
        if document_id not in on_disk and engine.store.remove(document_id):
            logger.info(f"Removed missing document: {document_id}")
            removed += 1
    return removed


def main():
    parser = argparse.ArgumentParser(description="Batch-index legal documents from a directory")
    parser.add_argument("source_dir", help="Directory containing .txt / .md documents")
    parser.add_argument("--force", action="store_true", help="Reindex unchanged documents too")
    parser.add_argument("--max-docs", type=int, default=100, help="Maximum documents to index (default: 100)")
    parser.add_argument("--workers", type=int, default=4, help="Documents indexed in parallel (default: 4)")
    parser.add_argument("--remove-missing", action="store_true", help="Remove indexed documents no longer on disk")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    source_dir = Path(args.source_dir)
    if not source_dir.is_dir():
        logger.error(f"Source directory not found: {source_dir}")
        sys.exit(1)

    config = EngineConfig.from_env()
    engine = build_engine(config)
    source = DirectoryDocumentSource(str(source_dir))

    try:
        indexer = BatchIndexer(
            DocumentProcessor(source, PlainTextExtractor()),
            engine.store,
            max_workers=args.workers,
        )
        result = indexer.run(max_documents=args.max_docs, force_reindex=args.force)

        if args.remove_missing:
            removed = remove_missing(engine, source)
            logger.info(f"Removed {removed} documents no longer in {source_dir}")

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(result.summary())
    finally:
        engine.close()

    sys.exit(1 if result.failed_documents else 0)


if __name__ == "__main__":
    main()
