"""
Reset document version tracking so the next indexing run rebuilds everything.

The fingerprint table (indexed_documents.json in the index directory) is
backed up to indexed_documents.json.bak.<timestamp> and cleared. Indexed
chunks are left in place and replaced document by document on reindex.

Usage:
    python reset_index_tracking.py               # Back up and reset
    python reset_index_tracking.py --no-backup   # Reset without a backup
    python reset_index_tracking.py --index-dir /srv/legal/index
"""

import sys
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

from execution.legal_context.config import EngineConfig
from execution.legal_context.versioning import VersionTracker, DEFAULT_TRACKING_FILE

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Reset legal context index tracking")
    parser.add_argument("--index-dir", default=None, help="Index directory (default: LEGAL_CONTEXT_INDEX_DIR)")
    parser.add_argument("--no-backup", action="store_true", help="Do not back up the tracking file")
    args = parser.parse_args()

    index_dir = Path(args.index_dir) if args.index_dir else Path(EngineConfig.from_env().index_dir)
    tracking_file = index_dir / DEFAULT_TRACKING_FILE

    if not tracking_file.exists():
        logger.info(f"No tracking file at {tracking_file}; nothing to reset")
        return

    tracker = VersionTracker(str(tracking_file))
    count = len(tracker)
    backup = tracker.reset(backup=not args.no_backup)

    logger.info(f"Cleared {count} tracked documents from {tracking_file}")
    if backup:
        logger.info(f"Backup written to {backup}")
    logger.info("Run reindex_documents.py to rebuild the index")


if __name__ == "__main__":
    main()
