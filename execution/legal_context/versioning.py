"""
Document Version Tracking

Computes a content fingerprint per document and remembers the fingerprint of
the last successful index write, so unchanged documents are never re-chunked
or re-embedded.

The fingerprint table is a JSON object {document_id: fingerprint} persisted
next to the index (indexed_documents.json by default). Writes go to a temp
file first and are moved into place with os.replace.
"""

import os
import json
import hashlib
import logging
import shutil
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_TRACKING_FILE = "indexed_documents.json"


class VersionTracker:
    """
    Fingerprint table for indexed documents.

    Malformed files or entries are treated as "unknown version": the
    affected documents are simply reindexed on their next upsert.
    """

    def __init__(self, path: Optional[str] = None):
        """
        Args:
            path: JSON file for the fingerprint table. None keeps it in memory only.
        """
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entries: dict[str, str] = self._load()

    @staticmethod
    def fingerprint(document) -> str:
        """
        SHA-256 over text, name, and the metadata that affects rendering.

        Only updated timestamp, content type and category take part; folder
        moves or size changes alone do not force a reindex.
        """
        metadata = document.metadata
        payload = json.dumps(
            {
                "text": document.text,
                "name": document.name,
                "updated": metadata.updated,
                "content_type": metadata.content_type,
                "category": metadata.category,
            },
            sort_keys=True,
            ensure_ascii=False,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def get(self, document_id: str) -> Optional[str]:
        return self._entries.get(document_id)

    def is_current(self, document_id: str, fingerprint: str) -> bool:
        """True when the stored fingerprint equals the given one."""
        return self._entries.get(document_id) == fingerprint

    def needs_reindex(self, document, force: bool = False) -> bool:
        if force:
            return True
        return not self.is_current(document.id, self.fingerprint(document))

    def record(self, document_id: str, fingerprint: str) -> None:
        """Store a fingerprint. Call only after the index write succeeded."""
        with self._lock:
            entries = dict(self._entries)
            entries[document_id] = fingerprint
            self._save(entries)
            self._entries = entries

    def forget(self, document_id: str) -> None:
        with self._lock:
            if document_id not in self._entries:
                return
            entries = dict(self._entries)
            del entries[document_id]
            self._save(entries)
            self._entries = entries

    def reset(self, backup: bool = True) -> Optional[Path]:
        """
        Clear the table so every document is reindexed.

        Args:
            backup: Copy the current file to <file>.bak.<timestamp> first

        Returns:
            Path of the backup file, if one was written
        """
        backup_path = None
        with self._lock:
            if backup and self.path and self.path.exists():
                stamp = datetime.now().strftime("%Y%m%dT%H%M%S")
                backup_path = self.path.with_name(f"{self.path.name}.bak.{stamp}")
                shutil.copy2(self.path, backup_path)
                logger.info(f"Backed up index tracking to {backup_path}")
            self._save({})
            self._entries = {}
        logger.info("Index tracking reset; all documents will be reindexed")
        return backup_path

    def document_ids(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._entries

    def _load(self) -> dict[str, str]:
        if not self.path or not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable version file {self.path}, treating all versions as unknown: {e}")
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Version file {self.path} is not an object, ignoring it")
            return {}

        entries = {}
        for document_id, fingerprint in raw.items():
            if isinstance(fingerprint, str) and fingerprint:
                entries[document_id] = fingerprint
            else:
                logger.warning(f"Malformed version entry for {document_id}; will reindex")
        logger.info(f"Loaded {len(entries)} document versions from {self.path}")
        return entries

    def _save(self, entries: dict[str, str]) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
