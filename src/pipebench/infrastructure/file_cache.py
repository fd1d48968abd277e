"""Persistent cache tier: one JSON file per cache entry."""

import hashlib
import json
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from pipebench.domain.models import CacheEntry
from pipebench.infrastructure.logger import get_logger

logger = get_logger(__name__)


class FileCacheStore:
    """Store cache entries as individual JSON files under a directory.

    Files are named from a SHA-256 digest of the category and key. A file that cannot be parsed or
    validated is deleted and reported as a miss.
    """

    def __init__(self, directory: Path):
        """Initialize file cache store.

        Args:
            directory: Cache directory (created on demand)
        """
        self.directory = directory

    def path_for(self, category: str, key: str) -> Path:
        """Return the file path used for a cache entry."""
        digest = hashlib.sha256(f"{category}\0{key}".encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, category: str, key: str, now: datetime) -> CacheEntry | None:
        """Load an entry, dropping it if expired or corrupt.

        Args:
            category: Cache category
            key: Cache key
            now: Current time used for the expiry check

        Returns:
            The cached entry, or None on miss
        """
        path = self.path_for(category, key)
        if not path.exists():
            return None

        entry = self._read(path)
        if entry is None or entry.category != category or entry.key != key:
            return None

        if entry.is_expired(now):
            path.unlink(missing_ok=True)
            logger.debug("file_cache_expired", category=category, key=key)
            return None

        return entry

    def put(self, entry: CacheEntry) -> bool:
        """Write an entry to disk.

        Returns:
            True if written, False if the data is not JSON serializable or
            the write failed (the memory tier still holds the entry)
        """
        path = self.path_for(entry.category, entry.key)
        try:
            payload = json.dumps(entry.model_dump(mode="json"), indent=2)
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
        except (TypeError, ValueError, OSError) as e:
            logger.warning(
                "file_cache_write_failed",
                category=entry.category,
                key=entry.key,
                error=str(e),
            )
            return False
        return True

    def clear(self, category: str | None = None) -> int:
        """Delete all entry files, or only those of one category.

        Returns:
            Number of files removed
        """
        if not self.directory.exists():
            return 0

        removed = 0
        for path in self.directory.glob("*.json"):
            if category is not None:
                entry = self._read(path)
                if entry is None or entry.category != category:
                    continue
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def entries(self) -> Iterator[CacheEntry]:
        """Iterate over every readable entry on disk."""
        if not self.directory.exists():
            return
        for path in sorted(self.directory.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                yield entry

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            path.unlink(missing_ok=True)
            logger.warning("file_cache_corrupt_entry_removed", path=str(path), error=str(e))
            return None
