"""Archive ledger: the persisted set of keys for already-handled downloads.

The ledger is a pretty-printed JSON array rewritten in full on every insert.
Reads and writes in a process go through one lock, so concurrent pipeline workers
cannot lose each other's keys. Separate processes sharing a ledger file are
not coordinated and can still overwrite each other.
"""

import json
import logging
import threading
from pathlib import Path

from podgrab.exceptions import ArchiveCorruptError, ArchiveWriteError

logger = logging.getLogger(__name__)


def get_archive_key(prefix: str, name: str) -> str:
    """Build the ledger key for an artifact of a feed."""
    return f"{prefix}-{name}"


class ArchiveLedger:
    """Handle to a ledger file, constructed once per run."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ArchiveLedger({str(self.path)!r})"

    def _read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ArchiveCorruptError(f"Unable to read archive {self.path}: {e}") from e
        if not isinstance(data, list) or not all(isinstance(k, str) for k in data):
            raise ArchiveCorruptError(
                f"Archive {self.path} is not a list of keys"
            )
        return data

    def load(self) -> set[str]:
        """Return every key in the ledger. A missing file is an empty ledger."""
        with self._lock:
            return set(self._read())

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._read()

    def insert(self, key: str) -> None:
        """Add a key (no-op if present) and rewrite the file."""
        with self._lock:
            keys = self._read()
            if key in keys:
                return
            keys.append(key)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(json.dumps(keys, indent=4), encoding="utf-8")
            except OSError as e:
                raise ArchiveWriteError(f"Error writing to archive: {e}") from e
        logger.debug("Archived %s", key)
