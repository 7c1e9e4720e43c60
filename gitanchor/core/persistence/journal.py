"""
Push journal — append-only record of push batches.

Every push batch writes one entry to an NDJSON (newline-delimited JSON)
file inside the repository's git dir. It answers "what did I push to
this remote, and what did the ledger say" after the fact.

The journal is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Relative to the repository's git dir
DEFAULT_JOURNAL_DIR = "gitanchor"
DEFAULT_JOURNAL_FILE = "journal.ndjson"


class JournalEntry(BaseModel):
    """A single push batch."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    object_set_id: str = ""
    remote: str = ""

    # What happened
    refs: list[dict[str, Any]] = Field(default_factory=list)   # {dst, ok, reason}
    status: str = ""               # ok, partial, failed
    dry_run: bool = False

    # Ledger
    attempts: int = 0
    old_version: int | None = None
    new_version: int | None = None
    root: str | None = None

    # Store
    objects_uploaded: int = 0
    duration_ms: int = 0


class PushJournal:
    """Append-only journal writer.

    Each call to write() appends a single JSON line to the journal file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None, git_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif git_dir is not None:
            self._path = git_dir / DEFAULT_JOURNAL_DIR / DEFAULT_JOURNAL_FILE
        else:
            self._path = Path(DEFAULT_JOURNAL_DIR) / DEFAULT_JOURNAL_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: JournalEntry) -> None:
        """Append an entry; a journal failure never fails the push."""
        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Journal entry written: %s v%s", entry.object_set_id, entry.new_version)
        except OSError as e:
            logger.error("Failed to write journal entry: %s", e)

    def read_all(self) -> list[JournalEntry]:
        """Read all entries, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(JournalEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt journal entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read push journal: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[JournalEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:]
