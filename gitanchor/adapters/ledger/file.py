"""
File ledger — anchors as JSON documents in a local directory.

Layout under ``root``, with ``<id>`` percent-encoded::

    <id>.json             current anchor (atomic temp-file + rename)
    <id>.lock             exclusive lock held during a CAS
    <id>.history.ndjson   every confirmed transaction, append-only

The lock is an ``O_CREAT | O_EXCL`` file, so several helper processes on
one machine (or on a shared filesystem) serialize their CAS checks on
it. A lock older than ``stale_after`` seconds is considered abandoned.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote

from gitanchor.adapters.base import LedgerBackend
from gitanchor.core.errors import TransientIOError
from gitanchor.core.models.anchor import Anchor, SignedTransaction, SubmitResult
from gitanchor.core.services.signing import verify_transaction

logger = logging.getLogger(__name__)


class FileLedger(LedgerBackend):
    """Directory-backed ledger with lock-file compare-and-swap."""

    def __init__(
        self,
        root: Path,
        authorized_keys: set[str] | None = None,
        lock_timeout: float = 10.0,
        stale_after: float = 60.0,
    ):
        self._root = Path(root).expanduser()
        self._authorized = set(authorized_keys) if authorized_keys else None
        self._lock_timeout = lock_timeout
        self._stale_after = stale_after

    @property
    def name(self) -> str:
        return "file"

    @property
    def root(self) -> Path:
        return self._root

    def read(self, object_set_id: str) -> Anchor:
        path = self._anchor_path(object_set_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Anchor(object_set_id=object_set_id)
        except OSError as e:
            raise TransientIOError(f"cannot read anchor {object_set_id}: {e}") from e
        try:
            anchor = Anchor.model_validate_json(raw)
        except ValueError as e:
            raise TransientIOError(f"corrupt anchor file {path}: {e}") from e
        if anchor.object_set_id != object_set_id:
            raise TransientIOError(
                f"corrupt anchor file {path}: holds {anchor.object_set_id!r}, not {object_set_id!r}"
            )
        return anchor

    def submit(self, signed: SignedTransaction) -> SubmitResult:
        tx = signed.transaction
        if not verify_transaction(signed):
            return SubmitResult.failure("invalid signature", retryable=False)
        if self._authorized is not None and signed.public_key not in self._authorized:
            return SubmitResult.failure("signer not authorized", retryable=False)

        try:
            self._acquire(tx.object_set_id)
        except TransientIOError as e:
            return SubmitResult.failure(str(e), retryable=True)

        try:
            current = self.read(tx.object_set_id)
            if current.version != tx.expected_version:
                logger.debug(
                    "CAS conflict on %s: expected v%d, found v%d",
                    tx.object_set_id, tx.expected_version, current.version,
                )
                return SubmitResult.conflict(current)

            new = Anchor(
                object_set_id=tx.object_set_id,
                root=tx.root,
                refs_digest=tx.refs_digest,
                version=current.version + 1,
                updated_at=datetime.now(UTC).isoformat(),
            )
            try:
                self._write_anchor(new)
            except OSError as e:
                return SubmitResult.failure(f"ledger write failed: {e}", retryable=True)

            # The anchor has moved: from here on the CAS is confirmed
            try:
                self._append_history(signed, new)
            except OSError as e:
                logger.warning(
                    "Anchor %s v%d missing from history: %s", tx.object_set_id, new.version, e
                )
            return SubmitResult.confirm(new)
        except TransientIOError as e:
            return SubmitResult.failure(str(e), retryable=True)
        finally:
            self._release(tx.object_set_id)

    # ── Helpers ─────────────────────────────────────────────────

    def _safe(self, object_set_id: str) -> str:
        # Percent-encoding is one-to-one and never yields a path separator
        return quote(object_set_id, safe="")

    def _anchor_path(self, object_set_id: str) -> Path:
        return self._root / f"{self._safe(object_set_id)}.json"

    def _lock_path(self, object_set_id: str) -> Path:
        return self._root / f"{self._safe(object_set_id)}.lock"

    def _acquire(self, object_set_id: str) -> None:
        lock = self._lock_path(object_set_id)
        self._root.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode())
                os.close(fd)
                return
            except FileExistsError:
                try:
                    age = time.time() - lock.stat().st_mtime
                except FileNotFoundError:
                    continue
                if age > self._stale_after:
                    logger.warning("Removing stale ledger lock %s (%.0fs old)", lock, age)
                    lock.unlink(missing_ok=True)
                    continue
            except OSError as e:
                raise TransientIOError(f"cannot lock {lock}: {e}") from e
            if time.monotonic() >= deadline:
                raise TransientIOError(f"timed out waiting for ledger lock {lock}")
            time.sleep(0.05)

    def _release(self, object_set_id: str) -> None:
        self._lock_path(object_set_id).unlink(missing_ok=True)

    def _write_anchor(self, anchor: Anchor) -> None:
        path = self._anchor_path(anchor.object_set_id)
        _fd, tmp_path = tempfile.mkstemp(dir=self._root, prefix=".anchor_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(anchor.model_dump_json(indent=2) + "\n")
            tmp.replace(path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _append_history(self, signed: SignedTransaction, anchor: Anchor) -> None:
        path = self._root / f"{self._safe(anchor.object_set_id)}.history.ndjson"
        line = json.dumps(
            {
                "version": anchor.version,
                "root": anchor.root,
                "refs_digest": anchor.refs_digest,
                "public_key": signed.public_key,
                "signature": signed.signature,
                "at": anchor.updated_at,
            }
        )
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
