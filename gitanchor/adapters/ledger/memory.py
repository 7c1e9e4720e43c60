"""
Memory ledger — in-process anchor ledger with a programmable CAS outcome.

Real compare-and-swap semantics (the version must match), real signature
checks, plus hooks for tests:

    force_next(status)   answer the next submission(s) with CONFLICT/FAILED
    advance(...)         move an anchor as if another client had pushed
    before_submit        callback run inside submit, before the CAS check
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime

from gitanchor.adapters.base import LedgerBackend
from gitanchor.core.errors import TransientIOError
from gitanchor.core.models.anchor import (
    Anchor,
    SignedTransaction,
    SubmitResult,
    SubmitStatus,
)
from gitanchor.core.services.signing import verify_transaction


class MemoryLedger(LedgerBackend):
    """Dict-backed ledger. Thread-safe; one lock serializes all CAS checks."""

    def __init__(self, authorized_keys: set[str] | None = None):
        self._lock = threading.RLock()
        self._anchors: dict[str, Anchor] = {}
        self._forced: list[SubmitStatus] = []
        self._read_failures = 0
        self._authorized = set(authorized_keys) if authorized_keys else None
        self.submissions: list[SignedTransaction] = []
        self.reads = 0
        self.before_submit: Callable[[SignedTransaction], None] | None = None

    @property
    def name(self) -> str:
        return "memory"

    def read(self, object_set_id: str) -> Anchor:
        with self._lock:
            self.reads += 1
            if self._read_failures > 0:
                self._read_failures -= 1
                raise TransientIOError("injected ledger read failure")
            anchor = self._anchors.get(object_set_id)
            if anchor is None:
                return Anchor(object_set_id=object_set_id)
            return anchor.model_copy()

    def submit(self, signed: SignedTransaction) -> SubmitResult:
        if self.before_submit is not None:
            hook, self.before_submit = self.before_submit, None
            hook(signed)

        with self._lock:
            self.submissions.append(signed)
            tx = signed.transaction

            if not verify_transaction(signed):
                return SubmitResult.failure("invalid signature", retryable=False)
            if self._authorized is not None and signed.public_key not in self._authorized:
                return SubmitResult.failure("signer not authorized", retryable=False)

            current = self._anchors.get(tx.object_set_id) or Anchor(object_set_id=tx.object_set_id)

            if self._forced:
                forced = self._forced.pop(0)
                if forced == SubmitStatus.CONFLICT:
                    return SubmitResult.conflict(current.model_copy())
                if forced == SubmitStatus.FAILED:
                    return SubmitResult.failure("injected ledger failure", retryable=True)

            if current.version != tx.expected_version:
                return SubmitResult.conflict(current.model_copy())

            new = Anchor(
                object_set_id=tx.object_set_id,
                root=tx.root,
                refs_digest=tx.refs_digest,
                version=current.version + 1,
                updated_at=datetime.now(UTC).isoformat(),
            )
            self._anchors[tx.object_set_id] = new
            return SubmitResult.confirm(new.model_copy())

    # ── Test controls ───────────────────────────────────────────

    def force_next(self, status: SubmitStatus, times: int = 1) -> None:
        """Answer the next ``times`` valid submissions with ``status``."""
        self._forced.extend([status] * times)

    def fail_reads(self, times: int = 1) -> None:
        self._read_failures += times

    def advance(self, object_set_id: str, root: str, refs_digest: str) -> Anchor:
        """Move the anchor directly, as a competing client would."""
        with self._lock:
            current = self._anchors.get(object_set_id) or Anchor(object_set_id=object_set_id)
            new = Anchor(
                object_set_id=object_set_id,
                root=root,
                refs_digest=refs_digest,
                version=current.version + 1,
                updated_at=datetime.now(UTC).isoformat(),
            )
            self._anchors[object_set_id] = new
            return new.model_copy()
