"""
Anchor models — the ledger-resident state of one object set.

These are pure Pydantic models with no I/O. An ``Anchor`` is the single
externally visible truth about a remote; a ``PendingTransaction`` is one
attempt to move it, and a ``SubmitResult`` is what the ledger said.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from gitanchor.core.models.nodes import canonical_json, refs_digest


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


EMPTY_REFS_DIGEST = refs_digest({}, None)


class Anchor(BaseModel):
    """Current root address and CAS version for one object-set identifier.

    ``version`` 0 with ``root`` None is the state of a never-pushed remote.
    """

    object_set_id: str
    root: str | None = None
    refs_digest: str = EMPTY_REFS_DIGEST
    version: int = 0
    updated_at: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.root is None


class PendingTransaction(BaseModel):
    """An in-flight anchor update: expected prior version → proposed anchor."""

    object_set_id: str
    expected_version: int
    root: str
    refs_digest: str
    created_at: str = Field(default_factory=_now_iso)

    def signing_payload(self) -> bytes:
        """The exact bytes a signer signs and a ledger verifies."""
        return canonical_json(
            {
                "object_set_id": self.object_set_id,
                "expected_version": self.expected_version,
                "root": self.root,
                "refs_digest": self.refs_digest,
            }
        )


class SignedTransaction(BaseModel):
    """A pending transaction with its detached signature."""

    transaction: PendingTransaction
    public_key: str      # hex
    signature: str       # hex


class SubmitStatus(StrEnum):
    """Outcome of one anchor submission."""

    CONFIRMED = "confirmed"
    CONFLICT = "conflict"
    FAILED = "failed"


class SubmitResult(BaseModel):
    """What the ledger answered to one submission.

    ``anchor`` is the new anchor on CONFIRMED and the ledger's current
    anchor on CONFLICT (when the backend knows it). ``retryable`` is only
    meaningful for FAILED: transport errors are, signature rejections are not.
    """

    status: SubmitStatus
    anchor: Anchor | None = None
    error: str = ""
    retryable: bool = False

    @property
    def confirmed(self) -> bool:
        return self.status == SubmitStatus.CONFIRMED

    @classmethod
    def confirm(cls, anchor: Anchor) -> SubmitResult:
        return cls(status=SubmitStatus.CONFIRMED, anchor=anchor)

    @classmethod
    def conflict(cls, current: Anchor | None = None) -> SubmitResult:
        return cls(status=SubmitStatus.CONFLICT, anchor=current, error="version mismatch")

    @classmethod
    def failure(cls, error: str, retryable: bool = True) -> SubmitResult:
        return cls(status=SubmitStatus.FAILED, error=error, retryable=retryable)
