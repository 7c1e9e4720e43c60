"""
Ledger Anchor Client — read the anchor, submit signed compare-and-swap
updates.

    read(id) → Anchor                 transient failures retried, then
                                      LedgerUnavailableError
    submit(id, expected, root, …)     → SubmitResult (CONFIRMED | CONFLICT |
                                      FAILED); only retryable FAILED results
                                      are retried here

CONFLICT is handed straight back: deciding what to do about a competing
push needs the git-level view, which only the orchestrator has. At most
one submission per object-set id is in flight from this process.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from gitanchor.adapters.base import LedgerBackend
from gitanchor.core.errors import LedgerUnavailableError, TransientIOError
from gitanchor.core.models.anchor import (
    Anchor,
    PendingTransaction,
    SignedTransaction,
    SubmitResult,
    SubmitStatus,
)
from gitanchor.core.observability.metrics import MetricsRegistry
from gitanchor.core.reliability.backoff import RetryPolicy, retry_call, retry_until
from gitanchor.core.services.signing import Signer

logger = logging.getLogger(__name__)


class LedgerClient:
    """Retrying facade over one LedgerBackend."""

    def __init__(
        self,
        backend: LedgerBackend,
        policy: RetryPolicy | None = None,
        metrics: MetricsRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._policy = policy or RetryPolicy()
        self._metrics = metrics or MetricsRegistry()
        self._sleep = sleep
        self._in_flight: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def backend(self) -> LedgerBackend:
        return self._backend

    def read(self, object_set_id: str) -> Anchor:
        self._metrics.counter("ledger.read").inc()
        try:
            anchor = retry_call(
                lambda: self._backend.read(object_set_id),
                self._policy,
                label="ledger read",
                sleep=self._sleep,
            )
        except TransientIOError as e:
            raise LedgerUnavailableError(f"cannot read anchor {object_set_id}: {e}") from e
        logger.debug(
            "Anchor %s: v%d root=%s", object_set_id, anchor.version, anchor.root or "(empty)"
        )
        return anchor

    def submit(
        self,
        object_set_id: str,
        expected_version: int,
        root: str,
        refs_digest: str,
        signer: Signer,
    ) -> SubmitResult:
        """Sign and submit one CAS update of the anchor."""
        transaction = PendingTransaction(
            object_set_id=object_set_id,
            expected_version=expected_version,
            root=root,
            refs_digest=refs_digest,
        )
        signed = signer.sign_transaction(transaction)

        with self._lock_for(object_set_id):
            self._metrics.counter("ledger.submit").inc()
            with self._metrics.timer("ledger.submit_ms"):
                result, attempts = retry_until(
                    lambda: self._submit_once(signed),
                    self._policy,
                    should_retry=lambda r: r.status == SubmitStatus.FAILED and r.retryable,
                    label="ledger submit",
                    sleep=self._sleep,
                )

        if result.status == SubmitStatus.CONFIRMED:
            assert result.anchor is not None
            logger.info(
                "Anchor %s confirmed at v%d (%d attempt(s))",
                object_set_id, result.anchor.version, attempts,
            )
        elif result.status == SubmitStatus.CONFLICT:
            logger.info("Anchor %s: expected v%d is stale", object_set_id, expected_version)
        else:
            logger.warning("Anchor %s submission failed: %s", object_set_id, result.error)
        return result

    def _submit_once(self, signed: SignedTransaction) -> SubmitResult:
        try:
            return self._backend.submit(signed)
        except Exception as e:
            # Backends should never raise, but a transport bug must not kill the push
            logger.error("Ledger backend %s raised during submit: %s", self._backend.name, e)
            return SubmitResult.failure(f"unexpected error: {e}", retryable=True)

    def _lock_for(self, object_set_id: str) -> threading.Lock:
        with self._guard:
            lock = self._in_flight.get(object_set_id)
            if lock is None:
                lock = self._in_flight[object_set_id] = threading.Lock()
            return lock
