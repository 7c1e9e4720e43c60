"""
Store Adapter — the retrying facade every caller uses instead of a raw
BlockStore.

    put(bytes) → address    idempotent; transient failures retried
    get(address) → bytes    retried, including "not found yet" answers,
                            then BlockNotFoundError
    pin(address)            retried with a longer budget: a block that is
                            about to be anchored must end up pinned

All three are safe to repeat: they are pure functions of their input.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from gitanchor.adapters.base import BlockStore
from gitanchor.core.errors import BlockNotFoundError, StoreUnavailableError, TransientIOError
from gitanchor.core.observability.metrics import MetricsRegistry
from gitanchor.core.reliability.backoff import RetryPolicy, retry_call

logger = logging.getLogger(__name__)

# Pins get this many times the normal attempt budget.
PIN_ATTEMPT_FACTOR = 3


class _NotYetFound(TransientIOError):
    """The store answered but did not (yet) have the block."""


class StoreAdapter:
    """Retry, verification and metrics around one BlockStore backend."""

    def __init__(
        self,
        backend: BlockStore,
        policy: RetryPolicy | None = None,
        metrics: MetricsRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._policy = policy or RetryPolicy()
        self._pin_policy = RetryPolicy(
            max_attempts=self._policy.max_attempts * PIN_ATTEMPT_FACTOR,
            base_delay=self._policy.base_delay,
            max_delay=self._policy.max_delay,
            jitter=self._policy.jitter,
        )
        self._metrics = metrics or MetricsRegistry()
        self._sleep = sleep

    @property
    def backend(self) -> BlockStore:
        return self._backend

    @property
    def namespace(self) -> str:
        return self._backend.namespace

    def put(self, data: bytes) -> str:
        self._metrics.counter("store.put").inc()
        with self._metrics.timer("store.put_ms"):
            try:
                return retry_call(
                    lambda: self._backend.put(data),
                    self._policy,
                    label="store put",
                    sleep=self._sleep,
                )
            except TransientIOError as e:
                raise StoreUnavailableError(f"put failed: {e}") from e

    def get(self, address: str) -> bytes:
        """Fetch and verify a block.

        Raises:
            BlockNotFoundError: The store never produced the block.
            StoreUnavailableError: The store kept failing.
        """

        def attempt() -> bytes:
            data = self._backend.get(address)
            if data is None:
                raise _NotYetFound(f"{address} not found")
            if not _matches(address, data):
                raise TransientIOError(f"{address} returned corrupt data")
            return data

        self._metrics.counter("store.get").inc()
        with self._metrics.timer("store.get_ms"):
            try:
                return retry_call(attempt, self._policy, label="store get", sleep=self._sleep)
            except _NotYetFound as e:
                raise BlockNotFoundError(address, str(e)) from e
            except TransientIOError as e:
                raise StoreUnavailableError(f"get {address} failed: {e}") from e

    def pin(self, address: str) -> None:
        self._metrics.counter("store.pin").inc()
        try:
            retry_call(
                lambda: self._backend.pin(address),
                self._pin_policy,
                label="store pin",
                sleep=self._sleep,
            )
        except TransientIOError as e:
            raise StoreUnavailableError(f"pin {address} was never acknowledged: {e}") from e

    def pin_all(self, addresses: Iterable[str], workers: int = 8) -> int:
        """Pin many blocks concurrently; raises on the first that never pins."""
        pending = list(dict.fromkeys(addresses))
        if not pending:
            return 0
        with ThreadPoolExecutor(max_workers=max(1, min(workers, len(pending)))) as pool:
            for _ in pool.map(self.pin, pending):
                pass
        logger.debug("Pinned %d blocks", len(pending))
        return len(pending)


def _matches(address: str, data: bytes) -> bool:
    """Verify locally computable addresses; others are trusted."""
    if address.startswith("sha256:"):
        return hashlib.sha256(data).hexdigest() == address[len("sha256:"):]
    return True
