"""
Memory block store — test double for the block-store network.

Used in tests (and ``store.backend: memory``) to exercise the transcoder
and orchestrator without a network. Every call is logged, and transient
failures can be injected per operation.
"""

from __future__ import annotations

import hashlib
import threading

from gitanchor.adapters.base import BlockStore
from gitanchor.core.errors import TransientIOError


def sha256_address(data: bytes) -> str:
    """``sha256:<hex>`` content address used by the local backends."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


class MemoryBlockStore(BlockStore):
    """In-process dict of blocks.

    ``writes`` counts logical writes (a put of already-stored bytes is a
    no-op and is not counted); ``calls`` logs every (operation, address).
    """

    def __init__(self, store_name: str = "memory"):
        self._name = store_name
        self._lock = threading.Lock()
        self._blocks: dict[str, bytes] = {}
        self._pins: set[str] = set()
        self._failures: dict[str, int] = {}
        self._call_log: list[tuple[str, str]] = []
        self.writes = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[tuple[str, str]]:
        return self._call_log

    @property
    def pins(self) -> set[str]:
        return set(self._pins)

    def call_count(self, operation: str | None = None) -> int:
        """Number of calls, optionally only of one operation."""
        if operation is None:
            return len(self._call_log)
        return sum(1 for op, _ in self._call_log if op == operation)

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise TransientIOError."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    def put(self, data: bytes) -> str:
        address = sha256_address(data)
        with self._lock:
            self._call_log.append(("put", address))
            self._maybe_fail("put")
            if address not in self._blocks:
                self._blocks[address] = bytes(data)
                self.writes += 1
        return address

    def get(self, address: str) -> bytes | None:
        with self._lock:
            self._call_log.append(("get", address))
            self._maybe_fail("get")
            return self._blocks.get(address)

    def pin(self, address: str) -> None:
        with self._lock:
            self._call_log.append(("pin", address))
            self._maybe_fail("pin")
            self._pins.add(address)

    def has(self, address: str) -> bool:
        with self._lock:
            return address in self._blocks

    def drop(self, address: str) -> None:
        """Forget a block, simulating data lost from the network."""
        with self._lock:
            self._blocks.pop(address, None)
            self._pins.discard(address)

    def reset_calls(self) -> None:
        with self._lock:
            self._call_log.clear()

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            raise TransientIOError(f"injected {operation} failure")
