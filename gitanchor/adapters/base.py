"""
Adapter base — the capability contracts for the two external systems.

The orchestrator only talks to a block store and a ledger through these
interfaces, wrapped by the retrying facades in ``gitanchor.core.services``.
Backends can therefore be swapped (IPFS, a local directory, memory)
without touching the push/fetch logic.

    BlockStore     put(bytes) → address, get(address) → bytes, pin(address)
    LedgerBackend  read(id) → Anchor, submit(signed tx) → SubmitResult
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from gitanchor.core.models.anchor import Anchor, SignedTransaction, SubmitResult


class BlockStore(ABC):
    """Abstract content-addressed block store.

    Transport failures are raised as ``TransientIOError`` so the store
    facade can retry them. An address the store does not know is not an
    error at this level: ``get`` returns None.

    To create a new backend:
        1. Subclass BlockStore
        2. Implement name, put, get, pin
        3. Register it in the BackendRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'ipfs', 'file', 'memory')."""

    @property
    def namespace(self) -> str:
        """Identifies the address space; the object cache is keyed by it."""
        return self.name

    def is_available(self) -> bool:
        """Whether the backend can be reached. Should be fast and never raise."""
        return True

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their content address.

        Must be idempotent: identical bytes always yield the same address.
        """

    @abstractmethod
    def get(self, address: str) -> bytes | None:
        """Return the bytes at ``address``, or None if unknown."""

    @abstractmethod
    def pin(self, address: str) -> None:
        """Protect ``address`` from garbage collection."""

    def has(self, address: str) -> bool:
        return self.get(address) is not None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} namespace={self.namespace!r}>"


class LedgerBackend(ABC):
    """Abstract anchor ledger with compare-and-swap submissions.

    ``read`` may raise ``TransientIOError``. ``submit`` NEVER raises: every
    outcome, transport failures included, comes back as a SubmitResult.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'file', 'memory')."""

    @abstractmethod
    def read(self, object_set_id: str) -> Anchor:
        """Current anchor; a never-pushed id yields an empty version-0 anchor."""

    @abstractmethod
    def submit(self, signed: SignedTransaction) -> SubmitResult:
        """Apply the transaction iff the current version equals its expected version."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
