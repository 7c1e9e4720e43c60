"""Adapters — bindings for the block store, the ledger and local git.

Public re-exports for convenient access.
"""

from gitanchor.adapters.base import BlockStore, LedgerBackend
from gitanchor.adapters.registry import BackendRegistry

__all__ = [
    "BackendRegistry",
    "BlockStore",
    "LedgerBackend",
]
