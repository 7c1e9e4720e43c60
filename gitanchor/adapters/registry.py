"""
Backend registry — builds the configured block store and ledger.

The registry is the single point where backend names from the config
(``store.backend``, ``ledger.backend``) become instances. Tests register
their own factories (or pre-built instances) under the same names.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from gitanchor.adapters.base import BlockStore, LedgerBackend
from gitanchor.adapters.ledger.file import FileLedger
from gitanchor.adapters.ledger.memory import MemoryLedger
from gitanchor.adapters.store.file import FileBlockStore
from gitanchor.adapters.store.ipfs import IpfsBlockStore
from gitanchor.adapters.store.memory import MemoryBlockStore
from gitanchor.core.config.loader import LedgerConfig, StoreConfig
from gitanchor.core.errors import ConfigError

logger = logging.getLogger(__name__)

StoreFactory = Callable[[StoreConfig], BlockStore]
LedgerFactory = Callable[[LedgerConfig], LedgerBackend]


class BackendRegistry:
    """Name → factory lookup for block stores and ledgers.

    Features:
        - Built-in backends registered by default
        - Register/override factories by name
        - Pin a ready-made instance under a name (tests)
    """

    def __init__(self, with_defaults: bool = True):
        self._stores: dict[str, StoreFactory] = {}
        self._ledgers: dict[str, LedgerFactory] = {}
        if with_defaults:
            self.register_store(
                "ipfs",
                lambda c: IpfsBlockStore(
                    c.endpoint, timeout=c.timeout, lookup_timeout=c.lookup_timeout
                ),
            )
            self.register_store("file", lambda c: FileBlockStore(Path(c.path)))
            self.register_store("memory", lambda c: MemoryBlockStore())
            self.register_ledger(
                "file",
                lambda c: FileLedger(
                    Path(c.path),
                    authorized_keys=set(c.authorized_keys) or None,
                    lock_timeout=c.timeout,
                ),
            )
            self.register_ledger(
                "memory", lambda c: MemoryLedger(authorized_keys=set(c.authorized_keys) or None)
            )

    def register_store(self, name: str, factory: StoreFactory) -> None:
        if name in self._stores:
            logger.debug("Overwriting store backend: %s", name)
        self._stores[name] = factory

    def register_ledger(self, name: str, factory: LedgerFactory) -> None:
        if name in self._ledgers:
            logger.debug("Overwriting ledger backend: %s", name)
        self._ledgers[name] = factory

    def use_store(self, name: str, store: BlockStore) -> None:
        """Always hand out ``store`` for ``name``."""
        self._stores[name] = lambda c: store

    def use_ledger(self, name: str, ledger: LedgerBackend) -> None:
        """Always hand out ``ledger`` for ``name``."""
        self._ledgers[name] = lambda c: ledger

    def list_backends(self) -> dict[str, list[str]]:
        return {"store": sorted(self._stores), "ledger": sorted(self._ledgers)}

    def create_store(self, config: StoreConfig) -> BlockStore:
        factory = self._stores.get(config.backend)
        if factory is None:
            raise ConfigError(f"No store backend registered for '{config.backend}'")
        store = factory(config)
        logger.debug("Using block store %r", store)
        return store

    def create_ledger(self, config: LedgerConfig) -> LedgerBackend:
        factory = self._ledgers.get(config.backend)
        if factory is None:
            raise ConfigError(f"No ledger backend registered for '{config.backend}'")
        ledger = factory(config)
        logger.debug("Using ledger %r", ledger)
        return ledger
