"""
Admin use cases — what the ``gitanchor`` CLI reports and resets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gitanchor.adapters.registry import BackendRegistry
from gitanchor.core.config.loader import HelperConfig, load_config
from gitanchor.core.errors import ConfigError, GitAnchorError
from gitanchor.core.models.anchor import Anchor
from gitanchor.core.models.nodes import RefTableNode, parse_node
from gitanchor.core.persistence.journal import JournalEntry, PushJournal
from gitanchor.core.persistence.object_cache import DEFAULT_CACHE_DIR, ObjectCache
from gitanchor.core.services.ledger import LedgerClient
from gitanchor.core.services.store import StoreAdapter
from gitanchor.core.use_cases.remote import parse_remote_url

logger = logging.getLogger(__name__)


def _cache_files(git_dir: Path) -> list[Path]:
    directory = git_dir / DEFAULT_CACHE_DIR
    if not directory.is_dir():
        return []
    return sorted(directory.glob("*.json"))


def cache_stats(git_dir: Path) -> list[dict[str, object]]:
    """One stats dict per store namespace cached in this repository."""
    return [ObjectCache(path).stats() for path in _cache_files(git_dir)]


def clear_cache(git_dir: Path, namespace: str | None = None) -> int:
    """Invalidate cached mappings; returns how many cache files were cleared."""
    cleared = 0
    for path in _cache_files(git_dir):
        cache = ObjectCache(path)
        if namespace and cache.stats()["namespace"] != namespace:
            continue
        entries = len(cache)
        cache.clear()
        cleared += 1
        logger.info("Cleared %d entries from %s", entries, path)
    return cleared


@dataclass
class AnchorView:
    """An anchor plus (optionally) the ref table it points at."""

    anchor: Anchor
    table: RefTableNode | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"anchor": self.anchor.model_dump(mode="json")}
        if self.table is not None:
            result["refs"] = dict(self.table.refs)
            result["head"] = self.table.head
        if self.error:
            result["error"] = self.error
        return result


def show_anchor(
    target: str,
    *,
    with_refs: bool = False,
    config: HelperConfig | None = None,
    registry: BackendRegistry | None = None,
) -> AnchorView:
    """Read the anchor for an ``anchor://`` URL or a bare object-set id."""
    object_set_id = parse_remote_url(target) if "://" in target else target
    if not object_set_id:
        raise ConfigError("Empty object-set id")
    config = config or load_config()
    registry = registry or BackendRegistry()
    policy = config.retry.policy()

    ledger = LedgerClient(registry.create_ledger(config.ledger), policy)
    view = AnchorView(anchor=ledger.read(object_set_id))
    if not with_refs or view.anchor.root is None:
        return view

    store = StoreAdapter(registry.create_store(config.store), policy)
    try:
        node = parse_node(store.get(view.anchor.root))
    except (GitAnchorError, ValueError) as e:
        logger.warning("Cannot load ref table %s: %s", view.anchor.root, e)
        view.error = str(e)
        return view
    if isinstance(node, RefTableNode):
        view.table = node
    else:
        view.error = f"{view.anchor.root} is not a ref-table node"
    return view


def recent_pushes(git_dir: Path, n: int = 20) -> list[JournalEntry]:
    return PushJournal(git_dir=git_dir).read_recent(n)

