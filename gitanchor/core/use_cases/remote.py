"""
Remote use case — wire one ``anchor://`` remote for a helper session.

    ctx = open_remote("anchor://my-set", repo)
    ... ctx.orchestrator.push(...) ...
    ctx.close()          # flushes the object cache

Everything the orchestrator needs (backends, retrying facades, cache,
journal, signer) is built here from the loaded configuration, so the
entry points stay thin and tests can hand in their own registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from gitanchor.adapters.registry import BackendRegistry
from gitanchor.adapters.vcs.git import GitRepository
from gitanchor.core.config.loader import HelperConfig, apply_git_overrides, load_config
from gitanchor.core.engine.orchestrator import Orchestrator
from gitanchor.core.errors import ConfigError
from gitanchor.core.observability.metrics import MetricsRegistry
from gitanchor.core.persistence.journal import PushJournal
from gitanchor.core.persistence.object_cache import ObjectCache, default_cache_path
from gitanchor.core.services.ledger import LedgerClient
from gitanchor.core.services.signing import Signer, load_signer
from gitanchor.core.services.store import StoreAdapter
from gitanchor.core.services.transcoder import Transcoder

logger = logging.getLogger(__name__)

URL_SCHEME = "anchor"


def parse_remote_url(url: str) -> str:
    """``anchor://<object-set-id>`` → object-set id.

    Raises:
        ConfigError: Wrong scheme or empty identifier.
    """
    parts = urlsplit(url)
    if parts.scheme != URL_SCHEME:
        raise ConfigError(f"Not an {URL_SCHEME}:// URL: {url!r}")
    object_set_id = (parts.netloc + parts.path).strip("/")
    if not object_set_id:
        raise ConfigError(f"No object-set id in {url!r}")
    return object_set_id


@dataclass
class RemoteContext:
    """Everything one helper session uses, and owns."""

    object_set_id: str
    config: HelperConfig
    repo: GitRepository
    store: StoreAdapter
    ledger: LedgerClient
    cache: ObjectCache
    transcoder: Transcoder
    journal: PushJournal
    orchestrator: Orchestrator
    metrics: MetricsRegistry = field(default_factory=MetricsRegistry)

    def close(self) -> None:
        """Persist the cache and stop the git subprocesses."""
        try:
            self.cache.flush()
        finally:
            self.repo.close()


def open_remote(
    url: str,
    repo: GitRepository,
    *,
    remote_name: str = "",
    config: HelperConfig | None = None,
    registry: BackendRegistry | None = None,
    signer: Signer | None = None,
    metrics: MetricsRegistry | None = None,
) -> RemoteContext:
    """Build the orchestrator for ``url`` on top of ``repo``.

    Args:
        url: ``anchor://<object-set-id>``.
        repo: Local repository git invoked the helper for.
        remote_name: git's name for the remote (journal only).
        config: Pre-loaded configuration (default: ``load_config()``).
        registry: Backend factories (default: the built-in backends).
        signer: Fixed signer; otherwise loaded lazily on first submit.
        metrics: Shared metrics registry.
    """
    object_set_id = parse_remote_url(url)
    config = apply_git_overrides(config or load_config(), repo)
    registry = registry or BackendRegistry()
    metrics = metrics or MetricsRegistry()
    policy = config.retry.policy()

    store = StoreAdapter(registry.create_store(config.store), policy, metrics)
    ledger = LedgerClient(registry.create_ledger(config.ledger), policy, metrics)

    cache_path = default_cache_path(repo.git_dir, store.namespace)
    cache = ObjectCache(cache_path, namespace=store.namespace)
    transcoder = Transcoder(repo, store, cache, workers=config.push.workers, metrics=metrics)
    journal = PushJournal(git_dir=repo.git_dir)

    def signer_factory() -> Signer:
        if signer is not None:
            return signer
        return load_signer(
            object_set_id,
            secret_env=config.signer.secret_env,
            use_git_credential=config.signer.use_git_credential,
            cwd=repo.cwd,
        )

    orchestrator = Orchestrator(
        object_set_id,
        repo,
        transcoder,
        store,
        ledger,
        signer_factory,
        remote=remote_name,
        journal=journal,
        max_cas_attempts=config.push.max_cas_attempts,
        workers=config.push.workers,
        metrics=metrics,
    )
    logger.debug(
        "Remote %s: store=%s ledger=%s cache=%s (%d entries)",
        object_set_id, config.store.backend, config.ledger.backend, cache_path, len(cache),
    )
    return RemoteContext(
        object_set_id=object_set_id,
        config=config,
        repo=repo,
        store=store,
        ledger=ledger,
        cache=cache,
        transcoder=transcoder,
        journal=journal,
        orchestrator=orchestrator,
        metrics=metrics,
    )

