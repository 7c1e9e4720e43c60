"""
Shared test fixtures.

Repositories are real: they are created with the ``git`` binary in
``tmp_path``. Tests that need one are skipped when git isn't installed.
The block store and ledger are the in-memory backends.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from gitanchor.adapters.ledger.memory import MemoryLedger
from gitanchor.adapters.store.memory import MemoryBlockStore
from gitanchor.adapters.vcs.git import GitRepository
from gitanchor.core.engine.orchestrator import Orchestrator
from gitanchor.core.persistence.journal import PushJournal
from gitanchor.core.persistence.object_cache import ObjectCache
from gitanchor.core.reliability.backoff import RetryPolicy
from gitanchor.core.services.ledger import LedgerClient
from gitanchor.core.services.signing import Signer
from gitanchor.core.services.store import StoreAdapter
from gitanchor.core.services.transcoder import Transcoder

_GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@test.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


class GitTestRepo:
    """A throwaway repository driven through the git CLI."""

    def __init__(self, path: Path):
        self.path = path

    def git(self, *args: str, input: bytes | None = None) -> str:
        env = {**os.environ, **_GIT_ENV}
        r = subprocess.run(
            ["git", "-C", str(self.path), *args],
            input=input,
            capture_output=True,
            check=True,
            env=env,
        )
        return r.stdout.decode("utf-8").strip()

    def commit(self, files: dict[str, str], message: str = "commit") -> str:
        """Write ``files`` (path → content), commit everything, return the oid."""
        for name, content in files.items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.rev("HEAD")

    def rev(self, rev: str) -> str:
        return self.git("rev-parse", rev)

    def reachable(self, oid: str) -> set[str]:
        """Every object id reachable from ``oid``."""
        out = self.git("rev-list", "--objects", oid)
        return {line.split(" ", 1)[0] for line in out.splitlines() if line}

    @property
    def git_dir(self) -> Path:
        return self.path / ".git"


def _init(path: Path) -> GitTestRepo:
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q", str(path)], capture_output=True, check=True)
    repo = GitTestRepo(path)
    repo.git("symbolic-ref", "HEAD", "refs/heads/master")
    repo.git("config", "user.name", "Test User")
    repo.git("config", "user.email", "test@test.com")
    repo.git("config", "commit.gpgsign", "false")
    return repo


@pytest.fixture
def repo_factory(tmp_path: Path) -> Callable[[str], GitTestRepo]:
    """Create empty repositories under tmp_path by name."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    def make(name: str = "repo") -> GitTestRepo:
        return _init(tmp_path / name)

    return make


@pytest.fixture
def git_repo(repo_factory: Callable[[str], GitTestRepo]) -> GitTestRepo:
    """A repository with one commit on master."""
    repo = repo_factory("local")
    repo.commit({"README.md": "# Test\n"}, "initial")
    return repo


@pytest.fixture
def memory_store() -> MemoryBlockStore:
    return MemoryBlockStore()


@pytest.fixture
def memory_ledger() -> MemoryLedger:
    return MemoryLedger()


@pytest.fixture
def signer() -> Signer:
    return Signer.generate()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy.immediate(3)


@pytest.fixture
def remote_factory(
    memory_store: MemoryBlockStore,
    memory_ledger: MemoryLedger,
    signer: Signer,
    fast_policy: RetryPolicy,
) -> Iterator[Callable[..., Orchestrator]]:
    """Build orchestrators for test repos, all sharing one store and ledger.

    Each orchestrator gets its own object cache, as separate clones would.
    """
    opened: list[GitRepository] = []

    def make(
        repo: GitTestRepo,
        object_set_id: str = "test-set",
        *,
        signer_factory: Callable[[], Signer] | None = None,
        journal: bool = False,
        max_cas_attempts: int = 3,
        ledger: MemoryLedger | None = None,
    ) -> Orchestrator:
        git = GitRepository(repo.path)
        opened.append(git)
        store = StoreAdapter(memory_store, fast_policy, sleep=lambda _: None)
        client = LedgerClient(ledger or memory_ledger, fast_policy, sleep=lambda _: None)
        transcoder = Transcoder(git, store, ObjectCache(namespace=memory_store.namespace), workers=4)
        return Orchestrator(
            object_set_id,
            git,
            transcoder,
            store,
            client,
            signer_factory or (lambda: signer),
            remote="origin",
            journal=PushJournal(git_dir=repo.git_dir) if journal else None,
            max_cas_attempts=max_cas_attempts,
            workers=4,
        )

    yield make

    for git in opened:
        git.close()
