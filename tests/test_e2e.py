"""
End-to-end tests — real ``git push`` / ``git clone`` / ``git fetch``
through the installed remote helper.

git finds ``git-remote-anchor`` on PATH; a shim in tmp_path runs this
checkout's helper with the current interpreter. Both backends are the
file-backed ones, so separate helper processes share one remote.
"""

from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def anchor_env(tmp_path: Path) -> dict[str, str]:
    """Environment in which git can talk to anchor:// remotes."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    shim = bin_dir / "git-remote-anchor"
    shim.write_text(f'#!/bin/sh\nexec "{sys.executable}" -m gitanchor.main "$@"\n')
    shim.chmod(0o755)

    config = tmp_path / "anchor.yml"
    config.write_text(textwrap.dedent(f"""\
        store:
          backend: file
          path: {tmp_path / "blocks"}
        ledger:
          backend: file
          path: {tmp_path / "ledger"}
        retry:
          max_attempts: 2
          base_delay: 0
        signer:
          use_git_credential: false
    """))

    return {
        **os.environ,
        "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}",
        "PYTHONPATH": os.pathsep.join(filter(None, [str(PACKAGE_ROOT), os.environ.get("PYTHONPATH")])),
        "GITANCHOR_CONFIG": str(config),
        "GITANCHOR_SECRET": "correct horse battery staple",
        "GIT_TERMINAL_PROMPT": "0",
    }


def _git(cwd: Path, env: dict[str, str], *args: str, check: bool = True):
    return subprocess.run(
        ["git", *args], cwd=cwd, env=env, capture_output=True, text=True, check=check
    )


class TestGitRoundTrip:
    def test_push_then_clone(self, git_repo, tmp_path, anchor_env):
        git_repo.commit({"src/main.py": "print('e2e')\n"}, "add main")
        git_repo.git("tag", "-a", "v1", "-m", "first release")
        _git(git_repo.path, anchor_env, "remote", "add", "origin", "anchor://e2e-set")

        pushed = _git(git_repo.path, anchor_env, "push", "origin", "master", "v1")
        assert pushed.returncode == 0, pushed.stderr

        _git(tmp_path, anchor_env, "clone", "-q", "anchor://e2e-set", "clone")
        clone = tmp_path / "clone"
        assert (clone / "src" / "main.py").read_text() == "print('e2e')\n"
        head = _git(clone, anchor_env, "rev-parse", "HEAD").stdout.strip()
        assert head == git_repo.rev("HEAD")
        tag = _git(clone, anchor_env, "rev-parse", "refs/tags/v1").stdout.strip()
        assert tag == git_repo.rev("refs/tags/v1")

    def test_incremental_fetch(self, git_repo, tmp_path, anchor_env):
        _git(git_repo.path, anchor_env, "remote", "add", "origin", "anchor://e2e-set")
        _git(git_repo.path, anchor_env, "push", "origin", "master")
        _git(tmp_path, anchor_env, "clone", "-q", "anchor://e2e-set", "clone")

        newer = git_repo.commit({"b.txt": "b\n"}, "second")
        _git(git_repo.path, anchor_env, "push", "origin", "master")

        clone = tmp_path / "clone"
        _git(clone, anchor_env, "fetch", "origin")
        fetched = _git(clone, anchor_env, "rev-parse", "origin/master").stdout.strip()
        assert fetched == newer

    def test_non_fast_forward_is_rejected(self, git_repo, tmp_path, anchor_env):
        _git(git_repo.path, anchor_env, "remote", "add", "origin", "anchor://e2e-set")
        _git(git_repo.path, anchor_env, "push", "origin", "master")
        _git(tmp_path, anchor_env, "clone", "-q", "anchor://e2e-set", "clone")
        clone = tmp_path / "clone"
        _git(clone, anchor_env, "config", "user.name", "Other")
        _git(clone, anchor_env, "config", "user.email", "other@test.com")

        git_repo.commit({"mine.txt": "mine\n"}, "mine")
        _git(git_repo.path, anchor_env, "push", "origin", "master")

        (clone / "theirs.txt").write_text("theirs\n")
        _git(clone, anchor_env, "add", "-A")
        _git(clone, anchor_env, "commit", "-q", "-m", "theirs")
        rejected = _git(clone, anchor_env, "push", "origin", "master", check=False)
        assert rejected.returncode != 0
        assert "rejected" in rejected.stderr

    def test_missing_secret(self, git_repo, anchor_env):
        env = {k: v for k, v in anchor_env.items() if k != "GITANCHOR_SECRET"}
        _git(git_repo.path, env, "remote", "add", "origin", "anchor://e2e-set")

        pushed = _git(git_repo.path, env, "push", "origin", "master", check=False)
        assert pushed.returncode != 0
        assert "signing failed" in pushed.stderr
