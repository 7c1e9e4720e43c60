"""
Git adapter — the local object database, through the git CLI.

Reads go through one long-lived ``git cat-file --batch`` process; writes
use ``git hash-object -w --literally`` so payloads land byte-for-byte
and their hash can be checked against the expected oid. Ref and config
queries are one-shot ``git`` invocations. Never raw ``.git`` file access.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path

from gitanchor.core.errors import GitCommandError
from gitanchor.core.models.objects import OBJECT_TYPES, GitObject

logger = logging.getLogger(__name__)


class GitRepository:
    """A local repository as seen by the remote helper.

    Args:
        path: Working directory to run git in (default: cwd). git exports
            GIT_DIR to helpers, which the child processes inherit.
        timeout: Seconds allowed for each one-shot git invocation.
    """

    def __init__(self, path: Path | None = None, timeout: float = 60.0):
        self._cwd = Path(path) if path else Path.cwd()
        self._timeout = timeout
        self._git_dir: Path | None = None
        self._object_format: str | None = None
        self._procs: dict[str, subprocess.Popen[bytes]] = {}
        self._batch_lock = threading.Lock()
        self._check_lock = threading.Lock()

    def __enter__(self) -> GitRepository:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def cwd(self) -> Path:
        return self._cwd

    @property
    def git_dir(self) -> Path:
        """Absolute path of the repository's git dir."""
        if self._git_dir is None:
            out = self._git(["rev-parse", "--absolute-git-dir"]).decode().strip()
            self._git_dir = Path(out)
        return self._git_dir

    @property
    def object_format(self) -> str:
        """``sha1`` or ``sha256``."""
        if self._object_format is None:
            try:
                fmt = self._git(["rev-parse", "--show-object-format"]).decode().strip()
            except GitCommandError:
                fmt = ""
            self._object_format = fmt or "sha1"
        return self._object_format

    # ── Objects ─────────────────────────────────────────────────

    def read_object(self, oid: str) -> GitObject | None:
        """Read one object, or None if the database doesn't have it."""
        with self._batch_lock:
            proc = self._batch_process("--batch")
            assert proc.stdin is not None and proc.stdout is not None
            proc.stdin.write(oid.encode("ascii") + b"\n")
            proc.stdin.flush()
            header = proc.stdout.readline()
            if not header:
                self._close_batch("--batch")
                raise GitCommandError(["cat-file", "--batch"], -1, "cat-file exited unexpectedly")
            parts = header.rstrip(b"\n").split(b" ")
            if len(parts) == 2 and parts[1] in (b"missing", b"ambiguous"):
                return None
            if len(parts) != 3:
                raise GitCommandError(["cat-file", "--batch"], -1, f"bad header {header!r}")
            obj_type = parts[1].decode("ascii")
            size = int(parts[2])
            data = _read_exact(proc.stdout, size)
            proc.stdout.read(1)  # trailing LF

        if obj_type not in OBJECT_TYPES:
            raise GitCommandError(["cat-file", "--batch"], -1, f"unknown object type {obj_type}")
        return GitObject(type=obj_type, oid=parts[0].decode("ascii"), data=data)  # type: ignore[arg-type]

    def has_object(self, oid: str) -> bool:
        with self._check_lock:
            proc = self._batch_process("--batch-check")
            assert proc.stdin is not None and proc.stdout is not None
            proc.stdin.write(oid.encode("ascii") + b"\n")
            proc.stdin.flush()
            line = proc.stdout.readline()
            if not line:
                self._close_batch("--batch-check")
                raise GitCommandError(
                    ["cat-file", "--batch-check"], -1, "cat-file exited unexpectedly"
                )
        return not line.rstrip(b"\n").endswith((b" missing", b" ambiguous"))

    def write_object(self, obj: GitObject) -> str:
        """Write a payload into the object database and return its oid.

        Raises:
            GitCommandError: If git refuses the object or the resulting
                hash differs from ``obj.oid``.
        """
        out = self._git(
            ["hash-object", "-t", obj.type, "-w", "--stdin", "--literally"],
            stdin=obj.data,
        )
        oid = out.decode("ascii").strip()
        if obj.oid and oid != obj.oid:
            raise GitCommandError(
                ["hash-object"], -1, f"hash mismatch: expected {obj.oid}, wrote {oid}"
            )
        return oid

    # ── Refs & history ──────────────────────────────────────────

    def rev_parse(self, rev: str) -> str | None:
        """Resolve a revision to an oid (None if it doesn't resolve)."""
        r = self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{object}}"])
        if r.returncode != 0:
            return None
        return r.stdout.decode("ascii").strip() or None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """``git merge-base --is-ancestor``."""
        r = self._run(["merge-base", "--is-ancestor", ancestor, descendant])
        return r.returncode == 0

    def object_type(self, oid: str) -> str | None:
        r = self._run(["cat-file", "-t", oid])
        if r.returncode != 0:
            return None
        return r.stdout.decode("ascii").strip()

    def config_get(self, key: str) -> str | None:
        r = self._run(["config", "--get", key])
        if r.returncode != 0:
            return None
        return r.stdout.decode("utf-8").strip() or None

    # ── Lifecycle ───────────────────────────────────────────────

    def close(self) -> None:
        with self._batch_lock:
            self._close_batch("--batch")
        with self._check_lock:
            self._close_batch("--batch-check")

    # ── Helpers ─────────────────────────────────────────────────

    def _batch_process(self, mode: str) -> subprocess.Popen[bytes]:
        proc = self._procs.get(mode)
        if proc is None or proc.poll() is not None:
            logger.debug("Starting git cat-file %s in %s", mode, self._cwd)
            proc = self._procs[mode] = subprocess.Popen(
                ["git", "cat-file", mode],
                cwd=self._cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                env=_git_env(),
            )
        return proc

    def _close_batch(self, mode: str) -> None:
        proc = self._procs.pop(mode, None)
        if proc is None:
            return
        try:
            if proc.stdin:
                proc.stdin.close()
            proc.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired):
            proc.kill()
        finally:
            if proc.stdout:
                proc.stdout.close()

    def _run(self, args: list[str], stdin: bytes | None = None) -> subprocess.CompletedProcess[bytes]:
        return subprocess.run(
            ["git", *args],
            cwd=self._cwd,
            input=stdin,
            capture_output=True,
            timeout=self._timeout,
            env=_git_env(),
        )

    def _git(self, args: list[str], stdin: bytes | None = None) -> bytes:
        """Run a git command and return stdout; raise on failure."""
        r = self._run(args, stdin=stdin)
        if r.returncode != 0:
            raise GitCommandError(args, r.returncode, r.stderr.decode("utf-8", "replace"))
        return r.stdout


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    return env


def _read_exact(stream, size: int) -> bytes:  # type: ignore[no-untyped-def]
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise GitCommandError(["cat-file", "--batch"], -1, "short read from cat-file")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)
