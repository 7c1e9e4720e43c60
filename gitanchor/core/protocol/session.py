"""
Protocol Session Handler — git's remote-helper line protocol.

    Idle ──start──▶ AwaitingCommand ──push/fetch──▶ (batch grows)
                         ▲      │
                         │      └──blank line──▶ DispatchingBatch
                         └──────────────────────────────┘

``capabilities``, ``list`` and ``option`` are answered immediately.
``push`` and ``fetch`` lines accumulate until a blank line, then the
whole batch goes to the orchestrator as one unit. A blank line with no
batch pending, or end of input, ends the session.

Only protocol responses go to stdout; everything else is logged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import TextIO

from gitanchor.core.engine.orchestrator import Orchestrator, PushOptions
from gitanchor.core.errors import ProtocolError
from gitanchor.core.protocol.commands import Command, CommandKind, parse_command

logger = logging.getLogger(__name__)

CAPABILITIES = ("fetch", "push", "option")

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


class SessionState(StrEnum):
    IDLE = "idle"
    AWAITING_COMMAND = "awaiting_command"
    DISPATCHING_BATCH = "dispatching_batch"


class ProtocolSession:
    """One remote-helper conversation with a parent git process.

    Args:
        orchestrator: Executes list/push/fetch against the remote.
        stdin: Command stream from git.
        stdout: Response stream to git.
        on_verbosity: Called with git's ``option verbosity`` level.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        stdin: TextIO,
        stdout: TextIO,
        on_verbosity: Callable[[int], object] | None = None,
    ):
        self._orchestrator = orchestrator
        self._in = stdin
        self._out = stdout
        self._on_verbosity = on_verbosity
        self.state = SessionState.IDLE
        self.options = PushOptions()
        self.progress = False
        self._batch: list[Command] = []
        self._failed_fetches = 0

    def run(self) -> int:
        """Serve commands until git is done; returns the exit status.

        Raises:
            ProtocolError: Malformed input, or input closed mid-batch.
        """
        self.state = SessionState.AWAITING_COMMAND
        for raw in self._in:
            logger.debug("< %s", raw.rstrip("\n"))
            command = parse_command(raw)

            if command.kind == CommandKind.BLANK:
                if not self._batch:
                    break
                self._dispatch_batch()
                continue

            if command.batched:
                if self._batch and self._batch[0].kind != command.kind:
                    raise ProtocolError(f"{command.kind} inside a {self._batch[0].kind} batch")
                self._batch.append(command)
                continue

            if self._batch:
                raise ProtocolError(f"{command.kind} inside a {self._batch[0].kind} batch")
            self._answer(command)

        if self._batch:
            pending = len(self._batch)
            self._batch.clear()
            self.state = SessionState.IDLE
            raise ProtocolError(
                f"input closed with {pending} pending command(s); nothing was submitted"
            )

        self.state = SessionState.IDLE
        if self._failed_fetches:
            logger.error("%d ref(s) could not be fetched", self._failed_fetches)
            return 1
        return 0

    # ── Immediate commands ──────────────────────────────────────

    def _answer(self, command: Command) -> None:
        if command.kind == CommandKind.CAPABILITIES:
            self._write(*CAPABILITIES, "")
        elif command.kind == CommandKind.LIST:
            self._list(command.for_push)
        elif command.kind == CommandKind.OPTION:
            assert command.option is not None
            self._write(self._set_option(*command.option))

    def _list(self, for_push: bool) -> None:
        table = self._orchestrator.list_refs()
        lines = [f"{oid} {name}" for name, oid in sorted(table.refs.items())]
        if table.head and table.head in table.refs:
            lines.append(f"@{table.head} HEAD")
        logger.info("Listed %d ref(s)%s", len(table.refs), " for push" if for_push else "")
        self._write(*lines, "")

    def _set_option(self, name: str, value: str) -> str:
        if name == "verbosity":
            try:
                level = int(value)
            except ValueError:
                return "error invalid verbosity"
            if self._on_verbosity is not None:
                self._on_verbosity(level)
            return "ok"
        if name in ("progress", "dry-run", "force"):
            flag = _parse_bool(value)
            if flag is None:
                return f"error invalid value for {name}"
            if name == "progress":
                self.progress = flag
            elif name == "dry-run":
                self.options.dry_run = flag
            else:
                self.options.force = flag
            return "ok"
        if name == "cas":
            ref, sep, oid = _unquote(value).partition(":")
            if not ref or not sep:
                return "error cas needs <ref>:<expected>"
            self.options.cas[ref] = oid
            return "ok"
        return "unsupported"

    # ── Batches ─────────────────────────────────────────────────

    def _dispatch_batch(self) -> None:
        self.state = SessionState.DISPATCHING_BATCH
        batch, self._batch = self._batch, []
        try:
            if batch[0].kind == CommandKind.PUSH:
                specs = [c.push for c in batch if c.push is not None]
                outcomes = self._orchestrator.push(specs, self.options)
                self._write(*(o.to_line() for o in outcomes), "")
            else:
                specs = [c.fetch for c in batch if c.fetch is not None]
                result = self._orchestrator.fetch(specs)
                self._failed_fetches += len(result.failed)
                self._write("")
        finally:
            self.state = SessionState.AWAITING_COMMAND

    def _write(self, *lines: str) -> None:
        for line in lines:
            logger.debug("> %s", line)
            self._out.write(line + "\n")
        self._out.flush()


def _parse_bool(value: str) -> bool | None:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    return None


def _unquote(value: str) -> str:
    """Strip git's C-style quoting from an option value."""
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value
