"""
Remote-helper command parsing.

One line in, one ``Command`` out. Anything git would never send (an
unknown verb, a missing argument) raises ``ProtocolError``; the session
treats that as fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from gitanchor.core.errors import ProtocolError
from gitanchor.core.models.refs import FetchSpec, PushSpec


class CommandKind(StrEnum):
    BLANK = "blank"
    CAPABILITIES = "capabilities"
    LIST = "list"
    OPTION = "option"
    PUSH = "push"
    FETCH = "fetch"


BATCHED = frozenset({CommandKind.PUSH, CommandKind.FETCH})


@dataclass(frozen=True)
class Command:
    """A parsed protocol line. Only the field matching ``kind`` is set."""

    kind: CommandKind
    for_push: bool = False
    option: tuple[str, str] | None = None
    push: PushSpec | None = None
    fetch: FetchSpec | None = None

    @property
    def batched(self) -> bool:
        return self.kind in BATCHED


def parse_command(line: str) -> Command:
    """Parse one protocol line (without its trailing newline).

    Raises:
        ProtocolError: Unknown command or malformed arguments.
    """
    line = line.rstrip("\r\n")
    if not line:
        return Command(CommandKind.BLANK)

    verb, _, rest = line.partition(" ")

    if verb == "capabilities":
        _no_args(verb, rest)
        return Command(CommandKind.CAPABILITIES)

    if verb == "list":
        if rest not in ("", "for-push"):
            raise ProtocolError(f"unexpected argument to list: {rest!r}")
        return Command(CommandKind.LIST, for_push=rest == "for-push")

    if verb == "option":
        name, _, value = rest.partition(" ")
        if not name or not value:
            raise ProtocolError(f"option needs a name and a value: {line!r}")
        return Command(CommandKind.OPTION, option=(name, value))

    if verb == "push":
        if not rest:
            raise ProtocolError("push needs a refspec")
        return Command(CommandKind.PUSH, push=PushSpec.parse(rest))

    if verb == "fetch":
        oid, _, name = rest.partition(" ")
        if not oid or not name:
            raise ProtocolError(f"fetch needs an object id and a ref name: {line!r}")
        return Command(CommandKind.FETCH, fetch=FetchSpec(oid=oid, name=name))

    raise ProtocolError(f"unknown command: {verb!r}")


def _no_args(verb: str, rest: str) -> None:
    if rest:
        raise ProtocolError(f"{verb} takes no arguments, got {rest!r}")
