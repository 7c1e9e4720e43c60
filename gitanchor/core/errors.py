"""
Error taxonomy — every failure the helper can surface.

    ProtocolError            malformed remote-helper input; fatal, exit 1
    UnresolvedReferenceError object missing from git or from the store
    TransientIOError         transport hiccup; retried by the store/ledger facades
    StoreUnavailableError    store still failing after retries
    LedgerUnavailableError   ledger reads still failing after retries
    BlockNotFoundError       address unknown to the store after retries
    SigningError             signer missing or rejected; never retried
    GitCommandError          a git CLI invocation failed
    ConfigError              invalid configuration

Ledger CAS conflicts have no exception: they come back as
``SubmitStatus.CONFLICT``.
"""

from __future__ import annotations


class GitAnchorError(Exception):
    """Base class for all helper errors."""


class ProtocolError(GitAnchorError):
    """Malformed or unsupported remote-helper input."""


class UnresolvedReferenceError(GitAnchorError):
    """An object or content address could not be found.

    ``side`` is ``"git"`` when the local object database lacks the object
    (encode) and ``"store"`` when the block store lacks the address (decode).
    """

    def __init__(self, ref: str, side: str, detail: str = "") -> None:
        self.ref = ref
        self.side = side
        message = f"unresolved {side} reference {ref}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TransientIOError(GitAnchorError):
    """A block-store or ledger call failed in a way worth retrying."""


class StoreUnavailableError(GitAnchorError):
    """The block store kept failing after all retries."""


class BlockNotFoundError(UnresolvedReferenceError):
    """The block store does not know the requested content address."""

    def __init__(self, address: str, detail: str = "") -> None:
        super().__init__(address, "store", detail)
        self.address = address


class LedgerUnavailableError(GitAnchorError):
    """The ledger could not be read after all retries."""


class SigningError(GitAnchorError):
    """No usable signer, or the ledger rejected the signature."""


class GitCommandError(GitAnchorError):
    """A git subprocess exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str = "") -> None:
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(stderr.strip() or f"git {args[0] if args else ''} failed ({returncode})")


class ConfigError(GitAnchorError):
    """Raised when the helper configuration is invalid."""
