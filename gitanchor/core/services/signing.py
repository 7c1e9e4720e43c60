"""
Transaction signing — the signer capability handed to the ledger client.

Keys are Ed25519. A signer is derived deterministically from a secret
phrase (PBKDF2-SHA256), so the same phrase always yields the same ledger
identity. The phrase comes from an environment variable or, failing
that, from ``git credential fill`` — the helper never stores it.

Usage::

    signer = load_signer(object_set_id, secret_env="GITANCHOR_SECRET")
    signed = signer.sign_transaction(pending)
    assert verify_transaction(signed)
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gitanchor.core.errors import SigningError
from gitanchor.core.models.anchor import PendingTransaction, SignedTransaction

logger = logging.getLogger(__name__)

KDF_ITERATIONS = 480_000
KDF_SALT = b"gitanchor/ed25519/v1"
KEY_BYTES = 32

CREDENTIAL_PROTOCOL = "anchor"


def _derive_seed(secret: str, iterations: int) -> bytes:
    """Derive a 32-byte Ed25519 seed from a secret phrase."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=KDF_SALT,
        iterations=iterations,
    )
    return kdf.derive(secret.strip().encode("utf-8"))


class Signer:
    """Holds one Ed25519 private key for the lifetime of a session."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._key = private_key

    @classmethod
    def from_secret(cls, secret: str, iterations: int = KDF_ITERATIONS) -> Signer:
        if not secret or not secret.strip():
            raise SigningError("empty secret phrase")
        return cls(Ed25519PrivateKey.from_private_bytes(_derive_seed(secret, iterations)))

    @classmethod
    def generate(cls) -> Signer:
        """A throwaway random key."""
        return cls(Ed25519PrivateKey.generate())

    @property
    def public_key_hex(self) -> str:
        raw = self._key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return raw.hex()

    def sign(self, payload: bytes) -> str:
        return self._key.sign(payload).hex()

    def sign_transaction(self, transaction: PendingTransaction) -> SignedTransaction:
        return SignedTransaction(
            transaction=transaction,
            public_key=self.public_key_hex,
            signature=self.sign(transaction.signing_payload()),
        )


def verify_transaction(signed: SignedTransaction) -> bool:
    """Check the detached signature against the embedded public key."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(signed.public_key))
        public_key.verify(
            bytes.fromhex(signed.signature),
            signed.transaction.signing_payload(),
        )
    except (InvalidSignature, ValueError):
        return False
    return True


# ═══════════════════════════════════════════════════════════════════
#  Secret lookup
# ═══════════════════════════════════════════════════════════════════


def secret_from_git_credential(object_set_id: str, cwd: Path | None = None) -> str | None:
    """Ask git's credential machinery for the secret phrase.

    Runs ``git credential fill`` with ``protocol=anchor`` and the object-set
    id as host; the configured helper (or a terminal prompt) supplies the
    ``password=`` line.
    """
    request = f"protocol={CREDENTIAL_PROTOCOL}\nhost={object_set_id}\nusername=signer\n\n"
    try:
        r = subprocess.run(
            ["git", "credential", "fill"],
            input=request,
            capture_output=True,
            text=True,
            cwd=cwd,
            timeout=300,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("git credential fill failed: %s", e)
        return None
    if r.returncode != 0:
        logger.debug("git credential fill exited %d: %s", r.returncode, r.stderr.strip())
        return None
    for line in r.stdout.splitlines():
        if line.startswith("password="):
            return line[len("password="):]
    return None


def load_signer(
    object_set_id: str,
    secret_env: str = "GITANCHOR_SECRET",
    use_git_credential: bool = True,
    cwd: Path | None = None,
) -> Signer:
    """Build the session signer from the environment or git credentials.

    Raises:
        SigningError: If no secret phrase is available.
    """
    secret = os.environ.get(secret_env, "")
    if not secret and use_git_credential:
        secret = secret_from_git_credential(object_set_id, cwd=cwd) or ""
    if not secret:
        raise SigningError(
            f"no signing secret: set {secret_env} or configure a git credential "
            f"for {CREDENTIAL_PROTOCOL}://{object_set_id}"
        )
    signer = Signer.from_secret(secret)
    logger.info("Signing as %s…", signer.public_key_hex[:16])
    return signer
