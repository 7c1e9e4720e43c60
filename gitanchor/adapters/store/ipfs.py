"""
IPFS block store — Kubo's HTTP RPC API.

    put   POST /api/v0/block/put?cid-codec=raw&mhtype=sha2-256   (multipart)
    get   POST /api/v0/block/get?arg=<cid>&offline=true, then one network
          lookup bounded by ``lookup_timeout``
    pin   POST /api/v0/pin/add?arg=<cid>&recursive=false

Nodes are stored as raw blocks, so pins are per-block rather than
recursive. Connection errors, timeouts and 5xx responses become
TransientIOError; "not found" style answers, and a network lookup that
runs out of time, make ``get`` return None.
"""

from __future__ import annotations

import logging

import requests

from gitanchor.adapters.base import BlockStore
from gitanchor.core.errors import TransientIOError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://127.0.0.1:5001"

_NOT_FOUND_MARKERS = ("not found", "no link named", "invalid cid", "block was not found")


class IpfsBlockStore(BlockStore):
    """Blocks stored on an IPFS node through its RPC API."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 30.0,
        lookup_timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._lookup_timeout = lookup_timeout
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return "ipfs"

    @property
    def namespace(self) -> str:
        # CIDs are global: every IPFS node shares one address space.
        return "ipfs"

    def is_available(self) -> bool:
        try:
            r = self._session.post(f"{self._endpoint}/api/v0/version", timeout=5)
            return r.status_code == 200
        except requests.RequestException:
            return False

    def put(self, data: bytes) -> str:
        r = self._call(
            "block/put",
            params={"cid-codec": "raw", "mhtype": "sha2-256", "pin": "false"},
            files={"file": ("block", data, "application/octet-stream")},
        )
        try:
            cid = r.json()["Key"]
        except (ValueError, KeyError) as e:
            raise TransientIOError(f"unexpected block/put response: {r.text[:200]}") from e
        logger.debug("block/put %s (%d bytes)", cid, len(data))
        return cid

    def get(self, address: str) -> bytes | None:
        try:
            return self._call("block/get", params={"arg": address, "offline": "true"}).content
        except _NotFound:
            pass
        # Online, Kubo searches the network for an unknown CID until the
        # request times out, so an exhausted lookup means "not found"
        try:
            r = self._call(
                "block/get", params={"arg": address}, timeout=self._lookup_timeout, lookup=True
            )
        except _NotFound:
            logger.debug("block/get %s: not found", address)
            return None
        return r.content

    def pin(self, address: str) -> None:
        try:
            self._call("pin/add", params={"arg": address, "recursive": "false"})
        except _NotFound as e:
            raise TransientIOError(f"cannot pin {address}: {e}") from e

    def _call(
        self,
        command: str,
        params: dict[str, str],
        files: dict | None = None,
        timeout: float | None = None,
        lookup: bool = False,
    ) -> requests.Response:
        url = f"{self._endpoint}/api/v0/{command}"
        timeout = timeout or self._timeout
        try:
            r = self._session.post(url, params=params, files=files, timeout=timeout)
        except requests.ReadTimeout as e:
            if lookup:
                raise _NotFound(f"no provider answered within {timeout}s") from e
            raise TransientIOError(f"{command} timed out after {timeout}s") from e
        except requests.Timeout as e:
            raise TransientIOError(f"{command} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise TransientIOError(f"{command} failed: {e}") from e

        if r.status_code == 200:
            return r
        message = _error_message(r)
        if any(marker in message.lower() for marker in _NOT_FOUND_MARKERS):
            raise _NotFound(message)
        raise TransientIOError(f"{command} returned HTTP {r.status_code}: {message}")


class _NotFound(Exception):
    """The node answered, but does not have the block."""


def _error_message(r: requests.Response) -> str:
    try:
        return str(r.json().get("Message", r.text))
    except ValueError:
        return r.text
