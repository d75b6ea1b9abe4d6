"""
Block fetchers: where the syncer gets blocks it does not have.

RPCBlockFetcher pulls raw blocks from a trusted peer execution client over
JSON-RPC (``debug_getRawBlock``), which returns the RLP-encoded block.
"""

from __future__ import annotations

import http.client
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlsplit

import rlp

from elengine.common.types import Block

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class FetchError(Exception):
    """Raised when a peer cannot be reached or answers with garbage."""


class BlockFetcher(ABC):
    @abstractmethod
    def fetch_block(self, block_hash: bytes) -> Optional[Block]:
        """Return the block with the given hash, or None if the peer lacks it."""
        ...


class RPCBlockFetcher(BlockFetcher):
    """Fetch blocks from a peer's JSON-RPC endpoint."""

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"unsupported sync peer url: {url}")
        self.url = url
        self._https = parts.scheme == "https"
        self._host = parts.hostname
        self._port = parts.port or (443 if self._https else 80)
        self._path = parts.path or "/"
        self._timeout = timeout
        self._request_id = 0

    def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        })
        conn_cls = http.client.HTTPSConnection if self._https else http.client.HTTPConnection
        conn = conn_cls(self._host, self._port, timeout=self._timeout)
        try:
            conn.request("POST", self._path, body, {"Content-Type": "application/json"})
            response = conn.getresponse()
            raw = response.read()
        except (OSError, http.client.HTTPException) as exc:
            raise FetchError(f"{method} to {self.url} failed: {exc}") from exc
        finally:
            conn.close()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise FetchError(f"{method} returned invalid JSON") from exc
        if "error" in payload:
            raise FetchError(f"{method} error: {payload['error']}")
        return payload.get("result")

    def fetch_block(self, block_hash: bytes) -> Optional[Block]:
        result = self._call("debug_getRawBlock", ["0x" + block_hash.hex()])
        if result is None:
            return None
        if not isinstance(result, str) or not result.startswith("0x"):
            raise FetchError("debug_getRawBlock returned a non-hex result")
        try:
            return Block.decode_rlp(bytes.fromhex(result[2:]))
        except (ValueError, IndexError, rlp.DecodingError) as exc:
            raise FetchError(f"undecodable block 0x{block_hash.hex()}: {exc}") from exc
