"""
In-memory storage backend.

Dict-based implementation of the Store interface for testing and development.
A single re-entrant lock serializes access so the RPC handlers and the sync
worker can share one instance.
"""

from __future__ import annotations

import copy
import threading
from typing import Optional

from elengine.common.config import ChainConfig
from elengine.common.types import Block, BlockHeader, Withdrawal
from elengine.storage.store import Store, StoreError

MAX_TRACKED_PAYLOADS = 10


class PayloadCache:
    """Bounded payload cache with LRU-style eviction."""

    def __init__(self, max_items: int = MAX_TRACKED_PAYLOADS) -> None:
        self._max_items = max_items
        self._order: list[bytes] = []
        self._items: dict[bytes, Block] = {}

    def put(self, payload_id: bytes, block: Block) -> None:
        if payload_id in self._items:
            self._order.remove(payload_id)
        self._order.insert(0, payload_id)
        self._items[payload_id] = block

        while len(self._order) > self._max_items:
            evicted = self._order.pop()
            self._items.pop(evicted, None)

    def get(self, payload_id: bytes) -> Optional[Block]:
        block = self._items.get(payload_id)
        if block is None:
            return None
        self._order.remove(payload_id)
        self._order.insert(0, payload_id)
        return block

    def __len__(self) -> int:
        return len(self._items)


class MemoryBackend(Store):
    """In-memory storage backend using Python dicts."""

    def __init__(self, max_payloads: int = MAX_TRACKED_PAYLOADS) -> None:
        self._lock = threading.RLock()

        # Block data
        self._headers: dict[bytes, BlockHeader] = {}  # block_hash -> header
        self._bodies: dict[bytes, tuple[list[bytes], list[BlockHeader], Optional[list[Withdrawal]]]] = {}

        # Canonical chain: number -> block_hash
        self._canonical: dict[int, bytes] = {}

        self._latest_block: Optional[int] = None
        self._safe_block: Optional[int] = None
        self._finalized_block: Optional[int] = None

        self._chain_config: Optional[ChainConfig] = None
        self._payloads = PayloadCache(max_payloads)

    # -----------------------------------------------------------------
    # Blocks
    # -----------------------------------------------------------------

    def get_block_header(self, block_hash: bytes) -> Optional[BlockHeader]:
        with self._lock:
            header = self._headers.get(block_hash)
            return copy.copy(header) if header is not None else None

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        with self._lock:
            header = self._headers.get(block_hash)
            body = self._bodies.get(block_hash)
            if header is None or body is None:
                return None
            txs, ommers, withdrawals = body
            return Block(
                header=copy.copy(header),
                transactions=list(txs),
                ommers=list(ommers),
                withdrawals=list(withdrawals) if withdrawals is not None else None,
            )

    def put_block(self, block: Block) -> None:
        block_hash = block.block_hash()
        with self._lock:
            self._headers[block_hash] = copy.copy(block.header)
            self._bodies[block_hash] = (
                list(block.transactions),
                list(block.ommers),
                list(block.withdrawals) if block.withdrawals is not None else None,
            )

    # -----------------------------------------------------------------
    # Canonical chain mapping
    # -----------------------------------------------------------------

    def get_canonical_hash(self, number: int) -> Optional[bytes]:
        with self._lock:
            return self._canonical.get(number)

    def put_canonical_hash(self, number: int, block_hash: bytes) -> None:
        with self._lock:
            self._canonical[number] = block_hash

    def remove_canonical_hash(self, number: int) -> None:
        with self._lock:
            self._canonical.pop(number, None)

    # -----------------------------------------------------------------
    # Fork-choice pointers
    # -----------------------------------------------------------------

    def get_latest_block_number(self) -> Optional[int]:
        with self._lock:
            return self._latest_block

    def update_latest_block_number(self, number: int) -> None:
        with self._lock:
            self._latest_block = number

    def get_safe_block_number(self) -> Optional[int]:
        with self._lock:
            return self._safe_block

    def update_safe_block_number(self, number: int) -> None:
        with self._lock:
            self._safe_block = number

    def get_finalized_block_number(self) -> Optional[int]:
        with self._lock:
            return self._finalized_block

    def update_finalized_block_number(self, number: int) -> None:
        with self._lock:
            self._finalized_block = number

    # -----------------------------------------------------------------
    # Chain config
    # -----------------------------------------------------------------

    def get_chain_config(self) -> ChainConfig:
        with self._lock:
            if self._chain_config is None:
                raise StoreError("chain config not set")
            return self._chain_config

    def set_chain_config(self, config: ChainConfig) -> None:
        with self._lock:
            self._chain_config = config

    # -----------------------------------------------------------------
    # Built payloads
    # -----------------------------------------------------------------

    def add_payload(self, payload_id: bytes, block: Block) -> None:
        with self._lock:
            self._payloads.put(payload_id, block)

    def get_payload(self, payload_id: bytes) -> Optional[Block]:
        with self._lock:
            return self._payloads.get(payload_id)
