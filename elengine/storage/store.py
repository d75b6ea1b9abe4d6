"""
Store interface: abstract storage layer for the execution engine.

Defines the contract for chain data (block headers and bodies), the
canonical chain mapping, the fork-choice pointers (latest, safe,
finalized), the active chain configuration and the built-payload cache.
Every method is an atomic point operation; implementations must be safe to
call from the RPC thread and the sync worker at the same time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from elengine.common.config import ChainConfig, Genesis
from elengine.common.types import Block, BlockHeader


class StoreError(Exception):
    """Raised when the backend cannot serve or persist a value."""


class Store(ABC):
    """Abstract storage interface.

    Implementations can be in-memory (testing) or LMDB.
    """

    # -----------------------------------------------------------------
    # Blocks
    # -----------------------------------------------------------------

    @abstractmethod
    def get_block_header(self, block_hash: bytes) -> Optional[BlockHeader]:
        """Get block header by hash."""
        ...

    @abstractmethod
    def get_block(self, block_hash: bytes) -> Optional[Block]:
        """Get full block by hash, or None if the header or body is missing."""
        ...

    @abstractmethod
    def put_block(self, block: Block) -> None:
        """Store a full block (header and body) under its hash."""
        ...

    def get_block_header_by_number(self, number: int) -> Optional[BlockHeader]:
        block_hash = self.get_canonical_hash(number)
        if block_hash is None:
            return None
        return self.get_block_header(block_hash)

    # -----------------------------------------------------------------
    # Canonical chain mapping
    # -----------------------------------------------------------------

    @abstractmethod
    def get_canonical_hash(self, number: int) -> Optional[bytes]:
        """Get the block hash for a canonical block number."""
        ...

    @abstractmethod
    def put_canonical_hash(self, number: int, block_hash: bytes) -> None:
        """Set the canonical block hash for a number."""
        ...

    @abstractmethod
    def remove_canonical_hash(self, number: int) -> None:
        """Drop the canonical mapping for a number (after a reorg to a shorter chain)."""
        ...

    # -----------------------------------------------------------------
    # Fork-choice pointers
    # -----------------------------------------------------------------

    @abstractmethod
    def get_latest_block_number(self) -> Optional[int]:
        """Get the canonical head number, or None for an uninitialized store."""
        ...

    @abstractmethod
    def update_latest_block_number(self, number: int) -> None:
        ...

    @abstractmethod
    def get_safe_block_number(self) -> Optional[int]:
        ...

    @abstractmethod
    def update_safe_block_number(self, number: int) -> None:
        ...

    @abstractmethod
    def get_finalized_block_number(self) -> Optional[int]:
        ...

    @abstractmethod
    def update_finalized_block_number(self, number: int) -> None:
        ...

    # -----------------------------------------------------------------
    # Chain config
    # -----------------------------------------------------------------

    @abstractmethod
    def get_chain_config(self) -> ChainConfig:
        """Get the active chain configuration. Raises StoreError if unset."""
        ...

    @abstractmethod
    def set_chain_config(self, config: ChainConfig) -> None:
        ...

    # -----------------------------------------------------------------
    # Built payloads
    # -----------------------------------------------------------------

    @abstractmethod
    def add_payload(self, payload_id: bytes, block: Block) -> None:
        """Remember a built payload so a later getPayload can serve it."""
        ...

    @abstractmethod
    def get_payload(self, payload_id: bytes) -> Optional[Block]:
        ...

    # -----------------------------------------------------------------
    # Genesis initialization (concrete, built on the abstract methods)
    # -----------------------------------------------------------------

    def init_from_genesis(self, genesis: Genesis) -> bytes:
        """Initialize the chain from a Genesis object. Returns genesis block hash."""
        self.set_chain_config(genesis.config)
        block = genesis.to_block()
        block_hash = block.block_hash()
        self.put_block(block)
        self.put_canonical_hash(0, block_hash)
        self.update_latest_block_number(0)
        self.update_safe_block_number(0)
        self.update_finalized_block_number(0)
        return block_hash


def latest_canonical_block_hash(store: Store) -> Optional[bytes]:
    """Hash of the current canonical head, or None if the store has none."""
    number = store.get_latest_block_number()
    if number is None:
        return None
    return store.get_canonical_hash(number)
