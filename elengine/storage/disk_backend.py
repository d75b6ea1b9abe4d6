"""
Disk-based storage backend using LMDB.

Headers, full blocks, the canonical mapping, fork-choice pointers and the
built-payload cache each live in their own named database. LMDB serializes
writers itself, so no extra locking is needed for concurrent callers.
"""

from __future__ import annotations

import dataclasses
import json
import struct
from pathlib import Path
from typing import Optional

import lmdb

from elengine.common.config import ChainConfig
from elengine.common.types import Block, BlockHeader
from elengine.storage.store import Store, StoreError

# LMDB named databases
_DB_NAMES = [
    b"headers",
    b"blocks",
    b"canonical",
    b"payloads",
    b"meta",
]

# 1 GB default map size; LMDB grows sparse files
_DEFAULT_MAP_SIZE = 1 * 1024 * 1024 * 1024

_META_LATEST = b"latest_block"
_META_SAFE = b"safe_block"
_META_FINALIZED = b"finalized_block"
_META_CHAIN_CONFIG = b"chain_config"


def _num_key(n: int) -> bytes:
    """Encode a block number as 8-byte big-endian."""
    return struct.pack(">Q", n)


class DiskBackend(Store):
    """LMDB-backed persistent storage."""

    def __init__(self, data_dir: Path, map_size: int = _DEFAULT_MAP_SIZE) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

        self._env = lmdb.open(
            str(self._data_dir / "chaindata"),
            max_dbs=len(_DB_NAMES),
            map_size=map_size,
        )
        self._dbs = {name: self._env.open_db(name) for name in _DB_NAMES}

    def close(self) -> None:
        """Close the LMDB environment."""
        self._env.close()

    # -----------------------------------------------------------------
    # Low-level helpers
    # -----------------------------------------------------------------

    def _get(self, db: bytes, key: bytes) -> Optional[bytes]:
        try:
            with self._env.begin(db=self._dbs[db]) as txn:
                data = txn.get(key)
        except lmdb.Error as exc:
            raise StoreError(f"read from {db.decode()} failed: {exc}") from exc
        return bytes(data) if data is not None else None

    def _put(self, db: bytes, key: bytes, value: bytes) -> None:
        try:
            with self._env.begin(db=self._dbs[db], write=True) as txn:
                txn.put(key, value)
        except lmdb.Error as exc:
            raise StoreError(f"write to {db.decode()} failed: {exc}") from exc

    def _delete(self, db: bytes, key: bytes) -> None:
        try:
            with self._env.begin(db=self._dbs[db], write=True) as txn:
                txn.delete(key)
        except lmdb.Error as exc:
            raise StoreError(f"delete from {db.decode()} failed: {exc}") from exc

    def _load_meta_int(self, key: bytes) -> Optional[int]:
        val = self._get(b"meta", key)
        if val is None:
            return None
        return int.from_bytes(val, "big")

    def _save_meta_int(self, key: bytes, value: int) -> None:
        self._put(b"meta", key, _num_key(value))

    # -----------------------------------------------------------------
    # Blocks
    # -----------------------------------------------------------------

    def get_block_header(self, block_hash: bytes) -> Optional[BlockHeader]:
        data = self._get(b"headers", block_hash)
        if data is None:
            return None
        return BlockHeader.decode_rlp(data)

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        data = self._get(b"blocks", block_hash)
        if data is None:
            return None
        return Block.decode_rlp(data)

    def put_block(self, block: Block) -> None:
        block_hash = block.block_hash()
        try:
            with self._env.begin(write=True) as txn:
                txn.put(block_hash, block.header.encode_rlp(), db=self._dbs[b"headers"])
                txn.put(block_hash, block.encode_rlp(), db=self._dbs[b"blocks"])
        except lmdb.Error as exc:
            raise StoreError(f"block write failed: {exc}") from exc

    # -----------------------------------------------------------------
    # Canonical chain mapping
    # -----------------------------------------------------------------

    def get_canonical_hash(self, number: int) -> Optional[bytes]:
        return self._get(b"canonical", _num_key(number))

    def put_canonical_hash(self, number: int, block_hash: bytes) -> None:
        self._put(b"canonical", _num_key(number), block_hash)

    def remove_canonical_hash(self, number: int) -> None:
        self._delete(b"canonical", _num_key(number))

    # -----------------------------------------------------------------
    # Fork-choice pointers
    # -----------------------------------------------------------------

    def get_latest_block_number(self) -> Optional[int]:
        return self._load_meta_int(_META_LATEST)

    def update_latest_block_number(self, number: int) -> None:
        self._save_meta_int(_META_LATEST, number)

    def get_safe_block_number(self) -> Optional[int]:
        return self._load_meta_int(_META_SAFE)

    def update_safe_block_number(self, number: int) -> None:
        self._save_meta_int(_META_SAFE, number)

    def get_finalized_block_number(self) -> Optional[int]:
        return self._load_meta_int(_META_FINALIZED)

    def update_finalized_block_number(self, number: int) -> None:
        self._save_meta_int(_META_FINALIZED, number)

    # -----------------------------------------------------------------
    # Chain config (JSON in meta)
    # -----------------------------------------------------------------

    def get_chain_config(self) -> ChainConfig:
        data = self._get(b"meta", _META_CHAIN_CONFIG)
        if data is None:
            raise StoreError("chain config not set")
        return ChainConfig(**json.loads(data))

    def set_chain_config(self, config: ChainConfig) -> None:
        self._put(b"meta", _META_CHAIN_CONFIG, json.dumps(dataclasses.asdict(config)).encode())

    # -----------------------------------------------------------------
    # Built payloads
    # -----------------------------------------------------------------

    def add_payload(self, payload_id: bytes, block: Block) -> None:
        self._put(b"payloads", payload_id, block.encode_rlp())

    def get_payload(self, payload_id: bytes) -> Optional[Block]:
        data = self._get(b"payloads", payload_id)
        if data is None:
            return None
        return Block.decode_rlp(data)
