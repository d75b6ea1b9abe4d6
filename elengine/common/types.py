"""
Core chain types: Withdrawal, BlockHeader, Block.

Transactions are carried as opaque canonical encodings: the engine never
executes them, it only hashes them into the transactions root and moves
them between peers, storage and payload envelopes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import rlp

from elengine.common.crypto import keccak256


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMPTY_TRIE_ROOT = bytes.fromhex(
    "56e81f171bcc55a6ff8345e692c0f86e5b48e01b996cadc001622fb5e363b421"
)
EMPTY_CODE_HASH = keccak256(b"")
EMPTY_OMMERS_HASH = keccak256(rlp.encode([]))

ZERO_HASH = b"\x00" * 32
ZERO_ADDRESS = b"\x00" * 20
BLOOM_BYTE_SIZE = 256

MAX_UINT64 = 2**64 - 1


def decode_uint(data: bytes) -> int:
    return int.from_bytes(data, "big")


# ---------------------------------------------------------------------------
# Withdrawal (EIP-4895)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Withdrawal:
    index: int = 0
    validator_index: int = 0
    address: bytes = ZERO_ADDRESS
    amount: int = 0  # in Gwei

    def to_rlp_list(self) -> list:
        return [self.index, self.validator_index, self.address, self.amount]

    @classmethod
    def from_rlp_list(cls, items: list) -> Withdrawal:
        return cls(
            index=decode_uint(items[0]),
            validator_index=decode_uint(items[1]),
            address=items[2],
            amount=decode_uint(items[3]),
        )

    def encode_rlp(self) -> bytes:
        return rlp.encode(self.to_rlp_list())


# ---------------------------------------------------------------------------
# Block Header
# ---------------------------------------------------------------------------

@dataclass
class BlockHeader:
    parent_hash: bytes = ZERO_HASH
    ommers_hash: bytes = EMPTY_OMMERS_HASH
    coinbase: bytes = ZERO_ADDRESS
    state_root: bytes = EMPTY_TRIE_ROOT
    transactions_root: bytes = EMPTY_TRIE_ROOT
    receipts_root: bytes = EMPTY_TRIE_ROOT
    logs_bloom: bytes = field(default_factory=lambda: b"\x00" * BLOOM_BYTE_SIZE)
    difficulty: int = 0
    number: int = 0
    gas_limit: int = 0
    gas_used: int = 0
    timestamp: int = 0
    extra_data: bytes = b""
    mix_hash: bytes = ZERO_HASH
    nonce: bytes = b"\x00" * 8

    # Post-London (EIP-1559)
    base_fee_per_gas: Optional[int] = None
    # Post-Shanghai
    withdrawals_root: Optional[bytes] = None
    # Post-Cancun (EIP-4844, EIP-4788)
    blob_gas_used: Optional[int] = None
    excess_blob_gas: Optional[int] = None
    parent_beacon_block_root: Optional[bytes] = None
    # Post-Prague (EIP-7685)
    requests_hash: Optional[bytes] = None

    def to_rlp_list(self) -> list:
        items: list = [
            self.parent_hash,
            self.ommers_hash,
            self.coinbase,
            self.state_root,
            self.transactions_root,
            self.receipts_root,
            self.logs_bloom,
            self.difficulty,
            self.number,
            self.gas_limit,
            self.gas_used,
            self.timestamp,
            self.extra_data,
            self.mix_hash,
            self.nonce,
        ]
        optional = [
            self.base_fee_per_gas,
            self.withdrawals_root,
            self.blob_gas_used,
            self.excess_blob_gas,
            self.parent_beacon_block_root,
            self.requests_hash,
        ]
        for value in optional:
            if value is None:
                break
            items.append(value)
        return items

    @classmethod
    def from_rlp_list(cls, items: list) -> BlockHeader:
        header = cls(
            parent_hash=items[0],
            ommers_hash=items[1],
            coinbase=items[2],
            state_root=items[3],
            transactions_root=items[4],
            receipts_root=items[5],
            logs_bloom=items[6],
            difficulty=decode_uint(items[7]),
            number=decode_uint(items[8]),
            gas_limit=decode_uint(items[9]),
            gas_used=decode_uint(items[10]),
            timestamp=decode_uint(items[11]),
            extra_data=items[12],
            mix_hash=items[13],
            nonce=items[14],
        )
        n = len(items)
        if n > 15:
            header.base_fee_per_gas = decode_uint(items[15])
        if n > 16:
            header.withdrawals_root = items[16]
        if n > 17:
            header.blob_gas_used = decode_uint(items[17])
        if n > 18:
            header.excess_blob_gas = decode_uint(items[18])
        if n > 19:
            header.parent_beacon_block_root = items[19]
        if n > 20:
            header.requests_hash = items[20]
        return header

    def encode_rlp(self) -> bytes:
        return rlp.encode(self.to_rlp_list())

    @classmethod
    def decode_rlp(cls, data: bytes) -> BlockHeader:
        return cls.from_rlp_list(rlp.decode(data))

    def block_hash(self) -> bytes:
        return keccak256(self.encode_rlp())


# ---------------------------------------------------------------------------
# Block
# ---------------------------------------------------------------------------

def _tx_to_rlp_item(raw_tx: bytes):
    # Legacy transactions are embedded as lists, typed ones as byte strings.
    if raw_tx and raw_tx[0] >= 0xC0:
        return rlp.decode(raw_tx)
    return raw_tx


def _tx_from_rlp_item(item) -> bytes:
    if isinstance(item, (list, tuple)):
        return rlp.encode(item)
    return item


@dataclass
class Block:
    header: BlockHeader
    transactions: list[bytes] = field(default_factory=list)
    ommers: list[BlockHeader] = field(default_factory=list)
    withdrawals: Optional[list[Withdrawal]] = None

    def to_rlp_list(self) -> list:
        items: list = [
            self.header.to_rlp_list(),
            [_tx_to_rlp_item(tx) for tx in self.transactions],
            [o.to_rlp_list() for o in self.ommers],
        ]
        if self.withdrawals is not None:
            items.append([w.to_rlp_list() for w in self.withdrawals])
        return items

    def encode_rlp(self) -> bytes:
        return rlp.encode(self.to_rlp_list())

    @classmethod
    def decode_rlp(cls, data: bytes) -> Block:
        items = rlp.decode(data)
        withdrawals = None
        if len(items) > 3:
            withdrawals = [Withdrawal.from_rlp_list(w) for w in items[3]]
        return cls(
            header=BlockHeader.from_rlp_list(items[0]),
            transactions=[_tx_from_rlp_item(tx) for tx in items[1]],
            ommers=[BlockHeader.from_rlp_list(o) for o in items[2]],
            withdrawals=withdrawals,
        )

    def block_hash(self) -> bytes:
        return self.header.block_hash()
