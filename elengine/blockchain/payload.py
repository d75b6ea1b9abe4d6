"""
Payload building: assembles candidate blocks requested by the consensus layer.

A payload is built on top of a stored parent from a set of build arguments.
Its identifier is derived from those arguments alone, so identical requests
map to the same payload.
"""

from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Optional

import rlp

from elengine.blockchain.chain import (
    BlockValidationError,
    ChainError,
    calc_base_fee,
    calc_excess_blob_gas,
    validate_header,
)
from elengine.common.trie import ordered_trie_root
from elengine.common.types import (
    Block,
    BlockHeader,
    Withdrawal,
    ZERO_HASH,
)
from elengine.storage.store import Store

logger = logging.getLogger(__name__)


class PayloadBuildError(ChainError):
    """The requested block cannot be built from the given arguments."""


@dataclass(frozen=True)
class BuildPayloadArgs:
    parent: bytes
    timestamp: int
    fee_recipient: bytes
    random: bytes
    withdrawals: Optional[tuple[Withdrawal, ...]]
    beacon_root: Optional[bytes]
    version: int

    def id(self) -> bytes:
        """Deterministic 8-byte payload id; the first byte carries the version."""
        hasher = hashlib.sha256()
        hasher.update(self.parent)
        hasher.update(struct.pack(">Q", self.timestamp))
        hasher.update(self.random)
        hasher.update(self.fee_recipient)
        if self.withdrawals is not None:
            hasher.update(rlp.encode([w.to_rlp_list() for w in self.withdrawals]))
        if self.beacon_root is not None:
            hasher.update(self.beacon_root)

        payload_id = bytearray(hasher.digest()[:8])
        payload_id[0] = self.version & 0xFF
        return bytes(payload_id)


def create_payload(args: BuildPayloadArgs, store: Store) -> Block:
    """Build an empty candidate block on top of ``args.parent``.

    Raises PayloadBuildError when the arguments cannot produce a valid block
    and ChainError when the parent is not available.
    """
    parent_block = store.get_block(args.parent)
    if parent_block is None:
        raise ChainError(f"parent block 0x{args.parent.hex()} not found")
    parent = parent_block.header
    config = store.get_chain_config()

    withdrawals = list(args.withdrawals) if args.withdrawals is not None else None

    header = BlockHeader(
        parent_hash=args.parent,
        coinbase=args.fee_recipient,
        state_root=parent.state_root,
        number=parent.number + 1,
        gas_limit=parent.gas_limit,
        gas_used=0,
        timestamp=args.timestamp,
        mix_hash=args.random,
        base_fee_per_gas=calc_base_fee(parent, config),
        transactions_root=ordered_trie_root([]),
    )

    if config.is_shanghai(args.timestamp):
        header.withdrawals_root = ordered_trie_root([w.encode_rlp() for w in withdrawals or []])
        withdrawals = withdrawals or []
    elif withdrawals:
        raise PayloadBuildError("withdrawals before Shanghai activation")

    if config.is_cancun(args.timestamp):
        header.blob_gas_used = 0
        header.excess_blob_gas = calc_excess_blob_gas(parent, config, args.timestamp)
        header.parent_beacon_block_root = args.beacon_root or ZERO_HASH

    try:
        validate_header(header, parent, config)
    except BlockValidationError as exc:
        raise PayloadBuildError(str(exc)) from exc

    block = Block(header=header, withdrawals=withdrawals)
    logger.info(
        "Built payload block=0x%s number=%d withdrawals=%d",
        block.block_hash().hex(), header.number, len(withdrawals or []),
    )
    return block
