"""
Merkle Patricia Trie roots.

Backed by py-trie's HexaryTrie over a throwaway dict database; the engine
only ever needs root hashes, never proofs or persistent tries.
"""

from __future__ import annotations

from typing import Iterable

import rlp
from trie import HexaryTrie

from elengine.common.crypto import keccak256
from elengine.common.types import EMPTY_CODE_HASH, EMPTY_TRIE_ROOT


def ordered_trie_root(values: list[bytes]) -> bytes:
    """Compute a trie root from an ordered list of values.

    Keys are RLP-encoded indices (0, 1, 2, ...).
    Used for transaction and withdrawal tries.
    """
    if not values:
        return EMPTY_TRIE_ROOT
    trie = HexaryTrie({})
    for i, value in enumerate(values):
        trie[rlp.encode(i)] = value
    return trie.root_hash


def storage_root(slots: dict[int, int]) -> bytes:
    trie = HexaryTrie({})
    for slot, value in slots.items():
        if value == 0:
            continue
        trie[keccak256(slot.to_bytes(32, "big"))] = rlp.encode(value)
    return trie.root_hash


def state_root(accounts: Iterable[tuple[bytes, int, int, bytes, dict[int, int]]]) -> bytes:
    """Compute the state root for (address, nonce, balance, code, storage) entries."""
    trie = HexaryTrie({})
    for address, nonce, balance, code, slots in accounts:
        code_hash = keccak256(code) if code else EMPTY_CODE_HASH
        account = [nonce, balance, storage_root(slots), code_hash]
        trie[keccak256(address)] = rlp.encode(account)
    return trie.root_hash
