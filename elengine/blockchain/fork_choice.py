"""
Fork choice application and canonical chain management.

Post-merge the consensus layer picks head, safe and finalized blocks; this
module checks that the three hashes describe a consistent view of the
locally stored chain and rewrites the canonical pointers to match it.

The result of applying a fork choice is one of a closed set of outcomes:

- Applied: the pointers now follow the requested head.
- AlreadyCanonical: the head is an ancestor of the current canonical head;
  nothing changed.
- Syncing: the head is not stored locally yet.
- Invalid: the request contradicts known chain state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from elengine.common.types import BlockHeader, ZERO_HASH
from elengine.storage.store import Store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Applied:
    head: BlockHeader


@dataclass(frozen=True)
class AlreadyCanonical:
    pass


@dataclass(frozen=True)
class Syncing:
    pass


@dataclass(frozen=True)
class Invalid:
    reason: str


ForkChoiceOutcome = Union[Applied, AlreadyCanonical, Syncing, Invalid]


# ---------------------------------------------------------------------------
# Invalid reasons
# ---------------------------------------------------------------------------

INVALID_HEAD_HASH = "invalid head hash"
UNORDERED = "head, safe and finalized blocks are not ordered"
UNLINKED_HEAD = "head block is not linked to the canonical chain"


def _element_not_found(name: str) -> str:
    return f"{name} block not found"


def _disconnected(name: str) -> str:
    return f"{name} block is not an ancestor of the head block"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_canonical(store: Store, number: int, block_hash: bytes) -> bool:
    return store.get_canonical_hash(number) == block_hash


def find_link_with_canonical_chain(
    store: Store, head: BlockHeader
) -> Optional[list[tuple[int, bytes]]]:
    """Walk back from head until a canonical block is found.

    Returns the (number, hash) pairs of the non-canonical ancestors of head,
    nearest first, or None if the walk reaches a missing block before
    meeting the canonical chain. The head itself is not included.
    """
    branch: list[tuple[int, bytes]] = []
    if head.number == 0:
        return branch if is_canonical(store, 0, head.block_hash()) else None

    parent_number = head.number - 1
    parent_hash = head.parent_hash
    while not is_canonical(store, parent_number, parent_hash):
        parent = store.get_block_header(parent_hash)
        if parent is None or parent_number == 0:
            return None
        branch.append((parent_number, parent_hash))
        parent_number -= 1
        parent_hash = parent.parent_hash
    return branch


def _check_order(
    lower: Optional[BlockHeader], higher: Optional[BlockHeader], lower_name: str
) -> Optional[str]:
    if lower is None and higher is not None:
        return _element_not_found(lower_name)
    if lower is not None and higher is not None and lower.number > higher.number:
        return UNORDERED
    return None


def _on_new_canonical_chain(
    store: Store,
    header: BlockHeader,
    block_hash: bytes,
    head: BlockHeader,
    head_hash: bytes,
    link_number: int,
    branch: list[tuple[int, bytes]],
) -> bool:
    if header.number == head.number and block_hash == head_hash:
        return True
    if (header.number, block_hash) in branch:
        return True
    return header.number <= link_number and is_canonical(store, header.number, block_hash)


# ---------------------------------------------------------------------------
# Fork choice
# ---------------------------------------------------------------------------

def apply_fork_choice(
    store: Store,
    head_hash: bytes,
    safe_hash: bytes,
    finalized_hash: bytes,
) -> ForkChoiceOutcome:
    """Apply a head/safe/finalized triple to the store's canonical chain.

    A zero safe or finalized hash means "not provided" and leaves the
    corresponding pointer untouched.
    """
    if head_hash == ZERO_HASH:
        return Invalid(INVALID_HEAD_HASH)

    # Full blocks are looked up so a header without a body counts as missing.
    finalized_block = store.get_block(finalized_hash) if finalized_hash != ZERO_HASH else None
    safe_block = store.get_block(safe_hash) if safe_hash != ZERO_HASH else None
    head_block = store.get_block(head_hash)

    finalized = finalized_block.header if finalized_block is not None else None
    safe = safe_block.header if safe_block is not None else None
    head = head_block.header if head_block is not None else None

    if safe_hash != ZERO_HASH:
        reason = _check_order(safe, head, "safe")
        if reason is not None:
            return Invalid(reason)
    if finalized_hash != ZERO_HASH and safe_hash != ZERO_HASH:
        reason = _check_order(finalized, safe, "finalized")
        if reason is not None:
            return Invalid(reason)

    if head is None:
        return Syncing()

    latest = store.get_latest_block_number()
    if latest is not None and is_canonical(store, head.number, head_hash) and head.number < latest:
        return AlreadyCanonical()

    branch = find_link_with_canonical_chain(store, head)
    if branch is None:
        return Invalid(UNLINKED_HEAD)
    link_number = branch[-1][0] - 1 if branch else head.number - 1

    if finalized is not None and not _on_new_canonical_chain(
        store, finalized, finalized_hash, head, head_hash, link_number, branch
    ):
        return Invalid(_disconnected("finalized"))
    if safe is not None and not _on_new_canonical_chain(
        store, safe, safe_hash, head, head_hash, link_number, branch
    ):
        return Invalid(_disconnected("safe"))

    # All checks passed; rewrite the canonical chain.
    for number, block_hash in branch:
        store.put_canonical_hash(number, block_hash)
    if latest is not None:
        for number in range(head.number + 1, latest + 1):
            store.remove_canonical_hash(number)
    store.put_canonical_hash(head.number, head_hash)

    if finalized is not None:
        store.update_finalized_block_number(finalized.number)
    if safe is not None:
        store.update_safe_block_number(safe.number)
    store.update_latest_block_number(head.number)

    logger.debug(
        "Canonical head set to #%d (%d ancestors relinked)", head.number, len(branch)
    )
    return Applied(head)
