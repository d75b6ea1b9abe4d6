"""
Full sync: fetches the blocks between the local canonical head and a
target head announced by the consensus layer.

Pipeline:
  1. Walk back from the target through the fetcher until a locally stored
     ancestor is reached
  2. Validate the fetched headers forward from that ancestor
  3. Persist the blocks

Canonical pointers are left alone: the next fork choice update that names
the target finds it stored and applies it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from elengine.blockchain.chain import BlockValidationError, validate_header
from elengine.common.types import Block
from elengine.storage.store import Store, StoreError
from elengine.sync.fetcher import BlockFetcher, FetchError

logger = logging.getLogger(__name__)

MAX_SYNC_DEPTH = 8192
PROGRESS_LOG_INTERVAL = 256


class SyncError(Exception):
    pass


@dataclass
class SyncState:
    """Tracks the progress of the current or last sync."""
    current_head: Optional[bytes] = None
    target_head: Optional[bytes] = None
    fetched: int = 0
    imported: int = 0
    syncing: bool = False
    last_error: Optional[str] = None


class FullSync:
    """Downloads and imports the blocks missing below a target head."""

    def __init__(self, fetcher: Optional[BlockFetcher], max_depth: int = MAX_SYNC_DEPTH) -> None:
        self.fetcher = fetcher
        self.max_depth = max_depth
        self.state = SyncState()

    def start_sync(self, current_head: bytes, sync_head: bytes, store: Store) -> None:
        """Sync from current_head toward sync_head. Errors are logged, not raised."""
        self.state = SyncState(current_head=current_head, target_head=sync_head, syncing=True)
        logger.info(
            "Starting sync: 0x%s -> 0x%s",
            current_head.hex()[:16], sync_head.hex()[:16],
        )
        try:
            blocks = self._fetch_missing(sync_head, store)
            self._import(blocks, store)
            logger.info("Sync finished: %d blocks imported", self.state.imported)
        except SyncError as exc:
            self.state.last_error = str(exc)
            logger.error("Sync error: %s", exc)
        except StoreError as exc:
            self.state.last_error = str(exc)
            logger.error("Storage error during sync: %s", exc)
        finally:
            self.state.syncing = False

    def _fetch_missing(self, sync_head: bytes, store: Store) -> list[Block]:
        if self.fetcher is None:
            raise SyncError("no sync peer configured")

        blocks: list[Block] = []
        next_hash = sync_head
        while store.get_block_header(next_hash) is None:
            if len(blocks) >= self.max_depth:
                raise SyncError(f"no known ancestor within {self.max_depth} blocks")
            try:
                block = self.fetcher.fetch_block(next_hash)
            except FetchError as exc:
                raise SyncError(str(exc)) from exc
            if block is None:
                raise SyncError(f"peer does not have block 0x{next_hash.hex()}")
            if block.block_hash() != next_hash:
                raise SyncError(f"peer returned wrong block for 0x{next_hash.hex()}")

            blocks.append(block)
            self.state.fetched += 1
            if self.state.fetched % PROGRESS_LOG_INTERVAL == 0:
                logger.info("Sync progress: fetched %d blocks, at #%d",
                            self.state.fetched, block.header.number)
            next_hash = block.header.parent_hash

        blocks.reverse()
        return blocks

    def _import(self, blocks: list[Block], store: Store) -> None:
        if not blocks:
            return
        parent = store.get_block_header(blocks[0].header.parent_hash)
        if parent is None:
            raise SyncError("sync ancestor disappeared from storage")
        config = store.get_chain_config()

        for block in blocks:
            try:
                validate_header(block.header, parent, config)
            except BlockValidationError as exc:
                raise SyncError(f"invalid block #{block.header.number}: {exc}") from exc
            store.put_block(block)
            self.state.imported += 1
            parent = block.header

    def is_syncing(self) -> bool:
        return self.state.syncing
