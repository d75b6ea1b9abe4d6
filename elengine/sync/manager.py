"""
Sync coordination: at most one sync runs at a time, and starting one never
blocks the caller.

The RPC handler hands a (current head, target head) pair to the manager. If
no sync is active the manager takes the slot and runs the sync on its own
worker thread; otherwise the request is dropped and the active sync keeps
going.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from elengine.storage.store import Store
from elengine.sync.full_sync import FullSync

logger = logging.getLogger(__name__)


class SyncManager:
    """Owns the single sync slot and the worker that runs syncs."""

    def __init__(self, store: Store, syncer: FullSync) -> None:
        self.store = store
        self.syncer = syncer
        self._slot = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="elengine-sync")
        self._current: Optional[Future] = None
        self.syncs_started = 0
        self.syncs_skipped = 0

    def try_start_sync(self, current_head: bytes, sync_head: bytes) -> bool:
        """Start a detached sync unless one is already running.

        Returns True if a sync was started.
        """
        if not self._slot.acquire(blocking=False):
            self.syncs_skipped += 1
            logger.debug("Sync already in progress, not starting toward 0x%s", sync_head.hex()[:16])
            return False
        try:
            self._current = self._executor.submit(self._run, current_head, sync_head)
        except RuntimeError:
            self._slot.release()
            raise
        self.syncs_started += 1
        return True

    def _run(self, current_head: bytes, sync_head: bytes) -> None:
        try:
            self.syncer.start_sync(current_head, sync_head, self.store)
        except Exception:
            logger.exception("Sync worker crashed")
        finally:
            self._slot.release()

    def is_syncing(self) -> bool:
        return self._slot.locked()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the current sync (if any) finishes."""
        current = self._current
        if current is not None:
            current.result(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def metrics(self) -> dict[str, int]:
        return {
            "elengine_sync_active": int(self.is_syncing()),
            "elengine_syncs_started_total": self.syncs_started,
            "elengine_syncs_skipped_total": self.syncs_skipped,
            "elengine_sync_blocks_imported": self.syncer.state.imported,
        }
