from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from google.cloud.firestore import DocumentReference

from config.settings import settings
from reconcile.outcome import ItemResult, ItemStatus
from storage.firestore_client import DataStore

log = logging.getLogger("uniform.storage.batch")

# (op, ref, data): op is "set" | "update" | "delete"
Write = Tuple[str, DocumentReference, Optional[Dict[str, Any]]]

FIRESTORE_MAX_BATCH_WRITES = 500


class BatchWriter:
    """Groups the writes of several items into atomic Firestore batches.

    All writes of one item land in the same batch. When a commit fails every
    item of that batch is marked failed; earlier batches stay committed.
    """

    def __init__(self, store: DataStore, max_writes: Optional[int] = None):
        self.store = store
        self.max_writes = min(max_writes or settings.WRITE_BATCH_SIZE, FIRESTORE_MAX_BATCH_WRITES)
        self._writes: List[Write] = []
        self._items: List[ItemResult] = []
        self.commits = 0
        self.committed_items = 0
        self.failed_items = 0

    def add(self, item: ItemResult, writes: Sequence[Write]) -> None:
        if len(writes) > self.max_writes:
            raise ValueError("item_exceeds_batch_size")
        if self._writes and len(self._writes) + len(writes) > self.max_writes:
            self.flush()
        self._writes.extend(writes)
        self._items.append(item)

    def flush(self) -> None:
        if not self._writes:
            return
        writes, items = self._writes, self._items
        self._writes, self._items = [], []

        batch = self.store.batch()
        for op, ref, data in writes:
            if op == "set":
                batch.set(ref, data)
            elif op == "update":
                batch.update(ref, data)
            elif op == "delete":
                batch.delete(ref)
            else:
                raise ValueError(f"unknown_write_op:{op}")
        try:
            batch.commit()
        except Exception as e:
            # Best-effort run: record the failure per item, keep going.
            self.failed_items += len(items)
            for item in items:
                item.status = ItemStatus.FAILED
                item.reason = f"commit_failed:{type(e).__name__}"
            log.error(
                "batch_commit_failed",
                extra={"extra": {"writes": len(writes), "items": len(items), "error_type": type(e).__name__, "message": str(e)}},
                exc_info=True,
            )
            return
        self.commits += 1
        self.committed_items += len(items)
        log.info("batch_committed", extra={"extra": {"writes": len(writes), "items": len(items)}})
