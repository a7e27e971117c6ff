from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models.identifiers import describe
from models.schema import BUSINESS_ID_PREFIXES, ENTITY_COLLECTIONS, business_id_fields
from ops.metrics import Timer
from reconcile.outcome import BatchReport, ItemStatus
from reconcile.resolver import ReferenceResolver
from repos.document_repo import DocumentRepository
from repos.migration_log_repo import MigrationLogRepository
from storage.batch_writer import BatchWriter
from storage.firestore_client import DataStore
from utils.ids import is_business_id, next_business_id

log = logging.getLogger("uniform.reconcile.business_ids")

AUDIT_TOOL = "business_ids.audit"
ASSIGN_TOOL = "business_ids.assign"


class BusinessIdAuditor:
    """Every entity document carries a unique 6-digit id in its primary id field.

    Missing or malformed ids are assigned from the collection's prefix block.
    Duplicates are only reported: which record keeps the id is a human call.
    """

    def __init__(
        self,
        store: DataStore,
        resolver: Optional[ReferenceResolver] = None,
        collections: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.collections = list(collections or ENTITY_COLLECTIONS)
        self.batch_size = batch_size
        self.logs = MigrationLogRepository(store)

    def _selected(self, collections: Optional[Iterable[str]]) -> List[str]:
        if not collections:
            return list(self.collections)
        wanted = set(collections)
        return [c for c in self.collections if c in wanted]

    def audit(self, collections: Optional[Iterable[str]] = None) -> BatchReport:
        return self._run(execute=False, assign=False, collections=collections)

    def assign(self, execute: bool = False, collections: Optional[Iterable[str]] = None) -> BatchReport:
        return self._run(execute=execute, assign=True, collections=collections)

    def _run(self, execute: bool, assign: bool, collections: Optional[Iterable[str]]) -> BatchReport:
        t = Timer()
        report = BatchReport(name=ASSIGN_TOOL if assign else AUDIT_TOOL, dry_run=not execute)
        writer = BatchWriter(self.store, max_writes=self.batch_size) if execute else None

        for collection in self._selected(collections):
            repo = DocumentRepository(collection, self.store)
            primary = business_id_fields(collection)[0]
            docs = list(repo.stream())

            by_id: Dict[str, List[str]] = defaultdict(list)
            for doc in docs:
                if is_business_id(doc.get(primary)):
                    by_id[doc[primary]].append(doc["doc_id"])
            taken: List[Any] = list(by_id)

            for doc in docs:
                key = f"{collection}/{doc['doc_id']}.{primary}"
                value = doc.get(primary)
                if is_business_id(value):
                    if len(by_id[value]) > 1:
                        report.add(key, ItemStatus.FAILED, "duplicate_business_id", value=value, shared_with=len(by_id[value]))
                    else:
                        report.add(key, ItemStatus.OK, "valid")
                    continue

                if not assign:
                    report.add(key, ItemStatus.FAILED, "missing_business_id" if value in (None, "") else "invalid_business_id", value=describe(value))
                    continue

                try:
                    new_id = next_business_id(taken, BUSINESS_ID_PREFIXES.get(collection, 100))
                except ValueError as e:
                    report.add(key, ItemStatus.FAILED, str(e))
                    continue
                taken.append(new_id)
                detail = {"before": describe(value), "after": new_id}
                if writer is None:
                    report.add(key, ItemStatus.OK, "would_assign", **detail)
                    continue
                item = report.add(key, ItemStatus.OK, "assigned", **detail)
                writer.add(
                    item,
                    [
                        ("update", repo.ref(doc["doc_id"]), {primary: new_id}),
                        self.logs.entry_write(ASSIGN_TOOL, "assign_business_id", collection, doc["doc_id"], primary, value, new_id),
                    ],
                )

        if writer:
            writer.flush()
            report.meta["commits"] = writer.commits
            if self.resolver is not None:
                self.resolver.invalidate()
        log.info(
            "business_ids_done",
            extra={"extra": {"assign": assign, "execute": execute, "ok": report.ok, "failed": report.failed, "duration_ms": t.ms()}},
        )
        return report
