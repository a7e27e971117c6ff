from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from google.cloud.firestore import DocumentReference

from models.identifiers import AUTO_ID_RE, BusinessId, NativeRef, describe, ref_parts, to_identifier
from models.schema import RELATIONSHIPS, RelationshipField
from ops.metrics import Timer
from reconcile.outcome import BatchReport, ItemStatus
from reconcile.resolver import ReferenceResolver
from repos.document_repo import DocumentRepository
from repos.migration_log_repo import MigrationLogRepository
from storage.batch_writer import BatchWriter
from storage.firestore_client import DataStore

log = logging.getLogger("uniform.reconcile.relationships")

TOOL = "relationships.reconcile"

CENSUS_KEYS = (
    "native",
    "native_wrong_collection",
    "path_string",
    "auto_id_string",
    "business_id",
    "missing",
    "invalid",
)


def classify_representation(value: Any, target: str) -> str:
    """Which storage representation a relationship value uses."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return "missing"
    ident = to_identifier(value, target)
    if ident is None:
        return "invalid"
    if isinstance(value, DocumentReference):
        return "native" if ref_parts(value)[0] == target else "native_wrong_collection"
    if isinstance(ident, NativeRef):
        return "auto_id_string" if AUTO_ID_RE.match(str(value).strip()) else "path_string"
    if isinstance(ident, BusinessId):
        return "business_id"
    return "invalid"


def _select(relationships: Optional[Sequence[RelationshipField]], collections: Optional[Iterable[str]]) -> List[RelationshipField]:
    chosen = list(relationships or RELATIONSHIPS)
    if collections:
        wanted = set(collections)
        chosen = [s for s in chosen if s.collection in wanted]
    return chosen


class RelationshipReconciler:
    """Bring relationship fields to native references.

    Dry run by default. In execute mode every conversion is written together
    with its migration-log entry in one atomic batch.
    """

    def __init__(
        self,
        store: DataStore,
        resolver: Optional[ReferenceResolver] = None,
        relationships: Optional[Sequence[RelationshipField]] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.resolver = resolver or ReferenceResolver(store)
        self.relationships = list(relationships or RELATIONSHIPS)
        self.batch_size = batch_size
        self.logs = MigrationLogRepository(store)

    def census(self, collections: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        fields: Dict[str, Dict[str, int]] = {}
        for rel in _select(self.relationships, collections):
            counts = {k: 0 for k in CENSUS_KEYS}
            total = 0
            for doc in DocumentRepository(rel.collection, self.store).stream():
                total += 1
                counts[classify_representation(doc.get(rel.field), rel.target)] += 1
            fields[rel.label] = {"total": total, **counts}

        needs_migration = any(
            c["native_wrong_collection"] or c["path_string"] or c["auto_id_string"] or c["business_id"] or c["invalid"]
            for c in fields.values()
        )
        return {"fields": fields, "needs_migration": needs_migration}

    def reconcile(self, execute: bool = False, collections: Optional[Iterable[str]] = None) -> BatchReport:
        t = Timer()
        report = BatchReport(name=TOOL, dry_run=not execute)
        writer = BatchWriter(self.store, max_writes=self.batch_size) if execute else None

        for rel in _select(self.relationships, collections):
            repo = DocumentRepository(rel.collection, self.store)
            for doc in repo.stream():
                self._reconcile_one(rel, repo, doc, report, writer)

        if writer:
            writer.flush()
            report.meta["commits"] = writer.commits

        log.info(
            "relationship_reconcile_done",
            extra={
                "extra": {
                    "execute": execute,
                    "total": report.total,
                    "ok": report.ok,
                    "skipped": report.skipped,
                    "failed": report.failed,
                    "duration_ms": t.ms(),
                }
            },
        )
        return report

    def _reconcile_one(
        self,
        rel: RelationshipField,
        repo: DocumentRepository,
        doc: Dict[str, Any],
        report: BatchReport,
        writer: Optional[BatchWriter],
    ) -> None:
        key = f"{rel.collection}/{doc['doc_id']}.{rel.field}"
        value = doc.get(rel.field)

        if classify_representation(value, rel.target) == "missing":
            if rel.required:
                report.add(key, ItemStatus.FAILED, "missing_reference")
            else:
                report.add(key, ItemStatus.SKIPPED, "empty")
            return

        try:
            res = self.resolver.resolve(value, rel.target)
        except Exception as e:
            report.add(key, ItemStatus.FAILED, f"lookup_error:{type(e).__name__}", value=describe(value))
            log.warning(
                "relationship_lookup_error",
                extra={"extra": {"key": key, "error_type": type(e).__name__, "message": str(e)}},
            )
            return

        if not res.found:
            report.add(key, ItemStatus.FAILED, "unresolved", value=describe(value))
            return
        if res.ambiguous:
            report.add(key, ItemStatus.FAILED, "ambiguous_business_id", value=describe(value), candidates=res.candidates)
            return
        if self.resolver.is_native_to(value, res):
            report.add(key, ItemStatus.SKIPPED, "already_native")
            return

        new_ref = self.resolver.reference_for(res)
        detail = {"before": describe(value), "after": describe(new_ref), "via": res.via}
        if writer is None:
            report.add(key, ItemStatus.OK, "would_convert", **detail)
            return

        item = report.add(key, ItemStatus.OK, "converted", **detail)
        writer.add(
            item,
            [
                ("update", repo.ref(doc["doc_id"]), {rel.field: new_ref}),
                self.logs.entry_write(TOOL, "convert_reference", rel.collection, doc["doc_id"], rel.field, value, new_ref),
            ],
        )
