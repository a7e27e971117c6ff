from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from config.settings import settings
from models.identifiers import describe
from models.schema import ORPHAN_CHECKS, OrphanCheck
from ops.metrics import Timer
from reconcile.outcome import BatchReport, ItemStatus
from reconcile.resolver import ReferenceResolver
from repos.document_repo import DocumentRepository
from repos.migration_log_repo import MigrationLogRepository
from storage.batch_writer import BatchWriter
from storage.firestore_client import DataStore
from utils.request_context import get_run_id

log = logging.getLogger("uniform.reconcile.orphans")

AUDIT_TOOL = "orphans.audit"
CLEANUP_TOOL = "orphans.cleanup"


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class OrphanAuditor:
    """Find records whose link to a parent record points at nothing."""

    def __init__(
        self,
        store: DataStore,
        resolver: Optional[ReferenceResolver] = None,
        checks: Optional[Sequence[OrphanCheck]] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.resolver = resolver or ReferenceResolver(store)
        self.checks = list(checks or ORPHAN_CHECKS)
        self.batch_size = batch_size
        self.logs = MigrationLogRepository(store)

    def _selected(self, names: Optional[Iterable[str]]) -> List[OrphanCheck]:
        if not names:
            return list(self.checks)
        wanted = set(names)
        return [c for c in self.checks if c.name in wanted]

    def _distinct(self, collection: str, field: str) -> Set[str]:
        values: Set[str] = set()
        for doc in DocumentRepository(collection, self.store).stream():
            v = doc.get(field)
            if not _is_empty(v):
                values.add(str(v).strip())
        return values

    def _find(self, check: OrphanCheck, report: BatchReport) -> List[Dict[str, Any]]:
        """Adds one item per scanned record to `report`; returns the orphaned docs."""
        orphans: List[Dict[str, Any]] = []
        valid = self._distinct(check.target, check.target_field) if check.target_field else None

        for doc in DocumentRepository(check.collection, self.store).stream():
            label = doc.get(check.key_field) or doc["doc_id"]
            key = f"{check.name}:{check.collection}/{doc['doc_id']}"
            value = doc.get(check.field)
            if _is_empty(value):
                report.add(key, ItemStatus.SKIPPED, "empty")
                continue
            if valid is not None:
                linked = str(value).strip() in valid
            else:
                linked = self.resolver.resolve(value, check.target).found
            if linked:
                report.add(key, ItemStatus.OK, "linked")
                continue
            report.add(key, ItemStatus.FAILED, "orphaned", label=label, field=check.field, value=describe(value))
            orphans.append(doc)
        return orphans

    def audit(self, names: Optional[Iterable[str]] = None) -> BatchReport:
        """Read-only: failed items are the orphans."""
        t = Timer()
        report = BatchReport(name=AUDIT_TOOL, dry_run=True)
        per_check: Dict[str, int] = {}
        for check in self._selected(names):
            per_check[check.name] = len(self._find(check, report))
        report.meta.update({f"orphans.{k}": v for k, v in per_check.items()})
        log.info(
            "orphan_audit_done",
            extra={"extra": {"orphans": report.failed, "scanned": report.total, "per_check": per_check, "duration_ms": t.ms()}},
        )
        return report

    def cleanup(
        self,
        execute: bool = False,
        export_dir: Optional[str] = None,
        names: Optional[Iterable[str]] = None,
    ) -> BatchReport:
        """Delete orphaned records after exporting them to a JSON backup.

        Dry run lists what would be deleted and writes nothing. In execute
        mode the export is written first; nothing is deleted if it fails.
        """
        t = Timer()
        scan = BatchReport(name=AUDIT_TOOL)
        targets: Dict[str, Dict[str, Any]] = {}
        for check in self._selected(names):
            for doc in self._find(check, scan):
                # One record can be orphaned by several checks; delete it once.
                targets.setdefault(f"{check.collection}/{doc['doc_id']}", {"collection": check.collection, "check": check.name, "doc": doc})

        report = BatchReport(name=CLEANUP_TOOL, dry_run=not execute)
        if not execute:
            for path, entry in targets.items():
                report.add(path, ItemStatus.OK, "would_delete", check=entry["check"])
            return report

        if targets:
            export_path = self._export(targets, export_dir or settings.EXPORT_DIR)
            report.meta["export_path"] = str(export_path)

        writer = BatchWriter(self.store, max_writes=self.batch_size)
        for path, entry in targets.items():
            doc = entry["doc"]
            item = report.add(path, ItemStatus.OK, "deleted", check=entry["check"])
            writer.add(
                item,
                [
                    ("delete", self.store.reference(entry["collection"], doc["doc_id"]), None),
                    self.logs.entry_write(CLEANUP_TOOL, "delete_orphan", entry["collection"], doc["doc_id"], before=path),
                ],
            )
        writer.flush()
        report.meta["commits"] = writer.commits
        log.info(
            "orphan_cleanup_done",
            extra={"extra": {"deleted": report.ok, "failed": report.failed, "duration_ms": t.ms()}},
        )
        return report

    def _export(self, targets: Dict[str, Dict[str, Any]], export_dir: str) -> Path:
        out_dir = Path(export_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = out_dir / f"orphans-{stamp}-{get_run_id() or 'manual'}.json"
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "run_id": get_run_id(),
            "records": [{"path": p, "check": e["check"], "data": e["doc"]} for p, e in targets.items()],
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=describe), encoding="utf-8")
        log.info("orphan_export_written", extra={"extra": {"path": str(path), "records": len(targets)}})
        return path
