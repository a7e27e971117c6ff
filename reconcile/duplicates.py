from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from models.identifiers import describe
from models.schema import COL_COMPANIES, COL_COMPANY_ADMINS, COL_EMPLOYEES
from ops.metrics import Timer
from reconcile.outcome import BatchReport, ItemStatus
from reconcile.resolver import ReferenceResolver
from repos.document_repo import DocumentRepository
from repos.migration_log_repo import MigrationLogRepository
from storage.batch_writer import BatchWriter, Write
from storage.firestore_client import DataStore

log = logging.getLogger("uniform.reconcile.duplicates")

TOOL = "duplicates.companyadmins"

STRATEGY_MERGE = "merge"
STRATEGY_DELETE_OLDEST = "delete-oldest"
STRATEGY_DELETE_NEWEST = "delete-newest"
STRATEGIES = (STRATEGY_MERGE, STRATEGY_DELETE_OLDEST, STRATEGY_DELETE_NEWEST)


def _ts(value: Any) -> str:
    # Firestore timestamps come back as datetimes, older records hold ISO strings.
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


def _by_age(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Oldest first; records without created_at sort last, doc_id breaks ties."""
    return sorted(records, key=lambda r: (not r.get("createdAt"), _ts(r.get("createdAt")), r["doc_id"]))


def select_best_record(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Most complete record; then most recently updated; then oldest created."""
    # Stable sorts, least significant key first.
    ordered = sorted(records, key=lambda r: r["doc_id"])
    ordered.sort(key=lambda r: _ts(r.get("createdAt")) or "\uffff")
    ordered.sort(key=lambda r: _ts(r.get("updatedAt")), reverse=True)
    ordered.sort(key=len, reverse=True)
    return ordered[0]


def merge_privileges(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for r in records:
        privileges = r.get("privileges")
        if not isinstance(privileges, dict):
            continue
        for k, v in privileges.items():
            if isinstance(v, bool):
                # A privilege granted on any duplicate stays granted.
                merged[k] = merged.get(k) is True or v
            else:
                merged[k] = v
    return merged


class DuplicateAdminFixer:
    """Collapse companyadmins records that point at the same company + employee.

    Records are grouped by the *resolved* documents, so an admin stored once
    with business ids and once with native references lands in one group.
    """

    def __init__(self, store: DataStore, resolver: Optional[ReferenceResolver] = None, batch_size: Optional[int] = None):
        self.store = store
        self.resolver = resolver or ReferenceResolver(store)
        self.batch_size = batch_size
        self.repo = DocumentRepository(COL_COMPANY_ADMINS, store)
        self.logs = MigrationLogRepository(store)

    def find_duplicates(self, report: Optional[BatchReport] = None) -> List[Dict[str, Any]]:
        groups: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        for admin in self.repo.stream():
            company = self.resolver.resolve(admin.get("companyId"), COL_COMPANIES)
            employee = self.resolver.resolve(admin.get("employeeId"), COL_EMPLOYEES)
            if not company.found or not employee.found:
                if report is not None:
                    report.add(
                        f"{COL_COMPANY_ADMINS}/{admin['doc_id']}",
                        ItemStatus.FAILED,
                        "unresolved_admin_link",
                        companyId=describe(admin.get("companyId")),
                        employeeId=describe(admin.get("employeeId")),
                    )
                continue
            if company.ambiguous or employee.ambiguous:
                if report is not None:
                    report.add(
                        f"{COL_COMPANY_ADMINS}/{admin['doc_id']}",
                        ItemStatus.FAILED,
                        "ambiguous_business_id",
                        companyId=describe(admin.get("companyId")),
                        employeeId=describe(admin.get("employeeId")),
                        candidates=max(company.candidates, employee.candidates),
                    )
                continue
            groups.setdefault((company.doc_id, employee.doc_id), []).append(admin)

        return [
            {"company_doc_id": c, "employee_doc_id": e, "records": recs}
            for (c, e), recs in groups.items()
            if len(recs) > 1
        ]

    def fix(self, strategy: str = STRATEGY_MERGE, execute: bool = False) -> BatchReport:
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown_strategy:{strategy}")
        t = Timer()
        report = BatchReport(name=TOOL, dry_run=not execute)
        report.meta["strategy"] = strategy
        duplicates = self.find_duplicates(report)
        report.meta["duplicate_groups"] = len(duplicates)
        writer = BatchWriter(self.store, max_writes=self.batch_size) if execute else None

        for group in duplicates:
            records = group["records"]
            if strategy == STRATEGY_MERGE:
                keep = select_best_record(records)
            elif strategy == STRATEGY_DELETE_OLDEST:
                keep = _by_age(records)[-1]
            else:
                keep = _by_age(records)[0]
            drop = [r for r in records if r["doc_id"] != keep["doc_id"]]

            key = f"{COL_COMPANY_ADMINS}:{group['company_doc_id']}|{group['employee_doc_id']}"
            detail = {"keep": keep["doc_id"], "delete": ",".join(r["doc_id"] for r in drop)}
            if writer is None:
                report.add(key, ItemStatus.OK, f"would_{strategy}", **detail)
                continue

            update: Dict[str, Any] = {
                "companyId": self.store.reference(COL_COMPANIES, group["company_doc_id"]),
                "employeeId": self.store.reference(COL_EMPLOYEES, group["employee_doc_id"]),
            }
            if strategy == STRATEGY_MERGE:
                privileges = merge_privileges(records)
                if privileges:
                    update["privileges"] = privileges

            writes: List[Write] = [
                ("update", self.repo.ref(keep["doc_id"]), update),
                self.logs.entry_write(TOOL, f"keep_{strategy}", COL_COMPANY_ADMINS, keep["doc_id"]),
            ]
            for r in drop:
                writes.append(("delete", self.repo.ref(r["doc_id"]), None))
                writes.append(self.logs.entry_write(TOOL, "delete_duplicate", COL_COMPANY_ADMINS, r["doc_id"], before=keep["doc_id"]))
            item = report.add(key, ItemStatus.OK, "fixed", **detail)
            writer.add(item, writes)

        if writer:
            writer.flush()
            report.meta["commits"] = writer.commits
        log.info(
            "duplicate_admins_done",
            extra={"extra": {"strategy": strategy, "execute": execute, "groups": len(duplicates), "failed": report.failed, "duration_ms": t.ms()}},
        )
        return report
