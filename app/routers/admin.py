from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_store
from config.settings import settings
from models.identifiers import describe
from reconcile.business_ids import BusinessIdAuditor
from reconcile.encryption_audit import EncryptionAuditor
from reconcile.orphans import OrphanAuditor
from reconcile.relationships import RelationshipReconciler
from reconcile.resolver import ReferenceResolver
from security.operator_auth import Operator, OperatorClaims
from storage.firestore_client import DataStore
from utils.request_context import clear_run_id, new_run_id

router = APIRouter()
log = logging.getLogger("uniform.routers.admin")


def _require_execute_allowed(execute: bool) -> None:
    if execute and not settings.ALLOW_API_EXECUTE:
        raise HTTPException(status_code=403, detail="api_execute_disabled")


@router.get("/whoami")
def whoami(operator: Operator = OperatorClaims):
    return {"ok": True, "operator": {"sub": operator.sub, "email": operator.email, "aud": operator.get("aud")}}


@router.get("/resolve")
def resolve(
    collection: str,
    value: str,
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    resolver = ReferenceResolver(store)
    res = resolver.resolve(value, collection)
    return {
        "ok": True,
        "collection": collection,
        "value": value,
        "found": res.found,
        "via": res.via,
        "candidates": res.candidates,
        "doc_id": res.doc_id,
        "business_id": res.business_id,
        "reference": describe(resolver.reference_for(res)) if res.found else None,
    }


@router.get("/relationships/census")
def relationships_census(
    collection: Optional[List[str]] = Query(default=None),
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    return {"ok": True, **RelationshipReconciler(store).census(collection)}


@router.post("/relationships/reconcile")
def relationships_reconcile(
    execute: bool = False,
    collection: Optional[List[str]] = Query(default=None),
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    _require_execute_allowed(execute)
    run_id = new_run_id()
    try:
        report = RelationshipReconciler(store).reconcile(execute=execute, collections=collection)
    finally:
        clear_run_id()
    log.info(
        "admin_reconcile_run",
        extra={"extra": {"run_id": run_id, "execute": execute, "operator_sub": operator.sub, "failed": report.failed}},
    )
    return {"ok": True, "run_id": run_id, **report.to_dict()}


@router.get("/orphans")
def orphans(
    check: Optional[List[str]] = Query(default=None),
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    return {"ok": True, **OrphanAuditor(store).audit(check).to_dict()}


@router.get("/encryption/audit")
def encryption_audit(
    collection: Optional[List[str]] = Query(default=None),
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    return {"ok": True, **EncryptionAuditor(store).audit(collection).to_dict()}


@router.get("/business-ids/audit")
def business_ids_audit(
    collection: Optional[List[str]] = Query(default=None),
    operator: Operator = OperatorClaims,
    store: DataStore = Depends(get_store),
):
    return {"ok": True, **BusinessIdAuditor(store).audit(collection).to_dict()}
