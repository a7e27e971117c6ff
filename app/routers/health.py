from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from config.settings import settings
from storage.firestore_client import DataStore

router = APIRouter()


def _firestore_probe(store: Optional[DataStore], timeout_s: float = 0.20) -> Dict[str, Any]:
    """
    Read-only, bounded-time Firestore connectivity probe.
    - No PII
    - No writes
    - Uses a fixed doc path.
    """
    if store is None or not store.is_open:
        return {"ok": False, "error_type": "DataStoreNotOpen", "message": "datastore_not_open"}
    try:
        t0 = time.time()
        store.collection("system").document("healthz").get(timeout=timeout_s)
        dt_ms = int((time.time() - t0) * 1000)
        return {"ok": True, "latency_ms": dt_ms}
    except Exception as e:
        return {"ok": False, "error_type": type(e).__name__, "message": str(e)}


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/health")
def health(request: Request):
    fs = _firestore_probe(getattr(request.app.state, "store", None))
    return {
        "ok": bool(fs.get("ok", False)),
        "service": "uniform-dataops",
        "cloudrun_service": os.getenv("K_SERVICE") or "",
        "revision": os.getenv("K_REVISION") or "",
        "environment": settings.ENVIRONMENT,
        "firestore_ok": bool(fs.get("ok", False)),
        "firestore": fs,
        "api_execute_enabled": bool(settings.ALLOW_API_EXECUTE),
        "time_unix": time.time(),
    }
