from __future__ import annotations

from fastapi import HTTPException, Request

from storage.firestore_client import DataStore


def get_store(request: Request) -> DataStore:
    store = getattr(request.app.state, "store", None)
    if store is None or not store.is_open:
        raise HTTPException(status_code=503, detail="datastore_unavailable")
    return store
