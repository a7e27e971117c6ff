from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from google.cloud.firestore import DocumentReference
from google.cloud.firestore_v1.base_query import FieldFilter

from storage.firestore_client import DataStore


def snapshot_to_dict(snap) -> Dict[str, Any]:
    d = snap.to_dict() or {}
    d["doc_id"] = snap.id
    return d


def strip_doc_id(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k != "doc_id"}


class DocumentRepository:
    """Plain CRUD over one collection. Documents come back as dicts with `doc_id`."""

    def __init__(self, collection: str, store: DataStore):
        self.collection = collection
        self.store = store

    @property
    def col(self):
        return self.store.collection(self.collection)

    def ref(self, doc_id: str) -> DocumentReference:
        return self.col.document(doc_id)

    def new_id(self) -> str:
        return self.col.document().id

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        if not doc_id:
            return None
        snap = self.ref(doc_id).get()
        if not snap.exists:
            return None
        return snapshot_to_dict(snap)

    def find_by_field(self, field: str, value: Any, limit: int = 2) -> List[Dict[str, Any]]:
        q = self.col.where(filter=FieldFilter(field, "==", value)).limit(limit)
        return [snapshot_to_dict(s) for s in q.stream()]

    def stream(self, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        q = self.col.limit(limit) if limit else self.col
        for snap in q.stream():
            yield snapshot_to_dict(snap)

    def set(self, doc_id: str, data: Dict[str, Any], merge: bool = True) -> None:
        self.ref(doc_id).set(strip_doc_id(data), merge=merge)

    def update(self, doc_id: str, data: Dict[str, Any]) -> None:
        self.ref(doc_id).update(strip_doc_id(data))

    def delete(self, doc_id: str) -> None:
        self.ref(doc_id).delete()
