from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from google.cloud.firestore import DocumentReference

from config.settings import settings
from models.identifiers import NativeRef, normalize_id_str, ref_parts, to_identifier
from models.schema import business_id_fields
from repos.document_repo import DocumentRepository
from storage.firestore_client import DataStore
from utils.ids import is_business_id

log = logging.getLogger("uniform.reconcile.resolver")

VIA_NATIVE = "native"
VIA_BUSINESS_ID = "business_id"
VIA_SCAN = "scan"
VIA_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Resolution:
    collection: str
    document: Optional[Dict[str, Any]] = None
    via: str = VIA_NOT_FOUND
    candidates: int = 0

    @property
    def found(self) -> bool:
        return self.document is not None

    @property
    def ambiguous(self) -> bool:
        return self.candidates > 1

    @property
    def doc_id(self) -> str:
        return (self.document or {}).get("doc_id", "")

    @property
    def business_id(self) -> str:
        doc = self.document or {}
        for f in business_id_fields(self.collection):
            v = doc.get(f)
            if is_business_id(v):
                return v
        return ""


class ReferenceResolver:
    """Resolve a relationship value of unknown representation to its document.

    Precedence:
      1. native reference into the target collection (direct read)
      2. business id equality on the collection's business-id fields
      3. scan of the collection comparing normalized string forms

    A miss is a Resolution with found == False, never an exception.
    """

    def __init__(self, store: DataStore, scan_limit: Optional[int] = None):
        self.store = store
        self.scan_limit = scan_limit or settings.RESOLVER_SCAN_LIMIT
        self._scan_index: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}

    def resolve(self, value: Any, collection: str) -> Resolution:
        ident = to_identifier(value, collection)
        if ident is None:
            return Resolution(collection)

        repo = DocumentRepository(collection, self.store)

        if isinstance(ident, NativeRef) and ident.collection == collection:
            doc = repo.get(ident.doc_id)
            if doc is not None:
                return Resolution(collection, doc, VIA_NATIVE, 1)

        key = ident.doc_id if isinstance(ident, NativeRef) else ident.value
        hits = self._by_business_id(repo, key)
        if hits:
            return Resolution(collection, hits[0], VIA_BUSINESS_ID, len(hits))

        hits = self._scan(collection, value)
        if hits:
            log.info(
                "resolved_by_scan",
                extra={"extra": {"collection": collection, "candidates": len(hits)}},
            )
            return Resolution(collection, hits[0], VIA_SCAN, len(hits))

        return Resolution(collection)

    def reference_for(self, resolution: Resolution) -> DocumentReference:
        if not resolution.found:
            raise ValueError("unresolved_reference")
        return self.store.reference(resolution.collection, resolution.doc_id)

    def is_native_to(self, value: Any, resolution: Resolution) -> bool:
        """True when `value` already is the native reference of the resolved document."""
        if not resolution.found or not isinstance(value, DocumentReference):
            return False
        return ref_parts(value) == (resolution.collection, resolution.doc_id)

    def invalidate(self, collection: Optional[str] = None) -> None:
        if collection is None:
            self._scan_index.clear()
        else:
            self._scan_index.pop(collection, None)

    def _by_business_id(self, repo: DocumentRepository, key: str) -> List[Dict[str, Any]]:
        seen: Dict[str, Dict[str, Any]] = {}
        for f in business_id_fields(repo.collection):
            for doc in repo.find_by_field(f, key, limit=2):
                seen.setdefault(doc["doc_id"], doc)
        return list(seen.values())

    def _scan(self, collection: str, value: Any) -> List[Dict[str, Any]]:
        needle = normalize_id_str(value)
        if not needle:
            return []
        index = self._scan_index.get(collection)
        if index is None:
            index = self._build_index(collection)
            self._scan_index[collection] = index
        return index.get(needle, [])

    def _build_index(self, collection: str) -> Dict[str, List[Dict[str, Any]]]:
        index: Dict[str, List[Dict[str, Any]]] = {}
        fields = business_id_fields(collection)
        scanned = 0
        for doc in DocumentRepository(collection, self.store).stream(limit=self.scan_limit):
            scanned += 1
            keys = {normalize_id_str(doc["doc_id"])}
            keys.update(normalize_id_str(doc.get(f)) for f in fields)
            keys.discard("")
            for k in keys:
                index.setdefault(k, []).append(doc)
        if scanned >= self.scan_limit:
            log.warning(
                "resolver_scan_truncated",
                extra={"extra": {"collection": collection, "scan_limit": self.scan_limit}},
            )
        return index
