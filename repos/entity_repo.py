from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.identifiers import describe
from models.schema import BUSINESS_ID_PREFIXES, ENCRYPTED_FIELDS, business_id_fields, relationships_for
from reconcile.resolver import ReferenceResolver
from repos.document_repo import DocumentRepository, strip_doc_id
from security.field_crypto import CipherState, DecryptionError, FieldCipher
from storage.firestore_client import DataStore
from utils.ids import is_business_id, next_business_id

log = logging.getLogger("uniform.repos.entity")


class UnresolvedReferenceError(ValueError):
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(f"{reason}:{field}={describe(value)}")
        self.field = field
        self.value = value
        self.reason = reason


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class EntityRepository(DocumentRepository):
    """Writes that keep a collection in canonical shape.

    Relationship fields are stored as native references only, PII fields are
    stored encrypted, new documents always get a business id.
    """

    def __init__(
        self,
        collection: str,
        store: DataStore,
        resolver: Optional[ReferenceResolver] = None,
        cipher: Optional[FieldCipher] = None,
    ):
        super().__init__(collection, store)
        self.resolver = resolver or ReferenceResolver(store)
        self._cipher = cipher
        self.encrypted_fields = ENCRYPTED_FIELDS.get(collection, ())

    @property
    def cipher(self) -> FieldCipher:
        # Collections without PII must not require a configured key.
        if self._cipher is None:
            self._cipher = FieldCipher()
        return self._cipher

    def _coerce_relationships(self, data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        out = dict(data)
        for rel in relationships_for(self.collection):
            if rel.field not in out:
                if creating and rel.required:
                    raise UnresolvedReferenceError(rel.field, None, "missing_reference")
                continue
            value = out[rel.field]
            if _is_empty(value):
                if rel.required:
                    raise UnresolvedReferenceError(rel.field, value, "missing_reference")
                out[rel.field] = None
                continue
            res = self.resolver.resolve(value, rel.target)
            if not res.found:
                raise UnresolvedReferenceError(rel.field, value, "unresolved")
            if res.ambiguous:
                raise UnresolvedReferenceError(rel.field, value, "ambiguous_business_id")
            out[rel.field] = self.resolver.reference_for(res)
        return out

    def _encrypt_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(data)
        for f in self.encrypted_fields:
            value = out.get(f)
            if not isinstance(value, str) or not value:
                continue
            state = self.cipher.inspect(value)
            if state == CipherState.ENCRYPTED:
                continue
            if state == CipherState.KEY_MISMATCH:
                raise DecryptionError(f"foreign_ciphertext:{f}")
            out[f] = self.cipher.encrypt(value)
        return out

    def _assign_business_id(self, data: Dict[str, Any]) -> Dict[str, Any]:
        primary = business_id_fields(self.collection)[0]
        if is_business_id(data.get(primary)):
            return data
        existing = [d.get(primary) for d in self.stream()]
        prefix = BUSINESS_ID_PREFIXES.get(self.collection, 100)
        return {**data, primary: next_business_id(existing, prefix)}

    def create(self, data: Dict[str, Any], doc_id: Optional[str] = None) -> Dict[str, Any]:
        doc = strip_doc_id(data)
        doc = self._coerce_relationships(doc, creating=True)
        doc = self._encrypt_fields(doc)
        doc = self._assign_business_id(doc)
        doc["createdAt"] = _now()
        doc_id = doc_id or self.new_id()
        self.ref(doc_id).set(doc)
        self.resolver.invalidate(self.collection)
        log.info("entity_created", extra={"extra": {"collection": self.collection, "doc_id": doc_id}})
        return {**doc, "doc_id": doc_id}

    def update(self, doc_id: str, data: Dict[str, Any]) -> None:
        doc = strip_doc_id(data)
        doc = self._coerce_relationships(doc, creating=False)
        doc = self._encrypt_fields(doc)
        doc["updatedAt"] = _now()
        self.ref(doc_id).update(doc)
        if set(business_id_fields(self.collection)) & set(doc):
            self.resolver.invalidate(self.collection)

    def decrypt_document(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(doc)
        for f in self.encrypted_fields:
            if f in out:
                out[f] = self.cipher.decrypt(out[f])
        return out

    def get_decrypted(self, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self.get(doc_id)
        if doc is None:
            return None
        return self.decrypt_document(doc)

    def find_by_encrypted_field(self, field: str, value: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Find documents whose encrypted `field` decrypts to `value`.

        Ciphertext uses a random IV, so equality queries only catch legacy
        plaintext rows; everything else is decrypted and compared.
        """
        if field not in self.encrypted_fields:
            raise ValueError(f"field_not_encrypted:{field}")
        needle = (value or "").strip().casefold()
        if not needle:
            return []

        hits: Dict[str, Dict[str, Any]] = {}
        for doc in self.find_by_field(field, value, limit=limit):
            hits[doc["doc_id"]] = self.decrypt_document(doc)

        skipped = 0
        for doc in self.stream():
            if len(hits) >= limit:
                break
            if doc["doc_id"] in hits:
                continue
            try:
                plain = self.cipher.decrypt(doc.get(field))
            except DecryptionError:
                skipped += 1
                continue
            if isinstance(plain, str) and plain.strip().casefold() == needle:
                hits[doc["doc_id"]] = self.decrypt_document(doc)
        if skipped:
            log.warning(
                "encrypted_lookup_skipped_undecryptable",
                extra={"extra": {"collection": self.collection, "field": field, "skipped": skipped}},
            )
        return list(hits.values())
