from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from models.schema import ENCRYPTED_FIELDS
from ops.metrics import Timer
from reconcile.outcome import BatchReport, ItemStatus
from repos.document_repo import DocumentRepository
from repos.migration_log_repo import MigrationLogRepository
from security.field_crypto import CipherState, DecryptionError, FieldCipher
from storage.batch_writer import BatchWriter
from storage.firestore_client import DataStore

log = logging.getLogger("uniform.reconcile.encryption")

AUDIT_TOOL = "encryption.audit"
REPAIR_TOOL = "encryption.encrypt_plaintext"
DRY_RUN_REASONS = {"encrypted": "would_encrypt", "reencoded": "would_reencode"}


class EncryptionAuditor:
    """Check that PII fields are encrypted with the configured key.

    A field that is well-formed ciphertext but does not decrypt is reported as
    key_mismatch and is never rewritten: re-encrypting it would destroy the
    only copy of the value.
    """

    def __init__(
        self,
        store: DataStore,
        cipher: Optional[FieldCipher] = None,
        fields: Optional[Dict[str, Tuple[str, ...]]] = None,
        batch_size: Optional[int] = None,
    ):
        self.store = store
        self.cipher = cipher or FieldCipher()
        self.fields = fields or ENCRYPTED_FIELDS
        self.batch_size = batch_size
        self.logs = MigrationLogRepository(store)

    def _key_meta(self) -> Dict[str, str]:
        return {"key_fingerprint": self.cipher.key_fingerprint(), "key_derivation": self.cipher.derivation_mode()}

    def _selected(self, collections: Optional[Iterable[str]]) -> Dict[str, Tuple[str, ...]]:
        if not collections:
            return dict(self.fields)
        wanted = set(collections)
        return {c: f for c, f in self.fields.items() if c in wanted}

    def audit(self, collections: Optional[Iterable[str]] = None) -> BatchReport:
        t = Timer()
        report = BatchReport(name=AUDIT_TOOL, dry_run=True, meta=self._key_meta())
        for collection, fields in self._selected(collections).items():
            for doc in DocumentRepository(collection, self.store).stream():
                for f in fields:
                    key = f"{collection}/{doc['doc_id']}.{f}"
                    state = self.cipher.inspect(doc.get(f))
                    if state == CipherState.ENCRYPTED:
                        report.add(key, ItemStatus.OK, "encrypted")
                    elif state == CipherState.EMPTY:
                        report.add(key, ItemStatus.SKIPPED, "empty")
                    else:
                        report.add(key, ItemStatus.FAILED, state.value)
        if report.reasons().get(f"failed/{CipherState.KEY_MISMATCH.value}"):
            log.error(
                "decrypt_key_mismatch",
                extra={"extra": {**self._key_meta(), "fields": report.reasons()[f"failed/{CipherState.KEY_MISMATCH.value}"]}},
            )
        log.info(
            "encryption_audit_done",
            extra={"extra": {**self._key_meta(), "total": report.total, "failed": report.failed, "duration_ms": t.ms()}},
        )
        return report

    def encrypt_plaintext(self, execute: bool = False, collections: Optional[Iterable[str]] = None) -> BatchReport:
        """Encrypt plaintext PII and re-encode legacy hex ciphertext. Idempotent."""
        t = Timer()
        report = BatchReport(name=REPAIR_TOOL, dry_run=not execute, meta=self._key_meta())
        writer = BatchWriter(self.store, max_writes=self.batch_size) if execute else None

        for collection, fields in self._selected(collections).items():
            repo = DocumentRepository(collection, self.store)
            for doc in repo.stream():
                for f in fields:
                    key = f"{collection}/{doc['doc_id']}.{f}"
                    value = doc.get(f)
                    state = self.cipher.inspect(value)
                    if state == CipherState.EMPTY:
                        report.add(key, ItemStatus.SKIPPED, "empty")
                        continue
                    if state == CipherState.ENCRYPTED:
                        report.add(key, ItemStatus.SKIPPED, "already_encrypted")
                        continue
                    if state in (CipherState.KEY_MISMATCH, CipherState.MALFORMED):
                        report.add(key, ItemStatus.FAILED, state.value)
                        continue

                    if state == CipherState.LEGACY_HEX:
                        try:
                            plaintext = self.cipher.decrypt_legacy_hex(value)
                        except DecryptionError:
                            report.add(key, ItemStatus.FAILED, CipherState.KEY_MISMATCH.value)
                            continue
                        action = "reencoded"
                    else:
                        plaintext = value
                        action = "encrypted"

                    if writer is None:
                        report.add(key, ItemStatus.OK, DRY_RUN_REASONS[action])
                        continue
                    item = report.add(key, ItemStatus.OK, action)
                    # No before/after values: the field holds PII.
                    writer.add(
                        item,
                        [
                            ("update", repo.ref(doc["doc_id"]), {f: self.cipher.encrypt(plaintext)}),
                            self.logs.entry_write(REPAIR_TOOL, action, collection, doc["doc_id"], f),
                        ],
                    )

        if writer:
            writer.flush()
            report.meta["commits"] = writer.commits
        log.info(
            "encrypt_plaintext_done",
            extra={"extra": {**self._key_meta(), "execute": execute, "ok": report.ok, "failed": report.failed, "duration_ms": t.ms()}},
        )
        return report
