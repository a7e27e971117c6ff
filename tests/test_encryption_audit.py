import base64

import pytest

from models.schema import COL_MIGRATION_LOGS
from reconcile.encryption_audit import EncryptionAuditor
from security.field_crypto import CipherState, FieldCipher

FIELDS = {"employees": ("email", "mobile")}


def _hex_form(cipher, text):
    iv_b64, ct_b64 = cipher.encrypt(text).split(":")
    return base64.b64decode(iv_b64).hex() + ":" + base64.b64decode(ct_b64).hex()


def _foreign(cipher, text):
    other = FieldCipher("a-different-secret")
    return next(v for v in (other.encrypt(text) for _ in range(10)) if cipher.inspect(v) == CipherState.KEY_MISMATCH)


@pytest.fixture
def seeded(fake_db, cipher):
    fake_db.seed("employees", "emp-1", {"email": "amit.patel@example.com", "mobile": cipher.encrypt("9876543210")})
    fake_db.seed("employees", "emp-2", {"email": _hex_form(cipher, "ravi@example.com"), "mobile": None})
    fake_db.seed("employees", "emp-3", {"email": _foreign(cipher, "x@example.com"), "mobile": ""})
    return fake_db


@pytest.fixture
def auditor(store, cipher, seeded):
    return EncryptionAuditor(store, cipher=cipher, fields=FIELDS)


def test_audit_classifies_every_field(auditor, cipher):
    report = auditor.audit()
    reasons = report.reasons()
    assert reasons["ok/encrypted"] == 1
    assert reasons["failed/plaintext"] == 1
    assert reasons["failed/legacy_hex"] == 1
    assert reasons["failed/key_mismatch"] == 1
    assert reasons["skipped/empty"] == 2
    assert report.meta["key_fingerprint"] == cipher.key_fingerprint()


def test_encrypt_plaintext_dry_run_writes_nothing(seeded, auditor):
    report = auditor.encrypt_plaintext()
    reasons = report.reasons()
    assert reasons["ok/would_encrypt"] == 1
    assert reasons["ok/would_reencode"] == 1
    assert seeded.doc("employees", "emp-1")["email"] == "amit.patel@example.com"
    assert seeded.commits == 0


def test_encrypt_plaintext_execute_is_idempotent(seeded, auditor, cipher):
    mismatched = seeded.doc("employees", "emp-3")["email"]

    report = auditor.encrypt_plaintext(execute=True)
    assert report.reasons()["ok/encrypted"] == 1
    assert report.reasons()["ok/reencoded"] == 1
    assert report.reasons()["failed/key_mismatch"] == 1

    assert cipher.decrypt(seeded.doc("employees", "emp-1")["email"]) == "amit.patel@example.com"
    assert cipher.decrypt(seeded.doc("employees", "emp-2")["email"]) == "ravi@example.com"
    assert seeded.doc("employees", "emp-3")["email"] == mismatched

    # Log entries never carry PII.
    for entry in seeded.data[COL_MIGRATION_LOGS].values():
        assert entry["before"] is None and entry["after"] is None

    commits = seeded.commits
    again = auditor.encrypt_plaintext(execute=True)
    assert again.ok == 0
    assert seeded.commits == commits
    assert auditor.audit().reasons()["ok/encrypted"] == 3
