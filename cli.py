#!/usr/bin/env python3
"""Operator CLI for the uniform data-integrity tools.

Every command that writes is a dry run unless ``--execute`` is given, and
``--execute`` asks for confirmation unless ``--yes`` is given too.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import GoogleAuthError

from config.settings import settings
from models.identifiers import describe
from models.schema import RELATIONSHIPS
from ops.metrics import timed
from ops.structured_logger import setup_logging
from reconcile.business_ids import BusinessIdAuditor
from reconcile.duplicates import STRATEGIES, STRATEGY_MERGE, DuplicateAdminFixer
from reconcile.encryption_audit import EncryptionAuditor
from reconcile.orphans import OrphanAuditor
from reconcile.outcome import BatchReport
from reconcile.relationships import RelationshipReconciler
from reconcile.resolver import ReferenceResolver
from security.field_crypto import KEY_BYTES, EncryptionConfigError, FieldCipher
from storage.firestore_client import DataStore
from utils.request_context import clear_run_id, new_run_id

log = logging.getLogger("uniform.cli")


def open_store() -> DataStore:
    return DataStore().open()


def confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _emit(args: argparse.Namespace, payload: Dict[str, Any], text: Optional[str] = None) -> None:
    if args.json or text is None:
        print(json.dumps(payload, ensure_ascii=False, indent=2, default=describe))
    else:
        print(text)


def _emit_report(args: argparse.Namespace, report: BatchReport) -> int:
    _emit(args, report.to_dict(include_skipped=args.verbose), report.render())
    return report.exit_code(strict=args.strict)


def _execute_allowed(args: argparse.Namespace, what: str) -> bool:
    if not getattr(args, "execute", False):
        return False
    if args.yes or confirm(f"Apply {what} to project '{settings.FIRESTORE_PROJECT_ID or '(adc)'}'?"):
        return True
    raise SystemExit("aborted")


def _cipher(args: argparse.Namespace) -> FieldCipher:
    return FieldCipher(args.secret)


def _run_with_store(args: argparse.Namespace, fn: Callable[[DataStore], int]) -> int:
    store = open_store()
    run_id = new_run_id()
    try:
        with timed(log, "command_done", command=args.command, run_id=run_id) as fields:
            code = fn(store)
            fields["exit_code"] = code
        return code
    finally:
        clear_run_id()
        store.close()


def handle_key_info(args: argparse.Namespace) -> int:
    cipher = _cipher(args)
    secret = args.secret if args.secret is not None else settings.ENCRYPTION_KEY
    payload = {
        "derivation": cipher.derivation_mode(),
        "secret_bytes": len(secret.encode("utf-8")),
        "key_bytes": KEY_BYTES,
        "fingerprint": cipher.key_fingerprint(),
    }
    _emit(args, payload, "\n".join(f"{k:<14}{v}" for k, v in payload.items()))
    return 0


def handle_encrypt(args: argparse.Namespace) -> int:
    print(_cipher(args).encrypt(args.value))
    return 0


def handle_decrypt(args: argparse.Namespace) -> int:
    print(_cipher(args).decrypt(args.value))
    return 0


def handle_resolve(args: argparse.Namespace) -> int:
    def run(store: DataStore) -> int:
        resolver = ReferenceResolver(store)
        res = resolver.resolve(args.value, args.collection)
        payload = {
            "collection": args.collection,
            "value": args.value,
            "found": res.found,
            "via": res.via,
            "candidates": res.candidates,
            "doc_id": res.doc_id,
            "business_id": res.business_id,
            "reference": describe(resolver.reference_for(res)) if res.found else None,
        }
        _emit(args, payload, "\n".join(f"{k:<14}{v}" for k, v in payload.items()))
        return 0 if res.found else 1

    return _run_with_store(args, run)


def handle_census(args: argparse.Namespace) -> int:
    def run(store: DataStore) -> int:
        result = RelationshipReconciler(store).census(args.collection)
        lines = [f"{'field':<34}{'total':>7}{'native':>8}{'path':>6}{'autoid':>8}{'bizid':>7}{'miss':>6}{'inval':>7}"]
        for label, c in result["fields"].items():
            lines.append(
                f"{label:<34}{c['total']:>7}{c['native']:>8}{c['path_string']:>6}{c['auto_id_string']:>8}"
                f"{c['business_id']:>7}{c['missing']:>6}{c['invalid'] + c['native_wrong_collection']:>7}"
            )
        lines.append(f"needs_migration: {result['needs_migration']}")
        _emit(args, result, "\n".join(lines))
        return 1 if args.strict and result["needs_migration"] else 0

    return _run_with_store(args, run)


def handle_reconcile(args: argparse.Namespace) -> int:
    execute = _execute_allowed(args, "relationship conversion")
    return _run_with_store(args, lambda store: _emit_report(args, RelationshipReconciler(store).reconcile(execute=execute, collections=args.collection)))


def handle_orphans(args: argparse.Namespace) -> int:
    return _run_with_store(args, lambda store: _emit_report(args, OrphanAuditor(store).audit(args.check)))


def handle_cleanup_orphans(args: argparse.Namespace) -> int:
    execute = _execute_allowed(args, "orphan deletion")
    return _run_with_store(
        args,
        lambda store: _emit_report(args, OrphanAuditor(store).cleanup(execute=execute, export_dir=args.export_dir, names=args.check)),
    )


def handle_duplicate_admins(args: argparse.Namespace) -> int:
    execute = _execute_allowed(args, f"duplicate admin fix ({args.strategy})")
    return _run_with_store(args, lambda store: _emit_report(args, DuplicateAdminFixer(store).fix(strategy=args.strategy, execute=execute)))


def handle_encryption_audit(args: argparse.Namespace) -> int:
    cipher = _cipher(args)
    return _run_with_store(args, lambda store: _emit_report(args, EncryptionAuditor(store, cipher=cipher).audit(args.collection)))


def handle_encrypt_plaintext(args: argparse.Namespace) -> int:
    cipher = _cipher(args)
    execute = _execute_allowed(args, "PII encryption")
    return _run_with_store(
        args,
        lambda store: _emit_report(args, EncryptionAuditor(store, cipher=cipher).encrypt_plaintext(execute=execute, collections=args.collection)),
    )


def handle_business_ids(args: argparse.Namespace) -> int:
    execute = _execute_allowed(args, "business id assignment")
    return _run_with_store(
        args,
        lambda store: _emit_report(args, BusinessIdAuditor(store).assign(execute=execute, collections=args.collection)),
    )


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Print the machine-readable report.")
    common.add_argument("--strict", action="store_true", help="Exit 1 when any item failed.")
    common.add_argument("--verbose", action="store_true", help="Include skipped items in --json output.")

    writes = argparse.ArgumentParser(add_help=False)
    writes.add_argument("--execute", action="store_true", help="Apply changes (default: dry run).")
    writes.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")

    secret = argparse.ArgumentParser(add_help=False)
    secret.add_argument("--secret", default=None, help="Override ENCRYPTION_KEY for this command.")

    collections = argparse.ArgumentParser(add_help=False)
    collections.add_argument("--collection", action="append", default=None, help="Limit to a collection (repeatable).")

    parser = argparse.ArgumentParser(description="Uniform data-integrity tooling")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("key-info", parents=[common, secret], help="Show key derivation mode and fingerprint.")
    enc = subparsers.add_parser("encrypt", parents=[common, secret], help="Encrypt one value.")
    enc.add_argument("value")
    dec = subparsers.add_parser("decrypt", parents=[common, secret], help="Decrypt one value.")
    dec.add_argument("value")

    res = subparsers.add_parser("resolve", parents=[common], help="Show which document a value resolves to.")
    res.add_argument("collection")
    res.add_argument("value")

    subparsers.add_parser("census", parents=[common, collections], help="Relationship representation stats.")
    subparsers.add_parser(
        "reconcile",
        parents=[common, writes, collections],
        help=f"Convert relationship fields to native references ({len(RELATIONSHIPS)} fields).",
    )

    orph = subparsers.add_parser("orphans", parents=[common], help="Audit orphaned records.")
    orph.add_argument("--check", action="append", default=None, help="Limit to a named check (repeatable).")
    clean = subparsers.add_parser("cleanup-orphans", parents=[common, writes], help="Export then delete orphaned records.")
    clean.add_argument("--check", action="append", default=None, help="Limit to a named check (repeatable).")
    clean.add_argument("--export-dir", default=None, help="Backup directory (default: EXPORT_DIR).")

    dup = subparsers.add_parser("duplicate-admins", parents=[common, writes], help="Collapse duplicate company admins.")
    dup.add_argument("--strategy", choices=STRATEGIES, default=STRATEGY_MERGE)

    subparsers.add_parser("encryption-audit", parents=[common, secret, collections], help="Audit PII encryption state.")
    subparsers.add_parser(
        "encrypt-plaintext",
        parents=[common, writes, secret, collections],
        help="Encrypt plaintext PII and re-encode legacy hex ciphertext.",
    )
    subparsers.add_parser("business-ids", parents=[common, writes, collections], help="Audit and assign business ids.")
    return parser


COMMAND_HANDLERS = {
    "key-info": handle_key_info,
    "encrypt": handle_encrypt,
    "decrypt": handle_decrypt,
    "resolve": handle_resolve,
    "census": handle_census,
    "reconcile": handle_reconcile,
    "orphans": handle_orphans,
    "cleanup-orphans": handle_cleanup_orphans,
    "duplicate-admins": handle_duplicate_admins,
    "encryption-audit": handle_encryption_audit,
    "encrypt-plaintext": handle_encrypt_plaintext,
    "business-ids": handle_business_ids,
}


def main(argv: Optional[List[str]] = None) -> int:
    # Reports go to stdout, structured logs to stderr.
    setup_logging(settings.LOG_LEVEL, stream=sys.stderr)
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMAND_HANDLERS.get(args.command)
    if not handler:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except (EncryptionConfigError, GoogleAuthError, GoogleAPICallError, ValueError) as e:
        log.error("command_failed", extra={"extra": {"command": args.command, "error_type": type(e).__name__, "message": str(e)}})
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
