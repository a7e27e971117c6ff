from __future__ import annotations

import uuid
from contextvars import ContextVar

# request_id: one HTTP request. run_id: one reconciliation run (CLI or API).
_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_run_id_var: ContextVar[str] = ContextVar("run_id", default="")


def set_request_id(rid: str) -> None:
    _request_id_var.set(rid or "")


def get_request_id() -> str:
    return _request_id_var.get() or ""


def clear_request_id() -> None:
    _request_id_var.set("")


def new_run_id() -> str:
    rid = str(uuid.uuid4())
    _run_id_var.set(rid)
    return rid


def get_run_id() -> str:
    return _run_id_var.get() or ""


def clear_run_id() -> None:
    _run_id_var.set("")
