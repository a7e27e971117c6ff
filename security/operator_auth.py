from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Set

from fastapi import Depends, HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from config.settings import settings

log = logging.getLogger("uniform.security.operator_auth")


@dataclass(frozen=True)
class Operator:
    sub: str
    email: str
    claims: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.claims.get(key, default)


def _split_csv(v: str) -> Set[str]:
    return {x.strip() for x in (v or "").split(",") if x.strip()}


def _bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing_bearer_token")
    return auth.split(" ", 1)[1].strip()


def _check_allowlists(sub: str, email: str) -> None:
    allowed_subs = _split_csv(settings.OPERATOR_INVOKER_SUBS)
    allowed_emails = _split_csv(settings.OPERATOR_INVOKER_EMAILS)
    if allowed_subs and sub not in allowed_subs:
        raise HTTPException(status_code=403, detail="operator_sub_not_allowed")
    if allowed_emails and email not in allowed_emails:
        raise HTTPException(status_code=403, detail="operator_email_not_allowed")


def verify_operator_request(request: Request) -> Operator:
    """Verify the Google-signed ID token on an admin request.

    Reconciliation endpoints can rewrite or delete production records, so the
    audience must be configured and an allow-list, when set, must match.
    """
    token = _bearer_token(request)
    audience = settings.OPERATOR_AUTH_AUDIENCE
    if not audience:
        raise HTTPException(status_code=500, detail="operator_auth_audience_not_configured")

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        log.warning("operator_auth_verify_failed", extra={"extra": {"error": str(e)}})
        raise HTTPException(status_code=401, detail="invalid_operator_token")

    operator = Operator(sub=claims.get("sub", ""), email=claims.get("email", ""), claims=dict(claims))
    _check_allowlists(operator.sub, operator.email)
    request.state.operator_sub = operator.sub
    return operator


def require_operator_auth(request: Request) -> Operator:
    return verify_operator_request(request)


OperatorClaims = Depends(require_operator_auth)
