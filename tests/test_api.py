import pytest
from fastapi.testclient import TestClient

from app.api_service import app
from config.settings import settings
from security.operator_auth import Operator, require_operator_auth

COMPANY = "Cmp0000000000000000A"


@pytest.fixture
def client(fake_db, store):
    fake_db.seed("companies", COMPANY, {"id": "100001"})
    fake_db.seed("employees", "emp-1", {"id": "300001", "companyId": "100001", "email": "plain@example.com"})
    app.state.store = store
    app.dependency_overrides[require_operator_auth] = lambda: Operator(sub="operator-1", email="ops@example.com", claims={"aud": "uniform-dataops"})
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.store = None


def test_healthz_and_health(client):
    assert client.get("/healthz").json() == {"ok": True}
    body = client.get("/health").json()
    assert body["firestore_ok"] is True
    assert body["api_execute_enabled"] is False


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"x-request-id": "req-123"})
    assert resp.headers["X-Request-Id"] == "req-123"


def test_admin_requires_bearer_token(client):
    app.dependency_overrides.clear()
    resp = client.get("/admin/relationships/census")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "missing_bearer_token"


def test_resolve_endpoint(client):
    body = client.get("/admin/resolve", params={"collection": "companies", "value": "100001"}).json()
    assert body["found"] is True
    assert body["doc_id"] == COMPANY
    assert body["reference"] == f"ref:companies/{COMPANY}"


def test_census_endpoint(client):
    body = client.get("/admin/relationships/census", params={"collection": "employees"}).json()
    assert body["fields"]["employees.companyId"]["business_id"] == 1


def test_reconcile_execute_is_gated(client, fake_db, monkeypatch):
    resp = client.post("/admin/relationships/reconcile", params={"execute": "true"})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "api_execute_disabled"

    dry = client.post("/admin/relationships/reconcile", params={"collection": "employees"}).json()
    assert dry["dry_run"] is True
    assert dry["reasons"]["ok/would_convert"] == 1
    assert dry["run_id"]

    monkeypatch.setattr(settings, "ALLOW_API_EXECUTE", True)
    done = client.post("/admin/relationships/reconcile", params={"execute": "true", "collection": "employees"}).json()
    assert done["dry_run"] is False
    assert fake_db.doc("employees", "emp-1")["companyId"] == fake_db.ref("companies", COMPANY)


def test_encryption_audit_endpoint(client, monkeypatch):
    monkeypatch.setattr(settings, "ENCRYPTION_KEY", "api-test-secret")
    body = client.get("/admin/encryption/audit", params={"collection": "employees"}).json()
    assert body["reasons"]["failed/plaintext"] == 1
    assert body["key_derivation"] == "sha256"


def test_encryption_audit_without_key_is_unavailable(client, monkeypatch):
    monkeypatch.setattr(settings, "ENCRYPTION_KEY", "")
    resp = client.get("/admin/encryption/audit")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "encryption_key_not_configured"


def test_orphans_and_business_ids_endpoints(client):
    assert client.get("/admin/orphans", params={"check": "employees_without_company"}).json()["failed"] == 0
    body = client.get("/admin/business-ids/audit", params={"collection": "companies"}).json()
    assert body["reasons"] == {"ok/valid": 1}


def test_whoami_reports_operator(client):
    body = client.get("/admin/whoami").json()
    assert body["operator"] == {"sub": "operator-1", "email": "ops@example.com", "aud": "uniform-dataops"}
