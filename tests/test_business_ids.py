import pytest

from reconcile.business_ids import BusinessIdAuditor
from reconcile.resolver import ReferenceResolver


@pytest.fixture
def seeded(fake_db):
    fake_db.seed("companies", "c-ok", {"id": "100001"})
    fake_db.seed("companies", "c-missing", {"name": "No Id Ltd"})
    fake_db.seed("companies", "c-bad", {"id": 42})
    fake_db.seed("vendors", "v-dup-1", {"id": "200001"})
    fake_db.seed("vendors", "v-dup-2", {"id": "200001"})
    return fake_db


def test_audit_reports_problems_without_writing(seeded, store):
    report = BusinessIdAuditor(store, collections=["companies", "vendors"]).audit()
    reasons = report.reasons()
    assert reasons["ok/valid"] == 1
    assert reasons["failed/missing_business_id"] == 1
    assert reasons["failed/invalid_business_id"] == 1
    assert reasons["failed/duplicate_business_id"] == 2
    assert seeded.commits == 0


def test_assign_dry_run_proposes_unique_ids(seeded, store):
    report = BusinessIdAuditor(store, collections=["companies"]).assign()
    proposed = sorted(r.detail["after"] for r in report.results if r.reason == "would_assign")
    assert proposed == ["100002", "100003"]
    assert "id" not in seeded.doc("companies", "c-missing")


def test_assign_execute_writes_ids_and_leaves_duplicates(seeded, store):
    resolver = ReferenceResolver(store)
    assert not resolver.resolve("100002", "companies").found

    report = BusinessIdAuditor(store, resolver=resolver, collections=["companies", "vendors"]).assign(execute=True)
    assert report.reasons()["ok/assigned"] == 2
    assert report.reasons()["failed/duplicate_business_id"] == 2
    assert {seeded.doc("companies", "c-missing")["id"], seeded.doc("companies", "c-bad")["id"]} == {"100002", "100003"}
    assert seeded.doc("vendors", "v-dup-2")["id"] == "200001"
    assert resolver.resolve("100002", "companies").found


def test_empty_collection_starts_at_prefix_block(fake_db, store):
    fake_db.seed("employees", "e-1", {"firstName": "x"})
    report = BusinessIdAuditor(store, collections=["employees"]).assign(execute=True)
    assert report.results[0].detail["after"] == "300001"
    assert fake_db.doc("employees", "e-1")["id"] == "300001"
