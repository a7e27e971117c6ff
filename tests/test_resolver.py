import pytest

from reconcile.resolver import VIA_BUSINESS_ID, VIA_NATIVE, VIA_NOT_FOUND, VIA_SCAN, ReferenceResolver

COMPANY_DOC = "Cmp0000000000000000A"


@pytest.fixture
def resolver(fake_db, store):
    fake_db.seed("companies", COMPANY_DOC, {"id": "100002", "name": "Acme Uniforms"})
    fake_db.seed("companies", "Cmp0000000000000000B", {"id": "100003", "name": "Globex"})
    return ReferenceResolver(store)


def test_native_reference_resolves_directly(fake_db, resolver):
    res = resolver.resolve(fake_db.ref("companies", COMPANY_DOC), "companies")
    assert res.found and res.via == VIA_NATIVE
    assert res.doc_id == COMPANY_DOC
    assert res.business_id == "100002"


def test_business_id_resolves_to_same_document(resolver):
    res = resolver.resolve("100002", "companies")
    assert res.found and res.via == VIA_BUSINESS_ID
    assert res.doc_id == COMPANY_DOC
    assert resolver.resolve(100002, "companies").doc_id == COMPANY_DOC


def test_auto_id_and_path_strings_resolve_natively(resolver):
    assert resolver.resolve(COMPANY_DOC, "companies").via == VIA_NATIVE
    assert resolver.resolve(f"companies/{COMPANY_DOC}", "companies").via == VIA_NATIVE


def test_unrelated_value_is_not_found_without_raising(resolver):
    for value in ("999999", "nope", None, "", {"x": 1}):
        res = resolver.resolve(value, "companies")
        assert not res.found
        assert res.via == VIA_NOT_FOUND
    with pytest.raises(ValueError):
        resolver.reference_for(resolver.resolve("999999", "companies"))


def test_scan_matches_normalized_forms(fake_db, resolver):
    # Reference pointing into the wrong collection, same document id.
    res = resolver.resolve(fake_db.ref("vendors", COMPANY_DOC.lower()), "companies")
    assert res.found and res.via == VIA_SCAN
    assert res.doc_id == COMPANY_DOC


def test_duplicate_business_id_is_ambiguous(fake_db, resolver):
    fake_db.seed("companies", "Cmp0000000000000000C", {"id": "100002"})
    res = resolver.resolve("100002", "companies")
    assert res.found and res.ambiguous
    assert res.candidates == 2


def test_native_check_and_reference(fake_db, resolver):
    ref = fake_db.ref("companies", COMPANY_DOC)
    res = resolver.resolve("100002", "companies")
    assert resolver.reference_for(res) == ref
    assert resolver.is_native_to(ref, res)
    assert not resolver.is_native_to("100002", res)


def test_scan_index_is_cached_until_invalidated(fake_db, resolver):
    assert not resolver.resolve("acme-x", "companies").found
    fake_db.seed("companies", "Cmp0000000000000000D", {"id": "ACME-X"})
    # Equality lookup is case-sensitive; only the scan index folds case.
    assert not resolver.resolve("acme-x", "companies").found
    resolver.invalidate("companies")
    assert resolver.resolve("acme-x", "companies").doc_id == "Cmp0000000000000000D"
