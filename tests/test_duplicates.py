import pytest

from reconcile.duplicates import DuplicateAdminFixer, merge_privileges, select_best_record

COMPANY = "Cmp0000000000000000A"
EMPLOYEE = "Emp0000000000000000A"


@pytest.fixture
def seeded(fake_db):
    fake_db.seed("companies", COMPANY, {"id": "100001"})
    fake_db.seed("employees", EMPLOYEE, {"id": "300001"})
    fake_db.seed("employees", "Emp0000000000000000B", {"id": "300002"})
    fake_db.seed(
        "companyadmins",
        "adm-old",
        {"companyId": "100001", "employeeId": "300001", "createdAt": "2024-01-01T00:00:00+00:00", "privileges": {"approveOrders": True}},
    )
    fake_db.seed(
        "companyadmins",
        "adm-new",
        {
            "companyId": fake_db.ref("companies", COMPANY),
            "employeeId": fake_db.ref("employees", EMPLOYEE),
            "createdAt": "2024-03-01T00:00:00+00:00",
            "privileges": {"approveOrders": False, "viewReports": True},
            "designation": "Admin",
        },
    )
    fake_db.seed("companyadmins", "adm-single", {"companyId": "100001", "employeeId": "300002"})
    fake_db.seed("companyadmins", "adm-broken", {"companyId": "100001", "employeeId": "399999"})
    return fake_db


def test_select_best_record_prefers_most_complete():
    a = {"doc_id": "a", "x": 1}
    b = {"doc_id": "b", "x": 1, "y": 2}
    assert select_best_record([a, b])["doc_id"] == "b"


def test_select_best_record_ties_break_on_updated_then_created():
    a = {"doc_id": "a", "updatedAt": "2024-02-01", "createdAt": "2024-01-01"}
    b = {"doc_id": "b", "updatedAt": "2024-05-01", "createdAt": "2024-01-02"}
    assert select_best_record([a, b])["doc_id"] == "b"
    c = {"doc_id": "c", "updatedAt": "2024-05-01", "createdAt": "2023-12-01"}
    assert select_best_record([a, b, c])["doc_id"] == "c"


def test_merge_privileges_keeps_any_grant():
    merged = merge_privileges([
        {"privileges": {"approveOrders": True, "limit": 5}},
        {"privileges": {"approveOrders": False, "viewReports": True, "limit": 10}},
        {"privileges": None},
    ])
    assert merged == {"approveOrders": True, "viewReports": True, "limit": 10}


def test_dry_run_groups_across_representations(seeded, store):
    report = DuplicateAdminFixer(store).fix()
    assert report.meta["duplicate_groups"] == 1
    fixes = [r for r in report.results if r.reason == "would_merge"]
    assert len(fixes) == 1
    assert fixes[0].detail == {"keep": "adm-new", "delete": "adm-old"}
    assert [r.key for r in report.results if r.reason == "unresolved_admin_link"] == ["companyadmins/adm-broken"]
    assert seeded.doc("companyadmins", "adm-old") is not None


def test_merge_keeps_one_record_with_merged_privileges(seeded, store):
    report = DuplicateAdminFixer(store).fix(execute=True)

    assert report.reasons()["ok/fixed"] == 1
    assert seeded.doc("companyadmins", "adm-old") is None
    kept = seeded.doc("companyadmins", "adm-new")
    assert kept["privileges"] == {"approveOrders": True, "viewReports": True}
    assert kept["companyId"] == seeded.ref("companies", COMPANY)
    assert kept["employeeId"] == seeded.ref("employees", EMPLOYEE)
    assert seeded.doc("companyadmins", "adm-single") is not None

    again = DuplicateAdminFixer(store).fix(execute=True)
    assert again.meta["duplicate_groups"] == 0


@pytest.mark.parametrize("strategy,kept,deleted", [("delete-oldest", "adm-new", "adm-old"), ("delete-newest", "adm-old", "adm-new")])
def test_age_strategies(seeded, store, strategy, kept, deleted):
    DuplicateAdminFixer(store).fix(strategy=strategy, execute=True)
    assert seeded.doc("companyadmins", kept) is not None
    assert seeded.doc("companyadmins", deleted) is None


def test_unknown_strategy_is_rejected(store):
    with pytest.raises(ValueError):
        DuplicateAdminFixer(store).fix(strategy="coin-flip")


def test_ambiguous_business_id_is_never_grouped(fake_db, store):
    fake_db.seed("companies", "Cmp0000000000000000B", {"id": "100002"})
    fake_db.seed("companies", "Cmp0000000000000000C", {"id": "100002"})
    fake_db.seed("employees", EMPLOYEE, {"id": "300001"})
    fake_db.seed("companyadmins", "adm-bizid", {"companyId": "100002", "employeeId": "300001"})
    fake_db.seed(
        "companyadmins",
        "adm-native",
        {"companyId": fake_db.ref("companies", "Cmp0000000000000000B"), "employeeId": fake_db.ref("employees", EMPLOYEE)},
    )

    report = DuplicateAdminFixer(store).fix(execute=True)

    assert report.meta["duplicate_groups"] == 0
    failed = [r for r in report.results if r.reason == "ambiguous_business_id"]
    assert [r.key for r in failed] == ["companyadmins/adm-bizid"]
    assert failed[0].detail["candidates"] == 2
    assert fake_db.doc("companyadmins", "adm-bizid")["companyId"] == "100002"
    assert fake_db.doc("companyadmins", "adm-native") is not None
