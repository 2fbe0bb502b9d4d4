"""Tests for the data context surface consumed by forms and lists."""

import pytest

from conftest import COMPANY, SITE_A, SITE_B

from sitecache.context import DataContext
from sitecache.service.runtime import Runtime

OTHER_COMPANY = "c0000000000000000000000b"
SITE_C = "d0000000000000000000000d"


async def _open(kv, remote):
    kv.set("vini_active_company_id", COMPANY)
    kv.set("vini_active_site", SITE_A)
    remote.seed(
        "companies",
        [{"_id": COMPANY, "name": "Mine"}, {"_id": OTHER_COMPANY, "name": "Other"}],
    )
    remote.seed(
        "sites",
        [
            {"_id": SITE_A, "name": "Tower", "companyId": COMPANY},
            {"_id": SITE_B, "name": "Depot", "companyId": COMPANY},
            {"_id": SITE_C, "name": "Bridge", "companyId": OTHER_COMPANY},
        ],
    )
    remote.auth.issue_token("eng", password="pw")
    runtime = Runtime(kv=kv, remote=remote)
    outcome = await runtime.login("eng", "pw", polling=False)
    assert outcome.success
    return runtime, DataContext(runtime)


async def test_collections_and_generated_mutators(kv, remote):
    runtime, ctx = await _open(kv, remote)

    created = await ctx.add_material({"name": "Cement", "quantity": 10})
    identity = created.record["_id"]
    updated = await ctx.update_material(identity, {"quantity": 4})
    assert [m["quantity"] for m in ctx.materials] == [4]
    deleted = await ctx.delete_material(identity)

    assert created.success and updated.success and deleted.success
    assert ctx.materials == []
    await runtime.shutdown()


async def test_name_list_mutators(kv, remote):
    runtime, ctx = await _open(kv, remote)

    await ctx.add_saved_trade("Mason")
    await ctx.update_saved_trade("Mason", "Head mason")

    assert ctx.saved_trades == ["Head mason"]
    await runtime.shutdown()


async def test_unknown_attribute_raises(kv, remote):
    runtime, ctx = await _open(kv, remote)

    with pytest.raises(AttributeError):
        ctx.add_widget
    with pytest.raises(AttributeError):
        ctx.widgets
    assert "add_material" in dir(ctx)
    await runtime.shutdown()


async def test_session_start_keeps_listed_scope(kv, remote):
    runtime, ctx = await _open(kv, remote)

    assert ctx.active_company == COMPANY
    assert ctx.active_site == SITE_A
    assert [s["name"] for s in ctx.sites] == ["Tower", "Depot"]
    await runtime.shutdown()


async def test_switch_company_selects_its_first_site(kv, remote):
    runtime, ctx = await _open(kv, remote)

    scope = await ctx.switch_company(OTHER_COMPANY)

    assert scope.company_id == OTHER_COMPANY
    assert scope.site_id == SITE_C
    assert [s["name"] for s in ctx.sites] == ["Bridge"]
    await runtime.shutdown()


async def test_deleting_active_site_clears_it(kv, remote):
    runtime, ctx = await _open(kv, remote)

    other = await ctx.delete_site(SITE_B)
    assert ctx.active_site == SITE_A
    active = await ctx.delete_site(SITE_A)

    assert other.success and active.success
    assert ctx.active_site is None
    assert ctx.sites == []
    await runtime.shutdown()


async def test_import_contacts_skips_duplicates(kv, remote):
    remote.seed(
        "contacts",
        [
            {"name": "Ravi", "number": "1", "siteId": SITE_A},
            {"name": "Ravi", "number": "1", "siteId": SITE_B},
            {"name": "Asha", "number": "2", "role": "Plumber", "siteId": SITE_B},
        ],
    )
    runtime, ctx = await _open(kv, remote)

    outcome = await ctx.import_contacts_from_site(SITE_B)

    assert outcome.record == {"count": 1}
    assert sorted(c["name"] for c in ctx.contacts) == ["Asha", "Ravi"]
    await runtime.shutdown()


async def test_concrete_result_is_merged(kv, remote):
    runtime, ctx = await _open(kv, remote)
    created = await ctx.add_concrete_test(
        {"location": "Column C1", "date": "2024-05-01", "data": {"results": {"7": "21"}}}
    )

    outcome = await ctx.update_concrete_test_result(created.record["_id"], "28", "32")

    assert outcome.success
    [report] = ctx.concrete_tests
    assert report["data"]["results"] == {"7": "21", "28": "32"}
    assert report["type"] == "concrete"
    await runtime.shutdown()


async def test_concrete_result_for_unknown_report(kv, remote):
    runtime, ctx = await _open(kv, remote)

    outcome = await ctx.update_concrete_test_result("e0000000000000000000000e", "7", "1")

    assert outcome.error_code == "not_found"
    await runtime.shutdown()


async def test_attendance_sheet_is_saved_once_per_date(kv, remote):
    runtime, ctx = await _open(kv, remote)

    await ctx.save_manpower_attendance("2024-05-01", [{"worker": "w1", "present": True}])
    await ctx.save_manpower_attendance("2024-05-01", [{"worker": "w1", "present": False}])

    [sheet] = ctx.manpower_attendance
    assert sheet["records"] == [{"worker": "w1", "present": False}]
    await runtime.shutdown()


async def test_logout_discards_session_data(kv, remote):
    remote.seed("materials", [{"name": "Cement", "siteId": SITE_A}])
    runtime, ctx = await _open(kv, remote)
    assert [m["name"] for m in ctx.materials] == ["Cement"]

    await ctx.logout()

    assert ctx.current_user is None
    assert ctx.materials == []
    outcome = await ctx.add_material({"name": "Sand"})
    assert outcome.error_code == "unauthorized"
    await runtime.shutdown()
