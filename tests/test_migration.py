"""Tests for promoting legacy local records into the remote store."""

import asyncio

from conftest import SITE_A

from sitecache.service.errors import RemoteError
from sitecache.service.migration import content_hashes

LEGACY_MATERIALS = f"vini_materials_{SITE_A}"
LEDGER = f"vini_migration_ledger_materials_{SITE_A}"
SEAL = f"vini_migrated_materials_{SITE_A}"


def test_content_hashes_ignore_identity_and_count_repeats():
    digests = content_hashes(
        [{"id": 1, "name": "Cement"}, {"id": 2, "name": "Cement"}, {"name": "Sand"}]
    )

    assert digests[0].split(":")[0] == digests[1].split(":")[0]
    assert digests[0].endswith(":0")
    assert digests[1].endswith(":1")
    assert len(set(digests)) == 3


async def test_empty_remote_migrates_every_legacy_entry(make_session, kv, remote):
    kv.set(LEGACY_MATERIALS, [{"id": 1, "name": "Cement"}, {"id": 2, "name": "Sand"}])
    session = make_session()

    report = await session.sync.refresh_all()

    assert report.migrated["materials"] == 2
    stored = remote.records("materials")
    assert sorted(r["name"] for r in stored) == ["Cement", "Sand"]
    assert all(r["siteId"] == SITE_A for r in stored)
    assert {m["_id"] for m in session.crud.list("materials")} == {r["_id"] for r in stored}
    assert kv.get(LEGACY_MATERIALS) is None
    assert kv.get(LEDGER) is None
    assert kv.get(SEAL) is True


async def test_partial_failure_keeps_legacy_and_resumes(make_session, kv, remote):
    kv.set(
        LEGACY_MATERIALS,
        [{"name": "Cement"}, {"name": "Sand"}, {"name": "Steel"}],
    )
    session = make_session()
    # First create passes through, second one fails
    remote.fail("materials", "create", None)
    remote.fail("materials", "create", RemoteError("Remote store timed out"))

    first = await session.sync.refresh_all()

    assert first.migrated["materials"] == 1
    assert [r["name"] for r in remote.records("materials")] == ["Cement"]
    assert len(kv.get(LEGACY_MATERIALS)) == 3
    assert len(kv.get(LEDGER)) == 1
    assert kv.get(SEAL) is None

    second = await session.sync.refresh_all()

    assert second.migrated["materials"] == 2
    assert sorted(r["name"] for r in remote.records("materials")) == ["Cement", "Sand", "Steel"]
    assert sorted(m["name"] for m in session.crud.list("materials")) == [
        "Cement",
        "Sand",
        "Steel",
    ]
    assert kv.get(LEGACY_MATERIALS) is None
    assert kv.get(SEAL) is True


async def test_populated_remote_seals_without_migrating(make_session, kv, remote):
    remote.seed("materials", [{"name": "Bricks", "siteId": SITE_A}])
    kv.set(LEGACY_MATERIALS, [{"name": "Cement"}])
    session = make_session()

    report = await session.sync.refresh_all()

    assert "materials" not in report.migrated
    assert remote.call_count("create", "materials") == 0
    assert kv.get(SEAL) is True

    remote.resources["materials"] = []
    await session.sync.refresh_all()

    assert remote.call_count("create", "materials") == 0
    assert kv.get(LEGACY_MATERIALS) == [{"name": "Cement"}]


async def test_legacy_reports_are_tagged_with_their_type(make_session, kv, remote):
    kv.set(
        f"vini_concrete_tests_{SITE_A}",
        [{"id": 5, "location": "Column C1", "data": {"results": {"7": "21"}}}],
    )
    session = make_session()

    await session.sync.refresh_all()

    [stored] = remote.records("reports")
    assert stored["type"] == "concrete"
    assert stored["location"] == "Column C1"
    assert [t["location"] for t in session.crud.list("concrete_tests")] == ["Column C1"]
    assert session.crud.list("steel_tests") == []


async def test_placeholder_site_never_migrates(make_session, kv, remote):
    kv.set("vini_materials_1", [{"name": "Cement"}])
    session = make_session(site="1")

    report = await session.sync.refresh_all()

    assert "materials" in report.skipped
    assert remote.call_count("create") == 0
    assert kv.get("vini_materials_1") == [{"name": "Cement"}]


async def test_overlapping_refreshes_migrate_once(make_session, kv, remote):
    kv.set(LEGACY_MATERIALS, [{"name": "Cement"}, {"name": "Sand"}])
    session = make_session()

    reports = await asyncio.gather(session.sync.refresh_all(), session.sync.refresh_all())

    assert sorted(r["name"] for r in remote.records("materials")) == ["Cement", "Sand"]
    assert sum(r.migrated.get("materials", 0) for r in reports) == 2
    assert sorted(m["name"] for m in session.crud.list("materials")) == ["Cement", "Sand"]
    assert kv.get(SEAL) is True


async def test_focus_refresh_during_explicit_refresh_migrates_once(make_session, kv, remote):
    kv.set(LEGACY_MATERIALS, [{"name": "Cement"}])
    session = make_session()

    focus = session.sync.notify_focus()
    await session.sync.refresh_all()
    await focus

    assert [r["name"] for r in remote.records("materials")] == ["Cement"]
    assert remote.call_count("create", "materials") == 1
    assert [m["name"] for m in session.crud.list("materials")] == ["Cement"]


async def test_non_record_legacy_entries_do_not_block_migration(make_session, kv, remote):
    kv.set(LEGACY_MATERIALS, [{"name": "Cement"}, "Sand", 7])
    session = make_session()

    report = await session.sync.refresh_all()

    assert report.migrated["materials"] == 1
    assert [r["name"] for r in remote.records("materials")] == ["Cement"]
    assert kv.get(LEGACY_MATERIALS) is None
    assert kv.get(SEAL) is True
