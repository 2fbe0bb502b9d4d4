"""Tests for record identities, list entries and outcomes."""

import pytest

from sitecache.storage.collections import CollectionStore
from sitecache.storage.models import (
    ConfirmedRecord,
    CurrentUser,
    LocalIdentity,
    NameEntry,
    Outcome,
    PendingRecord,
    RecordEntry,
    RemoteIdentity,
    TenantScope,
    entry_from_raw,
    error_message,
    is_valid_identifier,
    record_from_remote,
    resolve_identity,
)


class TestIdentifiers:
    def test_object_id_is_valid(self):
        assert is_valid_identifier("64f1c2a9e3b4d5f6a7b8c9d0")

    @pytest.mark.parametrize("value", ["1", "", None, 1, "64f1c2a9e3b4d5f6a7b8c9dz"])
    def test_invalid_identifiers(self, value):
        assert not is_valid_identifier(value)

    def test_placeholder_site_is_not_valid_scope(self):
        scope = TenantScope(company_id="64f1c2a9e3b4d5f6a7b8c9d0", site_id="1")
        assert scope.company_valid
        assert not scope.site_valid


class TestResolveIdentity:
    def test_int_is_local(self):
        assert resolve_identity(7) == LocalIdentity(7)

    def test_digit_string_is_local(self):
        assert resolve_identity("7") == LocalIdentity(7)

    def test_object_id_is_remote(self):
        assert resolve_identity("64f1c2a9e3b4d5f6a7b8c9d0") == RemoteIdentity(
            "64f1c2a9e3b4d5f6a7b8c9d0"
        )

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            resolve_identity(True)

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            resolve_identity("")


class TestRecords:
    def test_record_from_remote_requires_identity(self):
        assert record_from_remote({"message": "Not authorized"}) is None
        assert record_from_remote(["not", "a", "dict"]) is None

    def test_record_from_remote_keeps_payload(self):
        record = record_from_remote(
            {"_id": "64f1c2a9e3b4d5f6a7b8c9d0", "name": "Cement", "siteId": "s"}
        )
        assert isinstance(record, ConfirmedRecord)
        assert record.site_id == "s"
        assert record.to_dict() == {
            "_id": "64f1c2a9e3b4d5f6a7b8c9d0",
            "name": "Cement",
            "siteId": "s",
        }

    def test_pending_record_renders_local_id(self):
        record = PendingRecord(identity=LocalIdentity(3), payload={"name": "Photo"})
        assert record.to_dict() == {"name": "Photo", "id": 3}
        assert not record.confirmed

    def test_pending_from_raw_reuses_integer_id(self):
        store = CollectionStore(["site_images"])
        kept = store.pending_from_raw({"id": 41, "uri": "file://a"})
        fresh = store.pending_from_raw({"uri": "file://b"})

        assert kept.identity == LocalIdentity(41)
        assert fresh.identity == LocalIdentity(42)


class TestEntries:
    def test_string_is_name_entry(self):
        entry = entry_from_raw("Cement")
        assert entry == NameEntry("Cement")
        assert entry.display_name == "Cement"

    def test_named_dict_is_record_entry(self):
        entry = entry_from_raw({"name": "ACME", "phone": "123"})
        assert isinstance(entry, RecordEntry)
        assert entry.display_name == "ACME"
        assert entry.to_raw() == {"name": "ACME", "phone": "123"}

    def test_unnamed_dict_is_rejected(self):
        assert entry_from_raw({"phone": "123"}) is None
        assert entry_from_raw(5) is None


class TestOutcome:
    def test_ok_omits_empty_fields(self):
        assert Outcome.ok().as_dict() == {"success": True}

    def test_fail_carries_message(self):
        outcome = Outcome.fail("Select a site", "refused")
        assert outcome.as_dict() == {"success": False, "message": "Select a site"}
        assert outcome.error_code == "refused"

    def test_error_message_prefers_remote_text(self):
        assert error_message({"message": "Denied"}, "fallback") == "Denied"
        assert error_message({"error": "Boom"}, "fallback") == "Boom"
        assert error_message(None, "fallback") == "fallback"


def test_current_user_round_trip():
    user = CurrentUser.from_auth_payload(
        {"_id": "u1", "username": "eng", "role": "Site Engineer"}, "tok"
    )
    assert user.identity == "u1"
    assert user.permission == "view_edit"
    assert user.to_dict()["token"] == "tok"
