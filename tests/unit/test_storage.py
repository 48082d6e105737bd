"""Unit tests for the user and audit log repositories"""

from __future__ import annotations

import time

import pytest

from ascended.storage.database import Database
from ascended.storage.repositories import Storage


@pytest.fixture
def store(tmp_path) -> Storage:
    database = Database(tmp_path / "storage.db")
    database.init_schema()
    return Storage(database)


def test_init_schema_is_idempotent(tmp_path):
    database = Database(tmp_path / "twice.db")
    database.init_schema()
    database.init_schema()


def test_upsert_creates_and_updates_user(store):
    created = store.upsert_user(user_id="u-1", email="a@example.com", first_name="A")
    assert created.first_name == "A"

    updated = store.upsert_user(user_id="u-1", email="a@example.com", first_name="Alpha")
    assert updated.first_name == "Alpha"
    assert updated.created_at == created.created_at
    assert store.users.count() == 1


def test_upsert_by_email_when_id_missing(store):
    store.upsert_user(user_id="u-1", email="a@example.com")
    user = store.upsert_user(user_id=None, email="a@example.com", last_name="Known")
    assert user.id == "u-1"
    assert user.last_name == "Known"


def test_upsert_with_new_subject_for_known_email_updates_existing_row(store):
    store.upsert_user(user_id="legacy-7", email="a@example.com", first_name="Old")

    user = store.upsert_user(user_id="u-1", email="a@example.com", first_name="New")

    assert user.id == "legacy-7"
    assert user.first_name == "New"
    assert store.get_user("u-1") is None
    assert store.users.count() == 1


def test_upsert_changes_email_of_existing_id(store):
    store.upsert_user(user_id="u-1", email="a@example.com")

    user = store.upsert_user(user_id="u-1", email="new@example.com")

    assert user.email == "new@example.com"
    assert store.get_user_by_email("a@example.com") is None


def test_upsert_without_id_or_known_email_fails(store):
    with pytest.raises(ValueError):
        store.upsert_user(user_id=None, email="nobody@example.com")


def test_get_user_missing(store):
    assert store.get_user("missing") is None


def test_user_public_dict_is_camel_case(store):
    user = store.upsert_user(
        user_id="u-1", email="a@example.com", first_name="A", profile_image_url="https://img"
    )
    assert user.to_public_dict() == {
        "id": "u-1",
        "email": "a@example.com",
        "firstName": "A",
        "lastName": None,
        "profileImageUrl": "https://img",
    }


def test_audit_log_defaults(store):
    store.create_audit_log(action="post_removed", performed_by="25531750", details={"postId": 7})

    [entry] = store.audit_logs.list_recent(10)
    assert entry["action"] == "post_removed"
    assert entry["reason"] == "Admin action: post_removed"
    assert entry["userAgent"] == "Unknown"
    assert entry["details"] == {"postId": 7}


def test_unknown_audit_action_kept_in_reason(store):
    store.create_audit_log(
        action="invalid_jwt_token",
        performed_by=None,
        reason="Security violation: invalid_jwt_token",
    )

    [entry] = store.audit_logs.list_recent(10)
    assert entry["action"] == "other_action"
    assert entry["reason"] == "Security violation: invalid_jwt_token"
    assert entry["performedBy"] is None


def test_list_recent_newest_first_and_limited(store):
    for action in ("user_warned", "user_banned", "post_removed"):
        store.create_audit_log(action=action, performed_by="25531750")

    entries = store.audit_logs.list_recent(2)
    assert [e["action"] for e in entries] == ["post_removed", "user_banned"]


def test_admin_analytics(store):
    store.upsert_user(user_id="u-1", email="a@example.com")
    store.upsert_user(user_id="u-2", email="b@example.com")
    store.create_audit_log(action="no_authentication", performed_by=None, reason="Security violation: no_authentication")
    store.create_audit_log(action="no_authentication", performed_by=None, reason="Security violation: no_authentication")

    analytics = store.admin_analytics(now=time.time())

    assert analytics["users"] == {"total": 2, "newLast7Days": 2}
    assert analytics["audit"]["last24Hours"] == {"Security violation: no_authentication": 2}


def test_admin_analytics_window(store):
    store.upsert_user(user_id="u-1", email="a@example.com")
    later = time.time() + 8 * 24 * 3600

    analytics = store.admin_analytics(now=later)

    assert analytics["users"] == {"total": 1, "newLast7Days": 0}
    assert analytics["audit"]["last24Hours"] == {}
