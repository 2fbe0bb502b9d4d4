"""Tests for the auth session held by the cache."""

from sitecache.service.auth import TOKEN_KEY, USER_KEY, AuthService
from sitecache.service.errors import RemoteError


def _service(remote, kv):
    return AuthService(remote.auth, kv)


async def test_login_persists_user_and_token(remote, kv):
    remote.auth.issue_token("eng", password="pw")
    auth = _service(remote, kv)

    outcome = await auth.login("eng", "pw")

    assert outcome.success
    assert auth.bearer_token == kv.get(TOKEN_KEY)
    assert kv.get(USER_KEY)["username"] == "eng"
    assert remote.authorized(auth.bearer_token)


async def test_login_with_wrong_password_fails(remote, kv):
    remote.auth.issue_token("eng", password="pw")
    auth = _service(remote, kv)

    outcome = await auth.login("eng", "nope")

    assert not outcome.success
    assert outcome.error_code == "unauthorized"
    assert outcome.message == "Invalid credentials"
    assert auth.current_user is None
    assert kv.get(TOKEN_KEY) is None


async def test_login_transport_failure(remote, kv):
    remote.fail("auth", "login", RemoteError("Failed to connect to remote store"))
    auth = _service(remote, kv)

    outcome = await auth.login("eng", "pw")

    assert not outcome.success
    assert outcome.error_code == "remote_error"


async def test_signup_makes_owner_with_full_control(remote, kv):
    auth = _service(remote, kv)

    outcome = await auth.signup("owner@example.com", "pw", "Asha")

    assert outcome.success
    assert outcome.record["role"] == "Owner"
    assert outcome.record["permission"] == "full_control"
    assert kv.get(USER_KEY)["email"] == "owner@example.com"


async def test_signup_rejected_by_remote(remote, kv):
    auth = _service(remote, kv)
    await auth.signup("owner@example.com", "pw")

    outcome = await _service(remote, kv).signup("owner@example.com", "pw")

    assert not outcome.success
    assert outcome.message == "User already exists"


async def test_restore_refreshes_stored_user(remote, kv):
    remote.auth.issue_token("eng", password="pw")
    await _service(remote, kv).login("eng", "pw")

    restored = await _service(remote, kv).restore()

    assert restored is not None
    assert restored.username == "eng"


async def test_restore_keeps_user_when_offline(remote, kv):
    remote.auth.issue_token("eng", password="pw")
    await _service(remote, kv).login("eng", "pw")
    remote.fail("auth", "verify", RemoteError("Failed to connect to remote store"))

    restored = await _service(remote, kv).restore()

    assert restored is not None
    assert kv.get(TOKEN_KEY) == restored.bearer_token


async def test_restore_drops_rejected_token(remote, kv):
    kv.set(USER_KEY, {"id": "u1", "username": "eng"})
    kv.set(TOKEN_KEY, "expired")
    auth = _service(remote, kv)

    restored = await auth.restore()

    assert restored is None
    assert kv.get(USER_KEY) is None
    assert kv.get(TOKEN_KEY) is None


async def test_logout_forgets_session(remote, kv):
    remote.auth.issue_token("eng", password="pw")
    auth = _service(remote, kv)
    await auth.login("eng", "pw")

    await auth.logout()

    assert auth.current_user is None
    assert kv.keys() == []
