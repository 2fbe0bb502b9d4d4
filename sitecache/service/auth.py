from __future__ import annotations

from typing import Any, Mapping, Optional

from sitecache.logging import get_logger
from sitecache.service.errors import RemoteError
from sitecache.service.remote import AuthRemote
from sitecache.storage.kv import KeyValueStore
from sitecache.storage.models import CurrentUser, Outcome, error_message

logger = get_logger(__name__)

USER_KEY = "vini_user"
TOKEN_KEY = "vini_token"


class AuthService:
    """Holds the current user and its opaque bearer token.

    Credentials are issued by the remote store; this service only exchanges
    them and persists the resulting session under ``vini_user``/``vini_token``.
    """

    def __init__(self, remote: AuthRemote, kv: KeyValueStore) -> None:
        self.remote = remote
        self.kv = kv
        self._current: Optional[CurrentUser] = None

    @property
    def current_user(self) -> Optional[CurrentUser]:
        return self._current

    @property
    def bearer_token(self) -> Optional[str]:
        return self._current.bearer_token if self._current else None

    def _persist(self, user: CurrentUser) -> None:
        self.kv.set(USER_KEY, user.to_dict())
        self.kv.set(TOKEN_KEY, user.bearer_token)

    def _forget(self) -> None:
        self.kv.delete(USER_KEY)
        self.kv.delete(TOKEN_KEY)

    def _accept(self, data: Mapping[str, Any], token: str, **overrides: Any) -> CurrentUser:
        user = CurrentUser.from_auth_payload(data, token)
        for key, value in overrides.items():
            setattr(user, key, value)
        self._current = user
        self._persist(user)
        return user

    def load_stored(self) -> Optional[CurrentUser]:
        """Adopt the persisted session without contacting the remote store."""
        stored = self.kv.get(USER_KEY)
        token = self.kv.get(TOKEN_KEY)
        if not isinstance(stored, dict) or not isinstance(token, str) or not token:
            return None
        self._current = CurrentUser.from_auth_payload(
            {**stored, "_id": stored.get("id")}, token
        )
        return self._current

    async def restore(self) -> Optional[CurrentUser]:
        """Load the persisted session and refresh it from the remote store.

        An explicit rejection ends the session; a transport failure keeps the
        stored user so the cache stays usable offline.
        """
        user = self.load_stored()
        if user is None:
            return None
        try:
            data = await self.remote.verify(user.bearer_token)
        except RemoteError as exc:
            logger.warning("auth_verify_unreachable", error=exc.message)
            return user
        if isinstance(data, dict) and data.get("_id"):
            return self._accept(data, user.bearer_token)
        logger.info("auth_session_rejected", reason=error_message(data, "invalid token"))
        await self.logout()
        return None

    async def login(self, username: str, password: str) -> Outcome:
        try:
            data = await self.remote.login(username, password)
        except RemoteError as exc:
            logger.error("auth_login_failed", username=username, error=exc.message)
            return Outcome.fail(exc.message, exc.error_code)
        if not isinstance(data, dict) or not data.get("token"):
            return Outcome.fail(error_message(data, "Login failed"), "unauthorized")
        user = self._accept(data, data["token"])
        logger.info("auth_login", user_id=user.identity, role=user.role)
        return Outcome.ok(record=user.to_dict())

    async def signup(self, email: str, password: str, name: str = "User") -> Outcome:
        try:
            data = await self.remote.register(
                {"name": name, "email": email, "password": password}
            )
        except RemoteError as exc:
            logger.error("auth_signup_failed", email=email, error=exc.message)
            return Outcome.fail(exc.message, exc.error_code)
        if not isinstance(data, dict) or not data.get("token"):
            return Outcome.fail(error_message(data, "Signup failed"), "validation_error")
        user = self._accept(data, data["token"], role="Owner", permission="full_control")
        logger.info("auth_signup", user_id=user.identity)
        return Outcome.ok(record=user.to_dict())

    async def logout(self) -> Outcome:
        self._current = None
        self._forget()
        return Outcome.ok()
