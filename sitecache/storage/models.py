from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

# Remote store object ids are 24 hex characters
OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")

IDENTITY_FIELDS = ("_id", "id")


def is_valid_identifier(value: Any) -> bool:
    """True when ``value`` may be sent to the remote store as a scope qualifier."""
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


@dataclass(frozen=True)
class TenantScope:
    company_id: Optional[str] = None
    site_id: Optional[str] = None
    generation: int = 0

    @property
    def site_valid(self) -> bool:
        return is_valid_identifier(self.site_id)

    @property
    def company_valid(self) -> bool:
        return is_valid_identifier(self.company_id)


@dataclass(frozen=True)
class RemoteIdentity:
    value: str


@dataclass(frozen=True)
class LocalIdentity:
    value: int


Identity = Union[RemoteIdentity, LocalIdentity]


def resolve_identity(raw: Any) -> Identity:
    """Classify a raw identity as remote (object id string) or local (integer)."""
    if isinstance(raw, (RemoteIdentity, LocalIdentity)):
        return raw
    if isinstance(raw, bool):
        raise ValueError("boolean is not an identity")
    if isinstance(raw, int):
        return LocalIdentity(raw)
    if isinstance(raw, str) and raw:
        # Path parameters arrive as strings; short digit runs are local ids
        if raw.isdigit() and not is_valid_identifier(raw):
            return LocalIdentity(int(raw))
        return RemoteIdentity(raw)
    raise ValueError(f"unrecognized identity: {raw!r}")


def strip_identity(raw: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in raw.items() if k not in IDENTITY_FIELDS}


@dataclass
class ConfirmedRecord:
    """Record bearing a remote-store-assigned identity."""

    identity: RemoteIdentity
    payload: Dict[str, Any] = field(default_factory=dict)
    site_id: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {**self.payload, "_id": self.identity.value}


@dataclass
class PendingRecord:
    """Record known only locally, not yet persisted remotely."""

    identity: LocalIdentity
    payload: Dict[str, Any] = field(default_factory=dict)
    site_id: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {**self.payload, "id": self.identity.value}


Record = Union[ConfirmedRecord, PendingRecord]


def record_from_remote(raw: Any) -> Optional[ConfirmedRecord]:
    """Build a confirmed record from a remote response, or None for error shapes."""
    if not isinstance(raw, dict):
        return None
    ident = raw.get("_id")
    if not ident and isinstance(raw.get("id"), str):
        ident = raw.get("id")
    if not isinstance(ident, str) or not ident:
        return None
    payload = strip_identity(raw)
    site_id = payload.get("siteId")
    return ConfirmedRecord(
        identity=RemoteIdentity(ident),
        payload=payload,
        site_id=site_id if isinstance(site_id, str) else None,
    )


def record_from_local(raw: Any, local_id: int) -> PendingRecord:
    """Wrap a locally persisted value as a pending record under ``local_id``."""
    payload = strip_identity(raw) if isinstance(raw, dict) else {"value": raw}
    site_id = payload.get("siteId")
    return PendingRecord(
        identity=LocalIdentity(local_id),
        payload=payload,
        site_id=site_id if isinstance(site_id, str) else None,
    )


def error_message(raw: Any, default: str) -> str:
    """Extract the human-readable message carried by a remote error shape."""
    if isinstance(raw, dict):
        for key in ("message", "error"):
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value
    return default


@dataclass(frozen=True)
class NameEntry:
    """Saved-list entry holding a plain name."""

    value: str
    kind: str = "name"

    @property
    def display_name(self) -> str:
        return self.value

    def to_raw(self) -> Any:
        return self.value


@dataclass
class RecordEntry:
    """Saved-list entry holding a named object (e.g. a supplier with contacts)."""

    value: Dict[str, Any]
    kind: str = "record"

    @property
    def display_name(self) -> str:
        name = self.value.get("name") or self.value.get("label") or ""
        return name if isinstance(name, str) else str(name)

    def to_raw(self) -> Any:
        return dict(self.value)


ListEntry = Union[NameEntry, RecordEntry]


def entry_from_raw(raw: Any) -> Optional[ListEntry]:
    if isinstance(raw, str):
        return NameEntry(raw)
    if isinstance(raw, dict):
        name = raw.get("name") or raw.get("label")
        if isinstance(name, str) and name:
            return RecordEntry(dict(raw))
    return None


@dataclass
class CurrentUser:
    identity: str
    bearer_token: str
    role: str = "Owner"
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    permission: str = "view_edit"

    @classmethod
    def from_auth_payload(cls, data: Mapping[str, Any], token: str) -> "CurrentUser":
        return cls(
            identity=str(data.get("_id") or data.get("id") or ""),
            bearer_token=token,
            role=data.get("role") or "Owner",
            username=data.get("username"),
            name=data.get("name"),
            email=data.get("email"),
            permission=data.get("permission") or "view_edit",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identity,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "permission": self.permission,
            "token": self.bearer_token,
        }


@dataclass
class Outcome:
    """Result of a context-surface mutation: ``{success, message?, record?}``."""

    success: bool
    message: Optional[str] = None
    record: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(
        cls, record: Optional[Dict[str, Any]] = None, message: Optional[str] = None
    ) -> "Outcome":
        return cls(success=True, message=message, record=record)

    @classmethod
    def fail(cls, message: str, error_code: Optional[str] = None) -> "Outcome":
        return cls(success=False, message=message, error_code=error_code)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            data["message"] = self.message
        if self.record is not None:
            data["record"] = self.record
        return data
