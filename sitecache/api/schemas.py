from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitecache.storage.models import Outcome

ERROR_CODES = {
    "validation_error",
    "unauthorized",
    "refused",
    "not_found",
    "remote_error",
    "server_error",
}


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in ERROR_CODES:
            raise ValueError(f"unknown error code {value}")
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class OutcomeResponse(BaseModel):
    """``{success, message?, record?}`` as returned by every mutation."""

    success: bool
    message: Optional[str] = None
    record: Optional[Any] = None

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "OutcomeResponse":
        return cls(success=outcome.success, message=outcome.message, record=outcome.record)


class ScopeResponse(BaseModel):
    company_id: Optional[str] = None
    site_id: Optional[str] = None
    generation: int = 0
    site_valid: bool = False


class ScopeUpdateRequest(BaseModel):
    """Either field may be sent; a company change resets the site first."""

    model_config = ConfigDict(extra="forbid")

    company_id: Optional[str] = None
    site_id: Optional[str] = None


class CollectionResponse(BaseModel):
    name: str
    items: List[Any] = Field(default_factory=list)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1, max_length=1024)


class SignupRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=256)
    password: str = Field(..., min_length=1, max_length=1024)
    name: str = Field("User", max_length=256)


class RefreshResponse(BaseModel):
    cycle_id: str
    generation: int
    applied: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    stale: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    migrated: Dict[str, int] = Field(default_factory=dict)
