from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for cache-layer failures.

    Each class carries a stable ``error_code`` and the HTTP status used by the
    API surface. The CRUD façade turns these into failure outcomes, so in-process
    consumers never see them raised:
    - refused (409): preconditions unmet (no session, no valid scope)
    - unauthorized (401): no bearer credential
    - not_found (404): identity not present in the collection
    - remote_error (502): transport failure or non-conforming payload
    - validation_error (400): unknown collection or malformed input
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Input validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class UnknownCollectionError(ValidationError):
    """Collection name is not registered."""
    pass


class RefusalError(ServiceError):
    """Operation preconditions are not met (409)."""
    status_code = 409
    error_code = "refused"


class NotAuthenticatedError(RefusalError):
    """No bearer credential is available (401)."""
    status_code = 401
    error_code = "unauthorized"


class ScopeError(RefusalError):
    """No active scope identifier valid for the remote store."""
    pass


class NotFoundError(ServiceError):
    """Identity not present in the collection (404)."""
    status_code = 404
    error_code = "not_found"


class RemoteError(ServiceError):
    """Remote call failed or returned a non-conforming payload (502)."""
    status_code = 502
    error_code = "remote_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "UnknownCollectionError",
    "RefusalError",
    "NotAuthenticatedError",
    "ScopeError",
    "NotFoundError",
    "RemoteError",
]
