from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Path

from sitecache.api.schemas import (
    CollectionResponse,
    Envelope,
    LoginRequest,
    OutcomeResponse,
    RefreshResponse,
    ScopeResponse,
    ScopeUpdateRequest,
    SignupRequest,
)
from sitecache.context import DataContext
from sitecache.service.errors import ServiceError
from sitecache.service.runtime import get_runtime
from sitecache.storage.models import Outcome

router = APIRouter(prefix="/v1")

_CODE_TO_STATUS = {
    "validation_error": 400,
    "unauthorized": 401,
    "not_found": 404,
    "refused": 409,
    "remote_error": 502,
}


def _context() -> DataContext:
    return DataContext(get_runtime())


def _outcome_envelope(outcome: Outcome) -> Envelope:
    """Wrap a successful outcome; failures become error envelopes."""
    if not outcome.success:
        code = outcome.error_code or "validation_error"
        raise ServiceError(
            outcome.message or "operation failed",
            status_code=_CODE_TO_STATUS.get(code, 400),
            error_code=code,
        )
    return Envelope(status="ok", data=OutcomeResponse.from_outcome(outcome).model_dump())


def _scope_envelope(ctx: DataContext) -> Envelope:
    scope = ctx.scope
    return Envelope(
        status="ok",
        data=ScopeResponse(
            company_id=scope.company_id,
            site_id=scope.site_id,
            generation=scope.generation,
            site_valid=scope.site_valid,
        ).model_dump(),
    )


@router.get("/collections/{name}", response_model=Envelope, tags=["collections"])
async def list_collection(name: str = Path(..., max_length=64)):
    """Current in-memory contents of a collection; never triggers a fetch."""
    ctx = _context()
    get_runtime().registry.get(name)
    return Envelope(
        status="ok",
        data=CollectionResponse(name=name, items=ctx.collection(name)).model_dump(),
    )


@router.post("/collections/{name}", response_model=Envelope, status_code=201, tags=["collections"])
async def create_record(
    name: str = Path(..., max_length=64), body: Any = Body(...)
):
    ctx = _context()
    spec = get_runtime().registry.get(name)
    outcome = await getattr(ctx, f"add_{spec.entity}")(body)
    return _outcome_envelope(outcome)


@router.patch("/collections/{name}/{identity}", response_model=Envelope, tags=["collections"])
async def update_record(
    name: str = Path(..., max_length=64),
    identity: str = Path(..., max_length=256),
    body: Any = Body(...),
):
    ctx = _context()
    spec = get_runtime().registry.get(name)
    outcome = await getattr(ctx, f"update_{spec.entity}")(identity, body)
    return _outcome_envelope(outcome)


@router.delete("/collections/{name}/{identity}", response_model=Envelope, tags=["collections"])
async def delete_record(
    name: str = Path(..., max_length=64),
    identity: str = Path(..., max_length=256),
):
    ctx = _context()
    spec = get_runtime().registry.get(name)
    if spec.name == "sites":
        outcome = await ctx.delete_site(identity)
    else:
        outcome = await getattr(ctx, f"delete_{spec.entity}")(identity)
    return _outcome_envelope(outcome)


@router.get("/scope", response_model=Envelope, tags=["scope"])
async def get_scope():
    return _scope_envelope(_context())


@router.put("/scope", response_model=Envelope, tags=["scope"])
async def update_scope(body: ScopeUpdateRequest):
    """Switch company and/or site; a company switch picks that company's first site."""
    ctx = _context()
    fields = body.model_fields_set
    if "company_id" in fields and body.company_id != ctx.active_company:
        await ctx.switch_company(body.company_id)
    if "site_id" in fields:
        await ctx.set_site(body.site_id)
    return _scope_envelope(ctx)


@router.post("/refresh", response_model=Envelope, tags=["sync"])
async def refresh():
    report = await _context().refresh()
    return Envelope(status="ok", data=RefreshResponse(**report.as_dict()).model_dump())


@router.post("/focus", response_model=Envelope, status_code=202, tags=["sync"])
async def focus():
    """Host regained focus; a refresh pass is scheduled in the background."""
    _context().notify_focus()
    return Envelope(status="ok", data={"scheduled": True})


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    outcome = await _context().login(body.username, body.password)
    return _outcome_envelope(outcome)


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    outcome = await _context().signup(body.email, body.password, body.name)
    return _outcome_envelope(outcome)


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout():
    outcome = await _context().logout()
    return _outcome_envelope(outcome)
