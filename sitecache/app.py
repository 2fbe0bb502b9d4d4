from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI

from sitecache.api.error_handling import register_exception_handlers
from sitecache.api.routes import router
from sitecache.config import Settings
from sitecache.logging import get_logger

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore the stored session on startup and close it on shutdown."""
    from sitecache.service.runtime import get_runtime

    try:
        runtime = get_runtime()
        await runtime.startup(polling=not _settings.test_mode)
        logger.info("cache_started", site_id=runtime.require_session().resolver.site_id)
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))

    yield

    try:
        await get_runtime().shutdown()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Site Cache", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_no_store_header(request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store")
    response.headers.setdefault("API-Version", __version__)
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report local store, session and polling state."""
    from sitecache.service.runtime import get_runtime

    runtime = get_runtime()
    session = runtime.session
    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True

    verify = getattr(runtime.kv, "verify_connection", None)
    if verify is not None:
        try:
            verify()
            checks["kv"] = {"status": "healthy", "type": runtime.settings.kv_backend.value}
        except Exception as exc:
            logger.error("health_check_kv_failed", error=str(exc))
            checks["kv"] = {"status": "unhealthy", "type": runtime.settings.kv_backend.value}
            healthy = False
    else:
        checks["kv"] = {"status": "healthy", "type": type(runtime.kv).__name__}

    checks["session"] = {
        "status": "active" if session is not None else "idle",
        "authenticated": runtime.token() is not None,
        "polling": bool(session is not None and session.sync.running),
        "site_id": session.resolver.site_id if session is not None else None,
    }
    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
