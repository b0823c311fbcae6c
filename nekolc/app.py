from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI

from nekolc.api.error_handling import register_exception_handlers
from nekolc.api.routes import router
from nekolc.api.schemas import API_VERSION
from nekolc.logging import get_logger, set_correlation_id
from nekolc.service.runtime import get_runtime, shutdown_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release the token ledger on shutdown."""
    try:
        runtime = get_runtime()
        logger.info(
            "startup_complete",
            auth_enabled=runtime.settings.auth_enabled,
            store_type=runtime.settings.storage_backend.value,
        )
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))
        raise

    yield

    try:
        shutdown_runtime()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="NekoLc Auth", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with X-Request-ID (client supplied or generated)."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    # Token responses must never be cached
    if request.url.path.startswith("/v0/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store")
    response.headers.setdefault("API-Version", API_VERSION)
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report token ledger liveness."""
    runtime = get_runtime()
    probe = getattr(runtime.store, "ping", None)
    store_ok = True
    if probe is not None:
        try:
            store_ok = await asyncio.wait_for(
                asyncio.to_thread(probe), HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
            store_ok = False
    return {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": {
            "store": {
                "status": "healthy" if store_ok else "unhealthy",
                "type": runtime.settings.storage_backend.value,
            }
        },
        "auth_enabled": runtime.settings.auth_enabled,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
