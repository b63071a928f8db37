from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from warden.api.deps import require_claims
from warden.api.error_handling import register_exception_handlers
from warden.api.schemas import ClaimsOut, Envelope, ErrorBody
from warden.logging import get_logger, set_correlation_id
from warden.service.runtime import Runtime, get_runtime
from warden.service.tokens import SessionClaims
from warden.storage.errors import StoreError

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the coordination store connection on shutdown."""
    yield
    from warden.service import runtime as runtime_module

    if runtime_module.runtime is not None:
        try:
            await runtime_module.runtime.close()
            logger.info("runtime_cleanup_complete")
        except StoreError as exc:
            logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Warden", version=__version__, lifespan=lifespan)
register_exception_handlers(app)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for log tracing.

    Taken from the X-Request-ID header when the client sends one, otherwise
    generated, and echoed back in the response.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/healthz")
async def health(runtime: Runtime = Depends(get_runtime)) -> JSONResponse:
    """Report coordination store reachability."""
    try:
        store_ok = await asyncio.wait_for(
            runtime.store.ping(), HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="store")
        store_ok = False
    except StoreError as exc:
        logger.error("health_check_store_failed", error=exc.message)
        store_ok = False

    payload: Dict[str, Any] = {
        "status": "healthy" if store_ok else "unhealthy",
        "checks": {"store": {"status": "healthy" if store_ok else "unhealthy"}},
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if store_ok:
        return JSONResponse(
            status_code=200, content=Envelope(status="ok", data=payload).model_dump()
        )
    envelope = Envelope(
        status="error",
        data=payload,
        error=ErrorBody(
            code="service_unavailable", message="coordination store unreachable"
        ),
    )
    return JSONResponse(status_code=503, content=envelope.model_dump())


@app.get("/v1/auth/whoami")
async def whoami(claims: SessionClaims = Depends(require_claims)) -> Envelope:
    return Envelope(status="ok", data=ClaimsOut.from_claims(claims).model_dump())
