"""
FastAPI Application Entry Point.

Creates the tts-gateway application: routes, the query-validation error
handler and the startup/shutdown lifecycle.

Usage:
    # Run with uvicorn
    uvicorn tts_gateway.main:app --host 0.0.0.0 --port 3000

    # Or through the CLI (reads server.bind from settings)
    tts-gateway serve
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tts_gateway import __version__
from tts_gateway.api.routes import router
from tts_gateway.core.logging import configure_logging, get_logger, info, warn
from tts_gateway.services.errors import ErrorCode
from tts_gateway.services.gateway_service import reset_service

_LOG = get_logger("tts-gateway.app")


def _describe(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "query")
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query-parameter type errors use the gateway error body (code 0, HTTP 400)."""
    display = _describe(exc.errors())
    warn(_LOG, "bad_query", path=request.url.path, error=display)
    return JSONResponse(status_code=400, content={"code": ErrorCode.UNKNOWN, "display": display})


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "startup", version=__version__)
    yield
    reset_service()
    info(_LOG, "shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    app = FastAPI(title="tts-gateway", version=__version__, lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)

    return app


# Global application instance for ASGI servers
app = create_app()
