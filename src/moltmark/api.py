"""
moltmark.api — FastAPI server exposing the certification tools over HTTP.

Endpoints:
  GET  /health       — liveness plus store connectivity
  GET  /mcp/tools    — tool catalogue (POST accepted too)
  POST /mcp/call     — {"name": ..., "arguments": {...}} → MCP content envelope

Usage:
    moltmark serve --port 8080
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from moltmark import __version__
from moltmark.config import Settings, build_store
from moltmark.errors import InvalidInputError
from moltmark.gateway import CertificationGateway, error_envelope
from moltmark.logs import request_id_var, setup_structured_logging
from moltmark.service import CertificationService
from moltmark.store import CertificationStore

__all__ = ["ToolCall", "create_app"]

logger = logging.getLogger(__name__)


class ToolCall(BaseModel):
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


# ─── Middleware ───────────────────────────────────────────────────

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID and log one line per request."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        token = request_id_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            status = response.status_code
            level = logging.WARNING if status >= 500 else logging.INFO
            logger.log(level, "%s %s -> %d", request.method, request.url.path, status,
                       extra={"status": status,
                              "duration_ms": round((time.perf_counter() - started) * 1000, 1)})
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies over ``max_size`` bytes before they are read."""

    def __init__(self, app, max_size: int = 1_048_576):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_size:
            error = InvalidInputError("Request body too large",
                                      details={"max_bytes": self.max_size})
            return JSONResponse(status_code=413, content=error_envelope(error.to_dict()))
        return await call_next(request)


async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s", type(exc).__name__, request.url.path)
    return JSONResponse(status_code=500, content=error_envelope({
        "error": {"code": "internal_error", "message": "Internal server error",
                  "operation": None, "details": {}},
    }))


# ─── App factory ──────────────────────────────────────────────────

def create_app(*, store: Optional[CertificationStore] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    """Build the app around an injected store (or the one settings describe).

    The lifespan connects the store at startup and closes it at shutdown.
    """
    if settings is None:
        settings = Settings.from_env() if store is None else Settings(store_backend="memory")
    if store is None:
        store = build_store(settings)
    setup_structured_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.connect()
        logger.info("Store connected", extra={"store": type(store).__name__})
        try:
            yield
        finally:
            await store.close()
            logger.info("Store closed")

    app = FastAPI(
        title="moltmark",
        description="Capability certification ledger for autonomous agents",
        version=__version__,
        lifespan=lifespan,
    )
    service = CertificationService(store)
    app.state.store = store
    app.state.service = service
    app.state.gateway = CertificationGateway(service)

    app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/health")
    async def health(request: Request):
        store_ok = await request.app.state.store.health_check()
        return {
            "status": "ok" if store_ok else "degraded",
            "service": "moltmark",
            "version": __version__,
            "store": "connected" if store_ok else "unavailable",
        }

    @app.get("/mcp/tools")
    @app.post("/mcp/tools")
    async def list_tools(request: Request):
        return request.app.state.gateway.list_tools()

    @app.post("/mcp/call")
    async def call_tool(request: Request):
        try:
            call = ToolCall.model_validate(await request.json())
        except (ValueError, ValidationError):
            error = InvalidInputError("Body must be {\"name\": str, \"arguments\": object}",
                                      operation="call_tool")
            return JSONResponse(status_code=400, content=error_envelope(error.to_dict()))
        return await request.app.state.gateway.call_tool(call.name, call.arguments)

    return app
