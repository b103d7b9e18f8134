"""HTTP transport helpers wrapping FastMCP with FastAPI."""

from __future__ import annotations

import contextlib
import hmac
import time
from contextlib import asynccontextmanager
from typing import Any, Optional, Protocol, cast

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .app import build_dm_service, build_mcp_server, tool_metrics_snapshot
from .config import Settings
from .errors import TlonMcpError
from .logging_setup import configure_logging
from .service import DmService

__all__ = ["build_http_app"]


class _FastMCPHttpApp(Protocol):
    def http_app(self, *args: Any, **kwargs: Any) -> Any: ...


class BearerAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: Any, token: str) -> None:
        super().__init__(app)
        self._token = token

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        if request.method == "OPTIONS":
            return await call_next(request)
        if request.url.path.startswith("/health/"):
            return await call_next(request)
        auth_header = request.headers.get("Authorization", "")
        # Constant-time comparison
        if not hmac.compare_digest(auth_header, f"Bearer {self._token}"):
            return JSONResponse({"detail": "Unauthorized"}, status_code=status.HTTP_401_UNAUTHORIZED)
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.perf_counter()
        response = await call_next(request)
        structlog.get_logger("http").info(
            "request",
            method=request.method,
            path=request.url.path,
            status=getattr(response, "status_code", 0),
            duration_ms=int((time.perf_counter() - start) * 1000),
            client_ip=request.client.host if request.client else "-",
        )
        return response


def _mount_path(path: str) -> str:
    mount = path or "/mcp"
    if not mount.startswith("/"):
        mount = "/" + mount
    return mount.rstrip("/") or "/"


def build_http_app(settings: Settings, server=None, service: Optional[DmService] = None) -> FastAPI:
    configure_logging(settings)
    service = service or build_dm_service(settings)
    if server is None:
        server = build_mcp_server(service, settings)

    mcp_http_app = cast(_FastMCPHttpApp, server).http_app(path="/")

    @asynccontextmanager
    async def lifespan_context(app: FastAPI):
        # The mounted MCP app needs its own lifespan to start its session manager
        async with mcp_http_app.lifespan(mcp_http_app):
            try:
                yield
            finally:
                with contextlib.suppress(Exception):
                    await service.close()

    fastapi_app = FastAPI(lifespan=lifespan_context)

    if settings.http.request_log_enabled:
        fastapi_app.add_middleware(RequestLoggingMiddleware)
    if settings.http.bearer_token:
        fastapi_app.add_middleware(BearerAuthMiddleware, token=settings.http.bearer_token)

    @fastapi_app.get("/health/liveness")
    async def liveness() -> JSONResponse:
        return JSONResponse({"status": "alive"})

    @fastapi_app.get("/health/readiness")
    async def readiness() -> JSONResponse:
        try:
            await service.guard.ensure_live(service.session)
        except TlonMcpError as exc:
            structlog.get_logger("health").error("readiness_error", error=str(exc))
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return JSONResponse({"status": "ready", "ship": service.own_identity})

    @fastapi_app.get("/metrics/tools")
    async def tool_metrics() -> JSONResponse:
        return JSONResponse({"tools": tool_metrics_snapshot()})

    fastapi_app.mount(_mount_path(settings.http.path), mcp_http_app)
    return fastapi_app
