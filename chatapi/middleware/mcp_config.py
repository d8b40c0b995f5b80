"""
Gate for MCP endpoints that need Redis.

Runs ahead of routing so that an unconfigured deployment answers 503 before
the request body is read, whatever the body contains.
"""
from __future__ import annotations

from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chatapi.config import Settings, get_settings
from chatapi.logger import logger
from chatapi.mcp.errors import ConfigMissingError

# JSON endpoints backed by the state and connection stores.
# The callback renders its own 503 page; /mcp/connectors is static.
STORE_PATHS = frozenset(
    {
        "/mcp/connect",
        "/mcp/oauth/authorize",
        "/mcp/list",
        "/mcp/disconnect",
    }
)


class MCPConfigMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.rstrip("/") not in STORE_PATHS:
            return await call_next(request)

        settings: Settings = getattr(request.app.state, "settings", None) or get_settings()
        if settings.redis_configured:
            return await call_next(request)

        exc = ConfigMissingError()
        logger.warning(
            "mcp_config_missing",
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
