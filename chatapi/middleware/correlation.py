"""
Correlation ID middleware for request tracing.

Every log line emitted while a request is handled carries its correlation id,
taken from ``X-Request-ID`` or generated.
"""
from __future__ import annotations

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from chatapi.logger import clear_correlation_id, get_logger, set_correlation_id

CORRELATION_HEADER = "X-Correlation-ID"

# OAuth callbacks carry the authorization code and state in the query string
_REDACTED_QUERY_PATHS = ("/mcp/oauth/callback",)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id to the request's logging context.

    For each request:
    1. Reads X-Request-ID or generates a UUID
    2. Logs start and completion with timing
    3. Echoes the id back in X-Correlation-ID
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Reuse the caller's id when one is supplied
        correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        # Request-scoped logger
        logger = get_logger(
            method=request.method,
            path=request.url.path,
            client_ip=self._get_client_ip(request),
        )

        start_time = time.time()
        logger.info(
            "request_started",
            query_params=self._loggable_query(request),
            user_agent=request.headers.get("User-Agent"),
        )

        try:
            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except Exception as exc:
            # Logged here, rendered by the app's exception handlers
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "request_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=round(duration_ms, 2),
            )
            raise

        finally:
            # Clear correlation ID from context
            clear_correlation_id()

    @staticmethod
    def _loggable_query(request: Request):
        if not request.query_params:
            return None
        # Parameter names only; values are credentials
        if request.url.path in _REDACTED_QUERY_PATHS:
            return sorted(request.query_params.keys())
        return str(request.query_params)

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP, considering proxy headers."""
        # Load balancer: first hop is the original client
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        # nginx style
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
