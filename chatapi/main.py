from __future__ import annotations

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatapi import __version__
from chatapi.config import Settings, get_settings
from chatapi.exceptions import ChatAPIException, ServiceUnavailableError
from chatapi.logger import configure_logging, logger
from chatapi.mcp.dependencies import create_http_client, get_redis_provider
from chatapi.mcp.router import router as mcp_router
from chatapi.middleware.correlation import CorrelationIdMiddleware
from chatapi.middleware.mcp_config import MCPConfigMiddleware
from chatapi.services.redis_store import RedisClientProvider

app = FastAPI(
    title="Chat API",
    description="""
# Chat API

Connects remote MCP (Model Context Protocol) servers to a chat session.

## MCP connections

- `POST /mcp/connect` starts OAuth 2.0 authorization (PKCE) for an MCP server
- `GET /mcp/oauth/callback` completes it in a popup window
- `POST /mcp/list` and `POST /mcp/disconnect` manage stored connections

MCP endpoints require Redis (`REDIS_URL`) and answer `503 REDIS_CONFIG_MISSING`
without it.
    """,
    version=__version__,
    openapi_tags=[
        {
            "name": "MCP",
            "description": "MCP server connections and OAuth",
        },
        {
            "name": "health",
            "description": "Health check endpoints",
        },
    ],
)


@app.exception_handler(ChatAPIException)
async def chatapi_exception_handler(request: Request, exc: ChatAPIException):
    """Handle all application exceptions."""
    logger.warning(
        "chatapi_exception",
        error_code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )
    if isinstance(exc, ServiceUnavailableError) and exc.retry_after:
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI request validation errors with user-friendly messages."""
    field_errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = ".".join(str(l) for l in loc if l != "body")
        msg = error.get("msg", "Invalid value")
        field_errors.append({"field": field, "message": msg})

    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=field_errors,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request data",
            "details": {"errors": field_errors},
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle standard HTTP exceptions with consistent format."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail) if exc.detail else "An error occurred",
            "details": {"status_code": exc.status_code},
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions to prevent information leakage."""
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
            "details": {},
        },
    )


_settings = get_settings()

# Last added = first executed
app.add_middleware(MCPConfigMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins_list,
    allow_credentials=_settings.cors_origins != "*",
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.include_router(mcp_router)


@app.on_event("startup")
async def startup_event() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    app.state.settings = settings
    app.state.redis_provider = RedisClientProvider(settings)
    app.state.http_client = create_http_client(settings)

    if not settings.redis_configured:
        logger.warning("mcp_disabled", reason="REDIS_URL not set")

    logger.info("app_startup", version=__version__)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    provider = getattr(app.state, "redis_provider", None)
    if provider is not None:
        await provider.close()

    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()

    logger.info("app_shutdown")


@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/health/live", tags=["health"])
async def liveness_check():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness_check(
    settings: Settings = Depends(get_settings),
    provider: RedisClientProvider = Depends(get_redis_provider),
):
    """
    Kubernetes readiness probe.

    Ready when Redis answers a ping. Without Redis configured the app still
    serves traffic, with MCP endpoints reporting 503.
    """
    checks = {
        "redis_configured": settings.redis_configured,
        "redis": False,
        "status": "not_ready",
    }

    if not settings.redis_configured:
        checks["status"] = "ready"
        return checks

    checks["redis"] = await provider.ping()
    if checks["redis"]:
        checks["status"] = "ready"
        return checks
    return JSONResponse(status_code=503, content=checks)
