"""
FastAPI dependencies for the MCP routes.

Long-lived clients (Redis, httpx) live on ``app.state`` and are created in the
startup hook; the getters below fall back to creating them on first use.
"""

from __future__ import annotations

import httpx
import redis.asyncio as redis
from fastapi import Depends, Request

from chatapi.config import Settings, get_settings
from chatapi.mcp.callback import OAuthCallbackHandler
from chatapi.mcp.lifecycle import ConnectionService
from chatapi.mcp.orchestrator import AuthorizationOrchestrator
from chatapi.services.redis_store import ConnectionStore, OAuthStateStore, RedisClientProvider


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.mcp_http_timeout_seconds),
        follow_redirects=False,
    )


def get_redis_provider(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> RedisClientProvider:
    provider = getattr(request.app.state, "redis_provider", None)
    if provider is None:
        provider = RedisClientProvider(settings)
        request.app.state.redis_provider = provider
    return provider


def get_http_client(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = create_http_client(settings)
        request.app.state.http_client = client
    return client


def get_redis_client(
    provider: RedisClientProvider = Depends(get_redis_provider),
) -> redis.Redis:
    return provider.get_client()


def get_state_store(client: redis.Redis = Depends(get_redis_client)) -> OAuthStateStore:
    return OAuthStateStore(client)


def get_connection_store(client: redis.Redis = Depends(get_redis_client)) -> ConnectionStore:
    return ConnectionStore(client)


def get_orchestrator(
    http_client: httpx.AsyncClient = Depends(get_http_client),
    state_store: OAuthStateStore = Depends(get_state_store),
    connection_store: ConnectionStore = Depends(get_connection_store),
    settings: Settings = Depends(get_settings),
) -> AuthorizationOrchestrator:
    return AuthorizationOrchestrator(http_client, state_store, connection_store, settings)


def get_connection_service(
    orchestrator: AuthorizationOrchestrator = Depends(get_orchestrator),
    connection_store: ConnectionStore = Depends(get_connection_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> ConnectionService:
    return ConnectionService(orchestrator, connection_store, http_client, settings)


def build_callback_handler(
    provider: RedisClientProvider,
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> OAuthCallbackHandler:
    client = provider.get_client()
    return OAuthCallbackHandler(
        http_client,
        OAuthStateStore(client),
        ConnectionStore(client),
        settings,
    )


def get_app_origin(request: Request, settings: Settings = Depends(get_settings)) -> str:
    """Configured public origin, else the origin the request arrived on."""
    if settings.public_origin:
        return settings.public_origin
    return f"{request.url.scheme}://{request.url.netloc}"
