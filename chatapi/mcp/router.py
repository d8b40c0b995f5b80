"""
MCP Router - connect, authorize, list and disconnect MCP servers.

JSON endpoints answer 503 ``REDIS_CONFIG_MISSING`` when Redis is not configured
(see ``chatapi.middleware.mcp_config``). The OAuth callback is opened in a popup, so it
always answers with an HTML page, including for that case.
"""

from typing import Optional, Union

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse

from chatapi.config import Settings, get_settings
from chatapi.logger import logger
from chatapi.mcp.connectors import BUILT_IN_CONNECTORS, ConnectorCatalog
from chatapi.mcp.dependencies import (
    build_callback_handler,
    get_app_origin,
    get_connection_service,
    get_http_client,
    get_redis_provider,
)
from chatapi.mcp.errors import ConfigMissingError
from chatapi.mcp.lifecycle import ConnectionService
from chatapi.mcp.models import (
    AuthorizationResponse,
    AuthorizeRequest,
    ConnectAuthResponse,
    ConnectDirectResponse,
    ConnectRequest,
    DisconnectRequest,
    DisconnectResponse,
    ListRequest,
    ListResponse,
)
from chatapi.mcp.pages import error_page
from chatapi.services.redis_store import RedisClientProvider

router = APIRouter(prefix="/mcp", tags=["MCP"])


@router.post(
    "/connect",
    response_model=Union[ConnectAuthResponse, ConnectDirectResponse],
)
async def connect(
    body: ConnectRequest,
    service: ConnectionService = Depends(get_connection_service),
    app_origin: str = Depends(get_app_origin),
):
    """
    Start connecting an MCP server.

    Returns an ``authUrl`` to open in a popup, or the stored connection
    directly when ``requiresAuth`` is false.
    """
    return await service.connect(
        endpoint=body.endpoint,
        session_id=body.session_id,
        app_origin=app_origin,
        name=body.name,
        mode=body.registration_mode(),
        requires_auth=body.requires_auth,
    )


@router.post("/oauth/authorize", response_model=AuthorizationResponse)
async def authorize(
    body: AuthorizeRequest,
    service: ConnectionService = Depends(get_connection_service),
    app_origin: str = Depends(get_app_origin),
):
    """Start (or restart) authorization for a caller-chosen connection id."""
    return await service.authorize(
        endpoint=body.endpoint,
        session_id=body.session_id,
        connection_id=body.connection_id,
        app_origin=app_origin,
        name=body.name,
        mode=body.registration_mode(),
    )


@router.post("/list", response_model=ListResponse)
async def list_connections(
    body: ListRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    connections = await service.list(body.session_id)
    return ListResponse(connections=connections)


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    body: DisconnectRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    await service.disconnect(body.connection_id, body.session_id)
    return DisconnectResponse()


@router.get("/oauth/callback", response_class=HTMLResponse)
async def oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    provider: RedisClientProvider = Depends(get_redis_provider),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    app_origin: str = Depends(get_app_origin),
):
    """OAuth redirect target. Renders a page that reports back to the opener."""
    if not settings.redis_configured:
        logger.warning("mcp_oauth_callback_unconfigured")
        return error_page(
            ConfigMissingError.default_code,
            ConfigMissingError.default_message,
            app_origin,
            status_code=503,
        )

    handler = build_callback_handler(provider, http_client, settings)
    return await handler.handle(
        app_origin,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )


@router.get("/connectors", response_model=ConnectorCatalog)
async def list_connectors():
    """Built-in connectors the UI offers as one-click choices."""
    return ConnectorCatalog(connectors=BUILT_IN_CONNECTORS)

