from __future__ import annotations

import uuid
from typing import List, Optional, Union

import httpx

from chatapi.config import Settings
from chatapi.exceptions import ResourceNotFoundError
from chatapi.logger import logger
from chatapi.mcp.errors import ReconnectRequiredError
from chatapi.mcp.models import (
    AuthorizationResponse,
    ConnectAuthResponse,
    ConnectDirectResponse,
    ConnectionSummary,
    DynamicRegistration,
    MCPConnection,
    StaticClient,
    now_ms,
)
from chatapi.mcp.oauth import refresh_access_token
from chatapi.mcp.orchestrator import AuthorizationOrchestrator, default_connection_name
from chatapi.services.redis_store import ConnectionStore


class ConnectionService:
    """connect / list / disconnect for a browser session's MCP servers."""

    def __init__(
        self,
        orchestrator: AuthorizationOrchestrator,
        connection_store: ConnectionStore,
        http_client: httpx.AsyncClient,
        settings: Settings,
    ) -> None:
        self.orchestrator = orchestrator
        self.connection_store = connection_store
        self.http_client = http_client
        self.settings = settings

    async def connect(
        self,
        endpoint: str,
        session_id: str,
        app_origin: str,
        name: Optional[str] = None,
        mode: Union[DynamicRegistration, StaticClient, None] = None,
        requires_auth: bool = True,
    ) -> Union[ConnectAuthResponse, ConnectDirectResponse]:
        if not requires_auth:
            connection = await self._connect_without_auth(endpoint, name, session_id)
            return ConnectDirectResponse(connection=ConnectionSummary.from_connection(connection))

        request = await self.orchestrator.begin_authorization(
            endpoint=endpoint,
            name=name,
            session_id=session_id,
            mode=mode or DynamicRegistration(),
            app_origin=app_origin,
        )
        return ConnectAuthResponse(
            auth_url=request.auth_url,
            connection_id=request.connection_id,
            session_id=request.session_id,
        )

    async def authorize(
        self,
        endpoint: str,
        session_id: str,
        connection_id: str,
        app_origin: str,
        name: Optional[str] = None,
        mode: Union[DynamicRegistration, StaticClient, None] = None,
    ) -> AuthorizationResponse:
        """Start (or restart) authorization for a caller-chosen connection id."""
        request = await self.orchestrator.begin_authorization(
            endpoint=endpoint,
            name=name,
            session_id=session_id,
            mode=mode or DynamicRegistration(),
            app_origin=app_origin,
            connection_id=connection_id,
        )
        return AuthorizationResponse(
            auth_url=request.auth_url,
            connection_id=request.connection_id,
            session_id=request.session_id,
        )

    async def _connect_without_auth(
        self, endpoint: str, name: Optional[str], session_id: str
    ) -> MCPConnection:
        timestamp = now_ms()
        connection = MCPConnection(
            id=str(uuid.uuid4()),
            name=name or default_connection_name(endpoint),
            endpoint=endpoint,
            created_at=timestamp,
            updated_at=timestamp,
            requires_auth=False,
        )
        await self.connection_store.put(
            session_id, connection, ttl_seconds=self.settings.mcp_connection_ttl_seconds
        )
        logger.info("mcp_connected_without_auth", connection_id=connection.id)
        return connection

    async def list(self, session_id: str) -> List[ConnectionSummary]:
        connections = await self.connection_store.list(session_id)
        return [ConnectionSummary.from_connection(c) for c in connections]

    async def disconnect(self, connection_id: str, session_id: str) -> None:
        removed = await self.connection_store.delete(session_id, connection_id)
        logger.info("mcp_disconnected", connection_id=connection_id, existed=removed)

    async def get_authorized_connection(self, session_id: str, connection_id: str) -> MCPConnection:
        """
        Return a connection that can be used for MCP calls right now.

        Expired tokens are refreshed lazily here when a refresh token is on
        file; otherwise the user has to run the connect flow again.

        Raises:
            ResourceNotFoundError: No such connection for this session.
            ReconnectRequiredError: Not authorized, or expired with no way to refresh.
            TokenRefreshFailedError: The provider rejected the refresh.
        """
        connection = await self.connection_store.get(session_id, connection_id)
        if connection is None:
            raise ResourceNotFoundError("MCP connection", resource_id=connection_id)

        if connection.is_usable:
            return connection

        if not connection.has_auth:
            raise ReconnectRequiredError(connection_id, "not_authorized")

        if not (connection.refresh_token and connection.client_id and connection.token_endpoint):
            raise ReconnectRequiredError(connection_id, "token_expired")

        tokens = await refresh_access_token(
            self.http_client,
            token_endpoint=connection.token_endpoint,
            refresh_token=connection.refresh_token,
            client_id=connection.client_id,
            timeout=self.settings.mcp_http_timeout_seconds,
        )
        timestamp = now_ms()
        refreshed = connection.model_copy(
            update={
                "access_token": tokens.access_token,
                # Providers that don't rotate refresh tokens omit the field
                "refresh_token": tokens.refresh_token or connection.refresh_token,
                "token_expires_at": (
                    timestamp + int(tokens.expires_in * 1000) if tokens.expires_in is not None else None
                ),
                "updated_at": timestamp,
            }
        )
        await self.connection_store.put(
            session_id, refreshed, ttl_seconds=self.settings.mcp_connection_ttl_seconds
        )
        logger.info("mcp_token_refreshed", connection_id=connection_id)
        return refreshed
