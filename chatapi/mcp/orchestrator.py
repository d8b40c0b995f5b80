"""
Builds the authorization redirect for connecting an MCP server.

discovery -> client registration -> PKCE -> state persisted -> authorize URL
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlparse

import httpx

from chatapi.config import Settings
from chatapi.logger import logger
from chatapi.mcp.discovery import discover_oauth_endpoints
from chatapi.mcp.models import (
    DynamicRegistration,
    MCPConnection,
    OAuthEndpoints,
    OAuthStateRecord,
    StaticClient,
    now_ms,
)
from chatapi.mcp.oauth import build_authorization_url
from chatapi.mcp.pkce import generate_code_challenge, generate_code_verifier, generate_state
from chatapi.mcp.registration import register_oauth_client
from chatapi.services.redis_store import ConnectionStore, OAuthStateStore

CALLBACK_PATH = "/mcp/oauth/callback"


def callback_url(app_origin: str) -> str:
    return f"{app_origin.rstrip('/')}{CALLBACK_PATH}"


def default_connection_name(endpoint: str) -> str:
    return urlparse(endpoint).hostname or endpoint


@dataclass(frozen=True)
class AuthorizationRequest:
    auth_url: str
    connection_id: str
    session_id: str
    state: str


class AuthorizationOrchestrator:
    """
    Starts the OAuth authorization code + PKCE flow for one MCP server.

    Failures leave harmless garbage behind at worst (a registered client
    nobody uses, or a state record that expires on its own); nothing is
    rolled back.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        state_store: OAuthStateStore,
        connection_store: ConnectionStore,
        settings: Settings,
    ) -> None:
        self.http_client = http_client
        self.state_store = state_store
        self.connection_store = connection_store
        self.settings = settings

    async def _resolve_client(
        self,
        endpoint: str,
        mode: Union[DynamicRegistration, StaticClient],
        redirect_uri: str,
        app_origin: str,
    ) -> tuple[OAuthEndpoints, str]:
        if isinstance(mode, StaticClient):
            return mode.endpoints(), mode.client_id

        endpoints = await discover_oauth_endpoints(
            self.http_client,
            endpoint,
            timeout=self.settings.mcp_discovery_timeout_seconds,
        )
        if endpoints.degraded:
            logger.warning("mcp_oauth_default_endpoints", registration=endpoints.registration)
        registration = await register_oauth_client(
            self.http_client,
            endpoints.registration,
            redirect_uri=redirect_uri,
            client_uri=app_origin,
            client_name=self.settings.mcp_client_name,
            api_key=mode.api_key,
            timeout=self.settings.mcp_http_timeout_seconds,
        )
        return endpoints, registration.client_id

    async def begin_authorization(
        self,
        endpoint: str,
        name: Optional[str],
        session_id: str,
        mode: Union[DynamicRegistration, StaticClient],
        app_origin: str,
        connection_id: Optional[str] = None,
    ) -> AuthorizationRequest:
        """
        Prepare an authorization attempt and return the URL to open.

        Raises:
            RegistrationFailedError: Dynamic registration was rejected.
        """
        connection_id = connection_id or str(uuid.uuid4())
        connection_name = name or default_connection_name(endpoint)
        redirect_uri = callback_url(app_origin)

        endpoints, client_id = await self._resolve_client(
            endpoint, mode, redirect_uri, app_origin
        )

        state = generate_state()
        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)

        api_key = mode.api_key if isinstance(mode, DynamicRegistration) else None
        await self.state_store.put(
            state,
            OAuthStateRecord(
                session_id=session_id,
                connection_id=connection_id,
                connection_name=connection_name,
                endpoint=endpoint,
                code_verifier=code_verifier,
                client_id=client_id,
                token_endpoint=endpoints.token,
                api_key=api_key,
            ),
            ttl_seconds=self.settings.mcp_state_ttl_seconds,
        )

        await self._store_pending_connection(
            session_id, connection_id, connection_name, endpoint, client_id, endpoints.token
        )

        auth_url = build_authorization_url(
            endpoints.authorization,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=state,
            code_challenge=code_challenge,
        )

        logger.info(
            "mcp_authorization_started",
            connection_id=connection_id,
            registration_mode=mode.kind,
            endpoints_source=endpoints.source,
        )
        return AuthorizationRequest(
            auth_url=auth_url,
            connection_id=connection_id,
            session_id=session_id,
            state=state,
        )

    async def _store_pending_connection(
        self,
        session_id: str,
        connection_id: str,
        connection_name: str,
        endpoint: str,
        client_id: str,
        token_endpoint: str,
    ) -> None:
        timestamp = now_ms()
        existing = await self.connection_store.get(session_id, connection_id)
        if existing is not None:
            connection = existing.model_copy(
                update={
                    "name": connection_name,
                    "endpoint": endpoint,
                    "client_id": client_id,
                    "token_endpoint": token_endpoint,
                    "updated_at": timestamp,
                }
            )
        else:
            connection = MCPConnection(
                id=connection_id,
                name=connection_name,
                endpoint=endpoint,
                created_at=timestamp,
                updated_at=timestamp,
                requires_auth=True,
                client_id=client_id,
                token_endpoint=token_endpoint,
            )
        await self.connection_store.put(
            session_id, connection, ttl_seconds=self.settings.mcp_connection_ttl_seconds
        )
