"""
OAuth redirect handling for MCP connections.

error param     -> error page, no state lookup
state missing   -> 400 "invalid or expired state"
state corrupted -> 400, logged as a security event
exchange failed -> 500 with the upstream message
anything else   -> 500 "callback_failed", traceback logged
otherwise       -> tokens stored on the connection, success page
"""

from __future__ import annotations

from typing import Optional

import httpx
from starlette.responses import HTMLResponse

from chatapi.config import Settings
from chatapi.logger import logger
from chatapi.mcp.errors import StateCorruptedError, StateNotFoundError, TokenExchangeFailedError
from chatapi.mcp.models import MCPConnection, OAuthStateRecord, now_ms
from chatapi.mcp.oauth import OAuthTokenResponse, exchange_code_for_token
from chatapi.mcp.orchestrator import callback_url
from chatapi.mcp.pages import error_page, success_page
from chatapi.services.redis_store import ConnectionStore, OAuthStateStore


class OAuthCallbackHandler:
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

    async def handle(
        self,
        app_origin: str,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> HTMLResponse:
        if error:
            logger.info("mcp_oauth_provider_error", error=error[:100])
            return error_page(error, error_description or "", app_origin)

        if not code or not state:
            return error_page(
                "invalid_request",
                "Missing code or state parameter",
                app_origin,
            )

        try:
            return await self._complete(app_origin, code, state)
        except Exception:
            logger.exception("mcp_oauth_callback_failed", state_prefix=state[:8])
            return error_page(
                "callback_failed",
                "An unexpected error occurred",
                app_origin,
                status_code=500,
                heading="Authentication Failed",
            )

    async def _complete(self, app_origin: str, code: str, state: str) -> HTMLResponse:
        try:
            record = await self.state_store.take_once(state)
        except StateNotFoundError:
            logger.info("mcp_oauth_state_not_found", state_prefix=state[:8])
            return error_page("invalid_state", "Invalid or expired state parameter", app_origin)
        except StateCorruptedError:
            # take_once already logged the security event
            return error_page(
                "invalid_state",
                "Authorization state could not be verified. Please try again.",
                app_origin,
            )

        try:
            tokens = await exchange_code_for_token(
                self.http_client,
                token_endpoint=record.token_endpoint,
                code=code,
                code_verifier=record.code_verifier,
                redirect_uri=callback_url(app_origin),
                client_id=record.client_id,
                timeout=self.settings.mcp_http_timeout_seconds,
            )
        except TokenExchangeFailedError as e:
            return error_page(
                "callback_failed",
                e.message,
                app_origin,
                status_code=500,
                heading="Authentication Failed",
            )

        await self._store_tokens(record, tokens)
        logger.info(
            "mcp_oauth_connected",
            connection_id=record.connection_id,
            has_refresh_token=tokens.refresh_token is not None,
        )
        return success_page(record.connection_id, record.session_id, app_origin)

    async def _store_tokens(self, record: OAuthStateRecord, tokens: OAuthTokenResponse) -> MCPConnection:
        timestamp = now_ms()
        expires_at = (
            timestamp + int(tokens.expires_in * 1000) if tokens.expires_in is not None else None
        )

        existing = await self.connection_store.get(record.session_id, record.connection_id)
        if existing is None:
            existing = MCPConnection(
                id=record.connection_id,
                name=record.connection_name,
                endpoint=record.endpoint,
                created_at=timestamp,
                updated_at=timestamp,
            )

        connection = existing.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token,
                "token_expires_at": expires_at,
                "updated_at": timestamp,
                "requires_auth": True,
                "client_id": record.client_id,
                "token_endpoint": record.token_endpoint,
            }
        )
        await self.connection_store.put(
            record.session_id,
            connection,
            ttl_seconds=self.settings.mcp_connection_ttl_seconds,
        )
        return connection
