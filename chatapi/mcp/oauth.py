"""
Authorization URL construction and token endpoint calls.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatapi.logger import logger
from chatapi.mcp.errors import TokenExchangeFailedError, TokenRefreshFailedError
from chatapi.mcp.pkce import CODE_CHALLENGE_METHOD

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuthTokenResponse(BaseModel):
    """
    See https://datatracker.ietf.org/doc/html/rfc6749#section-5.1
    """

    access_token: str = Field(..., min_length=1)
    token_type: str = "bearer"
    expires_in: Optional[float] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    model_config = ConfigDict(extra="allow")


def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scope: Optional[str] = None,
) -> str:
    """Add the authorization-code + PKCE parameters to the endpoint URL.

    Query parameters already present on the endpoint are kept; ours win on
    conflict.
    """
    parsed = urlparse(authorization_endpoint)
    params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    params.update(
        {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
    )
    if scope:
        params["scope"] = scope
    return urlunparse(parsed._replace(query=urlencode(params)))


async def _post_token_request(
    http_client: httpx.AsyncClient,
    token_endpoint: str,
    data: dict,
    timeout: Optional[float],
) -> httpx.Response:
    request_kwargs = {}
    if timeout is not None:
        request_kwargs["timeout"] = timeout
    return await http_client.post(
        token_endpoint, data=data, headers=_FORM_HEADERS, **request_kwargs
    )


async def exchange_code_for_token(
    http_client: httpx.AsyncClient,
    token_endpoint: str,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    client_id: str,
    timeout: Optional[float] = None,
) -> OAuthTokenResponse:
    """
    Exchange an authorization code for tokens (one shot; codes are single-use).

    Raises:
        TokenExchangeFailedError: On transport failure, a non-2xx response or
            a response without an access token.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }

    try:
        response = await _post_token_request(http_client, token_endpoint, data, timeout)
    except httpx.HTTPError as e:
        logger.error(
            "oauth_token_exchange_request_failed",
            endpoint=token_endpoint,
            error_type=type(e).__name__,
        )
        raise TokenExchangeFailedError(
            f"OAuth token exchange failed: {type(e).__name__}"
        ) from e

    if not response.is_success:
        logger.error(
            "oauth_token_exchange_rejected",
            endpoint=token_endpoint,
            status_code=response.status_code,
        )
        raise TokenExchangeFailedError(
            f"OAuth token exchange failed: {response.status_code} {response.text[:500]}",
            upstream_status=response.status_code,
        )

    try:
        return OAuthTokenResponse.model_validate_json(response.content)
    except ValidationError as e:
        logger.error(
            "oauth_token_exchange_invalid_response",
            endpoint=token_endpoint,
            error_count=e.error_count(),
        )
        raise TokenExchangeFailedError(
            "OAuth token exchange returned no access token",
            upstream_status=response.status_code,
        ) from e


async def refresh_access_token(
    http_client: httpx.AsyncClient,
    token_endpoint: str,
    refresh_token: str,
    client_id: str,
    timeout: Optional[float] = None,
) -> OAuthTokenResponse:
    """
    Use a refresh token to obtain a new access token.

    Raises:
        TokenRefreshFailedError: On any failure.
    """
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
    }

    try:
        response = await _post_token_request(http_client, token_endpoint, data, timeout)
    except httpx.HTTPError as e:
        logger.error(
            "oauth_token_refresh_request_failed",
            endpoint=token_endpoint,
            error_type=type(e).__name__,
        )
        raise TokenRefreshFailedError(
            f"OAuth token refresh failed: {type(e).__name__}"
        ) from e

    if not response.is_success:
        logger.warning(
            "oauth_token_refresh_rejected",
            endpoint=token_endpoint,
            status_code=response.status_code,
        )
        raise TokenRefreshFailedError(
            f"OAuth token refresh failed: {response.status_code} {response.text[:500]}",
            upstream_status=response.status_code,
        )

    try:
        return OAuthTokenResponse.model_validate_json(response.content)
    except ValidationError as e:
        raise TokenRefreshFailedError(
            "OAuth token refresh returned no access token",
            upstream_status=response.status_code,
        ) from e
