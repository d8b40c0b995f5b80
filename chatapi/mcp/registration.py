"""
OAuth 2.0 Dynamic Client Registration (RFC 7591) against MCP servers.

The application registers as a public client (``token_endpoint_auth_method``
``none``) and relies on PKCE alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatapi.logger import logger
from chatapi.mcp.errors import RegistrationFailedError

API_KEY_HEADER = "X-API-Key"
DEFAULT_CLIENT_NAME = "Chat MCP Client"


class ClientRegistrationRequest(BaseModel):
    client_name: str
    client_uri: Optional[str] = None
    redirect_uris: List[str] = Field(..., min_length=1)
    grant_types: List[Literal["authorization_code"]] = ["authorization_code"]
    response_types: List[Literal["code"]] = ["code"]
    token_endpoint_auth_method: Literal["none"] = "none"


class ClientRegistrationResponse(BaseModel):
    client_id: str = Field(..., min_length=1)
    client_secret: Optional[str] = None

    model_config = ConfigDict(extra="allow")


@dataclass(frozen=True)
class ClientRegistration:
    client_id: str
    client_secret: Optional[str] = None


async def register_oauth_client(
    http_client: httpx.AsyncClient,
    registration_endpoint: str,
    redirect_uri: str,
    client_uri: Optional[str] = None,
    client_name: str = DEFAULT_CLIENT_NAME,
    api_key: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ClientRegistration:
    """
    Register this application with an authorization server.

    Raises:
        RegistrationFailedError: On transport failure, a non-2xx response, or
            a response without a usable ``client_id``.
    """
    body = ClientRegistrationRequest(
        client_name=client_name,
        client_uri=client_uri,
        redirect_uris=[redirect_uri],
    )
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if api_key:
        headers[API_KEY_HEADER] = api_key

    request_kwargs = {}
    if timeout is not None:
        request_kwargs["timeout"] = timeout

    try:
        response = await http_client.post(
            registration_endpoint,
            json=body.model_dump(exclude_none=True),
            headers=headers,
            **request_kwargs,
        )
    except httpx.HTTPError as e:
        logger.error(
            "oauth_registration_request_failed",
            endpoint=registration_endpoint,
            error_type=type(e).__name__,
            error=str(e),
        )
        raise RegistrationFailedError(
            f"Client registration request failed: {type(e).__name__}"
        ) from e

    if not response.is_success:
        logger.error(
            "oauth_registration_rejected",
            endpoint=registration_endpoint,
            status_code=response.status_code,
            body=response.text[:500],
        )
        raise RegistrationFailedError(
            f"Client registration failed: {response.status_code}",
            upstream_status=response.status_code,
        )

    try:
        registration = ClientRegistrationResponse.model_validate_json(response.content)
    except ValidationError as e:
        logger.error(
            "oauth_registration_invalid_response",
            endpoint=registration_endpoint,
            error_count=e.error_count(),
        )
        raise RegistrationFailedError(
            "Invalid registration response: missing client_id",
            upstream_status=response.status_code,
        ) from e

    logger.info("oauth_client_registered", endpoint=registration_endpoint)
    return ClientRegistration(
        client_id=registration.client_id,
        client_secret=registration.client_secret,
    )
