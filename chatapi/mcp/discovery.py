"""
OAuth endpoint discovery for MCP servers (RFC 8414).

Discovery is best effort. Any failure (non-2xx, timeout, transport error,
malformed document) silently falls back to the conventional paths
``/register``, ``/authorize`` and ``/token`` on the server's origin.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from chatapi.logger import logger
from chatapi.mcp.models import OAuthEndpoints

WELL_KNOWN_PATH = "/.well-known/oauth-authorization-server"
DEFAULT_DISCOVERY_TIMEOUT = 5.0


class OAuthMetadataDocument(BaseModel):
    """The subset of authorization server metadata this client relies on."""

    registration_endpoint: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator(
        "registration_endpoint",
        "authorization_endpoint",
        "token_endpoint",
        "revocation_endpoint",
    )
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return v


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for an absolute URL."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    return f"{parsed.scheme}://{parsed.netloc}"


def default_endpoints(origin: str) -> OAuthEndpoints:
    origin = origin.rstrip("/")
    return OAuthEndpoints(
        registration=f"{origin}/register",
        authorization=f"{origin}/authorize",
        token=f"{origin}/token",
        source="default",
    )


async def discover_oauth_endpoints(
    http_client: httpx.AsyncClient,
    server_url: str,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
) -> OAuthEndpoints:
    """
    Resolve the registration, authorization and token endpoints for a server.

    Args:
        http_client: Shared outbound HTTP client
        server_url: MCP server URL; only its origin is used
        timeout: Upper bound for the metadata fetch, in seconds

    Returns:
        OAuthEndpoints whose ``source`` is ``"discovered"`` when the metadata
        document supplied at least one endpoint, otherwise ``"default"``.
    """
    origin = origin_of(server_url)
    defaults = default_endpoints(origin)
    well_known_url = f"{origin}{WELL_KNOWN_PATH}"

    try:
        response = await http_client.get(
            well_known_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        logger.info(
            "oauth_discovery_degraded",
            origin=origin,
            reason="request_failed",
            error_type=type(e).__name__,
        )
        return defaults

    if not response.is_success:
        logger.info(
            "oauth_discovery_degraded",
            origin=origin,
            reason="http_status",
            status_code=response.status_code,
        )
        return defaults

    try:
        metadata = OAuthMetadataDocument.model_validate_json(response.content)
    except ValidationError as e:
        logger.info(
            "oauth_discovery_degraded",
            origin=origin,
            reason="invalid_document",
            error_count=e.error_count(),
        )
        return defaults

    discovered = any(
        (
            metadata.registration_endpoint,
            metadata.authorization_endpoint,
            metadata.token_endpoint,
        )
    )
    endpoints = OAuthEndpoints(
        registration=metadata.registration_endpoint or defaults.registration,
        authorization=metadata.authorization_endpoint or defaults.authorization,
        token=metadata.token_endpoint or defaults.token,
        source="discovered" if discovered else "default",
    )
    logger.info("oauth_discovery_completed", origin=origin, source=endpoints.source)
    return endpoints
