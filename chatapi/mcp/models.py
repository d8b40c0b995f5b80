"""
Pydantic models for MCP OAuth connections.

Stored records and HTTP bodies use camelCase keys on the wire (the browser
client speaks camelCase) while Python code uses snake_case attributes.
"""

from __future__ import annotations

import time
from typing import Annotated, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Tokens count as expired this long before the provider's stated expiry
EXPIRY_SKEW_MS = 30_000

# Connection ids form the last segment of a store key and must not contain ":"
CONNECTION_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


def now_ms() -> int:
    return int(time.time() * 1000)


def _validate_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Stored records
# ============================================================================

class OAuthStateRecord(CamelModel):
    """Context of one in-flight authorization attempt, keyed by ``state``."""

    session_id: str = Field(..., min_length=1)
    connection_id: str = Field(..., min_length=1)
    connection_name: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)
    code_verifier: str = Field(..., min_length=43, max_length=128)
    client_id: str = Field(..., min_length=1)
    token_endpoint: str = Field(..., min_length=1)
    api_key: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class MCPConnection(CamelModel):
    """An MCP server connection scoped to a browser session."""

    id: str = Field(..., min_length=1)
    name: str
    endpoint: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[int] = None
    created_at: int
    updated_at: int
    requires_auth: bool = True
    # Kept so an expired token can be refreshed without re-running discovery.
    client_id: Optional[str] = None
    token_endpoint: Optional[str] = None

    @property
    def has_auth(self) -> bool:
        return bool(self.access_token)

    def is_token_expired(self, at_ms: Optional[int] = None) -> bool:
        if self.token_expires_at is None:
            return False
        current = now_ms() if at_ms is None else at_ms
        return current >= self.token_expires_at - EXPIRY_SKEW_MS

    @property
    def is_usable(self) -> bool:
        """Usable for tool calls: authorized, or known not to need auth."""
        if not self.requires_auth:
            return True
        return self.has_auth and not self.is_token_expired()


class OAuthEndpoints(BaseModel):
    registration: str
    authorization: str
    token: str
    source: Literal["discovered", "default", "static"] = "default"

    @property
    def degraded(self) -> bool:
        return self.source == "default"


# ============================================================================
# Registration mode
# ============================================================================

class DynamicRegistration(BaseModel):
    """Discover endpoints and register a public client at runtime."""

    kind: Literal["dynamic"] = "dynamic"
    api_key: Optional[str] = None


class StaticClient(BaseModel):
    """Use a pre-shared public client id and explicit endpoints."""

    kind: Literal["static"] = "static"
    client_id: str
    authorization_endpoint: str
    token_endpoint: str

    def endpoints(self) -> OAuthEndpoints:
        return OAuthEndpoints(
            registration="",
            authorization=self.authorization_endpoint,
            token=self.token_endpoint,
            source="static",
        )


RegistrationMode = Annotated[
    Union[DynamicRegistration, StaticClient], Field(discriminator="kind")
]


# ============================================================================
# Request bodies
# ============================================================================

class ConnectRequest(CamelModel):
    endpoint: str
    name: Optional[str] = Field(default=None, min_length=1)
    session_id: str = Field(..., min_length=1)
    api_key: Optional[str] = Field(
        default=None,
        min_length=1,
        validation_alias=AliasChoices("apiKey", "registrationApiKey", "api_key"),
    )
    client_id: Optional[str] = Field(default=None, min_length=1)
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    requires_auth: bool = True

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        return _validate_http_url(v)

    @field_validator("authorization_endpoint", "token_endpoint")
    @classmethod
    def validate_optional_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_http_url(v)

    @model_validator(mode="after")
    def validate_static_client(self) -> "ConnectRequest":
        static_fields = (self.client_id, self.authorization_endpoint, self.token_endpoint)
        if any(static_fields) and not all(static_fields):
            raise ValueError(
                "clientId, authorizationEndpoint and tokenEndpoint must be given together"
            )
        if self.client_id and self.api_key:
            raise ValueError("apiKey is only used for dynamic client registration")
        return self

    def registration_mode(self) -> Union[DynamicRegistration, StaticClient]:
        if self.client_id:
            return StaticClient(
                client_id=self.client_id,
                authorization_endpoint=self.authorization_endpoint,
                token_endpoint=self.token_endpoint,
            )
        return DynamicRegistration(api_key=self.api_key)


class AuthorizeRequest(ConnectRequest):
    connection_id: str = Field(..., min_length=1, max_length=128, pattern=CONNECTION_ID_PATTERN)


class ListRequest(CamelModel):
    session_id: str = Field(..., min_length=1)


class DisconnectRequest(CamelModel):
    connection_id: str = Field(..., min_length=1, max_length=128, pattern=CONNECTION_ID_PATTERN)
    session_id: str = Field(..., min_length=1)


# ============================================================================
# Responses
# ============================================================================

class ConnectionSummary(CamelModel):
    id: str
    name: str
    endpoint: str
    has_auth: bool
    created_at: int

    @classmethod
    def from_connection(cls, connection: MCPConnection) -> "ConnectionSummary":
        return cls(
            id=connection.id,
            name=connection.name,
            endpoint=connection.endpoint,
            has_auth=connection.has_auth,
            created_at=connection.created_at,
        )


class AuthorizationResponse(CamelModel):
    auth_url: str
    connection_id: str
    session_id: str


class ConnectAuthResponse(AuthorizationResponse):
    requires_auth: Literal[True] = True


class ConnectDirectResponse(CamelModel):
    success: bool = True
    connection: ConnectionSummary


class ListResponse(CamelModel):
    connections: List[ConnectionSummary]


class DisconnectResponse(CamelModel):
    success: bool = True
    message: str = "MCP connection removed successfully"
