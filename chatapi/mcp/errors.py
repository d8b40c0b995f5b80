"""
Errors raised by the MCP OAuth connection subsystem.

Discovery never raises: a failed or partial well-known document degrades to
conventional endpoint paths (see ``OAuthEndpoints.source``). Everything else
in the flow fails with one of the types below so that callers cannot mistake
a best-effort fallback for a fatal condition.
"""

from __future__ import annotations

from typing import Optional

from chatapi.exceptions import ChatAPIException, ServiceUnavailableError

REDIS_CONFIG_MESSAGE = (
    "Redis configuration is required for MCP features. "
    "Please contact your system administrator."
)


class ConfigMissingError(ServiceUnavailableError):
    """Store credentials are absent; every MCP endpoint fails fast with 503."""

    default_message = "MCP features are not configured"
    default_code = "REDIS_CONFIG_MISSING"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.details = {"hint": REDIS_CONFIG_MESSAGE}


class RegistrationFailedError(ChatAPIException):
    default_message = "OAuth client registration failed"
    default_code = "REGISTRATION_FAILED"
    default_status_code = 502

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None) -> None:
        self.upstream_status = upstream_status
        details = {"upstream_status": upstream_status} if upstream_status is not None else None
        super().__init__(message, details=details)


class StateNotFoundError(ChatAPIException):
    """Expired, replayed or forged state. Expected and common."""

    default_message = "Invalid or expired state parameter"
    default_code = "STATE_NOT_FOUND"
    default_status_code = 400


class StateCorruptedError(ChatAPIException):
    """A stored state record failed validation. Treated as a security incident."""

    default_message = "OAuth state could not be verified"
    default_code = "STATE_CORRUPTED"
    default_status_code = 400


class TokenExchangeFailedError(ChatAPIException):
    default_message = "OAuth token exchange failed"
    default_code = "TOKEN_EXCHANGE_FAILED"
    default_status_code = 500

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None) -> None:
        self.upstream_status = upstream_status
        details = {"upstream_status": upstream_status} if upstream_status is not None else None
        super().__init__(message, details=details)


class TokenRefreshFailedError(ChatAPIException):
    default_message = "OAuth token refresh failed"
    default_code = "TOKEN_REFRESH_FAILED"
    default_status_code = 502

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None) -> None:
        self.upstream_status = upstream_status
        details = {"upstream_status": upstream_status} if upstream_status is not None else None
        super().__init__(message, details=details)


class ReconnectRequiredError(ChatAPIException):
    """The connection cannot be used until the user runs the connect flow again."""

    default_message = "MCP connection requires re-authorization"
    default_code = "RECONNECT_REQUIRED"
    default_status_code = 401

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(details={"connection_id": connection_id, "reason": reason})
