"""
Application exception hierarchy.

Every error that reaches the HTTP layer is a ChatAPIException (or is turned
into a generic INTERNAL_ERROR). ``to_dict`` is the single structured error
body shape used by all routes: ``{"error", "message", "details"}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ChatAPIException(Exception):
    """Base exception for all application errors."""

    default_message = "An error occurred"
    default_code = "CHATAPI_ERROR"
    default_status_code = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ResourceNotFoundError(ChatAPIException):
    default_code = "NOT_FOUND"
    default_status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        message = f"{resource} not found"
        details = None
        if resource_id:
            message = f"{resource} not found: {resource_id}"
            details = {"resource_id": resource_id}
        super().__init__(message, details=details)


class ServiceUnavailableError(ChatAPIException):
    default_message = "Service temporarily unavailable"
    default_code = "SERVICE_UNAVAILABLE"
    default_status_code = 503

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        self.retry_after = retry_after
        details = {"retry_after_seconds": retry_after} if retry_after else None
        super().__init__(message, code=code, details=details)
