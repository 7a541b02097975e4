"""
Shared error taxonomy for the petstore query layer.

Fetch failures are raised as one of these types by the resource adapter and
propagated unchanged through the fetch coordinator to every coalesced caller.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class QueryLayerException(Exception):
    """Base exception for the query layer."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class NetworkError(QueryLayerException):
    """Transport failure talking to the resource service."""

    status_code = 502

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class FetchTimeoutError(QueryLayerException):
    """Fetch exceeded the timeout configured by its policy."""

    status_code = 504

    def __init__(self, message: str = "Request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("TIMEOUT_ERROR", message, details)


class AuthError(QueryLayerException):
    """Resource service rejected the credentials (401/403)."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_ERROR", message, details)


class NotFoundError(QueryLayerException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ValidationError(QueryLayerException):
    """Resource service rejected the payload."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ResourceServiceError(QueryLayerException):
    """Unexpected status from the resource service."""

    status_code = 502

    def __init__(self, service: str, message: str = "Resource service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("RESOURCE_SERVICE_ERROR", f"{service}: {message}", details)


class HydrationError(QueryLayerException):
    """Hydration payload could not be applied."""

    status_code = 500

    def __init__(self, message: str = "Hydration failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("HYDRATION_ERROR", message, details)
