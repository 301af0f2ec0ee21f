"""
Shared error handling for the Offline Cache Gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CacheGatewayException(Exception):
    """Base exception for the cache gateway."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(CacheGatewayException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NetworkError(CacheGatewayException):
    """The upstream could not be reached (connectivity loss, DNS, reset)."""

    status_code = 502

    def __init__(self, url: str, message: str = "Network request failed", details: Optional[Dict[str, Any]] = None):
        self.url = url
        super().__init__("NETWORK_ERROR", f"{url}: {message}", details)


class StorageError(CacheGatewayException):
    """Cache storage backend errors."""

    status_code = 503

    def __init__(self, message: str = "Cache storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class InstallError(CacheGatewayException):
    """Install-time asset precaching failed."""

    status_code = 503

    def __init__(self, message: str = "Install failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("INSTALL_ERROR", message, details)
