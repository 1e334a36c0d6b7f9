"""
Custom exceptions for EventStack service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from typing import Any, Dict, Optional


class EventStackException(Exception):
    """Base exception for EventStack service."""
    
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(EventStackException):
    """Raised at startup when the policy, buffer or sink settings are malformed."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )


class SinkWriteError(EventStackException):
    """Raised when a bulk write to Elasticsearch fails."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="sink_write_error",
            details=details,
        )


class ServiceUnavailableError(EventStackException):
    """Raised when the event pipeline has not been started yet."""
    
    def __init__(self, message: str = "Event pipeline not initialized") -> None:
        super().__init__(
            message=message,
            status_code=503,
            error_code="service_unavailable",
        )
