"""
Error Definitions

Defines the exception classes used by the gateway for unified error handling.
Malformed upstream payloads are not represented here: the translators recover
from them locally and never raise.
"""

from typing import Any, Optional


class AppError(Exception):
    """
    Application Base Exception

    Base class for all custom exceptions, containing error message, type, and code.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "app_error",
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            error_type: Error type
            code: Error code
            details: Extra error details
            status_code: HTTP status code
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary format (for API response)

        Args:
            include_details: Whether to include the details mapping

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }
        if include_details and self.details:
            result["error"]["details"] = self.details
        return result


class ClientRequestError(AppError):
    """
    Client Request Error

    Raised before any upstream call when the inbound request cannot be
    translated (unsupported response_format, unknown content part, missing field).
    """

    def __init__(
        self,
        message: str = "Invalid request",
        code: str = "invalid_request",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="invalid_request_error",
            code=code,
            details=details,
            status_code=400,
        )


class UpstreamTransportError(AppError):
    """
    Upstream Transport Error

    Raised when a remote image cannot be fetched or the Gemini API cannot be reached.
    """

    def __init__(
        self,
        message: str = "Upstream service error",
        code: str = "upstream_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 502,
    ):
        super().__init__(
            message=message,
            error_type="upstream_error",
            code=code,
            details=details,
            status_code=status_code,
        )
