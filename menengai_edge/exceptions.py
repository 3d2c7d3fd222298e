"""
Custom exceptions for the edge router
Keep it simple but comprehensive
"""
from typing import Optional


class EdgeException(Exception):
    """Base exception for all edge errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(EdgeException):
    """Settings are inconsistent or a required secret is unusable"""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details={"setting": setting} if setting else {}
        )


# ============================================================
# Hosted Backend Exceptions
# ============================================================

class BackendError(EdgeException):
    """Hosted backend could not answer a lookup"""

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        error_code: str = "BACKEND_ERROR"
    ):
        details = {"operation": operation}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message=message, error_code=error_code, details=details)
        self.operation = operation
        self.status_code = status_code


class IdentityServiceError(BackendError):
    """Session validation or token refresh failed at the transport level"""

    def __init__(self, message: str, operation: str, status_code: Optional[int] = None):
        super().__init__(message, operation, status_code, error_code="IDENTITY_SERVICE_ERROR")


class DirectoryLookupError(BackendError):
    """Organization directory lookup failed"""

    def __init__(self, message: str, operation: str, status_code: Optional[int] = None):
        super().__init__(message, operation, status_code, error_code="DIRECTORY_LOOKUP_ERROR")
