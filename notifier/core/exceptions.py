"""
Custom exception classes
HTTP errors for the API layer and the delivery error taxonomy used by
providers, channels and the job queue
"""

from fastapi import HTTPException, status
from typing import Any, Dict, List, Optional, Tuple

class NotifierException(HTTPException):
    """Base exception class for API errors"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(NotifierException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class UnauthorizedException(NotifierException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(NotifierException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(NotifierException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(NotifierException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

# Delivery errors
class DeliveryError(Exception):
    """Base class for delivery failures"""

class ConfigurationError(DeliveryError):
    """Missing credentials or an unknown provider name. Not retried."""

class ValidationError(DeliveryError):
    """No usable recipient contact or malformed input. Not retried."""

class NoDeviceTokensError(ValidationError):
    """User has no active device tokens"""

    def __init__(self, user_id: str):
        super().__init__("No device tokens found for user")
        self.user_id = user_id

class ProviderError(DeliveryError):
    """Transient failure reported by a provider backend"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        invalid_tokens: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.invalid_tokens = invalid_tokens or []

class ExhaustionError(DeliveryError):
    """Every provider or attempt failed"""

    def __init__(
        self,
        message: str,
        last_error: Optional[BaseException] = None,
        errors: Optional[List[Tuple[str, BaseException]]] = None,
    ):
        super().__init__(message)
        self.last_error = last_error
        self.errors = errors or []
