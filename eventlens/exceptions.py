"""
Exception Classes for eventlens

Every failure the core reports to a caller is an ``EventLensError`` carrying an
HTTP status code and a details dict, so routes can raise them directly and the
registered exception handlers render a consistent JSON body.
"""

from typing import Any

from fastapi import status


class EventLensError(Exception):
    """Base exception class for all eventlens errors"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(EventLensError):
    """Raised when the caller has no identity (Unauthorized)"""

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, details=details or {})


class AuthorizationError(EventLensError):
    """Raised when an identified caller is denied (Forbidden)"""

    def __init__(self, message: str = "Forbidden", action: str | None = None, resource_type: str | None = None):
        details = {}
        if action:
            details["action"] = action
        if resource_type:
            details["resource_type"] = resource_type
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, details=details)


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(EventLensError):
    """Raised when a resource does not exist or is not visible to the caller"""

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


# ============================================================================
# Validation & Quota Exceptions
# ============================================================================


class ValidationError(EventLensError):
    """Raised when input validation fails; nothing has been written"""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class QuotaExceededError(EventLensError):
    """Raised when an upload would push the owner past their storage limit"""

    def __init__(self, current_usage: int, limit: int, requested: int):
        super().__init__(
            message="Storage limit exceeded",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"current_usage": current_usage, "limit": limit, "requested": requested},
        )


class RateLimitExceededError(EventLensError):
    """Raised when rate limit is exceeded"""

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", retry_after: int | None = None):
        self.retry_after = retry_after
        details = {"retry_after": retry_after} if retry_after is not None else {}
        super().__init__(message=message, status_code=status.HTTP_429_TOO_MANY_REQUESTS, details=details)


# ============================================================================
# Asset Pipeline Exceptions
# ============================================================================


class StorageError(EventLensError):
    """Raised when the object store rejects or fails an operation"""

    def __init__(self, message: str = "Storage operation failed", key: str | None = None, operation: str | None = None):
        details = {}
        if key:
            details["key"] = key
        if operation:
            details["operation"] = operation
        super().__init__(message=message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class DerivationError(EventLensError):
    """Raised when a thumbnail or metadata cannot be derived from an asset"""

    def __init__(self, message: str = "Failed to derive asset metadata", key: str | None = None):
        details = {"key": key} if key else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class ConversionError(DerivationError):
    """Raised when a HEIC/HEIF image cannot be converted for display"""


class PersistError(EventLensError):
    """Raised when the media row cannot be written after a successful upload"""

    def __init__(self, message: str = "Failed to save media record", media_id: str | None = None):
        details = {"media_id": media_id} if media_id else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class PartialFailureError(EventLensError):
    """Raised when a cascade deletion removed only some of its dependents"""

    def __init__(self, message: str, succeeded: int, total: int, failed_ids: list[str] | None = None):
        self.succeeded = succeeded
        self.total = total
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details={"succeeded": succeeded, "total": total, "failed_ids": failed_ids or []},
        )
