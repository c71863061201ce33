"""
Base exception classes for application-wide error handling.

Every domain error raised by the project derives from BaseApplicationError so
callers (websocket consumers, Celery tasks, tests) can rely on a single shape:
a human-readable message, a machine-readable error code and optional details.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input rejected before touching storage
    ├── PermissionDeniedError - Caller may not act on the record
    ├── ConflictError - Uniqueness or concurrent-modification conflicts
    └── ExternalServiceError - Store or transport failures

Usage:
    from core.exceptions import ValidationError

    raise ValidationError("Cannot chat with yourself", error_code="SAME_USER")

    # Serialize for a websocket error frame
    try:
        ...
    except BaseApplicationError as e:
        await self.send_json({"type": "error", **e.to_dict()})
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, field errors, etc.)

    Example:
        try:
            chat_id = await directory.find_or_create_direct_chat(a, b)
        except ChatCreationFailed as e:
            logger.warning(f"Chat creation failed: {e.error_code}")
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary for client payloads.

        Returns:
            Dict with message, error_code and (when present) details keys

        Example:
            {
                "message": "Message could not be sent",
                "error_code": "SEND_FAILED",
                "details": {"chat_id": 12}
            }
        """
        result: dict[str, Any] = {
            "message": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Validation happens before any storage call, so a ValidationError
    guarantees nothing was written.
    """

    default_error_code: str = "VALIDATION_ERROR"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if user_id not in participant_ids:
            raise PermissionDeniedError(
                "Not a participant of this chat",
                error_code="NOT_PARTICIPANT",
                details={"chat_id": chat_id},
            )
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with existing state.

    Use for uniqueness violations detected by the database, such as a second
    chat for a user pair that already has one.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a backing service (database, channel layer, broker) fails.

    Attributes:
        retryable: Whether the caller may safely retry the operation
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    retryable: bool = False
