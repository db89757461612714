"""
Base exception classes for application-wide error handling.

Every error raised by a service carries a machine-readable ``error_code``
and optional ``details`` so callers (admin actions, Celery workers, a
future HTTP layer) can react without parsing messages.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input rejected before any state changed
    ├── NotFoundError - Record does not exist
    ├── ConflictError - Operation conflicts with current state or version
    ├── RateLimitError - Action throttled (resend limits, cooldowns)
    └── ExternalServiceError - Collaborator outside the database failed

Usage:
    from core.exceptions import ConflictError, ValidationError

    raise ValidationError(
        "Invalid withdrawal",
        error_code="INVALID_WITHDRAWAL",
        details={"amount_cents": ["Must be positive"]},
    )

    try:
        ...
    except BaseApplicationError as e:
        logger.warning("Operation refused", extra=e.to_dict())

Note:
    These exceptions describe business-rule failures. Database integrity
    errors and programming errors are left to propagate unchanged.
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
        error_code: Machine-readable code for programmatic handling
        details: Additional context (field errors, ids, current state)
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
        Convert exception to a serializable dictionary.

        Example:
            {
                "error": "Transaction not found",
                "error_code": "TRANSACTION_NOT_FOUND",
                "details": {"pk": "6d1f..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input is rejected before anything is written.

    Example:
        raise ValidationError(
            "Invalid transaction submission",
            details={"amount_cents": ["Must be a positive integer"]},
        )
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a single-record lookup finds nothing."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current record state.

    Use for:
    - Invalid state transitions
    - Optimistic locking failures
    - Duplicates that cannot be treated as replays
    """

    default_error_code: str = "CONFLICT"


class RateLimitError(BaseApplicationError):
    """
    Raised when an action is throttled.

    Include ``retry_after`` in details when the caller can usefully wait.
    """

    default_error_code: str = "RATE_LIMIT_EXCEEDED"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a collaborator outside the database fails.

    Example:
        try:
            with circuit.call():
                assessment = scorer.score(signals)
        except Exception as e:
            raise ExternalServiceError(
                "Risk scoring unavailable",
                error_code="SCORING_UNAVAILABLE",
                details={"original_error": str(e)},
            ) from e
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
