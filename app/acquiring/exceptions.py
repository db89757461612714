"""
Acquiring-specific exceptions for transaction, verification and withdrawal
operations.

Exception Hierarchy:
    AcquiringError (base for the acquiring domain)
    ├── AcquiringNotFoundError - Transaction/submission/withdrawal lookup failures
    ├── AcquiringValidationError - Bad amounts, currencies, destinations
    ├── InsufficientBalanceError - Withdrawal or refund exceeds available balance
    └── VerificationMismatchError - Wrong step-up code (non-fatal, counted)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    InvalidStateTransitionError - Transition from the wrong state (inherits ConflictError)
    ResendLimitExceededError - SMS resend cap reached (inherits RateLimitError)
    ScoringUnavailableError - Risk scorer down (inherits ExternalServiceError)

Every exception carries a ``customer_message``: the generic text safe to show
to a paying customer. Operators get ``message``, ``error_code`` and
``details`` through ``to_dict()``.

Usage:
    from acquiring.exceptions import (
        InsufficientBalanceError,
        InvalidStateTransitionError,
        StaleRecordError,
    )

    try:
        WithdrawalService.create_withdrawal(params)
    except InsufficientBalanceError as e:
        return {"error": e.customer_message}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


GENERIC_CUSTOMER_MESSAGE = "Something went wrong. Please try again later."


class CustomerMessageMixin:
    """Adds the customer-safe message to an application error."""

    customer_message: str = GENERIC_CUSTOMER_MESSAGE

    def to_customer_dict(self) -> dict[str, Any]:
        """Error payload without operator details."""
        return {
            "error": self.customer_message,
            "error_code": self.error_code,  # type: ignore[attr-defined]
        }


# =============================================================================
# Acquiring Domain Exceptions
# =============================================================================


class AcquiringError(CustomerMessageMixin, BaseApplicationError):
    """
    Base exception for all acquiring operations.

    Example:
        try:
            TransactionService.confirm_receipt(transaction_id, actor="ops:jane")
        except AcquiringError as e:
            logger.error(f"Acquiring operation failed: {e}")
    """

    default_error_code: str = "ACQUIRING_ERROR"


class AcquiringNotFoundError(CustomerMessageMixin, NotFoundError):
    """
    Raised when a Transaction, CardSubmission or Withdrawal does not exist.

    Example:
        raise AcquiringNotFoundError(
            f"Transaction {transaction_id} not found",
            details={"transaction_id": str(transaction_id)},
        )
    """

    default_error_code: str = "ACQUIRING_NOT_FOUND"
    customer_message = "Payment not found."


class AcquiringValidationError(CustomerMessageMixin, ValidationError):
    """
    Raised when input to an acquiring operation is invalid.

    Use for:
    - Non-positive or non-integer amounts
    - Unknown currency or payment method
    - Malformed withdrawal destination (address, IBAN)
    - Fee larger than the withdrawal amount
    """

    default_error_code: str = "ACQUIRING_VALIDATION_ERROR"
    customer_message = "The submitted payment details are invalid."


class InsufficientBalanceError(AcquiringError):
    """
    Raised when a debit exceeds the merchant's available balance.

    The check and the reservation happen under the same row lock, so this
    error is authoritative at the time it is raised.

    Attributes:
        merchant_id: Merchant whose balance was insufficient
        required_cents: Amount the operation needed
        available_cents: Available balance at the time of the check
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"
    customer_message = "Insufficient funds."

    def __init__(
        self,
        merchant_id: Any,
        required_cents: int,
        available_cents: int,
        currency: str = "usd",
    ):
        self.merchant_id = merchant_id
        self.required_cents = required_cents
        self.available_cents = available_cents
        self.currency = currency
        super().__init__(
            f"Insufficient balance for merchant {merchant_id}: "
            f"required {required_cents}, available {available_cents} "
            f"({currency.upper()})",
            details={
                "merchant_id": str(merchant_id),
                "required_cents": required_cents,
                "available_cents": available_cents,
                "currency": currency,
            },
        )


class VerificationMismatchError(AcquiringError):
    """
    Raised when the customer submits the wrong step-up code.

    Non-fatal: the submission stays in its awaiting state until the
    attempt limit is reached. ``attempts_remaining`` is 0 once the
    submission has been rejected.
    """

    default_error_code: str = "VERIFICATION_MISMATCH"
    customer_message = "Invalid verification code."

    def __init__(
        self,
        message: str,
        attempts_remaining: int,
        details: dict[str, Any] | None = None,
    ):
        self.attempts_remaining = attempts_remaining
        details = dict(details or {})
        details["attempts_remaining"] = attempts_remaining
        super().__init__(message, details=details)


# =============================================================================
# Concurrency & State Exceptions
# =============================================================================


class StaleRecordError(CustomerMessageMixin, ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    The caller must re-read the record and decide whether to retry.
    Monetary operations are never retried automatically.

    Example:
        raise StaleRecordError(
            f"Withdrawal {pk} has been modified",
            details={"pk": str(pk), "expected_version": 3, "current_version": 5},
        )
    """

    default_error_code: str = "STALE_RECORD"
    customer_message = "This payment was updated by someone else. Please refresh."


class InvalidStateTransitionError(CustomerMessageMixin, ConflictError):
    """
    Raised when a transition is attempted from a state that does not allow it.

    Example:
        raise InvalidStateTransitionError(
            "Cannot confirm receipt of transaction in 'submitted' state",
            details={"current_state": "submitted", "target_state": "processed"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
    customer_message = "This payment can no longer be updated."


class ResendLimitExceededError(CustomerMessageMixin, RateLimitError):
    """Raised when the SMS resend cap for a card submission is reached."""

    default_error_code: str = "RESEND_LIMIT_EXCEEDED"
    customer_message = "Too many code requests. Please wait for your code."


class ScoringUnavailableError(CustomerMessageMixin, ExternalServiceError):
    """
    Raised when the risk scorer cannot produce a score.

    Never surfaces to customers: the transaction service catches it and
    routes the transaction to manual review.
    """

    default_error_code: str = "SCORING_UNAVAILABLE"


__all__ = [
    "AcquiringError",
    "AcquiringNotFoundError",
    "AcquiringValidationError",
    "InsufficientBalanceError",
    "VerificationMismatchError",
    "StaleRecordError",
    "InvalidStateTransitionError",
    "ResendLimitExceededError",
    "ScoringUnavailableError",
]
