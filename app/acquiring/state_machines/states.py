"""
State enums for acquiring models.

This module defines all state enums used by acquiring models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Transaction States:
    pending_submission → submitted → awaiting_3d_sms/awaiting_3d_push
        → verification_completed → processed_awaiting_exchange → processed (card)
    pending_submission → submitted → processed_awaiting_exchange → processed (bank wire)
    any non-terminal → rejected / insufficient_funds / failed

CardSubmission States:
    submitted → awaiting_3d_sms/awaiting_3d_push → verification_completed
        → processed / rejected
    any non-terminal → rejected / insufficient_funds / failed

Withdrawal States:
    initiated → on_chain → paid (crypto)
    initiated → paid (bank transfer)
    initiated/on_chain → failed / reversed
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the Transaction model lifecycle.

    Terminal states: PROCESSED, REJECTED, INSUFFICIENT_FUNDS, FAILED
    Terminal states are permanent; compensation is always a new transaction.

    State Flow (Card):
        PENDING_SUBMISSION → SUBMITTED → AWAITING_3D_SMS → VERIFICATION_COMPLETED
            → PROCESSED_AWAITING_EXCHANGE → PROCESSED

    State Flow (Bank Wire):
        PENDING_SUBMISSION → SUBMITTED → PROCESSED_AWAITING_EXCHANGE → PROCESSED

    Failure Flow:
        any non-terminal → REJECTED / INSUFFICIENT_FUNDS / FAILED
    """

    PENDING_SUBMISSION = "pending_submission", "Pending Submission"
    SUBMITTED = "submitted", "Submitted"
    AWAITING_3D_SMS = "awaiting_3d_sms", "Awaiting 3-D SMS"
    AWAITING_3D_PUSH = "awaiting_3d_push", "Awaiting 3-D Push"
    VERIFICATION_COMPLETED = "verification_completed", "Verification Completed"
    PROCESSED_AWAITING_EXCHANGE = (
        "processed_awaiting_exchange",
        "Processed (Awaiting Exchange)",
    )
    PROCESSED = "processed", "Processed"
    REJECTED = "rejected", "Rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds", "Insufficient Funds"
    FAILED = "failed", "Failed"


class CardSubmissionStatus(models.TextChoices):
    """
    States for the CardSubmission (step-up verification) lifecycle.

    The awaiting states mirror the owning Transaction. Once verification
    completes the submission follows the transaction into its final state.

    State Flow:
        SUBMITTED → AWAITING_3D_SMS / AWAITING_3D_PUSH → VERIFICATION_COMPLETED
        VERIFICATION_COMPLETED → PROCESSED (transaction settled)
        any non-terminal → REJECTED / INSUFFICIENT_FUNDS / FAILED
    """

    SUBMITTED = "submitted", "Submitted"
    AWAITING_3D_SMS = "awaiting_3d_sms", "Awaiting 3-D SMS"
    AWAITING_3D_PUSH = "awaiting_3d_push", "Awaiting 3-D Push"
    VERIFICATION_COMPLETED = "verification_completed", "Verification Completed"
    PROCESSED = "processed", "Processed"
    REJECTED = "rejected", "Rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds", "Insufficient Funds"
    FAILED = "failed", "Failed"


class WithdrawalStatus(models.TextChoices):
    """
    States for the Withdrawal model lifecycle.

    Terminal states: PAID, FAILED, REVERSED

    State Flow:
        INITIATED → ON_CHAIN → PAID (crypto)
        INITIATED → PAID (bank transfer)
        INITIATED / ON_CHAIN → FAILED / REVERSED (reservation released)
    """

    INITIATED = "initiated", "Initiated"
    ON_CHAIN = "on_chain", "On Chain"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REVERSED = "reversed", "Reversed"


class PaymentMethod(models.TextChoices):
    """How the customer pays."""

    CARD = "card", "Card"
    BANK_WIRE = "bank_wire", "Bank Wire"


class ReviewStatus(models.TextChoices):
    """Manual review state of a transaction routed by the risk scorer."""

    NOT_REQUIRED = "not_required", "Not Required"
    PENDING = "pending", "Pending Review"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class ReviewDecision(models.TextChoices):
    """Operator decision on a transaction under manual review."""

    APPROVE = "approve", "Approve"
    REJECT = "reject", "Reject"


class MerchantConfirmation(models.TextChoices):
    """Merchant-side confirmation that a bank wire arrived."""

    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    NOT_RECEIVED = "not_received", "Not Received"


class VerificationType(models.TextChoices):
    """Step-up challenge channel."""

    SMS = "sms", "SMS"
    PUSH = "push", "Push"


class WithdrawalMethod(models.TextChoices):
    """How merchant funds leave the platform."""

    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    CRYPTO = "crypto", "Crypto"


class CryptoAsset(models.TextChoices):
    """Supported withdrawal assets (asset + network)."""

    USDT_TRC20 = "usdt_trc20", "USDT (TRC20)"
    USDT_ERC20 = "usdt_erc20", "USDT (ERC20)"
    BTC = "btc", "Bitcoin"
    ETH = "eth", "Ethereum"


# =============================================================================
# Terminal state sets
# =============================================================================

TRANSACTION_TERMINAL_STATES = frozenset(
    {
        TransactionStatus.PROCESSED,
        TransactionStatus.REJECTED,
        TransactionStatus.INSUFFICIENT_FUNDS,
        TransactionStatus.FAILED,
    }
)

TRANSACTION_NON_TERMINAL_STATES = [
    status for status in TransactionStatus if status not in TRANSACTION_TERMINAL_STATES
]

CARD_SUBMISSION_TERMINAL_STATES = frozenset(
    {
        CardSubmissionStatus.PROCESSED,
        CardSubmissionStatus.REJECTED,
        CardSubmissionStatus.INSUFFICIENT_FUNDS,
        CardSubmissionStatus.FAILED,
    }
)

CARD_SUBMISSION_NON_TERMINAL_STATES = [
    status
    for status in CardSubmissionStatus
    if status not in CARD_SUBMISSION_TERMINAL_STATES
]

AWAITING_VERIFICATION_STATES = frozenset(
    {
        TransactionStatus.AWAITING_3D_SMS,
        TransactionStatus.AWAITING_3D_PUSH,
    }
)

# States the inactivity sweep may expire
EXPIRABLE_STATES = AWAITING_VERIFICATION_STATES | {TransactionStatus.PENDING_SUBMISSION}

WITHDRAWAL_TERMINAL_STATES = frozenset(
    {
        WithdrawalStatus.PAID,
        WithdrawalStatus.FAILED,
        WithdrawalStatus.REVERSED,
    }
)

# Withdrawals in these states no longer hold a reservation against balance
WITHDRAWAL_RELEASED_STATES = frozenset(
    {
        WithdrawalStatus.FAILED,
        WithdrawalStatus.REVERSED,
    }
)
