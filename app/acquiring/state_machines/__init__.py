"""
State machine enums and helpers for acquiring models.

This module defines the state enums used by acquiring models with django-fsm.
"""

from acquiring.state_machines.states import (
    AWAITING_VERIFICATION_STATES,
    CARD_SUBMISSION_NON_TERMINAL_STATES,
    CARD_SUBMISSION_TERMINAL_STATES,
    EXPIRABLE_STATES,
    TRANSACTION_NON_TERMINAL_STATES,
    TRANSACTION_TERMINAL_STATES,
    WITHDRAWAL_RELEASED_STATES,
    WITHDRAWAL_TERMINAL_STATES,
    CardSubmissionStatus,
    CryptoAsset,
    MerchantConfirmation,
    PaymentMethod,
    ReviewDecision,
    ReviewStatus,
    TransactionStatus,
    VerificationType,
    WithdrawalMethod,
    WithdrawalStatus,
)

__all__ = [
    "AWAITING_VERIFICATION_STATES",
    "CARD_SUBMISSION_NON_TERMINAL_STATES",
    "CARD_SUBMISSION_TERMINAL_STATES",
    "EXPIRABLE_STATES",
    "TRANSACTION_NON_TERMINAL_STATES",
    "TRANSACTION_TERMINAL_STATES",
    "WITHDRAWAL_RELEASED_STATES",
    "WITHDRAWAL_TERMINAL_STATES",
    "CardSubmissionStatus",
    "CryptoAsset",
    "MerchantConfirmation",
    "PaymentMethod",
    "ReviewDecision",
    "ReviewStatus",
    "TransactionStatus",
    "VerificationType",
    "WithdrawalMethod",
    "WithdrawalStatus",
]
