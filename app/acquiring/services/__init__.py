"""
Acquiring services.

Usage:
    from acquiring.services import TransactionService, VerificationService

    txn = TransactionService.submit_transaction(params)
    VerificationService.submit_code(txn.card_submission.id, "482913")
"""

from acquiring.services.settlement_service import SettlementService
from acquiring.services.timeline import TimelineService
from acquiring.services.transaction_service import (
    SubmitTransactionParams,
    TransactionService,
)
from acquiring.services.verification_service import VerificationService
from acquiring.services.withdrawal_service import (
    CreateWithdrawalParams,
    WithdrawalService,
    calculate_fee,
)

__all__ = [
    "CreateWithdrawalParams",
    "SettlementService",
    "SubmitTransactionParams",
    "TimelineService",
    "TransactionService",
    "VerificationService",
    "WithdrawalService",
    "calculate_fee",
]
