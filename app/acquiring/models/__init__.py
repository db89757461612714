"""
Acquiring models.

Models:
    Transaction: One customer payment attempt (FSM)
    TransactionEvent: Append-only timeline entry of a Transaction
    CardSubmission: Step-up verification attempt for a card Transaction (FSM)
    Withdrawal: Merchant withdrawal by bank transfer or crypto (FSM)
    Balance: Lock row and cached snapshot of a merchant balance
    Settlement: Immutable batch of settled transactions
"""

from acquiring.models.balance import Balance, Settlement
from acquiring.models.card_submission import CardSubmission
from acquiring.models.transaction import Transaction, TransactionEvent
from acquiring.models.withdrawal import Withdrawal

__all__ = [
    "Balance",
    "CardSubmission",
    "Settlement",
    "Transaction",
    "TransactionEvent",
    "Withdrawal",
]
