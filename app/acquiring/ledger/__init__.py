"""
Merchant balance ledger.

Usage:
    from acquiring.ledger import BalanceService, Money

    snapshot = BalanceService.get_balance(merchant_id, "usd")
    print(snapshot.available)  # "$50.00 USD"
"""

from acquiring.ledger.services import BalanceService, ReconciliationReport
from acquiring.ledger.types import BalanceSnapshot, Money, normalize_currency

__all__ = [
    "BalanceService",
    "BalanceSnapshot",
    "Money",
    "ReconciliationReport",
    "normalize_currency",
]
