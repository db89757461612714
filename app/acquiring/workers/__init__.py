"""
Workers for periodic acquiring jobs.

This module contains Celery tasks run by celery-beat:
- Expiry: Fails transactions abandoned before or during step-up verification
- Settlement: Settles card transactions pending past the settlement delay
- Reconciliation: Compares cached balances with the ledger fold

Usage:
    from acquiring.workers import (
        expire_stale_transactions,
        reconcile_merchant_balances,
        settle_awaiting_exchange,
    )

    # Trigger manual processing
    expire_stale_transactions.delay()
"""

from acquiring.workers.expiry import expire_single_transaction, expire_stale_transactions
from acquiring.workers.reconciliation import reconcile_merchant_balances
from acquiring.workers.settlement import settle_awaiting_exchange

__all__ = [
    # Expiry
    "expire_single_transaction",
    "expire_stale_transactions",
    # Settlement
    "settle_awaiting_exchange",
    # Reconciliation
    "reconcile_merchant_balances",
]
