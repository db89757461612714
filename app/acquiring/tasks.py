"""
Celery tasks for the acquiring core.

Periodic tasks are registered with celery-beat through the
``0002_add_periodic_schedules`` data migration.

Usage:
    from acquiring.tasks import expire_stale_transactions

    expire_stale_transactions.delay()
"""

from __future__ import annotations

# Re-export worker tasks so Celery autodiscovery finds them
from acquiring.workers import (  # noqa: E402, F401
    expire_single_transaction,
    expire_stale_transactions,
    reconcile_merchant_balances,
    settle_awaiting_exchange,
)
