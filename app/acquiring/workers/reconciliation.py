"""
Balance reconciliation worker.

The ledger fold is the only source of truth for balances; the Balance row
caches it. This worker recomputes the fold for every merchant balance,
repairs drifted caches and reports negative folds, which point at a ledger
defect and are never repaired automatically.
"""

from __future__ import annotations

import logging

from celery import shared_task

from acquiring.ledger import BalanceService
from acquiring.models import Balance

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def reconcile_merchant_balances(self) -> dict:
    """
    Reconcile every cached merchant balance.

    Returns:
        Dict with checked, repaired, negative and errors counts
    """
    stats = {"checked": 0, "repaired": 0, "negative": 0, "errors": 0}

    pairs = list(
        Balance.objects.order_by("merchant_id", "currency").values_list("merchant_id", "currency")
    )
    for merchant_id, currency in pairs:
        stats["checked"] += 1
        try:
            result = BalanceService.reconcile(merchant_id, currency)
        except Exception as e:
            stats["errors"] += 1
            logger.error(
                f"Balance reconciliation failed: {e}",
                extra={"merchant_id": str(merchant_id), "currency": currency},
                exc_info=True,
            )
            continue

        if not result.success:
            stats["negative"] += 1
        elif result.data.repaired:
            stats["repaired"] += 1

    logger.info("Balance reconciliation complete", extra=stats)
    return stats
