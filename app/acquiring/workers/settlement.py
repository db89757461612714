"""
Settlement worker.

Moves card transactions that have waited in PROCESSED_AWAITING_EXCHANGE for
ACQUIRING_AUTO_SETTLEMENT_DELAY_HOURS into PROCESSED, one Settlement record
per merchant and currency.
"""

from __future__ import annotations

import logging

from celery import shared_task

from acquiring.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def settle_awaiting_exchange(self) -> dict:
    """
    Settle due card transactions.

    Returns:
        Dict with settled transaction count and settlements created
    """
    logger.info("Starting settlement run")
    stats = SettlementService.settle_due()
    logger.info(
        f"Settlement run complete: settled {stats['settled']} transactions",
        extra=stats,
    )
    return stats
