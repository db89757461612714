"""
Expiry worker for abandoned transactions.

Transactions left in PENDING_SUBMISSION or awaiting step-up verification
with no activity for ACQUIRING_INACTIVITY_TIMEOUT_MINUTES are failed with
reason ``expired_inactivity``. Inactivity is measured on the later of the
transaction's and its card submission's ``updated_at``; code entries and
resends only write the submission.

Tasks:
- expire_stale_transactions: Periodic scan (celery-beat)
- expire_single_transaction: Expire one transaction, re-checked under lock
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from acquiring.models import Transaction
from acquiring.services.transaction_service import TransactionService
from acquiring.state_machines import EXPIRABLE_STATES

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum transactions to expire per run
BATCH_SIZE = 200


def inactivity_cutoff(now=None):
    minutes = getattr(settings, "ACQUIRING_INACTIVITY_TIMEOUT_MINUTES", 30)
    return (now or timezone.now()) - timedelta(minutes=minutes)


@shared_task(bind=True)
def expire_stale_transactions(self) -> dict:
    """
    Fail transactions inactive past the timeout.

    Idempotent: each candidate is re-checked under its row lock, so a
    transaction that progressed since the scan is skipped.

    Returns:
        Dict with expired, skipped and errors counts
    """
    cutoff = inactivity_cutoff()
    logger.info("Starting stale transaction scan", extra={"cutoff": cutoff.isoformat()})

    candidates = list(
        Transaction.objects.filter(status__in=EXPIRABLE_STATES, updated_at__lt=cutoff)
        .exclude(card_submission__updated_at__gte=cutoff)
        .order_by("updated_at")
        .values_list("id", flat=True)[:BATCH_SIZE]
    )

    stats = {"expired": 0, "skipped": 0, "errors": 0}
    for transaction_id in candidates:
        try:
            result = TransactionService.expire_stale(transaction_id, cutoff)
        except Exception as e:
            stats["errors"] += 1
            logger.error(
                f"Failed to expire transaction: {e}",
                extra={"transaction_id": str(transaction_id)},
                exc_info=True,
            )
            continue

        if result.success:
            stats["expired"] += 1
        else:
            stats["skipped"] += 1

    logger.info(
        f"Stale transaction scan complete: expired {stats['expired']}",
        extra=stats,
    )
    return stats


@shared_task(bind=True)
def expire_single_transaction(self, transaction_id: str) -> dict:
    """
    Expire one transaction if it is still inactive.

    Returns:
        Dict with status "expired", "skipped" or "not_found"
    """
    try:
        transaction_uuid = UUID(str(transaction_id))
    except ValueError:
        return {"status": "not_found", "transaction_id": transaction_id}

    if not Transaction.objects.filter(pk=transaction_uuid).exists():
        return {"status": "not_found", "transaction_id": transaction_id}

    result = TransactionService.expire_stale(transaction_uuid, inactivity_cutoff())
    if result.success:
        return {"status": "expired", "transaction_id": transaction_id}
    return {
        "status": "skipped",
        "transaction_id": transaction_id,
        "error_code": result.error_code,
    }
