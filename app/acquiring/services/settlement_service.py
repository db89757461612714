"""
Settlement service: moving funds from pending to available.

A transaction in PROCESSED_AWAITING_EXCHANGE counts towards the merchant's
pending balance. Settlement moves it to PROCESSED, after which it counts
towards available balance. Two paths lead there:

- ``confirm_receipt``: an operator confirms the funds arrived (bank wire
  proof, manual exchange)
- ``settle_due``: the periodic sweep settles card transactions that have
  waited ACQUIRING_AUTO_SETTLEMENT_DELAY_HOURS

Each settlement run writes one Settlement record listing the transactions
it moved.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from django.conf import settings
from django.utils import timezone

from core.services import BaseService, ServiceResult

from acquiring.ledger import BalanceService
from acquiring.models import CardSubmission, Settlement, Transaction
from acquiring.services.timeline import TimelineService
from acquiring.services.transaction_service import SYSTEM_ACTOR, TransactionService
from acquiring.state_machines import CardSubmissionStatus, PaymentMethod, TransactionStatus


class SettlementService(BaseService):
    """Settles pending transactions into available balance."""

    BATCH_SIZE = 500

    @classmethod
    def confirm_receipt(
        cls,
        transaction_id: uuid.UUID,
        actor: str,
        proof_reference: str | None = None,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Transaction:
        """
        Confirm the funds of one transaction arrived: PAE -> PROCESSED.

        Replaying on a PROCESSED transaction is a no-op.

        Raises:
            InvalidStateTransitionError: Not PROCESSED_AWAITING_EXCHANGE
            StaleRecordError: ``expected_version`` no longer matches
        """
        TransactionService._require_actor(actor)

        with TimelineService.audited(transaction_id, "confirm_receipt", actor):
            with cls.atomic():
                balance, txn = TransactionService._lock_with_balance(
                    transaction_id, expected_version
                )
                if txn.status == TransactionStatus.PROCESSED:
                    return txn

                if proof_reference:
                    txn.proof_reference = proof_reference
                txn.funds_received_at = timezone.now()
                cls._settle_locked(txn, actor=actor, notes=notes)

                settlement = Settlement.objects.create(
                    merchant_id=txn.merchant_id,
                    amount_cents=txn.net_amount_cents,
                    currency=txn.currency,
                    created_by=actor,
                )
                settlement.transactions.add(txn)
                BalanceService.refresh(balance)

        cls.get_logger().info(
            "Receipt confirmed",
            extra={"transaction_id": str(transaction_id), "actor": actor},
        )
        return txn

    @classmethod
    def settle_due(cls, now: datetime | None = None) -> dict:
        """
        Settle card transactions pending longer than the settlement delay.

        Returns:
            dict with settled transaction count and settlements created
        """
        now = now or timezone.now()
        delay = timedelta(hours=getattr(settings, "ACQUIRING_AUTO_SETTLEMENT_DELAY_HOURS", 24))
        cutoff = now - delay

        groups = (
            Transaction.objects.filter(
                method=PaymentMethod.CARD,
                status=TransactionStatus.PROCESSED_AWAITING_EXCHANGE,
                processed_at__lte=cutoff,
            )
            .order_by()
            .values("merchant_id", "currency")
            .distinct()
        )

        settled = 0
        settlements = 0
        for group in groups:
            result = cls.settle_merchant(group["merchant_id"], group["currency"], cutoff)
            if result.success and result.data is not None:
                settled += result.data.transactions.count()
                settlements += 1

        return {"settled": settled, "settlements": settlements}

    @classmethod
    def settle_merchant(
        cls,
        merchant_id: uuid.UUID,
        currency: str,
        cutoff: datetime,
    ) -> ServiceResult[Settlement]:
        """
        Settle one merchant's due card transactions under the balance lock.

        Returns a failure result when nothing was due by the time the lock
        was acquired.
        """
        with cls.atomic():
            balance = BalanceService.lock(merchant_id, currency)
            due_ids = list(
                Transaction.objects.filter(
                    merchant_id=merchant_id,
                    currency=balance.currency,
                    method=PaymentMethod.CARD,
                    status=TransactionStatus.PROCESSED_AWAITING_EXCHANGE,
                    processed_at__lte=cutoff,
                )
                .order_by("processed_at")
                .values_list("id", flat=True)[: cls.BATCH_SIZE]
            )
            if not due_ids:
                return ServiceResult.failure("Nothing due", error_code="NOTHING_DUE")

            txns = list(
                Transaction.objects.select_for_update().filter(pk__in=due_ids).order_by("processed_at")
            )
            for txn in txns:
                cls._settle_locked(txn, actor=SYSTEM_ACTOR, notes="auto_settlement")

            settlement = Settlement.objects.create(
                merchant_id=merchant_id,
                amount_cents=sum(txn.net_amount_cents for txn in txns),
                currency=balance.currency,
                created_by=SYSTEM_ACTOR,
            )
            settlement.transactions.add(*txns)
            BalanceService.refresh(balance)

        cls.get_logger().info(
            "Merchant settlement recorded",
            extra={
                "merchant_id": str(merchant_id),
                "settlement_id": str(settlement.id),
                "transactions": len(txns),
                "amount_cents": settlement.amount_cents,
            },
        )
        return ServiceResult.success(settlement)

    @classmethod
    def _settle_locked(cls, txn: Transaction, actor: str, notes: str = "") -> None:
        TimelineService.apply_transition(txn, "settle", actor=actor, notes=notes, event="processed")
        if txn.is_card:
            submission = (
                CardSubmission.objects.select_for_update()
                .filter(transaction=txn, status=CardSubmissionStatus.VERIFICATION_COMPLETED)
                .first()
            )
            if submission is not None:
                submission.mark_processed()
                submission.save()
