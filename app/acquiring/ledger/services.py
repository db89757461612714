"""
Balance ledger service.

Balances are never stored authoritatively. ``BalanceService.compute`` folds
a merchant's transactions and withdrawals:

    pending   = sum(net) of transactions in PROCESSED_AWAITING_EXCHANGE
    available = sum(net) of PROCESSED transactions
                - sum(amount) of withdrawals not FAILED/REVERSED

where net = amount - refunded amount.

Money-moving operations serialize on the merchant's Balance row:

    with transaction.atomic():
        balance = BalanceService.lock(merchant_id, "usd")
        snapshot = BalanceService.compute(merchant_id, "usd")
        if amount > snapshot.available.cents:
            raise InsufficientBalanceError(...)
        ...  # write the debit
        BalanceService.refresh(balance)

The check and the write happen under the same lock, so two concurrent
debits can never both pass against the same balance.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from core.services import BaseService, ServiceResult

from acquiring.ledger.types import BalanceSnapshot, Money, normalize_currency
from acquiring.models import Balance, Transaction, Withdrawal
from acquiring.state_machines import TransactionStatus, WITHDRAWAL_RELEASED_STATES

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of comparing a cached Balance row against the fold."""

    merchant_id: uuid.UUID
    currency: str
    cached_available_cents: int
    cached_pending_cents: int
    computed: BalanceSnapshot
    repaired: bool

    @property
    def matched(self) -> bool:
        return (
            self.cached_available_cents == self.computed.available.cents
            and self.cached_pending_cents == self.computed.pending.cents
        )


class BalanceService(BaseService):
    """
    Folds and caches merchant balances.

    All methods are stateless classmethods. ``lock`` and ``refresh`` must run
    inside ``transaction.atomic()``.
    """

    @classmethod
    def compute(cls, merchant_id: uuid.UUID, currency: str) -> BalanceSnapshot:
        """
        Fold the ledger into a balance snapshot.

        Consistent with concurrent writers only when called under the lock
        returned by ``lock()``.
        """
        currency = normalize_currency(currency)
        net = F("amount_cents") - F("refund_amount_cents")

        totals = Transaction.objects.filter(
            merchant_id=merchant_id,
            currency=currency,
            status__in=[
                TransactionStatus.PROCESSED,
                TransactionStatus.PROCESSED_AWAITING_EXCHANGE,
            ],
        ).aggregate(
            settled=Sum(net, filter=Q(status=TransactionStatus.PROCESSED), default=0),
            pending=Sum(
                net,
                filter=Q(status=TransactionStatus.PROCESSED_AWAITING_EXCHANGE),
                default=0,
            ),
        )

        reserved = (
            Withdrawal.objects.filter(merchant_id=merchant_id, currency=currency)
            .exclude(status__in=WITHDRAWAL_RELEASED_STATES)
            .aggregate(total=Sum("amount_cents", default=0))["total"]
        )

        return BalanceSnapshot(
            merchant_id=merchant_id,
            available=Money(cents=int(totals["settled"]) - int(reserved), currency=currency),
            pending=Money(cents=int(totals["pending"]), currency=currency),
        )

    @classmethod
    def get_balance(cls, merchant_id: uuid.UUID, currency: str = "usd") -> BalanceSnapshot:
        """
        Read-only balance for display.

        May be eventually consistent with writers running concurrently.
        """
        return cls.compute(merchant_id, currency)

    @classmethod
    def lock(cls, merchant_id: uuid.UUID, currency: str) -> Balance:
        """
        Get or create the merchant's Balance row and lock it.

        Lock order across the acquiring core is Balance, then Transaction,
        then CardSubmission or Withdrawal.
        """
        currency = normalize_currency(currency)
        balance, _ = Balance.objects.get_or_create(
            merchant_id=merchant_id,
            currency=currency,
        )
        return Balance.objects.select_for_update().get(pk=balance.pk)

    @classmethod
    def refresh(cls, balance: Balance) -> BalanceSnapshot:
        """Write the current fold into the locked Balance row."""
        snapshot = cls.compute(balance.merchant_id, balance.currency)
        balance.available_cents = snapshot.available.cents
        balance.pending_cents = snapshot.pending.cents
        balance.save(update_fields=["available_cents", "pending_cents", "version", "updated_at"])
        return snapshot

    @classmethod
    def reconcile(
        cls,
        merchant_id: uuid.UUID,
        currency: str,
        now: datetime | None = None,
    ) -> ServiceResult[ReconciliationReport]:
        """
        Compare the cached Balance row with the fold and repair drift.

        Returns a failure result (without writing) when the fold itself is
        negative, which means the ledger needs investigation.
        """
        with transaction.atomic():
            balance = cls.lock(merchant_id, currency)
            cached_available = balance.available_cents
            cached_pending = balance.pending_cents
            snapshot = cls.compute(merchant_id, currency)

            if snapshot.available.is_negative or snapshot.pending.is_negative:
                cls.get_logger().critical(
                    "Ledger fold is negative",
                    extra=snapshot.to_dict(),
                )
                return ServiceResult.failure(
                    f"Negative balance for merchant {merchant_id}",
                    error_code="NEGATIVE_BALANCE",
                )

            report = ReconciliationReport(
                merchant_id=merchant_id,
                currency=balance.currency,
                cached_available_cents=cached_available,
                cached_pending_cents=cached_pending,
                computed=snapshot,
                repaired=False,
            )
            balance.available_cents = snapshot.available.cents
            balance.pending_cents = snapshot.pending.cents
            balance.last_reconciled_at = now or timezone.now()
            balance.save()

        if not report.matched:
            cls.get_logger().warning(
                "Balance drift repaired",
                extra={
                    **snapshot.to_dict(),
                    "cached_available_cents": cached_available,
                    "cached_pending_cents": cached_pending,
                },
            )
            report = ReconciliationReport(
                merchant_id=report.merchant_id,
                currency=report.currency,
                cached_available_cents=cached_available,
                cached_pending_cents=cached_pending,
                computed=snapshot,
                repaired=True,
            )
        return ServiceResult.success(report)
