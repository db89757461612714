"""
Balance and Settlement models.

Balance is not authoritative. It is the per-merchant, per-currency row that
money-moving operations lock to serialize themselves, and it caches the last
folded snapshot. The fold over Transactions and Withdrawals in
``acquiring.ledger.services.BalanceService`` is the single source of truth.

Settlement is an immutable audit record grouping the transactions that
moved from pending to available in one step.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


def generate_settlement_reference() -> str:
    return f"STL-{uuid.uuid4().hex[:12].upper()}"


class Balance(UUIDPrimaryKeyMixin, BaseModel):
    """
    Cached balance snapshot and lock row for one merchant and currency.

    Fields:
        available_cents: Last folded available balance
        pending_cents: Last folded pending balance
        last_reconciled_at: Last time the reconciliation task compared it
        version: Optimistic locking version
    """

    merchant_id = models.UUIDField(db_index=True)

    currency = models.CharField(max_length=3, default="usd")

    available_cents = models.BigIntegerField(default=0)

    pending_cents = models.BigIntegerField(default=0)

    last_reconciled_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["merchant_id", "currency"]
        verbose_name = "Balance"
        verbose_name_plural = "Balances"
        constraints = [
            models.UniqueConstraint(
                fields=["merchant_id", "currency"],
                name="balance_unique_merchant_currency",
            ),
            models.CheckConstraint(
                condition=models.Q(available_cents__gte=0),
                name="balance_available_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(pending_cents__gte=0),
                name="balance_pending_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Balance({self.merchant_id}, {self.currency.upper()}, "
            f"available={self.available_cents}, pending={self.pending_cents})"
        )

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class Settlement(UUIDPrimaryKeyMixin, BaseModel):
    """
    Batch of transactions moved from pending to available balance.

    Purely additive: rows are never updated after creation.
    """

    reference = models.CharField(
        max_length=20,
        unique=True,
        default=generate_settlement_reference,
        editable=False,
    )

    merchant_id = models.UUIDField(db_index=True)

    amount_cents = models.PositiveBigIntegerField()

    currency = models.CharField(max_length=3, default="usd")

    transactions = models.ManyToManyField(
        "acquiring.Transaction",
        related_name="settlements",
    )

    created_by = models.CharField(max_length=255, default="system")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Settlement"
        verbose_name_plural = "Settlements"

    def __str__(self) -> str:
        return f"Settlement({self.reference}, {self.amount_cents} {self.currency})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError("Settlements are immutable once recorded")
        super().save(*args, **kwargs)
