"""
Withdrawal model for merchant funds leaving the platform.

The gross amount of a withdrawal is reserved against the merchant's
available balance from the moment the row exists. The reservation is
released only when the withdrawal reaches FAILED or REVERSED; the balance
fold in ``acquiring.ledger.services`` simply stops counting those rows.

Usage:
    from acquiring.models import Withdrawal

    withdrawal.broadcast(tx_hash="0xabc...")  # initiated -> on_chain
    withdrawal.save()

    withdrawal.mark_paid()  # on_chain -> paid
    withdrawal.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from acquiring.state_machines import (
    WITHDRAWAL_RELEASED_STATES,
    WITHDRAWAL_TERMINAL_STATES,
    CryptoAsset,
    WithdrawalMethod,
    WithdrawalStatus,
)

DEFAULT_EXPLORER_URLS = {
    CryptoAsset.USDT_TRC20: "https://tronscan.org/#/transaction/{tx_hash}",
    CryptoAsset.USDT_ERC20: "https://etherscan.io/tx/{tx_hash}",
    CryptoAsset.ETH: "https://etherscan.io/tx/{tx_hash}",
    CryptoAsset.BTC: "https://blockchain.info/tx/{tx_hash}",
}


def _is_crypto(instance: Withdrawal) -> bool:
    return instance.method == WithdrawalMethod.CRYPTO


def _can_be_paid(instance: Withdrawal) -> bool:
    # Crypto must be seen on chain first; bank transfers settle directly
    if instance.method == WithdrawalMethod.CRYPTO:
        return instance.status == WithdrawalStatus.ON_CHAIN
    return True


class Withdrawal(UUIDPrimaryKeyMixin, BaseModel):
    """
    Merchant withdrawal by bank transfer or cryptocurrency.

    State Flow:
        INITIATED -> ON_CHAIN -> PAID (crypto)
        INITIATED -> PAID (bank transfer)

    Release Flow:
        INITIATED / ON_CHAIN -> FAILED / REVERSED

    Fields:
        amount_cents: Gross amount reserved against available balance
        fee_cents: Platform fee deducted from the gross amount
        net_amount_cents: Amount actually sent (amount - fee)
        asset/network/address: Crypto destination
        iban/account_number/bank_name/beneficiary_name/swift_code: Bank destination
        tx_hash/confirmations/explorer_url: Advisory chain metadata
        version: Optimistic locking version
    """

    merchant_id = models.UUIDField(db_index=True)

    method = models.CharField(
        max_length=20,
        choices=WithdrawalMethod.choices,
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Client-supplied key, unique per merchant; a retried request returns the same withdrawal",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Gross amount reserved against available balance",
    )

    fee_cents = models.PositiveBigIntegerField(default=0)

    net_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount sent to the destination (amount - fee)",
    )

    currency = models.CharField(max_length=3, default="usd")

    status = FSMField(
        default=WithdrawalStatus.INITIATED,
        choices=WithdrawalStatus.choices,
        db_index=True,
        protected=True,
    )

    # ==========================================================================
    # Crypto Destination
    # ==========================================================================

    asset = models.CharField(
        max_length=20,
        choices=CryptoAsset.choices,
        blank=True,
        default="",
    )
    network = models.CharField(max_length=20, blank=True, default="")
    address = models.CharField(max_length=128, blank=True, default="")

    tx_hash = models.CharField(max_length=128, blank=True, default="", db_index=True)
    confirmations = models.PositiveIntegerField(default=0)
    explorer_url = models.URLField(max_length=500, blank=True, default="")

    # ==========================================================================
    # Bank Destination
    # ==========================================================================

    iban = models.CharField(max_length=34, blank=True, default="")
    account_number = models.CharField(max_length=64, blank=True, default="")
    bank_name = models.CharField(max_length=255, blank=True, default="")
    beneficiary_name = models.CharField(max_length=255, blank=True, default="")
    swift_code = models.CharField(max_length=11, blank=True, default="")
    bank_reference = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Outcome
    # ==========================================================================

    failure_reason = models.TextField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    reversed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Withdrawal"
        verbose_name_plural = "Withdrawals"
        indexes = [
            models.Index(
                fields=["merchant_id", "currency", "status"],
                name="acquiring_w_merchan_c82e5b_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="withdrawal_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    net_amount_cents=F("amount_cents") - F("fee_cents")
                ),
                name="withdrawal_net_equals_amount_minus_fee",
            ),
            models.UniqueConstraint(
                fields=["merchant_id", "idempotency_key"],
                name="withdrawal_unique_merchant_idempotency_key",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        major, minor = divmod(self.amount_cents, 100)
        return (
            f"Withdrawal({self.id}, {self.status}, "
            f"{major}.{minor:02d} {self.currency.upper()})"
        )

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        Raises:
            ValueError: If net amount does not equal amount minus fee
        """
        if self.net_amount_cents != self.amount_cents - self.fee_cents:
            raise ValueError("net_amount_cents must equal amount_cents - fee_cents")
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_crypto(self) -> bool:
        return self.method == WithdrawalMethod.CRYPTO

    @property
    def is_terminal(self) -> bool:
        return self.status in WITHDRAWAL_TERMINAL_STATES

    @property
    def holds_reservation(self) -> bool:
        """Whether the gross amount still counts against available balance."""
        return self.status not in WITHDRAWAL_RELEASED_STATES

    def build_explorer_url(self) -> str:
        """Block explorer link for the current tx hash (empty without one)."""
        if not self.tx_hash or not self.asset:
            return ""
        templates = getattr(settings, "ACQUIRING_EXPLORER_URLS", None) or {}
        template = templates.get(self.asset) or DEFAULT_EXPLORER_URLS.get(self.asset)
        if not template:
            return ""
        return template.format(tx_hash=self.tx_hash)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=WithdrawalStatus.INITIATED,
        target=WithdrawalStatus.ON_CHAIN,
        conditions=[_is_crypto],
    )
    def broadcast(self, tx_hash: str):
        """
        Transition: INITIATED -> ON_CHAIN (crypto only)

        Args:
            tx_hash: Hash of the broadcast blockchain transaction
        """
        self.tx_hash = tx_hash
        self.explorer_url = self.build_explorer_url()

    @transition(
        field=status,
        source=[WithdrawalStatus.INITIATED, WithdrawalStatus.ON_CHAIN],
        target=WithdrawalStatus.PAID,
        conditions=[_can_be_paid],
    )
    def mark_paid(self):
        """
        Transition: ON_CHAIN -> PAID (crypto) or INITIATED -> PAID (bank)

        Terminal and permanent.
        """
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[WithdrawalStatus.INITIATED, WithdrawalStatus.ON_CHAIN],
        target=WithdrawalStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """Transition: INITIATED/ON_CHAIN -> FAILED (releases reservation)"""
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=[WithdrawalStatus.INITIATED, WithdrawalStatus.ON_CHAIN],
        target=WithdrawalStatus.REVERSED,
    )
    def reverse(self, reason: str | None = None):
        """Transition: INITIATED/ON_CHAIN -> REVERSED (releases reservation)"""
        self.reversed_at = timezone.now()
        self.failure_reason = reason
