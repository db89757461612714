"""
Transaction and TransactionEvent models for the payment lifecycle.

Transaction is the central entity tracking one customer payment attempt
from submission through step-up verification to settlement. Every status
change appends one TransactionEvent; events are never updated or deleted.

Usage:
    from acquiring.models import Transaction
    from acquiring.state_machines import PaymentMethod, TransactionStatus

    txn = Transaction.objects.create(
        merchant_id=merchant_id,
        amount_cents=10000,
        currency="usd",
        method=PaymentMethod.CARD,
    )

    # State transitions using django-fsm
    txn.submit()  # pending_submission -> submitted
    txn.save()
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from acquiring.state_machines import (
    TRANSACTION_NON_TERMINAL_STATES,
    TRANSACTION_TERMINAL_STATES,
    MerchantConfirmation,
    PaymentMethod,
    ReviewStatus,
    TransactionStatus,
)


def generate_transaction_reference() -> str:
    """Human-readable reference shown to merchants and operators."""
    return f"TXN-{uuid.uuid4().hex[:12].upper()}"


def _is_card(instance: Transaction) -> bool:
    return instance.method == PaymentMethod.CARD


def _is_cleared_by_review(instance: Transaction) -> bool:
    return instance.review_status in (ReviewStatus.NOT_REQUIRED, ReviewStatus.APPROVED)


def _can_await_exchange(instance: Transaction) -> bool:
    # Bank wires skip step-up entirely; cards must pass verification first
    if instance.status == TransactionStatus.SUBMITTED:
        return instance.method == PaymentMethod.BANK_WIRE
    return instance.method == PaymentMethod.CARD


class Transaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    One customer payment attempt against a merchant.

    Uses django-fsm for state machine management and optimistic
    locking via version field for concurrency control.

    State Flow (Card):
        PENDING_SUBMISSION -> SUBMITTED -> AWAITING_3D_SMS/PUSH
            -> VERIFICATION_COMPLETED -> PROCESSED_AWAITING_EXCHANGE -> PROCESSED

    State Flow (Bank Wire):
        PENDING_SUBMISSION -> SUBMITTED -> PROCESSED_AWAITING_EXCHANGE -> PROCESSED

    Compensation Flow:
        any non-terminal -> REJECTED / INSUFFICIENT_FUNDS / FAILED

    Fields:
        merchant_id: Merchant receiving the payment
        amount_cents: Gross amount in smallest currency unit
        method: Card or bank wire
        status: Current FSM state
        risk_score/risk_flags: Written once on submission, never recomputed
        review_status: Manual review gate set by the risk routing
        merchant_confirmation: Bank wire receipt confirmation
        refund_amount_cents: Refunded part of a processed transaction
        version: Optimistic locking version

    Note:
        Risk fields are immutable after scoring: ``save()`` refuses to
        overwrite a stored score.
    """

    # ==========================================================================
    # Identity & References
    # ==========================================================================

    reference = models.CharField(
        max_length=20,
        unique=True,
        default=generate_transaction_reference,
        editable=False,
        help_text="Human-readable reference (TXN-XXXXXXXXXXXX)",
    )

    payment_request_id = models.UUIDField(
        null=True,
        blank=True,
        unique=True,
        help_text="Payment request (payment link) this transaction was created from; one transaction per request",
    )

    merchant_id = models.UUIDField(
        db_index=True,
        help_text="Merchant receiving the funds",
    )

    # ==========================================================================
    # Amount & Method
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Payment amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        help_text="Payment method (card or bank wire)",
    )

    status = FSMField(
        default=TransactionStatus.PENDING_SUBMISSION,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current state of the transaction (managed by FSM)",
    )

    # ==========================================================================
    # Risk & Review
    # ==========================================================================

    risk_score = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text="Risk score 0-100 assigned once on submission",
    )

    risk_flags = models.JSONField(
        default=list,
        blank=True,
        help_text="Risk flags raised on submission",
    )

    scored_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the risk score was attached",
    )

    review_status = models.CharField(
        max_length=20,
        choices=ReviewStatus.choices,
        default=ReviewStatus.NOT_REQUIRED,
        db_index=True,
        help_text="Manual review gate",
    )

    reviewed_at = models.DateTimeField(null=True, blank=True)

    reviewed_by = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Customer & Signals
    # ==========================================================================

    customer_info = models.JSONField(
        default=dict,
        blank=True,
        help_text="Customer name, email, phone and country",
    )

    risk_signals = models.JSONField(
        default=dict,
        blank=True,
        help_text="IP address, device fingerprint and user agent at submission",
    )

    # ==========================================================================
    # Bank Wire
    # ==========================================================================

    merchant_confirmation = models.CharField(
        max_length=20,
        choices=MerchantConfirmation.choices,
        default=MerchantConfirmation.PENDING,
        help_text="Merchant confirmation of bank wire receipt",
    )

    wire_sender_name = models.CharField(max_length=255, blank=True, default="")
    wire_sender_bank = models.CharField(max_length=255, blank=True, default="")
    wire_reference = models.CharField(max_length=255, blank=True, default="")

    proof_reference = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Opaque reference to an uploaded proof of receipt",
    )

    funds_received_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # State Timestamps & Outcome
    # ==========================================================================

    submitted_at = models.DateTimeField(null=True, blank=True)
    verification_completed_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    settled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When funds moved from pending to available",
    )

    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(null=True, blank=True)

    refund_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Refunded amount (reduces net)",
    )

    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(
                fields=["merchant_id", "currency", "status"],
                name="acquiring_t_merchan_6f1c2a_idx",
            ),
            models.Index(
                fields=["status", "updated_at"],
                name="acquiring_t_status_9b04d1_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="transaction_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refund_amount_cents__lte=F("amount_cents")),
                name="transaction_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with reference, status and amount."""
        return f"Transaction({self.reference}, {self.status}, {self.amount})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        On update, atomically increments the version field so that
        concurrent writers holding the old version fail their check.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # Derived values
    # ==========================================================================

    @property
    def amount(self):
        from acquiring.ledger.types import Money

        return Money(cents=self.amount_cents, currency=self.currency)

    @property
    def net_amount_cents(self) -> int:
        """Amount counted towards the merchant balance (gross minus refunds)."""
        return self.amount_cents - self.refund_amount_cents

    @property
    def is_terminal(self) -> bool:
        return self.status in TRANSACTION_TERMINAL_STATES

    @property
    def is_card(self) -> bool:
        return self.method == PaymentMethod.CARD

    @property
    def needs_review(self) -> bool:
        return self.review_status == ReviewStatus.PENDING

    def attach_risk(self, score: int, flags: list[str]) -> None:
        """
        Attach the risk assessment. Allowed exactly once.

        Raises:
            ValueError: If a score is already attached
        """
        if self.scored_at is not None:
            raise ValueError(f"Transaction {self.id} already has a risk score")
        self.risk_score = score
        self.risk_flags = sorted(set(flags))
        self.scored_at = timezone.now()

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING_SUBMISSION,
        target=TransactionStatus.SUBMITTED,
    )
    def submit(self):
        """
        Transition: PENDING_SUBMISSION -> SUBMITTED

        Payment details are in; the risk scorer runs next.
        """
        self.submitted_at = timezone.now()

    @transition(
        field=status,
        source=TransactionStatus.SUBMITTED,
        target=TransactionStatus.AWAITING_3D_SMS,
        conditions=[_is_card, _is_cleared_by_review],
    )
    def await_sms_verification(self):
        """Transition: SUBMITTED -> AWAITING_3D_SMS"""
        pass

    @transition(
        field=status,
        source=TransactionStatus.SUBMITTED,
        target=TransactionStatus.AWAITING_3D_PUSH,
        conditions=[_is_card, _is_cleared_by_review],
    )
    def await_push_verification(self):
        """Transition: SUBMITTED -> AWAITING_3D_PUSH"""
        pass

    @transition(
        field=status,
        source=[TransactionStatus.AWAITING_3D_SMS, TransactionStatus.AWAITING_3D_PUSH],
        target=TransactionStatus.VERIFICATION_COMPLETED,
    )
    def complete_verification(self):
        """Transition: AWAITING_3D_SMS/PUSH -> VERIFICATION_COMPLETED"""
        self.verification_completed_at = timezone.now()

    @transition(
        field=status,
        source=[TransactionStatus.SUBMITTED, TransactionStatus.VERIFICATION_COMPLETED],
        target=TransactionStatus.PROCESSED_AWAITING_EXCHANGE,
        conditions=[_can_await_exchange, _is_cleared_by_review],
    )
    def await_exchange(self):
        """
        Transition: VERIFICATION_COMPLETED -> PROCESSED_AWAITING_EXCHANGE (card)
        Transition: SUBMITTED -> PROCESSED_AWAITING_EXCHANGE (bank wire)

        Funds now count as pending balance.
        """
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=TransactionStatus.PROCESSED_AWAITING_EXCHANGE,
        target=TransactionStatus.PROCESSED,
    )
    def settle(self):
        """
        Transition: PROCESSED_AWAITING_EXCHANGE -> PROCESSED

        Funds move from pending to available balance.
        """
        self.settled_at = timezone.now()

    @transition(
        field=status,
        source=TRANSACTION_NON_TERMINAL_STATES,
        target=TransactionStatus.REJECTED,
    )
    def reject(self, reason: str | None = None):
        """Transition: any non-terminal -> REJECTED"""
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=TRANSACTION_NON_TERMINAL_STATES,
        target=TransactionStatus.INSUFFICIENT_FUNDS,
    )
    def mark_insufficient_funds(self, reason: str | None = None):
        """Transition: any non-terminal -> INSUFFICIENT_FUNDS"""
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=TRANSACTION_NON_TERMINAL_STATES,
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """Transition: any non-terminal -> FAILED"""
        self.failed_at = timezone.now()
        self.failure_reason = reason


class TransactionEventQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise TypeError("Transaction timeline events are append-only")

    def delete(self):
        raise TypeError("Transaction timeline events are append-only")


class TransactionEvent(BaseModel):
    """
    Append-only timeline entry of a Transaction.

    Applied transitions carry ``idempotency_key = "<transaction_id>:<target>"``.
    The unique constraint on that key is what makes a second application
    of the same transition impossible. Audit entries for failed attempts
    carry no key.
    """

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.PROTECT,
        related_name="events",
    )

    event = models.CharField(max_length=64, db_index=True)

    actor = models.CharField(
        max_length=255,
        help_text="Who caused the event (customer, system, operator:<id>)",
    )

    notes = models.TextField(blank=True, default="")

    from_status = models.CharField(max_length=40, blank=True, default="")
    to_status = models.CharField(max_length=40, blank=True, default="")

    idempotency_key = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True,
        help_text="transaction id + target status for applied transitions",
    )

    metadata = models.JSONField(default=dict, blank=True)

    objects = TransactionEventQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        verbose_name = "Transaction Event"
        verbose_name_plural = "Transaction Events"
        indexes = [
            models.Index(
                fields=["transaction", "id"],
                name="acquiring_t_transac_3e7a90_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"TransactionEvent({self.transaction_id}, {self.event})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError("Transaction timeline events are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TypeError("Transaction timeline events are append-only")
