"""
CardSubmission model for 3-D-Secure style step-up verification.

A CardSubmission is created 1:1 with a card Transaction once the customer
enters card details. The card number, expiry and CVC are sealed by
``acquiring.encryption.CardVault`` before they reach the model and are
never decrypted again by the acquiring core.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from acquiring.state_machines import (
    CARD_SUBMISSION_NON_TERMINAL_STATES,
    CARD_SUBMISSION_TERMINAL_STATES,
    CardSubmissionStatus,
    VerificationType,
)

SEALED_FIELDS = ("card_number_encrypted", "expiry_encrypted", "cvc_encrypted")


class CardSubmission(UUIDPrimaryKeyMixin, BaseModel):
    """
    Step-up verification attempt tied to one card Transaction.

    State Flow:
        SUBMITTED -> AWAITING_3D_SMS / AWAITING_3D_PUSH -> VERIFICATION_COMPLETED
        VERIFICATION_COMPLETED -> PROCESSED
        any non-terminal -> REJECTED / INSUFFICIENT_FUNDS / FAILED

    Fields:
        verification_code: Active code issued by an operator (single use)
        customer_code: Code typed by the customer before an operator code existed
        code_consumed_at: Set once the active code has been used
        failed_attempts: Consecutive mismatches against the active code
        sms_resend_count: Resend requests, monotonically increasing and capped

    Note:
        Sealed card fields are write-once: ``save()`` refuses to change them
        on an existing row.
    """

    transaction = models.OneToOneField(
        "acquiring.Transaction",
        on_delete=models.PROTECT,
        related_name="card_submission",
    )

    # ==========================================================================
    # Card Data (sealed)
    # ==========================================================================

    cardholder_name = models.CharField(max_length=255)

    card_number_encrypted = models.TextField(editable=False)
    expiry_encrypted = models.TextField(editable=False)
    cvc_encrypted = models.TextField(editable=False)

    card_bin = models.CharField(max_length=8, blank=True, default="")
    card_last4 = models.CharField(max_length=4, blank=True, default="")
    card_brand = models.CharField(max_length=20, blank=True, default="")

    # ==========================================================================
    # Verification State
    # ==========================================================================

    status = FSMField(
        default=CardSubmissionStatus.SUBMITTED,
        choices=CardSubmissionStatus.choices,
        db_index=True,
        protected=True,
    )

    verification_type = models.CharField(
        max_length=10,
        choices=VerificationType.choices,
        null=True,
        blank=True,
    )

    verification_code = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Active code issued by an operator (compared case-sensitively)",
    )

    customer_code = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Code entered by the customer awaiting operator review",
    )

    verification_approved = models.BooleanField(null=True, blank=True)

    code_consumed_at = models.DateTimeField(null=True, blank=True)

    failed_attempts = models.PositiveSmallIntegerField(default=0)

    challenge_issued_at = models.DateTimeField(null=True, blank=True)
    verification_completed_at = models.DateTimeField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # SMS Resend
    # ==========================================================================

    sms_resend_requested_at = models.DateTimeField(null=True, blank=True)
    sms_resend_count = models.PositiveSmallIntegerField(default=0)

    # ==========================================================================
    # Client Context
    # ==========================================================================

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default="")

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Card Submission"
        verbose_name_plural = "Card Submissions"

    def __str__(self) -> str:
        """Never includes sealed card data or codes."""
        masked = f"{self.card_brand or 'card'} ****{self.card_last4}"
        return f"CardSubmission({self.id}, {self.status}, {masked})"

    def __repr__(self) -> str:
        return f"<CardSubmission id={self.id} status={self.status}>"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment and write-once sealed fields.

        Raises:
            ValueError: If a sealed card field changed on an existing row
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            stored = (
                type(self)
                .objects.filter(pk=self.pk)
                .values(*SEALED_FIELDS)
                .first()
            )
            if stored is not None and any(
                stored[name] != getattr(self, name) for name in SEALED_FIELDS
            ):
                raise ValueError("Sealed card fields are write-once")
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def is_terminal(self) -> bool:
        return self.status in CARD_SUBMISSION_TERMINAL_STATES

    @property
    def is_code_consumed(self) -> bool:
        return self.code_consumed_at is not None

    @property
    def has_active_code(self) -> bool:
        return bool(self.verification_code) and not self.is_code_consumed

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=CardSubmissionStatus.SUBMITTED,
        target=CardSubmissionStatus.AWAITING_3D_SMS,
    )
    def await_sms(self):
        """Transition: SUBMITTED -> AWAITING_3D_SMS"""
        self.verification_type = VerificationType.SMS
        self.challenge_issued_at = timezone.now()

    @transition(
        field=status,
        source=CardSubmissionStatus.SUBMITTED,
        target=CardSubmissionStatus.AWAITING_3D_PUSH,
    )
    def await_push(self):
        """Transition: SUBMITTED -> AWAITING_3D_PUSH"""
        self.verification_type = VerificationType.PUSH
        self.challenge_issued_at = timezone.now()

    @transition(
        field=status,
        source=[
            CardSubmissionStatus.AWAITING_3D_SMS,
            CardSubmissionStatus.AWAITING_3D_PUSH,
        ],
        target=CardSubmissionStatus.VERIFICATION_COMPLETED,
    )
    def complete_verification(self, approved: bool):
        """
        Transition: AWAITING_3D_SMS/PUSH -> VERIFICATION_COMPLETED

        Consumes the active code whatever the outcome.
        """
        now = timezone.now()
        self.verification_approved = approved
        self.verification_completed_at = now
        self.code_consumed_at = now

    @transition(
        field=status,
        source=CardSubmissionStatus.VERIFICATION_COMPLETED,
        target=CardSubmissionStatus.PROCESSED,
    )
    def mark_processed(self):
        """Transition: VERIFICATION_COMPLETED -> PROCESSED"""
        pass

    @transition(
        field=status,
        source=CARD_SUBMISSION_NON_TERMINAL_STATES,
        target=CardSubmissionStatus.REJECTED,
    )
    def reject(self):
        """Transition: any non-terminal -> REJECTED"""
        if self.verification_code and self.code_consumed_at is None:
            self.code_consumed_at = timezone.now()

    @transition(
        field=status,
        source=CARD_SUBMISSION_NON_TERMINAL_STATES,
        target=CardSubmissionStatus.INSUFFICIENT_FUNDS,
    )
    def mark_insufficient_funds(self):
        """Transition: any non-terminal -> INSUFFICIENT_FUNDS"""
        pass

    @transition(
        field=status,
        source=CARD_SUBMISSION_NON_TERMINAL_STATES,
        target=CardSubmissionStatus.FAILED,
    )
    def fail(self):
        """Transition: any non-terminal -> FAILED"""
        pass
