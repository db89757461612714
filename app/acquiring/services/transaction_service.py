"""
Transaction service driving the payment lifecycle state machine.

Submission creates a Transaction, seals card data into a CardSubmission,
scores the transaction once and routes it:

    risk_score > ACQUIRING_RISK_HIGH_THRESHOLD or any flag
        -> manual review (review_status=PENDING); an operator decision is
           the only way out
    card, low risk
        -> default step-up challenge issued immediately
    bank wire, low risk
        -> waits in SUBMITTED for merchant/operator confirmation

Scorer unavailability is fail-closed: the transaction gets score 100 with
the ``scoring_unavailable`` flag and goes to manual review.

Usage:
    from acquiring.services import SubmitTransactionParams, TransactionService

    txn = TransactionService.submit_transaction(
        SubmitTransactionParams(
            merchant_id=merchant_id,
            amount_cents=10000,
            currency="usd",
            method=PaymentMethod.CARD,
            card=card_details,
            customer_info={"email": "jane@example.com"},
        )
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from core.services import BaseService, ServiceResult

from acquiring.encryption import CardDetails, CardVault, SealedCard
from acquiring.exceptions import (
    AcquiringNotFoundError,
    AcquiringValidationError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    ScoringUnavailableError,
)
from acquiring.ledger import BalanceService, normalize_currency
from acquiring.locks import lock_for_update
from acquiring.models import Balance, CardSubmission, Transaction, TransactionEvent
from acquiring.risk import RiskAssessment, RiskService, RiskSignals
from acquiring.services.timeline import TimelineService
from acquiring.signals import (
    manual_review_requested,
    payment_submitted,
    send_on_commit,
)
from acquiring.state_machines import (
    AWAITING_VERIFICATION_STATES,
    EXPIRABLE_STATES,
    MerchantConfirmation,
    PaymentMethod,
    ReviewDecision,
    ReviewStatus,
    TransactionStatus,
    VerificationType,
)

if TYPE_CHECKING:
    from datetime import datetime


SYSTEM_ACTOR = "system"
CUSTOMER_ACTOR = "customer"

# Compensating transitions: target status -> FSM transition name
COMPENSATIONS = {
    TransactionStatus.REJECTED: "reject",
    TransactionStatus.INSUFFICIENT_FUNDS: "mark_insufficient_funds",
    TransactionStatus.FAILED: "fail",
}


# =============================================================================
# Parameter Types
# =============================================================================


@dataclass
class SubmitTransactionParams:
    """
    Parameters for submitting a customer payment.

    Card transactions may be submitted without ``card`` (payment-request
    links); they wait in PENDING_SUBMISSION until ``submit_card_details``.
    """

    merchant_id: uuid.UUID
    amount_cents: int
    currency: str
    method: str
    customer_info: dict = field(default_factory=dict)
    card: CardDetails | None = None
    payment_request_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str = ""
    device_fingerprint: str | None = None
    wire_sender_name: str = ""
    wire_sender_bank: str = ""
    wire_reference: str = ""
    actor: str = CUSTOMER_ACTOR

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        errors: dict[str, list[str]] = {}
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            errors["amount_cents"] = ["Must be an integer number of minor units."]
        elif self.amount_cents <= 0:
            errors["amount_cents"] = ["Must be positive."]
        try:
            self.currency = normalize_currency(self.currency)
        except ValueError:
            errors["currency"] = ["Invalid ISO 4217 currency code."]
        if self.method not in PaymentMethod.values:
            errors["method"] = [f"Must be one of {', '.join(PaymentMethod.values)}."]
        elif self.method == PaymentMethod.BANK_WIRE and self.card is not None:
            errors["card"] = ["Card details are not accepted for bank wires."]
        if errors:
            raise AcquiringValidationError(
                "Invalid transaction submission",
                details=errors,
            )

    def risk_signals(self) -> dict:
        return {
            key: value
            for key, value in (
                ("ip_address", self.ip_address),
                ("user_agent", self.user_agent),
                ("device_fingerprint", self.device_fingerprint),
            )
            if value
        }


# =============================================================================
# Transaction Service
# =============================================================================


class TransactionService(BaseService):
    """
    Payment lifecycle operations.

    Every operation locks the rows it changes, applies django-fsm
    transitions through TimelineService (one timeline entry per transition)
    and raises typed errors from ``acquiring.exceptions``:

    - InvalidStateTransitionError: wrong pre-state for the operation
    - StaleRecordError: ``expected_version`` no longer matches
    - AcquiringNotFoundError / AcquiringValidationError

    Replaying an operation whose target state is already reached returns the
    current transaction without writing anything.
    """

    # ==========================================================================
    # Queries
    # ==========================================================================

    @classmethod
    def get_transaction(cls, transaction_id: uuid.UUID) -> Transaction:
        txn = Transaction.objects.filter(pk=transaction_id).first()
        if txn is None:
            raise AcquiringNotFoundError(
                f"Transaction {transaction_id} not found",
                error_code="TRANSACTION_NOT_FOUND",
                details={"transaction_id": str(transaction_id)},
            )
        return txn

    @classmethod
    def get_timeline(cls, transaction_id: uuid.UUID) -> list[TransactionEvent]:
        return TimelineService.get_timeline(transaction_id)

    # ==========================================================================
    # Submission
    # ==========================================================================

    @classmethod
    def submit_transaction(cls, params: SubmitTransactionParams) -> Transaction:
        """
        Create a transaction and submit it when payment details are complete.

        A payment request is paid at most once. Repeating a submission for a
        ``payment_request_id`` returns the transaction already bound to it;
        card details sent for a link still waiting on them are attached
        through ``submit_card_details``.

        Raises:
            AcquiringValidationError: Invalid params or card data, or the
                payment request is bound to a different payment
        """
        existing = cls._find_request_replay(params)
        if existing is not None:
            return existing

        sealed = CardVault.seal(params.card) if params.card is not None else None

        try:
            txn = cls._create_and_submit(params, sealed)
        except IntegrityError:
            # Lost a race on the payment request
            existing = cls._find_request_replay(params)
            if existing is not None:
                return existing
            raise
        return txn

    @classmethod
    def _create_and_submit(
        cls, params: SubmitTransactionParams, sealed: SealedCard | None
    ) -> Transaction:
        with cls.atomic():
            txn = Transaction.objects.create(
                merchant_id=params.merchant_id,
                payment_request_id=params.payment_request_id,
                amount_cents=params.amount_cents,
                currency=params.currency,
                method=params.method,
                customer_info=params.customer_info or {},
                risk_signals=params.risk_signals(),
                wire_sender_name=params.wire_sender_name,
                wire_sender_bank=params.wire_sender_bank,
                wire_reference=params.wire_reference,
            )
            TimelineService.append(
                txn,
                "created",
                actor=params.actor,
                to_status=txn.status,
                idempotency_key=f"{txn.id}:{txn.status}",
            )

            cls.get_logger().info(
                "Transaction created",
                extra={
                    "transaction_id": str(txn.id),
                    "merchant_id": str(txn.merchant_id),
                    "method": txn.method,
                    "amount_cents": txn.amount_cents,
                },
            )

            if txn.is_card and sealed is None:
                return txn

            submission = None
            if sealed is not None:
                submission = cls._create_submission(txn, sealed, params.ip_address, params.user_agent)
            cls._submit(txn, submission, actor=params.actor)

        return txn

    @classmethod
    def submit_card_details(
        cls,
        transaction_id: uuid.UUID,
        card: CardDetails,
        ip_address: str | None = None,
        user_agent: str = "",
        device_fingerprint: str | None = None,
    ) -> Transaction:
        """
        Attach card details to a card transaction waiting in PENDING_SUBMISSION.

        Raises:
            AcquiringValidationError: Not a card transaction or invalid card data
            InvalidStateTransitionError: Card details already submitted
        """
        sealed = CardVault.seal(card)

        with TimelineService.audited(transaction_id, "submit_card_details", CUSTOMER_ACTOR):
            with cls.atomic():
                txn = lock_for_update(Transaction, transaction_id)
                if not txn.is_card:
                    raise AcquiringValidationError(
                        "Card details can only be attached to card transactions",
                        details={"transaction_id": str(txn.id), "method": txn.method},
                    )
                if txn.status != TransactionStatus.PENDING_SUBMISSION:
                    raise InvalidStateTransitionError(
                        f"Card details already submitted for transaction {txn.id}",
                        details={"transaction_id": str(txn.id), "current_state": txn.status},
                    )

                signals = dict(txn.risk_signals or {})
                signals.update(
                    {
                        k: v
                        for k, v in (
                            ("ip_address", ip_address),
                            ("user_agent", user_agent),
                            ("device_fingerprint", device_fingerprint),
                        )
                        if v
                    }
                )
                txn.risk_signals = signals
                submission = cls._create_submission(txn, sealed, ip_address, user_agent)
                cls._submit(txn, submission, actor=CUSTOMER_ACTOR)

        return txn

    @classmethod
    def _create_submission(
        cls,
        txn: Transaction,
        sealed: SealedCard,
        ip_address: str | None,
        user_agent: str,
    ) -> CardSubmission:
        return CardSubmission.objects.create(
            transaction=txn,
            ip_address=ip_address,
            user_agent=user_agent or "",
            **sealed.as_model_fields(),
        )

    @classmethod
    def _submit(
        cls,
        txn: Transaction,
        submission: CardSubmission | None,
        actor: str,
    ) -> None:
        """PENDING_SUBMISSION -> SUBMITTED, score once, then route."""
        TimelineService.apply_transition(txn, "submit", actor=actor)

        assessment = cls._assess(txn, submission)
        txn.attach_risk(assessment.score, list(assessment.flags))

        threshold = getattr(settings, "ACQUIRING_RISK_HIGH_THRESHOLD", 70)
        if assessment.requires_review(threshold):
            txn.review_status = ReviewStatus.PENDING
        txn.save()

        TimelineService.append(
            txn,
            "risk_scored",
            actor=SYSTEM_ACTOR,
            notes=f"score={txn.risk_score} flags={','.join(txn.risk_flags) or '-'}",
            metadata={"signal_scores": assessment.signal_scores, "scorer": assessment.scorer},
        )
        send_on_commit(
            payment_submitted,
            sender=Transaction,
            transaction_id=txn.id,
            merchant_id=txn.merchant_id,
            method=txn.method,
        )

        if txn.needs_review:
            TimelineService.append(
                txn,
                "manual_review_requested",
                actor=SYSTEM_ACTOR,
                idempotency_key=f"{txn.id}:review:{ReviewStatus.PENDING}",
            )
            send_on_commit(
                manual_review_requested,
                sender=Transaction,
                transaction_id=txn.id,
                merchant_id=txn.merchant_id,
                risk_score=txn.risk_score,
                risk_flags=list(txn.risk_flags),
            )
            cls.get_logger().info(
                "Transaction routed to manual review",
                extra={
                    "transaction_id": str(txn.id),
                    "risk_score": txn.risk_score,
                    "risk_flags": txn.risk_flags,
                },
            )
            return

        cls._auto_progress(txn, submission)

    @classmethod
    def _assess(cls, txn: Transaction, submission: CardSubmission | None) -> RiskAssessment:
        signals = RiskSignals.from_transaction(
            txn, card_bin=submission.card_bin if submission else None
        )
        try:
            return RiskService.score(txn, signals)
        except ScoringUnavailableError as e:
            TimelineService.append(
                txn,
                "risk_scoring_unavailable",
                actor=SYSTEM_ACTOR,
                notes=e.message,
            )
            return RiskAssessment.fail_closed()

    @classmethod
    def _auto_progress(cls, txn: Transaction, submission: CardSubmission | None) -> None:
        """Issue the default challenge for cleared card transactions."""
        if not txn.is_card or submission is None:
            return

        from acquiring.services.verification_service import VerificationService

        challenge_type = getattr(
            settings, "ACQUIRING_DEFAULT_CHALLENGE_TYPE", VerificationType.SMS
        )
        VerificationService.issue_locked(
            txn, submission, challenge_type, actor=SYSTEM_ACTOR
        )

    # ==========================================================================
    # Manual Review
    # ==========================================================================

    @classmethod
    def operator_review_decision(
        cls,
        transaction_id: uuid.UUID,
        decision: str,
        actor: str,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Transaction:
        """
        Approve or reject a transaction held for manual review.

        Approval resumes the normal flow (card: default challenge; bank wire:
        wait for confirmation). Rejection moves the transaction to REJECTED.

        Raises:
            AcquiringValidationError: Unknown decision or missing actor
            InvalidStateTransitionError: Transaction is not under review
        """
        if decision not in ReviewDecision.values:
            raise AcquiringValidationError(
                f"Unknown review decision: {decision}",
                details={"decision": [f"Must be one of {', '.join(ReviewDecision.values)}."]},
            )
        cls._require_actor(actor)

        target = (
            ReviewStatus.APPROVED if decision == ReviewDecision.APPROVE else ReviewStatus.REJECTED
        )

        with TimelineService.audited(transaction_id, "review_decision", actor):
            with cls.atomic():
                txn = lock_for_update(Transaction, transaction_id, expected_version)

                if txn.review_status == target:
                    return txn
                if txn.review_status != ReviewStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Transaction {txn.id} is not awaiting manual review",
                        details={
                            "transaction_id": str(txn.id),
                            "review_status": txn.review_status,
                        },
                    )

                txn.review_status = target
                txn.reviewed_at = timezone.now()
                txn.reviewed_by = actor
                txn.save()
                TimelineService.append(
                    txn,
                    f"review_{target}",
                    actor=actor,
                    notes=notes,
                    idempotency_key=f"{txn.id}:review:{target}",
                )

                if target == ReviewStatus.REJECTED:
                    cls._compensate_locked(
                        txn,
                        TransactionStatus.REJECTED,
                        reason="rejected_by_review",
                        actor=actor,
                        notes=notes,
                    )
                else:
                    submission = CardSubmission.objects.select_for_update().filter(
                        transaction=txn
                    ).first()
                    cls._auto_progress(txn, submission)

        return txn

    # ==========================================================================
    # Verification hand-off
    # ==========================================================================

    @classmethod
    def complete_verification(
        cls,
        txn: Transaction,
        submission: CardSubmission,
        balance: Balance,
        actor: str,
        notes: str = "",
    ) -> None:
        """
        Finish step-up verification on locked rows.

        Approved -> VERIFICATION_COMPLETED -> PROCESSED_AWAITING_EXCHANGE.
        Declined -> VERIFICATION_COMPLETED -> REJECTED.
        """
        TimelineService.apply_transition(
            txn, "complete_verification", actor=actor, notes=notes
        )
        if submission.verification_approved:
            TimelineService.apply_transition(
                txn, "await_exchange", actor=SYSTEM_ACTOR, event="processed_awaiting_exchange"
            )
            BalanceService.refresh(balance)
        else:
            cls._compensate_locked(
                txn,
                TransactionStatus.REJECTED,
                reason="verification_declined",
                actor=actor,
                submission=submission,
            )

    # ==========================================================================
    # Bank Wire
    # ==========================================================================

    @classmethod
    def confirm_bank_wire(
        cls,
        transaction_id: uuid.UUID,
        confirmation: str,
        actor: str,
        wire_reference: str = "",
        notes: str = "",
        expected_version: int | None = None,
    ) -> Transaction:
        """
        Record the merchant's confirmation of a bank wire.

        SUCCESS moves SUBMITTED -> PROCESSED_AWAITING_EXCHANGE, FAILED moves
        the transaction to FAILED, NOT_RECEIVED is recorded only.

        Raises:
            AcquiringValidationError: Not a bank wire or unknown confirmation
            InvalidStateTransitionError: Wrong state or review still pending
        """
        if confirmation not in (
            MerchantConfirmation.SUCCESS,
            MerchantConfirmation.FAILED,
            MerchantConfirmation.NOT_RECEIVED,
        ):
            raise AcquiringValidationError(
                f"Unknown merchant confirmation: {confirmation}",
                details={"confirmation": ["Must be success, failed or not_received."]},
            )
        cls._require_actor(actor)

        with TimelineService.audited(transaction_id, "confirm_bank_wire", actor):
            with cls.atomic():
                balance, txn = cls._lock_with_balance(transaction_id, expected_version)
                if txn.method != PaymentMethod.BANK_WIRE:
                    raise AcquiringValidationError(
                        "Only bank wire transactions take merchant confirmation",
                        details={"transaction_id": str(txn.id), "method": txn.method},
                    )

                if txn.merchant_confirmation == confirmation and confirmation != (
                    MerchantConfirmation.NOT_RECEIVED
                ):
                    return txn

                if wire_reference:
                    txn.wire_reference = wire_reference

                if confirmation == MerchantConfirmation.SUCCESS:
                    txn.merchant_confirmation = confirmation
                    TimelineService.apply_transition(
                        txn,
                        "await_exchange",
                        actor=actor,
                        notes=notes,
                        event="wire_confirmed",
                    )
                    BalanceService.refresh(balance)
                elif confirmation == MerchantConfirmation.FAILED:
                    txn.merchant_confirmation = confirmation
                    cls._compensate_locked(
                        txn,
                        TransactionStatus.FAILED,
                        reason="wire_not_confirmed",
                        actor=actor,
                        notes=notes,
                    )
                    BalanceService.refresh(balance)
                else:
                    if txn.is_terminal:
                        raise InvalidStateTransitionError(
                            f"Transaction {txn.id} is already {txn.status}",
                            details={"transaction_id": str(txn.id), "current_state": txn.status},
                        )
                    txn.merchant_confirmation = confirmation
                    txn.save()
                    TimelineService.append(txn, "wire_not_received", actor=actor, notes=notes)

        return txn

    # ==========================================================================
    # Refunds
    # ==========================================================================

    @classmethod
    def record_refund(
        cls,
        transaction_id: uuid.UUID,
        amount_cents: int,
        actor: str,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Transaction:
        """
        Refund part or all of a PROCESSED transaction, once.

        The refund reduces the transaction's net amount and therefore the
        available balance. The check against available balance and the
        write happen under the merchant's balance lock.

        Raises:
            AcquiringValidationError: Amount not positive or above the amount
            InvalidStateTransitionError: Not PROCESSED or already refunded
            InsufficientBalanceError: Available balance cannot cover the refund
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise AcquiringValidationError(
                "Refund amount must be a positive integer",
                details={"amount_cents": ["Must be positive."]},
            )
        cls._require_actor(actor)

        with TimelineService.audited(transaction_id, "refund", actor):
            with cls.atomic():
                balance, txn = cls._lock_with_balance(transaction_id, expected_version)

                if txn.refund_amount_cents:
                    if txn.refund_amount_cents == amount_cents:
                        return txn
                    raise InvalidStateTransitionError(
                        f"Transaction {txn.id} has already been refunded",
                        details={
                            "transaction_id": str(txn.id),
                            "refund_amount_cents": txn.refund_amount_cents,
                        },
                    )
                if txn.status != TransactionStatus.PROCESSED:
                    raise InvalidStateTransitionError(
                        f"Cannot refund transaction in '{txn.status}' state",
                        details={"transaction_id": str(txn.id), "current_state": txn.status},
                    )
                if amount_cents > txn.amount_cents:
                    raise AcquiringValidationError(
                        "Refund exceeds the transaction amount",
                        details={"amount_cents": [f"Must not exceed {txn.amount_cents}."]},
                    )

                snapshot = BalanceService.compute(txn.merchant_id, txn.currency)
                if amount_cents > snapshot.available.cents:
                    raise InsufficientBalanceError(
                        merchant_id=txn.merchant_id,
                        required_cents=amount_cents,
                        available_cents=snapshot.available.cents,
                        currency=txn.currency,
                    )

                txn.refund_amount_cents = amount_cents
                txn.refunded_at = timezone.now()
                txn.save()
                TimelineService.append(
                    txn,
                    "refunded",
                    actor=actor,
                    notes=notes,
                    idempotency_key=f"{txn.id}:refunded",
                    metadata={"amount_cents": amount_cents},
                )
                BalanceService.refresh(balance)

        cls.get_logger().info(
            "Transaction refunded",
            extra={"transaction_id": str(transaction_id), "amount_cents": amount_cents},
        )
        return txn

    # ==========================================================================
    # Compensation
    # ==========================================================================

    @classmethod
    def reject_transaction(
        cls,
        transaction_id: uuid.UUID,
        reason: str,
        actor: str,
        expected_version: int | None = None,
    ) -> Transaction:
        """Operator rejection from any non-terminal state."""
        return cls._compensate(
            transaction_id, TransactionStatus.REJECTED, reason, actor, expected_version
        )

    @classmethod
    def mark_insufficient_funds(
        cls,
        transaction_id: uuid.UUID,
        reason: str,
        actor: str,
        expected_version: int | None = None,
    ) -> Transaction:
        """Customer's card or account could not cover the payment."""
        return cls._compensate(
            transaction_id,
            TransactionStatus.INSUFFICIENT_FUNDS,
            reason,
            actor,
            expected_version,
        )

    @classmethod
    def fail_transaction(
        cls,
        transaction_id: uuid.UUID,
        reason: str,
        actor: str,
        expected_version: int | None = None,
    ) -> Transaction:
        """Move a transaction to FAILED from any non-terminal state."""
        return cls._compensate(
            transaction_id, TransactionStatus.FAILED, reason, actor, expected_version
        )

    @classmethod
    def expire_stale(
        cls,
        transaction_id: uuid.UUID,
        cutoff: datetime,
    ) -> ServiceResult[Transaction]:
        """
        Fail a transaction abandoned in an expirable state before ``cutoff``.

        Activity is the later of the transaction's and its card submission's
        ``updated_at``: code entries and resends only write the submission.
        Re-checks state and inactivity under the lock; returns a failure
        result (nothing written) when the transaction moved on meanwhile.
        """
        with cls.atomic():
            balance, txn = cls._lock_with_balance(transaction_id)
            if txn.status not in EXPIRABLE_STATES:
                return ServiceResult.failure(
                    f"Transaction is {txn.status}",
                    error_code="NOT_EXPIRABLE",
                )
            submission = (
                CardSubmission.objects.select_for_update().filter(transaction=txn).first()
            )
            last_activity = max(
                txn.updated_at,
                submission.updated_at if submission is not None else txn.updated_at,
            )
            if last_activity >= cutoff:
                return ServiceResult.failure(
                    "Transaction had recent activity",
                    error_code="RECENT_ACTIVITY",
                )
            cls._compensate_locked(
                txn,
                TransactionStatus.FAILED,
                reason="expired_inactivity",
                actor=SYSTEM_ACTOR,
                submission=submission,
            )
            BalanceService.refresh(balance)
        return ServiceResult.success(txn)

    @classmethod
    def _compensate(
        cls,
        transaction_id: uuid.UUID,
        target: str,
        reason: str,
        actor: str,
        expected_version: int | None,
    ) -> Transaction:
        validation = cls.validate_required(reason=reason, actor=actor)
        if validation is not None:
            raise AcquiringValidationError(validation.error, details=validation.errors)

        with TimelineService.audited(transaction_id, COMPENSATIONS[target], actor):
            with cls.atomic():
                balance, txn = cls._lock_with_balance(transaction_id, expected_version)
                if txn.status == target:
                    return txn
                cls._compensate_locked(txn, target, reason=reason, actor=actor)
                BalanceService.refresh(balance)
        return txn

    @classmethod
    def _compensate_locked(
        cls,
        txn: Transaction,
        target: str,
        reason: str,
        actor: str,
        notes: str = "",
        submission: CardSubmission | None = None,
    ) -> None:
        """Apply a compensating transition to a locked transaction and its submission."""
        transition = COMPENSATIONS[target]
        TimelineService.apply_transition(
            txn,
            transition,
            actor=actor,
            notes=notes or reason,
            reason=reason,
        )

        if submission is None and txn.is_card:
            submission = CardSubmission.objects.select_for_update().filter(
                transaction=txn
            ).first()
        if submission is not None and not submission.is_terminal:
            getattr(submission, transition)()
            submission.save()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @classmethod
    def _find_request_replay(cls, params: SubmitTransactionParams) -> Transaction | None:
        """Transaction already bound to the params' payment request, if any."""
        if params.payment_request_id is None:
            return None
        existing = Transaction.objects.filter(
            payment_request_id=params.payment_request_id
        ).first()
        if existing is None:
            return None
        if (existing.merchant_id, existing.amount_cents, existing.currency, existing.method) != (
            params.merchant_id,
            params.amount_cents,
            params.currency,
            params.method,
        ):
            raise AcquiringValidationError(
                "Payment has already been submitted for this payment request",
                error_code="PAYMENT_ALREADY_SUBMITTED",
                details={
                    "payment_request_id": str(params.payment_request_id),
                    "transaction_id": str(existing.id),
                },
            )
        if params.card is not None and existing.status == TransactionStatus.PENDING_SUBMISSION:
            return cls.submit_card_details(
                existing.id,
                params.card,
                ip_address=params.ip_address,
                user_agent=params.user_agent,
                device_fingerprint=params.device_fingerprint,
            )
        cls.get_logger().info(
            "Payment request already submitted",
            extra={
                "transaction_id": str(existing.id),
                "payment_request_id": str(params.payment_request_id),
            },
        )
        return existing

    @classmethod
    def _lock_with_balance(
        cls,
        transaction_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> tuple[Balance, Transaction]:
        """Lock the merchant balance row, then the transaction."""
        ref = (
            Transaction.objects.filter(pk=transaction_id)
            .values("merchant_id", "currency")
            .first()
        )
        if ref is None:
            raise AcquiringNotFoundError(
                f"Transaction {transaction_id} not found",
                error_code="TRANSACTION_NOT_FOUND",
                details={"transaction_id": str(transaction_id)},
            )
        balance = BalanceService.lock(ref["merchant_id"], ref["currency"])
        txn = lock_for_update(Transaction, transaction_id, expected_version)
        return balance, txn

    @classmethod
    def _require_actor(cls, actor: str) -> None:
        validation = cls.validate_required(actor=actor)
        if validation is not None:
            raise AcquiringValidationError(validation.error, details=validation.errors)

    @classmethod
    def is_awaiting_verification(cls, txn: Transaction) -> bool:
        return txn.status in AWAITING_VERIFICATION_STATES
