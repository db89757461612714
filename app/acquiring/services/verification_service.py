"""
Step-up verification service.

Drives a CardSubmission (and its Transaction) through the SMS or push
challenge:

    issue_challenge      SUBMITTED -> AWAITING_3D_SMS / AWAITING_3D_PUSH
    assign_code          operator sets the active SMS code
    request_resend       customer asks for the SMS again (rate limited)
    submit_code          customer enters the SMS code
    submit_push_response customer approves or declines in the banking app
    operator_decision    operator approves or declines manually

Codes are single use: once a submission completes or is rejected, its code
is consumed and never accepted again. Code comparison is constant-time.

On completion the transaction is handed to
``TransactionService.complete_verification``, which moves approved payments
to PROCESSED_AWAITING_EXCHANGE (pending balance) and declined ones to
REJECTED.
"""

from __future__ import annotations

import hmac
import uuid
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from core.services import BaseService

from acquiring.exceptions import (
    AcquiringNotFoundError,
    AcquiringValidationError,
    InvalidStateTransitionError,
    ResendLimitExceededError,
    VerificationMismatchError,
)
from acquiring.ledger import BalanceService
from acquiring.locks import lock_for_update
from acquiring.models import Balance, CardSubmission, Transaction
from acquiring.services.timeline import TimelineService
from acquiring.services.transaction_service import (
    CUSTOMER_ACTOR,
    SYSTEM_ACTOR,
    TransactionService,
)
from acquiring.signals import (
    send_on_commit,
    sms_resend_requested,
    verification_challenge_issued,
    verification_code_submitted,
    verification_completed,
)
from acquiring.state_machines import (
    CardSubmissionStatus,
    TransactionStatus,
    VerificationType,
)

MAX_CODE_LENGTH = 32

# VerificationType -> (Transaction transition, CardSubmission transition, awaiting state)
CHALLENGES = {
    VerificationType.SMS: (
        "await_sms_verification",
        "await_sms",
        CardSubmissionStatus.AWAITING_3D_SMS,
    ),
    VerificationType.PUSH: (
        "await_push_verification",
        "await_push",
        CardSubmissionStatus.AWAITING_3D_PUSH,
    ),
}


def codes_match(expected: str, given: str) -> bool:
    """Constant-time, case-sensitive comparison of verification codes."""
    if not expected or not given:
        return False
    return hmac.compare_digest(expected.encode(), given.encode())


class VerificationService(BaseService):
    """
    Step-up verification operations.

    Lock order is Balance (completing operations only), Transaction, then
    CardSubmission.
    """

    # ==========================================================================
    # Challenge
    # ==========================================================================

    @classmethod
    def issue_challenge(
        cls,
        submission_id: uuid.UUID,
        verification_type: str,
        actor: str = "operator",
        code: str | None = None,
        expected_version: int | None = None,
    ) -> CardSubmission:
        """
        Issue an SMS or push challenge for a submitted card payment.

        Replaying the same challenge type is a no-op.

        Raises:
            AcquiringValidationError: Unknown type, or a code given for push
            InvalidStateTransitionError: Not SUBMITTED or review pending
        """
        if verification_type not in CHALLENGES:
            raise AcquiringValidationError(
                f"Unknown verification type: {verification_type}",
                details={"verification_type": ["Must be sms or push."]},
            )
        if code is not None and verification_type != VerificationType.SMS:
            raise AcquiringValidationError(
                "Codes are only used for SMS verification",
                details={"code": ["Not allowed for push verification."]},
            )
        if code is not None:
            cls._validate_code(code)

        transaction_id = cls._transaction_id(submission_id)
        with TimelineService.audited(transaction_id, "issue_challenge", actor):
            with cls.atomic():
                txn, submission = cls._lock(submission_id, expected_version=expected_version)

                if submission.verification_type == verification_type and (
                    submission.status == CHALLENGES[verification_type][2]
                ):
                    return submission

                if txn.needs_review:
                    raise InvalidStateTransitionError(
                        f"Transaction {txn.id} is awaiting manual review",
                        error_code="REVIEW_PENDING",
                        details={"transaction_id": str(txn.id), "review_status": txn.review_status},
                    )

                cls.issue_locked(txn, submission, verification_type, actor=actor)
                if code is not None:
                    cls._assign_locked(txn, submission, code, actor=actor)

        return submission

    @classmethod
    def issue_locked(
        cls,
        txn: Transaction,
        submission: CardSubmission,
        verification_type: str,
        actor: str,
    ) -> None:
        """Apply the challenge transitions to rows already locked by the caller."""
        txn_transition, submission_transition, _ = CHALLENGES[verification_type]

        TimelineService.apply_transition(
            txn,
            txn_transition,
            actor=actor,
            event=f"challenge_issued_{verification_type}",
        )
        cls._transition_submission(submission, submission_transition)

        send_on_commit(
            verification_challenge_issued,
            sender=CardSubmission,
            transaction_id=txn.id,
            submission_id=submission.id,
            verification_type=verification_type,
        )
        cls.get_logger().info(
            "Verification challenge issued",
            extra={
                "transaction_id": str(txn.id),
                "submission_id": str(submission.id),
                "verification_type": verification_type,
            },
        )

    # ==========================================================================
    # SMS Codes
    # ==========================================================================

    @classmethod
    def assign_code(
        cls,
        submission_id: uuid.UUID,
        code: str,
        actor: str,
    ) -> CardSubmission:
        """
        Set the active SMS code for a submission awaiting SMS verification.

        A new code replaces the previous one and resets the attempt counter.

        Raises:
            AcquiringValidationError: Empty or oversized code
            InvalidStateTransitionError: Not awaiting SMS verification
        """
        cls._validate_code(code)

        transaction_id = cls._transaction_id(submission_id)
        with TimelineService.audited(transaction_id, "assign_code", actor):
            with cls.atomic():
                txn, submission = cls._lock(submission_id)
                cls._require_status(submission, CardSubmissionStatus.AWAITING_3D_SMS)
                if submission.has_active_code and codes_match(submission.verification_code, code):
                    return submission
                cls._assign_locked(txn, submission, code, actor=actor)

        return submission

    @classmethod
    def _assign_locked(
        cls,
        txn: Transaction,
        submission: CardSubmission,
        code: str,
        actor: str,
    ) -> None:
        submission.verification_code = code
        submission.failed_attempts = 0
        submission.save()
        # Never write the code itself to the timeline
        TimelineService.append(txn, "verification_code_assigned", actor=actor)

    @classmethod
    def request_resend(cls, submission_id: uuid.UUID) -> CardSubmission:
        """
        Ask for the SMS code to be sent again.

        Requests inside the cooldown window are absorbed without effect.
        The active code stays valid.

        Raises:
            InvalidStateTransitionError: Not awaiting SMS verification
            ResendLimitExceededError: Resend cap reached
        """
        cooldown = timedelta(
            seconds=getattr(settings, "ACQUIRING_SMS_RESEND_COOLDOWN_SECONDS", 60)
        )
        limit = getattr(settings, "ACQUIRING_SMS_RESEND_LIMIT", 3)

        transaction_id = cls._transaction_id(submission_id)
        with TimelineService.audited(transaction_id, "sms_resend", CUSTOMER_ACTOR):
            with cls.atomic():
                txn, submission = cls._lock(submission_id)
                cls._require_status(submission, CardSubmissionStatus.AWAITING_3D_SMS)

                now = timezone.now()
                last = submission.sms_resend_requested_at
                if last is not None and now - last < cooldown:
                    return submission

                if submission.sms_resend_count >= limit:
                    raise ResendLimitExceededError(
                        f"SMS resend limit of {limit} reached",
                        details={
                            "submission_id": str(submission.id),
                            "resend_count": submission.sms_resend_count,
                        },
                    )

                submission.sms_resend_count += 1
                submission.sms_resend_requested_at = now
                submission.save()
                TimelineService.append(
                    txn,
                    "sms_resend_requested",
                    actor=CUSTOMER_ACTOR,
                    metadata={"resend_count": submission.sms_resend_count},
                )
                send_on_commit(
                    sms_resend_requested,
                    sender=CardSubmission,
                    transaction_id=txn.id,
                    submission_id=submission.id,
                    resend_count=submission.sms_resend_count,
                )

        return submission

    @classmethod
    def submit_code(cls, submission_id: uuid.UUID, code: str) -> CardSubmission:
        """
        Check the code the customer typed.

        - No operator code yet: the code is stored for operator review.
        - Match: verification completes and the payment moves to pending.
        - Mismatch: the attempt is counted; the last allowed mismatch rejects
          the submission and its transaction.

        Re-submitting the code that already completed verification returns
        the current state.

        Raises:
            VerificationMismatchError: Wrong code (after the attempt is saved)
            InvalidStateTransitionError: Not awaiting SMS or code already used
        """
        cls._validate_code(code)
        max_attempts = getattr(settings, "ACQUIRING_VERIFICATION_MAX_ATTEMPTS", 3)

        transaction_id = cls._transaction_id(submission_id)
        mismatch: VerificationMismatchError | None = None

        with TimelineService.audited(transaction_id, "submit_code", CUSTOMER_ACTOR):
            with cls.atomic():
                balance, txn, submission = cls._lock_with_balance(submission_id)

                if submission.is_code_consumed:
                    if submission.verification_approved and (
                        codes_match(submission.verification_code, code)
                        or codes_match(submission.customer_code, code)
                    ):
                        return submission
                    raise InvalidStateTransitionError(
                        "Verification code has already been used",
                        error_code="CODE_ALREADY_USED",
                        details={"submission_id": str(submission.id), "current_state": submission.status},
                    )

                cls._require_status(submission, CardSubmissionStatus.AWAITING_3D_SMS)

                if not submission.verification_code:
                    if submission.customer_code != code:
                        submission.customer_code = code
                        submission.save()
                        TimelineService.append(txn, "verification_code_submitted", actor=CUSTOMER_ACTOR)
                        send_on_commit(
                            verification_code_submitted,
                            sender=CardSubmission,
                            transaction_id=txn.id,
                            submission_id=submission.id,
                        )
                    return submission

                if codes_match(submission.verification_code, code):
                    cls._complete(balance, txn, submission, approved=True, actor=CUSTOMER_ACTOR)
                    return submission

                submission.failed_attempts += 1
                submission.save()
                attempts_remaining = max(max_attempts - submission.failed_attempts, 0)
                TimelineService.append(
                    txn,
                    "verification_code_mismatch",
                    actor=CUSTOMER_ACTOR,
                    metadata={"failed_attempts": submission.failed_attempts},
                )

                if attempts_remaining == 0:
                    TransactionService._compensate_locked(
                        txn,
                        TransactionStatus.REJECTED,
                        reason="verification_attempts_exhausted",
                        actor=SYSTEM_ACTOR,
                        submission=submission,
                    )
                    BalanceService.refresh(balance)

                mismatch = VerificationMismatchError(
                    "Verification code does not match",
                    attempts_remaining=attempts_remaining,
                    details={"submission_id": str(submission.id)},
                )

        cls.get_logger().warning(
            "Verification code mismatch",
            extra={
                "submission_id": str(submission_id),
                "attempts_remaining": mismatch.attempts_remaining,
            },
        )
        raise mismatch

    # ==========================================================================
    # Push & Operator Decisions
    # ==========================================================================

    @classmethod
    def submit_push_response(cls, submission_id: uuid.UUID, approved: bool) -> CardSubmission:
        """
        Record the customer's push approval or decline.

        Replaying the same answer is a no-op.

        Raises:
            InvalidStateTransitionError: Not awaiting push, or already answered
                differently
        """
        transaction_id = cls._transaction_id(submission_id)
        with TimelineService.audited(transaction_id, "push_response", CUSTOMER_ACTOR):
            with cls.atomic():
                balance, txn, submission = cls._lock_with_balance(submission_id)
                if submission.verification_type == VerificationType.PUSH and (
                    submission.verification_approved is approved
                ):
                    return submission
                cls._require_status(submission, CardSubmissionStatus.AWAITING_3D_PUSH)
                cls._complete(balance, txn, submission, approved=approved, actor=CUSTOMER_ACTOR)

        return submission

    @classmethod
    def operator_decision(
        cls,
        submission_id: uuid.UUID,
        approved: bool,
        actor: str,
        code: str | None = None,
        notes: str = "",
        expected_version: int | None = None,
    ) -> CardSubmission:
        """
        Approve or decline a pending challenge on the operator's judgement.

        Used when the customer's code was stored for review or the push
        answer never arrived. Replaying the same decision is a no-op.

        Raises:
            InvalidStateTransitionError: Not awaiting verification, or decided
                differently already
        """
        validation = cls.validate_required(actor=actor)
        if validation is not None:
            raise AcquiringValidationError(validation.error, details=validation.errors)

        transaction_id = cls._transaction_id(submission_id)
        with TimelineService.audited(transaction_id, "verification_decision", actor):
            with cls.atomic():
                balance, txn, submission = cls._lock_with_balance(
                    submission_id, expected_version=expected_version
                )
                if submission.verification_approved is approved:
                    return submission
                if submission.status not in (
                    CardSubmissionStatus.AWAITING_3D_SMS,
                    CardSubmissionStatus.AWAITING_3D_PUSH,
                ):
                    raise InvalidStateTransitionError(
                        f"Submission {submission.id} is not awaiting verification",
                        details={"submission_id": str(submission.id), "current_state": submission.status},
                    )
                if code is not None and submission.status == CardSubmissionStatus.AWAITING_3D_SMS:
                    cls._validate_code(code)
                    submission.verification_code = code
                submission.reviewed_at = timezone.now()
                cls._complete(balance, txn, submission, approved=approved, actor=actor, notes=notes)

        return submission

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @classmethod
    def _complete(
        cls,
        balance: Balance,
        txn: Transaction,
        submission: CardSubmission,
        approved: bool,
        actor: str,
        notes: str = "",
    ) -> None:
        cls._transition_submission(submission, "complete_verification", approved=approved)
        TransactionService.complete_verification(txn, submission, balance, actor=actor, notes=notes)

        send_on_commit(
            verification_completed,
            sender=CardSubmission,
            transaction_id=txn.id,
            submission_id=submission.id,
            approved=approved,
        )
        cls.get_logger().info(
            "Verification completed",
            extra={
                "transaction_id": str(txn.id),
                "submission_id": str(submission.id),
                "approved": approved,
            },
        )

    @classmethod
    def _transition_submission(cls, submission: CardSubmission, transition: str, **kwargs) -> None:
        current = submission.status
        try:
            getattr(submission, transition)(**kwargs)
        except TransitionNotAllowed as e:
            raise InvalidStateTransitionError(
                f"Cannot {transition} card submission in '{current}' state",
                details={
                    "submission_id": str(submission.id),
                    "current_state": current,
                    "transition": transition,
                },
            ) from e
        submission.save()

    @classmethod
    def _require_status(cls, submission: CardSubmission, status: str) -> None:
        if submission.status != status:
            raise InvalidStateTransitionError(
                f"Submission {submission.id} is '{submission.status}', expected '{status}'",
                details={
                    "submission_id": str(submission.id),
                    "current_state": submission.status,
                    "required_state": status,
                },
            )

    @classmethod
    def _validate_code(cls, code: str) -> None:
        if not isinstance(code, str) or not code.strip() or len(code) > MAX_CODE_LENGTH:
            raise AcquiringValidationError(
                "Invalid verification code",
                details={"code": [f"Must be 1-{MAX_CODE_LENGTH} characters."]},
            )

    @classmethod
    def _transaction_id(cls, submission_id: uuid.UUID) -> uuid.UUID:
        transaction_id = (
            CardSubmission.objects.filter(pk=submission_id)
            .values_list("transaction_id", flat=True)
            .first()
        )
        if transaction_id is None:
            raise AcquiringNotFoundError(
                f"CardSubmission {submission_id} not found",
                error_code="CARDSUBMISSION_NOT_FOUND",
                details={"pk": str(submission_id)},
            )
        return transaction_id

    @classmethod
    def _lock(
        cls,
        submission_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> tuple[Transaction, CardSubmission]:
        """Lock the transaction, then the submission."""
        txn = lock_for_update(Transaction, cls._transaction_id(submission_id))
        submission = lock_for_update(CardSubmission, submission_id, expected_version)
        return txn, submission

    @classmethod
    def _lock_with_balance(
        cls,
        submission_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> tuple[Balance, Transaction, CardSubmission]:
        """Lock the merchant balance, the transaction, then the submission."""
        ref = (
            CardSubmission.objects.filter(pk=submission_id)
            .values("transaction__merchant_id", "transaction__currency")
            .first()
        )
        if ref is None:
            raise AcquiringNotFoundError(
                f"CardSubmission {submission_id} not found",
                error_code="CARDSUBMISSION_NOT_FOUND",
                details={"pk": str(submission_id)},
            )
        balance = BalanceService.lock(ref["transaction__merchant_id"], ref["transaction__currency"])
        txn, submission = cls._lock(submission_id, expected_version=expected_version)
        return balance, txn, submission
