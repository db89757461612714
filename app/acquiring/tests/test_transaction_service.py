"""
Tests for TransactionService.

Covers submission and risk routing, manual review, bank wire confirmation,
refunds, compensation and inactivity expiry. Step-up verification is
covered in test_verification_service.py.
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from acquiring.encryption import CardDetails
from acquiring.exceptions import (
    AcquiringNotFoundError,
    AcquiringValidationError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    StaleRecordError,
)
from acquiring.ledger import BalanceService
from acquiring.models import Balance, CardSubmission, Transaction, TransactionEvent
from acquiring.risk import SCORING_UNAVAILABLE_FLAG
from acquiring.services import (
    SettlementService,
    SubmitTransactionParams,
    TransactionService,
    VerificationService,
)
from acquiring.signals import manual_review_requested, payment_submitted
from acquiring.state_machines import (
    CardSubmissionStatus,
    MerchantConfirmation,
    PaymentMethod,
    ReviewStatus,
    TransactionStatus,
)
from acquiring.tests.conftest import reload
from acquiring.tests.factories import TransactionFactory, WithdrawalFactory


def events_of(txn):
    return [event.event for event in TransactionService.get_timeline(txn.id)]


# =============================================================================
# Submission
# =============================================================================


class TestSubmitTransactionParams:
    @pytest.mark.parametrize("amount", [0, -100, 10.5, True])
    def test_amount_must_be_positive_integer(self, merchant_id, amount):
        with pytest.raises(AcquiringValidationError) as exc_info:
            SubmitTransactionParams(
                merchant_id=merchant_id,
                amount_cents=amount,
                currency="usd",
                method=PaymentMethod.CARD,
            )

        assert "amount_cents" in exc_info.value.details

    def test_unknown_method_and_currency(self, merchant_id):
        with pytest.raises(AcquiringValidationError) as exc_info:
            SubmitTransactionParams(
                merchant_id=merchant_id,
                amount_cents=100,
                currency="dollars",
                method="cash",
            )

        assert set(exc_info.value.details) == {"currency", "method"}

    def test_bank_wire_refuses_card(self, merchant_id, card):
        with pytest.raises(AcquiringValidationError) as exc_info:
            SubmitTransactionParams(
                merchant_id=merchant_id,
                amount_cents=100,
                currency="usd",
                method=PaymentMethod.BANK_WIRE,
                card=card,
            )

        assert "card" in exc_info.value.details

    def test_currency_normalized(self, merchant_id):
        params = SubmitTransactionParams(
            merchant_id=merchant_id,
            amount_cents=100,
            currency="USD",
            method=PaymentMethod.CARD,
        )

        assert params.currency == "usd"


class TestSubmitTransaction:
    def test_low_risk_card_gets_sms_challenge(self, submit_card_payment):
        txn = submit_card_payment()

        txn = reload(txn)
        submission = CardSubmission.objects.get(transaction=txn)
        assert txn.status == TransactionStatus.AWAITING_3D_SMS
        assert txn.risk_score == 10
        assert txn.review_status == ReviewStatus.NOT_REQUIRED
        assert txn.risk_signals["ip_address"] == "203.0.113.10"
        assert submission.status == CardSubmissionStatus.AWAITING_3D_SMS
        assert submission.card_last4 == "4242"
        assert submission.verification_code == ""
        assert events_of(txn) == ["created", "submit", "risk_scored", "challenge_issued_sms"]

    def test_push_challenge_when_configured(self, settings, submit_card_payment):
        settings.ACQUIRING_DEFAULT_CHALLENGE_TYPE = "push"

        txn = reload(submit_card_payment())

        assert txn.status == TransactionStatus.AWAITING_3D_PUSH
        assert CardSubmission.objects.get(transaction=txn).verification_type == "push"

    def test_card_data_never_stored_raw(self, submit_card_payment):
        txn = submit_card_payment()

        submission = CardSubmission.objects.get(transaction=txn)
        assert "4242424242424242" not in submission.card_number_encrypted
        assert submission.cvc_encrypted != "123"
        assert submission.card_bin == "424242"

    def test_invalid_card_creates_nothing(self, submit_card_payment, card):
        bad = CardDetails(
            cardholder_name=card.cardholder_name,
            number="4242424242424241",
            expiry_month=card.expiry_month,
            expiry_year=card.expiry_year,
            cvc=card.cvc,
        )

        with pytest.raises(AcquiringValidationError) as exc_info:
            submit_card_payment(card=bad)

        assert exc_info.value.error_code == "INVALID_CARD_DETAILS"
        assert Transaction.objects.count() == 0

    def test_high_risk_goes_to_manual_review(
        self, risk_scorer, submit_card_payment, django_capture_on_commit_callbacks
    ):
        risk_scorer.score_value = 85
        reviews = []

        def receiver(sender, **kwargs):
            reviews.append(kwargs)

        manual_review_requested.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                txn = submit_card_payment()
        finally:
            manual_review_requested.disconnect(receiver)

        txn = reload(txn)
        assert txn.status == TransactionStatus.SUBMITTED
        assert txn.review_status == ReviewStatus.PENDING
        assert CardSubmission.objects.get(transaction=txn).status == CardSubmissionStatus.SUBMITTED
        assert "manual_review_requested" in events_of(txn)
        assert reviews[0]["transaction_id"] == txn.id
        assert reviews[0]["risk_score"] == 85

    def test_any_flag_forces_review(self, risk_scorer, submit_card_payment):
        risk_scorer.score_value = 5
        risk_scorer.flags = ("blocklist_bin",)

        txn = reload(submit_card_payment())

        assert txn.review_status == ReviewStatus.PENDING
        assert txn.risk_flags == ["blocklist_bin"]

    def test_scorer_failure_fails_closed(self, risk_scorer, submit_card_payment):
        risk_scorer.error = RuntimeError("model server unreachable")

        txn = reload(submit_card_payment())

        assert txn.risk_score == 100
        assert txn.risk_flags == [SCORING_UNAVAILABLE_FLAG]
        assert txn.review_status == ReviewStatus.PENDING
        assert txn.status == TransactionStatus.SUBMITTED
        assert "risk_scoring_unavailable" in events_of(txn)

    def test_payment_submitted_signal(self, submit_bank_wire, django_capture_on_commit_callbacks):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        payment_submitted.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                txn = submit_bank_wire()
        finally:
            payment_submitted.disconnect(receiver)

        assert received == [
            {
                "signal": payment_submitted,
                "transaction_id": txn.id,
                "merchant_id": txn.merchant_id,
                "method": PaymentMethod.BANK_WIRE,
            }
        ]

    def test_low_risk_bank_wire_waits_for_confirmation(self, submit_bank_wire):
        txn = reload(submit_bank_wire())

        assert txn.status == TransactionStatus.SUBMITTED
        assert txn.merchant_confirmation == MerchantConfirmation.PENDING
        assert txn.wire_reference == "INV-2041"
        assert not CardSubmission.objects.filter(transaction=txn).exists()


class TestSubmitCardDetails:
    def test_payment_request_flow(self, submit_card_payment, card):
        request_id = uuid.uuid4()
        txn = submit_card_payment(card=None, payment_request_id=request_id, ip_address=None)

        assert reload(txn).status == TransactionStatus.PENDING_SUBMISSION

        TransactionService.submit_card_details(txn.id, card, ip_address="198.51.100.20")

        txn = reload(txn)
        assert txn.payment_request_id == request_id
        assert txn.status == TransactionStatus.AWAITING_3D_SMS
        assert txn.risk_signals["ip_address"] == "198.51.100.20"
        assert CardSubmission.objects.get(transaction=txn).ip_address == "198.51.100.20"

    def test_second_submission_refused_and_audited(self, submit_card_payment, card):
        txn = submit_card_payment()

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.submit_card_details(txn.id, card)

        assert "submit_card_details_refused" in events_of(txn)
        assert CardSubmission.objects.filter(transaction=txn).count() == 1

    def test_bank_wire_refuses_card_details(self, submit_bank_wire, card):
        txn = submit_bank_wire()

        with pytest.raises(AcquiringValidationError):
            TransactionService.submit_card_details(txn.id, card)

    def test_unknown_transaction(self, db, card):
        with pytest.raises(AcquiringNotFoundError):
            TransactionService.submit_card_details(uuid.uuid4(), card)


class TestPaymentRequestReplay:
    def test_retried_submission_is_credited_once(self, submit_card_payment, merchant_id):
        request_id = uuid.uuid4()

        first = submit_card_payment(payment_request_id=request_id)
        second = submit_card_payment(payment_request_id=request_id)

        assert second.id == first.id
        assert Transaction.objects.filter(payment_request_id=request_id).count() == 1
        assert CardSubmission.objects.filter(transaction=first).count() == 1

        submission = CardSubmission.objects.get(transaction=first)
        VerificationService.assign_code(submission.id, "482913", actor="operator:1")
        VerificationService.submit_code(submission.id, "482913")
        SettlementService.confirm_receipt(first.id, actor="operator:1")
        SettlementService.confirm_receipt(second.id, actor="operator:1")

        assert BalanceService.get_balance(merchant_id).available.cents == 10000

    def test_card_details_for_pending_link_are_attached(self, submit_card_payment):
        request_id = uuid.uuid4()
        link = submit_card_payment(card=None, payment_request_id=request_id)

        paid = submit_card_payment(payment_request_id=request_id)

        assert paid.id == link.id
        assert reload(paid).status == TransactionStatus.AWAITING_3D_SMS
        assert CardSubmission.objects.filter(transaction=link).count() == 1

    @pytest.mark.parametrize(
        "amount_cents, other_merchant",
        [(9999, False), (10000, True)],
    )
    def test_conflicting_reuse_is_rejected(
        self, submit_card_payment, merchant_id, amount_cents, other_merchant
    ):
        request_id = uuid.uuid4()
        first = submit_card_payment(payment_request_id=request_id)
        merchant = uuid.uuid4() if other_merchant else merchant_id

        with pytest.raises(AcquiringValidationError) as exc_info:
            submit_card_payment(amount_cents, payment_request_id=request_id, merchant_id=merchant)

        assert exc_info.value.error_code == "PAYMENT_ALREADY_SUBMITTED"
        assert exc_info.value.details["transaction_id"] == str(first.id)
        assert Transaction.objects.filter(payment_request_id=request_id).count() == 1

    def test_lost_create_race_returns_winner(self, submit_card_payment, merchant_id):
        request_id = uuid.uuid4()
        winner = TransactionFactory(
            merchant_id=merchant_id, amount_cents=10000, payment_request_id=request_id
        )

        with patch.object(
            TransactionService, "_find_request_replay", side_effect=[None, winner]
        ):
            txn = submit_card_payment(payment_request_id=request_id)

        assert txn.id == winner.id
        assert Transaction.objects.filter(payment_request_id=request_id).count() == 1


# =============================================================================
# Manual Review
# =============================================================================


class TestManualReview:
    @pytest.fixture
    def held_card_payment(self, risk_scorer, submit_card_payment):
        risk_scorer.score_value = 90
        return submit_card_payment()

    def test_approve_issues_challenge(self, held_card_payment):
        TransactionService.operator_review_decision(
            held_card_payment.id, "approve", actor="operator:7", notes="known customer"
        )

        txn = reload(held_card_payment)
        assert txn.review_status == ReviewStatus.APPROVED
        assert txn.reviewed_by == "operator:7"
        assert txn.status == TransactionStatus.AWAITING_3D_SMS
        assert events_of(txn)[-2:] == ["review_approved", "challenge_issued_sms"]

    def test_reject_rejects_transaction_and_submission(self, held_card_payment):
        TransactionService.operator_review_decision(held_card_payment.id, "reject", actor="operator:7")

        txn = reload(held_card_payment)
        assert txn.status == TransactionStatus.REJECTED
        assert txn.failure_reason == "rejected_by_review"
        assert CardSubmission.objects.get(transaction=txn).status == CardSubmissionStatus.REJECTED

    def test_same_decision_twice_is_a_no_op(self, held_card_payment):
        TransactionService.operator_review_decision(held_card_payment.id, "approve", actor="operator:7")
        count = TransactionEvent.objects.filter(transaction_id=held_card_payment.id).count()

        TransactionService.operator_review_decision(held_card_payment.id, "approve", actor="operator:8")

        assert TransactionEvent.objects.filter(transaction_id=held_card_payment.id).count() == count

    def test_opposite_decision_refused(self, held_card_payment):
        TransactionService.operator_review_decision(held_card_payment.id, "approve", actor="operator:7")

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.operator_review_decision(held_card_payment.id, "reject", actor="operator:8")

    def test_not_under_review(self, submit_card_payment):
        txn = submit_card_payment()

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.operator_review_decision(txn.id, "approve", actor="operator:7")

        assert "review_decision_refused" in events_of(txn)

    def test_decision_requires_actor_and_known_value(self, held_card_payment):
        with pytest.raises(AcquiringValidationError):
            TransactionService.operator_review_decision(held_card_payment.id, "maybe", actor="operator:7")
        with pytest.raises(AcquiringValidationError):
            TransactionService.operator_review_decision(held_card_payment.id, "approve", actor="")

    def test_stale_version(self, held_card_payment):
        with pytest.raises(StaleRecordError):
            TransactionService.operator_review_decision(
                held_card_payment.id, "approve", actor="operator:7", expected_version=1
            )

    def test_approved_bank_wire_can_be_confirmed(self, risk_scorer, submit_bank_wire):
        risk_scorer.score_value = 95
        txn = submit_bank_wire()

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")

        TransactionService.operator_review_decision(txn.id, "approve", actor="operator:7")
        TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")

        assert reload(txn).status == TransactionStatus.PROCESSED_AWAITING_EXCHANGE


# =============================================================================
# Bank Wire
# =============================================================================


class TestConfirmBankWire:
    def test_success_moves_to_pending_balance(self, submit_bank_wire, merchant_id):
        txn = submit_bank_wire(amount_cents=25000)

        TransactionService.confirm_bank_wire(
            txn.id, "success", actor="merchant", wire_reference="WIRE-99"
        )

        txn = reload(txn)
        assert txn.status == TransactionStatus.PROCESSED_AWAITING_EXCHANGE
        assert txn.merchant_confirmation == MerchantConfirmation.SUCCESS
        assert txn.wire_reference == "WIRE-99"
        assert events_of(txn)[-1] == "wire_confirmed"
        assert BalanceService.get_balance(merchant_id).pending.cents == 25000
        assert Balance.objects.get(merchant_id=merchant_id).pending_cents == 25000

    def test_success_replay_is_a_no_op(self, submit_bank_wire):
        txn = submit_bank_wire()
        TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")

        TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")

        assert events_of(txn).count("wire_confirmed") == 1

    def test_failed_confirmation(self, submit_bank_wire):
        txn = submit_bank_wire()

        TransactionService.confirm_bank_wire(txn.id, "failed", actor="merchant", notes="never arrived")

        txn = reload(txn)
        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "wire_not_confirmed"

    def test_not_received_is_recorded_only(self, submit_bank_wire):
        txn = submit_bank_wire()

        TransactionService.confirm_bank_wire(txn.id, "not_received", actor="merchant")

        txn = reload(txn)
        assert txn.status == TransactionStatus.SUBMITTED
        assert txn.merchant_confirmation == MerchantConfirmation.NOT_RECEIVED
        assert events_of(txn)[-1] == "wire_not_received"

    def test_card_transactions_refused(self, submit_card_payment):
        txn = submit_card_payment()

        with pytest.raises(AcquiringValidationError):
            TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")

    def test_unknown_confirmation(self, submit_bank_wire):
        txn = submit_bank_wire()

        with pytest.raises(AcquiringValidationError):
            TransactionService.confirm_bank_wire(txn.id, "pending", actor="merchant")


# =============================================================================
# Refunds
# =============================================================================


class TestRecordRefund:
    def test_partial_refund_reduces_available(self, fund_merchant, merchant_id):
        txn = fund_merchant(10000)

        TransactionService.record_refund(txn.id, 4000, actor="operator:3", notes="damaged goods")

        txn = reload(txn)
        assert txn.refund_amount_cents == 4000
        assert txn.net_amount_cents == 6000
        assert txn.refunded_at is not None
        assert BalanceService.get_balance(merchant_id).available.cents == 6000
        assert Balance.objects.get(merchant_id=merchant_id).available_cents == 6000

    def test_replay_is_a_no_op(self, fund_merchant):
        txn = fund_merchant(10000)
        TransactionService.record_refund(txn.id, 4000, actor="operator:3")

        TransactionService.record_refund(txn.id, 4000, actor="operator:3")

        assert events_of(txn).count("refunded") == 1

    def test_second_refund_refused(self, fund_merchant):
        txn = fund_merchant(10000)
        TransactionService.record_refund(txn.id, 4000, actor="operator:3")

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.record_refund(txn.id, 1000, actor="operator:3")

    def test_refund_above_amount(self, fund_merchant):
        txn = fund_merchant(10000)

        with pytest.raises(AcquiringValidationError):
            TransactionService.record_refund(txn.id, 10001, actor="operator:3")

    def test_refund_needs_available_balance(self, fund_merchant, merchant_id):
        txn = fund_merchant(10000)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=8000)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            TransactionService.record_refund(txn.id, 5000, actor="operator:3")

        assert exc_info.value.details["available_cents"] == 2000
        assert reload(txn).refund_amount_cents == 0

    def test_only_processed_transactions(self, db):
        txn = TransactionFactory(awaiting_exchange=True)

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.record_refund(txn.id, 100, actor="operator:3")

        assert "refund_refused" in events_of(txn)


# =============================================================================
# Compensation & Expiry
# =============================================================================


class TestCompensation:
    def test_reject_from_awaiting_verification(self, submit_card_payment):
        txn = submit_card_payment()

        TransactionService.reject_transaction(txn.id, reason="fraud_suspected", actor="operator:2")

        txn = reload(txn)
        assert txn.status == TransactionStatus.REJECTED
        assert txn.failure_reason == "fraud_suspected"
        assert CardSubmission.objects.get(transaction=txn).status == CardSubmissionStatus.REJECTED

    def test_insufficient_funds(self, submit_card_payment):
        txn = submit_card_payment()

        TransactionService.mark_insufficient_funds(txn.id, reason="issuer_declined", actor="system")

        txn = reload(txn)
        assert txn.status == TransactionStatus.INSUFFICIENT_FUNDS
        assert CardSubmission.objects.get(transaction=txn).status == (
            CardSubmissionStatus.INSUFFICIENT_FUNDS
        )

    def test_failing_pending_transaction_removes_pending_balance(self, db, merchant_id):
        txn = TransactionFactory(merchant_id=merchant_id, awaiting_exchange=True, amount_cents=5000)

        TransactionService.fail_transaction(txn.id, reason="exchange_failed", actor="system")

        assert BalanceService.get_balance(merchant_id).pending.cents == 0
        assert Balance.objects.get(merchant_id=merchant_id).pending_cents == 0

    def test_same_compensation_replay(self, submit_card_payment):
        txn = submit_card_payment()
        TransactionService.fail_transaction(txn.id, reason="timeout", actor="system")

        result = TransactionService.fail_transaction(txn.id, reason="timeout", actor="system")

        assert result.status == TransactionStatus.FAILED
        assert events_of(txn).count("fail") == 1

    def test_reason_required(self, submit_card_payment):
        txn = submit_card_payment()

        with pytest.raises(AcquiringValidationError):
            TransactionService.reject_transaction(txn.id, reason="", actor="operator:2")

    def test_get_transaction_not_found(self, db):
        with pytest.raises(AcquiringNotFoundError) as exc_info:
            TransactionService.get_transaction(uuid.uuid4())

        assert exc_info.value.error_code == "TRANSACTION_NOT_FOUND"


class TestExpireStale:
    def test_expires_inactive_transaction(self, db):
        txn = TransactionFactory()
        cutoff = timezone.now() + timedelta(minutes=1)

        result = TransactionService.expire_stale(txn.id, cutoff)

        assert result.success
        txn = reload(txn)
        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "expired_inactivity"

    def test_recent_activity_skipped(self, db):
        txn = TransactionFactory()
        cutoff = timezone.now() - timedelta(minutes=30)

        result = TransactionService.expire_stale(txn.id, cutoff)

        assert result.error_code == "RECENT_ACTIVITY"
        assert reload(txn).status == TransactionStatus.PENDING_SUBMISSION

    @pytest.mark.parametrize(
        "status",
        [TransactionStatus.SUBMITTED, TransactionStatus.PROCESSED_AWAITING_EXCHANGE],
    )
    def test_not_expirable(self, db, status):
        txn = TransactionFactory(status=status)

        result = TransactionService.expire_stale(txn.id, timezone.now() + timedelta(minutes=1))

        assert result.error_code == "NOT_EXPIRABLE"
