"""
Tests for the append-only transaction timeline.
"""

import uuid

import pytest

from acquiring.exceptions import InvalidStateTransitionError, StaleRecordError
from acquiring.models import TransactionEvent
from acquiring.services import TimelineService, TransactionService
from acquiring.signals import transaction_status_changed
from acquiring.state_machines import TransactionStatus
from acquiring.tests.conftest import reload
from acquiring.tests.factories import TransactionFactory


@pytest.fixture
def txn(db):
    return TransactionFactory()


class TestAppendOnly:
    def test_events_cannot_be_updated(self, txn):
        event = TimelineService.append(txn, "created", actor="customer")

        event.notes = "rewritten"
        with pytest.raises(TypeError):
            event.save()

    def test_events_cannot_be_deleted(self, txn):
        event = TimelineService.append(txn, "created", actor="customer")

        with pytest.raises(TypeError):
            event.delete()
        with pytest.raises(TypeError):
            TransactionEvent.objects.filter(transaction=txn).delete()
        with pytest.raises(TypeError):
            TransactionEvent.objects.filter(transaction=txn).update(notes="x")

        assert TransactionEvent.objects.filter(pk=event.pk).exists()

    def test_duplicate_key_refused(self, txn):
        TimelineService.append(
            txn,
            "review_approved",
            actor="operator:1",
            idempotency_key=f"{txn.id}:review:approved",
        )

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            TimelineService.append(
                txn,
                "review_approved",
                actor="operator:2",
                idempotency_key=f"{txn.id}:review:approved",
            )

        assert exc_info.value.error_code == "TRANSITION_ALREADY_APPLIED"
        assert TransactionEvent.objects.filter(transaction=txn).count() == 1


class TestApplyTransition:
    def test_records_one_event_per_transition(self, txn):
        entry = TimelineService.apply_transition(txn, "submit", actor="customer", notes="card entered")

        assert entry.event == "submit"
        assert entry.from_status == TransactionStatus.PENDING_SUBMISSION
        assert entry.to_status == TransactionStatus.SUBMITTED
        assert entry.idempotency_key == f"{txn.id}:submitted"
        assert entry.notes == "card entered"
        assert reload(txn).status == TransactionStatus.SUBMITTED

    def test_not_allowed_transition(self, txn):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            TimelineService.apply_transition(txn, "settle", actor="system")

        assert exc_info.value.details["current_state"] == TransactionStatus.PENDING_SUBMISSION
        assert TransactionEvent.objects.filter(transaction=txn).count() == 0

    def test_status_change_signal_after_commit(self, txn, django_capture_on_commit_callbacks):
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        transaction_status_changed.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                TimelineService.apply_transition(txn, "submit", actor="customer")
                assert received == []
        finally:
            transaction_status_changed.disconnect(receiver)

        assert len(received) == 1
        assert received[0]["transaction_id"] == txn.id
        assert received[0]["to_status"] == TransactionStatus.SUBMITTED

    def test_timeline_is_ordered(self, txn):
        TimelineService.append(txn, "created", actor="customer")
        TimelineService.apply_transition(txn, "submit", actor="customer")
        TimelineService.append(txn, "risk_scored", actor="system")

        events = [event.event for event in TransactionService.get_timeline(txn.id)]

        assert events == ["created", "submit", "risk_scored"]


class TestAudited:
    def test_refused_attempt_is_recorded(self, db):
        txn = TransactionFactory(processed=True)

        with pytest.raises(InvalidStateTransitionError):
            TransactionService.fail_transaction(txn.id, reason="chargeback", actor="operator:9")

        refused = TransactionEvent.objects.get(transaction=txn, event="fail_refused")
        assert refused.actor == "operator:9"
        assert refused.metadata["error_code"] == "INVALID_STATE_TRANSITION"
        assert refused.idempotency_key is None
        assert reload(txn).status == TransactionStatus.PROCESSED

    def test_stale_attempt_is_recorded(self, db):
        txn = TransactionFactory(status=TransactionStatus.SUBMITTED)

        with pytest.raises(StaleRecordError):
            TransactionService.reject_transaction(
                txn.id, reason="fraud", actor="operator:9", expected_version=7
            )

        refused = TransactionEvent.objects.get(transaction=txn, event="reject_refused")
        assert refused.metadata["error_code"] == "STALE_RECORD"
        assert refused.metadata["details"]["expected_version"] == 7

    def test_record_attempt_for_missing_transaction(self, db):
        assert TimelineService.record_attempt(uuid.uuid4(), "x_refused", actor="system") is None
