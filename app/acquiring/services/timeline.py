"""
Transaction timeline: applying transitions and auditing failed attempts.

Every applied transition goes through ``TimelineService.apply_transition``,
which runs the django-fsm transition, saves the transaction and appends one
TransactionEvent keyed ``"<transaction_id>:<target_status>"``. The unique
key means the database refuses a second application of the same transition
even if two writers slipped past the FSM guard.

Failed attempts at sensitive operations are recorded with
``record_attempt`` in their own atomic block, so the audit entry survives
the rollback of the operation that failed.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from django_fsm import TransitionNotAllowed

from core.services import BaseService

from acquiring.exceptions import (
    InvalidStateTransitionError,
    ResendLimitExceededError,
    StaleRecordError,
)
from acquiring.models import Transaction, TransactionEvent
from acquiring.signals import send_on_commit, transaction_status_changed

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any
    from uuid import UUID

# Failures recorded on the timeline before they propagate
AUDITED_ERRORS = (
    InvalidStateTransitionError,
    StaleRecordError,
    ResendLimitExceededError,
)


class TimelineService(BaseService):
    """Writes the append-only transaction timeline."""

    @classmethod
    def apply_transition(
        cls,
        txn: Transaction,
        transition: str,
        *,
        actor: str,
        notes: str = "",
        event: str | None = None,
        metadata: dict[str, Any] | None = None,
        **transition_kwargs,
    ) -> TransactionEvent:
        """
        Run an FSM transition on a locked transaction and record it.

        Args:
            txn: Transaction locked by the caller
            transition: Name of the django-fsm transition method
            actor: Who triggered the transition
            notes: Free text for the timeline
            event: Timeline event name (defaults to the transition name)
            **transition_kwargs: Passed to the transition method

        Raises:
            InvalidStateTransitionError: If the transition is not allowed from
                the current state, or was already applied
        """
        from_status = txn.status
        try:
            getattr(txn, transition)(**transition_kwargs)
        except TransitionNotAllowed as e:
            raise InvalidStateTransitionError(
                f"Cannot {transition} transaction in '{from_status}' state",
                details={
                    "transaction_id": str(txn.id),
                    "current_state": from_status,
                    "transition": transition,
                },
            ) from e

        txn.save()
        entry = cls.append(
            txn,
            event or transition,
            actor=actor,
            notes=notes,
            from_status=from_status,
            to_status=txn.status,
            idempotency_key=f"{txn.id}:{txn.status}",
            metadata=metadata,
        )

        cls.get_logger().info(
            "Transaction transitioned",
            extra={
                "transaction_id": str(txn.id),
                "from_status": from_status,
                "to_status": txn.status,
                "actor": actor,
            },
        )
        send_on_commit(
            transaction_status_changed,
            sender=Transaction,
            transaction_id=txn.id,
            merchant_id=txn.merchant_id,
            from_status=from_status,
            to_status=txn.status,
        )
        return entry

    @classmethod
    def append(
        cls,
        txn: Transaction,
        event: str,
        *,
        actor: str,
        notes: str = "",
        from_status: str = "",
        to_status: str = "",
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionEvent:
        """
        Append one timeline entry.

        Raises:
            InvalidStateTransitionError: If an entry with the same
                idempotency key already exists
        """
        try:
            with transaction.atomic():
                return TransactionEvent.objects.create(
                    transaction=txn,
                    event=event,
                    actor=actor,
                    notes=notes or "",
                    from_status=from_status,
                    to_status=to_status or txn.status,
                    idempotency_key=idempotency_key,
                    metadata=metadata or {},
                )
        except IntegrityError as e:
            raise InvalidStateTransitionError(
                f"Transition already applied to transaction {txn.id}",
                error_code="TRANSITION_ALREADY_APPLIED",
                details={
                    "transaction_id": str(txn.id),
                    "idempotency_key": idempotency_key,
                },
            ) from e

    @classmethod
    def record_attempt(
        cls,
        transaction_id: UUID,
        event: str,
        *,
        actor: str,
        notes: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> TransactionEvent | None:
        """
        Record a failed attempt in its own atomic block.

        Returns None if the transaction does not exist.
        """
        with transaction.atomic():
            txn = Transaction.objects.filter(pk=transaction_id).first()
            if txn is None:
                return None
            return TransactionEvent.objects.create(
                transaction=txn,
                event=event,
                actor=actor,
                notes=notes or "",
                from_status=txn.status,
                to_status=txn.status,
                metadata=metadata or {},
            )

    @classmethod
    @contextmanager
    def audited(
        cls,
        transaction_id: UUID,
        operation: str,
        actor: str,
    ) -> Generator[None, None, None]:
        """
        Record refused attempts of ``operation`` on the timeline, then re-raise.

        Example:
            with TimelineService.audited(txn_id, "confirm_receipt", actor):
                with cls.atomic():
                    ...
        """
        try:
            yield
        except AUDITED_ERRORS as e:
            cls.get_logger().warning(
                f"{operation} refused: {e.error_code}",
                extra={
                    "transaction_id": str(transaction_id),
                    "actor": actor,
                    "error_code": e.error_code,
                },
            )
            cls.record_attempt(
                transaction_id,
                f"{operation}_refused",
                actor=actor,
                notes=e.message,
                metadata={"error_code": e.error_code, "details": _jsonable(e.details)},
            )
            raise

    @classmethod
    def get_timeline(cls, transaction_id: UUID) -> list[TransactionEvent]:
        return list(
            TransactionEvent.objects.filter(transaction_id=transaction_id).order_by("id")
        )


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    return {key: value if isinstance(value, (int, bool)) else str(value) for key, value in details.items()}
