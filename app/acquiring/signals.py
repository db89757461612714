"""
Django signals emitted by the acquiring core.

The acquiring core does not deliver SMS, push notifications or review
queue entries itself. It announces what happened through these signals;
notification and back-office apps connect receivers.

Signals are sent with ``transaction.on_commit`` so receivers never observe
state that is later rolled back. Payloads carry identifiers and
non-sensitive fields only, never card data or verification codes.

Signals:
    payment_submitted(transaction_id, merchant_id, method)
    manual_review_requested(transaction_id, merchant_id, risk_score, risk_flags)
    verification_challenge_issued(transaction_id, submission_id, verification_type)
    sms_resend_requested(transaction_id, submission_id, resend_count)
    verification_code_submitted(transaction_id, submission_id)
    verification_completed(transaction_id, submission_id, approved)
    transaction_status_changed(transaction_id, merchant_id, from_status, to_status)
    withdrawal_status_changed(withdrawal_id, merchant_id, from_status, to_status)

Usage:
    from django.dispatch import receiver
    from acquiring.signals import manual_review_requested

    @receiver(manual_review_requested)
    def enqueue_review(sender, transaction_id, **kwargs):
        ReviewQueue.push(transaction_id)
"""

from __future__ import annotations

import logging
from functools import partial

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

payment_submitted = Signal()
manual_review_requested = Signal()
verification_challenge_issued = Signal()
sms_resend_requested = Signal()
verification_code_submitted = Signal()
verification_completed = Signal()
transaction_status_changed = Signal()
withdrawal_status_changed = Signal()


def _send(signal: Signal, sender, **kwargs) -> None:
    responses = signal.send_robust(sender=sender, **kwargs)
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error(
                f"Acquiring signal receiver failed: {receiver!r}",
                exc_info=response,
                extra={"signal_kwargs": {k: str(v) for k, v in kwargs.items()}},
            )


def send_on_commit(signal: Signal, sender, **kwargs) -> None:
    """
    Send ``signal`` once the surrounding database transaction commits.

    Receiver errors are logged and do not affect the committed state change.
    """
    transaction.on_commit(partial(_send, signal, sender, **kwargs))
