"""
Pytest fixtures for acquiring tests.

Risk scoring is replaced with a StubScorer for every test so that routing
is decided by the test, not by whatever else is in the database. Tests of
the real scorer instantiate RuleBasedRiskScorer directly.

Usage:
    def test_high_risk_goes_to_review(risk_scorer, submit_card_payment):
        risk_scorer.score_value = 85
        txn = submit_card_payment()
        assert txn.review_status == ReviewStatus.PENDING
"""

import uuid
from datetime import date

import pytest
from django.core.cache import cache
from django.db import transaction

from acquiring.encryption import CardDetails
from acquiring.ledger import BalanceService
from acquiring.risk import RiskAssessment
from acquiring.services import SubmitTransactionParams, TransactionService
from acquiring.state_machines import PaymentMethod
from acquiring.tests.factories import TransactionFactory


class StubScorer:
    """Scorer returning a fixed assessment, or raising ``error`` when set."""

    name = "stub"

    def __init__(self, score_value=10, flags=(), error=None):
        self.score_value = score_value
        self.flags = flags
        self.error = error
        self.calls = 0

    def score(self, transaction, signals):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return RiskAssessment(
            score=self.score_value,
            flags=tuple(self.flags),
            signal_scores={"stub": self.score_value},
            scorer=self.name,
        )


def reload(instance):
    """Fresh copy from the database (FSM fields cannot be refreshed in place)."""
    return type(instance).objects.get(pk=instance.pk)


# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def clear_cache():
    """Circuit breaker state lives in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def risk_scorer(settings):
    """Low-risk stub scorer installed for every test."""
    scorer = StubScorer()
    settings.ACQUIRING_RISK_SCORER = scorer
    return scorer


# =============================================================================
# Inputs
# =============================================================================


@pytest.fixture
def merchant_id():
    return uuid.uuid4()


@pytest.fixture
def card():
    """A valid test Visa card."""
    return CardDetails(
        cardholder_name="Jane Doe",
        number="4242 4242 4242 4242",
        expiry_month=12,
        expiry_year=date.today().year + 3,
        cvc="123",
    )


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def submit_card_payment(db, merchant_id, card):
    """Submit a card payment through TransactionService."""

    def _submit(amount_cents=10000, **overrides):
        params = {
            "merchant_id": merchant_id,
            "amount_cents": amount_cents,
            "currency": "usd",
            "method": PaymentMethod.CARD,
            "card": card,
            "customer_info": {"name": "Jane Doe", "email": "jane@example.com"},
            "ip_address": "203.0.113.10",
            "user_agent": "Mozilla/5.0",
        }
        params.update(overrides)
        return TransactionService.submit_transaction(SubmitTransactionParams(**params))

    return _submit


@pytest.fixture
def submit_bank_wire(db, merchant_id):
    """Submit a bank wire through TransactionService."""

    def _submit(amount_cents=10000, **overrides):
        params = {
            "merchant_id": merchant_id,
            "amount_cents": amount_cents,
            "currency": "usd",
            "method": PaymentMethod.BANK_WIRE,
            "customer_info": {"name": "Jane Doe", "email": "jane@example.com"},
            "ip_address": "203.0.113.10",
            "wire_sender_name": "Jane Doe",
            "wire_sender_bank": "First Bank",
            "wire_reference": "INV-2041",
        }
        params.update(overrides)
        return TransactionService.submit_transaction(SubmitTransactionParams(**params))

    return _submit


@pytest.fixture
def fund_merchant(db, merchant_id):
    """Give the merchant available balance through a processed transaction."""

    def _fund(amount_cents, merchant=None, currency="usd"):
        target = merchant or merchant_id
        txn = TransactionFactory(
            merchant_id=target,
            amount_cents=amount_cents,
            currency=currency,
            processed=True,
        )
        with transaction.atomic():
            BalanceService.refresh(BalanceService.lock(target, currency))
        return txn

    return _fund
