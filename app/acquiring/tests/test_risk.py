"""
Tests for risk scoring.

RuleBasedRiskScorer is instantiated directly; RiskService is exercised with
stub scorers to cover the fail-closed paths and the circuit breaker.
"""

import pytest

from acquiring.exceptions import ScoringUnavailableError
from acquiring.risk import (
    SCORING_UNAVAILABLE_FLAG,
    RiskAssessment,
    RiskService,
    RiskSignals,
    RuleBasedRiskScorer,
)
from acquiring.state_machines import PaymentMethod
from acquiring.tests.conftest import StubScorer
from acquiring.tests.factories import TransactionFactory

IP = "198.51.100.7"


def signals_for(txn, **overrides):
    values = {
        "ip_address": IP,
        "customer_email": "jane@example.com",
        "customer_country": "US",
        "card_bin": "424242",
    }
    values.update(overrides)
    return RiskSignals(**values)


class TestRiskAssessment:
    def test_score_range(self):
        with pytest.raises(ValueError):
            RiskAssessment(score=101)
        with pytest.raises(TypeError):
            RiskAssessment(score=True)

    @pytest.mark.parametrize(
        "score,flags,expected",
        [
            (70, (), False),
            (71, (), True),
            (5, ("blocklist_ip",), True),
        ],
    )
    def test_requires_review(self, score, flags, expected):
        assert RiskAssessment(score=score, flags=flags).requires_review(70) is expected

    def test_fail_closed(self):
        assessment = RiskAssessment.fail_closed()

        assert assessment.score == 100
        assert assessment.flags == (SCORING_UNAVAILABLE_FLAG,)

    def test_signals_from_transaction(self, db):
        txn = TransactionFactory(
            risk_signals={"ip_address": IP, "device_fingerprint": "fp-1"},
            customer_info={"email": "jane@example.com", "country": "DE"},
        )

        signals = RiskSignals.from_transaction(txn, card_bin="424242")

        assert signals.ip_address == IP
        assert signals.device_fingerprint == "fp-1"
        assert signals.customer_country == "DE"
        assert signals.card_bin == "424242"


class TestRuleBasedRiskScorer:
    def test_ordinary_payment_scores_zero(self, db):
        txn = TransactionFactory(amount_cents=10000)

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn))

        assert assessment.score == 0
        assert assessment.flags == ()
        assert assessment.scorer == "rule_based"

    @pytest.mark.parametrize(
        "amount_cents,points",
        [(499_999, 0), (500_000, 30), (1_000_000, 45)],
    )
    def test_amount_rule(self, db, amount_cents, points):
        txn = TransactionFactory(amount_cents=amount_cents)

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn))

        assert assessment.signal_scores["amount"] == points

    def test_missing_ip_on_card(self, db):
        txn = TransactionFactory(method=PaymentMethod.CARD)

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn, ip_address=None))

        assert assessment.signal_scores["missing_context"] == 10

    def test_missing_ip_on_bank_wire_is_fine(self, db):
        txn = TransactionFactory(bank_wire=True)

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn, ip_address=None))

        assert assessment.signal_scores["missing_context"] == 0

    def test_ip_velocity_exceeded(self, db):
        TransactionFactory.create_batch(5, risk_signals={"ip_address": IP})
        txn = TransactionFactory(risk_signals={"ip_address": IP})

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn, customer_email=None))

        assert "ip_velocity_exceeded" in assessment.flags
        assert assessment.signal_scores["velocity"] == 35

    def test_velocity_approaching(self, db):
        TransactionFactory.create_batch(3, risk_signals={"ip_address": IP})
        txn = TransactionFactory(risk_signals={"ip_address": IP})

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn, customer_email=None))

        assert assessment.flags == ()
        assert assessment.signal_scores["velocity"] == 10

    def test_blocklists(self, db, settings):
        settings.ACQUIRING_RISK_BLOCKED_IPS = [IP]
        settings.ACQUIRING_RISK_BLOCKED_BINS = ["424242"]
        settings.ACQUIRING_RISK_BLOCKED_COUNTRIES = ["us"]
        settings.ACQUIRING_RISK_BLOCKED_EMAIL_DOMAINS = ["Example.com"]
        txn = TransactionFactory()

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn))

        assert set(assessment.flags) == {
            "blocklist_ip",
            "blocklist_bin",
            "blocklist_country",
            "blocklist_email_domain",
        }
        assert assessment.signal_scores["blocklists"] == 60

    def test_score_is_clamped(self, db, settings):
        settings.ACQUIRING_RISK_BLOCKED_IPS = [IP]
        TransactionFactory.create_batch(5, risk_signals={"ip_address": IP})
        txn = TransactionFactory(amount_cents=2_000_000, risk_signals={"ip_address": IP})

        assessment = RuleBasedRiskScorer().score(txn, signals_for(txn))

        assert assessment.score == 100


class TestRiskService:
    def test_uses_configured_scorer(self, db, risk_scorer):
        txn = TransactionFactory()

        assessment = RiskService.score(txn, signals_for(txn))

        assert assessment.score == 10
        assert risk_scorer.calls == 1

    def test_default_scorer_from_settings(self, settings):
        settings.ACQUIRING_RISK_SCORER = "acquiring.risk.scorer.RuleBasedRiskScorer"

        assert isinstance(RiskService.get_scorer(), RuleBasedRiskScorer)

    def test_scorer_error_is_unavailable(self, db, risk_scorer):
        risk_scorer.error = TimeoutError("scorer timed out")
        txn = TransactionFactory()

        with pytest.raises(ScoringUnavailableError) as exc_info:
            RiskService.score(txn, signals_for(txn))

        assert exc_info.value.error_code == "SCORING_UNAVAILABLE"

    def test_wrong_return_type_is_unavailable(self, db, settings):
        class BrokenScorer:
            def score(self, transaction, signals):
                return {"score": 10}

        settings.ACQUIRING_RISK_SCORER = BrokenScorer()
        txn = TransactionFactory()

        with pytest.raises(ScoringUnavailableError):
            RiskService.score(txn, signals_for(txn))

    def test_open_circuit_skips_scorer(self, db, settings):
        settings.ACQUIRING_RISK_CIRCUIT_FAILURE_THRESHOLD = 2
        failing = StubScorer(error=ConnectionError("down"))
        settings.ACQUIRING_RISK_SCORER = failing
        txn = TransactionFactory()

        for _ in range(2):
            with pytest.raises(ScoringUnavailableError):
                RiskService.score(txn, signals_for(txn))

        healthy = StubScorer()
        settings.ACQUIRING_RISK_SCORER = healthy
        with pytest.raises(ScoringUnavailableError) as exc_info:
            RiskService.score(txn, signals_for(txn))

        assert healthy.calls == 0
        assert exc_info.value.details["circuit"] == "risk-scorer"
