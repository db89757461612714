"""
Risk scoring entry point used by the transaction state machine.

The configured scorer (``settings.ACQUIRING_RISK_SCORER``: a dotted path to a
scorer class, or a scorer instance) is called through RiskCircuit. Any
failure, an open circuit, or an out-of-range result raises
ScoringUnavailableError; the caller routes the transaction to manual review
instead of auto-approving it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.module_loading import import_string

from core.services import BaseService

from acquiring.exceptions import ScoringUnavailableError
from acquiring.risk.circuit import CircuitOpenError, RiskCircuit
from acquiring.risk.types import RiskAssessment, RiskSignals

if TYPE_CHECKING:
    from acquiring.models import Transaction
    from acquiring.risk.types import RiskScorer

DEFAULT_SCORER = "acquiring.risk.scorer.RuleBasedRiskScorer"


class RiskService(BaseService):
    """Loads the configured scorer and guards it with a circuit breaker."""

    @classmethod
    def get_scorer(cls) -> RiskScorer:
        scorer = getattr(settings, "ACQUIRING_RISK_SCORER", DEFAULT_SCORER)
        if isinstance(scorer, str):
            return import_string(scorer)()
        return scorer

    @classmethod
    def get_circuit(cls) -> RiskCircuit:
        return RiskCircuit(
            failure_threshold=getattr(
                settings, "ACQUIRING_RISK_CIRCUIT_FAILURE_THRESHOLD", 5
            ),
            recovery_timeout=getattr(
                settings, "ACQUIRING_RISK_CIRCUIT_RECOVERY_TIMEOUT", 60
            ),
        )

    @classmethod
    def score(cls, transaction: Transaction, signals: RiskSignals) -> RiskAssessment:
        """
        Score a transaction.

        Raises:
            ScoringUnavailableError: If the scorer failed or the circuit is open
        """
        circuit = cls.get_circuit()
        try:
            with circuit.call():
                assessment = cls.get_scorer().score(transaction, signals)
                if not isinstance(assessment, RiskAssessment):
                    raise TypeError(
                        f"Risk scorer returned {type(assessment).__name__}, "
                        "expected RiskAssessment"
                    )
        except CircuitOpenError as e:
            cls.get_logger().warning(
                "Risk scorer circuit open",
                extra={"transaction_id": str(transaction.id)},
            )
            raise ScoringUnavailableError(
                "Risk scorer circuit is open",
                details={"transaction_id": str(transaction.id), "circuit": circuit.name},
            ) from e
        except Exception as e:
            cls.get_logger().error(
                f"Risk scorer failed: {type(e).__name__}",
                extra={"transaction_id": str(transaction.id)},
                exc_info=True,
            )
            raise ScoringUnavailableError(
                f"Risk scorer failed: {e}",
                details={"transaction_id": str(transaction.id)},
            ) from e

        return assessment
