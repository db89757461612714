"""
Risk scoring for submitted transactions.

Usage:
    from acquiring.risk import RiskService, RiskSignals

    assessment = RiskService.score(txn, RiskSignals.from_transaction(txn))
    if assessment.requires_review(threshold=70):
        ...
"""

from acquiring.risk.scorer import RuleBasedRiskScorer
from acquiring.risk.service import RiskService
from acquiring.risk.types import (
    SCORING_UNAVAILABLE_FLAG,
    RiskAssessment,
    RiskScorer,
    RiskSignals,
)

__all__ = [
    "SCORING_UNAVAILABLE_FLAG",
    "RiskAssessment",
    "RiskScorer",
    "RiskService",
    "RiskSignals",
    "RuleBasedRiskScorer",
]
