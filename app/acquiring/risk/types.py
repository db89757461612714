"""
Data types exchanged with risk scorers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from acquiring.models import Transaction

SCORING_UNAVAILABLE_FLAG = "scoring_unavailable"
MAX_RISK_SCORE = 100


@dataclass(frozen=True)
class RiskSignals:
    """Context collected at submission time and handed to the scorer."""

    ip_address: str | None = None
    device_fingerprint: str | None = None
    user_agent: str | None = None
    card_bin: str | None = None
    customer_email: str | None = None
    customer_country: str | None = None

    @classmethod
    def from_transaction(cls, txn: Transaction, card_bin: str | None = None) -> RiskSignals:
        signals = txn.risk_signals or {}
        customer = txn.customer_info or {}
        return cls(
            ip_address=signals.get("ip_address"),
            device_fingerprint=signals.get("device_fingerprint"),
            user_agent=signals.get("user_agent"),
            card_bin=card_bin,
            customer_email=(customer.get("email") or None),
            customer_country=(customer.get("country") or None),
        )


@dataclass(frozen=True)
class RiskAssessment:
    """
    Output of a risk scorer.

    Attributes:
        score: Integer 0-100, higher is riskier
        flags: Named conditions that force manual review on their own
        signal_scores: Points contributed by each rule (explainability)
        scorer: Name of the scorer that produced the assessment
    """

    score: int
    flags: tuple[str, ...] = ()
    signal_scores: dict[str, int] = field(default_factory=dict)
    scorer: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.score, bool) or not isinstance(self.score, int):
            raise TypeError("Risk score must be an integer")
        if not 0 <= self.score <= MAX_RISK_SCORE:
            raise ValueError(f"Risk score out of range: {self.score}")
        object.__setattr__(self, "flags", tuple(sorted(set(self.flags))))

    @classmethod
    def fail_closed(cls, scorer: str = "") -> RiskAssessment:
        """Assessment used when no score could be obtained."""
        return cls(
            score=MAX_RISK_SCORE,
            flags=(SCORING_UNAVAILABLE_FLAG,),
            scorer=scorer,
        )

    def requires_review(self, threshold: int) -> bool:
        return self.score > threshold or bool(self.flags)


class RiskScorer(Protocol):
    """Anything with a ``score`` method can be plugged in as the scorer."""

    def score(self, transaction: Transaction, signals: RiskSignals) -> RiskAssessment:
        ...
