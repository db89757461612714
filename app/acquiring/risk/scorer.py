"""
Weighted rule-based risk scorer.

Each rule contributes points; the total is clamped to 0-100. Rules that
indicate a hard match (blocklists, velocity limits exceeded) also raise a
flag, and any flag sends the transaction to manual review regardless of
the score.

All thresholds come from settings so that operations can tune them
without a deploy:

    ACQUIRING_RISK_LARGE_AMOUNT_CENTS
    ACQUIRING_RISK_VELOCITY_WINDOW_MINUTES
    ACQUIRING_RISK_VELOCITY_LIMIT
    ACQUIRING_RISK_BLOCKED_IPS
    ACQUIRING_RISK_BLOCKED_BINS
    ACQUIRING_RISK_BLOCKED_COUNTRIES
    ACQUIRING_RISK_BLOCKED_EMAIL_DOMAINS
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from acquiring.risk.types import MAX_RISK_SCORE, RiskAssessment, RiskSignals

if TYPE_CHECKING:
    from acquiring.models import Transaction

logger = logging.getLogger(__name__)


# Points per rule
LARGE_AMOUNT_POINTS = 30
VERY_LARGE_AMOUNT_POINTS = 45
VELOCITY_POINTS = 35
VELOCITY_APPROACHING_POINTS = 10
BLOCKLIST_POINTS = 60
MISSING_CONTEXT_POINTS = 10


class RuleBasedRiskScorer:
    """
    Default scorer. Deterministic for a given database state and settings.
    """

    name = "rule_based"

    def __init__(self):
        self.large_amount_cents = getattr(
            settings, "ACQUIRING_RISK_LARGE_AMOUNT_CENTS", 500_000
        )
        self.velocity_window = timedelta(
            minutes=getattr(settings, "ACQUIRING_RISK_VELOCITY_WINDOW_MINUTES", 60)
        )
        self.velocity_limit = getattr(settings, "ACQUIRING_RISK_VELOCITY_LIMIT", 5)
        self.blocked_ips = set(getattr(settings, "ACQUIRING_RISK_BLOCKED_IPS", []))
        self.blocked_bins = set(getattr(settings, "ACQUIRING_RISK_BLOCKED_BINS", []))
        self.blocked_countries = {
            c.upper() for c in getattr(settings, "ACQUIRING_RISK_BLOCKED_COUNTRIES", [])
        }
        self.blocked_email_domains = {
            d.lower()
            for d in getattr(settings, "ACQUIRING_RISK_BLOCKED_EMAIL_DOMAINS", [])
        }

    def score(self, transaction: Transaction, signals: RiskSignals) -> RiskAssessment:
        """
        Score a submitted transaction.

        Returns:
            RiskAssessment with the clamped score, flags and per-rule points
        """
        signal_scores: dict[str, int] = {}
        flags: list[str] = []

        for rule in (
            self._score_amount,
            self._score_velocity,
            self._score_blocklists,
            self._score_missing_context,
        ):
            points, rule_flags = rule(transaction, signals)
            signal_scores[rule.__name__.removeprefix("_score_")] = points
            flags.extend(rule_flags)

        total = max(0, min(MAX_RISK_SCORE, sum(signal_scores.values())))

        logger.info(
            "Risk score calculated",
            extra={
                "transaction_id": str(transaction.id),
                "risk_score": total,
                "flags": flags,
            },
        )
        return RiskAssessment(
            score=total,
            flags=tuple(flags),
            signal_scores=signal_scores,
            scorer=self.name,
        )

    def _score_amount(self, transaction, signals) -> tuple[int, list[str]]:
        if transaction.amount_cents >= self.large_amount_cents * 2:
            return VERY_LARGE_AMOUNT_POINTS, []
        if transaction.amount_cents >= self.large_amount_cents:
            return LARGE_AMOUNT_POINTS, []
        return 0, []

    def _score_velocity(self, transaction, signals) -> tuple[int, list[str]]:
        from acquiring.models import Transaction

        since = timezone.now() - self.velocity_window
        recent = Transaction.objects.filter(created_at__gte=since).exclude(
            pk=transaction.pk
        )

        counts: dict[str, int] = {}
        if signals.ip_address:
            counts["ip"] = recent.filter(
                risk_signals__ip_address=signals.ip_address
            ).count()
        if signals.customer_email:
            counts["email"] = recent.filter(
                customer_info__email=signals.customer_email
            ).count()

        flags = [
            f"{key}_velocity_exceeded"
            for key, count in counts.items()
            if count >= self.velocity_limit
        ]
        if flags:
            return VELOCITY_POINTS, flags

        approaching = any(
            count * 2 >= self.velocity_limit for count in counts.values()
        )
        return (VELOCITY_APPROACHING_POINTS if approaching else 0), []

    def _score_blocklists(self, transaction, signals) -> tuple[int, list[str]]:
        flags = []
        if signals.ip_address and signals.ip_address in self.blocked_ips:
            flags.append("blocklist_ip")
        if signals.card_bin and signals.card_bin in self.blocked_bins:
            flags.append("blocklist_bin")
        if (
            signals.customer_country
            and signals.customer_country.upper() in self.blocked_countries
        ):
            flags.append("blocklist_country")
        if signals.customer_email and "@" in signals.customer_email:
            domain = signals.customer_email.rsplit("@", 1)[1].lower()
            if domain in self.blocked_email_domains:
                flags.append("blocklist_email_domain")
        return (BLOCKLIST_POINTS if flags else 0), flags

    def _score_missing_context(self, transaction, signals) -> tuple[int, list[str]]:
        if transaction.is_card and not signals.ip_address:
            return MISSING_CONTEXT_POINTS, []
        return 0, []
