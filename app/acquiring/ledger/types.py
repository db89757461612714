"""
Data types for balance ledger operations.

Types:
    Money: An integer amount in minor units with its currency
    BalanceSnapshot: Available/pending balance of one merchant in one currency

Usage:
    from acquiring.ledger.types import Money

    amount = Money(cents=10000, currency="usd")
    print(amount)  # "$100.00 USD"

    fee = Money(cents=1500, currency="usd")
    print(amount - fee)  # "$85.00 USD"
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field

from django.utils import timezone

CURRENCY_PATTERN = re.compile(r"^[a-z]{3}$")


def normalize_currency(currency: str) -> str:
    """
    Lowercase and validate a 3-letter ISO 4217 currency code.

    Raises:
        ValueError: If the code is not three ASCII letters
    """
    normalized = (currency or "").strip().lower()
    if not CURRENCY_PATTERN.match(normalized):
        raise ValueError(f"Invalid currency code: {currency!r}")
    return normalized


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    All amounts are integers in the smallest currency unit. There is no
    floating point anywhere in the ledger: formatting uses integer division.
    Arithmetic between different currencies is refused.

    Attributes:
        cents: Amount in the smallest currency unit (e.g., cents for USD)
        currency: Lowercase ISO 4217 currency code (default: 'usd')

    Example:
        amount = Money(cents=5000, currency="usd")
        print(amount)  # "$50.00 USD"
    """

    cents: int
    currency: str = "usd"

    def __post_init__(self) -> None:
        """Validate the amount type and normalize the currency."""
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money.cents must be an integer number of minor units")
        object.__setattr__(self, "currency", normalize_currency(self.currency))

    @classmethod
    def zero(cls, currency: str = "usd") -> Money:
        """Zero amount in the given currency."""
        return cls(cents=0, currency=currency)

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    def __str__(self) -> str:
        """Format as currency string (e.g., '$50.00 USD')."""
        sign = "-" if self.cents < 0 else ""
        major, minor = divmod(abs(self.cents), 100)
        return f"{sign}${major}.{minor:02d} {self.currency.upper()}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return f"Money(cents={self.cents}, currency={self.currency!r})"

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        """Add two Money objects (must have same currency)."""
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        """Subtract two Money objects (must have same currency)."""
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(cents=self.cents - other.cents, currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.cents < other.cents

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.cents <= other.cents


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Balance of one merchant in one currency, folded from the ledger.

    Attributes:
        merchant_id: Merchant the balance belongs to
        available: Withdrawable funds (settled minus reserved withdrawals)
        pending: Funds processed but not yet received (awaiting exchange)
        computed_at: When the fold was evaluated
    """

    merchant_id: uuid.UUID
    available: Money
    pending: Money
    computed_at: object = field(default_factory=timezone.now, compare=False)

    @property
    def currency(self) -> str:
        return self.available.currency

    @property
    def total(self) -> Money:
        """available + pending."""
        return self.available + self.pending

    def to_dict(self) -> dict:
        return {
            "merchant_id": str(self.merchant_id),
            "currency": self.currency,
            "available_cents": self.available.cents,
            "pending_cents": self.pending.cents,
        }
