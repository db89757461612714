"""
Card data encryption boundary.

Card number, expiry and CVC cross into the acquiring core exactly once,
through ``CardVault.seal()``. The vault validates the raw input, derives the
non-sensitive display metadata (BIN, last four, brand) and returns Fernet
tokens. Nothing in the core decrypts them again.

Keys come from ``settings.CARD_ENCRYPTION_KEYS`` (first key encrypts, all
keys decrypt), which allows key rotation through ``MultiFernet``.

Usage:
    from acquiring.encryption import CardDetails, CardVault

    sealed = CardVault.seal(
        CardDetails(
            cardholder_name="Jane Doe",
            number="4242 4242 4242 4242",
            expiry_month=12,
            expiry_year=2030,
            cvc="123",
        )
    )
    sealed.card_last4  # "4242"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from cryptography.fernet import Fernet, MultiFernet
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from acquiring.exceptions import AcquiringValidationError

logger = logging.getLogger(__name__)

CARD_NUMBER_PATTERN = re.compile(r"^\d{12,19}$")
CVC_PATTERN = re.compile(r"^\d{3,4}$")

# (prefix ranges, brand) checked in order
CARD_BRANDS = (
    (("34", "37"), "amex"),
    (tuple(str(p) for p in range(51, 56)), "mastercard"),
    (tuple(str(p) for p in range(2221, 2721)), "mastercard"),
    (("6011", "65"), "discover"),
    (("4",), "visa"),
)


def luhn_valid(number: str) -> bool:
    """Luhn checksum of a digit string."""
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def detect_brand(number: str) -> str:
    for prefixes, brand in CARD_BRANDS:
        if number.startswith(prefixes):
            return brand
    return "unknown"


@dataclass(frozen=True)
class CardDetails:
    """
    Raw card input as typed by the customer.

    ``repr`` is masked so that the value can never end up in a log line
    or a traceback.
    """

    cardholder_name: str
    number: str
    expiry_month: int
    expiry_year: int
    cvc: str

    def __repr__(self) -> str:
        return f"CardDetails(cardholder_name={self.cardholder_name!r}, number='****')"

    __str__ = __repr__

    @property
    def digits(self) -> str:
        return re.sub(r"[\s-]", "", self.number or "")


@dataclass(frozen=True)
class SealedCard:
    """Encrypted card fields plus display metadata, ready for CardSubmission."""

    cardholder_name: str
    card_number_encrypted: str
    expiry_encrypted: str
    cvc_encrypted: str
    card_bin: str
    card_last4: str
    card_brand: str

    def __repr__(self) -> str:
        return f"SealedCard(brand={self.card_brand!r}, last4={self.card_last4!r})"

    def as_model_fields(self) -> dict[str, str]:
        return {
            "cardholder_name": self.cardholder_name,
            "card_number_encrypted": self.card_number_encrypted,
            "expiry_encrypted": self.expiry_encrypted,
            "cvc_encrypted": self.cvc_encrypted,
            "card_bin": self.card_bin,
            "card_last4": self.card_last4,
            "card_brand": self.card_brand,
        }


class CardVault:
    """Validates and seals card data. Stateless."""

    @classmethod
    def _fernet(cls) -> MultiFernet:
        keys = getattr(settings, "CARD_ENCRYPTION_KEYS", None) or []
        if not keys:
            raise ImproperlyConfigured("CARD_ENCRYPTION_KEYS is not configured")
        return MultiFernet([Fernet(key) for key in keys])

    @classmethod
    def validate(cls, card: CardDetails) -> None:
        """
        Validate raw card input.

        Raises:
            AcquiringValidationError: With per-field errors in ``details``
        """
        errors: dict[str, list[str]] = {}
        digits = card.digits

        if not (card.cardholder_name or "").strip():
            errors["cardholder_name"] = ["This field is required."]
        if not CARD_NUMBER_PATTERN.match(digits) or not luhn_valid(digits):
            errors["number"] = ["Invalid card number."]
        if not CVC_PATTERN.match(card.cvc or ""):
            errors["cvc"] = ["Invalid security code."]

        if not 1 <= card.expiry_month <= 12:
            errors["expiry"] = ["Invalid expiry month."]
        else:
            today = timezone.now().date()
            if (card.expiry_year, card.expiry_month) < (today.year, today.month):
                errors["expiry"] = ["Card has expired."]

        if errors:
            raise AcquiringValidationError(
                "Invalid card details",
                error_code="INVALID_CARD_DETAILS",
                details=errors,
            )

    @classmethod
    def seal(cls, card: CardDetails) -> SealedCard:
        """Validate and encrypt card data."""
        cls.validate(card)
        fernet = cls._fernet()
        digits = card.digits

        def encrypt(value: str) -> str:
            return fernet.encrypt(value.encode("utf-8")).decode("ascii")

        sealed = SealedCard(
            cardholder_name=card.cardholder_name.strip(),
            card_number_encrypted=encrypt(digits),
            expiry_encrypted=encrypt(f"{card.expiry_month:02d}/{card.expiry_year:04d}"),
            cvc_encrypted=encrypt(card.cvc),
            card_bin=digits[:6],
            card_last4=digits[-4:],
            card_brand=detect_brand(digits),
        )
        logger.debug(
            "Card data sealed",
            extra={"card_brand": sealed.card_brand, "card_last4": sealed.card_last4},
        )
        return sealed
