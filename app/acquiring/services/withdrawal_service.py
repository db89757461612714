"""
Withdrawal service for moving merchant funds off the platform.

Creating a withdrawal reserves its gross amount against available balance.
The balance check and the reservation happen under the merchant's Balance
row lock, so concurrent withdrawals can never overdraw:

    balance $50, two concurrent $40 withdrawals
        -> exactly one succeeds, the other raises InsufficientBalanceError

FAILED and REVERSED release the reservation. PAID is permanent.

Fees:
    ACQUIRING_WITHDRAWAL_FEES = {
        "crypto": {"flat_cents": 1500, "basis_points": 0},
        "bank_transfer": {"flat_cents": 0, "basis_points": 0},
    }
    ACQUIRING_WITHDRAWAL_ASSET_FEES = {"btc": {"flat_cents": 2500, "basis_points": 0}}

    fee = flat_cents + ceil(amount_cents * basis_points / 10000)
    net_amount_cents = amount_cents - fee
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field

from django.conf import settings
from django.db import IntegrityError

from django_fsm import TransitionNotAllowed

from core.services import BaseService

from acquiring.exceptions import (
    AcquiringNotFoundError,
    AcquiringValidationError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
)
from acquiring.ledger import BalanceService, normalize_currency
from acquiring.locks import lock_for_update
from acquiring.models import Withdrawal
from acquiring.signals import send_on_commit, withdrawal_status_changed
from acquiring.state_machines import CryptoAsset, WithdrawalMethod, WithdrawalStatus

ADDRESS_PATTERNS = {
    CryptoAsset.BTC: re.compile(r"^(bc1[a-z0-9]{25,59}|[13][a-km-zA-HJ-NP-Z1-9]{25,34})$"),
    CryptoAsset.ETH: re.compile(r"^0x[a-fA-F0-9]{40}$"),
    CryptoAsset.USDT_ERC20: re.compile(r"^0x[a-fA-F0-9]{40}$"),
    CryptoAsset.USDT_TRC20: re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$"),
}

ASSET_NETWORKS = {
    CryptoAsset.BTC: "bitcoin",
    CryptoAsset.ETH: "ethereum",
    CryptoAsset.USDT_ERC20: "ethereum",
    CryptoAsset.USDT_TRC20: "tron",
}

IBAN_PATTERN = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{11,30}$")

DEFAULT_FEES = {
    WithdrawalMethod.CRYPTO: {"flat_cents": 1500, "basis_points": 0},
    WithdrawalMethod.BANK_TRANSFER: {"flat_cents": 0, "basis_points": 0},
}

# Target status -> FSM transition name
TRANSITIONS = {
    WithdrawalStatus.ON_CHAIN: "broadcast",
    WithdrawalStatus.PAID: "mark_paid",
    WithdrawalStatus.FAILED: "fail",
    WithdrawalStatus.REVERSED: "reverse",
}


@dataclass
class CreateWithdrawalParams:
    """
    Parameters for a merchant withdrawal.

    ``destination`` holds ``asset`` and ``address`` for crypto, and
    ``iban`` or ``account_number`` plus ``beneficiary_name`` for bank
    transfers (``bank_name`` and ``swift_code`` optional).
    """

    merchant_id: uuid.UUID
    amount_cents: int
    method: str
    destination: dict = field(default_factory=dict)
    currency: str = "usd"
    idempotency_key: str | None = None
    actor: str = "merchant"

    def __post_init__(self) -> None:
        """Validate params after initialization."""
        errors: dict[str, list[str]] = {}
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            errors["amount_cents"] = ["Must be an integer number of minor units."]
        elif self.amount_cents <= 0:
            errors["amount_cents"] = ["Must be positive."]
        try:
            self.currency = normalize_currency(self.currency)
        except ValueError:
            errors["currency"] = ["Invalid ISO 4217 currency code."]
        if self.method not in WithdrawalMethod.values:
            errors["method"] = [f"Must be one of {', '.join(WithdrawalMethod.values)}."]
        else:
            errors.update(validate_destination(self.method, self.destination or {}))
        if errors:
            raise AcquiringValidationError("Invalid withdrawal request", details=errors)


def validate_destination(method: str, destination: dict) -> dict[str, list[str]]:
    """Return field errors for a withdrawal destination (empty when valid)."""
    errors: dict[str, list[str]] = {}

    if method == WithdrawalMethod.CRYPTO:
        asset = destination.get("asset", "")
        address = destination.get("address", "")
        if asset not in ADDRESS_PATTERNS:
            errors["asset"] = [f"Must be one of {', '.join(CryptoAsset.values)}."]
        elif not ADDRESS_PATTERNS[asset].match(address or ""):
            errors["address"] = [f"Not a valid {CryptoAsset(asset).label} address."]
        return errors

    iban = (destination.get("iban") or "").replace(" ", "").upper()
    account_number = destination.get("account_number") or ""
    if not iban and not account_number:
        errors["iban"] = ["An IBAN or account number is required."]
    elif iban and not IBAN_PATTERN.match(iban):
        errors["iban"] = ["Not a valid IBAN."]
    if not (destination.get("beneficiary_name") or "").strip():
        errors["beneficiary_name"] = ["This field is required."]
    return errors


def calculate_fee(method: str, amount_cents: int, asset: str = "") -> int:
    """Flat fee plus basis points, rounded up to the next minor unit."""
    fees = getattr(settings, "ACQUIRING_WITHDRAWAL_FEES", None) or {}
    schedule = fees.get(method) or DEFAULT_FEES[method]
    if asset:
        asset_fees = getattr(settings, "ACQUIRING_WITHDRAWAL_ASSET_FEES", None) or {}
        schedule = asset_fees.get(asset, schedule)

    flat = int(schedule.get("flat_cents", 0))
    bps = int(schedule.get("basis_points", 0))
    return flat + -(-amount_cents * bps // 10000)


class WithdrawalService(BaseService):
    """Withdrawal creation and status tracking."""

    @classmethod
    def get_withdrawal(cls, withdrawal_id: uuid.UUID) -> Withdrawal:
        withdrawal = Withdrawal.objects.filter(pk=withdrawal_id).first()
        if withdrawal is None:
            raise AcquiringNotFoundError(
                f"Withdrawal {withdrawal_id} not found",
                error_code="WITHDRAWAL_NOT_FOUND",
                details={"pk": str(withdrawal_id)},
            )
        return withdrawal

    @classmethod
    def create_withdrawal(cls, params: CreateWithdrawalParams) -> Withdrawal:
        """
        Reserve funds and create a withdrawal in INITIATED.

        A request repeating one of the merchant's ``idempotency_key``s returns
        the withdrawal created by the first request. Keys are scoped per
        merchant; reusing a key for a different amount, method or currency is
        rejected.

        Raises:
            AcquiringValidationError: Invalid params, or fee not below amount
            AcquiringValidationError: Idempotency key reused for another request
            InsufficientBalanceError: Amount exceeds available balance
        """
        destination = params.destination or {}
        asset = destination.get("asset", "") if params.method == WithdrawalMethod.CRYPTO else ""
        fee_cents = calculate_fee(params.method, params.amount_cents, asset)
        if fee_cents >= params.amount_cents:
            raise AcquiringValidationError(
                "Withdrawal amount does not cover the fee",
                details={"amount_cents": [f"Must be greater than the {fee_cents} fee."]},
            )

        existing = cls._find_replay(params)
        if existing is not None:
            return existing

        try:
            with cls.atomic():
                BalanceService.lock(params.merchant_id, params.currency)
                available = BalanceService.compute(params.merchant_id, params.currency).available

                if params.amount_cents > available.cents:
                    raise InsufficientBalanceError(
                        merchant_id=params.merchant_id,
                        required_cents=params.amount_cents,
                        available_cents=available.cents,
                        currency=params.currency,
                    )

                withdrawal = Withdrawal.objects.create(
                    merchant_id=params.merchant_id,
                    method=params.method,
                    idempotency_key=params.idempotency_key or None,
                    amount_cents=params.amount_cents,
                    fee_cents=fee_cents,
                    net_amount_cents=params.amount_cents - fee_cents,
                    currency=params.currency,
                    **cls._destination_fields(params.method, destination),
                )
                cls._refresh_balance(withdrawal)
                send_on_commit(
                    withdrawal_status_changed,
                    sender=Withdrawal,
                    withdrawal_id=withdrawal.id,
                    merchant_id=withdrawal.merchant_id,
                    from_status="",
                    to_status=withdrawal.status,
                )
        except IntegrityError:
            # Lost a race on the idempotency key
            existing = cls._find_replay(params)
            if existing is not None:
                return existing
            raise

        cls.get_logger().info(
            "Withdrawal created",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "merchant_id": str(withdrawal.merchant_id),
                "method": withdrawal.method,
                "amount_cents": withdrawal.amount_cents,
                "fee_cents": withdrawal.fee_cents,
                "actor": params.actor,
            },
        )
        return withdrawal

    @classmethod
    def update_status(
        cls,
        withdrawal_id: uuid.UUID,
        status: str,
        actor: str,
        failure_reason: str | None = None,
        tx_hash: str | None = None,
        bank_reference: str | None = None,
        confirmations: int | None = None,
        expected_version: int | None = None,
    ) -> Withdrawal:
        """
        Move a withdrawal along INITIATED -> ON_CHAIN -> PAID, or release it.

        Replaying the current status is a no-op.

        Raises:
            AcquiringValidationError: Missing tx hash or failure reason
            InvalidStateTransitionError: Transition not allowed
            StaleRecordError: ``expected_version`` no longer matches
        """
        if status not in TRANSITIONS:
            raise AcquiringValidationError(
                f"Unknown withdrawal status: {status}",
                details={"status": [f"Must be one of {', '.join(TRANSITIONS)}."]},
            )
        if status == WithdrawalStatus.ON_CHAIN and not tx_hash:
            raise AcquiringValidationError(
                "A transaction hash is required to mark a withdrawal on chain",
                details={"tx_hash": ["This field is required."]},
            )
        if status in (WithdrawalStatus.FAILED, WithdrawalStatus.REVERSED) and not failure_reason:
            raise AcquiringValidationError(
                "A reason is required to fail or reverse a withdrawal",
                details={"failure_reason": ["This field is required."]},
            )

        ref = Withdrawal.objects.filter(pk=withdrawal_id).values("merchant_id", "currency").first()
        if ref is None:
            raise AcquiringNotFoundError(
                f"Withdrawal {withdrawal_id} not found",
                error_code="WITHDRAWAL_NOT_FOUND",
                details={"pk": str(withdrawal_id)},
            )

        with cls.atomic():
            balance = BalanceService.lock(ref["merchant_id"], ref["currency"])
            withdrawal = lock_for_update(Withdrawal, withdrawal_id, expected_version)
            if withdrawal.status == status:
                return withdrawal

            from_status = withdrawal.status
            kwargs: dict = {}
            if status == WithdrawalStatus.ON_CHAIN:
                kwargs["tx_hash"] = tx_hash
            elif status in (WithdrawalStatus.FAILED, WithdrawalStatus.REVERSED):
                kwargs["reason"] = failure_reason

            transition = TRANSITIONS[status]
            try:
                getattr(withdrawal, transition)(**kwargs)
            except TransitionNotAllowed as e:
                raise InvalidStateTransitionError(
                    f"Cannot move withdrawal from '{from_status}' to '{status}'",
                    details={
                        "withdrawal_id": str(withdrawal.id),
                        "current_state": from_status,
                        "target_state": status,
                    },
                ) from e

            if bank_reference:
                withdrawal.bank_reference = bank_reference
            if confirmations is not None:
                withdrawal.confirmations = max(withdrawal.confirmations, confirmations)
            withdrawal.save()
            BalanceService.refresh(balance)

            send_on_commit(
                withdrawal_status_changed,
                sender=Withdrawal,
                withdrawal_id=withdrawal.id,
                merchant_id=withdrawal.merchant_id,
                from_status=from_status,
                to_status=withdrawal.status,
            )

        cls.get_logger().info(
            "Withdrawal status updated",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "from_status": from_status,
                "to_status": withdrawal.status,
                "actor": actor,
            },
        )
        return withdrawal

    @classmethod
    def record_chain_confirmations(
        cls,
        withdrawal_id: uuid.UUID,
        confirmations: int,
        tx_hash: str | None = None,
    ) -> Withdrawal:
        """
        Record advisory confirmation counts from a chain watcher.

        Never changes status. Counts only go up.
        """
        with cls.atomic():
            withdrawal = lock_for_update(Withdrawal, withdrawal_id)
            if not withdrawal.is_crypto:
                raise AcquiringValidationError(
                    "Only crypto withdrawals have chain confirmations",
                    details={"withdrawal_id": str(withdrawal.id), "method": withdrawal.method},
                )
            changed = False
            if tx_hash and not withdrawal.tx_hash:
                withdrawal.tx_hash = tx_hash
                withdrawal.explorer_url = withdrawal.build_explorer_url()
                changed = True
            if confirmations > withdrawal.confirmations:
                withdrawal.confirmations = confirmations
                changed = True
            if changed:
                withdrawal.save()
        return withdrawal

    @classmethod
    def _find_replay(cls, params: CreateWithdrawalParams) -> Withdrawal | None:
        if not params.idempotency_key:
            return None
        existing = Withdrawal.objects.filter(
            merchant_id=params.merchant_id,
            idempotency_key=params.idempotency_key,
        ).first()
        if existing is None:
            return None
        if (existing.amount_cents, existing.method, existing.currency) != (
            params.amount_cents,
            params.method,
            params.currency,
        ):
            raise AcquiringValidationError(
                "Idempotency key already used for a different withdrawal",
                error_code="IDEMPOTENCY_KEY_REUSED",
                details={
                    "idempotency_key": params.idempotency_key,
                    "withdrawal_id": str(existing.id),
                },
            )
        return existing

    @classmethod
    def _destination_fields(cls, method: str, destination: dict) -> dict:
        if method == WithdrawalMethod.CRYPTO:
            asset = destination["asset"]
            return {
                "asset": asset,
                "network": ASSET_NETWORKS[asset],
                "address": destination["address"],
            }
        return {
            "iban": (destination.get("iban") or "").replace(" ", "").upper(),
            "account_number": destination.get("account_number") or "",
            "bank_name": destination.get("bank_name") or "",
            "beneficiary_name": destination.get("beneficiary_name") or "",
            "swift_code": (destination.get("swift_code") or "").upper(),
        }

    @classmethod
    def _refresh_balance(cls, withdrawal: Withdrawal) -> None:
        balance = BalanceService.lock(withdrawal.merchant_id, withdrawal.currency)
        BalanceService.refresh(balance)
