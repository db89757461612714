"""
Tests for the balance ledger: Money, the fold and reconciliation.
"""

import random

import pytest
from django.db import transaction

from acquiring.exceptions import InsufficientBalanceError, InvalidStateTransitionError
from acquiring.ledger import BalanceService, Money, normalize_currency
from acquiring.models import Balance, CardSubmission, Transaction, TransactionEvent, Withdrawal
from acquiring.services import (
    CreateWithdrawalParams,
    SettlementService,
    TransactionService,
    VerificationService,
    WithdrawalService,
)
from acquiring.state_machines import (
    WITHDRAWAL_RELEASED_STATES,
    TransactionStatus,
    WithdrawalMethod,
    WithdrawalStatus,
)
from acquiring.tests.factories import BalanceFactory, TransactionFactory, WithdrawalFactory

IBAN = "DE89370400440532013000"


class TestMoney:
    @pytest.mark.parametrize(
        "cents,text",
        [(5000, "$50.00 USD"), (5, "$0.05 USD"), (-1999, "-$19.99 USD")],
    )
    def test_str(self, cents, text):
        assert str(Money(cents=cents)) == text

    def test_arithmetic(self):
        assert Money(10000) - Money(1500) == Money(8500)
        assert Money(100) + Money(1) == Money(101)
        assert Money(1) < Money(2)

    def test_currency_mismatch(self):
        with pytest.raises(ValueError):
            Money(100, "usd") + Money(100, "eur")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            Money(cents=10.5)

    @pytest.mark.parametrize("code", ["", "us", "usdt", "12a"])
    def test_invalid_currency(self, code):
        with pytest.raises(ValueError):
            normalize_currency(code)

    def test_currency_normalized(self):
        assert Money(100, " EUR ").currency == "eur"


class TestBalanceFold:
    def test_empty_merchant(self, db, merchant_id):
        snapshot = BalanceService.get_balance(merchant_id)

        assert snapshot.available == Money(0)
        assert snapshot.pending == Money(0)

    def test_fold(self, db, merchant_id):
        TransactionFactory(merchant_id=merchant_id, amount_cents=10000, awaiting_exchange=True)
        TransactionFactory(
            merchant_id=merchant_id,
            amount_cents=20000,
            refund_amount_cents=5000,
            processed=True,
        )
        TransactionFactory(merchant_id=merchant_id, amount_cents=7000, status=TransactionStatus.FAILED)
        TransactionFactory(merchant_id=merchant_id, amount_cents=9000, status=TransactionStatus.SUBMITTED)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=3000)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=4000, status=WithdrawalStatus.PAID)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=2000, status=WithdrawalStatus.FAILED)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=1000, status=WithdrawalStatus.REVERSED)

        snapshot = BalanceService.compute(merchant_id, "usd")

        # 15000 settled net - 3000 initiated - 4000 paid
        assert snapshot.available.cents == 8000
        assert snapshot.pending.cents == 10000
        assert snapshot.total.cents == 18000

    def test_currencies_are_separate(self, db, merchant_id):
        TransactionFactory(merchant_id=merchant_id, amount_cents=10000, processed=True)
        TransactionFactory(merchant_id=merchant_id, amount_cents=500, currency="eur", processed=True)

        assert BalanceService.get_balance(merchant_id, "usd").available.cents == 10000
        assert BalanceService.get_balance(merchant_id, "EUR").available.cents == 500

    def test_other_merchants_ignored(self, db, merchant_id):
        TransactionFactory(amount_cents=10000, processed=True)

        assert BalanceService.get_balance(merchant_id).available.cents == 0

    def test_refresh_writes_cache(self, db, merchant_id):
        TransactionFactory(merchant_id=merchant_id, amount_cents=10000, processed=True)

        with transaction.atomic():
            balance = BalanceService.lock(merchant_id, "usd")
            BalanceService.refresh(balance)

        row = Balance.objects.get(merchant_id=merchant_id, currency="usd")
        assert row.available_cents == 10000
        assert row.version == 2

    def test_lock_creates_single_row(self, db, merchant_id):
        with transaction.atomic():
            BalanceService.lock(merchant_id, "USD")
            BalanceService.lock(merchant_id, "usd")

        assert Balance.objects.filter(merchant_id=merchant_id).count() == 1


class TestReconcile:
    def test_matching_cache(self, db, merchant_id):
        TransactionFactory(merchant_id=merchant_id, amount_cents=10000, processed=True)
        BalanceFactory(merchant_id=merchant_id, available_cents=10000)

        result = BalanceService.reconcile(merchant_id, "usd")

        assert result.success
        assert result.data.matched
        assert result.data.repaired is False
        assert Balance.objects.get(merchant_id=merchant_id).last_reconciled_at is not None

    def test_drift_is_repaired(self, db, merchant_id):
        TransactionFactory(merchant_id=merchant_id, amount_cents=10000, processed=True)
        TransactionFactory(merchant_id=merchant_id, amount_cents=2500, awaiting_exchange=True)
        BalanceFactory(merchant_id=merchant_id, available_cents=1, pending_cents=0)

        result = BalanceService.reconcile(merchant_id, "usd")

        assert result.success
        assert result.data.repaired is True
        assert result.data.cached_available_cents == 1
        row = Balance.objects.get(merchant_id=merchant_id)
        assert row.available_cents == 10000
        assert row.pending_cents == 2500

    def test_negative_fold_is_reported_not_written(self, db, merchant_id):
        BalanceFactory(merchant_id=merchant_id, available_cents=0)
        WithdrawalFactory(merchant_id=merchant_id, amount_cents=4000)

        result = BalanceService.reconcile(merchant_id, "usd")

        assert not result.success
        assert result.error_code == "NEGATIVE_BALANCE"
        row = Balance.objects.get(merchant_id=merchant_id)
        assert row.available_cents == 0
        assert row.last_reconciled_at is None


# =============================================================================
# Replay
# =============================================================================

SETTLEMENT_FAILURES = {
    TransactionStatus.REJECTED,
    TransactionStatus.INSUFFICIENT_FUNDS,
    TransactionStatus.FAILED,
}


def replay(merchant_id):
    """Running (available, pending) rebuilt from the timeline and withdrawals."""
    amounts = dict(
        Transaction.objects.filter(merchant_id=merchant_id).values_list("id", "amount_cents")
    )
    available = pending = 0
    events = TransactionEvent.objects.filter(transaction_id__in=amounts).order_by("id")
    for event in events:
        amount = amounts[event.transaction_id]
        if event.event == "refunded":
            available -= event.metadata["amount_cents"]
            continue
        if not event.from_status or event.from_status == event.to_status:
            # Not a status change
            continue
        if event.to_status == TransactionStatus.PROCESSED_AWAITING_EXCHANGE:
            pending += amount
        elif event.from_status == TransactionStatus.PROCESSED_AWAITING_EXCHANGE:
            pending -= amount
            if event.to_status == TransactionStatus.PROCESSED:
                available += amount
            else:
                assert event.to_status in SETTLEMENT_FAILURES

    for withdrawal in Withdrawal.objects.filter(merchant_id=merchant_id):
        if withdrawal.status not in WITHDRAWAL_RELEASED_STATES:
            available -= withdrawal.amount_cents
    return available, pending


class TestReplayMatchesFold:
    """Random service histories: replaying them gives the folded balance."""

    REFUSALS = (InsufficientBalanceError, InvalidStateTransitionError)

    @pytest.mark.parametrize("seed", range(8))
    def test_replay_equals_fold(self, seed, merchant_id, submit_card_payment, submit_bank_wire):
        rng = random.Random(seed)

        def in_status(status):
            return list(Transaction.objects.filter(merchant_id=merchant_id, status=status))

        for _ in range(14):
            operation = rng.choice(["card", "wire", "settle", "refund", "fail", "withdraw", "release"])
            amount = rng.randrange(20, 200) * 100
            try:
                if operation == "card":
                    txn = submit_card_payment(amount_cents=amount)
                    submission = CardSubmission.objects.get(transaction=txn)
                    VerificationService.assign_code(submission.id, "482913", actor="operator:1")
                    VerificationService.submit_code(submission.id, "482913")
                elif operation == "wire":
                    txn = submit_bank_wire(amount_cents=amount)
                    TransactionService.confirm_bank_wire(txn.id, "success", actor="merchant")
                elif operation == "settle" and in_status(TransactionStatus.PROCESSED_AWAITING_EXCHANGE):
                    txn = rng.choice(in_status(TransactionStatus.PROCESSED_AWAITING_EXCHANGE))
                    SettlementService.confirm_receipt(txn.id, actor="operator:1")
                elif operation == "refund" and in_status(TransactionStatus.PROCESSED):
                    txn = rng.choice(in_status(TransactionStatus.PROCESSED))
                    refund = rng.randrange(1, txn.amount_cents // 100 + 1) * 100
                    TransactionService.record_refund(txn.id, refund, actor="operator:1")
                elif operation == "fail" and in_status(TransactionStatus.PROCESSED_AWAITING_EXCHANGE):
                    txn = rng.choice(in_status(TransactionStatus.PROCESSED_AWAITING_EXCHANGE))
                    TransactionService.fail_transaction(txn.id, reason="chargeback", actor="operator:1")
                elif operation == "withdraw":
                    WithdrawalService.create_withdrawal(
                        CreateWithdrawalParams(
                            merchant_id=merchant_id,
                            amount_cents=amount,
                            method=WithdrawalMethod.BANK_TRANSFER,
                            destination={"iban": IBAN, "beneficiary_name": "Acme GmbH"},
                        )
                    )
                elif operation == "release":
                    initiated = Withdrawal.objects.filter(
                        merchant_id=merchant_id, status=WithdrawalStatus.INITIATED
                    )
                    if initiated:
                        WithdrawalService.update_status(
                            rng.choice(list(initiated)).id,
                            rng.choice([WithdrawalStatus.FAILED, WithdrawalStatus.PAID]),
                            actor="operator:1",
                            failure_reason="bank returned the transfer",
                        )
            except self.REFUSALS:
                pass

        snapshot = BalanceService.compute(merchant_id, "usd")
        assert replay(merchant_id) == (snapshot.available.cents, snapshot.pending.cents)
        assert snapshot.available.cents >= 0

        result = BalanceService.reconcile(merchant_id, "usd")
        assert result.success
        row = Balance.objects.get(merchant_id=merchant_id)
        assert (row.available_cents, row.pending_cents) == replay(merchant_id)
