"""
Acquiring app: customer payments in, merchant funds out.

This app handles:
- Transaction submission, risk scoring and operator review
- Card step-up verification (SMS codes, push approvals)
- Bank wire confirmation and refunds
- Pending/available balances and settlement
- Merchant withdrawals by bank transfer or crypto

Usage:
    from acquiring.services import TransactionService, SubmitTransactionParams

    txn = TransactionService.submit_transaction(
        SubmitTransactionParams(
            merchant_id=merchant_id,
            amount_cents=10_000,
            method="card",
            card=card,
        )
    )
"""
