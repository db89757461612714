import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models

import acquiring.models.balance
import acquiring.models.transaction

TRANSACTION_STATUS_CHOICES = [
    ("pending_submission", "Pending Submission"),
    ("submitted", "Submitted"),
    ("awaiting_3d_sms", "Awaiting 3-D SMS"),
    ("awaiting_3d_push", "Awaiting 3-D Push"),
    ("verification_completed", "Verification Completed"),
    ("processed_awaiting_exchange", "Processed (Awaiting Exchange)"),
    ("processed", "Processed"),
    ("rejected", "Rejected"),
    ("insufficient_funds", "Insufficient Funds"),
    ("failed", "Failed"),
]

CARD_SUBMISSION_STATUS_CHOICES = [
    ("submitted", "Submitted"),
    ("awaiting_3d_sms", "Awaiting 3-D SMS"),
    ("awaiting_3d_push", "Awaiting 3-D Push"),
    ("verification_completed", "Verification Completed"),
    ("processed", "Processed"),
    ("rejected", "Rejected"),
    ("insufficient_funds", "Insufficient Funds"),
    ("failed", "Failed"),
]

WITHDRAWAL_STATUS_CHOICES = [
    ("initiated", "Initiated"),
    ("on_chain", "On Chain"),
    ("paid", "Paid"),
    ("failed", "Failed"),
    ("reversed", "Reversed"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Balance",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("merchant_id", models.UUIDField(db_index=True)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("available_cents", models.BigIntegerField(default=0)),
                ("pending_cents", models.BigIntegerField(default=0)),
                ("last_reconciled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
            ],
            options={
                "verbose_name": "Balance",
                "verbose_name_plural": "Balances",
                "ordering": ["merchant_id", "currency"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("merchant_id", "currency"),
                        name="balance_unique_merchant_currency",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("available_cents__gte", 0)),
                        name="balance_available_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("pending_cents__gte", 0)),
                        name="balance_pending_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "reference",
                    models.CharField(
                        default=acquiring.models.transaction.generate_transaction_reference,
                        editable=False,
                        help_text="Human-readable reference (TXN-XXXXXXXXXXXX)",
                        max_length=20,
                        unique=True,
                    ),
                ),
                (
                    "payment_request_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Payment request (payment link) this transaction was created from",
                        null=True,
                    ),
                ),
                (
                    "merchant_id",
                    models.UUIDField(db_index=True, help_text="Merchant receiving the funds"),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Payment amount in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "method",
                    models.CharField(
                        choices=[("card", "Card"), ("bank_wire", "Bank Wire")],
                        help_text="Payment method (card or bank wire)",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=TRANSACTION_STATUS_CHOICES,
                        db_index=True,
                        default="pending_submission",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "risk_score",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        help_text="Risk score 0-100 assigned once on submission",
                        null=True,
                    ),
                ),
                (
                    "risk_flags",
                    models.JSONField(
                        blank=True, default=list, help_text="Risk flags raised on submission"
                    ),
                ),
                (
                    "scored_at",
                    models.DateTimeField(
                        blank=True, help_text="When the risk score was attached", null=True
                    ),
                ),
                (
                    "review_status",
                    models.CharField(
                        choices=[
                            ("not_required", "Not Required"),
                            ("pending", "Pending Review"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="not_required",
                        help_text="Manual review gate",
                        max_length=20,
                    ),
                ),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_by", models.CharField(blank=True, default="", max_length=255)),
                (
                    "customer_info",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Customer name, email, phone and country",
                    ),
                ),
                (
                    "risk_signals",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="IP address, device fingerprint and user agent at submission",
                    ),
                ),
                (
                    "merchant_confirmation",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("not_received", "Not Received"),
                        ],
                        default="pending",
                        help_text="Merchant confirmation of bank wire receipt",
                        max_length=20,
                    ),
                ),
                ("wire_sender_name", models.CharField(blank=True, default="", max_length=255)),
                ("wire_sender_bank", models.CharField(blank=True, default="", max_length=255)),
                ("wire_reference", models.CharField(blank=True, default="", max_length=255)),
                (
                    "proof_reference",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Opaque reference to an uploaded proof of receipt",
                        max_length=500,
                    ),
                ),
                ("funds_received_at", models.DateTimeField(blank=True, null=True)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("verification_completed_at", models.DateTimeField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "settled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When funds moved from pending to available",
                        null=True,
                    ),
                ),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, null=True)),
                (
                    "refund_amount_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Refunded amount (reduces net)"
                    ),
                ),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["merchant_id", "currency", "status"],
                        name="acquiring_t_merchan_6f1c2a_idx",
                    ),
                    models.Index(
                        fields=["status", "updated_at"],
                        name="acquiring_t_status_9b04d1_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("refund_amount_cents__lte", models.F("amount_cents"))
                        ),
                        name="transaction_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CardSubmission",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("cardholder_name", models.CharField(max_length=255)),
                ("card_number_encrypted", models.TextField(editable=False)),
                ("expiry_encrypted", models.TextField(editable=False)),
                ("cvc_encrypted", models.TextField(editable=False)),
                ("card_bin", models.CharField(blank=True, default="", max_length=8)),
                ("card_last4", models.CharField(blank=True, default="", max_length=4)),
                ("card_brand", models.CharField(blank=True, default="", max_length=20)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=CARD_SUBMISSION_STATUS_CHOICES,
                        db_index=True,
                        default="submitted",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "verification_type",
                    models.CharField(
                        blank=True,
                        choices=[("sms", "SMS"), ("push", "Push")],
                        max_length=10,
                        null=True,
                    ),
                ),
                (
                    "verification_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Active code issued by an operator (compared case-sensitively)",
                        max_length=32,
                    ),
                ),
                (
                    "customer_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Code entered by the customer awaiting operator review",
                        max_length=32,
                    ),
                ),
                ("verification_approved", models.BooleanField(blank=True, null=True)),
                ("code_consumed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_attempts", models.PositiveSmallIntegerField(default=0)),
                ("challenge_issued_at", models.DateTimeField(blank=True, null=True)),
                ("verification_completed_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("sms_resend_requested_at", models.DateTimeField(blank=True, null=True)),
                ("sms_resend_count", models.PositiveSmallIntegerField(default=0)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True, default="")),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "transaction",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="card_submission",
                        to="acquiring.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Card Submission",
                "verbose_name_plural": "Card Submissions",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="TransactionEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                ("event", models.CharField(db_index=True, max_length=64)),
                (
                    "actor",
                    models.CharField(
                        help_text="Who caused the event (customer, system, operator:<id>)",
                        max_length=255,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("from_status", models.CharField(blank=True, default="", max_length=40)),
                ("to_status", models.CharField(blank=True, default="", max_length=40)),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="transaction id + target status for applied transitions",
                        max_length=100,
                        null=True,
                        unique=True,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="acquiring.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction Event",
                "verbose_name_plural": "Transaction Events",
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["transaction", "id"],
                        name="acquiring_t_transac_3e7a90_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "reference",
                    models.CharField(
                        default=acquiring.models.balance.generate_settlement_reference,
                        editable=False,
                        max_length=20,
                        unique=True,
                    ),
                ),
                ("merchant_id", models.UUIDField(db_index=True)),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("created_by", models.CharField(default="system", max_length=255)),
                (
                    "transactions",
                    models.ManyToManyField(
                        related_name="settlements",
                        to="acquiring.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Settlement",
                "verbose_name_plural": "Settlements",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Withdrawal",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("merchant_id", models.UUIDField(db_index=True)),
                (
                    "method",
                    models.CharField(
                        choices=[("bank_transfer", "Bank Transfer"), ("crypto", "Crypto")],
                        max_length=20,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Client-supplied key; a retried request returns the same withdrawal",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Gross amount reserved against available balance"
                    ),
                ),
                ("fee_cents", models.PositiveBigIntegerField(default=0)),
                (
                    "net_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Amount sent to the destination (amount - fee)"
                    ),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=WITHDRAWAL_STATUS_CHOICES,
                        db_index=True,
                        default="initiated",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "asset",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("usdt_trc20", "USDT (TRC20)"),
                            ("usdt_erc20", "USDT (ERC20)"),
                            ("btc", "Bitcoin"),
                            ("eth", "Ethereum"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("network", models.CharField(blank=True, default="", max_length=20)),
                ("address", models.CharField(blank=True, default="", max_length=128)),
                (
                    "tx_hash",
                    models.CharField(blank=True, db_index=True, default="", max_length=128),
                ),
                ("confirmations", models.PositiveIntegerField(default=0)),
                ("explorer_url", models.URLField(blank=True, default="", max_length=500)),
                ("iban", models.CharField(blank=True, default="", max_length=34)),
                ("account_number", models.CharField(blank=True, default="", max_length=64)),
                ("bank_name", models.CharField(blank=True, default="", max_length=255)),
                ("beneficiary_name", models.CharField(blank=True, default="", max_length=255)),
                ("swift_code", models.CharField(blank=True, default="", max_length=11)),
                ("bank_reference", models.CharField(blank=True, default="", max_length=255)),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("reversed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
            ],
            options={
                "verbose_name": "Withdrawal",
                "verbose_name_plural": "Withdrawals",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["merchant_id", "currency", "status"],
                        name="acquiring_w_merchan_c82e5b_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="withdrawal_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "net_amount_cents",
                                models.F("amount_cents") - models.F("fee_cents"),
                            )
                        ),
                        name="withdrawal_net_equals_amount_minus_fee",
                    ),
                ],
            },
        ),
    ]
