"""
Acquiring admin configuration.

The admin is a read-only window onto acquiring state. Every status change
goes through the service layer so that locking, timeline events and
balance refreshes happen; nothing here edits status fields directly.
"""

from django.contrib import admin

from acquiring.models import (
    Balance,
    CardSubmission,
    Settlement,
    Transaction,
    TransactionEvent,
    Withdrawal,
)

__all__ = [
    "BalanceAdmin",
    "CardSubmissionAdmin",
    "SettlementAdmin",
    "TransactionAdmin",
    "WithdrawalAdmin",
]


def _format_cents(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


class ReadOnlyAdminMixin:
    """Disable add and delete; records are created by services only."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class TransactionEventInline(admin.TabularInline):
    """Timeline of a transaction, oldest first."""

    model = TransactionEvent
    extra = 0
    can_delete = False
    ordering = ["id"]
    fields = ["id", "event", "from_status", "to_status", "actor", "notes", "created_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Transaction)
class TransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    Review decisions, wire confirmations and refunds are operator actions
    on TransactionService, not admin edits.
    """

    list_display = [
        "reference",
        "merchant_id",
        "amount_display",
        "method",
        "status",
        "risk_score",
        "review_status",
        "created_at",
    ]
    list_filter = ["status", "method", "review_status", "currency", "created_at"]
    search_fields = ["id", "reference", "merchant_id", "wire_reference"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [TransactionEventInline]
    readonly_fields = [
        "id",
        "reference",
        "payment_request_id",
        "merchant_id",
        "amount_cents",
        "currency",
        "method",
        "status",
        "risk_score",
        "risk_flags",
        "scored_at",
        "review_status",
        "reviewed_at",
        "reviewed_by",
        "customer_info",
        "risk_signals",
        "merchant_confirmation",
        "wire_sender_name",
        "wire_sender_bank",
        "wire_reference",
        "proof_reference",
        "funds_received_at",
        "submitted_at",
        "verification_completed_at",
        "processed_at",
        "settled_at",
        "failed_at",
        "failure_reason",
        "refund_amount_cents",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (None, {"fields": ("id", "reference", "merchant_id", "status")}),
        ("Amount", {"fields": ("amount_cents", "currency", "refund_amount_cents")}),
        (
            "Risk",
            {
                "fields": (
                    "risk_score",
                    "risk_flags",
                    "scored_at",
                    "review_status",
                    "reviewed_at",
                    "reviewed_by",
                ),
            },
        ),
        (
            "Bank Wire",
            {
                "fields": (
                    "merchant_confirmation",
                    "wire_sender_name",
                    "wire_sender_bank",
                    "wire_reference",
                    "proof_reference",
                    "funds_received_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "submitted_at",
                    "verification_completed_at",
                    "processed_at",
                    "settled_at",
                    "failed_at",
                    "failure_reason",
                    "refunded_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Customer",
            {
                "fields": ("customer_info", "risk_signals", "payment_request_id"),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at")}),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Transaction) -> str:
        return _format_cents(obj.amount_cents, obj.currency)


@admin.register(CardSubmission)
class CardSubmissionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for CardSubmission.

    Encrypted card fields are excluded; only the BIN and brand are shown.
    """

    list_display = [
        "id",
        "transaction",
        "card_brand",
        "card_bin",
        "status",
        "verification_type",
        "failed_attempts",
        "created_at",
    ]
    list_filter = ["status", "verification_type", "card_brand"]
    search_fields = ["id", "transaction__reference", "card_bin"]
    ordering = ["-created_at"]
    exclude = [
        "card_number_encrypted",
        "expiry_encrypted",
        "cvc_encrypted",
        "verification_code",
        "customer_code",
    ]
    readonly_fields = [
        "id",
        "transaction",
        "cardholder_name",
        "card_bin",
        "card_last4",
        "card_brand",
        "status",
        "verification_type",
        "verification_approved",
        "code_consumed_at",
        "failed_attempts",
        "challenge_issued_at",
        "verification_completed_at",
        "reviewed_at",
        "sms_resend_requested_at",
        "sms_resend_count",
        "ip_address",
        "user_agent",
        "version",
        "created_at",
        "updated_at",
    ]


@admin.register(Withdrawal)
class WithdrawalAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Admin configuration for Withdrawal."""

    list_display = [
        "id",
        "merchant_id",
        "method",
        "amount_display",
        "fee_cents",
        "status",
        "asset",
        "created_at",
    ]
    list_filter = ["status", "method", "asset", "currency"]
    search_fields = ["id", "merchant_id", "tx_hash", "address", "iban", "bank_reference"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    readonly_fields = [
        "id",
        "merchant_id",
        "method",
        "idempotency_key",
        "amount_cents",
        "fee_cents",
        "net_amount_cents",
        "currency",
        "status",
        "asset",
        "network",
        "address",
        "tx_hash",
        "confirmations",
        "explorer_url",
        "iban",
        "account_number",
        "bank_name",
        "beneficiary_name",
        "swift_code",
        "bank_reference",
        "failure_reason",
        "completed_at",
        "failed_at",
        "reversed_at",
        "version",
        "created_at",
        "updated_at",
    ]

    @admin.display(description="Amount")
    def amount_display(self, obj: Withdrawal) -> str:
        return _format_cents(obj.amount_cents, obj.currency)


@admin.register(Balance)
class BalanceAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Cached balance snapshots; the reconciliation worker repairs drift."""

    list_display = [
        "merchant_id",
        "currency",
        "available_cents",
        "pending_cents",
        "last_reconciled_at",
        "updated_at",
    ]
    list_filter = ["currency"]
    search_fields = ["merchant_id"]
    readonly_fields = [
        "id",
        "merchant_id",
        "currency",
        "available_cents",
        "pending_cents",
        "last_reconciled_at",
        "version",
        "created_at",
        "updated_at",
    ]


@admin.register(Settlement)
class SettlementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["reference", "merchant_id", "amount_display", "created_by", "created_at"]
    list_filter = ["currency", "created_by"]
    search_fields = ["reference", "merchant_id"]
    ordering = ["-created_at"]
    readonly_fields = [
        "id",
        "reference",
        "merchant_id",
        "amount_cents",
        "currency",
        "transactions",
        "created_by",
        "created_at",
        "updated_at",
    ]

    @admin.display(description="Amount")
    def amount_display(self, obj: Settlement) -> str:
        return _format_cents(obj.amount_cents, obj.currency)
