"""
Refund admin configuration.

Registers the refund ledger and the local payment records with the Django
admin as read-only audit views. Refunds are created, synced and cancelled
through the service layer only; the admin never changes ledger rows.
"""

from django.contrib import admin

from refunds.models import PaymentTransaction, RefundRecord
from refunds.money import format_major

__all__ = [
    "PaymentTransactionAdmin",
    "RefundRecordAdmin",
]


class ReadOnlyAdminMixin:
    """Admin mixin that disables add, change and delete."""

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for audit records."""
        return False


@admin.register(RefundRecord)
class RefundRecordAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for RefundRecord.

    Provides visibility into every refund attempt, including failures.
    """

    list_display = [
        "id",
        "gateway",
        "gateway_transaction_ref",
        "amount_display",
        "status",
        "gateway_status",
        "initiated_by",
        "initiated_at",
    ]
    list_filter = ["status", "gateway", "currency", "initiated_at"]
    search_fields = [
        "id",
        "gateway_transaction_ref",
        "requested_transaction_ref",
        "gateway_refund_ref",
        "customer_email",
        "customer_name",
        "initiated_by",
    ]
    readonly_fields = [
        "id",
        "gateway",
        "gateway_transaction_ref",
        "requested_transaction_ref",
        "transaction_ref_type",
        "gateway_refund_ref",
        "refund_amount_minor_units",
        "original_amount_minor_units",
        "settled_amount_minor_units",
        "currency",
        "status",
        "gateway_status",
        "initiated_by",
        "initiated_at",
        "dispatched_at",
        "processed_at",
        "completed_at",
        "reason",
        "admin_notes",
        "error_code",
        "error_message",
        "linked_local_transaction",
        "customer_name",
        "customer_email",
        "customer_mobile",
        "gateway_response",
        "original_transaction_data",
        "metadata",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "initiated_at"
    ordering = ["-initiated_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "gateway", "status", "gateway_status"),
            },
        ),
        (
            "Transaction",
            {
                "fields": (
                    "gateway_transaction_ref",
                    "requested_transaction_ref",
                    "transaction_ref_type",
                    "gateway_refund_ref",
                    "linked_local_transaction",
                ),
            },
        ),
        (
            "Amount",
            {
                "fields": (
                    "refund_amount_minor_units",
                    "original_amount_minor_units",
                    "settled_amount_minor_units",
                    "currency",
                ),
            },
        ),
        (
            "Audit",
            {
                "fields": (
                    "initiated_by",
                    "initiated_at",
                    "dispatched_at",
                    "processed_at",
                    "completed_at",
                    "reason",
                    "admin_notes",
                ),
            },
        ),
        (
            "Customer",
            {
                "fields": ("customer_name", "customer_email", "customer_mobile"),
                "classes": ("collapse",),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("error_code", "error_message"),
                "classes": ("collapse",),
            },
        ),
        (
            "Gateway Data",
            {
                "fields": ("gateway_response", "original_transaction_data"),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: RefundRecord) -> str:
        """Display the refund amount in major units."""
        return f"{format_major(obj.refund_amount_minor_units, obj.currency)} {obj.currency}"

    amount_display.short_description = "Amount"


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Admin configuration for PaymentTransaction."""

    list_display = [
        "payment_id",
        "gateway",
        "order_id",
        "amount_display",
        "status",
        "customer_email",
        "created_at",
    ]
    list_filter = ["gateway", "currency", "status"]
    search_fields = [
        "payment_id",
        "order_id",
        "transaction_id",
        "customer_email",
        "customer_name",
    ]
    readonly_fields = ["id", "created_at", "updated_at"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def amount_display(self, obj: PaymentTransaction) -> str:
        return f"{format_major(obj.amount_minor_units, obj.currency)} {obj.currency}"

    amount_display.short_description = "Amount"
