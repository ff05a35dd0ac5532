"""
Serializers for the refunds API.

Serializers:
    RefundRecordSerializer: Read-only ledger record
    RefundInitiateSerializer: Refund initiation request
    RefundResultSerializer: Refund initiation response
    RefundListQuerySerializer: Listing filters and pagination
    RefundListResponseSerializer: {records, totalCount}
    RefundStatsSerializer: Ledger statistics
    LookupRequestSerializer / LookupResultSerializer: Transaction lookup
    CancelRequestSerializer: Administrative cancellation
    Workflow*Serializer: Workflow controller requests and state

Amounts are always exchanged in minor units (integers). Requests may
instead carry ``amount`` in major units as a decimal string; the engine
converts it with the transaction's currency.
"""

from __future__ import annotations

from rest_framework import serializers

from refunds.money import format_major
from refunds.models import RefundRecord
from refunds.state_machines import Gateway, RefundStatus


class RefundRecordSerializer(serializers.ModelSerializer):
    """
    Read-only serializer for RefundRecord.

    Usage:
        serializer = RefundRecordSerializer(record)
        serializer = RefundRecordSerializer(records, many=True)
    """

    refund_id = serializers.UUIDField(source="id", read_only=True)
    refund_amount_display = serializers.SerializerMethodField()
    needs_review = serializers.SerializerMethodField()
    linked_local_transaction = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = RefundRecord
        fields = [
            "refund_id",
            "gateway",
            "gateway_transaction_ref",
            "requested_transaction_ref",
            "transaction_ref_type",
            "gateway_refund_ref",
            "refund_amount_minor_units",
            "original_amount_minor_units",
            "settled_amount_minor_units",
            "refund_amount_display",
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
            "needs_review",
            "version",
        ]
        read_only_fields = fields

    def get_refund_amount_display(self, obj: RefundRecord) -> str:
        return f"{format_major(obj.refund_amount_minor_units, obj.currency)} {obj.currency}"

    def get_needs_review(self, obj: RefundRecord) -> bool:
        return bool(obj.get_meta("needs_review", False))


class RefundInitiateSerializer(serializers.Serializer):
    """
    Refund initiation request.

    Fields:
        gateway: Gateway name
        transaction_ref: Capture/order/payment id
        amount_minor_units: Optional amount in minor units
        amount: Optional amount in major units (decimal string)
        reason: Reason for the refund
        admin_notes: Internal notes

    Omitting both amounts refunds the full remaining amount.
    """

    gateway = serializers.ChoiceField(choices=Gateway.choices)
    transaction_ref = serializers.CharField(max_length=255, trim_whitespace=True)
    amount_minor_units = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    amount = serializers.CharField(required=False, allow_null=True, allow_blank=False, max_length=32)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    admin_notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)

    def validate(self, attrs):
        if attrs.get("amount_minor_units") is not None and attrs.get("amount") is not None:
            raise serializers.ValidationError(
                "Provide either amount_minor_units or amount, not both."
            )
        return attrs


class RefundResultSerializer(serializers.Serializer):
    """Refund initiation response: {success, refund_id, gateway_refund_ref, status, error}."""

    success = serializers.BooleanField()
    refund_id = serializers.UUIDField(allow_null=True)
    gateway_refund_ref = serializers.CharField(allow_null=True)
    status = serializers.ChoiceField(choices=RefundStatus.choices, allow_null=True)
    error = serializers.CharField(allow_null=True)
    error_code = serializers.CharField(allow_null=True)


class RefundListQuerySerializer(serializers.Serializer):
    """Query parameters for the listing and statistics endpoints."""

    status = serializers.ChoiceField(choices=RefundStatus.choices, required=False)
    gateway = serializers.ChoiceField(choices=Gateway.choices, required=False)
    initiated_by = serializers.CharField(required=False, max_length=255)
    search = serializers.CharField(required=False, max_length=255)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    page_size = serializers.IntegerField(required=False, min_value=1, max_value=100, default=20)

    def validate(self, attrs):
        date_from, date_to = attrs.get("date_from"), attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError("date_from must not be after date_to.")
        return attrs


class RefundListResponseSerializer(serializers.Serializer):
    records = RefundRecordSerializer(many=True)
    totalCount = serializers.IntegerField()
    page = serializers.IntegerField()
    pageSize = serializers.IntegerField()


class CurrencyTotalsSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    total_amount_minor_units = serializers.IntegerField()
    completed_amount_minor_units = serializers.IntegerField()
    settled_amount_minor_units = serializers.IntegerField()


class RefundStatsSerializer(serializers.Serializer):
    total_refunds = serializers.IntegerField()
    completed_refunds = serializers.IntegerField()
    failed_refunds = serializers.IntegerField()
    processing_refunds = serializers.IntegerField()
    partial_refunds = serializers.IntegerField()
    cancelled_refunds = serializers.IntegerField()
    by_currency = serializers.DictField(child=CurrencyTotalsSerializer())


class LookupRequestSerializer(serializers.Serializer):
    gateway = serializers.ChoiceField(choices=Gateway.choices)
    transaction_ref = serializers.CharField(max_length=255, trim_whitespace=True)


class LookupResultSerializer(serializers.Serializer):
    """Normalized transaction lookup (TransactionLookupResult.to_dict())."""

    status = serializers.CharField()
    can_refund = serializers.BooleanField()
    gateway = serializers.CharField()
    transaction_ref = serializers.CharField()
    resolved_ref = serializers.CharField(allow_null=True)
    ref_type = serializers.CharField(allow_null=True)
    amount_minor_units = serializers.IntegerField(allow_null=True)
    amount_refunded_minor_units = serializers.IntegerField(allow_null=True)
    currency = serializers.CharField(allow_null=True)
    gateway_status = serializers.CharField(allow_null=True)
    message = serializers.CharField(allow_blank=True)
    customer_name = serializers.CharField(allow_blank=True)
    customer_email = serializers.CharField(allow_blank=True)
    customer_mobile = serializers.CharField(allow_blank=True)
    local_transaction_id = serializers.CharField(allow_null=True)


class CancelRequestSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


# ============================================================================
# Workflow Serializers
# ============================================================================


class WorkflowGatewaySerializer(serializers.Serializer):
    gateway = serializers.ChoiceField(choices=Gateway.choices)


class WorkflowLookupSerializer(serializers.Serializer):
    transaction_ref = serializers.CharField(max_length=255, trim_whitespace=True)


class WorkflowConfirmSerializer(serializers.Serializer):
    amount_minor_units = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    amount = serializers.CharField(required=False, allow_null=True, allow_blank=False, max_length=32)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    admin_notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)

    def validate(self, attrs):
        if attrs.get("amount_minor_units") is not None and attrs.get("amount") is not None:
            raise serializers.ValidationError(
                "Provide either amount_minor_units or amount, not both."
            )
        return attrs


class WorkflowStateSerializer(serializers.Serializer):
    step = serializers.CharField()
    gateway = serializers.CharField(allow_null=True)
    transaction_ref = serializers.CharField(allow_null=True)
    lookup = serializers.DictField(allow_null=True)
    result = serializers.DictField(allow_null=True)
    in_flight = serializers.BooleanField()
