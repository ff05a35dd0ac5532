import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
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
                    "gateway",
                    models.CharField(
                        choices=[("paypal", "PayPal"), ("razorpay", "Razorpay")],
                        db_index=True,
                        help_text="Gateway that processed the payment",
                        max_length=20,
                    ),
                ),
                (
                    "payment_id",
                    models.CharField(
                        db_index=True,
                        help_text="Gateway payment or capture identifier",
                        max_length=255,
                    ),
                ),
                (
                    "order_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Gateway order identifier",
                        max_length=255,
                    ),
                ),
                (
                    "transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Merchant-side transaction identifier",
                        max_length=255,
                    ),
                ),
                (
                    "amount_minor_units",
                    models.PositiveBigIntegerField(
                        help_text="Amount charged in smallest currency unit"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        help_text="ISO 4217 currency code (upper-case)", max_length=3
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Local payment status",
                        max_length=50,
                    ),
                ),
                (
                    "user_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Identifier of the paying user",
                        max_length=255,
                    ),
                ),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                ("customer_mobile", models.CharField(blank=True, default="", max_length=32)),
                ("customer_city", models.CharField(blank=True, default="", max_length=100)),
            ],
            options={
                "verbose_name": "Payment Transaction",
                "verbose_name_plural": "Payment Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["gateway", "payment_id"],
                        name="refunds_pay_gateway_6f1c2a_idx",
                    ),
                    models.Index(
                        fields=["gateway", "order_id"],
                        name="refunds_pay_gateway_0b8e4d_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundTarget",
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
                (
                    "gateway",
                    models.CharField(
                        choices=[("paypal", "PayPal"), ("razorpay", "Razorpay")],
                        help_text="Gateway holding the transaction",
                        max_length=20,
                    ),
                ),
                (
                    "transaction_ref",
                    models.CharField(
                        help_text="Resolved gateway transaction identifier",
                        max_length=255,
                    ),
                ),
                (
                    "original_amount_minor_units",
                    models.PositiveBigIntegerField(
                        help_text="Amount originally charged, in minor units"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        help_text="ISO 4217 currency code (upper-case)", max_length=3
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Target",
                "verbose_name_plural": "Refund Targets",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("gateway", "transaction_ref"),
                        name="refund_target_unique_transaction",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundRecord",
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
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage",
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
                    "gateway",
                    models.CharField(
                        choices=[("paypal", "PayPal"), ("razorpay", "Razorpay")],
                        db_index=True,
                        help_text="Gateway holding the transaction (immutable)",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_transaction_ref",
                    models.CharField(
                        db_index=True,
                        help_text="Resolved gateway transaction identifier used for the refund",
                        max_length=255,
                    ),
                ),
                (
                    "requested_transaction_ref",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Identifier as entered by the operator (may be an order id)",
                        max_length=255,
                    ),
                ),
                (
                    "transaction_ref_type",
                    models.CharField(
                        choices=[
                            ("capture", "Capture"),
                            ("order", "Order"),
                            ("payment", "Payment"),
                        ],
                        default="payment",
                        help_text="Kind of gateway identifier the lookup resolved",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_refund_ref",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund identifier, set once the gateway acknowledges",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "refund_amount_minor_units",
                    models.PositiveBigIntegerField(
                        help_text="Requested refund amount in smallest currency unit"
                    ),
                ),
                (
                    "original_amount_minor_units",
                    models.PositiveBigIntegerField(
                        help_text="Original transaction amount in smallest currency unit"
                    ),
                ),
                (
                    "settled_amount_minor_units",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount the gateway reports as actually refunded",
                        null=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        help_text="ISO 4217 currency code (upper-case)", max_length=3
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("initiated", "Initiated"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("partial", "Partial"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="initiated",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway_status",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Raw refund status last reported by the gateway",
                        max_length=50,
                    ),
                ),
                (
                    "initiated_by",
                    models.CharField(
                        db_index=True,
                        help_text="Actor who initiated the refund",
                        max_length=255,
                    ),
                ),
                (
                    "initiated_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        help_text="When the attempt was recorded",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the gateway call returned", null=True
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gateway confirmed settlement",
                        null=True,
                    ),
                ),
                (
                    "reason",
                    models.TextField(
                        blank=True, default="", help_text="Reason for the refund"
                    ),
                ),
                (
                    "admin_notes",
                    models.TextField(
                        blank=True, default="", help_text="Internal notes from the operator"
                    ),
                ),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Machine-readable failure code",
                        max_length=50,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True, default="", help_text="Human-readable failure reason"
                    ),
                ),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                ("customer_mobile", models.CharField(blank=True, default="", max_length=32)),
                (
                    "gateway_response",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Last raw gateway refund payload",
                    ),
                ),
                (
                    "original_transaction_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Normalized transaction lookup snapshot at attempt time",
                    ),
                ),
                (
                    "linked_local_transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Local payment record (absent for unrecorded transactions)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_records",
                        to="refunds.paymenttransaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund Record",
                "verbose_name_plural": "Refund Records",
                "ordering": ["-initiated_at"],
                "indexes": [
                    models.Index(
                        fields=["gateway", "gateway_transaction_ref"],
                        name="refunds_ref_gateway_3c9a71_idx",
                    ),
                    models.Index(
                        fields=["status", "initiated_at"],
                        name="refunds_ref_status_8d2f40_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("refund_amount_minor_units__gt", 0)),
                        name="refund_record_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "refund_amount_minor_units__lte",
                                models.F("original_amount_minor_units"),
                            )
                        ),
                        name="refund_record_amount_within_original",
                    ),
                ],
            },
        ),
    ]
