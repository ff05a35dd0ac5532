"""
PaymentTransaction model mirroring the internal payment ledger.

A PaymentTransaction is the local system of record for a customer payment
taken through one of the gateways. The refund engine only reads it: a
lookup that finds a local row is VERIFIED, and the row is linked from the
RefundRecord together with a snapshot of the customer audit fields.

Usage:
    from refunds.models import PaymentTransaction

    local = PaymentTransaction.objects.match(Gateway.RAZORPAY, "pay_ABC123")
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from refunds.state_machines import Gateway


class PaymentTransactionQuerySet(models.QuerySet):
    """QuerySet helpers for matching gateway identifiers to local payments."""

    def match(self, gateway: str, *refs: str | None) -> PaymentTransaction | None:
        """
        Find the local payment for any of the given gateway identifiers.

        A gateway reference may be stored as the payment id, the order id
        or the merchant transaction id, so all three columns are searched.
        """
        refs = tuple(ref for ref in refs if ref)
        if not refs:
            return None
        return (
            self.filter(gateway=gateway)
            .filter(
                Q(payment_id__in=refs)
                | Q(order_id__in=refs)
                | Q(transaction_id__in=refs)
            )
            .order_by("-created_at")
            .first()
        )


class PaymentTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    A customer payment as recorded by the local payment ledger.

    Fields:
        gateway: Gateway that processed the payment
        payment_id: Gateway payment/capture identifier (pay_xxx, capture id)
        order_id: Gateway order identifier, if the gateway has orders
        transaction_id: Merchant-side transaction identifier
        amount_minor_units: Amount charged, in minor units
        currency: ISO 4217 currency code (upper-case)
        status: Local payment status (free-form, e.g. "success")
        user_id: Identifier of the paying user
        customer_*: Customer profile snapshot used for refund audit
    """

    # ==========================================================================
    # Gateway Identifiers
    # ==========================================================================

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        db_index=True,
        help_text="Gateway that processed the payment",
    )

    payment_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Gateway payment or capture identifier",
    )

    order_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway order identifier",
    )

    transaction_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Merchant-side transaction identifier",
    )

    # ==========================================================================
    # Amount & Status
    # ==========================================================================

    amount_minor_units = models.PositiveBigIntegerField(
        help_text="Amount charged in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (upper-case)",
    )

    status = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Local payment status",
    )

    # ==========================================================================
    # Customer
    # ==========================================================================

    user_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Identifier of the paying user",
    )

    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_mobile = models.CharField(max_length=32, blank=True, default="")
    customer_city = models.CharField(max_length=100, blank=True, default="")

    objects = PaymentTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(fields=["gateway", "payment_id"], name="refunds_pay_gateway_6f1c2a_idx"),
            models.Index(fields=["gateway", "order_id"], name="refunds_pay_gateway_0b8e4d_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentTransaction({self.gateway}, {self.payment_id})"
