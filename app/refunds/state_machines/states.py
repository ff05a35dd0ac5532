"""
State and choice enums for refund models.

This module defines the enums used by refund models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

RefundRecord Status:
    initiated → processing → completed / failed / partial
    initiated → completed / failed / partial (synchronous gateways)
    initiated → cancelled (administrative, before any gateway acknowledgment)

Lookup Status (ephemeral, describes ledger vs. gateway agreement):
    VERIFIED        both the local payment ledger and the gateway know it
    UNRECORDED      only the gateway knows it
    NOT_IN_GATEWAY  only the local payment ledger knows it
    NOT_FOUND       neither knows it
"""

from django.db import models


class Gateway(models.TextChoices):
    """
    Supported payment gateways.

    PayPal reports decimal major-unit amounts and distinguishes orders
    from captures. Razorpay reports integer minor units (paise).
    """

    PAYPAL = "paypal", "PayPal"
    RAZORPAY = "razorpay", "Razorpay"


class RefundStatus(models.TextChoices):
    """
    States for the RefundRecord lifecycle.

    Terminal states: COMPLETED, FAILED, PARTIAL, CANCELLED
    No transition leaves a terminal state.

    State Flow:
        INITIATED → PROCESSING → COMPLETED / FAILED / PARTIAL
        INITIATED → COMPLETED / FAILED / PARTIAL
        INITIATED → CANCELLED
    """

    INITIATED = "initiated", "Initiated"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    PARTIAL = "partial", "Partial"
    CANCELLED = "cancelled", "Cancelled"

    @classmethod
    def terminal(cls) -> frozenset[str]:
        """Statuses with no outgoing transitions."""
        return frozenset({cls.COMPLETED, cls.FAILED, cls.PARTIAL, cls.CANCELLED})

    @classmethod
    def in_flight(cls) -> frozenset[str]:
        """Statuses whose gateway outcome is not yet known."""
        return frozenset({cls.INITIATED, cls.PROCESSING})


class LookupStatus(models.TextChoices):
    """Relationship between the local payment ledger and the gateway."""

    VERIFIED = "VERIFIED", "Verified"
    UNRECORDED = "UNRECORDED", "Unrecorded"
    NOT_FOUND = "NOT_FOUND", "Not found"
    NOT_IN_GATEWAY = "NOT_IN_GATEWAY", "Not in gateway"


class TransactionRefType(models.TextChoices):
    """Which kind of gateway identifier a lookup resolved."""

    CAPTURE = "capture", "Capture"
    ORDER = "order", "Order"
    PAYMENT = "payment", "Payment"
