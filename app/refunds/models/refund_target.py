"""
RefundTarget model: one row per refunded gateway transaction.

Refund attempts against the same gateway transaction must be serialized so
two admins cannot both pass the cumulative-amount check. The engine takes a
row lock on the RefundTarget (select_for_update) inside the transaction that
checks the ledger and inserts the new RefundRecord; the unique constraint
guarantees there is exactly one row to lock.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel

from refunds.state_machines import Gateway


class RefundTarget(BaseModel):
    """
    Serialization point for refund attempts against one gateway transaction.

    Fields:
        gateway: Gateway holding the transaction
        transaction_ref: Resolved gateway transaction identifier
        original_amount_minor_units: Amount originally charged
        currency: ISO 4217 currency code
    """

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        help_text="Gateway holding the transaction",
    )

    transaction_ref = models.CharField(
        max_length=255,
        help_text="Resolved gateway transaction identifier",
    )

    original_amount_minor_units = models.PositiveBigIntegerField(
        help_text="Amount originally charged, in minor units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (upper-case)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Target"
        verbose_name_plural = "Refund Targets"
        constraints = [
            models.UniqueConstraint(
                fields=["gateway", "transaction_ref"],
                name="refund_target_unique_transaction",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundTarget({self.gateway}, {self.transaction_ref})"
