"""
Refund domain models.

This module contains all refund-related models:
- RefundRecord: The refund ledger, one row per refund attempt
- RefundTarget: Row-lock target serializing attempts per gateway transaction
- PaymentTransaction: Local payment ledger the engine reads from
"""

from refunds.models.payment_transaction import PaymentTransaction
from refunds.models.refund_record import RefundRecord
from refunds.models.refund_target import RefundTarget

__all__ = [
    "PaymentTransaction",
    "RefundRecord",
    "RefundTarget",
]
