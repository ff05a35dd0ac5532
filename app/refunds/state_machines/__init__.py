"""
State machine enums for refund models.

This module defines the state enums used by refund models with django-fsm.
"""

from refunds.state_machines.states import (
    Gateway,
    LookupStatus,
    RefundStatus,
    TransactionRefType,
)

__all__ = [
    "Gateway",
    "LookupStatus",
    "RefundStatus",
    "TransactionRefType",
]
