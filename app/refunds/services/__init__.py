"""
Refund services.

- RefundLedgerService: durable refund attempt records and reporting
- RefundReconciliationService: lookup, refund processing and Sync
"""

from refunds.services.ledger_service import RefundLedgerService
from refunds.services.reconciliation_service import RefundReconciliationService

__all__ = [
    "RefundLedgerService",
    "RefundReconciliationService",
]
