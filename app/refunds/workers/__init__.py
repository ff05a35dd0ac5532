"""
Workers for background refund reconciliation.

- SyncWorker: re-polls gateways for refunds not yet in a terminal state

Usage:
    from refunds.workers import sync_pending_refunds, sync_refund_status

    sync_refund_status.delay(str(refund_id))
    sync_pending_refunds.delay()
"""

from refunds.workers.sync_worker import sync_pending_refunds, sync_refund_status

__all__ = [
    "sync_pending_refunds",
    "sync_refund_status",
]
