"""
Celery tasks for refund reconciliation.

The tasks are defined in refunds.workers and re-exported here so Celery
autodiscover finds them.

Usage:
    from refunds.tasks import sync_refund_status

    sync_refund_status.delay(str(refund_id))
"""

from refunds.workers import sync_pending_refunds, sync_refund_status  # noqa: F401
