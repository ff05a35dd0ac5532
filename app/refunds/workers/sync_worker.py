"""
Sync worker for correcting refund status drift.

Tasks:
- sync_refund_status: Re-poll the gateway for one refund
- sync_pending_refunds: Periodic task that syncs every acknowledged,
  unsettled refund

Usage:
    from refunds.workers import sync_refund_status
    sync_refund_status.delay(str(refund_id))

Celery Beat Schedule:
    Registered by migration 0002 as the "Sync Pending Refunds" periodic task
    (every 15 minutes, django_celery_beat DatabaseScheduler).
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from refunds.adapters import backoff_delay
from refunds.exceptions import GatewayUnavailableError, LockAcquisitionError
from refunds.locks import DistributedLock

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Celery retries for a sync that could not reach the gateway
MAX_SYNC_RETRIES = 3

SYNC_PENDING_LOCK_KEY = "refund:sync:pending"
SYNC_PENDING_LOCK_TTL = 600


# =============================================================================
# On-Demand Task: Single Refund
# =============================================================================


@shared_task(bind=True, max_retries=MAX_SYNC_RETRIES)
def sync_refund_status(self, refund_id: str) -> dict:
    """
    Sync a single refund against its gateway.

    Retries with exponential backoff while the gateway is unavailable;
    any other failure is reported in the result without a retry.

    Returns:
        Dict with:
        - status: "synced" or "failed"
        - refund_id: The refund id
        - refund_status: Ledger status after the sync (when synced)
        - error / error_code: Failure details (when failed)
    """
    from refunds.services import RefundReconciliationService

    result = RefundReconciliationService.sync_status(refund_id)

    if result.success:
        return {
            "status": "synced",
            "refund_id": str(refund_id),
            "refund_status": result.data.status,
        }

    if (
        result.error_code == GatewayUnavailableError.default_error_code
        and self.request.retries < self.max_retries
    ):
        logger.warning(
            "Gateway unavailable during sync, will retry",
            extra={
                "refund_id": str(refund_id),
                "celery_retries": self.request.retries,
            },
        )
        raise self.retry(countdown=backoff_delay(self.request.retries))

    logger.error(
        f"Refund sync failed: {result.error}",
        extra={
            "refund_id": str(refund_id),
            "error_code": result.error_code,
        },
    )
    return {
        "status": "failed",
        "refund_id": str(refund_id),
        "error": result.error,
        "error_code": result.error_code,
    }


# =============================================================================
# Periodic Task: All Pending Refunds
# =============================================================================


@shared_task(bind=True)
def sync_pending_refunds(self, batch_size: int | None = None) -> dict:
    """
    Sync every refund still processing at its gateway, oldest first.

    Only one run executes at a time; an overlapping run is skipped rather
    than queued.

    Returns:
        Dict with:
        - status: "completed" or "skipped"
        - checked / updated / unchanged / errors: Counts (when completed)
    """
    from refunds.services import RefundReconciliationService

    lock = DistributedLock(
        SYNC_PENDING_LOCK_KEY,
        ttl=getattr(settings, "REFUND_SYNC_LOCK_TTL_SECONDS", SYNC_PENDING_LOCK_TTL),
        blocking=False,
    )
    try:
        with lock:
            summary = RefundReconciliationService.sync_pending(batch_size=batch_size)
    except LockAcquisitionError:
        logger.info(
            "Pending refund sync skipped - another run in progress",
            extra={"task_id": self.request.id},
        )
        return {
            "status": "skipped",
            "reason": "Another sync run is in progress",
        }

    return {"status": "completed", **summary}
