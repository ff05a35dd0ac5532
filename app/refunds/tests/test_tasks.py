"""
Tests for the refund sync Celery tasks.

Tasks are called directly (or through ``apply`` when the retry count
matters) so no broker is needed.
"""

import pytest
from celery.exceptions import Retry

from refunds.exceptions import GatewayUnavailableError
from refunds.models import RefundRecord
from refunds.state_machines import RefundStatus
from refunds.tests.factories import RefundRecordFactory
from refunds.workers import sync_pending_refunds, sync_refund_status
from refunds.workers.sync_worker import MAX_SYNC_RETRIES

pytestmark = pytest.mark.django_db

MISSING_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def processing_record():
    return RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref="rfnd_TASK1")


class TestSyncRefundStatus:
    def test_synced(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_TASK1", "processed", 50000)

        result = sync_refund_status(str(processing_record.id))

        assert result == {
            "status": "synced",
            "refund_id": str(processing_record.id),
            "refund_status": RefundStatus.COMPLETED,
        }
        assert RefundRecord.objects.get(pk=processing_record.pk).status == RefundStatus.COMPLETED

    def test_retries_while_gateway_unavailable(self, mocker, fake_gateway, processing_record):
        fake_gateway.poll_error = GatewayUnavailableError("timed out", gateway_code="timeout")
        retry = mocker.patch.object(sync_refund_status, "retry", return_value=Retry())

        with pytest.raises(Retry):
            sync_refund_status(str(processing_record.id))

        assert "countdown" in retry.call_args.kwargs

    def test_gives_up_after_max_retries(self, fake_gateway, processing_record):
        fake_gateway.poll_error = GatewayUnavailableError("timed out", gateway_code="timeout")

        result = sync_refund_status.apply(
            args=[str(processing_record.id)],
            retries=MAX_SYNC_RETRIES,
        ).get()

        assert result["status"] == "failed"
        assert result["error_code"] == "GatewayUnavailable"
        assert RefundRecord.objects.get(pk=processing_record.pk).status == RefundStatus.PROCESSING

    def test_unknown_refund_is_not_retried(self, mocker, fake_gateway):
        retry = mocker.patch.object(sync_refund_status, "retry")

        result = sync_refund_status(MISSING_ID)

        assert result["status"] == "failed"
        assert result["error_code"] == "RefundNotFound"
        retry.assert_not_called()


class TestSyncPendingRefunds:
    def test_completed_summary(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_TASK1", "processed", 50000)

        result = sync_pending_refunds()

        assert result == {
            "status": "completed",
            "checked": 1,
            "updated": 1,
            "unchanged": 0,
            "errors": 0,
        }

    def test_skipped_while_another_run_holds_lock(self, mock_redis_lock, fake_gateway, processing_record):
        mock_redis_lock.set.return_value = False

        result = sync_pending_refunds()

        assert result["status"] == "skipped"
        assert RefundRecord.objects.get(pk=processing_record.pk).status == RefundStatus.PROCESSING

    def test_releases_lock(self, mock_redis_lock, fake_gateway):
        sync_pending_refunds()

        args, kwargs = mock_redis_lock.set.call_args
        assert args[0] == "lock:refund:sync:pending"
        assert kwargs["nx"] is True
        mock_redis_lock.eval.assert_called_once()
