"""
Tests for RefundReconciliationService.

The engine runs against an in-memory gateway (see fakes.py) and a mocked
Redis for the distributed lock; the ledger is the real test database.

Covers:
1. Lookup as a side-effect free operation
2. Full and partial refunds, including cumulative over-refund protection
3. Rejections that never create a record (missing transaction, bad amount)
4. Gateway failures and timeouts after the record exists
5. Sync: drift correction, idempotency, terminal finality
"""

from __future__ import annotations

import json

import pytest
import requests
from django.core.cache import cache

from refunds.adapters import RefundOutcome
from refunds.adapters.paypal_adapter import SANDBOX_BASE_URL, TOKEN_CACHE_KEY
from refunds.exceptions import GatewayUnavailableError
from refunds.models import RefundRecord, RefundTarget
from refunds.services import RefundLedgerService, RefundReconciliationService
from refunds.state_machines import Gateway, LookupStatus, RefundStatus
from refunds.tests.factories import PaymentTransactionFactory, RefundRecordFactory
from refunds.tests.fakes import gateway_transaction, make_fake_adapter

ACTOR = "admin@example.com"


def refund(transaction_ref="pay_ABC123", **kwargs):
    kwargs.setdefault("actor", ACTOR)
    return RefundReconciliationService.process_refund(Gateway.RAZORPAY, transaction_ref, **kwargs)


@pytest.fixture
def gateway_payment(fake_gateway):
    """pay_ABC123 for 1500.00 INR, known to the gateway and the local ledger."""
    txn = fake_gateway.add_transaction(gateway_transaction("pay_ABC123", 150000), "order_XYZ789")
    PaymentTransactionFactory(payment_id="pay_ABC123", order_id="order_XYZ789")
    return txn


# =============================================================================
# Lookup
# =============================================================================


@pytest.mark.django_db
class TestLookup:
    def test_lookup_does_not_write(self, gateway_payment):
        result = RefundReconciliationService.lookup(Gateway.RAZORPAY, "  pay_ABC123 ")

        assert result.success is True
        assert result.data.status == LookupStatus.VERIFIED
        assert result.data.transaction_ref == "pay_ABC123"
        assert RefundRecord.objects.count() == 0
        assert RefundTarget.objects.count() == 0

    def test_missing_transaction_is_a_successful_lookup(self, fake_gateway):
        result = RefundReconciliationService.lookup(Gateway.RAZORPAY, "not-a-real-id")

        assert result.success is True
        assert result.data.status == LookupStatus.NOT_FOUND

    def test_empty_reference_is_invalid(self, fake_gateway):
        result = RefundReconciliationService.lookup(Gateway.RAZORPAY, "   ")

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"

    def test_unreachable_gateway_is_a_failure(self, fake_gateway):
        fake_gateway.fetch_error = GatewayUnavailableError("timed out", gateway_code="timeout")

        result = RefundReconciliationService.lookup(Gateway.RAZORPAY, "pay_ABC123")

        assert result.success is False
        assert result.error_code == "GatewayUnavailable"

    def test_unsupported_gateway(self):
        result = RefundReconciliationService.lookup("stripe", "pay_ABC123")

        assert result.success is False
        assert result.error_code == "GatewayConfiguration"


# =============================================================================
# Successful Refunds
# =============================================================================


@pytest.mark.django_db
class TestProcessRefund:
    def test_full_refund_completes(self, gateway_payment, fake_gateway):
        result = refund(amount_minor_units=150000, reason="Duplicate charge")

        assert result.success is True
        assert result.data["success"] is True
        assert result.data["status"] == RefundStatus.COMPLETED
        assert result.data["gateway_refund_ref"].startswith("rfnd_FAKE")
        assert result.data["error_code"] is None

        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.status == RefundStatus.COMPLETED
        assert record.refund_amount_minor_units == 150000
        assert record.original_amount_minor_units == 150000
        assert record.settled_amount_minor_units == 150000
        assert record.currency == "INR"
        assert record.initiated_by == ACTOR
        assert record.reason == "Duplicate charge"
        assert record.linked_local_transaction.payment_id == "pay_ABC123"
        assert record.metadata["lookup_status"] == LookupStatus.VERIFIED
        assert record.original_transaction_data["resolved_ref"] == "pay_ABC123"
        assert record.completed_at is not None

    def test_amount_defaults_to_full_remainder(self, gateway_payment):
        result = refund()

        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.refund_amount_minor_units == 150000

    def test_major_unit_amount_is_converted(self, gateway_payment):
        result = refund(amount="500.00")

        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.refund_amount_minor_units == 50000

    def test_refund_id_sent_to_gateway(self, gateway_payment, fake_gateway):
        result = refund(amount_minor_units=1000, reason="Goodwill")

        (params,) = fake_gateway.refund_calls
        assert str(params.refund_id) == result.data["refund_id"]
        assert params.transaction_ref == "pay_ABC123"
        assert params.amount_minor_units == 1000
        assert params.note == "Goodwill"

    def test_order_reference_refunds_resolved_payment(self, gateway_payment, fake_gateway):
        result = refund("order_XYZ789", amount_minor_units=1000)

        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.gateway_transaction_ref == "pay_ABC123"
        assert record.requested_transaction_ref == "order_XYZ789"

    def test_unrecorded_transaction_is_refundable(self, fake_gateway):
        fake_gateway.add_transaction(gateway_transaction("pay_GATEWAYONLY", 20000))

        result = refund("pay_GATEWAYONLY")

        assert result.success is True
        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.linked_local_transaction is None
        assert record.metadata["lookup_status"] == LookupStatus.UNRECORDED

    def test_pending_gateway_refund_is_processing(self, gateway_payment, fake_gateway):
        fake_gateway.refund_outcome = RefundOutcome(
            success=True,
            gateway_refund_ref="rfnd_PENDING1",
            gateway_status="pending",
            status=RefundStatus.PROCESSING,
        )

        result = refund(amount_minor_units=50000)

        assert result.success is True
        assert result.data["status"] == RefundStatus.PROCESSING
        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.gateway_refund_ref == "rfnd_PENDING1"
        assert record.processed_at is not None

    def test_short_settlement_is_partial(self, gateway_payment, fake_gateway):
        fake_gateway.refund_outcome = RefundOutcome(
            success=True,
            gateway_refund_ref="rfnd_SHORT1",
            gateway_status="processed",
            status=RefundStatus.COMPLETED,
            settled_amount_minor_units=40000,
        )

        result = refund(amount_minor_units=50000)

        assert result.data["status"] == RefundStatus.PARTIAL
        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.settled_amount_minor_units == 40000
        assert record.metadata["needs_review"] is True


# =============================================================================
# Over-Refund Protection
# =============================================================================


@pytest.mark.django_db
class TestOverRefund:
    def test_second_refund_after_full_refund_is_rejected(self, gateway_payment, fake_gateway):
        first = refund(amount_minor_units=150000)
        assert first.success is True

        second = refund(amount_minor_units=1)

        assert second.success is False
        assert second.error_code == "OverRefund"
        assert second.data["refund_id"] is None
        assert RefundRecord.objects.count() == 1
        assert len(fake_gateway.refund_calls) == 1

    def test_cumulative_partials_cannot_exceed_original(self, gateway_payment):
        assert refund(amount_minor_units=50000).success is True
        assert refund(amount_minor_units=50000).success is True

        over = refund(amount_minor_units=50001)
        assert over.error_code == "OverRefund"
        assert over.data["refund_id"] is None

        last = refund(amount_minor_units=50000)
        assert last.success is True
        assert RefundRecord.objects.filter(status=RefundStatus.COMPLETED).count() == 3

    def test_unsettled_attempts_reserve_their_amount(self, gateway_payment, fake_gateway):
        # Pending refunds do not show up in the gateway's refunded total yet
        fake_gateway.refund_outcome = RefundOutcome(
            success=True,
            gateway_refund_ref="rfnd_PENDING1",
            gateway_status="pending",
            status=RefundStatus.PROCESSING,
        )
        assert refund(amount_minor_units=100000).success is True

        result = refund(amount_minor_units=60000)

        assert result.error_code == "OverRefund"
        assert result.error is not None
        assert RefundRecord.objects.count() == 1

    def test_failed_attempts_do_not_count(self, gateway_payment, fake_gateway):
        fake_gateway.refund_error = GatewayUnavailableError("timed out", gateway_code="timeout")
        assert refund(amount_minor_units=150000).success is False

        fake_gateway.refund_error = None
        result = refund(amount_minor_units=150000)

        assert result.success is True
        assert RefundRecord.objects.count() == 2

    def test_gateway_refunded_amount_limits_refund(self, fake_gateway):
        # Refunded outside this system, e.g. from the gateway dashboard
        fake_gateway.add_transaction(
            gateway_transaction("pay_ABC123", 150000, refunded_minor_units=100000)
        )

        result = refund(amount_minor_units=60000)

        assert result.error_code == "OverRefund"
        assert refund(amount_minor_units=50000).success is True

    def test_amount_above_original_is_rejected(self, gateway_payment):
        result = refund(amount_minor_units=150001)

        assert result.error_code == "OverRefund"
        assert RefundRecord.objects.count() == 0


# =============================================================================
# Interference While The Gateway Call Is Outstanding
# =============================================================================


@pytest.mark.django_db
class TestDuringGatewayCall:
    """Actions taken against a transaction while its refund call is in flight."""

    def test_cancel_during_gateway_call_is_refused(self, gateway_payment, fake_gateway, mocker):
        initiate = fake_gateway.initiate_refund
        cancel_results = []

        def cancel_then_refund(params):
            cancel_results.append(
                RefundLedgerService.cancel(params.refund_id, actor="ops@example.com", note="stuck")
            )
            return initiate(params)

        mocker.patch.object(fake_gateway, "initiate_refund", side_effect=cancel_then_refund)

        result = refund(amount_minor_units=150000)

        assert cancel_results[0].success is False
        assert cancel_results[0].error_code == "RefundInFlight"
        assert result.success is True
        record = RefundRecord.objects.get()
        assert record.status == RefundStatus.COMPLETED
        assert record.gateway_refund_ref.startswith("rfnd_FAKE")
        assert record.dispatched_at is not None

    def test_outcome_for_moved_record_is_kept_for_review(self, gateway_payment, fake_gateway, mocker):
        initiate = fake_gateway.initiate_refund

        def fail_then_refund(params):
            RefundLedgerService.update_status(
                params.refund_id,
                RefundStatus.FAILED,
                error_code="GatewayUnavailable",
                error_message="Marked failed while the call was outstanding",
            )
            return initiate(params)

        mocker.patch.object(fake_gateway, "initiate_refund", side_effect=fail_then_refund)

        result = refund(amount_minor_units=150000)

        assert result.success is False
        assert result.error_code == "IllegalTransition"
        assert result.data["status"] == RefundStatus.FAILED
        record = RefundRecord.objects.get()
        assert record.status == RefundStatus.FAILED
        assert record.gateway_refund_ref is None
        kept = record.metadata["unapplied_gateway_outcome"]
        assert kept["success"] is True
        assert kept["gateway_refund_ref"].startswith("rfnd_FAKE")
        assert record.metadata["needs_review"] is True
        # The money moved, so the amount stays committed
        committed = RefundRecord.objects.filter(
            gateway=Gateway.RAZORPAY,
            gateway_transaction_ref="pay_ABC123",
        ).committed_amount_minor_units()
        assert committed == 150000

    def test_cancelled_before_dispatch_skips_gateway(self, gateway_payment, fake_gateway, mocker):
        mark_dispatched = RefundLedgerService.mark_dispatched

        def cancel_first(refund_id):
            RefundLedgerService.cancel(refund_id, actor="ops@example.com")
            return mark_dispatched(refund_id)

        mocker.patch.object(RefundLedgerService, "mark_dispatched", side_effect=cancel_first)

        result = refund(amount_minor_units=150000)

        assert result.success is False
        assert result.error_code == "IllegalTransition"
        assert result.data["status"] == RefundStatus.CANCELLED
        assert fake_gateway.refund_calls == []
        assert RefundRecord.objects.get().dispatched_at is None

    def test_second_attempt_during_gateway_call_is_rejected(
        self, gateway_payment, fake_gateway, mocker
    ):
        initiate = fake_gateway.initiate_refund
        nested = []

        def refund_again(params):
            nested.append(refund(amount_minor_units=1))
            return initiate(params)

        mocker.patch.object(fake_gateway, "initiate_refund", side_effect=refund_again)

        result = refund(amount_minor_units=150000)

        assert result.success is True
        assert nested[0].success is False
        assert nested[0].error_code == "OverRefund"
        assert nested[0].data["refund_id"] is None
        assert fake_gateway.initiate_refund.call_count == 1
        assert RefundRecord.objects.count() == 1
        refunded = sum(
            record.refund_amount_minor_units
            for record in RefundRecord.objects.filter(
                status__in=[RefundStatus.COMPLETED, RefundStatus.PARTIAL]
            )
        )
        assert refunded <= 150000

    def test_second_attempt_waits_on_the_transaction_lock(
        self, gateway_payment, fake_gateway, mock_redis_lock, settings, mocker
    ):
        settings.REFUND_LOCK_TIMEOUT_SECONDS = 0.1
        initiate = fake_gateway.initiate_refund
        nested = []

        def refund_while_locked(params):
            mock_redis_lock.set.return_value = False
            nested.append(refund(amount_minor_units=1000))
            mock_redis_lock.set.return_value = True
            return initiate(params)

        mocker.patch.object(fake_gateway, "initiate_refund", side_effect=refund_while_locked)

        result = refund(amount_minor_units=50000)

        assert result.success is True
        assert nested[0].error_code == "LockAcquisition"
        assert nested[0].data["refund_id"] is None
        assert RefundRecord.objects.count() == 1


# =============================================================================
# Rejections Before Any Record
# =============================================================================


@pytest.mark.django_db
class TestRejections:
    def test_missing_transaction_creates_no_record(self, fake_gateway):
        result = refund("not-a-real-id")

        assert result.success is False
        assert result.error_code == "NotFoundAtGateway"
        assert result.data == {
            "success": False,
            "refund_id": None,
            "gateway_refund_ref": None,
            "status": None,
            "error": result.error,
            "error_code": "NotFoundAtGateway",
        }
        assert RefundRecord.objects.count() == 0
        assert fake_gateway.refund_calls == []

    def test_missing_paypal_transaction_creates_no_record(self):
        adapter = make_fake_adapter(Gateway.PAYPAL)
        RefundReconciliationService.set_adapter(adapter)

        result = RefundReconciliationService.process_refund(
            Gateway.PAYPAL, "not-a-real-id", actor=ACTOR
        )

        assert result.success is False
        assert result.error_code == "NotFoundAtGateway"
        assert result.data["refund_id"] is None
        assert RefundRecord.objects.count() == 0
        assert adapter.refund_calls == []

    def test_paypal_not_found_response_creates_no_record(self, mocker):
        not_found = requests.Response()
        not_found.status_code = 404
        not_found._content = json.dumps({"name": "RESOURCE_NOT_FOUND"}).encode()
        not_found.url = f"{SANDBOX_BASE_URL}/v2/payments/captures/not-a-real-id"
        cache.set(TOKEN_CACHE_KEY, "test-token", 300)
        request = mocker.patch(
            "refunds.adapters.paypal_adapter.requests.request", return_value=not_found
        )

        result = RefundReconciliationService.process_refund(
            Gateway.PAYPAL, "not-a-real-id", actor=ACTOR
        )

        assert result.error_code == "NotFoundAtGateway"
        assert RefundRecord.objects.count() == 0
        # Capture then order lookup, never a refund call
        assert request.call_count == 2
        assert all(call.args[0] == "GET" for call in request.call_args_list)

    def test_local_payment_unknown_to_gateway(self, fake_gateway):
        PaymentTransactionFactory(payment_id="pay_GHOST")

        result = refund("pay_GHOST")

        assert result.error_code == "NotFoundAtGateway"
        assert RefundRecord.objects.count() == 0

    def test_non_refundable_gateway_status(self, fake_gateway):
        fake_gateway.add_transaction(gateway_transaction("pay_AUTH", gateway_status="authorized"))

        result = refund("pay_AUTH")

        assert result.error_code == "RefundNotAllowed"
        assert RefundRecord.objects.count() == 0

    def test_fractional_minor_units_rejected(self, gateway_payment, fake_gateway):
        result = refund(amount_minor_units="100.5")

        assert result.error_code == "UnitMismatch"
        assert RefundRecord.objects.count() == 0
        assert fake_gateway.refund_calls == []

    def test_implausible_amount_rejected(self, gateway_payment, settings):
        settings.REFUND_MAX_AMOUNT_MINOR_UNITS = 100000

        result = refund(amount="5000.00")

        assert result.error_code == "UnitMismatch"

    def test_non_positive_amount_rejected(self, gateway_payment):
        result = refund(amount_minor_units=0)

        assert result.error_code == "VALIDATION_ERROR"

    def test_both_amount_forms_rejected(self, gateway_payment):
        result = refund(amount_minor_units=100, amount="1.00")

        assert result.error_code == "VALIDATION_ERROR"

    def test_actor_required(self, gateway_payment):
        result = refund(actor="")

        assert result.error_code == "VALIDATION_ERROR"
        assert RefundRecord.objects.count() == 0

    def test_currency_change_is_unit_mismatch(self, gateway_payment):
        RefundTarget.objects.create(
            gateway=Gateway.RAZORPAY,
            transaction_ref="pay_ABC123",
            original_amount_minor_units=150000,
            currency="USD",
        )

        result = refund(amount_minor_units=1000)

        assert result.error_code == "UnitMismatch"
        assert RefundRecord.objects.count() == 0

    def test_lock_contention_rejects_attempt(self, gateway_payment, mock_redis_lock, settings):
        settings.REFUND_LOCK_TIMEOUT_SECONDS = 0.1
        mock_redis_lock.set.return_value = False

        result = refund(amount_minor_units=1000)

        assert result.success is False
        assert result.error_code == "LockAcquisition"
        assert RefundRecord.objects.count() == 0


# =============================================================================
# Gateway Failures After The Record Exists
# =============================================================================


@pytest.mark.django_db
class TestGatewayFailures:
    def test_timeout_leaves_failed_record(self, gateway_payment, fake_gateway):
        fake_gateway.refund_error = GatewayUnavailableError(
            "Razorpay request timed out. Please retry.",
            gateway=Gateway.RAZORPAY,
            gateway_code="timeout",
        )

        result = refund(amount_minor_units=150000)

        assert result.success is False
        assert result.error_code == "GatewayUnavailable"
        assert result.data["status"] == RefundStatus.FAILED
        assert result.data["gateway_refund_ref"] is None
        assert result.data["refund_id"] is not None

        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.status == RefundStatus.FAILED
        assert record.error_code == "GatewayUnavailable"
        assert record.gateway_refund_ref is None
        assert "timed out" in record.error_message

    def test_unexpected_exception_leaves_failed_record(self, gateway_payment, fake_gateway):
        fake_gateway.refund_error = RuntimeError("worker interrupted")

        result = refund(amount_minor_units=1000)

        assert result.error_code == "GatewayUnavailable"
        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.status == RefundStatus.FAILED
        assert "worker interrupted" in record.error_message

    def test_gateway_rejection_is_recorded(self, gateway_payment, fake_gateway):
        fake_gateway.refund_outcome = RefundOutcome(
            success=False,
            gateway_refund_ref="rfnd_REJECTED",
            gateway_status="failed",
            status=RefundStatus.FAILED,
            error_code="GatewayRejected",
            error_message="Razorpay refund failed",
            raw={"id": "rfnd_REJECTED", "status": "failed"},
        )

        result = refund(amount_minor_units=1000)

        assert result.success is False
        assert result.error_code == "GatewayRejected"
        record = RefundRecord.objects.get(pk=result.data["refund_id"])
        assert record.status == RefundStatus.FAILED
        assert record.gateway_status == "failed"
        assert record.gateway_response == {"id": "rfnd_REJECTED", "status": "failed"}


# =============================================================================
# Sync
# =============================================================================


@pytest.fixture
def processing_record(db):
    return RefundRecordFactory(
        status=RefundStatus.PROCESSING,
        gateway_transaction_ref="pay_ABC123",
        gateway_refund_ref="rfnd_SYNC1",
        refund_amount_minor_units=50000,
    )


@pytest.mark.django_db
class TestSyncStatus:
    def test_sync_completes_processing_record(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_SYNC1", "processed", 50000)
        version = processing_record.version

        result = RefundReconciliationService.sync_status(processing_record.id)

        assert result.success is True
        assert result.data.status == RefundStatus.COMPLETED
        assert result.data.settled_amount_minor_units == 50000
        assert result.data.gateway_status == "processed"
        assert result.data.version == version + 1

    def test_sync_is_idempotent(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_SYNC1", "processed", 50000)
        first = RefundReconciliationService.sync_status(processing_record.id)

        fake_gateway.poll_error = AssertionError("terminal records are not polled")
        second = RefundReconciliationService.sync_status(processing_record.id)

        assert second.success is True
        assert second.data.status == first.data.status
        assert second.data.version == first.data.version

    def test_still_pending_leaves_record_untouched(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_SYNC1", "pending")

        result = RefundReconciliationService.sync_status(processing_record.id)

        assert result.success is True
        assert result.data.status == RefundStatus.PROCESSING
        assert result.data.version == processing_record.version

    def test_gateway_failure_marks_failed(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_SYNC1", "failed")

        result = RefundReconciliationService.sync_status(processing_record.id)

        assert result.data.status == RefundStatus.FAILED
        assert result.data.error_message == "Gateway reported refund failed"

    def test_short_settlement_marks_partial(self, fake_gateway, processing_record):
        fake_gateway.set_poll_status("rfnd_SYNC1", "processed", 20000)

        result = RefundReconciliationService.sync_status(processing_record.id)

        assert result.data.status == RefundStatus.PARTIAL
        assert result.data.settled_amount_minor_units == 20000

    def test_terminal_record_is_never_changed(self, fake_gateway):
        record = RefundRecordFactory(status=RefundStatus.FAILED, gateway_refund_ref="rfnd_OLD")
        fake_gateway.set_poll_status("rfnd_OLD", "processed", 50000)

        result = RefundReconciliationService.sync_status(record.id)

        assert result.success is True
        assert result.data.status == RefundStatus.FAILED

    def test_unacknowledged_record_is_skipped(self, fake_gateway):
        record = RefundRecordFactory(status=RefundStatus.INITIATED)
        fake_gateway.poll_error = AssertionError("no gateway reference to poll")

        result = RefundReconciliationService.sync_status(record.id)

        assert result.success is True
        assert result.data.status == RefundStatus.INITIATED

    def test_unreachable_gateway_keeps_status(self, fake_gateway, processing_record):
        fake_gateway.poll_error = GatewayUnavailableError("timed out", gateway_code="timeout")

        result = RefundReconciliationService.sync_status(processing_record.id)

        assert result.success is False
        assert result.error_code == "GatewayUnavailable"
        assert RefundRecord.objects.get(pk=processing_record.pk).status == RefundStatus.PROCESSING

    def test_unknown_refund(self, fake_gateway):
        result = RefundReconciliationService.sync_status("00000000-0000-0000-0000-000000000000")

        assert result.success is False
        assert result.error_code == "RefundNotFound"


@pytest.mark.django_db
class TestSyncPending:
    def test_summarizes_batch(self, fake_gateway):
        settled = RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref="rfnd_A")
        RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref="rfnd_B")
        RefundRecordFactory(status=RefundStatus.COMPLETED, gateway_refund_ref="rfnd_C")
        RefundRecordFactory(status=RefundStatus.INITIATED)
        fake_gateway.set_poll_status("rfnd_A", "processed", 50000)
        fake_gateway.set_poll_status("rfnd_B", "pending")

        summary = RefundReconciliationService.sync_pending()

        assert summary == {"checked": 2, "updated": 1, "unchanged": 1, "errors": 0}
        assert RefundRecord.objects.get(pk=settled.pk).status == RefundStatus.COMPLETED

    def test_counts_errors(self, fake_gateway):
        RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref="rfnd_A")
        fake_gateway.poll_error = GatewayUnavailableError("down", gateway_code="timeout")

        summary = RefundReconciliationService.sync_pending()

        assert summary == {"checked": 1, "updated": 0, "unchanged": 0, "errors": 1}

    def test_respects_batch_size(self, fake_gateway):
        for ref in ("rfnd_A", "rfnd_B", "rfnd_C"):
            RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref=ref)
            fake_gateway.set_poll_status(ref, "pending")

        summary = RefundReconciliationService.sync_pending(batch_size=2)

        assert summary["checked"] == 2
