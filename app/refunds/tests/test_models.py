"""
Tests for refund models.

Tests cover:
- RefundRecord state machine transitions (django-fsm)
- Terminal states never transition again
- Immutable gateway identifiers
- Optimistic locking version counter
- Committed amount aggregation
- PaymentTransaction matching by any gateway identifier
"""

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed
from freezegun import freeze_time

from refunds.exceptions import IllegalTransitionError
from refunds.models import PaymentTransaction, RefundRecord
from refunds.state_machines import Gateway, RefundStatus
from refunds.tests.factories import PaymentTransactionFactory, RefundRecordFactory


def get_fresh_record(refund_id) -> RefundRecord:
    """
    Get a fresh RefundRecord from the database.

    django-fsm's protected FSMField doesn't allow refresh_from_db(), so
    a new instance is loaded instead.
    """
    return RefundRecord.objects.get(id=refund_id)


@pytest.mark.django_db
class TestRefundRecordTransitions:
    def test_new_record_is_initiated(self):
        record = RefundRecordFactory()

        assert record.status == RefundStatus.INITIATED
        assert record.gateway_refund_ref is None
        assert record.version == 1
        assert not record.is_terminal

    def test_mark_processing_records_acknowledgment(self):
        record = RefundRecordFactory()

        record.mark_processing(gateway_refund_ref="rfnd_1", gateway_status="pending")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.PROCESSING
        assert fresh.gateway_refund_ref == "rfnd_1"
        assert fresh.gateway_status == "pending"
        assert fresh.processed_at is not None
        assert fresh.completed_at is None

    @freeze_time("2026-03-01 10:00:00")
    def test_complete_defaults_settled_amount(self):
        record = RefundRecordFactory(refund_amount_minor_units=50000)

        record.complete(gateway_refund_ref="rfnd_2", gateway_status="processed")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.COMPLETED
        assert fresh.settled_amount_minor_units == 50000
        assert fresh.completed_at.isoformat() == "2026-03-01T10:00:00+00:00"
        assert fresh.is_terminal

    def test_processing_to_completed(self):
        record = RefundRecordFactory()
        record.mark_processing(gateway_refund_ref="rfnd_3")
        record.save()

        record = get_fresh_record(record.id)
        record.complete(gateway_status="processed")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.COMPLETED
        assert fresh.gateway_refund_ref == "rfnd_3"

    def test_settle_partial_flags_for_review(self):
        record = RefundRecordFactory(refund_amount_minor_units=50000)

        record.settle_partial(settled_amount_minor_units=20000, gateway_refund_ref="rfnd_4")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.PARTIAL
        assert fresh.settled_amount_minor_units == 20000
        assert fresh.metadata["needs_review"] is True

    def test_fail_captures_error(self):
        record = RefundRecordFactory()

        record.fail(error_code="GatewayUnavailable", error_message="Timed out")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.FAILED
        assert fresh.error_code == "GatewayUnavailable"
        assert fresh.error_message == "Timed out"
        assert fresh.gateway_refund_ref is None

    def test_cancel_appends_note(self):
        record = RefundRecordFactory(admin_notes="Checked with customer")

        record.cancel(note="Cancelled by ops@example.com")
        record.save()

        fresh = get_fresh_record(record.id)
        assert fresh.status == RefundStatus.CANCELLED
        assert fresh.admin_notes == "Checked with customer\nCancelled by ops@example.com"

    def test_cannot_cancel_after_acknowledgment(self):
        record = RefundRecordFactory()
        record.mark_processing(gateway_refund_ref="rfnd_5")
        record.save()

        with pytest.raises(TransitionNotAllowed):
            record.cancel()

    def test_cannot_cancel_once_dispatched(self):
        record = RefundRecordFactory(dispatched_at=timezone.now())

        with pytest.raises(TransitionNotAllowed):
            record.cancel()

        assert get_fresh_record(record.id).status == RefundStatus.INITIATED

    @pytest.mark.parametrize(
        "terminal_status",
        [
            RefundStatus.COMPLETED,
            RefundStatus.FAILED,
            RefundStatus.PARTIAL,
            RefundStatus.CANCELLED,
        ],
    )
    def test_terminal_states_are_final(self, terminal_status):
        record = RefundRecordFactory(status=terminal_status)

        with pytest.raises(TransitionNotAllowed):
            record.mark_processing(gateway_refund_ref="rfnd_x")
        with pytest.raises(TransitionNotAllowed):
            record.complete()
        with pytest.raises(TransitionNotAllowed):
            record.fail(error_code="X", error_message="x")

    def test_status_cannot_be_assigned_directly(self):
        record = RefundRecordFactory()

        with pytest.raises(AttributeError):
            record.status = RefundStatus.COMPLETED


@pytest.mark.django_db
class TestRefundRecordIntegrity:
    def test_gateway_refund_ref_is_immutable(self):
        record = RefundRecordFactory()
        record.mark_processing(gateway_refund_ref="rfnd_original")
        record.save()

        record = get_fresh_record(record.id)
        record.gateway_refund_ref = "rfnd_other"

        with pytest.raises(IllegalTransitionError, match="immutable"):
            record.save()

    def test_gateway_is_immutable(self):
        record = get_fresh_record(RefundRecordFactory().id)
        record.gateway = Gateway.PAYPAL

        with pytest.raises(IllegalTransitionError):
            record.save()

    def test_version_increments_on_save(self):
        record = RefundRecordFactory()
        record.mark_processing(gateway_refund_ref="rfnd_v")
        record.save()

        assert record.version == 2
        assert get_fresh_record(record.id).version == 2

    def test_amount_cannot_exceed_original(self):
        with pytest.raises(IntegrityError):
            RefundRecordFactory(
                refund_amount_minor_units=150001,
                original_amount_minor_units=150000,
            )

    def test_refund_id_alias(self):
        record = RefundRecordFactory()

        assert record.refund_id == record.id


@pytest.mark.django_db
class TestCommittedAmount:
    def test_counts_reserved_and_settled_amounts(self):
        ref = "pay_COMMIT1"
        RefundRecordFactory(gateway_transaction_ref=ref, refund_amount_minor_units=10000)
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=20000,
            status=RefundStatus.COMPLETED,
        )
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=30000,
            settled_amount_minor_units=5000,
            status=RefundStatus.PARTIAL,
        )
        # Failed and cancelled attempts moved no money
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=40000,
            status=RefundStatus.FAILED,
        )
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=40000,
            status=RefundStatus.CANCELLED,
        )
        # Another transaction
        RefundRecordFactory(gateway_transaction_ref="pay_OTHER", refund_amount_minor_units=999)

        committed = RefundRecord.objects.for_transaction(
            Gateway.RAZORPAY, ref
        ).committed_amount_minor_units()

        assert committed == 10000 + 20000 + 5000

    def test_no_records(self, db):
        assert (
            RefundRecord.objects.for_transaction(Gateway.RAZORPAY, "pay_NONE")
            .committed_amount_minor_units()
            == 0
        )

    def test_counts_successful_outcomes_kept_for_review(self):
        ref = "pay_LATE1"
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=25000,
            status=RefundStatus.CANCELLED,
            metadata={"unapplied_gateway_outcome": {"success": True}},
        )
        RefundRecordFactory(
            gateway_transaction_ref=ref,
            refund_amount_minor_units=40000,
            status=RefundStatus.FAILED,
            metadata={"unapplied_gateway_outcome": {"success": False}},
        )

        committed = RefundRecord.objects.for_transaction(
            Gateway.RAZORPAY, ref
        ).committed_amount_minor_units()

        assert committed == 25000

    def test_in_flight(self):
        RefundRecordFactory(status=RefundStatus.INITIATED)
        RefundRecordFactory(status=RefundStatus.PROCESSING, gateway_refund_ref="rfnd_if")
        RefundRecordFactory(status=RefundStatus.COMPLETED)

        assert RefundRecord.objects.in_flight().count() == 2


@pytest.mark.django_db
class TestPaymentTransactionMatch:
    def test_matches_payment_order_or_transaction_id(self):
        payment = PaymentTransactionFactory(
            payment_id="pay_M1", order_id="order_M1", transaction_id="TXN-M1"
        )

        for ref in ("pay_M1", "order_M1", "TXN-M1"):
            assert PaymentTransaction.objects.match(Gateway.RAZORPAY, ref) == payment

    def test_scoped_to_gateway(self):
        PaymentTransactionFactory(payment_id="pay_M2")

        assert PaymentTransaction.objects.match(Gateway.PAYPAL, "pay_M2") is None

    def test_ignores_empty_refs(self):
        PaymentTransactionFactory(order_id="")

        assert PaymentTransaction.objects.match(Gateway.RAZORPAY, "", None) is None
