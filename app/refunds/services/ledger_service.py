"""
Refund ledger service: the durable record of refund attempts.

RefundRecord rows are the system of record for audit. This service is the
only code path that creates or mutates them:

- create_attempt: insert one record per attempt, in INITIATED
- find_by_transaction: prior attempts for a gateway transaction
- update_status: apply a state-machine transition (illegal ones are
  rejected and logged, never coerced)
- mark_dispatched: stamp an attempt just before its gateway call
- preserve_outcome: keep a gateway outcome that could not be applied
- list_filtered / stats: read-only reporting

Usage:
    from refunds.services import RefundLedgerService

    record = RefundLedgerService.create_attempt(
        gateway=Gateway.RAZORPAY,
        gateway_transaction_ref="pay_ABC123",
        refund_amount_minor_units=150000,
        original_amount_minor_units=150000,
        currency="INR",
        initiated_by="admin@example.com",
    )
    RefundLedgerService.update_status(
        record.id,
        RefundStatus.COMPLETED,
        gateway_refund_ref="rfnd_123",
    )
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

from django.db.models import Count, Q, Sum
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.services import BaseService, ServiceResult

from refunds.exceptions import (
    IllegalTransitionError,
    RefundInFlightError,
    RefundNotFoundError,
)
from refunds.locks import check_version
from refunds.models import RefundRecord
from refunds.models.refund_record import UNAPPLIED_OUTCOME_KEY
from refunds.state_machines import RefundStatus

if TYPE_CHECKING:
    from django.db.models import QuerySet


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class RefundLedgerService(BaseService):
    """
    Service for reading and writing refund ledger records.

    All methods are class methods - no instance state is maintained.
    Transitions go through the django-fsm methods on RefundRecord, which
    are the single definition of the state machine.
    """

    # =========================================================================
    # Writes
    # =========================================================================

    @classmethod
    def create_attempt(cls, **fields: Any) -> RefundRecord:
        """
        Insert a new attempt in INITIATED.

        Must be called before the gateway refund call is dispatched so the
        attempt exists even if the process dies during the call.
        """
        fields.pop("status", None)
        record = RefundRecord.objects.create(**fields)

        cls.get_logger().info(
            "Refund attempt recorded",
            extra={
                "refund_id": str(record.id),
                "gateway": record.gateway,
                "transaction_ref": record.gateway_transaction_ref,
                "amount_minor_units": record.refund_amount_minor_units,
                "currency": record.currency,
                "initiated_by": record.initiated_by,
            },
        )
        return record

    @classmethod
    def update_status(
        cls,
        refund_id: uuid.UUID | str,
        status: str,
        expected_version: int | None = None,
        **fields: Any,
    ) -> RefundRecord:
        """
        Move a record to ``status`` and persist the accompanying fields.

        Args:
            refund_id: RefundRecord id
            status: Target RefundStatus
            expected_version: If given, reject the update when the record
                changed since the caller read it
            **fields: Transition arguments, e.g. gateway_refund_ref,
                gateway_status, settled_amount_minor_units, gateway_response,
                error_code, error_message, note

        Raises:
            RefundNotFoundError: No such record
            IllegalTransitionError: The state machine forbids the transition
            RefundInFlightError: Cancellation of an already dispatched attempt
            StaleRecordError: expected_version no longer matches
        """
        logger = cls.get_logger()

        with cls.atomic():
            if expected_version is not None:
                record = check_version(RefundRecord, refund_id, expected_version)
            else:
                record = RefundRecord.objects.select_for_update().filter(pk=refund_id).first()
                if record is None:
                    raise RefundNotFoundError(
                        f"Refund {refund_id} not found",
                        details={"refund_id": str(refund_id)},
                    )

            current_status = record.status
            try:
                cls._apply_transition(record, status, fields)
            except TransitionNotAllowed as e:
                logger.error(
                    "Illegal refund state transition rejected",
                    extra={
                        "refund_id": str(refund_id),
                        "current_status": current_status,
                        "target_status": status,
                    },
                )
                raise IllegalTransitionError(
                    f"Cannot move refund {refund_id} from {current_status} to {status}",
                    details={
                        "refund_id": str(refund_id),
                        "current_status": current_status,
                        "target_status": status,
                    },
                ) from e
            record.save()

        logger.info(
            "Refund status updated",
            extra={
                "refund_id": str(refund_id),
                "from_status": current_status,
                "to_status": record.status,
                "gateway_refund_ref": record.gateway_refund_ref,
            },
        )
        return record

    @staticmethod
    def _apply_transition(record: RefundRecord, status: str, fields: dict[str, Any]) -> None:
        gateway_kwargs = {
            "gateway_status": fields.get("gateway_status"),
            "gateway_response": fields.get("gateway_response"),
        }
        if status == RefundStatus.PROCESSING:
            record.mark_processing(
                gateway_refund_ref=fields.get("gateway_refund_ref"),
                **gateway_kwargs,
            )
        elif status == RefundStatus.COMPLETED:
            record.complete(
                gateway_refund_ref=fields.get("gateway_refund_ref"),
                settled_amount_minor_units=fields.get("settled_amount_minor_units"),
                **gateway_kwargs,
            )
        elif status == RefundStatus.PARTIAL:
            record.settle_partial(
                settled_amount_minor_units=fields["settled_amount_minor_units"],
                gateway_refund_ref=fields.get("gateway_refund_ref"),
                **gateway_kwargs,
            )
        elif status == RefundStatus.FAILED:
            record.fail(
                error_code=fields.get("error_code") or "RefundError",
                error_message=fields.get("error_message") or "Refund failed",
                **gateway_kwargs,
            )
        elif status == RefundStatus.CANCELLED:
            if record.status == RefundStatus.INITIATED and record.dispatched_at is not None:
                raise RefundInFlightError(
                    f"Refund {record.id} was already sent to the gateway",
                    details={
                        "refund_id": str(record.id),
                        "dispatched_at": record.dispatched_at.isoformat(),
                    },
                )
            record.cancel(note=fields.get("note"))
        else:
            # Nothing transitions back into INITIATED
            raise TransitionNotAllowed(f"No transition into {status}")

    @classmethod
    def cancel(
        cls,
        refund_id: uuid.UUID | str,
        actor: str,
        note: str | None = None,
    ) -> ServiceResult[RefundRecord]:
        """
        Administratively abandon an attempt the gateway never acknowledged.

        Refused with RefundInFlight once the gateway call was dispatched.
        """
        cancel_note = f"Cancelled by {actor}" + (f": {note}" if note else "")
        try:
            record = cls.update_status(refund_id, RefundStatus.CANCELLED, note=cancel_note)
        except (RefundNotFoundError, IllegalTransitionError, RefundInFlightError) as e:
            return ServiceResult.from_exception(e)
        return ServiceResult.success(record)

    @classmethod
    def mark_dispatched(cls, refund_id: uuid.UUID | str) -> RefundRecord | None:
        """
        Stamp dispatched_at on an INITIATED attempt, in its own transaction.

        Returns None when the record has already left INITIATED (for
        example an operator cancelled it), in which case the gateway must
        not be called.
        """
        with cls.atomic():
            record = RefundRecord.objects.select_for_update().filter(pk=refund_id).first()
            if record is None:
                raise RefundNotFoundError(
                    f"Refund {refund_id} not found",
                    details={"refund_id": str(refund_id)},
                )
            if record.status != RefundStatus.INITIATED:
                return None
            record.dispatched_at = timezone.now()
            record.save(update_fields=["dispatched_at", "updated_at"])
        return record

    @classmethod
    def preserve_outcome(cls, refund_id: uuid.UUID | str, snapshot: dict[str, Any]) -> RefundRecord:
        """
        Keep a gateway outcome that could not be applied as a transition.

        The status is left alone; the outcome goes into metadata and the
        record is flagged for review. A successful outcome stored this way
        still counts towards the refunded amount.
        """
        with cls.atomic():
            record = RefundRecord.objects.select_for_update().get(pk=refund_id)
            record.set_meta(UNAPPLIED_OUTCOME_KEY, snapshot, save=False)
            record.set_meta("needs_review", True, save=False)
            record.save(update_fields=["metadata", "updated_at"])
        return record

    # =========================================================================
    # Reads
    # =========================================================================

    @classmethod
    def get_record(cls, refund_id: uuid.UUID | str) -> RefundRecord:
        record = (
            RefundRecord.objects.select_related("linked_local_transaction")
            .filter(pk=refund_id)
            .first()
        )
        if record is None:
            raise RefundNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
        return record

    @classmethod
    def find_by_transaction(cls, gateway: str, gateway_transaction_ref: str) -> list[RefundRecord]:
        """All attempts against a gateway transaction, newest first."""
        return list(RefundRecord.objects.for_transaction(gateway, gateway_transaction_ref))

    @classmethod
    def list_filtered(
        cls,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[RefundRecord], int]:
        """
        Filtered, newest-first page of records plus the total match count.

        Supported filters: status, gateway, initiated_by, search, date_from,
        date_to. Unknown keys are ignored.
        """
        queryset = cls._filtered_queryset(filters or {})
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

        total = queryset.count()
        offset = (page - 1) * page_size
        records = list(
            queryset.select_related("linked_local_transaction")[offset : offset + page_size]
        )
        return records, total

    @classmethod
    def stats(cls, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Counts per status and amount totals per currency.

        Amounts in different currencies are never summed together.
        """
        queryset = cls._filtered_queryset(filters or {}).order_by()

        counts = {
            row["status"]: row["count"]
            for row in queryset.values("status").annotate(count=Count("id"))
        }

        by_currency: dict[str, dict[str, int]] = {}
        rows = queryset.values("currency").annotate(
            count=Count("id"),
            total=Sum("refund_amount_minor_units"),
            completed=Sum(
                "refund_amount_minor_units",
                filter=Q(status=RefundStatus.COMPLETED),
            ),
            settled=Sum("settled_amount_minor_units"),
        )
        for row in rows:
            by_currency[row["currency"]] = {
                "count": row["count"],
                "total_amount_minor_units": row["total"] or 0,
                "completed_amount_minor_units": row["completed"] or 0,
                "settled_amount_minor_units": row["settled"] or 0,
            }

        return {
            "total_refunds": sum(counts.values()),
            "completed_refunds": counts.get(RefundStatus.COMPLETED, 0),
            "failed_refunds": counts.get(RefundStatus.FAILED, 0),
            "processing_refunds": (
                counts.get(RefundStatus.PROCESSING, 0) + counts.get(RefundStatus.INITIATED, 0)
            ),
            "partial_refunds": counts.get(RefundStatus.PARTIAL, 0),
            "cancelled_refunds": counts.get(RefundStatus.CANCELLED, 0),
            "by_currency": by_currency,
        }

    @classmethod
    def _filtered_queryset(cls, filters: dict[str, Any]) -> QuerySet[RefundRecord]:
        queryset = RefundRecord.objects.all()

        if filters.get("status"):
            queryset = queryset.filter(status=filters["status"])
        if filters.get("gateway"):
            queryset = queryset.filter(gateway=filters["gateway"])
        if filters.get("initiated_by"):
            queryset = queryset.filter(initiated_by=filters["initiated_by"])

        search = (filters.get("search") or "").strip()
        if search:
            condition = (
                Q(gateway_transaction_ref__icontains=search)
                | Q(requested_transaction_ref__icontains=search)
                | Q(gateway_refund_ref__icontains=search)
                | Q(customer_email__icontains=search)
                | Q(customer_name__icontains=search)
            )
            try:
                condition |= Q(id=uuid.UUID(search))
            except ValueError:
                pass
            queryset = queryset.filter(condition)

        date_from = filters.get("date_from")
        if date_from:
            queryset = queryset.filter(initiated_at__gte=cls._as_datetime(date_from, time.min))
        date_to = filters.get("date_to")
        if date_to:
            queryset = queryset.filter(initiated_at__lte=cls._as_datetime(date_to, time.max))

        return queryset.order_by("-initiated_at")

    @staticmethod
    def _as_datetime(value: date | datetime, at: time) -> datetime:
        """Dates cover the whole day; naive datetimes use the current timezone."""
        if not isinstance(value, datetime):
            value = datetime.combine(value, at)
        if timezone.is_naive(value):
            value = timezone.make_aware(value)
        return value
