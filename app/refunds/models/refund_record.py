"""
RefundRecord model: the refund ledger.

A RefundRecord is created once per refund attempt, before the gateway is
called, and is never deleted. Its status only moves forward through the
django-fsm transitions below; a terminal record is never changed again.

Usage:
    from refunds.models import RefundRecord
    from refunds.state_machines import RefundStatus

    record = RefundRecord.objects.create(
        gateway=Gateway.RAZORPAY,
        gateway_transaction_ref="pay_ABC123",
        refund_amount_minor_units=150000,
        original_amount_minor_units=150000,
        currency="INR",
        initiated_by="admin@example.com",
        reason="Duplicate charge",
    )

    # Gateway acknowledged the refund asynchronously
    record.mark_processing(gateway_refund_ref="rfnd_123", gateway_status="pending")
    record.save()

    # Later, Sync sees the gateway settled it
    record.complete(gateway_status="processed")
    record.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from refunds.exceptions import IllegalTransitionError
from refunds.state_machines import Gateway, RefundStatus, TransactionRefType

# Fields that may not change once they hold a value
IMMUTABLE_FIELDS = ("gateway", "gateway_transaction_ref", "gateway_refund_ref")

# Metadata key holding a gateway outcome that arrived after the record moved on
UNAPPLIED_OUTCOME_KEY = "unapplied_gateway_outcome"


def never_dispatched(record: RefundRecord) -> bool:
    return record.dispatched_at is None


class RefundRecordQuerySet(models.QuerySet):
    """QuerySet helpers used by the ledger and the engine."""

    def for_transaction(self, gateway: str, transaction_ref: str) -> RefundRecordQuerySet:
        """All attempts against one gateway transaction."""
        return self.filter(gateway=gateway, gateway_transaction_ref=transaction_ref)

    def in_flight(self) -> RefundRecordQuerySet:
        """Records whose gateway outcome is not yet known."""
        return self.filter(status__in=RefundStatus.in_flight())

    def committed_amount_minor_units(self) -> int:
        """
        Amount already refunded or reserved by these records.

        Initiated, processing and completed records count at their requested
        amount; partial records count at what the gateway actually settled.
        Failed and cancelled attempts are excluded unless a successful gateway
        outcome was recorded against them after they moved on.
        """
        totals = self.aggregate(
            reserved=Sum(
                "refund_amount_minor_units",
                filter=Q(
                    status__in=[
                        RefundStatus.INITIATED,
                        RefundStatus.PROCESSING,
                        RefundStatus.COMPLETED,
                    ]
                ),
            ),
            partial=Sum(
                Coalesce("settled_amount_minor_units", "refund_amount_minor_units"),
                filter=Q(status=RefundStatus.PARTIAL),
            ),
            unapplied=Sum(
                "refund_amount_minor_units",
                filter=Q(status__in=[RefundStatus.FAILED, RefundStatus.CANCELLED])
                & Q(**{f"metadata__{UNAPPLIED_OUTCOME_KEY}__success": True}),
            ),
        )
        return sum(value or 0 for value in totals.values())


class RefundRecord(UUIDPrimaryKeyMixin, MetadataMixin, VersionedMixin, BaseModel):
    """
    One refund attempt against a gateway transaction.

    State Flow:
        INITIATED -> PROCESSING -> COMPLETED / FAILED / PARTIAL
        INITIATED -> COMPLETED / FAILED / PARTIAL
        INITIATED -> CANCELLED

    Fields:
        id: Refund identifier (exposed as refund_id)
        gateway: Gateway holding the transaction (immutable)
        gateway_transaction_ref: Resolved transaction id used to address the gateway
        requested_transaction_ref: Identifier the operator entered
        transaction_ref_type: Kind of identifier the lookup resolved
        gateway_refund_ref: Gateway refund id, set on acknowledgment (immutable)
        refund_amount_minor_units: Requested refund amount
        original_amount_minor_units: Amount originally charged
        settled_amount_minor_units: Amount the gateway reports as settled
        currency: ISO 4217 currency code (upper-case)
        status: Current FSM state
        gateway_status: Raw refund status reported by the gateway
        initiated_by: Actor identifier
        initiated_at / processed_at / completed_at: Lifecycle timestamps
        dispatched_at: Set just before the gateway call; blocks cancellation
        reason / admin_notes: Operator-supplied audit fields
        error_code / error_message: Populated whenever an attempt fails
        linked_local_transaction: Local payment this refund applies to
        customer_*: Customer snapshot at attempt time
        gateway_response: Last raw gateway refund payload
        original_transaction_data: Normalized lookup snapshot at attempt time
    """

    # ==========================================================================
    # Gateway Transaction
    # ==========================================================================

    gateway = models.CharField(
        max_length=20,
        choices=Gateway.choices,
        db_index=True,
        help_text="Gateway holding the transaction (immutable)",
    )

    gateway_transaction_ref = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Resolved gateway transaction identifier used for the refund",
    )

    requested_transaction_ref = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Identifier as entered by the operator (may be an order id)",
    )

    transaction_ref_type = models.CharField(
        max_length=20,
        choices=TransactionRefType.choices,
        default=TransactionRefType.PAYMENT,
        help_text="Kind of gateway identifier the lookup resolved",
    )

    gateway_refund_ref = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway refund identifier, set once the gateway acknowledges",
    )

    # ==========================================================================
    # Amounts (minor units)
    # ==========================================================================

    refund_amount_minor_units = models.PositiveBigIntegerField(
        help_text="Requested refund amount in smallest currency unit",
    )

    original_amount_minor_units = models.PositiveBigIntegerField(
        help_text="Original transaction amount in smallest currency unit",
    )

    settled_amount_minor_units = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount the gateway reports as actually refunded",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (upper-case)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.INITIATED,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    gateway_status = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Raw refund status last reported by the gateway",
    )

    # ==========================================================================
    # Audit
    # ==========================================================================

    initiated_by = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Actor who initiated the refund",
    )

    initiated_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the attempt was recorded",
    )

    dispatched_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway refund call was sent; no cancellation after this",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway call returned",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway confirmed settlement",
    )

    reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason for the refund",
    )

    admin_notes = models.TextField(
        blank=True,
        default="",
        help_text="Internal notes from the operator",
    )

    error_code = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Machine-readable failure code",
    )

    error_message = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable failure reason",
    )

    # ==========================================================================
    # Local Transaction & Customer Snapshot
    # ==========================================================================

    linked_local_transaction = models.ForeignKey(
        "refunds.PaymentTransaction",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refund_records",
        help_text="Local payment record (absent for unrecorded transactions)",
    )

    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_mobile = models.CharField(max_length=32, blank=True, default="")

    # ==========================================================================
    # Raw Gateway Data
    # ==========================================================================

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last raw gateway refund payload",
    )

    original_transaction_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Normalized transaction lookup snapshot at attempt time",
    )

    objects = RefundRecordQuerySet.as_manager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-initiated_at"]
        verbose_name = "Refund Record"
        verbose_name_plural = "Refund Records"
        indexes = [
            models.Index(
                fields=["gateway", "gateway_transaction_ref"],
                name="refunds_ref_gateway_3c9a71_idx",
            ),
            models.Index(
                fields=["status", "initiated_at"],
                name="refunds_ref_status_8d2f40_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(refund_amount_minor_units__gt=0),
                name="refund_record_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount_minor_units__lte=F("original_amount_minor_units")),
                name="refund_record_amount_within_original",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"RefundRecord({self.id}, {self.gateway}, {self.status}, "
            f"{self.refund_amount_minor_units} {self.currency})"
        )

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._remember_immutable_values()
        return instance

    def _remember_immutable_values(self) -> None:
        loaded = self.__dict__
        self._immutable_values = {
            name: loaded[name] for name in IMMUTABLE_FIELDS if name in loaded
        }

    def save(self, *args, **kwargs):
        """Save, refusing to rewrite identifiers that are already set."""
        for name, original in getattr(self, "_immutable_values", {}).items():
            current = getattr(self, name)
            if original not in (None, "") and current != original:
                raise IllegalTransitionError(
                    f"RefundRecord.{name} is immutable once set",
                    details={
                        "refund_id": str(self.id),
                        "field": name,
                        "current": original,
                        "attempted": current,
                    },
                )
        super().save(*args, **kwargs)
        self._remember_immutable_values()

    @property
    def refund_id(self):
        return self.id

    @property
    def is_terminal(self) -> bool:
        return self.status in RefundStatus.terminal()

    def _record_acknowledgment(
        self,
        gateway_refund_ref: str | None,
        gateway_status: str | None,
        gateway_response: dict | None,
    ) -> None:
        if gateway_refund_ref:
            self.gateway_refund_ref = gateway_refund_ref
        if gateway_status is not None:
            self.gateway_status = gateway_status
        if gateway_response is not None:
            self.gateway_response = gateway_response
        if self.processed_at is None:
            self.processed_at = timezone.now()

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.INITIATED,
        target=RefundStatus.PROCESSING,
    )
    def mark_processing(
        self,
        gateway_refund_ref: str,
        gateway_status: str | None = None,
        gateway_response: dict | None = None,
    ):
        """
        Gateway acknowledged the refund but has not settled it yet.

        Transition: INITIATED -> PROCESSING
        """
        self._record_acknowledgment(gateway_refund_ref, gateway_status, gateway_response)

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.PROCESSING],
        target=RefundStatus.COMPLETED,
    )
    def complete(
        self,
        gateway_refund_ref: str | None = None,
        gateway_status: str | None = None,
        settled_amount_minor_units: int | None = None,
        gateway_response: dict | None = None,
    ):
        """
        Gateway confirmed the full requested amount settled.

        Transition: INITIATED/PROCESSING -> COMPLETED
        """
        self._record_acknowledgment(gateway_refund_ref, gateway_status, gateway_response)
        self.settled_amount_minor_units = (
            settled_amount_minor_units
            if settled_amount_minor_units is not None
            else self.refund_amount_minor_units
        )
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.PROCESSING],
        target=RefundStatus.PARTIAL,
    )
    def settle_partial(
        self,
        settled_amount_minor_units: int,
        gateway_refund_ref: str | None = None,
        gateway_status: str | None = None,
        gateway_response: dict | None = None,
    ):
        """
        Gateway settled less than the requested amount.

        Transition: INITIATED/PROCESSING -> PARTIAL

        Terminal, but flagged for manual review.
        """
        self._record_acknowledgment(gateway_refund_ref, gateway_status, gateway_response)
        self.settled_amount_minor_units = settled_amount_minor_units
        self.completed_at = timezone.now()
        self.set_meta("needs_review", True, save=False)

    @transition(
        field=status,
        source=[RefundStatus.INITIATED, RefundStatus.PROCESSING],
        target=RefundStatus.FAILED,
    )
    def fail(
        self,
        error_code: str,
        error_message: str,
        gateway_status: str | None = None,
        gateway_response: dict | None = None,
    ):
        """
        Gateway rejected the refund or the call errored.

        Transition: INITIATED/PROCESSING -> FAILED
        """
        self.error_code = error_code
        self.error_message = error_message
        if gateway_status is not None:
            self.gateway_status = gateway_status
        if gateway_response is not None:
            self.gateway_response = gateway_response
        if self.processed_at is None:
            self.processed_at = timezone.now()

    @transition(
        field=status,
        source=RefundStatus.INITIATED,
        target=RefundStatus.CANCELLED,
        conditions=[never_dispatched],
    )
    def cancel(self, note: str | None = None):
        """
        Administratively abandon an attempt the gateway never acknowledged.

        Transition: INITIATED -> CANCELLED, only while the gateway call has
        not been dispatched.
        """
        if note:
            self.admin_notes = f"{self.admin_notes}\n{note}".strip()
