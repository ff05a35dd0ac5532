"""
Refund reconciliation engine.

Orchestrates gateway lookup, eligibility and over-refund checks, refund
initiation and the ledger write, plus the independent Sync operation that
re-polls a gateway to correct local status drift.

Two-Phase Pattern:
    1. Look up the transaction at the gateway (no record on NOT_FOUND)
    2. Under a distributed lock and a row lock on the RefundTarget, check the
       cumulative amount and insert the RefundRecord in INITIATED
    3. Stamp dispatched_at in its own commit (no cancellation after this),
       then call the gateway OUTSIDE the database transaction
    4. Write the outcome unconditionally (a try/finally), so a timeout or
       crash after dispatch still leaves a FAILED record with the error

Usage:
    from refunds.services import RefundReconciliationService

    result = RefundReconciliationService.process_refund(
        gateway=Gateway.RAZORPAY,
        transaction_ref="pay_ABC123",
        amount_minor_units=150000,
        reason="Duplicate charge",
        actor="admin@example.com",
    )
    if result.success:
        print(result.data["refund_id"], result.data["status"])
    else:
        print(result.error_code, result.error)
"""

from __future__ import annotations

import uuid
from typing import Any

from django.conf import settings
from django.utils import timezone

from core.exceptions import BaseApplicationError, ValidationError
from core.services import BaseService, ServiceResult

from refunds.adapters import (
    GatewayAdapter,
    InitiateRefundParams,
    RefundOutcome,
    TransactionLookupResult,
    completed_or_partial,
    get_adapter,
)
from refunds.exceptions import (
    GatewayError,
    IllegalTransitionError,
    LockAcquisitionError,
    OverRefundError,
    RefundError,
    RefundNotFoundError,
    StaleRecordError,
    UnitMismatchError,
)
from refunds.locks import DistributedLock, execute_lock_key
from refunds.models import RefundRecord, RefundTarget
from refunds.money import ensure_minor_units, to_minor_units
from refunds.services.ledger_service import RefundLedgerService
from refunds.state_machines import RefundStatus


# Distributed lock TTL for refund execution (seconds)
REFUND_LOCK_TTL = 120

# Lock acquisition timeout (seconds)
REFUND_LOCK_TIMEOUT = 10.0

DEFAULT_SYNC_BATCH_SIZE = 100


class RefundReconciliationService(BaseService):
    """
    Engine for refund attempts and status reconciliation.

    Safety Guarantees:
        - No RefundRecord is created without a real gateway target
        - Exactly one RefundRecord per attempt that passes validation
        - Cumulative refunds never exceed the original amount: the check and
          the insert happen under a row lock on the gateway transaction
        - The result write after the gateway call always executes
        - Sync never moves a record out of a terminal state
    """

    # Adapter override - injected for testing
    _adapter: type[GatewayAdapter] | None = None

    @classmethod
    def get_adapter(cls, gateway: str) -> type[GatewayAdapter]:
        """Get the adapter class for a gateway."""
        return cls._adapter or get_adapter(gateway)

    @classmethod
    def set_adapter(cls, adapter: type[GatewayAdapter] | None) -> None:
        """Set the adapter class used for every gateway (for testing)."""
        cls._adapter = adapter

    # =========================================================================
    # Lookup
    # =========================================================================

    @classmethod
    def lookup(cls, gateway: str, transaction_ref: str) -> ServiceResult[TransactionLookupResult]:
        """
        Look up a transaction without side effects.

        NOT_FOUND and NOT_IN_GATEWAY are successful lookups; only an
        unreachable or misconfigured gateway is a failure.
        """
        transaction_ref = (transaction_ref or "").strip()
        if not transaction_ref:
            return ServiceResult.failure(
                "Transaction reference is required",
                error_code=ValidationError.default_error_code,
            )
        try:
            adapter = cls.get_adapter(gateway)
            return ServiceResult.success(adapter.lookup(transaction_ref))
        except RefundError as e:
            cls.get_logger().warning(
                "Transaction lookup failed",
                extra={
                    "gateway": gateway,
                    "transaction_ref": transaction_ref,
                    "error_code": e.error_code,
                },
            )
            return ServiceResult.from_exception(e)

    # =========================================================================
    # Refund Processing
    # =========================================================================

    @classmethod
    def process_refund(
        cls,
        gateway: str,
        transaction_ref: str,
        actor: str,
        reason: str = "",
        amount_minor_units: Any = None,
        amount: Any = None,
        admin_notes: str = "",
    ) -> ServiceResult[dict[str, Any]]:
        """
        Look up, validate and refund a gateway transaction.

        Args:
            gateway: Gateway name
            transaction_ref: Capture/order/payment id as entered
            actor: Identifier of the operator (audit)
            reason: Reason for the refund, sent to the gateway as a note
            amount_minor_units: Amount in minor units (None = full remaining)
            amount: Amount in major units, alternative to amount_minor_units
            admin_notes: Internal notes stored on the record

        Returns:
            ServiceResult whose data is
            {success, refund_id, gateway_refund_ref, status, error, error_code}.
            Failures before a record exists carry refund_id=None.
        """
        logger = cls.get_logger()
        transaction_ref = (transaction_ref or "").strip()
        log_context = {
            "gateway": gateway,
            "transaction_ref": transaction_ref,
            "amount_minor_units": amount_minor_units,
            "actor": actor,
        }
        logger.info("Starting refund processing", extra=log_context)

        if not transaction_ref or not actor:
            return cls._rejected(
                ValidationError("Transaction reference and actor are required")
            )

        # Step 1: Lookup (no record is created for a missing gateway target)
        lookup_result = cls.lookup(gateway, transaction_ref)
        if not lookup_result.success:
            return cls._rejected_result(lookup_result.error, lookup_result.error_code)
        lookup = lookup_result.data

        if not lookup.exists_at_gateway:
            logger.warning(
                "Refund aborted - transaction not found at gateway",
                extra={**log_context, "lookup_status": lookup.status},
            )
            return cls._rejected_result(lookup.message, "NotFoundAtGateway")

        if not lookup.can_refund:
            if lookup.refundable_minor_units == 0:
                # Already fully refunded at the gateway
                return cls._rejected(
                    OverRefundError(
                        f"Transaction {transaction_ref} has already been fully refunded",
                        details={"original_minor_units": lookup.amount_minor_units},
                    )
                )
            return cls._rejected_result(lookup.message, "RefundNotAllowed")

        # Step 2: Normalize the requested amount before any gateway call
        try:
            requested = cls._resolve_amount(lookup, amount_minor_units, amount)
        except (UnitMismatchError, ValidationError) as e:
            logger.warning(
                "Refund amount rejected",
                extra={**log_context, "error_code": e.error_code},
            )
            return cls._rejected(e)

        # Step 3: Reserve the attempt under the lock
        lock_key = execute_lock_key(gateway, lookup.resolved_ref)
        try:
            with DistributedLock(
                lock_key,
                ttl=getattr(settings, "REFUND_LOCK_TTL_SECONDS", REFUND_LOCK_TTL),
                timeout=getattr(settings, "REFUND_LOCK_TIMEOUT_SECONDS", REFUND_LOCK_TIMEOUT),
            ):
                try:
                    record = cls._reserve_attempt(
                        lookup=lookup,
                        requested=requested,
                        actor=actor,
                        reason=reason,
                        admin_notes=admin_notes,
                    )
                except (OverRefundError, UnitMismatchError) as e:
                    logger.warning(
                        "Refund rejected before gateway call",
                        extra={**log_context, "error_code": e.error_code},
                    )
                    return cls._rejected(e)

                # Step 4: Gateway call and unconditional result write
                return cls._dispatch(cls.get_adapter(gateway), record, reason)
        except LockAcquisitionError as e:
            logger.warning(
                "Failed to acquire lock for refund execution",
                extra={**log_context, "error": str(e)},
            )
            return cls._rejected(e)

    @classmethod
    def _resolve_amount(
        cls,
        lookup: TransactionLookupResult,
        amount_minor_units: Any,
        amount: Any,
    ) -> int | None:
        """Requested amount in minor units, or None for the full remainder."""
        if amount_minor_units is not None and amount is not None:
            raise ValidationError("Provide amount_minor_units or amount, not both")
        if amount_minor_units is not None:
            requested = ensure_minor_units(amount_minor_units, lookup.currency)
        elif amount is not None:
            requested = to_minor_units(amount, lookup.currency)
        else:
            return None
        if requested <= 0:
            raise ValidationError(
                "Refund amount must be positive",
                details={"amount_minor_units": requested},
            )
        return requested

    @classmethod
    def _reserve_attempt(
        cls,
        lookup: TransactionLookupResult,
        requested: int | None,
        actor: str,
        reason: str,
        admin_notes: str,
    ) -> RefundRecord:
        """
        Check the cumulative amount and insert the record, atomically.

        The RefundTarget row lock serializes concurrent attempts against the
        same transaction across processes and database connections.

        Raises:
            OverRefundError: Requested amount exceeds what remains
            UnitMismatchError: Currency differs from earlier attempts
        """
        original = lookup.amount_minor_units

        with cls.atomic():
            target, _ = RefundTarget.objects.get_or_create(
                gateway=lookup.gateway,
                transaction_ref=lookup.resolved_ref,
                defaults={
                    "original_amount_minor_units": original,
                    "currency": lookup.currency,
                },
            )
            target = RefundTarget.objects.select_for_update().get(pk=target.pk)

            if target.currency != lookup.currency:
                raise UnitMismatchError(
                    f"Currency {lookup.currency} differs from earlier attempts "
                    f"({target.currency})",
                    details={"currency": lookup.currency, "recorded_currency": target.currency},
                )

            committed = RefundRecord.objects.for_transaction(
                lookup.gateway, lookup.resolved_ref
            ).committed_amount_minor_units()
            remaining = original - committed
            gateway_refundable = lookup.refundable_minor_units
            if gateway_refundable is not None:
                remaining = min(remaining, gateway_refundable)

            amount = remaining if requested is None else requested
            if amount <= 0 or amount > remaining:
                raise OverRefundError(
                    f"Refund of {amount} would exceed the refundable amount "
                    f"({max(remaining, 0)} of {original} {lookup.currency})",
                    details={
                        "requested_minor_units": amount,
                        "original_minor_units": original,
                        "committed_minor_units": committed,
                        "remaining_minor_units": max(remaining, 0),
                    },
                )

            local = lookup.local_transaction
            return RefundLedgerService.create_attempt(
                gateway=lookup.gateway,
                gateway_transaction_ref=lookup.resolved_ref,
                requested_transaction_ref=lookup.transaction_ref,
                transaction_ref_type=lookup.ref_type,
                refund_amount_minor_units=amount,
                original_amount_minor_units=original,
                currency=lookup.currency,
                initiated_by=actor,
                reason=reason or "",
                admin_notes=admin_notes or "",
                linked_local_transaction=local,
                customer_name=lookup.customer_name,
                customer_email=lookup.customer_email,
                customer_mobile=lookup.customer_mobile,
                original_transaction_data=lookup.to_dict(),
                metadata={"lookup_status": lookup.status},
            )

    @classmethod
    def _dispatch(
        cls,
        adapter: type[GatewayAdapter],
        record: RefundRecord,
        reason: str,
    ) -> ServiceResult[dict[str, Any]]:
        """Call the gateway and persist whatever happened."""
        logger = cls.get_logger()
        log_context = {
            "refund_id": str(record.id),
            "gateway": record.gateway,
            "transaction_ref": record.gateway_transaction_ref,
            "amount_minor_units": record.refund_amount_minor_units,
        }
        dispatched = RefundLedgerService.mark_dispatched(record.id)
        if dispatched is None:
            current = RefundLedgerService.get_record(record.id)
            logger.warning(
                "Refund left INITIATED before dispatch, gateway not called",
                extra={**log_context, "status": current.status},
            )
            message = f"Refund {record.id} is {current.status}; the gateway was not called"
            return ServiceResult.failure(
                message,
                error_code="IllegalTransition",
                data={
                    **cls._response(current),
                    "success": False,
                    "error": message,
                    "error_code": "IllegalTransition",
                },
            )
        record = dispatched

        logger.info("Calling gateway to initiate refund", extra=log_context)

        outcome: RefundOutcome | None = None
        error: Exception | None = None
        try:
            outcome = adapter.initiate_refund(
                InitiateRefundParams(
                    transaction_ref=record.gateway_transaction_ref,
                    amount_minor_units=record.refund_amount_minor_units,
                    currency=record.currency,
                    refund_id=record.id,
                    note=reason,
                )
            )
        except Exception as e:
            error = e
            logger.error(
                f"Gateway refund call failed: {type(e).__name__}",
                extra={**log_context, "error": str(e)},
                exc_info=not isinstance(e, GatewayError),
            )
        finally:
            record, applied = cls._write_outcome(record, outcome, error)

        if not applied:
            message = (
                f"Gateway outcome could not be applied to refund {record.id} "
                f"({record.status}); flagged for review"
            )
            return ServiceResult.failure(
                message,
                error_code="IllegalTransition",
                data={
                    **cls._response(record),
                    "success": False,
                    "error": message,
                    "error_code": "IllegalTransition",
                },
            )
        if record.status == RefundStatus.FAILED:
            return ServiceResult.failure(
                record.error_message,
                error_code=record.error_code,
                data=cls._response(record),
            )
        return ServiceResult.success(cls._response(record))

    @classmethod
    def _write_outcome(
        cls,
        record: RefundRecord,
        outcome: RefundOutcome | None,
        error: Exception | None,
    ) -> tuple[RefundRecord, bool]:
        """
        Apply the gateway result, or keep it on the record when the record
        has already moved to a state the result cannot follow.

        Returns the record and whether the result was applied as a transition.
        """
        try:
            return cls._record_outcome(record, outcome, error), True
        except (IllegalTransitionError, StaleRecordError) as e:
            cls.get_logger().error(
                "Gateway outcome could not be applied to refund record",
                extra={
                    "refund_id": str(record.id),
                    "gateway": record.gateway,
                    "transaction_ref": record.gateway_transaction_ref,
                    "gateway_refund_ref": outcome.gateway_refund_ref if outcome else None,
                    "error": str(e),
                },
            )
            snapshot = cls._outcome_snapshot(outcome, error)
            snapshot["apply_error"] = e.message
            return RefundLedgerService.preserve_outcome(record.id, snapshot), False

    @staticmethod
    def _outcome_snapshot(
        outcome: RefundOutcome | None,
        error: Exception | None,
    ) -> dict[str, Any]:
        snapshot: dict[str, Any] = {"recorded_at": timezone.now().isoformat()}
        if outcome is None:
            snapshot.update(success=False, error=str(error or "interrupted"))
            return snapshot
        snapshot.update(
            success=outcome.success,
            status=outcome.status,
            gateway_refund_ref=outcome.gateway_refund_ref,
            gateway_status=outcome.gateway_status,
            settled_amount_minor_units=outcome.settled_amount_minor_units,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            raw=outcome.raw,
        )
        return snapshot

    @classmethod
    def _record_outcome(
        cls,
        record: RefundRecord,
        outcome: RefundOutcome | None,
        error: Exception | None,
    ) -> RefundRecord:
        """
        Persist the result of the gateway call.

        With no outcome (exception, timeout or interruption) the attempt is
        FAILED: an unresolved call is treated as a failure until a later
        Sync or manual review proves otherwise.
        """
        if outcome is None:
            if isinstance(error, BaseApplicationError):
                error_code, error_message = error.error_code, error.message
            else:
                error_code = "GatewayUnavailable"
                error_message = f"Gateway call did not complete: {error or 'interrupted'}"
            return RefundLedgerService.update_status(
                record.id,
                RefundStatus.FAILED,
                error_code=error_code,
                error_message=error_message,
            )

        if not outcome.success:
            return RefundLedgerService.update_status(
                record.id,
                RefundStatus.FAILED,
                error_code=outcome.error_code or "GatewayRejected",
                error_message=outcome.error_message or "Gateway rejected the refund",
                gateway_status=outcome.gateway_status,
                gateway_response=outcome.raw,
            )

        status = completed_or_partial(
            outcome.status or RefundStatus.PROCESSING,
            record.refund_amount_minor_units,
            outcome.settled_amount_minor_units,
        )
        return RefundLedgerService.update_status(
            record.id,
            status,
            gateway_refund_ref=outcome.gateway_refund_ref,
            gateway_status=outcome.gateway_status,
            settled_amount_minor_units=outcome.settled_amount_minor_units,
            gateway_response=outcome.raw,
        )

    @staticmethod
    def _response(
        record: RefundRecord | None,
        error: str | None = None,
        error_code: str | None = None,
    ) -> dict[str, Any]:
        if record is None:
            return {
                "success": False,
                "refund_id": None,
                "gateway_refund_ref": None,
                "status": None,
                "error": error,
                "error_code": error_code,
            }
        failed = record.status == RefundStatus.FAILED
        return {
            "success": not failed,
            "refund_id": str(record.id),
            "gateway_refund_ref": record.gateway_refund_ref,
            "status": record.status,
            "error": record.error_message or None,
            "error_code": record.error_code or None,
        }

    @classmethod
    def _rejected(cls, exc: BaseApplicationError) -> ServiceResult[dict[str, Any]]:
        return cls._rejected_result(exc.message, exc.error_code)

    @classmethod
    def _rejected_result(
        cls,
        error: str | None,
        error_code: str | None,
    ) -> ServiceResult[dict[str, Any]]:
        return ServiceResult.failure(
            error or "Refund rejected",
            error_code=error_code,
            data=cls._response(None, error=error, error_code=error_code),
        )

    # =========================================================================
    # Sync
    # =========================================================================

    @classmethod
    def sync_status(cls, refund_id: uuid.UUID | str) -> ServiceResult[RefundRecord]:
        """
        Re-poll the gateway and correct local status drift.

        No-op for terminal records and for records the gateway never
        acknowledged. Only moves PROCESSING records into a terminal state;
        a refund still pending at the gateway is left untouched.
        """
        logger = cls.get_logger()

        try:
            record = RefundLedgerService.get_record(refund_id)
        except RefundNotFoundError as e:
            return ServiceResult.from_exception(e)

        log_context = {
            "refund_id": str(record.id),
            "gateway": record.gateway,
            "gateway_refund_ref": record.gateway_refund_ref,
            "status": record.status,
        }

        if record.is_terminal:
            logger.debug("Sync skipped - record is terminal", extra=log_context)
            return ServiceResult.success(record)

        if not record.gateway_refund_ref:
            logger.info("Sync skipped - no gateway acknowledgment yet", extra=log_context)
            return ServiceResult.success(record)

        try:
            result = cls.get_adapter(record.gateway).poll_status(record.gateway_refund_ref)
        except RefundError as e:
            logger.warning(
                "Sync poll failed",
                extra={**log_context, "error_code": e.error_code},
            )
            return ServiceResult.from_exception(e)

        status = completed_or_partial(
            result.status,
            record.refund_amount_minor_units,
            result.settled_amount_minor_units,
        )
        if status not in RefundStatus.terminal():
            logger.info(
                "Sync found refund still pending at gateway",
                extra={**log_context, "gateway_status": result.gateway_status},
            )
            return ServiceResult.success(record)

        try:
            record = RefundLedgerService.update_status(
                record.id,
                status,
                expected_version=record.version,
                gateway_status=result.gateway_status,
                settled_amount_minor_units=result.settled_amount_minor_units,
                gateway_response=result.raw,
                error_code=result.error_code,
                error_message=f"Gateway reported refund {result.gateway_status}",
            )
        except StaleRecordError:
            # A concurrent sync already applied the change
            current = RefundLedgerService.get_record(refund_id)
            if current.is_terminal:
                return ServiceResult.success(current)
            return ServiceResult.failure(
                "Refund changed during sync; retry",
                error_code=StaleRecordError.default_error_code,
                data=current,
            )
        except IllegalTransitionError as e:
            return ServiceResult.from_exception(e)

        logger.info(
            "Sync corrected refund status",
            extra={**log_context, "new_status": record.status},
        )
        return ServiceResult.success(record)

    @classmethod
    def sync_pending(cls, batch_size: int | None = None) -> dict[str, int]:
        """
        Sync every acknowledged, unsettled refund, oldest first.

        Returns:
            Counts: checked, updated, unchanged, errors
        """
        batch_size = batch_size or getattr(
            settings, "REFUND_SYNC_BATCH_SIZE", DEFAULT_SYNC_BATCH_SIZE
        )
        refund_ids = list(
            RefundRecord.objects.filter(
                status=RefundStatus.PROCESSING,
                gateway_refund_ref__isnull=False,
            )
            .order_by("initiated_at")
            .values_list("id", flat=True)[:batch_size]
        )

        summary = {"checked": 0, "updated": 0, "unchanged": 0, "errors": 0}
        for refund_id in refund_ids:
            summary["checked"] += 1
            result = cls.sync_status(refund_id)
            if not result.success:
                summary["errors"] += 1
            elif result.data.status != RefundStatus.PROCESSING:
                summary["updated"] += 1
            else:
                summary["unchanged"] += 1

        cls.get_logger().info("Pending refund sync finished", extra=summary)
        return summary

