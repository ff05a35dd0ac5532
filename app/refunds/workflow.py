"""
Refund workflow controller.

A four-step linear sequence driven by the admin console:

    SELECT_GATEWAY -> LOOKUP -> CONFIRM -> RESULT

The controller holds presentation state only (selected gateway, the entered
reference, the last lookup and result) in the Django session. Every durable
fact lives in the refund ledger; the controller calls the reconciliation
engine and never touches RefundRecord rows itself.

Usage:
    workflow = RefundWorkflow.load(request.session)
    workflow.select_gateway("razorpay")
    workflow.lookup_transaction("pay_ABC123")
    result = workflow.confirm(actor=request.user.email, reason="Duplicate")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.exceptions import ValidationError
from core.services import ServiceResult

from refunds.exceptions import LockAcquisitionError, RefundInFlightError
from refunds.locks import DistributedLock, workflow_lock_key
from refunds.services import RefundReconciliationService
from refunds.state_machines import Gateway

if TYPE_CHECKING:
    from django.contrib.sessions.backends.base import SessionBase

logger = logging.getLogger(__name__)

SESSION_KEY = "refund_workflow"


class WorkflowStep(str, Enum):
    SELECT_GATEWAY = "select_gateway"
    LOOKUP = "lookup"
    CONFIRM = "confirm"
    RESULT = "result"


@dataclass
class RefundWorkflow:
    """Session-backed state of one operator's refund workflow."""

    session: SessionBase | None = field(default=None, repr=False, compare=False)
    step: str = WorkflowStep.SELECT_GATEWAY.value
    gateway: str | None = None
    transaction_ref: str | None = None
    lookup: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    in_flight: bool = False

    # =========================================================================
    # Persistence
    # =========================================================================

    @classmethod
    def load(cls, session: SessionBase) -> RefundWorkflow:
        return cls.from_dict(session.get(SESSION_KEY) or {}, session=session)

    @classmethod
    def from_dict(cls, data: dict[str, Any], session: SessionBase | None = None) -> RefundWorkflow:
        return cls(
            session=session,
            step=data.get("step", WorkflowStep.SELECT_GATEWAY.value),
            gateway=data.get("gateway"),
            transaction_ref=data.get("transaction_ref"),
            lookup=data.get("lookup"),
            result=data.get("result"),
            in_flight=bool(data.get("in_flight", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "gateway": self.gateway,
            "transaction_ref": self.transaction_ref,
            "lookup": self.lookup,
            "result": self.result,
            "in_flight": self.in_flight,
        }

    def save(self, commit: bool = False) -> None:
        """Write to the session; ``commit`` persists it immediately."""
        if self.session is None:
            return
        self.session[SESSION_KEY] = self.to_dict()
        if commit:
            self.session.save()

    # =========================================================================
    # Steps
    # =========================================================================

    def _require_step(self, *allowed: WorkflowStep) -> None:
        if self.step not in {s.value for s in allowed}:
            raise ValidationError(
                f"Not allowed in workflow step {self.step!r}",
                error_code="INVALID_WORKFLOW_STEP",
                details={"step": self.step, "allowed": [s.value for s in allowed]},
            )

    def select_gateway(self, gateway: str) -> None:
        """Step 1. Choosing a gateway restarts everything after it."""
        if gateway not in Gateway.values:
            raise ValidationError(
                f"Unsupported gateway: {gateway!r}",
                details={"gateway": gateway, "supported": list(Gateway.values)},
            )
        self.gateway = gateway
        self.transaction_ref = None
        self.lookup = None
        self.result = None
        self.step = WorkflowStep.LOOKUP.value
        self.save()

    def lookup_transaction(self, transaction_ref: str) -> ServiceResult:
        """
        Step 2. Look up the entered reference.

        Advances to CONFIRM only when the transaction can be refunded;
        otherwise stays on LOOKUP showing why.
        """
        self._require_step(WorkflowStep.LOOKUP, WorkflowStep.CONFIRM)

        result = RefundReconciliationService.lookup(self.gateway, transaction_ref)
        if not result.success:
            return result

        lookup = result.data
        self.transaction_ref = lookup.transaction_ref
        self.lookup = lookup.to_dict()
        self.result = None
        self.step = (
            WorkflowStep.CONFIRM.value if lookup.can_refund else WorkflowStep.LOOKUP.value
        )
        self.save()
        return result

    def confirm(
        self,
        actor: str,
        reason: str = "",
        amount_minor_units: Any = None,
        amount: Any = None,
        admin_notes: str = "",
    ) -> ServiceResult:
        """
        Steps 3-4. Initiate the refund and hold the result.

        Refuses a second submission for the same transaction from the same
        session while one is running.

        Raises:
            RefundInFlightError: A refund from this session is already running
        """
        self._require_step(WorkflowStep.CONFIRM)
        if self.in_flight:
            raise RefundInFlightError(
                "A refund for this transaction is already being processed",
                details={"transaction_ref": self.transaction_ref},
            )

        session_key = "anonymous"
        if self.session is not None:
            if self.session.session_key is None:
                self.session.save()
            session_key = self.session.session_key
        lock = DistributedLock(
            workflow_lock_key(session_key, self.gateway, self.transaction_ref),
            ttl=getattr(settings, "REFUND_LOCK_TTL_SECONDS", 120),
            blocking=False,
        )
        try:
            lock.acquire()
        except LockAcquisitionError as e:
            logger.warning(
                "Duplicate refund submission rejected",
                extra={"gateway": self.gateway, "transaction_ref": self.transaction_ref},
            )
            raise RefundInFlightError(
                "A refund for this transaction is already being processed",
                details={"transaction_ref": self.transaction_ref},
            ) from e

        self.in_flight = True
        self.save(commit=True)
        try:
            result = RefundReconciliationService.process_refund(
                gateway=self.gateway,
                transaction_ref=self.transaction_ref,
                actor=actor,
                reason=reason,
                amount_minor_units=amount_minor_units,
                amount=amount,
                admin_notes=admin_notes,
            )
        finally:
            self.in_flight = False
            lock.release()
            self.save()

        self.result = result.data
        self.step = WorkflowStep.RESULT.value
        self.save()
        return result

    def reset(self) -> None:
        """
        Back to step 1.

        Also clears a stale in-flight flag left by an interrupted request;
        the distributed lock still rejects a concurrent duplicate.
        """
        self.in_flight = False
        self.step = WorkflowStep.SELECT_GATEWAY.value
        self.gateway = None
        self.transaction_ref = None
        self.lookup = None
        self.result = None
        self.save()
