"""
Gateway adapter contract and shared data types.

Each supported gateway implements the same three operations:

    lookup(transaction_ref) -> TransactionLookupResult
    initiate_refund(params) -> RefundOutcome
    poll_status(gateway_refund_ref) -> RefundStatusResult

Adapters normalize the gateway's native amount representation into minor
units (through refunds.money), its identifier conventions into a resolved
reference plus a TransactionRefType, and its refund vocabulary into
RefundStatus. Network errors and timeouts surface as
GatewayUnavailableError; a transaction that does not exist at the gateway
is reported as NOT_FOUND / NOT_IN_GATEWAY by lookup and as
NotFoundAtGatewayError everywhere else.

Adapters make network calls and read the local payment ledger; they never
write local state.
"""

from __future__ import annotations

import hashlib
import logging
import random
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from django.conf import settings

from refunds.exceptions import NotFoundAtGatewayError
from refunds.models import PaymentTransaction
from refunds.state_machines import LookupStatus, RefundStatus


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class GatewayTransaction:
    """
    A transaction as the gateway reports it, already normalized.

    Attributes:
        resolved_ref: Identifier to address refunds to (capture/payment id)
        ref_type: Which kind of identifier the caller supplied
        amount_minor_units: Amount charged
        amount_refunded_minor_units: Amount the gateway already refunded,
            or None when the gateway does not report it
        order_ref: Gateway order the transaction belongs to, if any
        currency: ISO 4217 code (upper-case)
        gateway_status: Raw gateway status of the transaction
        can_refund: Whether the gateway state allows a refund
        customer_*: Customer data the gateway returned, if any
        raw: Raw gateway payload
    """

    resolved_ref: str
    ref_type: str
    amount_minor_units: int
    currency: str
    gateway_status: str
    can_refund: bool
    amount_refunded_minor_units: int | None = 0
    order_ref: str | None = None
    customer_name: str = ""
    customer_email: str = ""
    customer_mobile: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransactionLookupResult:
    """
    Normalized view of a transaction across the gateway and local ledger.

    Attributes:
        status: LookupStatus tag (VERIFIED, UNRECORDED, NOT_FOUND, NOT_IN_GATEWAY)
        can_refund: Whether a refund may be initiated
        gateway: Gateway name
        transaction_ref: Identifier as supplied by the caller
        resolved_ref: Identifier to address refunds to
        ref_type: TransactionRefType of transaction_ref
        amount_minor_units: Original amount (gateway's, else local)
        amount_refunded_minor_units: Gateway-reported refunded amount
        currency: ISO 4217 code
        gateway_status: Raw gateway transaction status
        message: Human-readable explanation of the status
        local_transaction: Matching local payment, if any
        gateway_transaction: Gateway view, if the gateway knows it
    """

    status: str
    can_refund: bool
    gateway: str
    transaction_ref: str
    message: str = ""
    resolved_ref: str | None = None
    ref_type: str | None = None
    amount_minor_units: int | None = None
    amount_refunded_minor_units: int | None = None
    currency: str | None = None
    gateway_status: str | None = None
    customer_name: str = ""
    customer_email: str = ""
    customer_mobile: str = ""
    local_transaction: PaymentTransaction | None = None
    gateway_transaction: GatewayTransaction | None = None

    @property
    def exists_at_gateway(self) -> bool:
        return self.status in (LookupStatus.VERIFIED, LookupStatus.UNRECORDED)

    @property
    def refundable_minor_units(self) -> int | None:
        """Amount the gateway still allows to be refunded, if known."""
        if self.amount_minor_units is None:
            return None
        return self.amount_minor_units - (self.amount_refunded_minor_units or 0)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable snapshot, stored on the RefundRecord."""
        return {
            "status": self.status,
            "can_refund": self.can_refund,
            "gateway": self.gateway,
            "transaction_ref": self.transaction_ref,
            "resolved_ref": self.resolved_ref,
            "ref_type": self.ref_type,
            "amount_minor_units": self.amount_minor_units,
            "amount_refunded_minor_units": self.amount_refunded_minor_units,
            "currency": self.currency,
            "gateway_status": self.gateway_status,
            "message": self.message,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_mobile": self.customer_mobile,
            "local_transaction_id": (
                str(self.local_transaction.pk) if self.local_transaction else None
            ),
            "gateway_transaction": (
                asdict(self.gateway_transaction) if self.gateway_transaction else None
            ),
        }


@dataclass
class InitiateRefundParams:
    """
    Parameters for initiating a refund at a gateway.

    Attributes:
        transaction_ref: Resolved capture/payment id
        amount_minor_units: Amount to refund
        currency: ISO 4217 code
        refund_id: Local RefundRecord id, used for idempotency and receipts
        note: Free-text note passed to the gateway (reason)
    """

    transaction_ref: str
    amount_minor_units: int
    currency: str
    refund_id: uuid.UUID | str
    note: str = ""

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.transaction_ref:
            raise ValueError("transaction_ref is required")
        if self.amount_minor_units <= 0:
            raise ValueError("amount_minor_units must be positive")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class RefundOutcome:
    """
    Result of initiating a refund.

    Attributes:
        success: Gateway accepted the refund (pending or settled)
        gateway_refund_ref: Gateway refund id, if one was created
        gateway_status: Raw gateway refund status
        status: Local RefundStatus the gateway status maps to
        settled_amount_minor_units: Amount the gateway reports refunded
        error_code / error_message: Why the gateway did not accept it
        raw: Raw gateway payload
    """

    success: bool
    gateway_refund_ref: str | None = None
    gateway_status: str | None = None
    status: str | None = None
    settled_amount_minor_units: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundStatusResult:
    """Current state of a gateway refund, as returned by poll_status."""

    gateway_refund_ref: str
    gateway_status: str
    status: str
    settled_amount_minor_units: int | None = None
    error_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway write operations.

    Format: {operation}:{entity_id}:{attempt}:{short_hash}

    Example:
        key = IdempotencyKeyGenerator.generate("refund", record.id)
        # "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Adapter Base
# =============================================================================


class GatewayAdapter:
    """
    Base class for gateway adapters.

    All methods are class methods - no instance state is maintained.
    Subclasses implement ``fetch_transaction``, ``initiate_refund``,
    ``poll_status`` and ``map_refund_status``; ``lookup`` combines the
    gateway view with the local payment ledger.
    """

    gateway: str = ""

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def get_timeout() -> float:
        """Bounded timeout for every gateway call, in seconds."""
        return getattr(settings, "REFUND_GATEWAY_TIMEOUT_SECONDS", 10)

    # =========================================================================
    # Contract
    # =========================================================================

    @classmethod
    def fetch_transaction(cls, transaction_ref: str) -> GatewayTransaction:
        """Fetch and normalize a transaction; NotFoundAtGatewayError if absent."""
        raise NotImplementedError

    @classmethod
    def initiate_refund(cls, params: InitiateRefundParams) -> RefundOutcome:
        raise NotImplementedError

    @classmethod
    def poll_status(cls, gateway_refund_ref: str) -> RefundStatusResult:
        raise NotImplementedError

    @classmethod
    def map_refund_status(cls, gateway_status: str) -> str:
        """Map a native refund status onto RefundStatus."""
        raise NotImplementedError

    # =========================================================================
    # Lookup
    # =========================================================================

    @classmethod
    def lookup(cls, transaction_ref: str) -> TransactionLookupResult:
        """
        Look up a transaction at the gateway and in the local payment ledger.

        Raises:
            GatewayUnavailableError: The gateway could not be reached; the
                caller may retry. A missing transaction is not an error.
        """
        transaction_ref = transaction_ref.strip()
        try:
            gateway_txn = cls.fetch_transaction(transaction_ref)
        except NotFoundAtGatewayError:
            gateway_txn = None

        refs = [transaction_ref]
        if gateway_txn is not None:
            refs.extend([gateway_txn.resolved_ref, gateway_txn.order_ref])
        local = PaymentTransaction.objects.match(cls.gateway, *refs)

        if gateway_txn is None:
            if local is None:
                return TransactionLookupResult(
                    status=LookupStatus.NOT_FOUND,
                    can_refund=False,
                    gateway=cls.gateway,
                    transaction_ref=transaction_ref,
                    message="Transaction not found at the gateway or in the local ledger.",
                )
            return TransactionLookupResult(
                status=LookupStatus.NOT_IN_GATEWAY,
                can_refund=False,
                gateway=cls.gateway,
                transaction_ref=transaction_ref,
                amount_minor_units=local.amount_minor_units,
                currency=local.currency,
                customer_name=local.customer_name,
                customer_email=local.customer_email,
                customer_mobile=local.customer_mobile,
                local_transaction=local,
                message="Payment recorded locally but not found at the gateway.",
            )

        status = LookupStatus.VERIFIED if local else LookupStatus.UNRECORDED
        if gateway_txn.can_refund:
            message = "Transaction found. Ready for refund."
        else:
            message = (
                f"Transaction found but cannot be refunded "
                f"(status: {gateway_txn.gateway_status})."
            )
        if local is None:
            message = f"Payment made at the gateway but not recorded locally. {message}"

        return TransactionLookupResult(
            status=status,
            can_refund=gateway_txn.can_refund,
            gateway=cls.gateway,
            transaction_ref=transaction_ref,
            resolved_ref=gateway_txn.resolved_ref,
            ref_type=gateway_txn.ref_type,
            amount_minor_units=gateway_txn.amount_minor_units,
            amount_refunded_minor_units=gateway_txn.amount_refunded_minor_units,
            currency=gateway_txn.currency,
            gateway_status=gateway_txn.gateway_status,
            customer_name=gateway_txn.customer_name or (local.customer_name if local else ""),
            customer_email=gateway_txn.customer_email or (local.customer_email if local else ""),
            customer_mobile=gateway_txn.customer_mobile or (local.customer_mobile if local else ""),
            local_transaction=local,
            gateway_transaction=gateway_txn,
            message=message,
        )


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def completed_or_partial(
    status: str,
    requested_minor_units: int | None,
    settled_minor_units: int | None,
) -> str:
    """Downgrade a completion to PARTIAL when less than requested settled."""
    if (
        status == RefundStatus.COMPLETED
        and requested_minor_units is not None
        and settled_minor_units is not None
        and settled_minor_units < requested_minor_units
    ):
        return RefundStatus.PARTIAL
    return status
