"""
Refund-specific exceptions.

This module provides the error taxonomy of the refund reconciliation
engine: gateway errors raised by adapters, eligibility errors raised before
any gateway call, and integrity errors raised by the ledger.

Exception Hierarchy:
    RefundError (base for refund domain)
    ├── RefundNotFoundError - Refund record lookup failures
    ├── OverRefundError - Request would exceed the original amount
    ├── UnitMismatchError - Amount normalization produced an implausible value
    ├── RefundNotAllowedError - Gateway state does not allow a refund
    └── GatewayError - Base for all gateway errors
        ├── NotFoundAtGatewayError - Transaction does not exist (permanent)
        ├── GatewayRejectedError - Gateway refused the request (permanent)
        ├── GatewayConfigurationError - Missing credentials (permanent)
        └── GatewayUnavailableError - Network error or timeout (transient, retry)

    IllegalTransitionError - Ledger status change not allowed (inherits ConflictError)
    RefundInFlightError - Same transaction already being processed (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)

Usage:
    from refunds.exceptions import GatewayError, OverRefundError

    try:
        adapter.initiate_refund(params)
    except GatewayError as e:
        if e.is_retryable:
            schedule_sync(record)

Note:
    Error codes are stable strings surfaced to API clients and persisted on
    failed RefundRecords (``error_code``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, NotFoundError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Refund Domain Errors
# =============================================================================


class RefundError(BaseApplicationError):
    """Base exception for refund domain errors."""

    default_error_code: str = "RefundError"


class RefundNotFoundError(NotFoundError):
    """Raised when a RefundRecord does not exist."""

    default_error_code: str = "RefundNotFound"


class OverRefundError(RefundError):
    """
    Raised when a refund would exceed the refundable amount.

    Checked before any gateway call. Not retryable without correcting
    the requested amount.
    """

    default_error_code: str = "OverRefund"


class UnitMismatchError(RefundError):
    """
    Raised when amount normalization produces an implausible value.

    Negative, non-finite, over-precise or absurdly large amounts halt the
    operation before any gateway call.
    """

    default_error_code: str = "UnitMismatch"


class RefundNotAllowedError(RefundError):
    """Raised when the gateway reports the transaction is not refundable."""

    default_error_code: str = "RefundNotAllowed"


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(RefundError):
    """
    Base exception for all gateway errors.

    Provides common attributes for gateway error handling:
    - gateway: Which gateway raised the error
    - gateway_code: The gateway's own error code (if any)
    - is_retryable: Whether a fresh attempt or a Sync may succeed

    Example:
        try:
            RazorpayAdapter.lookup("pay_ABC123")
        except GatewayError as e:
            if e.is_retryable:
                show_retry_prompt(e)
            else:
                show_permanent_failure(e)
    """

    default_error_code: str = "GatewayError"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway:
            details["gateway"] = gateway
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway
        self.gateway_code = gateway_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class NotFoundAtGatewayError(GatewayError):
    """Raised when the gateway has no record of the transaction or refund."""

    default_error_code: str = "NotFoundAtGateway"
    is_retryable = False


class GatewayRejectedError(GatewayError):
    """Raised when the gateway refuses a request (validation, business rule)."""

    default_error_code: str = "GatewayRejected"
    is_retryable = False


class GatewayConfigurationError(GatewayError):
    """Raised when gateway credentials are missing or rejected."""

    default_error_code: str = "GatewayConfiguration"
    is_retryable = False


# -----------------------------------------------------------------------------
# Transient Errors (retry)
# -----------------------------------------------------------------------------


class GatewayUnavailableError(GatewayError):
    """
    Raised on network errors, timeouts, rate limiting and gateway 5xx.

    An unresolved gateway call is indistinguishable from failure until a
    later Sync proves otherwise.
    """

    default_error_code: str = "GatewayUnavailable"
    is_retryable = True


# =============================================================================
# Integrity & Concurrency Errors
# =============================================================================


class IllegalTransitionError(ConflictError):
    """
    Raised when a ledger status change violates the refund state machine.

    This is a programming or integrity error; callers log it loudly and
    never coerce the record into the requested status.
    """

    default_error_code: str = "IllegalTransition"


class RefundInFlightError(ConflictError):
    """Raised when the same transaction is already being refunded."""

    default_error_code: str = "RefundInFlight"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Indicates another process holds the lock and it couldn't be acquired
    within the timeout period (or immediately, in non-blocking mode).
    """

    default_error_code: str = "LockAcquisition"


class StaleRecordError(ConflictError):
    """Raised when a record changed since the caller last read it."""

    default_error_code: str = "StaleRecord"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Refund domain
    "RefundError",
    "RefundNotFoundError",
    "OverRefundError",
    "UnitMismatchError",
    "RefundNotAllowedError",
    # Gateway
    "GatewayError",
    "NotFoundAtGatewayError",
    "GatewayRejectedError",
    "GatewayConfigurationError",
    "GatewayUnavailableError",
    # Integrity & concurrency
    "IllegalTransitionError",
    "RefundInFlightError",
    "LockAcquisitionError",
    "StaleRecordError",
]
