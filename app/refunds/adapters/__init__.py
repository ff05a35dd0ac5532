"""
Gateway adapters for refund operations.

All gateway API calls go through these adapters to ensure consistent unit
normalization, timeouts, idempotency, error translation and logging.

Usage:
    from refunds.adapters import get_adapter

    adapter = get_adapter("razorpay")
    result = adapter.lookup("pay_ABC123")
"""

from refunds.adapters.base import (
    GatewayAdapter,
    GatewayTransaction,
    IdempotencyKeyGenerator,
    InitiateRefundParams,
    RefundOutcome,
    RefundStatusResult,
    TransactionLookupResult,
    backoff_delay,
    completed_or_partial,
)
from refunds.adapters.paypal_adapter import PayPalAdapter
from refunds.adapters.razorpay_adapter import RazorpayAdapter
from refunds.exceptions import GatewayConfigurationError
from refunds.state_machines import Gateway

ADAPTERS: dict[str, type[GatewayAdapter]] = {
    Gateway.PAYPAL: PayPalAdapter,
    Gateway.RAZORPAY: RazorpayAdapter,
}


def get_adapter(gateway: str) -> type[GatewayAdapter]:
    """Return the adapter class for a gateway name."""
    try:
        return ADAPTERS[gateway]
    except KeyError:
        raise GatewayConfigurationError(
            f"Unsupported gateway: {gateway!r}",
            gateway=str(gateway),
        ) from None


__all__ = [
    "ADAPTERS",
    "GatewayAdapter",
    "GatewayTransaction",
    "IdempotencyKeyGenerator",
    "InitiateRefundParams",
    "PayPalAdapter",
    "RazorpayAdapter",
    "RefundOutcome",
    "RefundStatusResult",
    "TransactionLookupResult",
    "backoff_delay",
    "completed_or_partial",
    "get_adapter",
]
