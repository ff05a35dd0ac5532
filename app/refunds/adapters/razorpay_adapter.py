"""
Razorpay adapter built on the official ``razorpay`` SDK.

Razorpay reports amounts as integers in the currency's smallest unit
(paise for INR), so amounts pass through ``ensure_minor_units`` only to
reject anything fractional or implausible. Payment ids look like
``pay_XXXX``; an ``order_XXXX`` id is resolved to its captured payment.

Usage:
    from refunds.adapters import RazorpayAdapter

    result = RazorpayAdapter.lookup("pay_ABC123")
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import razorpay
import requests
from django.conf import settings

from refunds.adapters.base import (
    GatewayAdapter,
    GatewayTransaction,
    InitiateRefundParams,
    RefundOutcome,
    RefundStatusResult,
)
from refunds.exceptions import (
    GatewayConfigurationError,
    GatewayRejectedError,
    GatewayUnavailableError,
    NotFoundAtGatewayError,
    RefundError,
)
from refunds.money import ensure_minor_units, normalize_currency
from refunds.state_machines import Gateway, RefundStatus, TransactionRefType

if TYPE_CHECKING:
    from collections.abc import Callable

ORDER_PREFIX = "order_"

REFUND_STATUS_MAP = {
    "processed": RefundStatus.COMPLETED,
    "failed": RefundStatus.FAILED,
}


class RazorpayAdapter(GatewayAdapter):
    """
    Adapter for Razorpay payment lookups and refunds.

    All methods are class methods - no instance state is maintained.
    """

    gateway = Gateway.RAZORPAY

    @classmethod
    def get_client(cls) -> razorpay.Client:
        key_id = getattr(settings, "RAZORPAY_KEY_ID", "")
        key_secret = getattr(settings, "RAZORPAY_KEY_SECRET", "")
        if not key_id or not key_secret:
            raise GatewayConfigurationError(
                "Razorpay credentials are not configured",
                gateway=cls.gateway,
            )
        return razorpay.Client(auth=(key_id, key_secret))

    @classmethod
    def _call(
        cls,
        operation: str,
        log_context: dict[str, Any],
        call: Callable[[razorpay.Client], dict[str, Any]],
    ) -> dict[str, Any]:
        """Run one SDK call with timing and error translation."""
        logger = cls.get_logger()
        log_context = {"operation": operation, "gateway": cls.gateway, **log_context}

        start_time = time.time()
        logger.info("Starting gateway operation", extra=log_context)

        try:
            payload = call(cls.get_client())

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Gateway operation completed",
                extra={
                    **log_context,
                    "status": payload.get("status"),
                    "duration_ms": duration_ms,
                },
            )
            return payload

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_razorpay_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Lookup
    # =========================================================================

    @classmethod
    def fetch_transaction(cls, transaction_ref: str) -> GatewayTransaction:
        log_context = {"transaction_ref": transaction_ref}
        timeout = cls.get_timeout()

        if transaction_ref.startswith(ORDER_PREFIX):
            collection = cls._call(
                "get_order_payments",
                log_context,
                lambda client: client.order.payments(transaction_ref, timeout=timeout),
            )
            payments = collection.get("items") or []
            payment = next(
                (p for p in payments if p.get("status") == "captured"),
                payments[0] if payments else None,
            )
            if payment is None:
                raise NotFoundAtGatewayError(
                    f"Razorpay order {transaction_ref} has no payment",
                    gateway=cls.gateway,
                )
            return cls._normalize_payment(payment, TransactionRefType.ORDER)

        payment = cls._call(
            "get_payment",
            log_context,
            lambda client: client.payment.fetch(transaction_ref, timeout=timeout),
        )
        return cls._normalize_payment(payment, TransactionRefType.PAYMENT)

    @staticmethod
    def _normalize_payment(payment: dict[str, Any], ref_type: str) -> GatewayTransaction:
        currency = normalize_currency(payment.get("currency"))
        amount = ensure_minor_units(payment.get("amount"), currency)
        amount_refunded = ensure_minor_units(payment.get("amount_refunded") or 0, currency)
        status = payment.get("status", "")
        notes = payment.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}

        return GatewayTransaction(
            resolved_ref=payment["id"],
            ref_type=ref_type,
            amount_minor_units=amount,
            amount_refunded_minor_units=amount_refunded,
            currency=currency,
            gateway_status=status,
            can_refund=status == "captured" and amount_refunded < amount,
            order_ref=payment.get("order_id"),
            customer_name=notes.get("name", "") or "",
            customer_email=payment.get("email") or "",
            customer_mobile=payment.get("contact") or "",
            raw=payment,
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def initiate_refund(cls, params: InitiateRefundParams) -> RefundOutcome:
        """
        Refund (part of) a captured payment.

        The local refund id is sent as the receipt so the gateway refund can
        be traced back to its RefundRecord.
        """
        currency = normalize_currency(params.currency)
        data: dict[str, Any] = {
            "amount": params.amount_minor_units,
            "speed": getattr(settings, "RAZORPAY_REFUND_SPEED", "normal"),
            "receipt": str(params.refund_id),
            "notes": {"refund_id": str(params.refund_id)},
        }
        if params.note:
            data["notes"]["reason"] = params.note[:255]

        timeout = cls.get_timeout()
        payload = cls._call(
            "initiate_refund",
            {
                "transaction_ref": params.transaction_ref,
                "refund_id": str(params.refund_id),
                "amount_minor_units": params.amount_minor_units,
            },
            lambda client: client.payment.refund(
                params.transaction_ref, data, timeout=timeout
            ),
        )

        gateway_status = payload.get("status", "")
        status = cls.map_refund_status(gateway_status)
        return RefundOutcome(
            success=status != RefundStatus.FAILED,
            gateway_refund_ref=payload.get("id"),
            gateway_status=gateway_status,
            status=status,
            settled_amount_minor_units=cls._settled_amount(payload, status, currency),
            error_code="GatewayRejected" if status == RefundStatus.FAILED else None,
            error_message="Razorpay refund failed" if status == RefundStatus.FAILED else None,
            raw=payload,
        )

    @classmethod
    def poll_status(cls, gateway_refund_ref: str) -> RefundStatusResult:
        timeout = cls.get_timeout()
        payload = cls._call(
            "get_refund",
            {"gateway_refund_ref": gateway_refund_ref},
            lambda client: client.refund.fetch(gateway_refund_ref, timeout=timeout),
        )
        gateway_status = payload.get("status", "")
        status = cls.map_refund_status(gateway_status)
        return RefundStatusResult(
            gateway_refund_ref=payload.get("id", gateway_refund_ref),
            gateway_status=gateway_status,
            status=status,
            settled_amount_minor_units=cls._settled_amount(
                payload, status, payload.get("currency") or "INR"
            ),
            error_code="GatewayRejected" if status == RefundStatus.FAILED else None,
            raw=payload,
        )

    @classmethod
    def map_refund_status(cls, gateway_status: str) -> str:
        return REFUND_STATUS_MAP.get((gateway_status or "").lower(), RefundStatus.PROCESSING)

    @staticmethod
    def _settled_amount(payload: dict[str, Any], status: str, currency: str) -> int | None:
        if status != RefundStatus.COMPLETED or payload.get("amount") is None:
            return None
        return ensure_minor_units(payload["amount"], normalize_currency(currency))

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_razorpay_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Razorpay SDK and transport errors to domain exceptions.

        Razorpay signals a missing entity through a BAD_REQUEST_ERROR whose
        description contains "does not exist".
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, RefundError):
            logger.warning(
                f"Razorpay operation aborted: {error.error_code}",
                extra=log_context,
            )
            return

        if isinstance(error, razorpay.errors.BadRequestError):
            message = str(error)
            if "does not exist" in message.lower():
                logger.info("Resource not found at Razorpay", extra=log_context)
                raise NotFoundAtGatewayError(
                    message,
                    gateway=cls.gateway,
                    gateway_code="BAD_REQUEST_ERROR",
                ) from error
            if "authentication" in message.lower():
                logger.critical(
                    "Razorpay authentication failed - check API keys",
                    extra=log_context,
                )
                raise GatewayConfigurationError(
                    "Razorpay authentication failed",
                    gateway=cls.gateway,
                    gateway_code="BAD_REQUEST_ERROR",
                ) from error
            logger.warning("Request rejected by Razorpay", extra=log_context)
            raise GatewayRejectedError(
                message or "Razorpay rejected the request",
                gateway=cls.gateway,
                gateway_code="BAD_REQUEST_ERROR",
            ) from error

        if isinstance(error, (razorpay.errors.GatewayError, razorpay.errors.ServerError)):
            logger.error("Razorpay service error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Razorpay service error. Please retry.",
                gateway=cls.gateway,
                gateway_code=type(error).__name__,
            ) from error

        if isinstance(error, requests.Timeout):
            logger.error("Razorpay request timed out", extra=log_context)
            raise GatewayUnavailableError(
                "Razorpay request timed out. Please retry.",
                gateway=cls.gateway,
                gateway_code="timeout",
            ) from error

        if isinstance(error, requests.ConnectionError):
            logger.error("Connection error to Razorpay", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Razorpay. Please retry.",
                gateway=cls.gateway,
                gateway_code="connection_error",
            ) from error

        logger.error(
            f"Unexpected error from Razorpay: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected Razorpay error: {error}",
            gateway=cls.gateway,
            gateway_code="unknown_error",
        ) from error
