"""
PayPal adapter for the Payments v2 REST API.

PayPal reports amounts as decimal strings in the major unit ("12.50") and
distinguishes orders from captures: refunds are addressed to a capture,
while operators often have only the order id at hand. Lookups try the
capture first and fall back to resolving an order to its capture.

All calls go through ``requests`` with a bounded timeout and an OAuth2
client-credentials token cached in the Django cache.

Usage:
    from refunds.adapters import PayPalAdapter

    result = PayPalAdapter.lookup("8MC585209K746392H")
    if result.can_refund:
        outcome = PayPalAdapter.initiate_refund(
            InitiateRefundParams(
                transaction_ref=result.resolved_ref,
                amount_minor_units=1250,
                currency="USD",
                refund_id=record.id,
            )
        )
"""

from __future__ import annotations

import time
from typing import Any

import requests
from django.conf import settings
from django.core.cache import cache

from refunds.adapters.base import (
    GatewayAdapter,
    GatewayTransaction,
    IdempotencyKeyGenerator,
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
from refunds.money import format_major, normalize_currency, to_minor_units
from refunds.state_machines import Gateway, RefundStatus, TransactionRefType

LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"

TOKEN_CACHE_KEY = "refunds:paypal:access_token"

# Capture statuses that still accept a refund
REFUNDABLE_CAPTURE_STATUSES = frozenset({"COMPLETED", "PARTIALLY_REFUNDED"})

REFUND_STATUS_MAP = {
    "COMPLETED": RefundStatus.COMPLETED,
    "PENDING": RefundStatus.PROCESSING,
    "FAILED": RefundStatus.FAILED,
    "CANCELLED": RefundStatus.FAILED,
}


class PayPalAdapter(GatewayAdapter):
    """
    Adapter for PayPal capture lookups and refunds.

    All methods are class methods - no instance state is maintained.
    Thread-safe for use from Celery workers.
    """

    gateway = Gateway.PAYPAL

    @staticmethod
    def get_base_url() -> str:
        if getattr(settings, "PAYPAL_ENVIRONMENT", "sandbox") == "production":
            return LIVE_BASE_URL
        return SANDBOX_BASE_URL

    @staticmethod
    def _get_credentials() -> tuple[str, str]:
        client_id = getattr(settings, "PAYPAL_CLIENT_ID", "")
        client_secret = getattr(settings, "PAYPAL_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise GatewayConfigurationError(
                "PayPal credentials are not configured",
                gateway=Gateway.PAYPAL,
            )
        return client_id, client_secret

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _get_access_token(cls) -> str:
        """Return a cached OAuth2 token, fetching a new one when expired."""
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

        response = requests.request(
            "POST",
            f"{cls.get_base_url()}/v1/oauth2/token",
            auth=cls._get_credentials(),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=cls.get_timeout(),
        )
        response.raise_for_status()
        payload = response.json()

        token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        cache.set(TOKEN_CACHE_KEY, token, max(expires_in - 60, 60))
        return token

    @classmethod
    def _call(
        cls,
        operation: str,
        method: str,
        path: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one authenticated API call with timing and error translation.

        Raises:
            NotFoundAtGatewayError: 404 from PayPal
            GatewayRejectedError: Other 4xx (validation, business rule)
            GatewayConfigurationError: 401/403 (credentials)
            GatewayUnavailableError: Timeout, connection error, 429, 5xx
        """
        logger = cls.get_logger()
        log_context = {"operation": operation, "gateway": cls.gateway, **log_context}

        start_time = time.time()
        logger.info("Starting gateway operation", extra=log_context)

        try:
            request_headers = {
                "Authorization": f"Bearer {cls._get_access_token()}",
                "Content-Type": "application/json",
                **(headers or {}),
            }
            response = requests.request(
                method,
                f"{cls.get_base_url()}{path}",
                json=json,
                headers=request_headers,
                timeout=cls.get_timeout(),
            )
            if response.status_code == 401:
                # Token revoked before its advertised expiry
                cache.delete(TOKEN_CACHE_KEY)
            response.raise_for_status()
            payload = response.json()

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
            cls._handle_paypal_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Lookup
    # =========================================================================

    @classmethod
    def fetch_transaction(cls, transaction_ref: str) -> GatewayTransaction:
        """
        Fetch a capture by capture id, or resolve an order id to its capture.

        Raises:
            NotFoundAtGatewayError: Neither a capture nor an order with a
                capture exists for the identifier
        """
        log_context = {"transaction_ref": transaction_ref}
        try:
            capture = cls._call(
                "get_capture",
                "GET",
                f"/v2/payments/captures/{transaction_ref}",
                log_context,
            )
            return cls._normalize_capture(capture, TransactionRefType.CAPTURE)
        except NotFoundAtGatewayError:
            pass

        order = cls._call(
            "get_order",
            "GET",
            f"/v2/checkout/orders/{transaction_ref}",
            log_context,
        )
        capture = cls._select_capture(order)
        if capture is None:
            raise NotFoundAtGatewayError(
                f"PayPal order {transaction_ref} has no capture",
                gateway=cls.gateway,
                details={"order_status": order.get("status")},
            )

        payer = order.get("payer") or {}
        name = payer.get("name") or {}
        return cls._normalize_capture(
            capture,
            TransactionRefType.ORDER,
            order_ref=order.get("id", transaction_ref),
            customer_name=" ".join(
                part for part in (name.get("given_name"), name.get("surname")) if part
            ),
            customer_email=payer.get("email_address", ""),
        )

    @staticmethod
    def _select_capture(order: dict[str, Any]) -> dict[str, Any] | None:
        """First refundable capture of the order, else its first capture."""
        captures = [
            capture
            for unit in order.get("purchase_units") or []
            for capture in (unit.get("payments") or {}).get("captures") or []
        ]
        for capture in captures:
            if capture.get("status") in REFUNDABLE_CAPTURE_STATUSES:
                return capture
        return captures[0] if captures else None

    @classmethod
    def _normalize_capture(
        cls,
        capture: dict[str, Any],
        ref_type: str,
        order_ref: str | None = None,
        customer_name: str = "",
        customer_email: str = "",
    ) -> GatewayTransaction:
        amount = capture.get("amount") or {}
        currency = normalize_currency(amount.get("currency_code"))
        amount_minor_units = to_minor_units(amount.get("value"), currency)
        status = capture.get("status", "")

        # PayPal does not report a running refunded total on the capture
        if status == "REFUNDED":
            amount_refunded = amount_minor_units
        elif status == "PARTIALLY_REFUNDED":
            amount_refunded = None
        else:
            amount_refunded = 0

        related_ids = (capture.get("supplementary_data") or {}).get("related_ids") or {}
        return GatewayTransaction(
            resolved_ref=capture["id"],
            ref_type=ref_type,
            amount_minor_units=amount_minor_units,
            amount_refunded_minor_units=amount_refunded,
            currency=currency,
            gateway_status=status,
            can_refund=status in REFUNDABLE_CAPTURE_STATUSES,
            order_ref=order_ref or related_ids.get("order_id"),
            customer_name=customer_name,
            customer_email=customer_email,
            raw=capture,
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def initiate_refund(cls, params: InitiateRefundParams) -> RefundOutcome:
        """
        Refund (part of) a capture.

        The PayPal-Request-Id header makes the call idempotent per
        RefundRecord, so a retried request never creates a second refund.
        """
        currency = normalize_currency(params.currency)
        body: dict[str, Any] = {
            "amount": {
                "value": format_major(params.amount_minor_units, currency),
                "currency_code": currency,
            },
        }
        if params.note:
            body["note_to_payer"] = params.note[:255]

        payload = cls._call(
            "initiate_refund",
            "POST",
            f"/v2/payments/captures/{params.transaction_ref}/refund",
            {
                "transaction_ref": params.transaction_ref,
                "refund_id": str(params.refund_id),
                "amount_minor_units": params.amount_minor_units,
            },
            json=body,
            headers={
                "PayPal-Request-Id": IdempotencyKeyGenerator.generate(
                    "refund", params.refund_id
                ),
                "Prefer": "return=representation",
            },
        )

        gateway_status = payload.get("status", "")
        status = cls.map_refund_status(gateway_status)
        error_code = cls._failure_code(gateway_status)
        return RefundOutcome(
            success=status != RefundStatus.FAILED,
            gateway_refund_ref=payload.get("id"),
            gateway_status=gateway_status,
            status=status,
            settled_amount_minor_units=cls._settled_amount(payload, status),
            error_code=error_code,
            error_message=(
                (payload.get("status_details") or {}).get("reason")
                or (f"PayPal refund {gateway_status.lower()}" if error_code else None)
            ),
            raw=payload,
        )

    @classmethod
    def poll_status(cls, gateway_refund_ref: str) -> RefundStatusResult:
        payload = cls._call(
            "get_refund",
            "GET",
            f"/v2/payments/refunds/{gateway_refund_ref}",
            {"gateway_refund_ref": gateway_refund_ref},
        )
        gateway_status = payload.get("status", "")
        status = cls.map_refund_status(gateway_status)
        return RefundStatusResult(
            gateway_refund_ref=payload.get("id", gateway_refund_ref),
            gateway_status=gateway_status,
            status=status,
            settled_amount_minor_units=cls._settled_amount(payload, status),
            error_code=cls._failure_code(gateway_status),
            raw=payload,
        )

    @classmethod
    def map_refund_status(cls, gateway_status: str) -> str:
        return REFUND_STATUS_MAP.get((gateway_status or "").upper(), RefundStatus.PROCESSING)

    @staticmethod
    def _failure_code(gateway_status: str) -> str | None:
        gateway_status = (gateway_status or "").upper()
        if gateway_status == "CANCELLED":
            return "GatewayCancelled"
        if gateway_status == "FAILED":
            return "GatewayRejected"
        return None

    @staticmethod
    def _settled_amount(payload: dict[str, Any], status: str) -> int | None:
        amount = payload.get("amount")
        if status != RefundStatus.COMPLETED or not amount:
            return None
        return to_minor_units(amount.get("value"), normalize_currency(amount.get("currency_code")))

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_paypal_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate requests/HTTP failures to domain exceptions.

        Domain errors (unit normalization, configuration) are left to
        propagate unchanged.
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, RefundError):
            logger.warning(
                f"PayPal operation aborted: {error.error_code}",
                extra=log_context,
            )
            return

        if isinstance(error, requests.Timeout):
            logger.error("PayPal request timed out", extra=log_context)
            raise GatewayUnavailableError(
                "PayPal request timed out. Please retry.",
                gateway=cls.gateway,
                gateway_code="timeout",
            ) from error

        if isinstance(error, requests.ConnectionError):
            logger.error("Connection error to PayPal", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to PayPal. Please retry.",
                gateway=cls.gateway,
                gateway_code="connection_error",
            ) from error

        if isinstance(error, requests.HTTPError) and error.response is not None:
            status_code = error.response.status_code
            name, message = cls._parse_error_body(error.response)
            log_context = {**log_context, "status_code": status_code, "paypal_error": name}

            if status_code == 404:
                logger.info("Resource not found at PayPal", extra=log_context)
                raise NotFoundAtGatewayError(
                    message or "Resource not found at PayPal",
                    gateway=cls.gateway,
                    gateway_code=name or "RESOURCE_NOT_FOUND",
                ) from error

            if status_code in (401, 403):
                logger.critical(
                    "PayPal authentication failed - check credentials",
                    extra=log_context,
                )
                raise GatewayConfigurationError(
                    "PayPal authentication failed",
                    gateway=cls.gateway,
                    gateway_code=name or str(status_code),
                ) from error

            if status_code == 429 or status_code >= 500:
                logger.error("PayPal service error", extra=log_context)
                raise GatewayUnavailableError(
                    "PayPal service error. Please retry.",
                    gateway=cls.gateway,
                    gateway_code=name or str(status_code),
                ) from error

            logger.warning("Request rejected by PayPal", extra=log_context)
            raise GatewayRejectedError(
                message or f"PayPal rejected the request ({status_code})",
                gateway=cls.gateway,
                gateway_code=name or str(status_code),
            ) from error

        logger.error(
            f"Unexpected error from PayPal: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected PayPal error: {error}",
            gateway=cls.gateway,
            gateway_code="unknown_error",
        ) from error

    @staticmethod
    def _parse_error_body(response: requests.Response) -> tuple[str, str]:
        """Extract PayPal's error name and most specific message."""
        try:
            body = response.json()
        except ValueError:
            return "", ""
        if not isinstance(body, dict):
            return "", ""
        name = body.get("name") or body.get("error") or ""
        message = body.get("message") or body.get("error_description") or ""
        details = body.get("details") or []
        if details and isinstance(details[0], dict):
            issue = details[0].get("description") or details[0].get("issue")
            if issue:
                message = f"{message} {issue}".strip()
        return name, message
