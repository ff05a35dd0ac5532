"""
Refunds app configuration.

This app provides the refund reconciliation engine:
- Gateway adapters (PayPal, Razorpay) behind one lookup/refund contract
- The refund ledger (one durable record per refund attempt)
- The reconciliation engine (process and sync)
- The admin-facing refund workflow controller
"""

from django.apps import AppConfig


class RefundsConfig(AppConfig):
    """Configuration for the refunds application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "refunds"
    verbose_name = "Refunds"
