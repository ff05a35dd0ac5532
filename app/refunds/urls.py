"""
URL configuration for refunds API.

Routes:
    Ledger:
        /                     - List refunds (GET), initiate refund (POST)
        /{id}/                - Refund detail (GET)
        /{id}/sync/           - Re-poll gateway status (POST)
        /{id}/cancel/         - Cancel unacknowledged attempt (POST)
        /stats/               - Ledger statistics (GET)

    Lookup:
        /lookup/              - Gateway transaction lookup (POST)

    Workflow:
        /workflow/            - Current workflow state (GET)
        /workflow/gateway/    - Select gateway (POST)
        /workflow/lookup/     - Look up transaction (POST)
        /workflow/confirm/    - Initiate refund (POST)
        /workflow/reset/      - Start over (POST)
"""

from django.urls import path

from rest_framework.routers import SimpleRouter

from refunds.views import RefundViewSet, RefundWorkflowViewSet, TransactionLookupView

router = SimpleRouter()
router.register(r"workflow", RefundWorkflowViewSet, basename="refund-workflow")
router.register(r"", RefundViewSet, basename="refund")

app_name = "refunds"
urlpatterns = [
    path("lookup/", TransactionLookupView.as_view(), name="transaction-lookup"),
] + router.urls
