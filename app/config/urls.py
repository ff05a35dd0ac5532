"""
URL configuration for the refund reconciliation service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin (read-only refund audit)
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair (simplejwt)
    /api/v1/auth/token/refresh/    - Refresh JWT access token
    /api/v1/refunds/               - Refund endpoints
        (list/initiate)            - GET / POST
        {id}/                      - Refund record detail
        {id}/sync/                 - Re-poll gateway status
        {id}/cancel/               - Cancel unacknowledged attempt
        stats/                     - Ledger statistics
        lookup/                    - Gateway transaction lookup
        workflow/                  - Session-backed refund workflow

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Refunds
    path("refunds/", include("refunds.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Refund Reconciliation Admin"
admin.site.site_title = "Refunds Admin"
admin.site.index_title = "Refund Audit"
