"""
Tests for the health check endpoint.
"""

import pytest
from django.db import DatabaseError
from django.test import override_settings
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client):
        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["cache"] == "connected"

    def test_reports_gateway_configuration(self, client):
        with override_settings(
            PAYPAL_CLIENT_ID="client",
            PAYPAL_CLIENT_SECRET="secret",
            RAZORPAY_KEY_ID="",
            RAZORPAY_KEY_SECRET="",
        ):
            response = client.get(reverse("health_check"))

        assert response.json()["gateways"] == {
            "paypal": "configured",
            "razorpay": "unconfigured",
        }

    def test_database_down_is_unhealthy(self, client, mocker):
        mocker.patch("core.views.connection.cursor", side_effect=DatabaseError("down"))

        response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"

    def test_cache_down_is_reported_but_healthy(self, client, mocker):
        mocker.patch("core.views.cache.get", return_value=None)

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"
