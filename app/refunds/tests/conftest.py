"""
Pytest fixtures for refund tests.

Every refund test gets a mocked Redis for the distributed locks and a reset
adapter override on the reconciliation engine.

Usage:
    def test_refund(fake_gateway, operator):
        fake_gateway.add_transaction(gateway_transaction("pay_ABC123"))
        result = RefundReconciliationService.process_refund(...)
"""

import pytest
from rest_framework.test import APIClient

from refunds.services import RefundReconciliationService
from refunds.tests.factories import UserFactory
from refunds.tests.fakes import make_fake_adapter


@pytest.fixture(autouse=True)
def mock_redis_lock(mocker):
    """Mock Redis for distributed locking."""
    mock_redis = mocker.MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.delete.return_value = 1
    mock_redis.eval.return_value = 1

    mocker.patch(
        "refunds.locks.get_redis_connection",
        return_value=mock_redis,
    )
    return mock_redis


@pytest.fixture(autouse=True)
def reset_adapter_override():
    """Never let an injected adapter outlive its test."""
    RefundReconciliationService.set_adapter(None)
    yield
    RefundReconciliationService.set_adapter(None)


@pytest.fixture
def fake_gateway():
    """Inject an in-memory gateway adapter into the engine."""
    adapter = make_fake_adapter()
    RefundReconciliationService.set_adapter(adapter)
    return adapter


@pytest.fixture
def operator(db):
    """Create a staff user allowed to use the refund API."""
    return UserFactory()


@pytest.fixture
def api_client(operator):
    """API client authenticated as a staff operator."""
    client = APIClient()
    client.force_authenticate(user=operator)
    return client
