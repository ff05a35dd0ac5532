"""
Project-wide pytest configuration for the Django project.

This module adjusts settings for the test run and provides fixtures shared
by every app. App-specific fixtures are defined in each app's
tests/conftest.py.
"""

import pytest

LOCMEM_CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "refund-tests",
    }
}


def pytest_configure():
    """Adjust Django settings before tests run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # The test client speaks plain HTTP
    settings.SECURE_SSL_REDIRECT = False

    # Never reach a real broker
    settings.CELERY_TASK_ALWAYS_EAGER = True


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_views.py, test_*_service.py, test_tasks.py, test_workflow.py → integration
    - test_models.py, test_money.py, test_adapters.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_workflow.py",
        "test_ledger_service.py",
        "test_reconciliation_service.py",
        "test_health.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_money.py",
        "test_serializers.py",
        "test_adapters.py",
        "test_state_transitions.py",
        "test_locks.py",
    ]

    for item in items:
        # Skip if test already has unit/integration marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def locmem_cache(settings):
    """
    Replace Redis with an in-process cache for every test.

    Sessions (and the refund workflow state in them) and the PayPal token
    cache use it; changing CACHES through the settings fixture resets
    Django's cache handler.
    """
    settings.CACHES = LOCMEM_CACHES
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()
