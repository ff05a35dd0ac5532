"""
Root pytest configuration.

Puts the Django settings module in place for runs started from the
repository root. Project-wide fixtures live in app/conftest.py; app-specific
fixtures in each app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
