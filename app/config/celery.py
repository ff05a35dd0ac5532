"""
Celery configuration for the refund reconciliation service.

Celery runs the background refund sync:
- sync_refund_status: on-demand re-poll of one refund
- sync_pending_refunds: periodic sweep, scheduled by django-celery-beat

Redis is both the message broker and the result backend. Tasks are
auto-discovered from the tasks.py module of every installed app.

Usage:
    from refunds.tasks import sync_refund_status

    sync_refund_status.delay(str(refund_id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("refund_reconciliation")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
