"""
Add celery-beat schedule for syncing pending refunds.

This migration creates the periodic task schedule for the
sync_pending_refunds task, which runs every 15 minutes to re-poll the
gateways for refunds still processing.
"""

from django.db import migrations

TASK_NAME = "Sync Pending Refunds"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for syncing pending refunds."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "refunds.workers.sync_worker.sync_pending_refunds",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Re-polls the gateways for refunds still processing and "
                "moves settled or failed ones to their terminal status."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("refunds", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
