from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("refunds", "0002_add_sync_pending_schedule"),
    ]

    operations = [
        migrations.AddField(
            model_name="refundrecord",
            name="dispatched_at",
            field=models.DateTimeField(
                blank=True,
                help_text="When the gateway refund call was sent; no cancellation after this",
                null=True,
            ),
        ),
    ]
