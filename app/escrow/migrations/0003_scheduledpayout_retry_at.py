from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0002_add_scheduler_tick_schedule"),
    ]

    operations = [
        migrations.AddField(
            model_name="scheduledpayout",
            name="retry_at",
            field=models.DateTimeField(
                blank=True,
                db_index=True,
                help_text="When a one-off payout that failed transiently is tried again",
                null=True,
            ),
        ),
    ]
