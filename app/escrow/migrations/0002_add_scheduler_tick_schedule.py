"""
Add celery-beat schedule for the escrow scheduler tick.

Beat fires escrow.tasks.scheduler_tick every minute. The tick itself decides
which registered escrow jobs (hold expiry, scheduled payouts, dispute
escalation, webhook retries) are due, so intervals live in one place.
"""

from django.db import migrations

TASK_NAME = "Escrow Scheduler Tick"


def create_periodic_task(apps, schema_editor):
    """Create the every-minute scheduler tick."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "escrow.tasks.scheduler_tick",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Runs every due escrow periodic job. Jobs are claimed in the "
                "database, so overlapping ticks never run a job twice."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
