"""
Create the notification outbox.

Changes:
    - Create NotificationEvent with delivery tracking fields
    - Create NotificationCooldown (shared alert rate limit)
"""

import uuid

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="NotificationCooldown",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("key", models.CharField(max_length=255, unique=True)),
                ("last_generated_at", models.DateTimeField()),
            ],
            options={
                "verbose_name": "Notification Cooldown",
                "verbose_name_plural": "Notification Cooldowns",
            },
        ),
        migrations.CreateModel(
            name="NotificationEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier (UUID v4)",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "audience",
                    models.CharField(
                        choices=[("buyer", "Buyer"), ("seller", "Seller"), ("admin", "Admin")],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "notification_type",
                    models.CharField(
                        db_index=True,
                        help_text="Machine-readable notification type",
                        max_length=100,
                    ),
                ),
                ("related_entity_type", models.CharField(blank=True, default="", max_length=50)),
                ("related_entity_id", models.CharField(blank=True, default="", max_length=64)),
                ("title", models.CharField(max_length=255)),
                ("message", models.TextField()),
                (
                    "severity",
                    models.CharField(
                        choices=[("info", "Info"), ("warning", "Warning"), ("critical", "Critical")],
                        default="info",
                        max_length=20,
                    ),
                ),
                ("action_url", models.CharField(blank=True, default="", max_length=500)),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Unique key preventing duplicate events from retried callers",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "recipient",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who receives the notification (null for admins)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="notification_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Notification Event",
                "verbose_name_plural": "Notification Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["related_entity_type", "related_entity_id"],
                        name="notif_event_related_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="notif_event_status_idx",
                    ),
                ],
            },
        ),
    ]
