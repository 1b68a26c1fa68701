"""
PeriodicTaskRun model: shared state of the escrow scheduler.

One row per registered periodic task. The ticker claims a due run by
conditionally updating last_run_at, so several scheduler processes can
tick at once and each task still runs once per interval.
"""

from __future__ import annotations

from django.db import models


class PeriodicTaskRun(models.Model):
    name = models.CharField(
        max_length=100,
        primary_key=True,
        help_text="Registered task name",
    )
    last_run_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the latest run was claimed",
    )
    last_finished_at = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(max_length=20, blank=True, default="")
    last_error = models.TextField(blank=True, default="")
    last_result = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Periodic Task Run"
        verbose_name_plural = "Periodic Task Runs"

    def __str__(self) -> str:
        return f"PeriodicTaskRun({self.name}, {self.last_status or 'never'})"
