"""
Celery configuration for the escrow service.

Celery runs:
- Payout execution requested by sellers (escrow.tasks.execute_payout)
- The escrow scheduler tick, fired every minute by celery-beat
  (escrow.tasks.scheduler_tick), which runs hold expiry, scheduled payouts,
  dispute escalation and webhook retries when they are due

The broker is Redis. Beat uses django-celery-beat's DatabaseScheduler and the
tick schedule is installed by an escrow migration.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up escrow.tasks
app.autodiscover_tasks()
