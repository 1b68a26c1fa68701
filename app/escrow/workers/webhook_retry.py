"""
Webhook retry workers.

- retry_failed_webhooks: re-runs failed events whose backoff elapsed (every minute)
- cleanup_stuck_webhooks: resets events stuck in processing (every 30 minutes)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from escrow.scheduler import registry
from escrow.webhooks import WebhookGateway

logger = logging.getLogger(__name__)


@registry.periodic("retry_failed_webhooks", every=timedelta(minutes=1))
def retry_failed_webhooks(now) -> dict:
    return WebhookGateway.retry_failed_events(now)


@registry.periodic("cleanup_stuck_webhooks", every=timedelta(minutes=30))
def cleanup_stuck_webhooks(now) -> dict:
    reset = WebhookGateway.cleanup_stuck_events(now)
    if reset:
        logger.warning(f"{reset} stuck webhook events queued for retry")
    return {"reset": reset}
