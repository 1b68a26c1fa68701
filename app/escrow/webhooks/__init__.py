"""
Webhook ingestion for payment-provider events.

Public API:
    WebhookGateway - ingest / retry_failed_events / cleanup_stuck_events
    IngestOutcome / IngestResult - ingest() results
    register_handler / dispatch_webhook - event type -> handler registry
"""

from escrow.webhooks.gateway import IngestOutcome, IngestResult, WebhookGateway
from escrow.webhooks.handlers import dispatch_webhook, register_handler

__all__ = [
    "IngestOutcome",
    "IngestResult",
    "WebhookGateway",
    "dispatch_webhook",
    "register_handler",
]
