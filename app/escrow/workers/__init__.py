"""
Escrow periodic workers.

Importing this package registers every escrow job with
escrow.scheduler.registry (done in EscrowConfig.ready()).

Jobs:
    release_expired_holds - every 6 hours
    execute_scheduled_payouts - every 4 hours
    retry_failed_payouts - every 5 minutes
    recover_stuck_payouts - every 30 minutes
    escalate_stale_disputes - every 24 hours
    retry_failed_webhooks - every minute
    cleanup_stuck_webhooks - every 30 minutes
"""

from escrow.workers.dispute_escalation import escalate_stale_disputes
from escrow.workers.hold_expiry import release_expired_holds
from escrow.workers.payout_runner import (
    execute_scheduled_payouts,
    recover_stuck_payouts,
    retry_failed_payouts,
)
from escrow.workers.webhook_retry import cleanup_stuck_webhooks, retry_failed_webhooks

__all__ = [
    "cleanup_stuck_webhooks",
    "escalate_stale_disputes",
    "execute_scheduled_payouts",
    "recover_stuck_payouts",
    "release_expired_holds",
    "retry_failed_payouts",
    "retry_failed_webhooks",
]
