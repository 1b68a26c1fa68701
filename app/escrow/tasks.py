"""
Celery tasks for escrow processing.

This module provides async tasks for:
- Driving the escrow scheduler (celery-beat calls scheduler_tick every minute)
- Running a single periodic job on demand
- Executing a payout requested by a seller

Usage:
    from escrow.tasks import execute_payout

    # Queue a payout for execution
    execute_payout.delay(str(payout_id))

    # Run one periodic job now, ignoring its interval
    from escrow.tasks import run_periodic_task
    run_periodic_task.delay("release_expired_holds", force=True)
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.db import OperationalError

from escrow.exceptions import EscrowNotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_PAYOUT_TASK_RETRIES = 3


# =============================================================================
# Scheduler Tasks
# =============================================================================


@shared_task(bind=True, ignore_result=True)
def scheduler_tick(self) -> dict:
    """
    Run every due escrow periodic job.

    Safe to run from several beat instances at once: each job run is
    claimed in the database before it starts.
    """
    from escrow.scheduler import Ticker

    ran = Ticker().tick()
    if ran:
        logger.info("Scheduler tick ran jobs", extra={"jobs": ran})
    return ran


@shared_task(bind=True)
def run_periodic_task(self, name: str, force: bool = False) -> str | None:
    """
    Run one registered periodic job.

    Returns the run status, or None if the job wasn't due (force=False).
    """
    from escrow.scheduler import Ticker

    try:
        return Ticker().run_task(name, force=force)
    except LookupError:
        logger.error(f"Unknown periodic task {name}", extra={"task": name})
        return None


# =============================================================================
# Payout Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": MAX_PAYOUT_TASK_RETRIES},
    acks_late=True,
)
def execute_payout(self, payout_id: str) -> dict:
    """
    Execute one payout.

    Provider failures are recorded on the payout by PayoutService; transient
    ones are picked up again by the retry_failed_payouts job. Only database
    errors trigger a task retry.
    """
    from escrow.services import PayoutService

    try:
        result = PayoutService.execute_payout(payout_id)
    except EscrowNotFoundError:
        logger.error(
            f"Payout {payout_id} not found",
            extra={"payout_id": payout_id},
        )
        return {"status": "not_found", "payout_id": payout_id}

    return {
        "status": result.outcome,
        "payout_id": payout_id,
        "amount_cents": result.amount_cents,
        "providers": result.attempts,
        "error": result.error,
    }
