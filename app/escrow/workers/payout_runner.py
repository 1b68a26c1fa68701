"""
Payout workers.

- execute_scheduled_payouts: runs due recurring payouts (every 4 hours)
- retry_failed_payouts: re-runs one-off payouts that failed transiently
  once their backoff has passed (every 5 minutes)
- recover_stuck_payouts: fails payouts whose worker never recorded a
  result (every 30 minutes)
"""

from __future__ import annotations

from datetime import timedelta

from escrow.scheduler import registry
from escrow.services import PayoutService


@registry.periodic("execute_scheduled_payouts", every=timedelta(hours=4))
def execute_scheduled_payouts(now) -> dict:
    return PayoutService.execute_scheduled_payouts(now)


@registry.periodic("retry_failed_payouts", every=timedelta(minutes=5))
def retry_failed_payouts(now) -> dict:
    return PayoutService.retry_failed_payouts(now)


@registry.periodic("recover_stuck_payouts", every=timedelta(minutes=30))
def recover_stuck_payouts(now) -> dict:
    return PayoutService.recover_stuck_payouts(now)
