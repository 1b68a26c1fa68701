"""
Hold expiry worker.

Auto-releases escrow holds past their releaseable_at to the seller, unless
the order is disputed. Runs every 6 hours by default.
"""

from __future__ import annotations

from datetime import timedelta

from escrow.scheduler import registry
from escrow.services import HoldService


@registry.periodic("release_expired_holds", every=timedelta(hours=6))
def release_expired_holds(now) -> dict:
    return HoldService.release_expired_holds(now)
