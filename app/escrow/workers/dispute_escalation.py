"""
Dispute escalation worker.

Raises the escalation level of disputes left unresolved past the SLA
thresholds and alerts admins. Runs daily by default.
"""

from __future__ import annotations

from datetime import timedelta

from escrow.scheduler import registry
from escrow.services import DisputeService


@registry.periodic("escalate_stale_disputes", every=timedelta(hours=24))
def escalate_stale_disputes(now) -> dict:
    return DisputeService.escalate_stale_disputes(now)
