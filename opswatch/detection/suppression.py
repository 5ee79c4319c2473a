"""Suppression policy: when alerts are forced closed regardless of the signal."""
from typing import Optional

from opswatch.detection.signals import DetectorHealth, NOT_SUPPRESSED, Suppression

ACTIVE = "active"
INTEGRATION_ERROR = "integration_error"
NO_HISTORICAL_ACTIVITY = "no_historical_activity"


def evaluate(customer_state, health: Optional[DetectorHealth] = None) -> Suppression:
    """
    First match wins:
      1. customer not active -> customer_status:<status>
      2. provider unreachable -> integration_error (existing rows frozen)
      3. provider has no history at all -> no_historical_activity

    Call with health=None before contacting the provider so inactive
    customers never cost a remote query.
    """
    status = customer_state.status if customer_state is not None else ACTIVE
    if status != ACTIVE:
        return Suppression(
            reason=f"customer_status:{status}",
            detail=getattr(customer_state, "reason", None),
        )

    if health is None:
        return NOT_SUPPRESSED
    if not health.reachable:
        return Suppression(reason=INTEGRATION_ERROR, detail=health.provider, freeze=True)
    if not health.has_history:
        return Suppression(reason=NO_HISTORICAL_ACTIVITY)
    return NOT_SUPPRESSED
