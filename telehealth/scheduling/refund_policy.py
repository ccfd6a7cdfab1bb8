"""Cancellation refund tiers.

More than 24 hours ahead refunds in full, more than 2 hours ahead refunds half,
anything later refunds nothing automatically and is left to an operator.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

FULL_REFUND_LEAD_TIME = timedelta(hours=24)
PARTIAL_REFUND_LEAD_TIME = timedelta(hours=2)

FULL_REFUND_PERCENTAGE = 100
PARTIAL_REFUND_PERCENTAGE = 50
NO_REFUND_PERCENTAGE = 0


@dataclass(frozen=True)
class RefundDecision:
    percentage: int
    refund_amount: int
    requires_manual_review: bool
    hours_until_start: float


def refund_percentage_for(lead_time: timedelta) -> int:
    if lead_time > FULL_REFUND_LEAD_TIME:
        return FULL_REFUND_PERCENTAGE
    if lead_time > PARTIAL_REFUND_LEAD_TIME:
        return PARTIAL_REFUND_PERCENTAGE
    return NO_REFUND_PERCENTAGE


def compute_refund(scheduled_at: datetime, now: datetime, amount: int) -> RefundDecision:
    """Refund owed when cancelling at ``now`` an appointment starting at ``scheduled_at``.

    Both instants must be in the same form (naive UTC in this codebase).
    ``refund_amount`` rounds down to whole minor units.
    """
    lead_time = scheduled_at - now
    percentage = refund_percentage_for(lead_time)

    return RefundDecision(
        percentage=percentage,
        refund_amount=amount * percentage // 100,
        requires_manual_review=percentage == NO_REFUND_PERCENTAGE,
        hours_until_start=lead_time.total_seconds() / 3600,
    )
