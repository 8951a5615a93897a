"""Ordering of the operator's action queue.

Each open lead or job falls into one urgency tier. The score is the tier's base
plus a small age bonus, capped below the gap between tiers, so older items lead
within a tier but never jump ahead of a more urgent tier.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from calllock_sms.records import Job, Lead
from calllock_sms.states import JobStatus, PriorityColor, Urgency

HOT_WINDOW = timedelta(minutes=15)
WARM_WINDOW = timedelta(hours=2)
DEFAULT_COLD_THRESHOLD_HOURS = 24

AGE_POINTS_PER_MINUTE = 0.1
MAX_AGE_BONUS = 50.0


class UrgencyTier(Enum):
    EMERGENCY = "emergency"
    CALLBACK_RISK = "callback_risk"
    HOT = "hot"
    CONFIRM_BOOKING = "confirm_booking"
    WARM = "warm"
    FOLLOW_UP = "follow_up"
    GETTING_COLD = "getting_cold"

    @property
    def base_score(self) -> int:
        return BASE_SCORES[self]


BASE_SCORES = {
    UrgencyTier.EMERGENCY: 1000,
    UrgencyTier.CALLBACK_RISK: 900,
    UrgencyTier.HOT: 800,
    UrgencyTier.CONFIRM_BOOKING: 700,
    UrgencyTier.WARM: 600,
    UrgencyTier.FOLLOW_UP: 400,
    UrgencyTier.GETTING_COLD: 200,
}

Item = Union[Lead, Job]


def _by_age(age: timedelta, threshold_hours: int) -> UrgencyTier:
    if age < HOT_WINDOW:
        return UrgencyTier.HOT
    if age < WARM_WINDOW:
        return UrgencyTier.WARM
    if age < timedelta(hours=threshold_hours):
        return UrgencyTier.FOLLOW_UP
    return UrgencyTier.GETTING_COLD


def determine_urgency_tier(
    item: Item,
    now: datetime,
    threshold_hours: int = DEFAULT_COLD_THRESHOLD_HOURS,
) -> Optional[UrgencyTier]:
    """Tier for an open item; None for closed or snoozed items, which stay off the queue."""
    if item.status.is_terminal:
        return None

    if isinstance(item, Job):
        if item.is_ai_booked and not item.booking_confirmed and item.status is JobStatus.NEW:
            return UrgencyTier.CONFIRM_BOOKING
    elif item.remind_at is not None and item.remind_at > now:
        return None

    if item.urgency is Urgency.EMERGENCY:
        return UrgencyTier.EMERGENCY
    if item.priority_color is PriorityColor.RED:
        return UrgencyTier.CALLBACK_RISK
    return _by_age(now - item.created_at, threshold_hours)


def urgency_score(
    item: Item,
    now: datetime,
    threshold_hours: int = DEFAULT_COLD_THRESHOLD_HOURS,
) -> Optional[float]:
    tier = determine_urgency_tier(item, now, threshold_hours)
    if tier is None:
        return None
    minutes = max((now - item.created_at).total_seconds() / 60, 0)
    return tier.base_score + min(minutes * AGE_POINTS_PER_MINUTE, MAX_AGE_BONUS)


def sort_by_urgency(
    items: list[Item],
    now: datetime,
    threshold_hours: int = DEFAULT_COLD_THRESHOLD_HOURS,
) -> list[Item]:
    """Open items, most urgent first. Closed and snoozed items are dropped."""
    scored = []
    for item in items:
        score = urgency_score(item, now, threshold_hours)
        if score is not None:
            scored.append((score, item))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in scored]


def count_by_urgency_tier(
    items: list[Item],
    now: datetime,
    threshold_hours: int = DEFAULT_COLD_THRESHOLD_HOURS,
) -> dict[UrgencyTier, int]:
    counts = {tier: 0 for tier in UrgencyTier}
    for item in items:
        tier = determine_urgency_tier(item, now, threshold_hours)
        if tier is not None:
            counts[tier] += 1
    return counts
