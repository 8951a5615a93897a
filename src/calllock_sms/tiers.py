"""Notification tier classification.

Every outbound business event is assigned exactly one tier. The tier decides
quiet-hours bypass, batching and retry policy (see TIER_CONFIG). Classification
is an ordered cascade, first match wins, and urgency signals are checked before
the event type so an emergency booking is still URGENT.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from calllock_sms.backoff import BackoffPolicy
from calllock_sms.states import PriorityColor, Urgency


class Tier(Enum):
    URGENT = "urgent"
    STANDARD = "standard"
    REMINDER = "reminder"
    BOOKED = "booked"
    DIGEST = "digest"


@dataclass(frozen=True)
class TierBehavior:
    bypass_quiet_hours: bool
    max_batch_window_seconds: int
    retry_attempts: int
    retry_delays_seconds: tuple[int, ...]
    escalate_after_minutes: Optional[int]

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(tuple(self.retry_delays_seconds[: self.retry_attempts]))


TIER_CONFIG: dict[Tier, TierBehavior] = {
    Tier.URGENT: TierBehavior(
        bypass_quiet_hours=True,
        max_batch_window_seconds=0,
        retry_attempts=3,
        retry_delays_seconds=(1, 5, 30),
        escalate_after_minutes=None,
    ),
    Tier.STANDARD: TierBehavior(
        bypass_quiet_hours=False,
        max_batch_window_seconds=300,
        retry_attempts=3,
        retry_delays_seconds=(5, 30, 120),
        escalate_after_minutes=120,
    ),
    Tier.REMINDER: TierBehavior(
        bypass_quiet_hours=False,
        max_batch_window_seconds=600,
        retry_attempts=2,
        retry_delays_seconds=(30, 300),
        escalate_after_minutes=None,
    ),
    Tier.BOOKED: TierBehavior(
        bypass_quiet_hours=False,
        max_batch_window_seconds=0,
        retry_attempts=3,
        retry_delays_seconds=(5, 30, 120),
        escalate_after_minutes=None,
    ),
    Tier.DIGEST: TierBehavior(
        bypass_quiet_hours=False,
        max_batch_window_seconds=3600,
        retry_attempts=1,
        retry_delays_seconds=(300,),
        escalate_after_minutes=None,
    ),
}

if set(TIER_CONFIG) != set(Tier):
    raise RuntimeError("TIER_CONFIG does not cover every Tier")

HIGH_VALUE_THRESHOLD = 1000

URGENT_EVENT_TYPES = {"abandoned_call", "emergency_alert"}
BOOKED_EVENT_TYPES = {"same_day_booking", "future_booking", "booking_confirmation"}
REMINDER_EVENT_TYPES = {"reminder", "follow_up", "snooze_expired"}
DIGEST_EVENT_TYPES = {"daily_digest", "weekly_summary"}


@dataclass(frozen=True)
class NotificationContext:
    event_type: str
    priority_color: Optional[PriorityColor] = None
    is_emergency: bool = False
    is_commercial: bool = False
    is_repeat_caller: bool = False
    estimated_value: Optional[float] = None
    call_end_reason: str = ""


@dataclass
class NotificationEvent:
    """A business event addressed to the operator of one account."""

    event_type: str
    account_id: str
    lead_id: Optional[str] = None
    job_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    message: str = ""

    priority_color: Optional[PriorityColor] = None
    urgency: Optional[Urgency] = None
    is_emergency: bool = False
    is_commercial: bool = False
    is_repeat_caller: bool = False
    estimated_value: Optional[float] = None
    call_end_reason: str = ""

    # Template inputs
    issue_description: str = ""
    service_type: str = ""
    city: str = ""
    scheduled_at: Optional[datetime] = None
    callback_timeframe: str = ""
    priority_reason: str = ""
    last_contact: str = ""
    hours_waiting: int = 0
    conflicts_with: str = ""
    prompt_code: str = ""

    @property
    def record_key(self) -> str:
        """Queue identity: one pending notification per record."""
        if self.lead_id:
            return f"lead:{self.lead_id}"
        if self.job_id:
            return f"job:{self.job_id}"
        return f"event:{self.event_type}"

    def context(self) -> NotificationContext:
        return NotificationContext(
            event_type=self.event_type,
            priority_color=self.priority_color,
            is_emergency=self.is_emergency or self.urgency is Urgency.EMERGENCY,
            is_commercial=self.is_commercial,
            is_repeat_caller=self.is_repeat_caller,
            estimated_value=self.estimated_value,
            call_end_reason=self.call_end_reason,
        )


def urgent_reason(ctx: NotificationContext) -> Optional[str]:
    """Which urgency signal fired, or None when the event is not urgent."""
    if ctx.is_emergency:
        return "emergency"
    if ctx.priority_color is PriorityColor.RED:
        return "callback_risk"
    if ctx.priority_color is PriorityColor.GREEN:
        return "high_value"
    if ctx.is_commercial:
        return "commercial"
    if ctx.is_repeat_caller and ctx.call_end_reason == "customer_hangup":
        return "repeat_hangup"
    if ctx.estimated_value is not None and ctx.estimated_value >= HIGH_VALUE_THRESHOLD:
        return "high_value"
    if ctx.event_type in URGENT_EVENT_TYPES:
        return ctx.event_type
    return None


def classify(ctx: NotificationContext) -> Tier:
    """Assign a tier. Pure and deterministic."""
    if urgent_reason(ctx) is not None:
        return Tier.URGENT
    if ctx.event_type in BOOKED_EVENT_TYPES:
        return Tier.BOOKED
    if ctx.event_type in REMINDER_EVENT_TYPES:
        return Tier.REMINDER
    if ctx.event_type in DIGEST_EVENT_TYPES:
        return Tier.DIGEST
    return Tier.STANDARD


def behavior_for(tier: Tier) -> TierBehavior:
    return TIER_CONFIG[tier]
