"""Daily and weekly operator summaries built from the lead store.

A summary with no new leads in its period is not sent.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Union

from calllock_sms import templates
from calllock_sms.records import Lead
from calllock_sms.states import LeadStatus, PriorityColor

WEEK = timedelta(days=7)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class DailyDigest:
    total: int
    urgent: int
    booked: int

    @property
    def has_activity(self) -> bool:
        return self.total > 0

    def message(self) -> str:
        return templates.daily_digest(self.total, self.urgent, self.booked)


@dataclass(frozen=True)
class WeeklySummary:
    leads: int
    converted: int
    revenue: float

    @property
    def has_activity(self) -> bool:
        return self.leads > 0

    def message(self) -> str:
        return templates.weekly_summary(self.leads, self.converted, f"${self.revenue:,.0f}")


def daily_digest(leads: list[Lead], now: datetime) -> DailyDigest:
    """Counts since local midnight: new leads, open red leads among them, and conversions."""
    since = start_of_day(now)
    today = [l for l in leads if l.created_at >= since]
    return DailyDigest(
        total=len(today),
        urgent=sum(1 for l in today if l.priority_color is PriorityColor.RED and not l.status.is_terminal),
        booked=sum(
            1 for l in leads
            if l.status is LeadStatus.CONVERTED and l.converted_at is not None and l.converted_at >= since
        ),
    )


def weekly_summary(leads: list[Lead], now: datetime) -> WeeklySummary:
    week = [l for l in leads if l.created_at >= now - WEEK]
    converted = [l for l in week if l.status is LeadStatus.CONVERTED]
    return WeeklySummary(
        leads=len(week),
        converted=len(converted),
        revenue=sum(l.estimated_value or 0 for l in converted),
    )


Summary = Union[DailyDigest, WeeklySummary]

BUILDERS: dict[str, Callable[[list[Lead], datetime], Summary]] = {
    "daily_digest": daily_digest,
    "weekly_summary": weekly_summary,
}
