"""Delivery planning for operator notifications.

A plan answers when a classified event may be sent: now, after the tier's
batch window, or when the account's quiet hours end. Batched events for one
recipient are merged before anything is sent, and STANDARD alerts that go
unanswered are tracked for escalation.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from calllock_sms import templates
from calllock_sms.backoff import BackoffPolicy
from calllock_sms.exchange_log import SENT, ExchangeEntry
from calllock_sms.records import Account
from calllock_sms.states import Urgency
from calllock_sms.tiers import TIER_CONFIG, NotificationEvent, Tier

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> time:
    hour, _, minute = value.strip().partition(":")
    return time(int(hour), int(minute or 0))


@dataclass(frozen=True)
class QuietHours:
    """Daily do-not-disturb window in the account's timezone. May span midnight."""

    enabled: bool = False
    start: time = time(21, 0)
    end: time = time(7, 0)
    timezone: str = "America/Chicago"

    @classmethod
    def for_account(cls, account: Account) -> "QuietHours":
        return cls(
            enabled=account.quiet_hours_enabled,
            start=parse_hhmm(account.quiet_hours_start),
            end=parse_hhmm(account.quiet_hours_end),
            timezone=account.timezone,
        )

    def _local(self, now: datetime) -> datetime:
        return now.astimezone(ZoneInfo(self.timezone))

    def contains(self, now: datetime) -> bool:
        if not self.enabled or self.start == self.end:
            return False
        t = self._local(now).time()
        if self.start < self.end:
            return self.start <= t < self.end
        return t >= self.start or t < self.end

    def next_open(self, now: datetime) -> datetime:
        """When sending may resume. `now` itself if the window is not active."""
        if not self.contains(now):
            return now
        local = self._local(now)
        reopen = local.replace(hour=self.end.hour, minute=self.end.minute, second=0, microsecond=0)
        if reopen <= local:
            reopen += timedelta(days=1)
        return reopen


@dataclass(frozen=True)
class DeliveryPlan:
    tier: Tier
    planned_at: datetime
    send_at: datetime
    bypass_quiet_hours: bool
    batch_window_seconds: int
    backoff: BackoffPolicy
    escalate_after_minutes: Optional[int]
    deferred_for_quiet_hours: bool = False

    @property
    def immediate(self) -> bool:
        return self.send_at <= self.planned_at


class DeliveryScheduler:
    def schedule(
        self,
        tier: Tier,
        event: NotificationEvent,
        now: datetime,
        quiet_hours: Optional[QuietHours] = None,
    ) -> DeliveryPlan:
        behavior = TIER_CONFIG[tier]
        quiet_hours = quiet_hours or QuietHours()

        send_at = now
        deferred = False
        if not behavior.bypass_quiet_hours and quiet_hours.contains(now):
            send_at = quiet_hours.next_open(now)
            deferred = True
        elif behavior.max_batch_window_seconds:
            send_at = now + timedelta(seconds=behavior.max_batch_window_seconds)

        plan = DeliveryPlan(
            tier=tier,
            planned_at=now,
            send_at=send_at,
            bypass_quiet_hours=behavior.bypass_quiet_hours,
            batch_window_seconds=behavior.max_batch_window_seconds,
            backoff=behavior.backoff,
            escalate_after_minutes=behavior.escalate_after_minutes,
            deferred_for_quiet_hours=deferred,
        )
        logger.debug(
            "Planned %s (%s) for %s at %s%s",
            event.event_type, tier.value, event.account_id, send_at.isoformat(),
            " [quiet hours]" if deferred else "",
        )
        return plan


@dataclass
class QueuedNotification:
    event: NotificationEvent
    plan: DeliveryPlan
    message: str
    queued_at: datetime

    @property
    def tier(self) -> Tier:
        return self.plan.tier


@dataclass
class _Batch:
    due_at: datetime
    items: list[QueuedNotification] = field(default_factory=list)


class BatchQueue:
    """Pending notifications, one batch per recipient account.

    An item joining an open batch is sent with it; a newer event for a record
    already in the batch replaces the older one.
    """

    def __init__(self):
        self._batches: dict[str, _Batch] = {}

    def __len__(self) -> int:
        return sum(len(b.items) for b in self._batches.values())

    def add(self, item: QueuedNotification) -> datetime:
        key = item.event.account_id
        batch = self._batches.get(key)
        if batch is None:
            batch = self._batches[key] = _Batch(due_at=item.plan.send_at)
        else:
            before = len(batch.items)
            batch.items = [q for q in batch.items if q.event.record_key != item.event.record_key]
            if len(batch.items) < before:
                logger.info("Replaced queued notification for %s", item.event.record_key)
            batch.due_at = min(batch.due_at, item.plan.send_at)
        batch.items.append(item)
        return batch.due_at

    def pending(self, account_id: Optional[str] = None) -> list[QueuedNotification]:
        return [
            q
            for key, batch in self._batches.items()
            if account_id is None or key == account_id
            for q in batch.items
        ]

    def due_at(self, account_id: str) -> Optional[datetime]:
        batch = self._batches.get(account_id)
        return batch.due_at if batch else None

    def pop_due(self, now: datetime) -> list[tuple[str, list[QueuedNotification]]]:
        due = [key for key, batch in self._batches.items() if batch.due_at <= now]
        return [(key, self._batches.pop(key).items) for key in due]

    def requeue(self, account_id: str, items: list[QueuedNotification], send_at: datetime) -> None:
        batch = self._batches.get(account_id)
        if batch is None:
            self._batches[account_id] = _Batch(due_at=send_at, items=list(items))
            return
        keys = {q.event.record_key for q in batch.items}
        batch.items = [q for q in items if q.event.record_key not in keys] + batch.items
        batch.due_at = min(batch.due_at, send_at)


def consolidate(items: list[QueuedNotification]) -> str:
    """One message for a batch. A single record keeps its own text."""
    if not items:
        raise ValueError("cannot consolidate an empty batch")
    if len(items) == 1:
        return items[0].message
    urgent = sum(
        1 for q in items
        if q.event.urgency in (Urgency.HIGH, Urgency.EMERGENCY) or q.tier is Tier.URGENT
    )
    return templates.batch_summary(len(items), urgent)


# ── Escalation ──

DUPLICATE_WINDOW = timedelta(minutes=5)
SIMILARITY_WINDOW = timedelta(minutes=30)
SIMILARITY_THRESHOLD = 0.8

_CLOCK_TIME = re.compile(r"\d{1,2}:\d{2}\s*(am|pm)", re.IGNORECASE)
_SHORT_DATE = re.compile(r"\d{1,2}/\d{1,2}")
_PUNCTUATION = re.compile(r"[^\w\s]")


def is_duplicate(
    sent: list[ExchangeEntry],
    event: NotificationEvent,
    now: datetime,
    window: timedelta = DUPLICATE_WINDOW,
) -> bool:
    """Same event type already sent about the same lead and job within `window`."""
    for entry in sent:
        if entry.status != SENT or entry.event_type != event.event_type:
            continue
        if (entry.lead_id, entry.job_id) != (event.lead_id, event.job_id):
            continue
        if now - entry.at < window:
            return True
    return False


def _comparable(body: str) -> set[str]:
    text = _CLOCK_TIME.sub("", body.lower())
    text = _SHORT_DATE.sub("", text)
    text = _PUNCTUATION.sub("", text)
    return set(text.split())


def similarity(a: str, b: str) -> float:
    """Word-set overlap of two message bodies, ignoring times, dates and punctuation."""
    words_a, words_b = _comparable(a), _comparable(b)
    if words_a == words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def is_similar_to_recent(
    sent: list[ExchangeEntry],
    body: str,
    now: datetime,
    window: timedelta = SIMILARITY_WINDOW,
) -> bool:
    return any(
        entry.status == SENT
        and now - entry.at < window
        and similarity(body, entry.body) > SIMILARITY_THRESHOLD
        for entry in sent
    )


def needs_escalation(
    tier: Tier,
    sent_at: datetime,
    now: datetime,
    *,
    last_action_at: Optional[datetime] = None,
    record_terminal: bool = False,
) -> bool:
    """True when an alert has waited past its tier's escalation window with no operator action."""
    minutes = TIER_CONFIG[tier].escalate_after_minutes
    if minutes is None or record_terminal:
        return False
    if last_action_at is not None and last_action_at >= sent_at:
        return False
    return now - sent_at >= timedelta(minutes=minutes)


@dataclass
class EscalationTimer:
    account_id: str
    lead_id: str
    tier: Tier
    sent_at: datetime
    due_at: datetime
    customer_name: str = ""
    customer_phone: str = ""


class EscalationMonitor:
    """Re-evaluation timers for sent alerts whose tier escalates. One per lead."""

    def __init__(self):
        self._timers: dict[str, EscalationTimer] = {}

    def watch(
        self,
        event: NotificationEvent,
        tier: Tier,
        sent_at: datetime,
    ) -> Optional[EscalationTimer]:
        minutes = TIER_CONFIG[tier].escalate_after_minutes
        if minutes is None or not event.lead_id:
            return None
        timer = EscalationTimer(
            account_id=event.account_id,
            lead_id=event.lead_id,
            tier=tier,
            sent_at=sent_at,
            due_at=sent_at + timedelta(minutes=minutes),
            customer_name=event.customer_name,
            customer_phone=event.customer_phone,
        )
        self._timers[event.lead_id] = timer
        return timer

    def cancel(self, lead_id: str) -> None:
        self._timers.pop(lead_id, None)

    def pending(self) -> list[EscalationTimer]:
        return list(self._timers.values())

    def pop_due(self, now: datetime) -> list[EscalationTimer]:
        due = [t for t in self._timers.values() if t.due_at <= now]
        for timer in due:
            del self._timers[timer.lead_id]
        return due
