"""Operator notifications: business event to tier to plan to send.

`notify` handles one event as it happens. `process_due` flushes batches whose
window has closed and `check_escalations` re-raises unanswered alerts; both are
driven by the cron endpoints.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from calllock_sms import templates
from calllock_sms.context import ContextPointer, ContextStore
from calllock_sms.digest import BUILDERS as DIGEST_BUILDERS
from calllock_sms.outbound import OutboundSms, SendOutcome, utcnow
from calllock_sms.records import Account, Lead
from calllock_sms.scheduler import (
    BatchQueue,
    DeliveryPlan,
    DeliveryScheduler,
    EscalationMonitor,
    QueuedNotification,
    QuietHours,
    consolidate,
    is_duplicate,
    is_similar_to_recent,
    needs_escalation,
)
from calllock_sms.states import PriorityColor
from calllock_sms.store import InMemoryStore, StoreError
from calllock_sms.tiers import NotificationEvent, Tier, classify

logger = logging.getLogger(__name__)

ESCALATION_EVENT = "stale_lead_escalation"
ESCALATION_REASON = "Escalated - no response after 2 hours"

# Only STOP silences these
ALWAYS_ON_EVENTS = {"abandoned_call", "emergency_alert", "stale_job_alert", ESCALATION_EVENT}
TIMED_EVENTS = {"same_day_booking", "future_booking", "cancellation", "schedule_conflict"}

RENDERERS: dict[str, Callable[[NotificationEvent], str]] = {
    "new_lead": lambda e: templates.new_lead(e.customer_name, e.customer_phone, e.issue_description),
    "callback_risk": lambda e: templates.callback_risk(e.customer_name, e.customer_phone, e.priority_reason),
    "commercial_lead": lambda e: templates.commercial_lead(
        e.customer_name, e.customer_phone, f"${e.estimated_value:,.0f}" if e.estimated_value else ""
    ),
    "callback_request": lambda e: templates.callback_request(e.customer_name, e.callback_timeframe or "soon"),
    "abandoned_call": lambda e: templates.abandoned_call(e.customer_name, e.customer_phone),
    "emergency_alert": lambda e: templates.emergency_alert(e.customer_name, e.customer_phone, e.issue_description),
    "snooze_expired": lambda e: templates.snooze_expired(e.customer_name, e.customer_phone),
    "same_day_booking": lambda e: templates.same_day_booking(e.customer_name, e.scheduled_at, e.service_type, e.city),
    "future_booking": lambda e: templates.future_booking(e.customer_name, e.scheduled_at, e.service_type),
    "cancellation": lambda e: templates.cancellation(e.customer_name, e.scheduled_at),
    "schedule_conflict": lambda e: templates.schedule_conflict(
        e.customer_name, e.scheduled_at, e.conflicts_with or "another job"
    ),
    "stale_job_alert": lambda e: templates.stale_job_alert(e.customer_name, e.hours_waiting),
    "follow_up": lambda e: templates.follow_up(e.customer_name, e.last_contact or "unknown"),
}

# Code the operator is most likely to answer with; stored on the context pointer
PROMPT_CODES = {
    "new_lead": "1",
    "callback_risk": "1",
    "commercial_lead": "1",
    "callback_request": "1",
    "abandoned_call": "1",
    "emergency_alert": "1",
    "snooze_expired": "1",
    "follow_up": "1",
    "same_day_booking": "OK",
    ESCALATION_EVENT: "1",
}


def render(event: NotificationEvent) -> str:
    if event.message:
        return event.message
    renderer = RENDERERS.get(event.event_type)
    if renderer is None or (event.event_type in TIMED_EVENTS and event.scheduled_at is None):
        return templates.generic_update(event.customer_name or "your account")
    return renderer(event)


@dataclass
class NotifyResult:
    status: str  # sent | queued | failed | suppressed | disabled | duplicate | skipped
    tier: Optional[Tier] = None
    plan: Optional[DeliveryPlan] = None
    message_id: Optional[str] = None


@dataclass
class QueueRunSummary:
    sent: int = 0
    failed: int = 0
    suppressed: int = 0
    requeued: int = 0
    duplicates: int = 0
    events: int = 0

    def as_dict(self) -> dict:
        return dict(
            sent=self.sent, failed=self.failed, suppressed=self.suppressed,
            requeued=self.requeued, duplicates=self.duplicates, events=self.events,
        )


@dataclass
class EscalationSummary:
    checked: int = 0
    escalated: list = field(default_factory=list)


class NotificationService:
    def __init__(
        self,
        store: InMemoryStore,
        contexts: ContextStore,
        outbound: OutboundSms,
        scheduler: Optional[DeliveryScheduler] = None,
        queue: Optional[BatchQueue] = None,
        escalations: Optional[EscalationMonitor] = None,
        clock: Callable[[], datetime] = utcnow,
        on_escalation=None,
    ):
        self.store = store
        self.contexts = contexts
        self.outbound = outbound
        self.scheduler = scheduler or DeliveryScheduler()
        self.queue = queue or BatchQueue()
        self.escalations = escalations or EscalationMonitor()
        self._clock = clock
        self._on_escalation = on_escalation

    def _local_now(self, account: Account, now: Optional[datetime]) -> datetime:
        return (now or self._clock()).astimezone(ZoneInfo(account.timezone))

    async def notify(self, event: NotificationEvent, now: Optional[datetime] = None) -> NotifyResult:
        account = await self.store.get_account(event.account_id)
        if account is None:
            logger.warning("Notification %s for unknown account %s dropped", event.event_type, event.account_id)
            return NotifyResult(status="skipped")
        now = self._local_now(account, now)
        if not event.message and event.event_type in DIGEST_BUILDERS:
            digest = DIGEST_BUILDERS[event.event_type](await self.store.list_leads(account.id), now)
            if not digest.has_activity:
                logger.info("No new leads for account %s, skipping %s", account.id, event.event_type)
                return NotifyResult(status="skipped")
            event = replace(event, message=digest.message())
        message = render(event)

        tier = classify(event.context())
        if account.sms_unsubscribed:
            await self.outbound.send(
                account, message, event_type=event.event_type, tier=tier.value,
                lead_id=event.lead_id, job_id=event.job_id,
            )
            return NotifyResult(status="suppressed", tier=tier)

        if event.event_type not in ALWAYS_ON_EVENTS and not account.event_preferences.get(event.event_type, True):
            logger.info("Account %s has %s notifications turned off", account.id, event.event_type)
            return NotifyResult(status="disabled", tier=tier)

        plan = self.scheduler.schedule(tier, event, now, QuietHours.for_account(account))
        item = QueuedNotification(event=event, plan=plan, message=message, queued_at=now)

        if plan.immediate:
            if self._already_sent(account, item, now):
                return NotifyResult(status="duplicate", tier=tier, plan=plan)
            outcome = await self._deliver(account, [item], now)
            return NotifyResult(
                status=_status(outcome), tier=tier, plan=plan, message_id=outcome.message_id,
            )

        due_at = self.queue.add(item)
        logger.info(
            "Queued %s (%s) for account %s until %s",
            event.event_type, tier.value, account.id, due_at.isoformat(),
        )
        return NotifyResult(status="queued", tier=tier, plan=plan)

    def _already_sent(self, account: Account, item: QueuedNotification, now: datetime) -> bool:
        """A single-record alert matching one just sent, by event or by near-identical text."""
        sent = self.outbound.exchange_log.outbound(account.id)
        if is_duplicate(sent, item.event, now):
            reason = "same event"
        elif is_similar_to_recent(sent, item.message, now):
            reason = "similar text"
        else:
            return False
        logger.info(
            "Skipping %s for account %s, %s sent recently", item.event.event_type, account.id, reason,
        )
        return True

    async def _deliver(
        self, account: Account, items: list[QueuedNotification], now: datetime
    ) -> SendOutcome:
        message = consolidate(items)
        first = items[0]
        # Strictest retry schedule in the batch
        policy = max((q.plan.backoff for q in items), key=lambda p: p.max_retries)
        single = len(items) == 1

        outcome = await self.outbound.send(
            account,
            message,
            policy=policy,
            event_type=first.event.event_type if single else "batch_summary",
            tier=first.tier.value,
            lead_id=first.event.lead_id if single else None,
            job_id=first.event.job_id if single else None,
        )
        if not outcome.sent:
            return outcome

        if single:
            event = first.event
            self.contexts.save(ContextPointer(
                account_id=account.id,
                phone=account.operator_phone,
                alert_type=event.event_type,
                created_at=now,
                lead_id=event.lead_id,
                job_id=event.job_id,
                customer_name=event.customer_name,
                customer_phone=event.customer_phone,
                tier=first.tier.value,
                last_prompted_code=event.prompt_code or PROMPT_CODES.get(event.event_type, ""),
            ))
        else:
            # A summary names no single record; short replies must not guess
            self.contexts.save(ContextPointer(
                account_id=account.id,
                phone=account.operator_phone,
                alert_type="batch_summary",
                created_at=now,
            ))

        for q in items:
            self.escalations.watch(q.event, q.tier, now)
        return outcome

    async def process_due(self, now: Optional[datetime] = None) -> QueueRunSummary:
        """Send every batch whose window has closed."""
        now = now or self._clock()
        summary = QueueRunSummary()

        for account_id, items in self.queue.pop_due(now):
            summary.events += len(items)
            account = await self.store.get_account(account_id)
            if account is None:
                logger.warning("Dropping %d queued notification(s) for missing account %s", len(items), account_id)
                continue

            local_now = self._local_now(account, now)
            quiet = QuietHours.for_account(account)
            if not account.sms_unsubscribed and quiet.contains(local_now) and not all(
                q.plan.bypass_quiet_hours for q in items
            ):
                self.queue.requeue(account_id, items, quiet.next_open(local_now))
                summary.requeued += len(items)
                continue

            if len(items) == 1 and self._already_sent(account, items[0], local_now):
                summary.duplicates += 1
                continue

            outcome = await self._deliver(account, items, local_now)
            if outcome.sent:
                summary.sent += 1
            elif outcome.suppressed:
                summary.suppressed += 1
            else:
                summary.failed += 1

        if summary.events:
            logger.info("Notification queue run: %s", summary.as_dict())
        return summary

    async def check_escalations(self, now: Optional[datetime] = None) -> EscalationSummary:
        """Re-raise alerts that got no operator action within their tier's window."""
        now = now or self._clock()
        summary = EscalationSummary()

        for timer in self.escalations.pop_due(now):
            summary.checked += 1
            lead = await self.store.get_lead(timer.account_id, timer.lead_id)
            if lead is None:
                continue

            account = await self.store.get_account(timer.account_id)
            pointer = self.contexts.get(timer.account_id, account.operator_phone) if account else None
            last_action = last_operator_action(lead, pointer)

            if not needs_escalation(
                timer.tier,
                timer.sent_at,
                now,
                last_action_at=last_action,
                record_terminal=lead.status.is_terminal,
            ):
                continue

            lead.priority_color = PriorityColor.RED
            lead.priority_reason = ESCALATION_REASON
            try:
                await self.store.save_lead(timer.account_id, lead)
            except StoreError as e:
                logger.error("Could not mark lead %s escalated: %s", lead.id, e)

            hours = _waited_hours(timer)
            event = NotificationEvent(
                event_type=ESCALATION_EVENT,
                account_id=timer.account_id,
                lead_id=lead.id,
                customer_name=lead.customer_name or timer.customer_name,
                customer_phone=lead.customer_phone or timer.customer_phone,
                priority_color=PriorityColor.RED,
                urgency=lead.urgency,
                priority_reason=ESCALATION_REASON,
                message=templates.escalation(
                    lead.customer_name or timer.customer_name or "Lead",
                    lead.customer_phone or timer.customer_phone,
                    hours,
                ),
            )
            logger.warning("Escalating lead %s after %dh without operator action", lead.id, hours)
            result = await self.notify(event, now)
            summary.escalated.append(lead.id)

            if self._on_escalation is not None:
                await self._on_escalation({
                    "account_id": timer.account_id,
                    "lead_id": lead.id,
                    "customer_name": event.customer_name,
                    "customer_phone": event.customer_phone,
                    "reason": ESCALATION_REASON,
                    "alert_sent_at": timer.sent_at.isoformat(),
                    "status": result.status,
                })
        return summary

    async def send_digests(self, event_type: str, now: Optional[datetime] = None) -> dict[str, str]:
        """Raise one digest event per account. Returns each account's notify status."""
        statuses = {}
        for account in await self.store.list_accounts():
            result = await self.notify(NotificationEvent(event_type=event_type, account_id=account.id), now)
            statuses[account.id] = result.status
        return statuses


def last_operator_action(lead: Lead, pointer: Optional[ContextPointer]) -> Optional[datetime]:
    """Latest of the lead's own update time and a reply to a prompt about it."""
    times = [lead.updated_at]
    if pointer is not None and pointer.lead_id == lead.id:
        times.append(pointer.replied_at)
    times = [t for t in times if t is not None]
    return max(times) if times else None


def _waited_hours(timer) -> int:
    return max(int((timer.due_at - timer.sent_at).total_seconds() // 3600), 1)


def _status(outcome: SendOutcome) -> str:
    if outcome.sent:
        return "sent"
    if outcome.suppressed:
        return "suppressed"
    return "failed"
