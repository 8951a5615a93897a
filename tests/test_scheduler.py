import pytest
from datetime import datetime, time, timedelta, timezone

from calllock_sms.exchange_log import FAILED, OUTBOUND, SENT, ExchangeEntry
from calllock_sms.records import Account
from calllock_sms.scheduler import (
    BatchQueue,
    DeliveryScheduler,
    EscalationMonitor,
    QueuedNotification,
    QuietHours,
    consolidate,
    is_duplicate,
    is_similar_to_recent,
    needs_escalation,
    parse_hhmm,
    similarity,
)
from calllock_sms.states import Urgency
from calllock_sms.tiers import NotificationEvent, Tier

from conftest import ACCOUNT_ID, NOW, TZ

NIGHT = NOW.replace(hour=22)
QUIET = QuietHours(enabled=True, start=time(21, 0), end=time(7, 0), timezone="America/Chicago")


def event(lead_id="lead-1", event_type="new_lead", **kwargs):
    return NotificationEvent(event_type=event_type, account_id=ACCOUNT_ID, lead_id=lead_id, **kwargs)


def queued(tier=Tier.STANDARD, now=NOW, message="", **kwargs):
    e = event(**kwargs)
    plan = DeliveryScheduler().schedule(tier, e, now)
    return QueuedNotification(event=e, plan=plan, message=message or e.record_key, queued_at=now)


class TestQuietHours:
    def test_parse_hhmm(self):
        assert parse_hhmm("21:00") == time(21, 0)
        assert parse_hhmm("7") == time(7, 0)

    def test_overnight_window(self):
        assert QUIET.contains(NIGHT)
        assert QUIET.contains(NOW.replace(hour=6, minute=59))
        assert not QUIET.contains(NOW.replace(hour=7))
        assert not QUIET.contains(NOW)

    def test_same_day_window(self):
        lunch = QuietHours(enabled=True, start=time(12), end=time(13))
        assert lunch.contains(NOW.replace(hour=12, minute=30))
        assert not lunch.contains(NOW.replace(hour=13))

    def test_disabled_or_empty_window(self):
        assert not QuietHours(enabled=False).contains(NIGHT)
        assert not QuietHours(enabled=True, start=time(9), end=time(9)).contains(NOW)

    def test_evaluated_in_account_timezone(self):
        # 03:00 UTC is 22:00 the previous evening in Chicago
        assert QUIET.contains(datetime(2026, 10, 13, 3, 0, tzinfo=timezone.utc))

    def test_next_open(self):
        assert QUIET.next_open(NIGHT) == datetime(2026, 10, 13, 7, 0, tzinfo=TZ)
        early = datetime(2026, 10, 13, 3, 0, tzinfo=TZ)
        assert QUIET.next_open(early) == datetime(2026, 10, 13, 7, 0, tzinfo=TZ)
        assert QUIET.next_open(NOW) == NOW

    def test_for_account(self):
        account = Account(id="a", operator_phone="1", quiet_hours_enabled=True,
                          quiet_hours_start="22:30", quiet_hours_end="06:15", timezone="America/New_York")
        qh = QuietHours.for_account(account)
        assert (qh.start, qh.end, qh.timezone) == (time(22, 30), time(6, 15), "America/New_York")


class TestDeliveryScheduler:
    def test_urgent_sends_through_quiet_hours(self):
        plan = DeliveryScheduler().schedule(Tier.URGENT, event(), NIGHT, QUIET)
        assert plan.immediate
        assert plan.send_at == NIGHT
        assert plan.bypass_quiet_hours is True
        assert plan.batch_window_seconds == 0

    def test_standard_waits_for_batch_window(self):
        plan = DeliveryScheduler().schedule(Tier.STANDARD, event(), NOW, QUIET)
        assert not plan.immediate
        assert plan.send_at == NOW + timedelta(minutes=5)
        assert plan.escalate_after_minutes == 120
        assert plan.backoff.delays == (5, 30, 120)

    def test_quiet_hours_defer_to_morning(self):
        plan = DeliveryScheduler().schedule(Tier.BOOKED, event(), NIGHT, QUIET)
        assert plan.deferred_for_quiet_hours
        assert plan.send_at == datetime(2026, 10, 13, 7, 0, tzinfo=TZ)

    def test_booked_is_immediate_in_daytime(self):
        assert DeliveryScheduler().schedule(Tier.BOOKED, event(), NOW, QUIET).immediate

    def test_digest_window(self):
        plan = DeliveryScheduler().schedule(Tier.DIGEST, event(event_type="daily_digest"), NOW)
        assert plan.send_at == NOW + timedelta(hours=1)


class TestBatchQueue:
    def test_one_batch_per_account_due_at_earliest(self):
        queue = BatchQueue()
        queue.add(queued(Tier.DIGEST, lead_id="a"))
        due = queue.add(queued(Tier.STANDARD, lead_id="b"))
        assert due == NOW + timedelta(minutes=5)
        assert queue.due_at(ACCOUNT_ID) == due
        assert len(queue) == 2

    def test_newer_event_replaces_same_record(self):
        queue = BatchQueue()
        queue.add(queued(lead_id="a", message="old"))
        queue.add(queued(lead_id="a", message="new"))
        assert [q.message for q in queue.pending()] == ["new"]

    def test_pop_due(self):
        queue = BatchQueue()
        queue.add(queued(lead_id="a"))
        assert queue.pop_due(NOW) == []
        [(account_id, items)] = queue.pop_due(NOW + timedelta(minutes=5))
        assert account_id == ACCOUNT_ID
        assert len(items) == 1
        assert len(queue) == 0

    def test_requeue_keeps_newer_items(self):
        queue = BatchQueue()
        queue.add(queued(lead_id="a", message="stale"))
        [(_, items)] = queue.pop_due(NOW + timedelta(minutes=5))
        queue.add(queued(lead_id="a", message="fresh"))
        queue.add(queued(lead_id="b", message="other"))

        morning = datetime(2026, 10, 13, 7, 0, tzinfo=TZ)
        queue.requeue(ACCOUNT_ID, items, morning)

        assert sorted(q.message for q in queue.pending()) == ["fresh", "other"]
        assert queue.due_at(ACCOUNT_ID) == NOW + timedelta(minutes=5)

    def test_requeue_into_empty_queue(self):
        queue = BatchQueue()
        item = queued(lead_id="a")
        morning = datetime(2026, 10, 13, 7, 0, tzinfo=TZ)
        queue.requeue(ACCOUNT_ID, [item], morning)
        assert queue.due_at(ACCOUNT_ID) == morning


class TestConsolidate:
    def test_single_item_keeps_text(self):
        assert consolidate([queued(message="CALLLOCK: New lead")]) == "CALLLOCK: New lead"

    def test_summary_counts_urgent(self):
        items = [
            queued(lead_id="a"),
            queued(lead_id="b", urgency=Urgency.HIGH),
            queued(Tier.URGENT, lead_id="c"),
        ]
        assert consolidate(items) == "CALLLOCK: 3 leads need attention\n2 urgent\nOpen app for details"

    def test_summary_without_urgent(self):
        items = [queued(lead_id="a"), queued(lead_id="b")]
        assert consolidate(items) == "CALLLOCK: 2 leads need attention\nOpen app for details"

    def test_empty(self):
        with pytest.raises(ValueError):
            consolidate([])


def sent_entry(body="CALLLOCK: Hung up\nJane", status=SENT, **kwargs):
    defaults = dict(event_type="abandoned_call", lead_id="lead-1")
    defaults.update(kwargs)
    return ExchangeEntry(
        direction=OUTBOUND, account_id=ACCOUNT_ID, phone="+15125550100", body=body,
        at=NOW, status=status, success=status == SENT, **defaults,
    )


class TestDuplicates:
    def test_same_event_for_same_lead_inside_window(self):
        sent = [sent_entry()]
        assert is_duplicate(sent, event(event_type="abandoned_call"), NOW + timedelta(minutes=4))
        assert not is_duplicate(sent, event(event_type="abandoned_call"), NOW + timedelta(minutes=5))

    def test_other_lead_or_event_is_not_a_duplicate(self):
        sent = [sent_entry()]
        assert not is_duplicate(sent, event(lead_id="lead-2", event_type="abandoned_call"), NOW)
        assert not is_duplicate(sent, event(event_type="new_lead"), NOW)

    def test_failed_send_does_not_count(self):
        assert not is_duplicate([sent_entry(status=FAILED)], event(event_type="abandoned_call"), NOW)

    def test_similarity_ignores_times_dates_and_punctuation(self):
        assert similarity("Booking 12/20 at 2:00 PM!", "booking 12/21 at 3:30pm") == 1.0
        assert similarity("alpha beta", "gamma delta") == 0.0
        assert similarity("", "anything") == 0.0

    def test_near_identical_text_inside_window(self):
        sent = [sent_entry(body="CALLLOCK: Call Jane back now")]
        assert is_similar_to_recent(sent, "CALLLOCK: call Jane back NOW!", NOW + timedelta(minutes=29))
        assert not is_similar_to_recent(sent, "CALLLOCK: call Jane back NOW!", NOW + timedelta(minutes=30))
        assert not is_similar_to_recent(sent, "CALLLOCK: New booking for Ana", NOW)


class TestEscalation:
    def test_window(self):
        assert not needs_escalation(Tier.STANDARD, NOW, NOW + timedelta(minutes=119))
        assert needs_escalation(Tier.STANDARD, NOW, NOW + timedelta(minutes=120))

    def test_operator_action_after_alert_cancels(self):
        later = NOW + timedelta(hours=3)
        assert not needs_escalation(Tier.STANDARD, NOW, later, last_action_at=NOW + timedelta(minutes=1))
        assert needs_escalation(Tier.STANDARD, NOW, later, last_action_at=NOW - timedelta(minutes=1))

    def test_closed_record_or_tier_without_window(self):
        later = NOW + timedelta(hours=3)
        assert not needs_escalation(Tier.STANDARD, NOW, later, record_terminal=True)
        assert not needs_escalation(Tier.URGENT, NOW, later)

    def test_monitor_watches_only_escalating_tiers(self):
        monitor = EscalationMonitor()
        timer = monitor.watch(event(), Tier.STANDARD, NOW)
        assert timer.due_at == NOW + timedelta(hours=2)
        assert monitor.watch(event(lead_id="b"), Tier.URGENT, NOW) is None
        assert monitor.watch(event(lead_id=None, event_type="daily_digest"), Tier.STANDARD, NOW) is None
        assert [t.lead_id for t in monitor.pending()] == ["lead-1"]

    def test_monitor_pop_due_and_cancel(self):
        monitor = EscalationMonitor()
        monitor.watch(event(lead_id="a"), Tier.STANDARD, NOW)
        monitor.watch(event(lead_id="b"), Tier.STANDARD, NOW + timedelta(minutes=30))
        monitor.cancel("b")
        assert monitor.pop_due(NOW + timedelta(minutes=119)) == []
        assert [t.lead_id for t in monitor.pop_due(NOW + timedelta(hours=2))] == ["a"]
        assert monitor.pending() == []
