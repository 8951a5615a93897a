from datetime import timedelta

from calllock_sms.records import Job
from calllock_sms.states import JobStatus, LeadStatus, PriorityColor, Urgency
from calllock_sms.urgency import (
    UrgencyTier,
    count_by_urgency_tier,
    determine_urgency_tier,
    sort_by_urgency,
    urgency_score,
)

from conftest import ACCOUNT_ID, NOW, make_lead


def aged(minutes=0, hours=0, **kwargs):
    return make_lead(created_at=NOW - timedelta(minutes=minutes, hours=hours), **kwargs)


def ai_job(**kwargs):
    return Job(id="job-ai", account_id=ACCOUNT_ID, created_at=NOW - timedelta(hours=3), is_ai_booked=True, **kwargs)


class TestDetermineUrgencyTier:
    def test_age_bands(self):
        assert determine_urgency_tier(aged(minutes=5), NOW) is UrgencyTier.HOT
        assert determine_urgency_tier(aged(minutes=15), NOW) is UrgencyTier.WARM
        assert determine_urgency_tier(aged(hours=2), NOW) is UrgencyTier.FOLLOW_UP
        assert determine_urgency_tier(aged(hours=24), NOW) is UrgencyTier.GETTING_COLD

    def test_custom_cold_threshold(self):
        assert determine_urgency_tier(aged(hours=5), NOW, threshold_hours=4) is UrgencyTier.GETTING_COLD

    def test_emergency_and_callback_risk(self):
        assert determine_urgency_tier(aged(hours=30, urgency=Urgency.EMERGENCY), NOW) is UrgencyTier.EMERGENCY
        assert determine_urgency_tier(aged(hours=30, priority_color=PriorityColor.RED), NOW) is UrgencyTier.CALLBACK_RISK

    def test_pending_ai_booking(self):
        assert determine_urgency_tier(ai_job(), NOW) is UrgencyTier.CONFIRM_BOOKING
        confirmed = ai_job(status=JobStatus.CONFIRMED, booking_confirmed=True)
        assert determine_urgency_tier(confirmed, NOW) is UrgencyTier.FOLLOW_UP

    def test_closed_and_snoozed_excluded(self):
        assert determine_urgency_tier(aged(status=LeadStatus.LOST), NOW) is None
        assert determine_urgency_tier(ai_job(status=JobStatus.CANCELLED), NOW) is None
        snoozed = aged(status=LeadStatus.DEFERRED, remind_at=NOW + timedelta(hours=1))
        assert determine_urgency_tier(snoozed, NOW) is None

    def test_expired_snooze_returns_to_queue(self):
        woke = aged(hours=3, status=LeadStatus.DEFERRED, remind_at=NOW - timedelta(minutes=1))
        assert determine_urgency_tier(woke, NOW) is UrgencyTier.FOLLOW_UP


class TestScoring:
    def test_age_bonus_capped(self):
        assert urgency_score(aged(minutes=10), NOW) == 801.0
        assert urgency_score(aged(hours=30), NOW) == 250.0

    def test_older_item_never_jumps_a_tier(self):
        oldest_warm = aged(minutes=119)
        newest_hot = aged(minutes=0)
        assert urgency_score(newest_hot, NOW) > urgency_score(oldest_warm, NOW)

    def test_sort_drops_closed_items(self):
        hot = aged(lead_id="hot", minutes=1)
        cold = aged(lead_id="cold", hours=48)
        risk = aged(lead_id="risk", hours=3, priority_color=PriorityColor.RED)
        lost = aged(lead_id="lost", status=LeadStatus.LOST)
        ordered = sort_by_urgency([cold, lost, hot, risk], NOW)
        assert [i.id for i in ordered] == ["risk", "hot", "cold"]

    def test_count_by_tier(self):
        counts = count_by_urgency_tier([aged(minutes=1), aged(minutes=2), ai_job()], NOW)
        assert counts[UrgencyTier.HOT] == 2
        assert counts[UrgencyTier.CONFIRM_BOOKING] == 1
        assert counts[UrgencyTier.EMERGENCY] == 0
