import pytest
from datetime import timedelta

from calllock_sms.records import Job
from calllock_sms.state_machine import (
    JOB_TRANSITIONS,
    LEAD_TRANSITIONS,
    InvalidTransition,
    LeadJobStateMachine,
)
from calllock_sms.states import JobStatus, LeadStatus

from conftest import ACCOUNT_ID, NOW, make_lead


@pytest.fixture
def sm():
    return LeadJobStateMachine()


def make_job(status=JobStatus.NEW):
    return Job(id="job-1", account_id=ACCOUNT_ID, created_at=NOW, customer_name="Bob", status=status)


class TestTables:
    def test_every_status_has_an_entry(self):
        assert set(LEAD_TRANSITIONS) == set(LeadStatus)
        assert set(JOB_TRANSITIONS) == set(JobStatus)

    def test_terminal_statuses_have_no_exits(self):
        for status in (LeadStatus.CONVERTED, LeadStatus.LOST):
            assert LEAD_TRANSITIONS[status] == set()
        for status in (JobStatus.COMPLETE, JobStatus.CANCELLED):
            assert JOB_TRANSITIONS[status] == set()

    def test_job_moves_only_forward_or_to_cancelled(self):
        for status, targets in JOB_TRANSITIONS.items():
            for target in targets:
                assert target is JobStatus.CANCELLED or target.rank > status.rank

    def test_cancelled_reachable_from_every_open_job_status(self):
        for status in (JobStatus.NEW, JobStatus.CONFIRMED, JobStatus.EN_ROUTE, JobStatus.ON_SITE):
            assert JobStatus.CANCELLED in JOB_TRANSITIONS[status]


class TestLeadTransitions:
    def test_lost_sets_reason_and_timestamp(self, sm):
        lead = make_lead()
        sm.transition_lead(lead, LeadStatus.LOST, NOW, reason="Went with competitor")
        assert lead.status is LeadStatus.LOST
        assert lead.lost_reason == "Went with competitor"
        assert lead.lost_at == NOW
        assert lead.updated_at == NOW

    def test_lost_requires_reason(self, sm):
        lead = make_lead()
        with pytest.raises(InvalidTransition):
            sm.transition_lead(lead, LeadStatus.LOST, NOW)
        assert lead.status is LeadStatus.CALLBACK_REQUESTED

    def test_converted_requires_job(self, sm):
        lead = make_lead()
        with pytest.raises(InvalidTransition):
            sm.transition_lead(lead, LeadStatus.CONVERTED, NOW)

    def test_converted_records_job(self, sm):
        lead = make_lead()
        sm.transition_lead(lead, LeadStatus.CONVERTED, NOW, job_id="job-9")
        assert lead.converted_job_id == "job-9"
        assert lead.converted_at == NOW

    def test_deferred_requires_future_remind_at(self, sm):
        lead = make_lead()
        with pytest.raises(InvalidTransition):
            sm.transition_lead(lead, LeadStatus.DEFERRED, NOW, remind_at=NOW - timedelta(minutes=1))
        sm.transition_lead(lead, LeadStatus.DEFERRED, NOW, remind_at=NOW + timedelta(hours=1))
        assert lead.remind_at == NOW + timedelta(hours=1)

    def test_any_active_status_may_be_deferred(self, sm):
        for status in LeadStatus:
            if status.is_active:
                assert LeadStatus.DEFERRED in sm.valid_lead_transitions(status)

    def test_terminal_lead_cannot_reopen(self, sm):
        lead = make_lead(status=LeadStatus.LOST)
        with pytest.raises(InvalidTransition):
            sm.transition_lead(lead, LeadStatus.CALLBACK_REQUESTED, NOW)


class TestJobTransitions:
    def test_full_forward_path_sets_timestamps(self, sm):
        job = make_job()
        sm.transition_job(job, JobStatus.CONFIRMED, NOW)
        sm.transition_job(job, JobStatus.EN_ROUTE, NOW + timedelta(hours=1))
        sm.transition_job(job, JobStatus.ON_SITE, NOW + timedelta(hours=2))
        sm.transition_job(job, JobStatus.COMPLETE, NOW + timedelta(hours=3))
        assert job.booking_confirmed is True
        assert job.confirmed_at == NOW
        assert job.en_route_at == NOW + timedelta(hours=1)
        assert job.on_site_at == NOW + timedelta(hours=2)
        assert job.completed_at == NOW + timedelta(hours=3)

    def test_complete_clears_needs_action(self, sm):
        job = make_job()
        job.needs_action = True
        sm.transition_job(job, JobStatus.COMPLETE, NOW)
        assert job.needs_action is False

    def test_cannot_move_backwards(self, sm):
        job = make_job(JobStatus.ON_SITE)
        with pytest.raises(InvalidTransition):
            sm.transition_job(job, JobStatus.EN_ROUTE, NOW)

    def test_cancel_from_on_site(self, sm):
        job = make_job(JobStatus.ON_SITE)
        sm.transition_job(job, JobStatus.CANCELLED, NOW, reason="Customer rescheduled")
        assert job.cancelled_at == NOW
        assert job.cancel_reason == "Customer rescheduled"

    def test_cannot_cancel_complete_job(self, sm):
        job = make_job(JobStatus.COMPLETE)
        with pytest.raises(InvalidTransition) as exc:
            sm.transition_job(job, JobStatus.CANCELLED, NOW)
        assert exc.value.current is JobStatus.COMPLETE
        assert job.status is JobStatus.COMPLETE
        assert job.cancelled_at is None

    def test_cancelled_is_not_reversible(self, sm):
        job = make_job(JobStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            sm.transition_job(job, JobStatus.NEW, NOW)
