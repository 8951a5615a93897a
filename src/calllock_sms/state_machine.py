import logging
from datetime import datetime
from typing import Optional

from calllock_sms.records import Job, Lead
from calllock_sms.states import JobStatus, LeadStatus

logger = logging.getLogger(__name__)

_ACTIVE_LEAD = {s for s in LeadStatus if s.is_active}

LEAD_TRANSITIONS = {
    LeadStatus.CALLBACK_REQUESTED: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.THINKING: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.VOICEMAIL_LEFT: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.INFO_ONLY: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.DEFERRED: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.ABANDONED: _ACTIVE_LEAD | {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.CONVERTED: set(),
    LeadStatus.LOST: set(),
}

JOB_TRANSITIONS = {
    JobStatus.NEW: {
        JobStatus.CONFIRMED, JobStatus.EN_ROUTE, JobStatus.ON_SITE,
        JobStatus.COMPLETE, JobStatus.CANCELLED,
    },
    JobStatus.CONFIRMED: {
        JobStatus.EN_ROUTE, JobStatus.ON_SITE, JobStatus.COMPLETE, JobStatus.CANCELLED,
    },
    JobStatus.EN_ROUTE: {JobStatus.ON_SITE, JobStatus.COMPLETE, JobStatus.CANCELLED},
    JobStatus.ON_SITE: {JobStatus.COMPLETE, JobStatus.CANCELLED},
    JobStatus.COMPLETE: set(),
    JobStatus.CANCELLED: set(),
}


class InvalidTransition(Exception):
    """A status change the lead/job lifecycle does not allow."""

    def __init__(self, kind: str, current, target, detail: str = ""):
        self.kind = kind
        self.current = current
        self.target = target
        message = f"{kind} cannot move from {current.value} to {target.value}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def _check_tables() -> None:
    """Both tables must name every status, or a typo would silently block a state."""
    if set(LEAD_TRANSITIONS) != set(LeadStatus):
        raise RuntimeError("LEAD_TRANSITIONS does not cover every LeadStatus")
    if set(JOB_TRANSITIONS) != set(JobStatus):
        raise RuntimeError("JOB_TRANSITIONS does not cover every JobStatus")
    for status in JobStatus:
        for target in JOB_TRANSITIONS[status]:
            if target is not JobStatus.CANCELLED and target.rank <= status.rank:
                raise RuntimeError(f"job transition {status.value}->{target.value} is not forward")


_check_tables()


class LeadJobStateMachine:
    """Applies status changes to leads and jobs along with their timestamp companions.

    Records are mutated in place; callers hand in a working copy and persist it
    only after the transition succeeds.
    """

    def valid_lead_transitions(self, status: LeadStatus) -> set[LeadStatus]:
        return LEAD_TRANSITIONS.get(status, set())

    def valid_job_transitions(self, status: JobStatus) -> set[JobStatus]:
        return JOB_TRANSITIONS.get(status, set())

    def transition_lead(
        self,
        lead: Lead,
        target: LeadStatus,
        now: datetime,
        *,
        reason: str = "",
        job_id: Optional[str] = None,
        remind_at: Optional[datetime] = None,
    ) -> Lead:
        if target not in self.valid_lead_transitions(lead.status):
            raise InvalidTransition("lead", lead.status, target)

        if target is LeadStatus.CONVERTED:
            if not job_id:
                raise InvalidTransition("lead", lead.status, target, "conversion requires a job")
            lead.converted_job_id = job_id
            lead.converted_at = now
        elif target is LeadStatus.LOST:
            if not reason:
                raise InvalidTransition("lead", lead.status, target, "a loss reason is required")
            lead.lost_reason = reason
            lead.lost_at = now
        elif target is LeadStatus.DEFERRED:
            if remind_at is None or remind_at <= now:
                raise InvalidTransition("lead", lead.status, target, "remind_at must be in the future")
            lead.remind_at = remind_at

        logger.info("Lead %s: %s -> %s", lead.id, lead.status.value, target.value)
        lead.status = target
        lead.updated_at = now
        return lead

    def transition_job(
        self,
        job: Job,
        target: JobStatus,
        now: datetime,
        *,
        reason: str = "",
    ) -> Job:
        if target not in self.valid_job_transitions(job.status):
            raise InvalidTransition("job", job.status, target)

        if target is JobStatus.CONFIRMED:
            job.confirmed_at = now
            job.booking_confirmed = True
        elif target is JobStatus.EN_ROUTE:
            job.en_route_at = now
        elif target is JobStatus.ON_SITE:
            job.on_site_at = now
        elif target is JobStatus.COMPLETE:
            job.completed_at = now
            job.needs_action = False
        elif target is JobStatus.CANCELLED:
            job.cancelled_at = now
            job.cancel_reason = reason
            job.needs_action = False

        logger.info("Job %s: %s -> %s", job.id, job.status.value, target.value)
        job.status = target
        job.updated_at = now
        return job
