"""Job actions from the field: confirm, call info, en route, on site, complete, cancel."""

import logging
from typing import Callable, Optional

from calllock_sms import templates
from calllock_sms.commands import (
    CommandContext,
    CommandResult,
    CommandRule,
    EventType,
    exact,
)
from calllock_sms.records import Job
from calllock_sms.state_machine import InvalidTransition
from calllock_sms.states import JobStatus
from calllock_sms.store import StoreError

logger = logging.getLogger(__name__)

CANCEL_REASON = "Cancelled via SMS"


def _open(job: Job) -> bool:
    return not job.status.is_terminal


def _pending_ai_booking(job: Job) -> bool:
    return job.is_ai_booked and not job.booking_confirmed and job.status is JobStatus.NEW


def _upcoming(job: Job) -> bool:
    return job.status in (JobStatus.NEW, JobStatus.CONFIRMED)


def _flagged(job: Job) -> bool:
    return job.needs_action and _open(job)


async def find_job(
    ctx: CommandContext,
    where: Callable[[Job], bool],
    *,
    context_any_status: bool = False,
) -> Optional[Job]:
    """The job a job command targets.

    The context job wins when it satisfies `where` (or always, with
    `context_any_status`, so the handler can explain a rejection). Otherwise
    the newest matching job in the account.
    """
    resolved = await ctx.resolve()
    if resolved is not None and resolved.job_id:
        job = await ctx.store.get_job(ctx.account.id, resolved.job_id)
        if job is not None and (context_any_status or where(job)):
            return job
    return await ctx.store.latest_job(ctx.account.id, where)


def _name(job: Job) -> str:
    return job.customer_name or "Customer"


async def _move_job(
    ctx: CommandContext,
    job: Job,
    target: JobStatus,
    success_message: str,
    rejected_message: str,
    *,
    reason: str = "",
) -> CommandResult:
    try:
        ctx.machine.transition_job(job, target, ctx.now, reason=reason)
        await ctx.store.save_job(ctx.account.id, job)
    except InvalidTransition as e:
        logger.info("Rejected %s for job %s: %s", target.value, job.id, e)
        return CommandResult(success=False, message=rejected_message, job_id=job.id)
    except StoreError as e:
        logger.error("Failed to update job %s: %s", job.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, job_id=job.id)

    return CommandResult(
        success=True,
        message=success_message,
        event_type=EventType.JOB_UPDATE,
        job_id=job.id,
        lead_id=job.lead_id,
    )


async def confirm_booking(ctx: CommandContext) -> CommandResult:
    job = await find_job(ctx, _pending_ai_booking)
    if job is None:
        return CommandResult(success=False, message=templates.NO_PENDING_BOOKING)
    name = _name(job)
    result = await _move_job(
        ctx, job, JobStatus.CONFIRMED,
        templates.confirm_booking(name),
        templates.NO_PENDING_BOOKING,
    )
    result.reply_code = "OK"
    return result


async def call_info(ctx: CommandContext) -> CommandResult:
    resolved = await ctx.resolve()
    if resolved is not None and resolved.customer_phone:
        return CommandResult(
            success=True,
            message=templates.customer_phone(resolved.customer_name, resolved.customer_phone),
            lead_id=resolved.lead_id,
            job_id=resolved.job_id,
        )

    if resolved is not None and resolved.lead_id:
        lead = await ctx.store.get_lead(ctx.account.id, resolved.lead_id)
        if lead is not None and lead.customer_phone:
            return CommandResult(
                success=True,
                message=templates.customer_phone(lead.customer_name or resolved.customer_name, lead.customer_phone),
                lead_id=lead.id,
            )

    job = await find_job(ctx, _upcoming)
    if job is None or not job.customer_phone:
        return CommandResult(success=False, message=templates.NO_RECENT_JOB)
    return CommandResult(
        success=True,
        message=templates.customer_phone(_name(job), job.customer_phone),
        job_id=job.id,
    )


def _transition_handler(target: JobStatus, label: str):
    async def handler(ctx: CommandContext) -> CommandResult:
        job = await find_job(ctx, _open, context_any_status=True)
        if job is None:
            return CommandResult(success=False, message=templates.NO_RECENT_JOB)
        name = _name(job)
        return await _move_job(
            ctx, job, target,
            templates.job_status_confirmation(name, label),
            templates.transition_rejected(name, job.status.value, label),
        )

    handler.__name__ = f"job_{target.value}"
    return handler


async def complete_job(ctx: CommandContext) -> CommandResult:
    job = await find_job(ctx, _flagged, context_any_status=True)
    if job is None:
        job = await ctx.store.latest_job(ctx.account.id, _open)
    if job is None:
        return CommandResult(success=False, message=templates.NO_ACTION_JOBS)
    name = _name(job)
    return await _move_job(
        ctx, job, JobStatus.COMPLETE,
        templates.complete_confirmation(name),
        templates.transition_rejected(name, job.status.value, "COMPLETE"),
    )


async def cancel_job(ctx: CommandContext) -> CommandResult:
    job = await find_job(ctx, _open, context_any_status=True)
    if job is None:
        return CommandResult(success=False, message=templates.NO_RECENT_JOB)
    name = _name(job)
    return await _move_job(
        ctx, job, JobStatus.CANCELLED,
        templates.job_status_confirmation(name, "CANCELLED"),
        templates.cancel_rejected(name, job.status.value),
        reason=CANCEL_REASON,
    )


RULES = [
    CommandRule("confirm-booking", 40, exact("OK", "Y", "YES", "CONFIRM"), confirm_booking),
    CommandRule("call-info", 45, exact("CALL", "PHONE", "NUMBER"), call_info),
    CommandRule("en-route", 46, exact("OMW", "ENROUTE", "EN ROUTE"), _transition_handler(JobStatus.EN_ROUTE, "EN ROUTE")),
    CommandRule("on-site", 47, exact("ARRIVED", "ONSITE", "ON SITE"), _transition_handler(JobStatus.ON_SITE, "ON SITE")),
    CommandRule("complete-job", 48, exact("COMPLETE", "DONE", "FINISHED"), complete_job),
    CommandRule("cancel-job", 49, exact("CANCEL JOB"), cancel_job),
]
