"""Booking commands: "4 <time>", "BOOK <time>", and bare 4/BOOKED conversions.

A booking creates the Job first and converts the lead second. If the lead
update fails the new job is deleted again.
"""

import logging
from datetime import datetime
from typing import Optional

from calllock_sms import templates
from calllock_sms.commands import (
    CommandContext,
    CommandResult,
    CommandRule,
    EventType,
    add_note,
    exact,
    resolve_open_lead,
    starts_with,
)
from calllock_sms.records import Job, Lead
from calllock_sms.state_machine import InvalidTransition
from calllock_sms.states import CallbackOutcome, JobStatus, LeadStatus
from calllock_sms.store import StoreError, new_id

logger = logging.getLogger(__name__)

BOOKED_NOTE = "Scheduled appointment"


def job_from_lead(lead: Lead, now: datetime, scheduled_at: Optional[datetime]) -> Job:
    return Job(
        id=new_id(),
        account_id=lead.account_id,
        created_at=now,
        customer_name=lead.customer_name,
        customer_phone=lead.customer_phone,
        customer_address=lead.customer_address,
        service_type=lead.service_type,
        urgency=lead.urgency,
        estimated_value=lead.estimated_value,
        priority_color=lead.priority_color,
        priority_reason=lead.priority_reason,
        lead_id=lead.id,
        scheduled_at=scheduled_at,
        needs_action=scheduled_at is None,
        updated_at=now,
    )


async def convert_lead(
    ctx: CommandContext, lead: Lead, scheduled_at: Optional[datetime]
) -> Job:
    """Create the job for `lead` and mark the lead converted.

    A scheduled booking is created confirmed; without a time the job stays
    new and flagged for action. Raises StoreError or InvalidTransition with
    nothing persisted.
    """
    job = job_from_lead(lead, ctx.now, scheduled_at)
    if scheduled_at is not None:
        ctx.machine.transition_job(job, JobStatus.CONFIRMED, ctx.now)

    # Validate the lead change before anything is written
    ctx.machine.transition_lead(lead, LeadStatus.CONVERTED, ctx.now, job_id=job.id)
    lead.callback_outcome = CallbackOutcome.BOOKED
    lead.callback_outcome_at = ctx.now
    add_note(lead, BOOKED_NOTE, ctx)

    await ctx.store.create_job(ctx.account.id, job)
    try:
        await ctx.store.save_lead(ctx.account.id, lead)
    except StoreError:
        await ctx.store.delete_job(ctx.account.id, job.id)
        raise
    return job


async def book_with_time(ctx: CommandContext, payload: str, usage: str) -> CommandResult:
    if not payload:
        return CommandResult(success=False, message=usage)

    resolved, lead, failure = await resolve_open_lead(ctx, templates.NO_LEAD_TO_BOOK)
    if failure:
        return failure

    parsed = ctx.time_parser.parse_time(payload, ctx.now)
    if not parsed.success:
        # Surface the parser's own prompt
        prompt = parsed.clarification_prompt or parsed.error or usage
        return CommandResult(success=False, message=prompt, lead_id=lead.id)

    try:
        job = await convert_lead(ctx, lead, parsed.date_time)
    except InvalidTransition as e:
        logger.info("Rejected booking for lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.BOOKING_FAILED, lead_id=lead.id)
    except StoreError as e:
        logger.error("Booking failed for lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.BOOKING_FAILED, lead_id=lead.id)

    logger.info("Lead %s booked as job %s for %s", lead.id, job.id, job.scheduled_at.isoformat())
    return CommandResult(
        success=True,
        message=templates.booking_confirmation(resolved.customer_name, job.scheduled_at, ctx.now),
        event_type=EventType.LEAD_BOOKING,
        reply_code="4",
        lead_id=lead.id,
        job_id=job.id,
    )


async def code_4_booking(ctx: CommandContext) -> CommandResult:
    return await book_with_time(ctx, ctx.raw[2:].strip(), templates.CODE_4_USAGE)


async def book_prefix(ctx: CommandContext) -> CommandResult:
    return await book_with_time(ctx, ctx.raw[len("BOOK "):].strip(), templates.BOOK_USAGE)


async def book_bare(ctx: CommandContext) -> CommandResult:
    return CommandResult(success=False, message=templates.BOOK_USAGE)


async def mark_booked(ctx: CommandContext) -> CommandResult:
    """Bare 4 / BOOKED: convert now, schedule later in the app."""
    resolved, lead, failure = await resolve_open_lead(ctx, templates.NO_LEAD_TO_UPDATE)
    if failure:
        return failure

    try:
        job = await convert_lead(ctx, lead, None)
    except InvalidTransition as e:
        logger.info("Rejected conversion for lead %s: %s", lead.id, e)
        return CommandResult(
            success=False,
            message=templates.already_closed(resolved.customer_name, lead.status.value),
            lead_id=lead.id,
        )
    except StoreError as e:
        logger.error("Conversion failed for lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, lead_id=lead.id)

    return CommandResult(
        success=True,
        message=templates.status_confirmation(resolved.customer_name, "SCHEDULED"),
        event_type=EventType.LEAD_UPDATE,
        reply_code="4",
        lead_id=lead.id,
        job_id=job.id,
    )


RULES = [
    CommandRule("code-4-booking", 11, starts_with("4 "), code_4_booking),
    CommandRule("code-4", 24, exact("4"), mark_booked),
    CommandRule("book-prefix", 31, starts_with("BOOK "), book_prefix),
    CommandRule("book", 32, exact("BOOK"), book_bare),
    CommandRule("word-booked", 51, exact("SCHEDULED", "BOOKED"), mark_booked),
]
