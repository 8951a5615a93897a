"""Lead status codes, notes, snooze and the free-text fallback."""

import logging
from dataclasses import dataclass

from calllock_sms import templates
from calllock_sms.commands import (
    CommandContext,
    CommandResult,
    CommandRule,
    EventType,
    add_note,
    anything,
    exact,
    resolve_open_lead,
    starts_with,
)
from calllock_sms.state_machine import InvalidTransition
from calllock_sms.states import CallbackOutcome, LeadStatus
from calllock_sms.store import StoreError

logger = logging.getLogger(__name__)

LOST_REASON = "Not interested (marked via SMS)"
MIN_FREE_TEXT_NOTE = 3


@dataclass(frozen=True)
class StatusCode:
    code: str
    status: LeadStatus
    auto_note: str
    label: str
    outcome: CallbackOutcome | None = None


STATUS_CODES = {
    "1": StatusCode("1", LeadStatus.CALLBACK_REQUESTED, "Contacted via phone", "CONTACTED"),
    "2": StatusCode("2", LeadStatus.VOICEMAIL_LEFT, "Left voicemail", "VOICEMAIL", CallbackOutcome.NO_ANSWER),
    "5": StatusCode("5", LeadStatus.LOST, "Customer not interested", "LOST"),
}


async def apply_status_code(ctx: CommandContext, code: StatusCode) -> CommandResult:
    resolved, lead, failure = await resolve_open_lead(ctx, templates.NO_LEAD_TO_UPDATE)
    if failure:
        return failure

    try:
        ctx.machine.transition_lead(
            lead,
            code.status,
            ctx.now,
            reason=LOST_REASON if code.status is LeadStatus.LOST else "",
        )
        if code.outcome is not None:
            lead.callback_outcome = code.outcome
            lead.callback_outcome_at = ctx.now
        add_note(lead, code.auto_note, ctx)
        await ctx.store.save_lead(ctx.account.id, lead)
    except InvalidTransition as e:
        logger.info("Rejected code %s for lead %s: %s", code.code, lead.id, e)
        return CommandResult(
            success=False,
            message=templates.already_closed(resolved.customer_name, lead.status.value),
            lead_id=lead.id,
        )
    except StoreError as e:
        logger.error("Failed to save lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, lead_id=lead.id)

    return CommandResult(
        success=True,
        message=templates.status_confirmation(resolved.customer_name, code.label),
        event_type=EventType.LEAD_UPDATE,
        reply_code=code.code,
        lead_id=lead.id,
    )


def _status_handler(code: str):
    async def handler(ctx: CommandContext) -> CommandResult:
        return await apply_status_code(ctx, STATUS_CODES[code])

    handler.__name__ = f"status_code_{code}"
    return handler


async def save_note(ctx: CommandContext, text: str, reply_code: str) -> CommandResult:
    resolved, lead, failure = await resolve_open_lead(ctx, templates.NO_LEAD_FOR_NOTE)
    if failure:
        return failure

    add_note(lead, text, ctx)
    try:
        await ctx.store.save_lead(ctx.account.id, lead)
    except StoreError as e:
        logger.error("Failed to add note to lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, lead_id=lead.id)

    return CommandResult(
        success=True,
        message=templates.note_confirmation(resolved.customer_name),
        event_type=EventType.LEAD_NOTE,
        reply_code=reply_code,
        lead_id=lead.id,
    )


async def code_3_note(ctx: CommandContext) -> CommandResult:
    text = ctx.raw[1:].lstrip().removeprefix(":").strip()
    if not text:
        return CommandResult(success=False, message=templates.CODE_3_USAGE)
    return await save_note(ctx, text, "3")


async def code_3_bare(ctx: CommandContext) -> CommandResult:
    return CommandResult(success=False, message=templates.CODE_3_USAGE)


async def note_prefix(ctx: CommandContext) -> CommandResult:
    text = ctx.raw[len("NOTE"):].lstrip(":").strip()
    if not text:
        return CommandResult(success=False, message=templates.NOTE_USAGE)
    return await save_note(ctx, text, "NOTE")


async def snooze(ctx: CommandContext) -> CommandResult:
    payload = ctx.upper[len("SNOOZE"):].strip()
    if not payload:
        return CommandResult(success=False, message=templates.SNOOZE_USAGE)

    parsed = ctx.time_parser.parse_snooze(payload, ctx.now)
    if not parsed.success:
        return CommandResult(success=False, message=templates.SNOOZE_USAGE)

    resolved, lead, failure = await resolve_open_lead(ctx, templates.NO_LEAD_TO_SNOOZE)
    if failure:
        return failure

    try:
        ctx.machine.transition_lead(lead, LeadStatus.DEFERRED, ctx.now, remind_at=parsed.snooze_until)
        lead.callback_outcome = CallbackOutcome.TRY_AGAIN
        lead.callback_outcome_at = ctx.now
        await ctx.store.save_lead(ctx.account.id, lead)
    except InvalidTransition as e:
        logger.info("Rejected snooze for lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.SNOOZE_USAGE, lead_id=lead.id)
    except StoreError as e:
        logger.error("Failed to snooze lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, lead_id=lead.id)

    return CommandResult(
        success=True,
        message=templates.snooze_confirmation(resolved.customer_name, parsed.snooze_until, ctx.now),
        event_type=EventType.LEAD_SNOOZE,
        reply_code="SNOOZE",
        lead_id=lead.id,
    )


async def free_text(ctx: CommandContext) -> CommandResult:
    """Unrecognized text becomes a note on the context lead; without one it is logged and ignored."""
    resolved = await ctx.resolve()
    lead = None
    if resolved is not None and resolved.lead_id:
        lead = await ctx.store.get_lead(ctx.account.id, resolved.lead_id)

    if lead is None or lead.status.is_terminal or len(ctx.raw) <= MIN_FREE_TEXT_NOTE:
        logger.info("Ignoring unmatched SMS from %s with no open lead context", ctx.phone)
        return CommandResult(success=False)

    add_note(lead, ctx.raw, ctx)
    try:
        await ctx.store.save_lead(ctx.account.id, lead)
    except StoreError as e:
        logger.error("Failed to add free-text note to lead %s: %s", lead.id, e)
        return CommandResult(success=False, message=templates.GENERIC_FAILURE, lead_id=lead.id)

    return CommandResult(
        success=True,
        message=templates.note_confirmation(resolved.customer_name),
        event_type=EventType.LEAD_NOTE,
        lead_id=lead.id,
    )


RULES = [
    CommandRule("code-3-note", 10, starts_with("3 ", "3:"), code_3_note),
    CommandRule("code-1", 21, exact("1"), _status_handler("1")),
    CommandRule("code-2", 22, exact("2"), _status_handler("2")),
    CommandRule("code-3", 23, exact("3"), code_3_bare),
    CommandRule("code-5", 25, exact("5"), _status_handler("5")),
    CommandRule("snooze", 30, starts_with("SNOOZE"), snooze),
    CommandRule("word-contacted", 50, exact("CONTACTED", "CALLED"), _status_handler("1")),
    CommandRule("word-lost", 52, exact("CLOSED", "LOST"), _status_handler("5")),
    CommandRule("note-prefix", 60, starts_with("NOTE:", "NOTE "), note_prefix),
    CommandRule("free-text", 100, anything, free_text),
]
