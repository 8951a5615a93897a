"""Operator SMS command routing.

Rules are explicit records of (name, priority, predicate, handler). The router
evaluates them in ascending priority and dispatches to the first match.
Priorities are unique:

    1-2     legal opt-out / opt-in
    10-11   code + payload ("3 <note>", "4 <time>")
    21-25   bare codes
    30-32   snooze / BOOK
    40-49   job actions
    50-52   keyword synonyms
    60-70   NOTE, HELP
    100     free text
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from calllock_sms import templates
from calllock_sms.context import ContextResolver, ContextStore, ResolvedContext
from calllock_sms.records import Account, Lead, Note
from calllock_sms.state_machine import LeadJobStateMachine
from calllock_sms.store import InMemoryStore
from calllock_sms.time_parser import SmsTimeParser

logger = logging.getLogger(__name__)


class EventType(Enum):
    LEAD_UPDATE = "lead_update"
    LEAD_NOTE = "lead_note"
    LEAD_BOOKING = "lead_booking"
    LEAD_SNOOZE = "lead_snooze"
    JOB_UPDATE = "job_update"
    SUBSCRIPTION = "subscription"
    HELP = "help"
    OTHER = "other"


@dataclass
class CommandResult:
    success: bool
    message: str = ""
    event_type: EventType = EventType.OTHER
    reply_code: Optional[str] = None
    lead_id: Optional[str] = None
    job_id: Optional[str] = None
    rule: str = ""

    # HELP is answered even for opted-out accounts
    reply_exempt: bool = False


@dataclass
class CommandContext:
    account: Account
    phone: str
    body: str
    now: datetime
    store: InMemoryStore
    contexts: ContextStore
    resolver: ContextResolver
    machine: LeadJobStateMachine = field(default_factory=LeadJobStateMachine)
    time_parser: SmsTimeParser = field(default_factory=SmsTimeParser)

    @property
    def raw(self) -> str:
        return self.body.strip()

    @property
    def upper(self) -> str:
        return normalize_body(self.body)

    async def resolve(self) -> Optional[ResolvedContext]:
        return await self.resolver.resolve(self.account.id, self.phone)


Handler = Callable[[CommandContext], Awaitable[CommandResult]]
Predicate = Callable[[str, str], bool]


@dataclass(frozen=True)
class CommandRule:
    name: str
    priority: int
    match: Predicate
    handler: Handler


def normalize_body(body: str) -> str:
    return " ".join(body.strip().upper().split())


def exact(*words: str) -> Predicate:
    options = frozenset(words)
    return lambda upper, raw: upper in options


def starts_with(*prefixes: str) -> Predicate:
    return lambda upper, raw: any(upper.startswith(p) for p in prefixes)


def anything(upper: str, raw: str) -> bool:
    return True


class CommandRouter:
    def __init__(self, rules: list[CommandRule]):
        seen_priorities: dict[int, str] = {}
        seen_names: set[str] = set()
        for rule in rules:
            if rule.priority in seen_priorities:
                raise ValueError(
                    f"rules {seen_priorities[rule.priority]!r} and {rule.name!r} share priority {rule.priority}"
                )
            if rule.name in seen_names:
                raise ValueError(f"duplicate rule name {rule.name!r}")
            seen_priorities[rule.priority] = rule.name
            seen_names.add(rule.name)
        self.rules = sorted(rules, key=lambda r: r.priority)

    def route(self, body: str) -> Optional[CommandRule]:
        upper = normalize_body(body)
        raw = body.strip()
        for rule in self.rules:
            if rule.match(upper, raw):
                return rule
        return None

    async def execute(self, ctx: CommandContext) -> CommandResult:
        rule = self.route(ctx.body)
        if rule is None:
            logger.info("No rule matched SMS from %s", ctx.phone)
            return CommandResult(success=False)

        logger.info("SMS from %s routed to %s", ctx.phone, rule.name)
        try:
            result = await rule.handler(ctx)
        except Exception:
            logger.exception("Command %s failed for %s", rule.name, ctx.phone)
            result = CommandResult(success=False, message=templates.GENERIC_FAILURE)
        result.rule = rule.name
        return result


# ── Shared handler helpers ──

def add_note(lead: Lead, text: str, ctx: CommandContext) -> Note:
    note = Note(text=text, created_by=ctx.account.operator_phone, created_at=ctx.now)
    lead.notes.append(note)
    lead.updated_at = ctx.now
    return note


async def resolve_open_lead(
    ctx: CommandContext, no_context_message: str
) -> tuple[Optional[ResolvedContext], Optional[Lead], Optional[CommandResult]]:
    """Look up the lead the operator is replying about.

    Returns (context, lead, None) on success, or a ready failure result when
    there is no context, the lead is gone, or it is already closed.
    """
    resolved = await ctx.resolve()
    if resolved is None or not resolved.lead_id:
        logger.info("No lead context for %s", ctx.phone)
        return None, None, CommandResult(success=False, message=no_context_message)

    lead = await ctx.store.get_lead(ctx.account.id, resolved.lead_id)
    if lead is None:
        logger.warning("Context for %s points at missing lead %s", ctx.phone, resolved.lead_id)
        return resolved, None, CommandResult(success=False, message=templates.LEAD_NOT_FOUND)

    if lead.status.is_terminal:
        return resolved, lead, CommandResult(
            success=False,
            message=templates.already_closed(resolved.customer_name, lead.status.value),
            lead_id=lead.id,
        )
    return resolved, lead, None
