"""Inbound operator SMS: webhook payload to routed command to reply."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from calllock_sms import account_commands, booking_commands, job_commands, lead_commands
from calllock_sms.commands import CommandContext, CommandResult, CommandRouter
from calllock_sms.context import ContextResolver, ContextStore, normalize_phone
from calllock_sms.exchange_log import INBOUND, RECEIVED, ExchangeEntry, ExchangeLog
from calllock_sms.outbound import OutboundSms, utcnow
from calllock_sms.state_machine import LeadJobStateMachine
from calllock_sms.store import InMemoryStore
from calllock_sms.tiers import TIER_CONFIG, Tier
from calllock_sms.time_parser import SmsTimeParser

logger = logging.getLogger(__name__)


def default_router() -> CommandRouter:
    return CommandRouter(
        account_commands.RULES
        + lead_commands.RULES
        + booking_commands.RULES
        + job_commands.RULES
    )


@dataclass
class InboundSms:
    from_phone: str
    to_phone: str
    body: str
    message_sid: str = ""


class InboundSmsService:
    def __init__(
        self,
        store: InMemoryStore,
        contexts: ContextStore,
        outbound: OutboundSms,
        exchange_log: ExchangeLog,
        router: Optional[CommandRouter] = None,
        time_parser: Optional[SmsTimeParser] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.contexts = contexts
        self.resolver = ContextResolver(contexts, store)
        self.outbound = outbound
        self.exchange_log = exchange_log
        self.router = router or default_router()
        self.time_parser = time_parser or SmsTimeParser()
        self.machine = LeadJobStateMachine()
        self._clock = clock

    async def handle(self, sms: InboundSms) -> Optional[CommandResult]:
        """Route one inbound message. Returns None for senders with no account."""
        account = await self.store.find_account_by_phone(sms.from_phone)
        if account is None:
            logger.warning("Inbound SMS from unknown number %s ignored", sms.from_phone)
            return None

        now = self._clock().astimezone(ZoneInfo(account.timezone))
        phone = normalize_phone(sms.from_phone)
        ctx = CommandContext(
            account=account,
            phone=phone,
            body=sms.body or "",
            now=now,
            store=self.store,
            contexts=self.contexts,
            resolver=self.resolver,
            machine=self.machine,
            time_parser=self.time_parser,
        )
        result = await self.router.execute(ctx)

        await self.exchange_log.append(
            ExchangeEntry(
                direction=INBOUND,
                account_id=account.id,
                phone=phone,
                body=ctx.body,
                at=now,
                status=RECEIVED,
                success=result.success,
                event_type=result.event_type.value,
                rule=result.rule,
                lead_id=result.lead_id,
                job_id=result.job_id,
                message_id=sms.message_sid or None,
            )
        )

        if result.message:
            await self.outbound.send(
                ctx.account,
                result.message,
                policy=TIER_CONFIG[Tier.BOOKED].backoff,
                event_type=result.event_type.value,
                exempt=result.reply_exempt,
                lead_id=result.lead_id,
                job_id=result.job_id,
            )

        if result.success and result.reply_code:
            self.contexts.mark_replied(account.id, phone, result.reply_code, now)
        return result
