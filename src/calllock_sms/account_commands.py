"""Subscription control and help.

STOP and START are carrier-mandated keywords. They change only the account's
opt-out flag and never reply; the carrier sends its own confirmation.
"""

import logging

from calllock_sms import templates
from calllock_sms.commands import (
    CommandContext,
    CommandResult,
    CommandRule,
    EventType,
    exact,
)

logger = logging.getLogger(__name__)

STOP_WORDS = ("STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT")
START_WORDS = ("START", "UNSTOP", "SUBSCRIBE")


async def stop(ctx: CommandContext) -> CommandResult:
    account = ctx.account
    account.sms_unsubscribed = True
    account.sms_unsubscribed_at = ctx.now
    await ctx.store.save_account(account)
    logger.info("Account %s opted out of SMS", account.id)
    return CommandResult(success=True, event_type=EventType.SUBSCRIPTION)


async def start(ctx: CommandContext) -> CommandResult:
    account = ctx.account
    account.sms_unsubscribed = False
    account.sms_unsubscribed_at = None
    await ctx.store.save_account(account)
    logger.info("Account %s opted back in to SMS", account.id)
    return CommandResult(success=True, event_type=EventType.SUBSCRIPTION)


async def help_text(ctx: CommandContext) -> CommandResult:
    return CommandResult(
        success=True,
        message=templates.HELP_TEXT,
        event_type=EventType.HELP,
        reply_exempt=True,
    )


RULES = [
    CommandRule("stop", 1, exact(*STOP_WORDS), stop),
    CommandRule("start", 2, exact(*START_WORDS), start),
    CommandRule("help", 70, exact("HELP", "?"), help_text),
]
