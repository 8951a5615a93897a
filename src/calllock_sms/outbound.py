import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from calllock_sms.backoff import NO_RETRY, BackoffPolicy
from calllock_sms.exchange_log import (
    FAILED,
    OUTBOUND,
    SENT,
    SUPPRESSED,
    ExchangeEntry,
    ExchangeLog,
)
from calllock_sms.records import Account

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SendOutcome:
    sent: bool
    suppressed: bool = False
    message_id: Optional[str] = None
    attempts: int = 0
    error: str = ""


class OutboundSms:
    """The single path for SMS to an operator.

    Checks the account's legal opt-out before anything else, then sends with
    one attempt in flight at a time, waiting out the backoff policy between
    failures. Every outcome, including suppression and final failure, is
    written to the exchange log.
    """

    def __init__(
        self,
        gateway,
        exchange_log: ExchangeLog,
        sleep=asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.exchange_log = exchange_log
        self._sleep = sleep
        self._clock = clock

    async def send(
        self,
        account: Account,
        body: str,
        *,
        policy: BackoffPolicy = NO_RETRY,
        event_type: str = "",
        tier: str = "",
        exempt: bool = False,
        lead_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> SendOutcome:
        entry = dict(
            direction=OUTBOUND,
            account_id=account.id,
            phone=account.operator_phone,
            body=body,
            event_type=event_type,
            tier=tier,
            lead_id=lead_id,
            job_id=job_id,
        )

        if account.sms_unsubscribed and not exempt:
            logger.info("Account %s opted out, suppressing %s SMS", account.id, event_type or "reply")
            await self.exchange_log.append(
                ExchangeEntry(at=self._clock(), status=SUPPRESSED, success=False, **entry)
            )
            return SendOutcome(sent=False, suppressed=True)

        attempt = 0
        # Sends that reached the gateway; breaker short-circuits are not counted
        delivered_attempts = 0
        while True:
            result = await self.gateway.send(account.operator_phone, body, retry=delivered_attempts > 0)
            if not result.short_circuited:
                delivered_attempts += 1
            if result.ok:
                await self.exchange_log.append(
                    ExchangeEntry(
                        at=self._clock(), status=SENT, success=True,
                        message_id=result.message_id, attempts=delivered_attempts, **entry,
                    )
                )
                return SendOutcome(sent=True, message_id=result.message_id, attempts=delivered_attempts)

            delay = policy.next_delay(attempt)
            if delay is None:
                await self.exchange_log.append(
                    ExchangeEntry(
                        at=self._clock(), status=FAILED, success=False,
                        attempts=delivered_attempts, error=result.error, **entry,
                    )
                )
                return SendOutcome(sent=False, attempts=delivered_attempts, error=result.error)

            logger.warning(
                "SMS to %s failed (attempt %d), retrying in %.0fs: %s",
                account.operator_phone, attempt + 1, delay, result.error,
            )
            await self._sleep(delay)
            attempt += 1
