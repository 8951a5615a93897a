"""Append-only audit trail of SMS traffic.

Every inbound command and every outbound send attempt outcome lands here,
including suppressed and permanently failed sends, so routing decisions and
delivery gaps can be traced after the fact.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

INBOUND = "inbound"
OUTBOUND = "outbound"

# Outbound statuses
SENT = "sent"
FAILED = "failed"
SUPPRESSED = "suppressed"
RECEIVED = "received"


@dataclass(frozen=True)
class ExchangeEntry:
    direction: str
    account_id: str
    phone: str
    body: str
    at: datetime
    status: str
    success: bool
    event_type: str = ""
    rule: str = ""
    tier: str = ""
    lead_id: Optional[str] = None
    job_id: Optional[str] = None
    message_id: Optional[str] = None
    attempts: int = 0
    error: str = ""

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        return payload


class ExchangeLog:
    """In-process log with an optional async forwarder (e.g. the dashboard webhook).

    Forwarding is best effort: the entry is kept even if the forwarder fails.
    """

    def __init__(self, forward: Optional[Callable[[dict], Awaitable[dict]]] = None):
        self._entries: list[ExchangeEntry] = []
        self._forward = forward

    def __len__(self) -> int:
        return len(self._entries)

    async def append(self, entry: ExchangeEntry) -> ExchangeEntry:
        self._entries.append(entry)
        if entry.status == FAILED:
            logger.error(
                "SMS to %s failed after %d attempt(s): %s",
                entry.phone, entry.attempts, entry.error,
            )
        if self._forward is not None:
            result = await self._forward(entry.to_payload())
            if not result.get("success", True):
                logger.warning("Exchange log forward failed: %s", result.get("error"))
        return entry

    def entries(self, account_id: Optional[str] = None) -> list[ExchangeEntry]:
        return [e for e in self._entries if account_id is None or e.account_id == account_id]

    def inbound(self, account_id: Optional[str] = None) -> list[ExchangeEntry]:
        return [e for e in self.entries(account_id) if e.direction == INBOUND]

    def outbound(self, account_id: Optional[str] = None) -> list[ExchangeEntry]:
        return [e for e in self.entries(account_id) if e.direction == OUTBOUND]

    def failures(self, account_id: Optional[str] = None) -> list[ExchangeEntry]:
        return [e for e in self.entries(account_id) if e.status == FAILED]
