"""Per-phone ambient context.

Every outbound prompt records which lead/job it was about, so a bare reply
such as "1" or "3 gate code 4411" can be tied back to a record. One pointer per
(account, phone); the newest prompt wins.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only, with a leading 1 added to bare 10-digit US numbers."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        digits = "1" + digits
    return digits


@dataclass
class ContextPointer:
    account_id: str
    phone: str
    alert_type: str
    created_at: datetime
    lead_id: Optional[str] = None
    job_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    tier: str = ""
    last_prompted_code: str = ""

    # Set when the operator answers the prompt
    replied_at: Optional[datetime] = None
    reply_code: str = ""


@dataclass
class ResolvedContext:
    lead_id: Optional[str]
    job_id: Optional[str]
    customer_name: str
    last_prompted_code: str = ""
    customer_phone: str = ""


class ContextStore:
    """Keyed store of context pointers. Last write wins, no locking."""

    def __init__(self):
        self._pointers: dict[tuple[str, str], ContextPointer] = {}

    def save(self, pointer: ContextPointer) -> ContextPointer:
        pointer.phone = normalize_phone(pointer.phone)
        self._pointers[(pointer.account_id, pointer.phone)] = pointer
        return pointer

    def get(self, account_id: str, phone: str) -> Optional[ContextPointer]:
        return self._pointers.get((account_id, normalize_phone(phone)))

    def mark_replied(self, account_id: str, phone: str, reply_code: str, now: datetime) -> bool:
        pointer = self.get(account_id, phone)
        if pointer is None or pointer.replied_at is not None:
            return False
        pointer.replied_at = now
        pointer.reply_code = reply_code
        return True

    def unreplied(self, account_id: Optional[str] = None) -> list[ContextPointer]:
        return [
            p for p in self._pointers.values()
            if p.replied_at is None and (account_id is None or p.account_id == account_id)
        ]


class ContextResolver:
    """Read-only lookup of the record a phone number was last prompted about."""

    def __init__(self, contexts: ContextStore, store=None):
        self.contexts = contexts
        self.store = store

    async def resolve(self, account_id: str, phone: str) -> Optional[ResolvedContext]:
        pointer = self.contexts.get(account_id, phone)
        if pointer is None:
            return None

        if pointer.lead_id or pointer.job_id:
            return ResolvedContext(
                lead_id=pointer.lead_id,
                job_id=pointer.job_id,
                customer_name=pointer.customer_name or "Lead",
                last_prompted_code=pointer.last_prompted_code,
                customer_phone=pointer.customer_phone,
            )

        # Prompt named a customer but no record: fall back to their newest active lead
        if pointer.customer_phone and self.store is not None:
            lead = await self.store.find_active_lead_by_customer_phone(account_id, pointer.customer_phone)
            if lead is not None:
                return ResolvedContext(
                    lead_id=lead.id,
                    job_id=None,
                    customer_name=lead.customer_name or pointer.customer_name or "Lead",
                    last_prompted_code=pointer.last_prompted_code,
                    customer_phone=lead.customer_phone,
                )

        logger.info("Context for %s has no resolvable record", pointer.phone)
        return None
