"""In-memory lead/job store.

Stands in for the relational store behind the dashboard. Every read returns a
copy and every write replaces the stored copy, so a handler that fails midway
leaves no partial change behind. All operations are scoped to an account id.
"""

import copy
import logging
import uuid
from typing import Callable, Optional

from calllock_sms.context import normalize_phone
from calllock_sms.records import Account, Job, Lead

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Write rejected or record missing."""


def new_id() -> str:
    return str(uuid.uuid4())


class InMemoryStore:
    def __init__(
        self,
        accounts: Optional[list[Account]] = None,
        leads: Optional[list[Lead]] = None,
        jobs: Optional[list[Job]] = None,
    ):
        self._accounts: dict[str, Account] = {a.id: copy.deepcopy(a) for a in accounts or []}
        self._leads: dict[str, Lead] = {l.id: copy.deepcopy(l) for l in leads or []}
        self._jobs: dict[str, Job] = {j.id: copy.deepcopy(j) for j in jobs or []}

    # ── Accounts ──

    async def add_account(self, account: Account) -> Account:
        self._accounts[account.id] = copy.deepcopy(account)
        return copy.deepcopy(account)

    async def get_account(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return copy.deepcopy(account) if account else None

    async def list_accounts(self) -> list[Account]:
        return [copy.deepcopy(a) for a in self._accounts.values()]

    async def find_account_by_phone(self, phone: str) -> Optional[Account]:
        digits = normalize_phone(phone)
        for account in self._accounts.values():
            if normalize_phone(account.operator_phone) == digits:
                return copy.deepcopy(account)
        return None

    async def save_account(self, account: Account) -> Account:
        if account.id not in self._accounts:
            raise StoreError(f"account {account.id} not found")
        self._accounts[account.id] = copy.deepcopy(account)
        return copy.deepcopy(account)

    # ── Leads ──

    async def add_lead(self, lead: Lead) -> Lead:
        self._leads[lead.id] = copy.deepcopy(lead)
        return copy.deepcopy(lead)

    async def get_lead(self, account_id: str, lead_id: str) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        if lead is None or lead.account_id != account_id:
            return None
        return copy.deepcopy(lead)

    async def save_lead(self, account_id: str, lead: Lead) -> Lead:
        stored = self._leads.get(lead.id)
        if stored is None:
            raise StoreError(f"lead {lead.id} not found")
        if lead.account_id != account_id or stored.account_id != account_id:
            logger.error("Rejected cross-account write to lead %s", lead.id)
            raise StoreError(f"lead {lead.id} does not belong to account {account_id}")
        self._leads[lead.id] = copy.deepcopy(lead)
        return copy.deepcopy(lead)

    async def list_leads(self, account_id: str) -> list[Lead]:
        return [copy.deepcopy(l) for l in self._leads.values() if l.account_id == account_id]

    async def find_active_lead_by_customer_phone(self, account_id: str, phone: str) -> Optional[Lead]:
        digits = normalize_phone(phone)
        matches = [
            l for l in self._leads.values()
            if l.account_id == account_id
            and l.status.is_active
            and normalize_phone(l.customer_phone) == digits
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda l: l.created_at))

    # ── Jobs ──

    async def create_job(self, account_id: str, job: Job) -> Job:
        if job.account_id != account_id:
            raise StoreError(f"job {job.id} does not belong to account {account_id}")
        if job.id in self._jobs:
            raise StoreError(f"job {job.id} already exists")
        self._jobs[job.id] = copy.deepcopy(job)
        return copy.deepcopy(job)

    async def get_job(self, account_id: str, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None or job.account_id != account_id:
            return None
        return copy.deepcopy(job)

    async def save_job(self, account_id: str, job: Job) -> Job:
        stored = self._jobs.get(job.id)
        if stored is None:
            raise StoreError(f"job {job.id} not found")
        if job.account_id != account_id or stored.account_id != account_id:
            logger.error("Rejected cross-account write to job %s", job.id)
            raise StoreError(f"job {job.id} does not belong to account {account_id}")
        self._jobs[job.id] = copy.deepcopy(job)
        return copy.deepcopy(job)

    async def delete_job(self, account_id: str, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None and job.account_id == account_id:
            del self._jobs[job_id]

    async def list_jobs(self, account_id: str) -> list[Job]:
        return [copy.deepcopy(j) for j in self._jobs.values() if j.account_id == account_id]

    async def latest_job(self, account_id: str, where: Callable[[Job], bool]) -> Optional[Job]:
        """Newest job in the account matching `where`."""
        matches = [j for j in self._jobs.values() if j.account_id == account_id and where(j)]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda j: j.created_at))
