import pytest
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from calllock_sms.context import ContextPointer, ContextStore
from calllock_sms.exchange_log import ExchangeLog
from calllock_sms.gateway import SendResult
from calllock_sms.inbound import InboundSms, InboundSmsService
from calllock_sms.notifier import NotificationService
from calllock_sms.outbound import OutboundSms
from calllock_sms.records import Account, Lead
from calllock_sms.states import PriorityColor
from calllock_sms.store import InMemoryStore

TZ = ZoneInfo("America/Chicago")
NOW = datetime(2026, 10, 12, 10, 0, tzinfo=TZ)  # a Monday
ACCOUNT_ID = "acct-1"
OPERATOR_PHONE = "+15125550100"
SERVICE_PHONE = "+15125559999"
CUSTOMER_PHONE = "+15125550123"


class FakeGateway:
    """Records sends. Fails the first `failures` attempts, or every attempt with -1."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.retries = 0
        self.sent = []

    async def send(self, to, body, retry=False):
        self.attempts += 1
        self.retries += retry
        if self.failures == -1 or self.attempts <= self.failures:
            return SendResult(ok=False, error="gateway down")
        self.sent.append((to, body))
        return SendResult(ok=True, message_id=f"SM{len(self.sent)}")

    @property
    def bodies(self):
        return [body for _, body in self.sent]


class Sleeper:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_lead(lead_id="lead-1", name="Jane", **kwargs):
    defaults = dict(
        id=lead_id,
        account_id=ACCOUNT_ID,
        created_at=NOW - timedelta(minutes=30),
        customer_name=name,
        customer_phone=CUSTOMER_PHONE,
        issue_description="AC blowing warm air",
        priority_color=PriorityColor.BLUE,
    )
    defaults.update(kwargs)
    return Lead(**defaults)


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def account():
    return Account(id=ACCOUNT_ID, operator_phone=OPERATOR_PHONE)


@pytest.fixture
def lead():
    return make_lead()


@pytest.fixture
def store(account, lead):
    return InMemoryStore([account], leads=[lead])


@pytest.fixture
def contexts():
    return ContextStore()


@pytest.fixture
def exchange_log():
    return ExchangeLog()


@pytest.fixture
def outbound(gateway, exchange_log, sleeper, clock):
    return OutboundSms(gateway, exchange_log, sleep=sleeper, clock=clock)


@pytest.fixture
def inbound_service(store, contexts, outbound, exchange_log, clock):
    return InboundSmsService(store, contexts, outbound, exchange_log, clock=clock)


@pytest.fixture
def notifier(store, contexts, outbound, clock):
    return NotificationService(store, contexts, outbound, clock=clock)


@pytest.fixture
def point_at(contexts):
    """Simulate an outbound prompt about a lead and/or job."""

    def _point(lead_id="lead-1", job_id=None, name="Jane", customer_phone=CUSTOMER_PHONE, code="1"):
        return contexts.save(ContextPointer(
            account_id=ACCOUNT_ID,
            phone=OPERATOR_PHONE,
            alert_type="new_lead",
            created_at=NOW,
            lead_id=lead_id,
            job_id=job_id,
            customer_name=name,
            customer_phone=customer_phone,
            last_prompted_code=code,
        ))

    return _point


@pytest.fixture
def sms(inbound_service):
    """Deliver an inbound SMS from the operator."""

    async def _sms(body, from_phone=OPERATOR_PHONE):
        return await inbound_service.handle(
            InboundSms(from_phone=from_phone, to_phone=SERVICE_PHONE, body=body)
        )

    return _sms
