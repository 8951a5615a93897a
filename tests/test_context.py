import pytest
from datetime import timedelta

from calllock_sms.context import ContextPointer, ContextResolver, ContextStore, normalize_phone
from calllock_sms.states import LeadStatus
from calllock_sms.store import InMemoryStore

from conftest import ACCOUNT_ID, CUSTOMER_PHONE, NOW, OPERATOR_PHONE, make_lead


class TestNormalizePhone:
    def test_strips_formatting(self):
        assert normalize_phone("+1 (512) 555-0100") == "15125550100"

    def test_adds_country_code_to_ten_digits(self):
        assert normalize_phone("512-555-0100") == "15125550100"

    def test_empty(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""


class TestContextStore:
    def test_last_write_wins(self):
        store = ContextStore()
        store.save(ContextPointer(ACCOUNT_ID, OPERATOR_PHONE, "new_lead", NOW, lead_id="lead-1"))
        store.save(ContextPointer(ACCOUNT_ID, "5125550100", "new_lead", NOW, lead_id="lead-2"))
        assert store.get(ACCOUNT_ID, "+1 512 555 0100").lead_id == "lead-2"

    def test_pointers_are_scoped_by_account(self):
        store = ContextStore()
        store.save(ContextPointer("acct-other", OPERATOR_PHONE, "new_lead", NOW, lead_id="lead-x"))
        assert store.get(ACCOUNT_ID, OPERATOR_PHONE) is None

    def test_mark_replied_only_once(self):
        store = ContextStore()
        store.save(ContextPointer(ACCOUNT_ID, OPERATOR_PHONE, "new_lead", NOW, lead_id="lead-1"))
        assert store.mark_replied(ACCOUNT_ID, OPERATOR_PHONE, "1", NOW) is True
        assert store.mark_replied(ACCOUNT_ID, OPERATOR_PHONE, "2", NOW + timedelta(minutes=1)) is False
        pointer = store.get(ACCOUNT_ID, OPERATOR_PHONE)
        assert pointer.reply_code == "1"
        assert pointer.replied_at == NOW
        assert store.unreplied() == []


class TestContextResolver:
    @pytest.mark.asyncio
    async def test_no_pointer_resolves_to_none(self):
        resolver = ContextResolver(ContextStore())
        assert await resolver.resolve(ACCOUNT_ID, OPERATOR_PHONE) is None

    @pytest.mark.asyncio
    async def test_returns_pointer_record(self):
        contexts = ContextStore()
        contexts.save(ContextPointer(
            ACCOUNT_ID, OPERATOR_PHONE, "new_lead", NOW,
            lead_id="lead-1", customer_name="Jane", last_prompted_code="1",
        ))
        resolved = await ContextResolver(contexts).resolve(ACCOUNT_ID, OPERATOR_PHONE)
        assert resolved.lead_id == "lead-1"
        assert resolved.customer_name == "Jane"
        assert resolved.last_prompted_code == "1"

    @pytest.mark.asyncio
    async def test_missing_name_defaults_to_lead(self):
        contexts = ContextStore()
        contexts.save(ContextPointer(ACCOUNT_ID, OPERATOR_PHONE, "new_lead", NOW, lead_id="lead-1"))
        resolved = await ContextResolver(contexts).resolve(ACCOUNT_ID, OPERATOR_PHONE)
        assert resolved.customer_name == "Lead"

    @pytest.mark.asyncio
    async def test_falls_back_to_active_lead_by_customer_phone(self):
        store = InMemoryStore(leads=[
            make_lead("lead-old", created_at=NOW - timedelta(days=2)),
            make_lead("lead-new", created_at=NOW - timedelta(hours=1)),
            make_lead("lead-lost", created_at=NOW, status=LeadStatus.LOST),
        ])
        contexts = ContextStore()
        contexts.save(ContextPointer(
            ACCOUNT_ID, OPERATOR_PHONE, "callback_request", NOW, customer_phone=CUSTOMER_PHONE,
        ))
        resolved = await ContextResolver(contexts, store).resolve(ACCOUNT_ID, OPERATOR_PHONE)
        assert resolved.lead_id == "lead-new"

    @pytest.mark.asyncio
    async def test_pointer_without_any_record(self):
        contexts = ContextStore()
        contexts.save(ContextPointer(ACCOUNT_ID, OPERATOR_PHONE, "batch_summary", NOW))
        assert await ContextResolver(contexts, InMemoryStore()).resolve(ACCOUNT_ID, OPERATOR_PHONE) is None
