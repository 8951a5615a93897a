import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response

from calllock_sms.config import Settings, configure_logging, load_env, load_settings, validate_config
from calllock_sms.context import ContextStore
from calllock_sms.dashboard_sync import DashboardClient
from calllock_sms.exchange_log import ExchangeLog
from calllock_sms.gateway import TwilioGateway
from calllock_sms.inbound import InboundSms, InboundSmsService
from calllock_sms.notifier import NotificationService
from calllock_sms.outbound import OutboundSms, utcnow
from calllock_sms.records import Account, Job, Lead
from calllock_sms.states import LeadStatus, PriorityColor, Urgency
from calllock_sms.store import InMemoryStore
from calllock_sms.tiers import NotificationEvent
from calllock_sms.urgency import count_by_urgency_tier, determine_urgency_tier, sort_by_urgency, urgency_score

logger = logging.getLogger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


@dataclass
class Services:
    store: InMemoryStore
    contexts: ContextStore
    exchange_log: ExchangeLog
    outbound: OutboundSms
    inbound: InboundSmsService
    notifier: NotificationService
    cron_secret: str = ""
    gateway: Optional[TwilioGateway] = None
    clock: Callable[[], datetime] = utcnow


def build_services(settings: Settings) -> Services:
    dashboard = DashboardClient(
        sms_log_url=settings.dashboard_sms_log_url,
        escalations_url=settings.dashboard_escalations_url,
        webhook_secret=settings.dashboard_webhook_secret,
    )
    gateway = TwilioGateway(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
    )
    accounts = []
    if settings.operator_phone:
        accounts.append(Account(
            id=settings.account_id,
            operator_phone=settings.operator_phone,
            timezone=settings.default_timezone,
        ))
    store = InMemoryStore(accounts)
    contexts = ContextStore()
    exchange_log = ExchangeLog(forward=dashboard.send_sms_log if settings.dashboard_sms_log_url else None)
    outbound = OutboundSms(gateway, exchange_log)

    return Services(
        store=store,
        contexts=contexts,
        exchange_log=exchange_log,
        outbound=outbound,
        inbound=InboundSmsService(store, contexts, outbound, exchange_log),
        notifier=NotificationService(
            store, contexts, outbound,
            on_escalation=dashboard.send_escalation if settings.dashboard_escalations_url else None,
        ),
        cron_secret=settings.cron_secret,
        gateway=gateway,
    )


def _enum(cls, value):
    return cls(value) if value else None


def _time(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 timestamp with a UTC offset. Naive timestamps are rejected."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no UTC offset")
    return parsed


def lead_from_payload(account_id: str, data: dict, now: datetime) -> Lead:
    return Lead(
        id=data["id"],
        account_id=account_id,
        created_at=_time(data.get("created_at")) or now,
        customer_name=data.get("customer_name", ""),
        customer_phone=data.get("customer_phone", ""),
        customer_address=data.get("customer_address", ""),
        issue_description=data.get("issue_description", ""),
        service_type=data.get("service_type", "hvac"),
        urgency=_enum(Urgency, data.get("urgency")) or Urgency.MEDIUM,
        estimated_value=data.get("estimated_value"),
        status=_enum(LeadStatus, data.get("status")) or LeadStatus.CALLBACK_REQUESTED,
        priority_color=_enum(PriorityColor, data.get("priority_color")) or PriorityColor.BLUE,
        priority_reason=data.get("priority_reason", ""),
    )


def event_from_payload(payload: dict) -> NotificationEvent:
    lead = payload.get("lead") or {}
    return NotificationEvent(
        event_type=payload["event_type"],
        account_id=payload["account_id"],
        lead_id=payload.get("lead_id") or lead.get("id"),
        job_id=payload.get("job_id"),
        customer_name=payload.get("customer_name") or lead.get("customer_name", ""),
        customer_phone=payload.get("customer_phone") or lead.get("customer_phone", ""),
        message=payload.get("message", ""),
        priority_color=_enum(PriorityColor, payload.get("priority_color") or lead.get("priority_color")),
        urgency=_enum(Urgency, payload.get("urgency") or lead.get("urgency")),
        is_emergency=bool(payload.get("is_emergency")),
        is_commercial=bool(payload.get("is_commercial")),
        is_repeat_caller=bool(payload.get("is_repeat_caller")),
        estimated_value=payload.get("estimated_value", lead.get("estimated_value")),
        call_end_reason=payload.get("call_end_reason", ""),
        issue_description=payload.get("issue_description") or lead.get("issue_description", ""),
        service_type=payload.get("service_type", ""),
        city=payload.get("city", ""),
        scheduled_at=_time(payload.get("scheduled_at")),
        callback_timeframe=payload.get("callback_timeframe", ""),
        priority_reason=payload.get("priority_reason") or lead.get("priority_reason", ""),
        last_contact=payload.get("last_contact", ""),
        hours_waiting=int(payload.get("hours_waiting") or 0),
        conflicts_with=payload.get("conflicts_with", ""),
    )


def queue_item(item, now: datetime, threshold_hours: int) -> dict:
    return {
        "type": "job" if isinstance(item, Job) else "lead",
        "id": item.id,
        "customer_name": item.customer_name,
        "customer_phone": item.customer_phone,
        "status": item.status.value,
        "tier": determine_urgency_tier(item, now, threshold_hours).value,
        "score": round(urgency_score(item, now, threshold_hours), 1),
    }


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        gateway = app.state.services.gateway
        if gateway is not None:
            await gateway.close()

    app = FastAPI(title="CallLock SMS", lifespan=lifespan)
    app.state.services = services or build_services(load_settings())

    def _authorize(request: Request) -> None:
        """Bearer CRON_SECRET guards the cron routes and the action queue."""
        secret = app.state.services.cron_secret
        if secret and request.headers.get("authorization") != f"Bearer {secret}":
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/twilio/inbound")
    async def twilio_inbound(request: Request, background_tasks: BackgroundTasks):
        """Twilio messaging webhook. Always answers with empty TwiML; replies go out via the API."""
        form = await request.form()
        sms = InboundSms(
            from_phone=form.get("From", ""),
            to_phone=form.get("To", ""),
            body=form.get("Body", ""),
            message_sid=form.get("MessageSid", ""),
        )
        if sms.from_phone:
            background_tasks.add_task(app.state.services.inbound.handle, sms)
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    @app.post("/notifications/events")
    async def notification_event(request: Request, background_tasks: BackgroundTasks):
        services = app.state.services
        payload = await request.json()
        try:
            event = event_from_payload(payload)
            lead = lead_from_payload(event.account_id, payload["lead"], services.clock()) if payload.get("lead") else None
        except (KeyError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid event: {e}")

        if lead is not None:
            if await services.store.get_account(event.account_id) is None:
                raise HTTPException(status_code=404, detail="Unknown account")
            if await services.store.get_lead(event.account_id, lead.id) is None:
                await services.store.add_lead(lead)

        background_tasks.add_task(services.notifier.notify, event)
        return {"accepted": True, "event_type": event.event_type}

    @app.api_route("/cron/process-notification-queue", methods=["GET", "POST"])
    async def process_queue(request: Request):
        _authorize(request)
        summary = await app.state.services.notifier.process_due()
        return summary.as_dict()

    @app.api_route("/cron/escalations", methods=["GET", "POST"])
    async def escalations(request: Request):
        _authorize(request)
        summary = await app.state.services.notifier.check_escalations()
        return {"checked": summary.checked, "escalated": summary.escalated}

    @app.api_route("/cron/daily-digest", methods=["GET", "POST"])
    async def daily_digest(request: Request):
        _authorize(request)
        return {"accounts": await app.state.services.notifier.send_digests("daily_digest")}

    @app.api_route("/cron/weekly-summary", methods=["GET", "POST"])
    async def weekly_summary(request: Request):
        _authorize(request)
        return {"accounts": await app.state.services.notifier.send_digests("weekly_summary")}

    @app.get("/action-queue")
    async def action_queue(request: Request, account_id: str):
        """Open leads and jobs for one account, most urgent first."""
        _authorize(request)
        services = app.state.services
        account = await services.store.get_account(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Unknown account")

        now = services.clock()
        threshold = account.getting_cold_threshold_hours
        items = await services.store.list_leads(account_id) + await services.store.list_jobs(account_id)
        ranked = sort_by_urgency(items, now, threshold)
        counts = count_by_urgency_tier(items, now, threshold)
        return {
            "account_id": account_id,
            "total": len(ranked),
            "counts": {tier.value: count for tier, count in counts.items()},
            "items": [queue_item(item, now, threshold) for item in ranked],
        }

    return app


def main():
    load_env()
    configure_logging()
    validate_config()
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
