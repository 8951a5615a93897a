from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from calllock_sms.states import (
    CallbackOutcome,
    JobStatus,
    LeadStatus,
    PriorityColor,
    Urgency,
)

DEFAULT_EVENT_PREFERENCES = {
    "same_day_booking": True,
    "future_booking": True,
    "callback_request": True,
    "schedule_conflict": True,
    "cancellation": True,
}


@dataclass
class Note:
    text: str
    created_by: str
    created_at: datetime
    source: str = "sms"


@dataclass
class Account:
    """One business account: the operator, their phone, and SMS preferences."""

    id: str
    operator_phone: str
    timezone: str = "America/Chicago"

    # Quiet hours, HH:MM in the account timezone
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "21:00"
    quiet_hours_end: str = "07:00"

    # Legal opt-out (STOP)
    sms_unsubscribed: bool = False
    sms_unsubscribed_at: Optional[datetime] = None

    event_preferences: dict = field(default_factory=lambda: dict(DEFAULT_EVENT_PREFERENCES))
    getting_cold_threshold_hours: int = 24


@dataclass
class Lead:
    id: str
    account_id: str
    created_at: datetime

    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    issue_description: str = ""
    service_type: str = "hvac"
    urgency: Urgency = Urgency.MEDIUM
    estimated_value: Optional[float] = None

    status: LeadStatus = LeadStatus.CALLBACK_REQUESTED
    priority_color: PriorityColor = PriorityColor.BLUE
    priority_reason: str = ""
    remind_at: Optional[datetime] = None

    # From callback follow-up
    callback_outcome: Optional[CallbackOutcome] = None
    callback_outcome_at: Optional[datetime] = None
    callback_outcome_note: str = ""

    # Terminal companions
    converted_job_id: Optional[str] = None
    converted_at: Optional[datetime] = None
    lost_reason: str = ""
    lost_at: Optional[datetime] = None

    notes: list = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass
class Job:
    id: str
    account_id: str
    created_at: datetime

    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    service_type: str = "hvac"
    urgency: Urgency = Urgency.MEDIUM
    estimated_value: Optional[float] = None
    priority_color: Optional[PriorityColor] = None
    priority_reason: str = ""
    lead_id: Optional[str] = None

    status: JobStatus = JobStatus.NEW
    scheduled_at: Optional[datetime] = None
    is_ai_booked: bool = False
    booking_confirmed: bool = False
    needs_action: bool = False

    # Status companions
    confirmed_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    on_site_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: str = ""

    updated_at: Optional[datetime] = None
