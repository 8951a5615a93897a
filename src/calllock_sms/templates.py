"""Plain-text SMS templates.

Everything here is kept short enough for single-segment delivery where the
interpolated values allow it.
"""

from datetime import datetime

from calllock_sms.time_parser import clock_text, format_for_confirmation

NO_LEAD_TO_UPDATE = "No recent lead to update. Open the app to manage leads."
NO_LEAD_FOR_NOTE = "No recent lead to add note to. Open the app to manage leads."
NO_LEAD_TO_BOOK = "No recent lead to book. Open the app to manage leads."
NO_LEAD_TO_SNOOZE = "No recent lead to snooze. Open the app to manage leads."
LEAD_NOT_FOUND = "Lead not found. Open the app to manage leads."
NO_PENDING_BOOKING = "No pending booking to confirm. Open the app to see your schedule."
NO_RECENT_JOB = "No recent job found. Open the app to see your jobs."
NO_ACTION_JOBS = "No jobs currently flagged as needing action."
BOOKING_FAILED = "Failed to book. Please try in the app."
GENERIC_FAILURE = "Couldn't save that. Please try in the app."
CODE_3_USAGE = 'Please include a note after 3 (e.g., "3 Customer prefers mornings")'
NOTE_USAGE = "Please include a note after NOTE:"
CODE_4_USAGE = "When? Reply: 4 TUE 2PM, 4 TOMORROW 9AM"
BOOK_USAGE = "When? Reply: BOOK TUE 2PM, BOOK TOMORROW 9AM"
SNOOZE_USAGE = "Snooze format: SNOOZE 1H, SNOOZE 3H, SNOOZE TOMORROW, SNOOZE TOMORROW PM"

HELP_TEXT = (
    "Codes: 1=Called 2=VM 3=Note 4=Booked 5=Lost\n"
    "Book: 4 TUE 2PM or BOOK TOMORROW 9AM\n"
    "Snooze: SNOOZE 1H, SNOOZE TOMORROW\n"
    "More: OK CALL DONE STOP"
)


def _short(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


# ── Command replies ──

def status_confirmation(name: str, label: str) -> str:
    return f"✓ {name} marked {label}"


def note_confirmation(name: str) -> str:
    return f"✓ Note added to {name}"


def booking_confirmation(name: str, when: datetime, now: datetime) -> str:
    return f"Booked: {name}\n{format_for_confirmation(when, now)}\nAdded to your calendar"


def snooze_confirmation(name: str, until: datetime, now: datetime) -> str:
    return f"Snoozed: {name}\nReminder: {format_for_confirmation(until, now)}"


def already_closed(name: str, status: str) -> str:
    return f"{name} is already {status.upper()}. Open the app to reopen."


def confirm_booking(name: str) -> str:
    return f"Confirmed: {name}. Good luck!"


def customer_phone(name: str, phone: str) -> str:
    return f"{name}: {phone}"


def job_status_confirmation(name: str, label: str) -> str:
    return f"✓ {name} job marked {label}"


def complete_confirmation(name: str) -> str:
    return f"Job for {name} marked complete. Great work!"


def cancel_rejected(name: str, status: str) -> str:
    return f"Can't cancel {name}: job is already {status.upper()}."


def transition_rejected(name: str, status: str, label: str) -> str:
    return f"Can't mark {name} {label}: job is {status.upper()}."


# ── Operator notifications ──

def callback_risk(name: str, phone: str, reason: str) -> str:
    return f"CALLLOCK URGENT\n🔴 {name}\n{phone}\n{reason}\nCall back NOW"


def commercial_lead(name: str, phone: str, value: str = "") -> str:
    est = f"\nEst: {value}" if value else ""
    return f"CALLLOCK PRIORITY\n🟢 Commercial: {name}\n{phone}{est}\nCall back ASAP"


def new_lead(name: str, phone: str, issue: str) -> str:
    return f'CALLLOCK: New lead\n{name} · {phone}\n"{_short(issue)}"\nReply 1=Called 4=Booked'


def same_day_booking(name: str, when: datetime, service: str, city: str = "") -> str:
    where = f" · {city}" if city else ""
    return f"CALLLOCK: New booking TODAY\n{name} · {clock_text(when)}\n{service}{where}\nReply OK to confirm"


def future_booking(name: str, when: datetime, service: str) -> str:
    return f"CALLLOCK: Booking {when:%a %b} {when.day}\n{name} · {clock_text(when)}\n{service}\nView in app"


def callback_request(name: str, timeframe: str) -> str:
    return f"CALLLOCK: Callback requested\n{name} wants callback {timeframe}\nReply CALL for number"


def schedule_conflict(name: str, when: datetime, existing: str) -> str:
    return f"CALLLOCK: Conflict!\n{name} at {clock_text(when)}\nConflicts with {existing}\nReview in app"


def cancellation(name: str, when: datetime) -> str:
    return f"CALLLOCK: Cancel\n{name} · {clock_text(when)} slot open"


def abandoned_call(name: str, phone: str) -> str:
    return f"CALLLOCK: Hung up\n{name} · {phone}\nCall back ASAP"


def emergency_alert(name: str, phone: str, issue: str) -> str:
    return f"CALLLOCK EMERGENCY\n{name} · {phone}\n{_short(issue)}\nCall back NOW"


def stale_job_alert(name: str, hours_waiting: int) -> str:
    return f"CALLLOCK: Stale job!\n{name} waiting {hours_waiting}h\nNeeds attention"


def follow_up(name: str, last_contact: str) -> str:
    return f"CALLLOCK: Follow up\n{name}\nLast contact: {last_contact}\nReply 1=Called 5=Lost"


def snooze_expired(name: str, phone: str) -> str:
    return f"CALLLOCK: Reminder\n{name} · {phone}\nSnooze ended\nReply 1=Called 4=Booked"


def escalation(name: str, phone: str, hours: int) -> str:
    return f"CALLLOCK URGENT\n🔴 {name} · {phone}\nNo response in {hours}h\nReply 1=Called 4=Booked"


def daily_digest(total: int, urgent: int, booked: int) -> str:
    return f"CALLLOCK Daily:\n{total} leads today\n{urgent} need callback\n{booked} booked\nOpen app for details"


def weekly_summary(leads: int, converted: int, revenue: str) -> str:
    rate = round(converted / leads * 100) if leads else 0
    return f"CALLLOCK Weekly:\n{leads} leads\n{converted} converted ({rate}%)\nEst. {revenue}\nGreat work!"


def batch_summary(lead_count: int, urgent_count: int) -> str:
    urgent = f"\n{urgent_count} urgent" if urgent_count else ""
    return f"CALLLOCK: {lead_count} leads need attention{urgent}\nOpen app for details"


def generic_update(name: str) -> str:
    return f"CALLLOCK: Update for {name}"
