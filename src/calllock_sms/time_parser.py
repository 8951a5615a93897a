"""Time phrases typed by operators over SMS.

Booking formats:
- "TUE 2PM", "TUESDAY 10:30AM", "NEXT MON 9AM"
- "TODAY 3PM", "TOMORROW 9AM", "TMRW MORNING"
- "12/20 2PM", "12-20"
- "2PM", "14:00", "2" (1-6 read as afternoon)
- "MORNING", "AFTERNOON", "EVENING", "ASAP"

Snooze formats: "1H", "3 HOURS", "30M", "TOMORROW", "TOMORROW PM", "2".

All functions take `now` as an aware datetime in the account's timezone and
never read the wall clock.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

DAY_NAMES = {
    "MON": 0, "MONDAY": 0,
    "TUE": 1, "TUES": 1, "TUESDAY": 1,
    "WED": 2, "WEDNESDAY": 2,
    "THU": 3, "THUR": 3, "THURS": 3, "THURSDAY": 3,
    "FRI": 4, "FRIDAY": 4,
    "SAT": 5, "SATURDAY": 5,
    "SUN": 6, "SUNDAY": 6,
}

TIME_OF_DAY = {
    "MORNING": (9, 0),
    "AM": (9, 0),
    "NOON": (12, 0),
    "AFTERNOON": (14, 0),
    "PM": (14, 0),
    "EVENING": (17, 0),
    "EOD": (17, 0),
}

DEFAULT_HOUR = (9, 0)

PROMPT_EMPTY = "When? Reply with day & time (e.g., TUE 2PM, TOMORROW 9AM)"
PROMPT_TODAY_NO_TIME = "What time today? Reply with time (e.g., 2PM, 10:30AM)"
PROMPT_PASSED = "That time has passed. Try a future date (e.g., TOMORROW 2PM)"
PROMPT_UNPARSEABLE = "Couldn't understand that time. Try: TUE 2PM, TOMORROW 9AM, or MORNING"
SNOOZE_ERROR = "Invalid snooze format. Try: 1H, 3H, 30M, TOMORROW, TOMORROW AM"

_TOMORROW = re.compile(r"^(TOMORROW|TMRW|TMR)\b")
_TWELVE_HOUR = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(AM|PM)$")
_TWENTY_FOUR_HOUR = re.compile(r"^(\d{1,2}):(\d{2})$")
_BARE_HOUR = re.compile(r"^(\d{1,2})$")
_EXPLICIT_DATE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})\s*(.*)$")
_SNOOZE_HOURS = re.compile(r"^(\d+)\s*H(?:OUR)?S?$")
_SNOOZE_MINUTES = re.compile(r"^(\d+)\s*M(?:IN)?(?:UTE)?S?$")


@dataclass
class ParsedTime:
    success: bool
    date_time: Optional[datetime] = None
    display_text: str = ""
    error: str = ""
    needs_clarification: bool = False
    clarification_prompt: str = ""


@dataclass
class ParsedSnooze:
    success: bool
    snooze_until: Optional[datetime] = None
    display_text: str = ""
    error: str = ""


def clock_text(dt: datetime) -> str:
    """12-hour clock, e.g. 2:00 PM."""
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{dt.hour % 12 or 12}:{dt.minute:02d} {suffix}"


def format_for_confirmation(dt: datetime, now: datetime) -> str:
    if dt.date() == now.date():
        return f"Today at {clock_text(dt)}"
    return f"{dt:%a, %b} {dt.day} at {clock_text(dt)}"


def _at(day: datetime, hour: int, minute: int) -> datetime:
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def _ok(dt: datetime, now: datetime) -> ParsedTime:
    return ParsedTime(success=True, date_time=dt, display_text=format_for_confirmation(dt, now))


def _clarify(prompt: str, error: str = "") -> ParsedTime:
    return ParsedTime(success=False, error=error, needs_clarification=True, clarification_prompt=prompt)


def parse_clock(text: str) -> Optional[tuple[int, int]]:
    """Parse "2PM", "2:30PM", "14:00", "2", or a time-of-day word into (hour, minute)."""
    if not text:
        return None
    normalized = text.strip().upper()

    if normalized in TIME_OF_DAY:
        return TIME_OF_DAY[normalized]

    match = _TWELVE_HOUR.match(normalized)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if match.group(3) == "PM" and hour != 12:
            hour += 12
        if match.group(3) == "AM" and hour == 12:
            hour = 0
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return hour, minute
        return None

    match = _TWENTY_FOUR_HOUR.match(normalized)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return hour, minute
        return None

    match = _BARE_HOUR.match(normalized)
    if match:
        hour = int(match.group(1))
        # Business hours: 1-6 means afternoon
        if 1 <= hour <= 6:
            hour += 12
        if 0 <= hour <= 23:
            return hour, 0

    return None


def _relative_day(text: str, now: datetime) -> Optional[ParsedTime]:
    if text.startswith("TODAY"):
        clock = parse_clock(text[len("TODAY"):])
        if clock is None:
            return _clarify(PROMPT_TODAY_NO_TIME)
        return _ok(_at(now, *clock), now)

    match = _TOMORROW.match(text)
    if match:
        clock = parse_clock(text[match.end():]) or DEFAULT_HOUR
        return _ok(_at(now + timedelta(days=1), *clock), now)

    return None


def _day_of_week(text: str, now: datetime) -> Optional[ParsedTime]:
    words = text.split()
    weeks_ahead = 0
    if len(words) >= 2 and words[0] == "NEXT" and words[1] in DAY_NAMES:
        weeks_ahead = 1
        words = words[1:]
    elif words[0] in ("THIS", "THE") and len(words) >= 2 and words[1] in DAY_NAMES:
        words = words[1:]

    if not words or words[0] not in DAY_NAMES:
        return None

    days = (DAY_NAMES[words[0]] - now.weekday()) % 7 or 7
    clock = parse_clock(" ".join(words[1:])) or DEFAULT_HOUR
    target = now + timedelta(days=days + 7 * weeks_ahead)
    return _ok(_at(target, *clock), now)


def _explicit_date(text: str, now: datetime) -> Optional[ParsedTime]:
    match = _EXPLICIT_DATE.match(text)
    if not match:
        return None
    month, day = int(match.group(1)), int(match.group(2))
    clock = parse_clock(match.group(3)) or DEFAULT_HOUR
    try:
        target = now.replace(month=month, day=day)
        if target.date() < now.date():
            target = target.replace(year=now.year + 1)
    except ValueError:
        return None
    return _ok(_at(target, *clock), now)


def _time_only(text: str, now: datetime) -> Optional[ParsedTime]:
    if text in ("ASAP", "NOW", "SOON"):
        return _ok(now + timedelta(hours=1), now)
    clock = parse_clock(text)
    if clock is None:
        return None
    target = _at(now, *clock)
    if target < now:
        target += timedelta(days=1)
    return _ok(target, now)


def parse_time_phrase(text: str, now: datetime) -> ParsedTime:
    normalized = " ".join(text.strip().upper().split())
    if not normalized:
        return _clarify(PROMPT_EMPTY)

    for strategy in (_relative_day, _day_of_week, _explicit_date, _time_only):
        result = strategy(normalized, now)
        if result is None:
            continue
        if not result.success:
            return result
        if result.date_time < now:
            if result.date_time.date() == now.date():
                return _ok(result.date_time + timedelta(days=1), now)
            return _clarify(PROMPT_PASSED, error="That time has already passed")
        return result

    return _clarify(PROMPT_UNPARSEABLE)


def parse_snooze(text: str, now: datetime) -> ParsedSnooze:
    normalized = " ".join(text.strip().upper().split())

    match = _SNOOZE_HOURS.match(normalized)
    if match and 1 <= int(match.group(1)) <= 24:
        hours = int(match.group(1))
        return ParsedSnooze(
            success=True,
            snooze_until=now + timedelta(hours=hours),
            display_text=f"{hours} hour{'s' if hours > 1 else ''}",
        )

    match = _SNOOZE_MINUTES.match(normalized)
    if match and 15 <= int(match.group(1)) <= 120:
        minutes = int(match.group(1))
        return ParsedSnooze(
            success=True,
            snooze_until=now + timedelta(minutes=minutes),
            display_text=f"{minutes} minutes",
        )

    if normalized in ("TOMORROW", "TMRW", "TMR", "TOMORROW AM", "TMRW AM"):
        return ParsedSnooze(
            success=True,
            snooze_until=_at(now + timedelta(days=1), 9, 0),
            display_text="Tomorrow at 9 AM",
        )

    if normalized in ("TOMORROW PM", "TMRW PM"):
        return ParsedSnooze(
            success=True,
            snooze_until=_at(now + timedelta(days=1), 14, 0),
            display_text="Tomorrow at 2 PM",
        )

    if re.match(r"^[1-9]$", normalized):
        hours = int(normalized)
        return ParsedSnooze(
            success=True,
            snooze_until=now + timedelta(hours=hours),
            display_text=f"{hours} hour{'s' if hours > 1 else ''}",
        )

    return ParsedSnooze(success=False, error=SNOOZE_ERROR)


class SmsTimeParser:
    """Default time parser collaborator handed to command handlers."""

    def parse_time(self, text: str, now: datetime) -> ParsedTime:
        return parse_time_phrase(text, now)

    def parse_snooze(self, text: str, now: datetime) -> ParsedSnooze:
        return parse_snooze(text, now)
