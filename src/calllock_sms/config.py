"""Environment configuration.

`validate_config()` runs before the server starts so a missing Twilio
credential is a clear startup failure instead of every send failing later.
"""

import logging
import os
import sys
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
]

OPTIONAL_VARS = [
    "DASHBOARD_SMS_LOG_URL",
    "DASHBOARD_ESCALATIONS_URL",
    "DASHBOARD_WEBHOOK_SECRET",
    "CRON_SECRET",
    "OPERATOR_PHONE",
    "DEFAULT_TIMEZONE",
    "LOG_LEVEL",
]

DEFAULT_TIMEZONE = "America/Chicago"


@dataclass(frozen=True)
class Settings:
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    dashboard_sms_log_url: str = ""
    dashboard_escalations_url: str = ""
    dashboard_webhook_secret: str = ""
    cron_secret: str = ""
    account_id: str = "default"
    operator_phone: str = ""
    default_timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"


def load_env() -> None:
    """Load `.env` from the working directory. Variables already set win."""
    load_dotenv(find_dotenv(usecwd=True))


def load_settings() -> Settings:
    load_env()
    return Settings(
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
        dashboard_sms_log_url=os.getenv("DASHBOARD_SMS_LOG_URL", ""),
        dashboard_escalations_url=os.getenv("DASHBOARD_ESCALATIONS_URL", ""),
        dashboard_webhook_secret=os.getenv("DASHBOARD_WEBHOOK_SECRET", ""),
        cron_secret=os.getenv("CRON_SECRET", ""),
        account_id=os.getenv("ACCOUNT_ID", "default"),
        operator_phone=os.getenv("OPERATOR_PHONE", ""),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", DEFAULT_TIMEZONE),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def validate_config() -> None:
    """Exit with a clear error if a required variable is missing or empty.

    Missing optional variables only log a warning.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or as deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    timezone = os.getenv("DEFAULT_TIMEZONE")
    if timezone:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            print(f"\nFATAL: DEFAULT_TIMEZONE {timezone!r} is not a known IANA timezone\n", file=sys.stderr)
            sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
