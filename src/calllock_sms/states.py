from enum import Enum

TERMINAL_LEAD_STATUSES = {"converted", "lost"}
TERMINAL_JOB_STATUSES = {"complete", "cancelled"}

# Forward order for jobs. cancelled sits outside the sequence.
JOB_SEQUENCE = ["new", "confirmed", "en_route", "on_site", "complete"]


class LeadStatus(Enum):
    CALLBACK_REQUESTED = "callback_requested"
    THINKING = "thinking"
    VOICEMAIL_LEFT = "voicemail_left"
    INFO_ONLY = "info_only"
    DEFERRED = "deferred"
    ABANDONED = "abandoned"
    CONVERTED = "converted"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_LEAD_STATUSES

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


class JobStatus(Enum):
    NEW = "new"
    CONFIRMED = "confirmed"
    EN_ROUTE = "en_route"
    ON_SITE = "on_site"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_JOB_STATUSES

    @property
    def rank(self) -> int:
        """Position in the forward sequence; cancelled has no rank."""
        if self is JobStatus.CANCELLED:
            return -1
        return JOB_SEQUENCE.index(self.value)


class PriorityColor(Enum):
    RED = "red"      # callback risk
    GREEN = "green"  # commercial / high value
    BLUE = "blue"    # standard residential
    GRAY = "gray"    # spam / vendor


class Urgency(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class CallbackOutcome(Enum):
    BOOKED = "booked"
    RESOLVED = "resolved"
    TRY_AGAIN = "try_again"
    NO_ANSWER = "no_answer"
