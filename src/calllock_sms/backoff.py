from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry schedule for failed sends.

    `delays` holds the wait (seconds) before retry 1, 2, ... and its length is
    the retry cap. Attempt numbers count retries already made, starting at 0.
    """

    delays: tuple[float, ...] = ()

    @property
    def max_retries(self) -> int:
        return len(self.delays)

    def next_delay(self, attempt: int) -> Optional[float]:
        """Seconds to wait before retry `attempt + 1`, or None when retries are exhausted."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        if attempt >= len(self.delays):
            return None
        return self.delays[attempt]

    def total_delay(self) -> float:
        return float(sum(self.delays))


NO_RETRY = BackoffPolicy(())
