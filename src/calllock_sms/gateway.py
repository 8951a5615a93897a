import httpx
import logging
from dataclasses import dataclass
from typing import Optional

from calllock_sms.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com"


@dataclass
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: str = ""
    # True when the breaker answered and Twilio was never called
    short_circuited: bool = False


class TwilioGateway:
    """Sends SMS through the Twilio Messages API.

    Never raises: transport errors and non-2xx responses come back as a failed
    SendResult. After 3 consecutive failures new sends are skipped for 60s.
    A retry of a send that already reached Twilio (`retry=True`) is let
    through an open breaker so its backoff schedule runs to the end.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = TWILIO_API_BASE,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        circuit: CircuitBreaker | None = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self._circuit = circuit or CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Twilio",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(account_sid, auth_token),
                timeout=timeout,
            )

    @property
    def messages_path(self) -> str:
        return f"/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    async def close(self):
        await self._client.aclose()

    async def send(self, to: str, body: str, *, retry: bool = False) -> SendResult:
        if not retry and not self._circuit.allow_request():
            logger.warning("Twilio circuit breaker open, not sending to %s", to)
            return SendResult(ok=False, error="SMS gateway unavailable", short_circuited=True)
        try:
            resp = await self._client.post(
                self.messages_path,
                data={"To": to, "From": self.from_number, "Body": body},
            )
            resp.raise_for_status()
            self._circuit.record_success()
            return SendResult(ok=True, message_id=resp.json().get("sid"))
        except Exception as e:
            self._circuit.record_failure()
            logger.error("SMS send to %s failed: %s", to, e)
            return SendResult(ok=False, error=str(e))
