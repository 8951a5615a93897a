import asyncio
import httpx
import logging

from calllock_sms.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

# One retry, two seconds after the first failure
DASHBOARD_RETRY = BackoffPolicy((2.0,))


class DashboardClient:
    """Reports SMS activity to the CallLock dashboard webhooks.

    `send_sms_log` receives every exchange-log entry and `send_escalation`
    each lead the notifier escalated. Results are the dashboard's JSON body, or
    {"success": False, "error": ...} once the retry policy is spent; nothing
    here raises.
    """

    def __init__(
        self,
        *,
        sms_log_url: str,
        escalations_url: str,
        webhook_secret: str,
        timeout: float = 15.0,
        retry: BackoffPolicy = DASHBOARD_RETRY,
        sleep=asyncio.sleep,
    ):
        self.sms_log_url = sms_log_url
        self.escalations_url = escalations_url
        self.secret = webhook_secret
        self.timeout = timeout
        self.retry = retry
        self._sleep = sleep

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Webhook-Secret": self.secret,
        }

    async def _post(self, url: str, payload: dict, label: str) -> dict:
        if not url:
            return {"success": False, "error": f"{label} URL not configured"}

        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, json=payload, headers=self._headers())
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPError, ValueError) as e:
                delay = self.retry.next_delay(attempt)
                if delay is None:
                    logger.error("%s failed after %d attempt(s): %s", label, attempt + 1, e)
                    return {"success": False, "error": str(e)}
                logger.warning("%s failed (attempt %d), retrying in %.0fs: %s", label, attempt + 1, delay, e)
                await self._sleep(delay)
                attempt += 1

    async def send_sms_log(self, payload: dict) -> dict:
        return await self._post(self.sms_log_url, payload, "Dashboard SMS log")

    async def send_escalation(self, payload: dict) -> dict:
        return await self._post(self.escalations_url, payload, "Dashboard escalation")
