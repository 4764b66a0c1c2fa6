"""
Outbound SMS transport.

``send(to, body)`` never raises for delivery problems; it reports them in
the returned ``SendOutcome`` so one failed donor cannot affect the rest of
a batch.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from lifeline.config import Settings, settings
from lifeline.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SmsSender(Protocol):
    async def send(self, to: str, body: str) -> SendOutcome: ...


class ConsoleSmsSender:
    """Logs messages instead of sending them. Used in development."""

    async def send(self, to: str, body: str) -> SendOutcome:
        message_id = f"console_{uuid.uuid4().hex[:12]}"
        logger.info(
            f"[CONSOLE SMS] To: {to}",
            extra={
                "extra_fields": {
                    "event_type": "sms_console_send",
                    "to": to,
                    "body": body,
                    "message_id": message_id,
                }
            },
        )
        return SendOutcome(success=True, message_id=message_id)


class TwilioSmsSender:
    """Sends through the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, to: str, body: str) -> SendOutcome:
        payload = {"To": to, "From": self.from_number, "Body": body}
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                resp = await client.post(
                    self.messages_url,
                    data=payload,
                    auth=(self.account_sid, self.auth_token),
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    f"SMS provider rejected message to {to}: {e.response.status_code}"
                )
                return SendOutcome(
                    success=False,
                    error=f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                )
            except httpx.RequestError as e:
                logger.error(f"Failed to reach SMS provider for {to}: {e}")
                return SendOutcome(success=False, error=str(e))

        try:
            parsed = resp.json()
        except ValueError:
            parsed = {}
        return SendOutcome(success=True, message_id=parsed.get("sid"))


def build_sms_sender(config: Settings = settings) -> SmsSender:
    if config.SMS_PROVIDER == "twilio":
        return TwilioSmsSender(
            account_sid=config.TWILIO_ACCOUNT_SID,
            auth_token=config.TWILIO_AUTH_TOKEN,
            from_number=config.TWILIO_PHONE_NUMBER,
            base_url=config.TWILIO_API_BASE_URL,
            timeout=config.SMS_TIMEOUT_SECONDS,
        )
    return ConsoleSmsSender()
