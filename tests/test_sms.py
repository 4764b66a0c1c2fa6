import httpx
import pytest

from lifeline.config import Settings
from lifeline.services.sms import (
    ConsoleSmsSender,
    TwilioSmsSender,
    build_sms_sender,
)


def twilio(handler) -> TwilioSmsSender:
    return TwilioSmsSender(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550001111",
        base_url="https://sms.test/2010-04-01",
        transport=httpx.MockTransport(handler),
    )


async def test_twilio_posts_message_and_returns_sid():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.content.decode()
        return httpx.Response(201, json={"sid": "SM42"})

    outcome = await twilio(handler).send("+233240000001", "Blood needed")

    assert outcome.success
    assert outcome.message_id == "SM42"
    assert seen["url"] == "https://sms.test/2010-04-01/Accounts/AC123/Messages.json"
    assert seen["auth"].startswith("Basic ")
    assert "To=%2B233240000001" in seen["body"]


async def test_twilio_http_error_is_a_failed_outcome():
    def handler(request):
        return httpx.Response(400, json={"message": "invalid number"})

    outcome = await twilio(handler).send("not-a-number", "hi")

    assert not outcome.success
    assert outcome.error.startswith("HTTP 400")


async def test_twilio_transport_error_is_a_failed_outcome():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    outcome = await twilio(handler).send("+233240000001", "hi")

    assert not outcome.success
    assert "connection refused" in outcome.error


async def test_console_sender_always_succeeds():
    outcome = await ConsoleSmsSender().send("+233240000001", "hi")
    assert outcome.success
    assert outcome.message_id.startswith("console_")


def test_provider_selection():
    assert isinstance(build_sms_sender(Settings(SMS_PROVIDER="console")), ConsoleSmsSender)

    config = Settings(
        SMS_PROVIDER="twilio",
        TWILIO_ACCOUNT_SID="AC1",
        TWILIO_AUTH_TOKEN="t",
        TWILIO_PHONE_NUMBER="+1555",
    )
    assert isinstance(build_sms_sender(config), TwilioSmsSender)


def test_twilio_requires_credentials():
    with pytest.raises(ValueError):
        Settings(SMS_PROVIDER="twilio", TWILIO_ACCOUNT_SID="", TWILIO_AUTH_TOKEN="")
