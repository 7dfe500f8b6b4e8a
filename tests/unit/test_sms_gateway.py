from urllib.parse import parse_qs

import httpx
import pytest

from src.errors import GatewayError
from src.services.sms_gateway import TwilioGateway


def _gateway(handler) -> TwilioGateway:
    return TwilioGateway(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15557654321",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_send_sms_posts_form_with_status_callback():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SMabc", "status": "queued", "to": "+15550001111"})

    sent = await _gateway(handler).send_sms("+15550001111", "How did we do?")

    assert sent.sid == "SMabc"
    assert sent.status == "queued"
    assert seen["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
    assert seen["auth"].startswith("Basic ")
    assert seen["form"]["To"] == ["+15550001111"]
    assert seen["form"]["From"] == ["+15557654321"]
    assert seen["form"]["Body"] == ["How did we do?"]
    assert seen["form"]["StatusCallback"][0].endswith("/api/webhooks/twilio/status")


@pytest.mark.asyncio
async def test_send_sms_without_status_callback():
    seen = {}

    def handler(request):
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SMabc"})

    await _gateway(handler).send_sms("+15550001111", "Hi", status_callback=False)

    assert "StatusCallback" not in seen["form"]


@pytest.mark.asyncio
async def test_rejected_message_raises_gateway_error():
    def handler(request):
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    with pytest.raises(GatewayError):
        await _gateway(handler).send_sms("not-a-number", "Hi")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(201, text="Created"),
        httpx.Response(201, json={"status": "queued"}),
    ],
)
async def test_malformed_twilio_response_raises_gateway_error(response):
    def handler(request):
        return response

    with pytest.raises(GatewayError):
        await _gateway(handler).send_sms("+15550001111", "Hi")
