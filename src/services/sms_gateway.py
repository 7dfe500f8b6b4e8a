"""
SMS Gateway.

Sends survey messages through the Twilio Messages REST API. Delivery
status arrives later on the status webhook, keyed by the message SID
returned here.
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx

from src.config import get_settings
from src.errors import GatewayError
from src.logging_config import get_logger
from src.schemas.message import SentMessage

logger = get_logger(__name__)


class SmsGateway(Protocol):
    async def send_sms(self, to: str, body: str, *, status_callback: bool = True) -> SentMessage:
        ...


class TwilioGateway:
    """Minimal Twilio client: one POST per outbound message."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_phone_number
        self.base_url = settings.twilio_api_base_url.rstrip("/")
        self.status_callback_url = settings.status_callback_url
        self._transport = transport

        if not self.account_sid or not self.auth_token:
            logger.warning(
                "twilio_credentials_missing",
                account_sid=bool(self.account_sid),
                auth_token=bool(self.auth_token),
            )

    async def send_sms(self, to: str, body: str, *, status_callback: bool = True) -> SentMessage:
        """
        Send ``body`` to ``to``.

        Raises:
            GatewayError: Twilio rejected the message or could not be reached.
        """
        url = f"{self.base_url}/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        form = {"To": to, "From": self.from_number, "Body": body}
        if status_callback:
            form["StatusCallback"] = self.status_callback_url

        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.post(
                    url,
                    data=form,
                    auth=(self.account_sid, self.auth_token),
                )
                response.raise_for_status()
                data = response.json()
            message = SentMessage(sid=data["sid"], status=data.get("status", "queued"), to=data.get("to", to))
        except httpx.HTTPError as e:
            logger.error("sms_send_error", to=to, error=str(e))
            raise GatewayError(f"Failed to send SMS: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            logger.error("sms_send_bad_response", to=to, error=str(e))
            raise GatewayError(f"Unexpected Twilio response: {e}") from e

        logger.info("sms_sent", twilio_sid=message.sid, status=message.status)
        return message


_gateway: TwilioGateway | None = None


def get_gateway() -> TwilioGateway:
    global _gateway
    if _gateway is None:
        _gateway = TwilioGateway()
    return _gateway
