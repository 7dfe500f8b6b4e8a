"""
API Router: Twilio Webhooks.

Inbound SMS replies and delivery status callbacks. Twilio posts
form-encoded bodies; the inbound route always answers with empty TwiML
because replies are sent through the REST API instead.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, Response

from src.logging_config import get_logger
from src.services.survey_service import SurveyService, get_survey_service

logger = get_logger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def webhook_survey_service() -> Optional[SurveyService]:
    """The survey service, or None when it cannot be built (e.g. store misconfigured)."""
    try:
        return get_survey_service()
    except Exception as e:
        logger.error("survey_service_unavailable", error=str(e))
        return None


@router.post("/twilio/message")
async def twilio_message(
    message_sid: str = Form(..., alias="MessageSid"),
    from_number: str = Form(..., alias="From"),
    body: str = Form("", alias="Body"),
    service: Optional[SurveyService] = Depends(webhook_survey_service),
) -> Response:
    """Advance the sender's survey by one reply."""
    if service is None:
        logger.warning("inbound_sms_dropped", twilio_sid=message_sid)
    else:
        try:
            await service.process_inbound(message_sid, from_number, body)
        except Exception as e:
            logger.error("twilio_message_webhook_error", twilio_sid=message_sid, error=str(e))
    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/twilio/status")
async def twilio_status(
    message_sid: str = Form(..., alias="MessageSid"),
    message_status: str = Form(..., alias="MessageStatus"),
    service: Optional[SurveyService] = Depends(webhook_survey_service),
) -> Response:
    """Record the delivery status of an outbound message."""
    if service is None:
        logger.warning("message_status_dropped", twilio_sid=message_sid, status=message_status)
    else:
        await service.handle_status_callback(message_sid, message_status)
    return Response(content="Status update received", media_type="text/plain")
