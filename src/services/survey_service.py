"""
Survey Service.

Connects the conversation engine to the store and the SMS gateway:
processes inbound replies, records delivery status, sends first survey
messages for recent visits, commits extracted results, and resends
failed messages.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from src.config import Settings, get_settings
from src.errors import ExtractionError, GatewayError
from src.logging_config import get_logger, visit_id_var
from src.schemas.message import FAILED_STATUSES, MessageStatus, MessageType, SentMessage
from src.schemas.survey import ConversationPhase, Speaker, SurveyRecord, SurveyResult, Turn
from src.services.conversation_engine import (
    ConversationEngine,
    next_step,
    seed_conversation,
    seed_greeting,
    thank_you_message,
)
from src.services.sms_gateway import SmsGateway
from src.services.visit_lock import LocalVisitLocks, VisitLocks

logger = get_logger(__name__)

THANK_YOU_STEP = "thank_you"


class SurveyStore(Protocol):
    """Store operations the survey workflow needs (see ``src.db.DatabaseClient``)."""

    async def get_customer_by_phone(self, phone: str) -> dict[str, Any] | None: ...
    async def get_latest_service_visit(self, customer_id: str) -> dict[str, Any] | None: ...
    async def get_service_visits_due_for_survey(
        self, completed_after: datetime, completed_before: datetime
    ) -> list[dict[str, Any]]: ...
    async def get_survey_for_visit(self, service_visit_id: str) -> dict[str, Any] | None: ...
    async def create_survey(self, service_visit_id: str) -> dict[str, Any]: ...
    async def update_conversation(self, survey_id: str, conversation: list[dict[str, Any]]) -> dict[str, Any]: ...
    async def save_survey_results(self, survey_id: str, result: SurveyResult) -> dict[str, Any]: ...
    async def insert_follow_up_item(self, survey_id: str, issue_type: str, description: str) -> Any: ...
    async def insert_positive_remark(self, survey_id: str, employee: str, comment: str) -> Any: ...
    async def log_message(self, payload: dict[str, Any]) -> dict[str, Any] | None: ...
    async def update_message_status(self, twilio_sid: str, status: str) -> dict[str, Any] | None: ...
    async def set_message_status(self, message_id: str, status: str) -> dict[str, Any] | None: ...
    async def get_failed_messages(self, since: datetime, max_retries: int) -> list[dict[str, Any]]: ...
    async def get_latest_outbound_message(self, service_visit_id: str) -> dict[str, Any] | None: ...


def _dump(turns: list[Turn]) -> list[dict[str, Any]]:
    return [turn.model_dump(mode="json") for turn in turns]


class SurveyService:
    """
    Runs the SMS survey workflow against injected collaborators.

    Inbound processing never raises to the webhook: any failure is logged
    and the turn is dropped without a reply.
    """

    def __init__(
        self,
        store: SurveyStore,
        gateway: SmsGateway,
        engine: ConversationEngine,
        locks: VisitLocks | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.engine = engine
        self.locks = locks or LocalVisitLocks()
        self.settings = settings or get_settings()

    # -- Inbound replies --

    async def process_inbound(self, message_sid: str, from_number: str, body: str) -> Optional[SentMessage]:
        """
        Advance the sender's survey by one reply and send what comes next.

        Returns the outbound message, or None when nothing was sent.
        """
        token = visit_id_var.set("")
        try:
            return await self._process_inbound(message_sid, from_number, body)
        except Exception as e:
            logger.error("inbound_processing_error", twilio_sid=message_sid, error=str(e))
            return None
        finally:
            visit_id_var.reset(token)

    async def _process_inbound(self, message_sid: str, from_number: str, body: str) -> Optional[SentMessage]:
        logger.info("inbound_sms_received", twilio_sid=message_sid)

        await self.store.log_message({
            "status": MessageStatus.RECEIVED.value,
            "twilio_sid": message_sid,
            "message_body": body,
            "message_type": MessageType.INBOUND.value,
            "from_number": from_number,
        })

        customer = await self.store.get_customer_by_phone(from_number)
        if not customer:
            logger.warning("inbound_unknown_customer", twilio_sid=message_sid)
            return None

        visit = await self.store.get_latest_service_visit(customer["id"])
        if not visit:
            logger.warning("inbound_no_service_visit", customer_id=customer["id"])
            return None

        visit_id = visit["id"]
        visit_id_var.set(visit_id)

        async with self.locks.hold(visit_id):
            survey = await self.store.get_survey_for_visit(visit_id)
            if survey is None:
                survey = await self.store.create_survey(visit_id)
            record = SurveyRecord.model_validate(survey)
            if record.survey_completed:
                logger.info("inbound_survey_already_completed", survey_id=record.id)
                return None

            conversation = self._load_conversation(record)
            try:
                outcome = await self.engine.advance(body, conversation)
            except ExtractionError:
                # Keep the reply so the next message retries extraction on the full transcript
                conversation.append(Turn(speaker=Speaker.CUSTOMER, text=body))
                await self.store.update_conversation(record.id, _dump(conversation))
                raise

            await self.store.update_conversation(record.id, _dump(outcome.conversation))

            if outcome.terminal and outcome.result is not None:
                await self.commit_results(record.id, outcome.result)
                text, step = thank_you_message(outcome.language), THANK_YOU_STEP
            else:
                text, step = outcome.outbound_text or "", next_step(outcome.phase).value

        return await self._send(visit_id, from_number, text, step)

    def _load_conversation(self, record: SurveyRecord) -> list[Turn]:
        """Stored turns, or the seed greeting when the survey has none yet."""
        if not record.conversation:
            return seed_conversation(self.settings.dealership_name)
        return list(record.conversation)

    # -- Result commit --

    async def commit_results(self, survey_id: str, result: SurveyResult) -> dict[str, int]:
        """
        Persist an extracted result.

        The survey row update must succeed; each follow-up item and positive
        remark insert is then attempted independently.
        """
        await self.store.save_survey_results(survey_id, result)

        summary = {"follow_up_items": 0, "positive_remarks": 0, "failed_inserts": 0}

        for category, issues in result.follow_up_items.by_category():
            for issue in issues:
                try:
                    await self.store.insert_follow_up_item(survey_id, category.value, issue)
                    summary["follow_up_items"] += 1
                except Exception as e:
                    summary["failed_inserts"] += 1
                    logger.error("follow_up_item_insert_error", survey_id=survey_id, issue_type=category.value, error=str(e))

        for remark in result.positive_remarks:
            try:
                await self.store.insert_positive_remark(survey_id, remark.employee, remark.comment)
                summary["positive_remarks"] += 1
            except Exception as e:
                summary["failed_inserts"] += 1
                logger.error("positive_remark_insert_error", survey_id=survey_id, error=str(e))

        logger.info(
            "survey_results_saved",
            survey_id=survey_id,
            callback_needed=result.callback_needed,
            **summary,
        )
        return summary

    # -- Delivery status --

    async def handle_status_callback(self, message_sid: str, status: str) -> None:
        """Record a delivery status; failures are only logged, never retried here."""
        logger.info("message_status_updated", twilio_sid=message_sid, status=status)
        try:
            await self.store.update_message_status(message_sid, status)
        except Exception as e:
            logger.error("message_status_update_error", twilio_sid=message_sid, error=str(e))

        if status in FAILED_STATUSES:
            logger.warning("message_delivery_failed", twilio_sid=message_sid, status=status)

    # -- Outbound scheduling --

    async def send_initial_survey(self, customer: dict[str, Any], visit: dict[str, Any]) -> SentMessage:
        """Send the greeting and first rating question for a visit."""
        logger.info("initial_survey_sending", customer_id=customer.get("id"), visit_id=visit["id"])
        return await self._send(
            visit["id"],
            customer["phone"],
            seed_greeting(self.settings.dealership_name),
            ConversationPhase.OVERALL_SATISFACTION.value,
        )

    async def schedule_surveys(self, now: datetime | None = None) -> dict[str, int]:
        """
        Start surveys for visits completed inside the survey window.

        Each visit is handled on its own: a failure is logged and the
        batch continues.
        """
        now = now or datetime.now(timezone.utc)
        completed_after = now - timedelta(hours=self.settings.survey_window_end_hours)
        completed_before = now - timedelta(hours=self.settings.survey_window_start_hours)

        visits = await self.store.get_service_visits_due_for_survey(completed_after, completed_before)
        summary = {"due": len(visits), "sent": 0, "skipped": 0, "failed": 0}
        if not visits:
            logger.info("no_visits_due_for_survey")
            return summary

        logger.info("visits_due_for_survey", count=len(visits))

        for visit in visits:
            try:
                customer = visit.get("customers")
                if not customer or not customer.get("phone"):
                    logger.warning("visit_missing_customer_phone", visit_id=visit["id"])
                    summary["skipped"] += 1
                    continue

                await self.store.create_survey(visit["id"])
                await self.send_initial_survey(customer, visit)
                summary["sent"] += 1
            except Exception as e:
                summary["failed"] += 1
                logger.error("survey_schedule_error", visit_id=visit.get("id"), error=str(e))

        logger.info("survey_scheduling_finished", **summary)
        return summary

    async def retry_failed_messages(self, max_retries: int | None = None, now: datetime | None = None) -> dict[str, int]:
        """
        Resend failed or undelivered outbound messages verbatim.

        A message is only resent while it is still the latest outbound
        message for its visit; older ones are marked superseded.
        """
        max_retries = self.settings.max_retry_attempts if max_retries is None else max_retries
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.settings.retry_lookback_hours)

        messages = await self.store.get_failed_messages(since, max_retries)
        summary = {"candidates": len(messages), "resent": 0, "superseded": 0, "failed": 0}

        for message in messages:
            try:
                visit = message.get("service_visits") or {}
                visit_id = visit.get("id") or message.get("service_visit_id")
                customer = visit.get("customers") or {}

                latest = await self.store.get_latest_outbound_message(visit_id)
                if latest and latest.get("id") != message.get("id"):
                    await self.store.set_message_status(message["id"], MessageStatus.SUPERSEDED.value)
                    summary["superseded"] += 1
                    continue

                if not customer.get("phone"):
                    logger.warning("retry_missing_customer_phone", visit_id=visit_id)
                    summary["failed"] += 1
                    continue

                await self._send(
                    visit_id,
                    customer["phone"],
                    message["message_body"],
                    message.get("message_step"),
                    retries_count=(message.get("retries_count") or 0) + 1,
                )
                await self.store.set_message_status(message["id"], MessageStatus.RETRIED.value)
                summary["resent"] += 1
            except Exception as e:
                summary["failed"] += 1
                logger.error("message_retry_error", message_id=message.get("id"), error=str(e))

        logger.info("message_retry_finished", **summary)
        return summary

    # -- Helpers --

    async def _send(
        self,
        visit_id: str,
        to: str,
        body: str,
        step: str | None,
        retries_count: int = 0,
    ) -> SentMessage:
        """
        Send one outbound message and log it with its step.

        A gateway rejection is logged as a ``failed`` outbound row so the
        retry job can resend it, then re-raised.
        """
        payload: dict[str, Any] = {
            "service_visit_id": visit_id,
            "message_body": body,
            "message_type": MessageType.OUTBOUND.value,
            "message_step": step,
        }
        if retries_count:
            payload["retries_count"] = retries_count

        try:
            sent = await self.gateway.send_sms(to, body)
        except GatewayError as e:
            await self.store.log_message({**payload, "status": MessageStatus.FAILED.value})
            logger.error("outbound_sms_failed", visit_id=visit_id, step=step, error=str(e))
            raise

        await self.store.log_message({**payload, "status": MessageStatus.SENT.value, "twilio_sid": sent.sid})
        logger.info("outbound_sms_logged", visit_id=visit_id, twilio_sid=sent.sid, step=step)
        return sent


_service: SurveyService | None = None


def get_survey_service() -> SurveyService:
    """Default service wired to Supabase, Twilio and Gemini."""
    global _service
    if _service is None:
        from src.db import get_db
        from src.services.llm_client import get_llm
        from src.services.sms_gateway import get_gateway
        from src.services.visit_lock import build_visit_locks

        _service = SurveyService(
            store=get_db(),
            gateway=get_gateway(),
            engine=ConversationEngine(get_llm()),
            locks=build_visit_locks(),
        )
    return _service


async def close_survey_service() -> None:
    """Release connections held by the default service, if it was built."""
    global _service
    if _service is None:
        return
    close = getattr(_service.locks, "close", None)
    if close is not None:
        await close()
    _service = None
