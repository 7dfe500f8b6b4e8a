"""
Supabase Database Client.

Provides a singleton instance of the Supabase client and typed helper
methods for the survey tables: customers, service_visits, surveys,
follow_up_items, positive_remarks and message_logs.

Reads and writes of primary records raise ``StoreError``; message-log
writes are best-effort and only log their failures.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

from src.config import get_settings
from src.errors import StoreError
from src.logging_config import get_logger
from src.schemas.message import FAILED_STATUSES, MessageType
from src.schemas.survey import SurveyResult

logger = get_logger(__name__)

RATING_COLUMNS = (
    "overall_satisfaction",
    "workmanship_quality",
    "service_timeliness",
    "staff_friendliness",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class DatabaseClient:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[DatabaseClient] = None
    _client: Client

    def __new__(cls) -> DatabaseClient:
        """Singleton pattern to ensure only one client instance."""
        if cls._instance is None:
            instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "Supabase credentials missing. Database operations will fail.",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                )
                logger.info("Supabase client initialized", url=settings.supabase_url)
            except Exception as e:
                logger.error("Failed to initialize Supabase client", error=str(e))
                raise

            cls._instance = instance

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    # -- Customers & visits --

    async def get_customer_by_phone(self, phone: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("customers")
                .select("id, first_name, last_name, phone, preferred_language")
                .eq("phone", phone)
                .limit(1)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error finding customer by phone", error=str(e))
            raise StoreError(f"Error finding customer by phone: {e}") from e

    async def get_latest_service_visit(self, customer_id: str) -> dict[str, Any] | None:
        """Most recent service visit for a customer."""
        try:
            response = (
                self.client.table("service_visits")
                .select("*")
                .eq("customer_id", customer_id)
                .order("service_date", desc=True)
                .limit(1)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error finding service visit", customer_id=customer_id, error=str(e))
            raise StoreError(f"Error finding service visit: {e}") from e

    async def get_service_visits_due_for_survey(
        self, completed_after: datetime, completed_before: datetime
    ) -> list[dict[str, Any]]:
        """Visits completed inside the window that have no survey yet."""
        try:
            response = (
                self.client.table("service_visits")
                .select(
                    "*, customers(id, first_name, last_name, phone, email, preferred_language), "
                    "surveys(id)"
                )
                .gte("completed_at", completed_after.isoformat())
                .lte("completed_at", completed_before.isoformat())
                .execute()
            )
        except Exception as e:
            logger.error("Error fetching service visits", error=str(e))
            raise StoreError(f"Error fetching service visits: {e}") from e

        return [visit for visit in response.data or [] if not visit.get("surveys")]

    # -- Surveys --

    async def get_survey_for_visit(self, service_visit_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("surveys")
                .select("id, service_visit_id, conversation, survey_completed")
                .eq("service_visit_id", service_visit_id)
                .limit(1)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error finding survey", service_visit_id=service_visit_id, error=str(e))
            raise StoreError(f"Error finding survey: {e}") from e

    async def create_survey(self, service_visit_id: str) -> dict[str, Any]:
        try:
            response = (
                self.client.table("surveys")
                .insert({
                    "service_visit_id": service_visit_id,
                    "call_timestamp": _now(),
                    "survey_completed": False,
                })
                .execute()
            )
        except Exception as e:
            logger.error("Error creating survey", service_visit_id=service_visit_id, error=str(e))
            raise StoreError(f"Error creating survey: {e}") from e

        survey = _first(response.data)
        if survey is None:
            raise StoreError(f"Survey insert returned no row for visit {service_visit_id}")
        return survey

    async def update_conversation(self, survey_id: str, conversation: list[dict[str, Any]]) -> dict[str, Any]:
        try:
            response = (
                self.client.table("surveys")
                .update({"conversation": conversation, "updated_at": _now()})
                .eq("id", survey_id)
                .execute()
            )
        except Exception as e:
            logger.error("Error updating conversation", survey_id=survey_id, error=str(e))
            raise StoreError(f"Error updating conversation: {e}") from e

        survey = _first(response.data)
        if survey is None:
            raise StoreError(f"Survey {survey_id} not found")
        return survey

    async def save_survey_results(self, survey_id: str, result: SurveyResult) -> dict[str, Any]:
        """Write ratings, language and callback flag, and mark the survey completed."""
        try:
            response = (
                self.client.table("surveys")
                .update({
                    "survey_completed": True,
                    "language_used": result.preferred_language,
                    **result.ratings.model_dump(),
                    "callback_needed": result.callback_needed,
                    "updated_at": _now(),
                })
                .eq("id", survey_id)
                .execute()
            )
        except Exception as e:
            logger.error("Error saving survey results", survey_id=survey_id, error=str(e))
            raise StoreError(f"Error updating survey: {e}") from e

        survey = _first(response.data)
        if survey is None:
            raise StoreError(f"Survey {survey_id} not found")
        return survey

    async def insert_follow_up_item(self, survey_id: str, issue_type: str, description: str) -> dict[str, Any] | None:
        response = (
            self.client.table("follow_up_items")
            .insert({
                "survey_id": survey_id,
                "issue_type": issue_type,
                "issue_description": description,
                "status": "pending",
            })
            .execute()
        )
        return _first(response.data)

    async def insert_positive_remark(self, survey_id: str, employee: str, comment: str) -> dict[str, Any] | None:
        response = (
            self.client.table("positive_remarks")
            .insert({"survey_id": survey_id, "employee_name": employee, "comment": comment})
            .execute()
        )
        return _first(response.data)

    # -- Message logs --

    async def log_message(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """Insert a message_logs row."""
        try:
            response = self.client.table("message_logs").insert(
                {"sent_at": _now(), **payload}
            ).execute()
            return _first(response.data)
        except Exception as e:
            logger.error("Error logging message", twilio_sid=payload.get("twilio_sid"), error=str(e))
            return None

    async def update_message_status(self, twilio_sid: str, status: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("message_logs")
                .update({"status": status, "updated_at": _now()})
                .eq("twilio_sid", twilio_sid)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error updating message status", twilio_sid=twilio_sid, status=status, error=str(e))
            return None

    async def set_message_status(self, message_id: str, status: str) -> dict[str, Any] | None:
        """Update a message_logs row by ID; failed sends have no Twilio SID."""
        try:
            response = (
                self.client.table("message_logs")
                .update({"status": status, "updated_at": _now()})
                .eq("id", message_id)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error updating message status", message_id=message_id, status=status, error=str(e))
            return None

    async def get_failed_messages(self, since: datetime, max_retries: int) -> list[dict[str, Any]]:
        """Failed outbound messages eligible for a resend, with their customer."""
        try:
            response = (
                self.client.table("message_logs")
                .select("*, service_visits!inner(id, customers(id, first_name, last_name, phone, preferred_language))")
                .in_("status", list(FAILED_STATUSES))
                .eq("message_type", MessageType.OUTBOUND.value)
                .gte("sent_at", since.isoformat())
                .lt("retries_count", max_retries)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error("Error fetching failed messages", error=str(e))
            raise StoreError(f"Error fetching failed messages: {e}") from e

    async def get_latest_outbound_message(self, service_visit_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("message_logs")
                .select("id, twilio_sid, message_step, sent_at")
                .eq("service_visit_id", service_visit_id)
                .eq("message_type", MessageType.OUTBOUND.value)
                .order("sent_at", desc=True)
                .limit(1)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error fetching latest outbound message", service_visit_id=service_visit_id, error=str(e))
            raise StoreError(f"Error fetching latest outbound message: {e}") from e

    # -- Dashboard queries --

    async def list_surveys(
        self,
        completed: bool | None = None,
        callback_needed: bool | None = None,
        from_date: str | None = None,
        to_date: str | None = None,
        min_rating: int | None = None,
        max_rating: int | None = None,
    ) -> list[dict[str, Any]]:
        query = self.client.table("surveys").select(
            "*, service_visits(id, service_date, vehicle_make, vehicle_model, vehicle_year, vin), "
            "follow_up_items(*), positive_remarks(*)"
        )
        if completed is not None:
            query = query.eq("survey_completed", completed)
        if callback_needed is not None:
            query = query.eq("callback_needed", callback_needed)
        if from_date:
            query = query.gte("call_timestamp", from_date)
        if to_date:
            query = query.lte("call_timestamp", to_date)
        if min_rating is not None:
            query = query.gte("overall_satisfaction", min_rating)
        if max_rating is not None:
            query = query.lte("overall_satisfaction", max_rating)

        try:
            return query.order("call_timestamp", desc=True).execute().data or []
        except Exception as e:
            logger.error("Error fetching surveys", error=str(e))
            raise StoreError(f"Error fetching surveys: {e}") from e

    async def get_survey(self, survey_id: str) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("surveys")
                .select(
                    "*, service_visits(*, customers(id, first_name, last_name, phone, email)), "
                    "follow_up_items(*), positive_remarks(*)"
                )
                .eq("id", survey_id)
                .limit(1)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error fetching survey", survey_id=survey_id, error=str(e))
            raise StoreError(f"Error fetching survey: {e}") from e

    async def update_callback_status(
        self, survey_id: str, callback_completed: bool, callback_notes: str | None = None
    ) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("surveys")
                .update({
                    "callback_completed": callback_completed,
                    "callback_notes": callback_notes,
                    "updated_at": _now(),
                })
                .eq("id", survey_id)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error updating callback status", survey_id=survey_id, error=str(e))
            raise StoreError(f"Error updating callback status: {e}") from e

    async def get_follow_up_items(self, survey_id: str) -> list[dict[str, Any]]:
        try:
            response = (
                self.client.table("follow_up_items")
                .select("*")
                .eq("survey_id", survey_id)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error("Error fetching follow-up items", survey_id=survey_id, error=str(e))
            raise StoreError(f"Error fetching follow-up items: {e}") from e

    async def update_follow_up_item(self, item_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        try:
            response = (
                self.client.table("follow_up_items")
                .update({**updates, "updated_at": _now()})
                .eq("id", item_id)
                .execute()
            )
            return _first(response.data)
        except Exception as e:
            logger.error("Error updating follow-up item", item_id=item_id, error=str(e))
            raise StoreError(f"Error updating follow-up item: {e}") from e

    async def get_survey_stats(self) -> dict[str, Any]:
        """Totals, average ratings over completed surveys, and follow-up counts by type."""
        try:
            surveys = (
                self.client.table("surveys")
                .select(f"id, survey_completed, callback_needed, {', '.join(RATING_COLUMNS)}")
                .execute()
            ).data or []
            items = self.client.table("follow_up_items").select("issue_type").execute().data or []
        except Exception as e:
            logger.error("Error fetching survey statistics", error=str(e))
            raise StoreError(f"Error fetching survey statistics: {e}") from e

        averages: dict[str, float] = {}
        for column in RATING_COLUMNS:
            values = [s[column] for s in surveys if s.get(column) is not None]
            averages[column] = round(sum(values) / len(values), 2) if values else 0.0

        return {
            "total_surveys": len(surveys),
            "completed_surveys": sum(1 for s in surveys if s.get("survey_completed")),
            "average_ratings": averages,
            "callback_needed_count": sum(1 for s in surveys if s.get("callback_needed")),
            "follow_up_counts": dict(Counter(item["issue_type"] for item in items)),
        }


# Global accessor
def get_db() -> DatabaseClient:
    return DatabaseClient()
