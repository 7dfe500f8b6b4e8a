from __future__ import annotations

import itertools
import json
from typing import Any, Callable

import pytest

from src.errors import GatewayError
from src.schemas.message import SentMessage
from src.services.conversation_engine import ConversationEngine
from src.services.survey_service import SurveyService
from src.services.visit_lock import LocalVisitLocks


def result_payload(**overrides: Any) -> dict[str, Any]:
    """A well-formed extraction reply with every rating at 8 and no issues."""
    payload: dict[str, Any] = {
        "ratings": {
            "overall_satisfaction": 8,
            "workmanship_quality": 8,
            "service_timeliness": 8,
            "staff_friendliness": 8,
        },
        "follow_up_items": {
            "billing_disputes": [],
            "mechanical_issues": [],
            "warranty_questions": [],
            "service_logistics": [],
            "safety_concerns": [],
        },
        "positive_remarks": [],
        "preferred_language": "English",
        "callback_needed": False,
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(payload.get(key), dict):
            payload[key] = {**payload[key], **value}
        else:
            payload[key] = value
    return payload


class FakeLLM:
    """Answers by prompt kind: language detection, extraction, or free-form reply."""

    def __init__(
        self,
        language: str | Exception = "English",
        extraction: str | dict[str, Any] | Exception | None = None,
        reply: str | Exception = "Thanks for sharing! Anything else about your visit?",
    ) -> None:
        self.language = language
        self.extraction = extraction if extraction is not None else result_payload()
        self.reply = reply
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, temperature: float = 0.4) -> str:
        self.prompts.append(prompt)
        if prompt.startswith("Determine if the following text"):
            answer: Any = self.language
        elif "Customer survey transcript:" in prompt:
            answer = self.extraction
            if isinstance(answer, dict):
                answer = "Here is the result:\n" + json.dumps(answer) + "\nLet me know if you need more."
        else:
            answer = self.reply

        if isinstance(answer, Exception):
            raise answer
        return answer

    def prompts_of_kind(self, marker: str) -> list[str]:
        return [p for p in self.prompts if marker in p]


class FakeGateway:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for = fail_for or set()
        self._ids = itertools.count(1)

    async def send_sms(self, to: str, body: str, *, status_callback: bool = True) -> SentMessage:
        if to in self.fail_for:
            raise GatewayError(f"unreachable number {to}")
        self.sent.append((to, body))
        return SentMessage(sid=f"SM{next(self._ids):04d}", status="queued", to=to)


class FakeStore:
    """In-memory stand-in for the Supabase-backed DatabaseClient."""

    def __init__(self) -> None:
        self.customers: dict[str, dict[str, Any]] = {}
        self.visits: dict[str, dict[str, Any]] = {}
        self.surveys: dict[str, dict[str, Any]] = {}
        self.messages: list[dict[str, Any]] = []
        self.follow_up_items: list[dict[str, Any]] = []
        self.positive_remarks: list[dict[str, Any]] = []
        self.saved_results: dict[str, Any] = {}
        self.due_visits: list[dict[str, Any]] = []
        self.failing_issue_types: set[str] = set()
        self.fail_remarks = False
        self.fail_create_survey_for: set[str] = set()
        self._ids = itertools.count(1)

    def add_customer(self, phone: str, visit_id: str = "visit-1") -> dict[str, Any]:
        customer = {"id": f"cust-{phone[-4:]}", "phone": phone, "first_name": "Pat"}
        self.customers[phone] = customer
        self.visits[visit_id] = {"id": visit_id, "customer_id": customer["id"], "customers": customer}
        return customer

    def survey_for(self, visit_id: str) -> dict[str, Any] | None:
        return next((s for s in self.surveys.values() if s["service_visit_id"] == visit_id), None)

    async def get_customer_by_phone(self, phone: str) -> dict[str, Any] | None:
        return self.customers.get(phone)

    async def get_latest_service_visit(self, customer_id: str) -> dict[str, Any] | None:
        matches = [v for v in self.visits.values() if v["customer_id"] == customer_id]
        return matches[-1] if matches else None

    async def get_service_visits_due_for_survey(self, completed_after, completed_before) -> list[dict[str, Any]]:
        self.window = (completed_after, completed_before)
        return list(self.due_visits)

    async def get_survey_for_visit(self, service_visit_id: str) -> dict[str, Any] | None:
        return self.survey_for(service_visit_id)

    async def create_survey(self, service_visit_id: str) -> dict[str, Any]:
        if service_visit_id in self.fail_create_survey_for:
            raise RuntimeError("insert failed")
        survey = {
            "id": f"survey-{next(self._ids)}",
            "service_visit_id": service_visit_id,
            "conversation": None,
            "survey_completed": False,
        }
        self.surveys[survey["id"]] = survey
        return survey

    async def update_conversation(self, survey_id: str, conversation: list[dict[str, Any]]) -> dict[str, Any]:
        self.surveys[survey_id]["conversation"] = conversation
        return self.surveys[survey_id]

    async def save_survey_results(self, survey_id: str, result) -> dict[str, Any]:
        self.saved_results[survey_id] = result
        self.surveys[survey_id]["survey_completed"] = True
        return self.surveys[survey_id]

    async def insert_follow_up_item(self, survey_id: str, issue_type: str, description: str) -> dict[str, Any]:
        if issue_type in self.failing_issue_types:
            raise RuntimeError(f"insert failed for {issue_type}")
        item = {"survey_id": survey_id, "issue_type": issue_type, "issue_description": description}
        self.follow_up_items.append(item)
        return item

    async def insert_positive_remark(self, survey_id: str, employee: str, comment: str) -> dict[str, Any]:
        if self.fail_remarks:
            raise RuntimeError("insert failed for remark")
        remark = {"survey_id": survey_id, "employee_name": employee, "comment": comment}
        self.positive_remarks.append(remark)
        return remark

    async def log_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        row = {"id": f"msg-{next(self._ids)}", "retries_count": 0, **payload}
        self.messages.append(row)
        return row

    async def update_message_status(self, twilio_sid: str, status: str) -> dict[str, Any] | None:
        for row in self.messages:
            if row.get("twilio_sid") == twilio_sid:
                row["status"] = status
                return row
        return None

    async def set_message_status(self, message_id: str, status: str) -> dict[str, Any] | None:
        for row in self.messages:
            if row["id"] == message_id:
                row["status"] = status
                return row
        return None

    async def get_failed_messages(self, since, max_retries: int) -> list[dict[str, Any]]:
        rows = []
        for row in self.messages:
            if (
                row.get("message_type") == "outbound"
                and row.get("status") in ("failed", "undelivered")
                and row.get("retries_count", 0) < max_retries
            ):
                rows.append({**row, "service_visits": self.visits.get(row["service_visit_id"])})
        return rows

    async def get_latest_outbound_message(self, service_visit_id: str) -> dict[str, Any] | None:
        outbound = [
            row for row in self.messages
            if row.get("message_type") == "outbound" and row.get("service_visit_id") == service_visit_id
        ]
        return outbound[-1] if outbound else None

    def outbound_steps(self) -> list[str | None]:
        return [row.get("message_step") for row in self.messages if row.get("message_type") == "outbound"]


@pytest.fixture()
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture()
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def make_service(fake_store: FakeStore, fake_gateway: FakeGateway) -> Callable[[FakeLLM], SurveyService]:
    def _make(llm: FakeLLM) -> SurveyService:
        return SurveyService(
            store=fake_store,
            gateway=fake_gateway,
            engine=ConversationEngine(llm, dealership="Premium Motors"),
            locks=LocalVisitLocks(),
        )

    return _make


@pytest.fixture()
def survey_service(make_service, fake_llm: FakeLLM) -> SurveyService:
    return make_service(fake_llm)
