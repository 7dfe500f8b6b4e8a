import pytest
from fastapi.testclient import TestClient

from src.api_server import app
from src.db import get_db
from src.errors import StoreError
from src.services.survey_service import get_survey_service
from src.services.conversation_engine import SCRIPTED_QUESTIONS
from src.schemas.survey import ConversationPhase

pytestmark = pytest.mark.integration

PHONE = "+15550001111"


class DashboardDb:
    """Read side of the store as the dashboard routes see it."""

    def __init__(self):
        self.surveys = {
            "s1": {"id": "s1", "survey_completed": True, "callback_needed": True, "overall_satisfaction": 4},
            "s2": {"id": "s2", "survey_completed": False, "callback_needed": False, "overall_satisfaction": None},
        }
        self.items = {"f1": {"id": "f1", "survey_id": "s1", "issue_type": "billing_dispute", "status": "pending"}}
        self.list_filters = None
        self.broken = False

    async def list_surveys(self, **filters):
        if self.broken:
            raise StoreError("connection reset")
        self.list_filters = filters
        rows = list(self.surveys.values())
        if filters.get("callback_needed") is not None:
            rows = [r for r in rows if r["callback_needed"] == filters["callback_needed"]]
        return rows

    async def get_survey(self, survey_id):
        return self.surveys.get(survey_id)

    async def update_callback_status(self, survey_id, completed, notes):
        survey = self.surveys.get(survey_id)
        if survey is None:
            return None
        survey.update(callback_completed=completed, callback_notes=notes)
        return survey

    async def get_follow_up_items(self, survey_id):
        return [i for i in self.items.values() if i["survey_id"] == survey_id]

    async def update_follow_up_item(self, item_id, updates):
        item = self.items.get(item_id)
        if item is None:
            return None
        item.update(updates)
        return item

    async def get_survey_stats(self):
        return {"total_surveys": 2, "completed_surveys": 1, "callbacks_needed": 1}


@pytest.fixture()
def dashboard_db():
    return DashboardDb()


@pytest.fixture()
def client(survey_service, dashboard_db, monkeypatch):
    monkeypatch.setattr("src.api.webhooks.get_survey_service", lambda: survey_service)
    app.dependency_overrides[get_survey_service] = lambda: survey_service
    app.dependency_overrides[get_db] = lambda: dashboard_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# -- Webhooks --

def test_inbound_message_returns_empty_twiml_and_replies(client, fake_store, fake_gateway):
    fake_store.add_customer(PHONE)

    response = client.post(
        "/api/webhooks/twilio/message",
        data={"MessageSid": "SMin1", "From": PHONE, "Body": "9"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    assert "<Response></Response>" in response.text
    assert fake_gateway.sent == [(PHONE, SCRIPTED_QUESTIONS[ConversationPhase.OVERALL_SATISFACTION]["English"])]


def test_inbound_from_unknown_number_still_returns_twiml(client, fake_gateway):
    response = client.post(
        "/api/webhooks/twilio/message",
        data={"MessageSid": "SMin1", "From": "+15559999999", "Body": "who is this"},
    )

    assert response.status_code == 200
    assert "<Response></Response>" in response.text
    assert fake_gateway.sent == []


def test_inbound_without_body_is_accepted(client, fake_store):
    fake_store.add_customer(PHONE)

    response = client.post("/api/webhooks/twilio/message", data={"MessageSid": "SMin1", "From": PHONE})

    assert response.status_code == 200


def test_status_callback_updates_message(client, fake_store):
    fake_store.messages.append({"id": "m1", "twilio_sid": "SM42", "status": "sent", "message_type": "outbound"})

    response = client.post(
        "/api/webhooks/twilio/status",
        data={"MessageSid": "SM42", "MessageStatus": "delivered"},
    )

    assert response.status_code == 200
    assert response.text == "Status update received"
    assert fake_store.messages[0]["status"] == "delivered"


def test_webhooks_answer_even_when_service_cannot_be_built(client, monkeypatch):
    def misconfigured():
        raise ValueError("supabase_url is required")

    monkeypatch.setattr("src.api.webhooks.get_survey_service", misconfigured)

    inbound = client.post(
        "/api/webhooks/twilio/message",
        data={"MessageSid": "SMin1", "From": PHONE, "Body": "9"},
    )
    status = client.post(
        "/api/webhooks/twilio/status",
        data={"MessageSid": "SM42", "MessageStatus": "delivered"},
    )

    assert inbound.status_code == 200
    assert "<Response></Response>" in inbound.text
    assert status.status_code == 200


# -- Dashboard --

def test_list_surveys_with_filter(client, dashboard_db):
    response = client.get("/api/surveys/", params={"callback_needed": "true", "min_rating": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["data"][0]["id"] == "s1"
    assert dashboard_db.list_filters["min_rating"] == 3


def test_list_surveys_store_error_is_500(client, dashboard_db):
    dashboard_db.broken = True

    assert client.get("/api/surveys/").status_code == 500


def test_get_survey_and_missing_survey(client):
    assert client.get("/api/surveys/s1").json()["data"]["id"] == "s1"
    assert client.get("/api/surveys/nope").status_code == 404


def test_update_callback(client, dashboard_db):
    response = client.patch(
        "/api/surveys/s1/callback",
        json={"callback_completed": True, "callback_notes": "Refund issued"},
    )

    assert response.status_code == 200
    assert dashboard_db.surveys["s1"]["callback_completed"] is True
    assert dashboard_db.surveys["s1"]["callback_notes"] == "Refund issued"


def test_resolving_follow_up_item_sets_resolved_at(client, dashboard_db):
    response = client.patch(
        "/api/surveys/follow-up-items/f1",
        json={"status": "resolved", "assigned_to": "service-manager"},
    )

    assert response.status_code == 200
    item = dashboard_db.items["f1"]
    assert item["status"] == "resolved"
    assert item["resolved_at"] is not None


def test_follow_up_item_rejects_unknown_status(client):
    response = client.patch("/api/surveys/follow-up-items/f1", json={"status": "closed"})

    assert response.status_code == 422


def test_follow_up_items_for_survey(client):
    data = client.get("/api/surveys/s1/follow-up-items").json()["data"]

    assert [i["id"] for i in data] == ["f1"]


def test_survey_stats(client):
    assert client.get("/api/surveys/stats/summary").json()["data"]["total_surveys"] == 2


# -- Admin --

def test_admin_schedule_surveys(client, fake_store, fake_gateway):
    fake_store.due_visits = [{"id": "visit-9", "customers": {"id": "c9", "phone": PHONE}}]

    response = client.post("/api/admin/schedule-surveys")

    assert response.json()["data"] == {"due": 1, "sent": 1, "skipped": 0, "failed": 0}
    assert len(fake_gateway.sent) == 1


def test_admin_retry_failed(client):
    response = client.post("/api/admin/retry-failed", params={"max_retries": 2})

    assert response.json()["data"]["candidates"] == 0


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
    assert "X-Request-ID" in client.get("/health").headers


def test_dashboard_is_rate_limited_but_webhooks_are_not():
    from fastapi import FastAPI

    from src.api.middleware import RateLimitMiddleware

    limited = FastAPI()
    limited.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60)

    @limited.get("/api/surveys/")
    async def surveys():
        return {"data": []}

    @limited.post("/api/webhooks/twilio/status")
    async def status():
        return {}

    c = TestClient(limited)
    assert [c.get("/api/surveys/").status_code for _ in range(3)] == [200, 200, 429]
    assert all(c.post("/api/webhooks/twilio/status").status_code == 200 for _ in range(3))
