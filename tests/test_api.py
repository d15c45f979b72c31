"""Tests for the HTTP surface using FastAPI's TestClient."""

import json
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeCardClient, FakeErpClient, card_record
from expense_ledger_sync.api import create_app
from expense_ledger_sync.notify import SlackNotifier
from expense_ledger_sync.pipeline import SyncService
from expense_ledger_sync.utils.exceptions import SourceAPIError

AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def card_client():
    return FakeCardClient(records=[card_record("1"), card_record("2")])


@pytest.fixture
def erp_client():
    return FakeErpClient()


@pytest.fixture
def client(config, store, card_client, erp_client):
    config.api.cron_secret = "s3cret"

    def service_factory():
        return SyncService(
            config,
            store,
            card_client=card_client,
            erp_client=erp_client,
            today=lambda: date(2026, 1, 15),
        )

    return TestClient(create_app(config, service_factory))


def test_health_is_unguarded(client):
    assert client.get("/healthz").json() == {"status": "ok"}


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}])
def test_rejects_bad_secret(client, store, headers):
    response = client.get("/api/cron/sync-credit-cards", headers=headers)

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized"}
    assert store.runs == {}


def test_cron_card_sync_uses_cron_window(client, card_client):
    response = client.get("/api/cron/sync-credit-cards", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["created"] == 2
    assert body["status"] == "success"
    assert "message" in body
    assert card_client.fetch_calls[0]["days_back"] == 8


def test_manual_card_sync_with_body(client, card_client):
    response = client.post(
        "/api/sync/credit-cards",
        json={"daysBack": 30, "includeIncomplete": False},
        headers=AUTH,
    )

    assert response.status_code == 200
    assert card_client.fetch_calls[0] == {
        "days_back": 30,
        "include_incomplete": False,
        "historical": False,
    }


def test_historical_card_sync(client, card_client):
    response = client.post("/api/sync/credit-cards/historical", headers=AUTH)

    assert response.status_code == 200
    assert card_client.fetch_calls[0]["historical"] is True
    assert card_client.fetch_calls[0]["days_back"] == 106


def test_bill_sync_from_date(client, erp_client):
    response = client.post("/api/sync/bills", json={"fromDate": "2026-01-10"}, headers=AUTH)

    assert response.status_code == 200
    assert erp_client.from_dates == [date(2026, 1, 10)]


def test_aborted_sync_returns_run(client, card_client, store):
    card_client.fetch_error = SourceAPIError("Bill.com", 503, "unavailable")

    response = client.post("/api/sync/credit-cards", headers=AUTH)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["status"] == "failed"
    assert body["runId"] == 1
    assert "Bill.com API Error: 503 - unavailable" in body["error"]
    assert store.rows == {}


def test_last_sync(client):
    assert client.get("/api/sync/last-sync", headers=AUTH).json() == {
        "success": True,
        "lastSyncTime": None,
    }

    client.get("/api/cron/sync-credit-cards", headers=AUTH)

    assert client.get("/api/sync/last-sync", headers=AUTH).json()["lastSyncTime"] is not None


def test_flag_and_approval(client, store):
    client.get("/api/cron/sync-credit-cards", headers=AUTH)

    response = client.patch(
        "/api/expenses/flag",
        json={"expenseId": "BILL-1", "flagCategory": "Duplicate"},
        headers=AUTH,
    )
    assert response.status_code == 200
    assert response.json()["data"]["flag_category"] == "Duplicate"

    response = client.patch(
        "/api/expenses/approval",
        json={"expenseId": "BILL-1", "approvalStatus": "approved", "modifiedBy": "ops@example.com"},
        headers=AUTH,
    )
    assert response.status_code == 200
    assert store.rows["BILL-1"]["approval_status"] == "approved"
    assert store.rows["BILL-1"]["approval_modified_by"] == "ops@example.com"


def test_invalid_flag_is_400(client):
    response = client.patch(
        "/api/expenses/flag",
        json={"expenseId": "BILL-1", "flagCategory": "Whatever"},
        headers=AUTH,
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_record_is_500(client):
    response = client.patch(
        "/api/expenses/flag",
        json={"expenseId": "BILL-404", "flagCategory": None},
        headers=AUTH,
    )

    assert response.status_code == 500
    assert "Record not found" in response.json()["error"]


class SlackStub:
    """Answers chat.postMessage and records each message payload."""

    def __init__(self):
        self.messages = []
        self.reply = {"ok": True, "ts": "1700000000.0001"}

    def __call__(self, request):
        message = json.loads(request.content)
        self.messages.append(message)
        return httpx.Response(200, json={"channel": message.get("channel"), **self.reply})


@pytest.fixture
def slack():
    return SlackStub()


@pytest.fixture
def notify_client(config, store, slack):
    config.api.cron_secret = "s3cret"
    config.slack.api_token = "xoxb-1"
    config.slack.department_channels = {"Tucson": {"Irrigation": "C-TUC-IRR"}}

    def notifier_factory():
        return SlackNotifier(config.slack, client=httpx.Client(transport=httpx.MockTransport(slack)))

    return TestClient(
        create_app(config, lambda: SyncService(config, store), notifier_factory=notifier_factory)
    )


CORRECTION = {
    "expenseId": "BILL-9",
    "slackId": "U123",
    "purchaserName": "Dana",
    "vendor": "Home Depot",
    "amount": 84.2,
    "date": "2026-01-05",
    "incorrectCategory": "Fuel",
    "correctCategory": "Repairs",
}

DEPARTMENT_SUMMARY = {
    "branch": "Tucson",
    "department": "Irrigation",
    "month": "2026-01",
    "totalAmount": 12345.6,
    "totalCount": 42,
    "unapprovedAmount": 1500.0,
    "unapprovedCount": 3,
}


def test_notify_correction(notify_client, slack):
    response = notify_client.post("/api/notify/slack", json=CORRECTION, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "channel": "U123",
        "messageId": "1700000000.0001",
        "error": None,
    }
    assert slack.messages[0]["channel"] == "U123"
    assert slack.messages[0]["text"] == "Expense correction needed for Home Depot"


def test_notify_correction_requires_secret(notify_client, slack):
    response = notify_client.post("/api/notify/slack", json=CORRECTION)

    assert response.status_code == 401
    assert slack.messages == []


def test_notify_correction_without_changes_is_400(notify_client, slack):
    body = dict(CORRECTION, incorrectCategory="Repairs")

    response = notify_client.post("/api/notify/slack", json=body, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No changes to notify about"}
    assert slack.messages == []


def test_notify_correction_slack_failure_is_500(notify_client, slack):
    slack.reply = {"ok": False, "error": "user_not_found"}

    response = notify_client.post("/api/notify/slack", json=CORRECTION, headers=AUTH)

    assert response.status_code == 500
    assert response.json()["error"] == "Slack API error: user_not_found"


def test_notify_department_summary(notify_client, slack):
    response = notify_client.post(
        "/api/notify/slack-department-summary", json=DEPARTMENT_SUMMARY, headers=AUTH
    )

    assert response.status_code == 200
    assert response.json()["channel"] == "C-TUC-IRR"
    assert slack.messages[0]["text"] == "Expense Summary for Tucson - Irrigation (January 2026)"


def test_notify_department_summary_unknown_channel_is_404(notify_client, slack):
    body = dict(DEPARTMENT_SUMMARY, branch="Flagstaff")

    response = notify_client.post("/api/notify/slack-department-summary", json=body, headers=AUTH)

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "No Slack channel configured for Irrigation in Flagstaff",
    }
    assert slack.messages == []


def test_notify_department_summary_missing_fields_is_rejected(notify_client, slack):
    response = notify_client.post(
        "/api/notify/slack-department-summary", json={"branch": "Tucson"}, headers=AUTH
    )

    assert response.status_code == 422
    assert slack.messages == []
