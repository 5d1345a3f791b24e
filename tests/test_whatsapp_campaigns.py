"""Tests for WhatsApp template broadcast campaigns."""
import time
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import Base, Permission, Role, User
from app.tourdesk.modules.whatsapp.campaigns import (
    body_params_from,
    create_campaign,
    extract_error_code,
    is_within_send_window,
    run_campaign,
    should_retry,
    validate_campaign_payload,
)
from app.tourdesk.modules.whatsapp.client import GraphApiError

ASHA = "+919876543210"
RAVI = "+919812345678"


class FakeGraphClient:
    phone_number_id = "PNID"
    business_account_id = "WABA"

    def __init__(self):
        self.sent = []
        self.fail_for = {}

    def send_message(self, payload):
        self.sent.append(payload)
        err = self.fail_for.get(payload["to"])
        if err is not None:
            raise err
        return {"messages": [{"id": f"wamid.out{len(self.sent)}"}]}

    def request_json(self, method, path, *, params=None, body=None, retries=3, auth=True):
        return {"data": []}


def _seed_all_permissions(s):
    perm_keys = [
        ("whatsapp.view", "WhatsApp: view chats"),
        ("whatsapp.send", "WhatsApp: send messages"),
        ("whatsapp.manage", "WhatsApp: manage"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app({"META_APP_SECRET": ""})
    app.extensions["whatsapp_client"] = FakeGraphClient()
    app.extensions["whatsapp_sleep"] = app.extensions.setdefault("test_sleeps", []).append
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = _seed_all_permissions(s)
        r = Role(key="admin", name="Administrator")
        for p in perms:
            r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([r, u])
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    return {"X-CSRF-Token": r.json["csrf_token"]}


def _create(client, headers, **overrides):
    body = {
        "name": "Goa summer offer",
        "templateName": "goa_offer",
        "templateVariables": {"1": "Guest", "2": "Goa"},
        "rateLimit": 30,
        "recipients": [
            {"phone": ASHA, "variables": {"1": "Asha"}},
            {"phoneNumber": "919812345678"},
            {"phone": ""},
            {"phone": ASHA},
        ],
    }
    body.update(overrides)
    r = client.post("/api/whatsapp/campaigns", json=body, headers=headers)
    assert r.status_code == 201
    return r.json["campaign"]


def _recipients(client, campaign_id):
    rows = client.get(f"/api/whatsapp/campaigns/{campaign_id}/recipients").json["recipients"]
    return {r["phone_number"]: r for r in rows}


def _status_webhook(wamid, status):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"phone_number_id": "PNID"},
        "statuses": [{"id": wamid, "status": status, "timestamp": str(int(time.time())), "recipient_id": ASHA[1:]}],
    }
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}]}


def _reply_webhook(wamid, text):
    value = {
        "metadata": {"phone_number_id": "PNID"},
        "messages": [
            {"from": ASHA[1:], "id": wamid, "timestamp": str(int(time.time())), "type": "text", "text": {"body": text}}
        ],
    }
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}]}


# ---------- Helpers ----------
def test_error_code_and_retry_rules():
    assert extract_error_code("(#131050) User has stopped marketing messages") == "131050"
    assert extract_error_code("Gateway timeout", 504) == "504"
    assert extract_error_code(None) is None
    assert should_retry(None) is True
    assert should_retry("131000") is True
    assert should_retry("131050") is False
    assert should_retry("100") is False


def test_send_window():
    assert is_within_send_window(None, 18, 3) is True
    assert is_within_send_window(9, 18, 9) is True
    assert is_within_send_window(9, 18, 18) is False
    assert is_within_send_window(21, 9, 23) is True
    assert is_within_send_window(21, 9, 3) is True
    assert is_within_send_window(21, 9, 12) is False


def test_body_params_from():
    assert body_params_from({"2": "b", "10": "c", "1": "a", "name": "x"}) == ["a", "b", "c"]


def test_validate_campaign_payload():
    assert validate_campaign_payload({}) == ["Campaign name is required", "Template name is required"]
    errors = validate_campaign_payload(
        {"name": "x", "templateName": "t", "rateLimit": 0, "sendWindowStart": 24, "recipients": "all"}
    )
    assert errors == [
        "Rate limit must be a positive number",
        "sendWindowStart must be an hour between 0 and 23",
        "Recipients must be a list",
    ]


# ---------- Routes ----------
def test_create_campaign_dedupes_recipients(client):
    h = _login(client)
    campaign = _create(client, h)
    assert campaign["status"] == "draft"
    assert campaign["total_recipients"] == 2
    assert campaign["rate_limit"] == 30

    scheduled = _create(client, h, name="Later", scheduledFor="2030-01-01T09:00:00Z", recipients=[])
    assert scheduled["status"] == "scheduled"
    assert scheduled["scheduled_for"] == "2030-01-01T09:00:00"

    assert client.post("/api/whatsapp/campaigns", json={"name": "x"}, headers=h).status_code == 400


def test_send_retries_then_completes(app, client):
    h = _login(client)
    fake = app.extensions["whatsapp_client"]
    fake.fail_for[RAVI] = GraphApiError("(#131000) Something went wrong", status=500, code=131000)
    campaign = _create(client, h)

    r = client.post(f"/api/whatsapp/campaigns/{campaign['id']}/send", headers=h)
    assert r.status_code == 200
    summary = r.json
    assert (summary["sent"], summary["retry"], summary["failed"]) == (1, 1, 0)
    assert summary["remaining"] == 1
    assert summary["status"] == "scheduled"
    assert app.extensions["test_sleeps"] == [2.0]

    first = fake.sent[0]
    assert first["to"] == ASHA
    assert first["template"]["components"] == [
        {"type": "body", "parameters": [{"type": "text", "text": "Asha"}, {"type": "text", "text": "Goa"}]}
    ]

    ravi = _recipients(client, campaign["id"])[RAVI]
    assert ravi["status"] == "retry"
    assert ravi["retry_count"] == 1
    assert ravi["error_code"] == "131000"

    fake.fail_for.clear()
    r = client.post(f"/api/whatsapp/campaigns/{campaign['id']}/send", headers=h)
    assert r.json["sent"] == 1
    assert r.json["status"] == "completed"
    assert r.json["campaign"]["sent_count"] == 2
    assert app.extensions["test_sleeps"] == [2.0]

    r = client.post(f"/api/whatsapp/campaigns/{campaign['id']}/send", headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Campaign cannot be sent in current status"


def test_opted_out_recipient_is_not_retried(app, client):
    h = _login(client)
    app.extensions["whatsapp_client"].fail_for[ASHA] = GraphApiError(
        "(#131050) User has stopped marketing messages", status=400, code=131050
    )
    campaign = _create(client, h, recipients=[{"phone": ASHA}])
    r = client.post(f"/api/whatsapp/campaigns/{campaign['id']}/send", headers=h)
    assert r.json["failed"] == 1
    assert r.json["status"] == "completed"
    assert r.json["campaign"]["failed_count"] == 1
    assert _recipients(client, campaign["id"])[ASHA]["status"] == "opted_out"


def test_receipts_and_replies_update_recipients(client):
    h = _login(client)
    campaign = _create(client, h)
    client.post(f"/api/whatsapp/campaigns/{campaign['id']}/send", headers=h)
    wamid = _recipients(client, campaign["id"])[ASHA]["message_id"]

    client.post("/api/whatsapp/webhook", json=_status_webhook(wamid, "read"))
    client.post("/api/whatsapp/webhook", json=_status_webhook(wamid, "delivered"))
    asha = _recipients(client, campaign["id"])[ASHA]
    assert asha["status"] == "read"
    assert asha["delivered_at"] is not None

    client.post("/api/whatsapp/webhook", json=_reply_webhook("wamid.reply1", "Interested!"))

    detail = client.get(f"/api/whatsapp/campaigns/{campaign['id']}").json
    c = detail["campaign"]
    assert (c["sent_count"], c["delivered_count"], c["read_count"], c["responded_count"]) == (2, 1, 1, 1)
    stats = detail["stats"]
    assert stats["byStatus"]["responded"] == 1
    assert stats["byStatus"]["sent"] == 1
    assert stats["deliveryRate"] == 50.0
    assert stats["responseRate"] == 50.0


def test_redelivered_reply_is_credited_once(client):
    h = _login(client)
    first = _create(client, h, name="Goa summer offer")
    second = _create(client, h, name="Kerala monsoon offer")
    client.post(f"/api/whatsapp/campaigns/{first['id']}/send", headers=h)
    client.post(f"/api/whatsapp/campaigns/{second['id']}/send", headers=h)

    reply = _reply_webhook("wamid.reply1", "Interested!")
    assert client.post("/api/whatsapp/webhook", json=reply).status_code == 200
    assert client.post("/api/whatsapp/webhook", json=reply).status_code == 200

    responded = [
        client.get(f"/api/whatsapp/campaigns/{c['id']}").json["campaign"]["responded_count"] for c in (first, second)
    ]
    assert sum(responded) == 1
    statuses = [_recipients(client, c["id"])[ASHA]["status"] for c in (first, second)]
    assert statuses.count("responded") == 1


def test_status_changes_and_delete(client):
    h = _login(client)
    campaign = _create(client, h)
    cid = campaign["id"]

    r = client.patch(f"/api/whatsapp/campaigns/{cid}", json={"status": "bogus"}, headers=h)
    assert r.status_code == 400
    r = client.patch(f"/api/whatsapp/campaigns/{cid}", json={"name": "Goa monsoon offer", "rateLimit": 5}, headers=h)
    assert r.json["campaign"]["name"] == "Goa monsoon offer"
    assert r.json["campaign"]["rate_limit"] == 5

    r = client.post(f"/api/whatsapp/campaigns/{cid}/recipients", json={"recipients": [{"phone": "+447700900123"}]}, headers=h)
    assert r.json == {"success": True, "added": 1, "totalRecipients": 3}
    assert client.post(f"/api/whatsapp/campaigns/{cid}/recipients", json={}, headers=h).status_code == 400

    client.patch(f"/api/whatsapp/campaigns/{cid}", json={"status": "sending"}, headers=h)
    r = client.patch(f"/api/whatsapp/campaigns/{cid}", json={"name": "Nope"}, headers=h)
    assert r.status_code == 400
    r = client.post(f"/api/whatsapp/campaigns/{cid}/recipients", json={"recipients": [{"phone": "+15550100"}]}, headers=h)
    assert r.status_code == 400

    r = client.delete(f"/api/whatsapp/campaigns/{cid}", headers=h)
    assert r.json["message"] == "Campaign cancelled"
    assert client.get(f"/api/whatsapp/campaigns/{cid}").json["campaign"]["status"] == "cancelled"

    other = _create(client, h, name="Draft")
    assert client.delete(f"/api/whatsapp/campaigns/{other['id']}", headers=h).json["message"] == "Campaign deleted"
    assert client.get(f"/api/whatsapp/campaigns/{other['id']}").status_code == 404


def test_recipient_listing(client):
    h = _login(client)
    campaign = _create(client, h)
    page = client.get(f"/api/whatsapp/campaigns/{campaign['id']}/recipients?limit=1&status=pending").json
    assert page["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}
    rid = page["recipients"][0]["id"]
    assert client.get(f"/api/whatsapp/campaigns/{campaign['id']}/recipients/{rid}").json["id"] == rid
    assert client.get(f"/api/whatsapp/campaigns/{campaign['id']}/recipients/999").status_code == 404


def test_run_campaign_pauses_outside_send_window(app):
    fake = FakeGraphClient()
    sleeps = []
    with session_scope(app) as s:
        c = create_campaign(
            s,
            {"name": "Night owls", "templateName": "goa_offer", "sendWindowStart": 9, "sendWindowEnd": 18, "recipients": [{"phone": ASHA}]},
            None,
        )
        summary = run_campaign(s, c, fake, sleep=sleeps.append, now=lambda: datetime(2025, 5, 1, 22, 0))
        assert summary["status"] == "paused"
        assert summary["processed"] == 0
        assert summary["remaining"] == 1
        assert fake.sent == []
        assert sleeps == []
