"""Tests for WhatsApp sends, the webhook and the chat view."""
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import Base, Permission, Role, User
from app.tourdesk.modules.whatsapp.chat import (
    build_chat_message,
    extract_placeholders,
    format_contact_label,
    message_text,
    normalize_contact_address,
    preview_label,
    substitute_template,
)
from app.tourdesk.modules.whatsapp.client import (
    GraphApiError,
    GraphApiNotConfigured,
    MetaGraphClient,
    error_from_response,
    get_meta_config_status,
    message_id_from,
)
from app.tourdesk.modules.whatsapp.models import WhatsAppMessage
from app.tourdesk.modules.whatsapp.phone import (
    normalize_e164,
    normalize_whatsapp_phone,
    phone_variants,
    strip_whatsapp_prefix,
)
from app.tourdesk.modules.whatsapp.service import check_messaging_window, record_inbound_message
from app.tourdesk.modules.whatsapp.webhook import parse_inbound

CUSTOMER = "919876543210"


class FakeGraphClient:
    phone_number_id = "PNID"
    business_account_id = "WABA"

    def __init__(self):
        self.sent = []
        self.fail = None

    def send_message(self, payload):
        self.sent.append(payload)
        if self.fail is not None:
            raise self.fail
        return {"messaging_product": "whatsapp", "messages": [{"id": f"wamid.out{len(self.sent)}"}]}

    def request_json(self, method, path, *, params=None, body=None, retries=3, auth=True):
        return {"data": [], "paging": {}}


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

    app = create_app({"META_APP_SECRET": "", "META_WEBHOOK_VERIFY_TOKEN": "verify-me"})
    app.extensions["whatsapp_client"] = FakeGraphClient()
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


def _webhook(messages=None, statuses=None, contacts=None):
    value = {"messaging_product": "whatsapp", "metadata": {"display_phone_number": "15550000000", "phone_number_id": "PNID"}}
    if messages is not None:
        value["messages"] = messages
        value["contacts"] = contacts or []
    if statuses is not None:
        value["statuses"] = statuses
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}]}


def _text_message(wamid, body, ts=None):
    return {"from": CUSTOMER, "id": wamid, "timestamp": str(ts or int(time.time())), "type": "text", "text": {"body": body}}


# ---------- Phone ----------
def test_phone_normalization():
    assert normalize_e164("0091 98765 43210") == "+919876543210"
    assert normalize_e164("+1 (555) 010-9999") == "+15550109999"
    assert normalize_e164("abc") == "abc"
    assert normalize_whatsapp_phone("09876543210") == "+919876543210"
    assert normalize_whatsapp_phone("9876543210") == "+919876543210"
    assert normalize_whatsapp_phone("447700900123") == "+447700900123"
    with pytest.raises(ValueError):
        normalize_whatsapp_phone("   ")
    assert strip_whatsapp_prefix("whatsapp:+919876543210") == "+919876543210"
    assert phone_variants("919876543210") == [
        "whatsapp:+919876543210",
        "whatsapp:919876543210",
        "+919876543210",
        "919876543210",
    ]


# ---------- Graph client helpers ----------
def test_error_from_response_prefers_graph_message():
    err = error_from_response(400, {"error": {"message": "(#131047) Re-engagement message", "code": "131047"}})
    assert err.message == "(#131047) Re-engagement message"
    assert err.code == 131047
    assert err.status == 400

    fallback = error_from_response(500, {"error": {"error_data": {"details": "Upstream down"}}})
    assert fallback.message == "Upstream down"
    assert error_from_response(502, "not json").message == "Meta API request failed (502)"


def test_message_id_from():
    assert message_id_from({"messages": [{"id": "wamid.1"}]}) == "wamid.1"
    assert message_id_from({"id": "123"}) == "123"
    assert message_id_from({}) is None


def test_unconfigured_client_refuses_to_send():
    client = MetaGraphClient(access_token="", phone_number_id="")
    with pytest.raises(GraphApiNotConfigured):
        client.send_message({"to": "+919876543210"})
    assert MetaGraphClient(access_token="t", phone_number_id="1")._url("1/messages", {"a": 1, "b": None}) == (
        "https://graph.facebook.com/v22.0/1/messages?a=1"
    )


def test_config_status():
    status = get_meta_config_status({"META_WHATSAPP_PHONE_NUMBER_ID": "1", "META_WHATSAPP_ACCESS_TOKEN": "t"})
    assert status["isFullyConfigured"] is True
    assert status["hasProductionAuth"] is False
    assert status["apiVersion"] == "v22.0"


# ---------- Messaging window ----------
def test_messaging_window(app):
    with session_scope(app) as s:
        assert check_messaging_window(s, CUSTOMER)["canMessage"] is False
        received = datetime(2025, 5, 1, 10, 0, 0)
        record_inbound_message(
            s, from_phone=CUSTOMER, to_phone_number_id="PNID", wamid="wamid.in1", body="Hi",
            whatsapp_type="text", received_at=received,
        )
        inside = check_messaging_window(s, "+919876543210", now=received + timedelta(hours=6))
        assert inside["canMessage"] is True
        assert inside["hoursRemaining"] == 18.0
        outside = check_messaging_window(s, CUSTOMER, now=received + timedelta(hours=25))
        assert outside == {"canMessage": False, "hoursRemaining": 0, "lastInboundAt": "2025-05-01T10:00:00"}


def test_send_requires_open_window(app, client):
    h = _login(client)
    r = client.post("/api/whatsapp/send", json={"to": "+919876543210", "message": "Hello"}, headers=h)
    assert r.status_code == 403
    assert r.json["requiresTemplate"] is True
    assert app.extensions["whatsapp_client"].sent == []


def test_send_after_inbound_message(app, client):
    h = _login(client)
    client.post("/api/whatsapp/webhook", json=_webhook(messages=[_text_message("wamid.in1", "Hi")]))

    r = client.post("/api/whatsapp/send", json={"to": "+919876543210", "message": "Hello Asha"}, headers=h)
    assert r.status_code == 200
    assert r.json["messageId"] == "wamid.out1"
    sent = app.extensions["whatsapp_client"].sent[0]
    assert sent["to"] == "+919876543210"
    assert sent["type"] == "text"
    assert sent["text"]["body"] == "Hello Asha"

    msgs = client.get(f"/api/whatsapp/messages?phone={CUSTOMER}").json
    assert msgs["count"] == 2
    outbound = msgs["messages"][0]
    assert outbound["direction"] == "outbound"
    assert outbound["status"] == "sent"
    assert outbound["to"] == "whatsapp:+919876543210"


def test_send_failure_reengagement(app, client):
    h = _login(client)
    app.extensions["whatsapp_client"].fail = GraphApiError("(#131047) Re-engagement message", status=400, code=131047)
    r = client.post("/api/whatsapp/send", json={"to": CUSTOMER, "message": "Hello", "checkWindow": False}, headers=h)
    assert r.status_code == 403
    assert r.json["errorCode"] == 131047

    with session_scope(app) as s:
        msg = s.query(WhatsAppMessage).one()
        assert msg.status == "failed"
        assert msg.error_code == "131047"


def test_send_template_message(app, client):
    h = _login(client)
    r = client.post(
        "/api/whatsapp/template",
        json={
            "to": CUSTOMER,
            "templateName": "welcome",
            "variables": {"2": "Goa", "1": "Asha"},
            "headerImage": "https://cdn.example.com/goa.jpg",
        },
        headers=h,
    )
    assert r.status_code == 200
    sent = app.extensions["whatsapp_client"].sent[0]
    assert sent["template"]["name"] == "welcome"
    assert sent["template"]["components"] == [
        {"type": "header", "parameters": [{"type": "image", "image": {"link": "https://cdn.example.com/goa.jpg"}}]},
        {"type": "body", "parameters": [{"type": "text", "text": "Asha"}, {"type": "text", "text": "Goa"}]},
    ]
    stored = client.get("/api/whatsapp/messages").json["messages"][0]
    assert stored["message"] == "Template welcome :: Asha | Goa"
    assert stored["metadata"]["variables"] == {"1": "Asha", "2": "Goa"}


# ---------- Webhook ----------
def test_webhook_verification(client):
    r = client.get("/api/whatsapp/webhook?hub.mode=subscribe&hub.verify_token=verify-me&hub.challenge=12345")
    assert r.status_code == 200
    assert r.data == b"12345"
    r = client.get("/api/whatsapp/webhook?hub.mode=subscribe&hub.verify_token=wrong&hub.challenge=12345")
    assert r.status_code == 403


def test_webhook_signature(app, client):
    app.config["META_APP_SECRET"] = "shh"
    body = json.dumps(_webhook(messages=[_text_message("wamid.in1", "Hi")])).encode()

    r = client.post("/api/whatsapp/webhook", data=body, content_type="application/json", headers={"X-Hub-Signature-256": "sha256=bad"})
    assert r.status_code == 401

    sig = hmac.new(b"shh", body, hashlib.sha256).hexdigest()
    r = client.post("/api/whatsapp/webhook", data=body, content_type="application/json", headers={"X-Hub-Signature-256": f"sha256={sig}"})
    assert r.status_code == 200
    assert r.json == {"ok": True, "messages": 1, "statuses": 0}


def test_webhook_inbound_is_idempotent_and_statuses_apply(app, client):
    h = _login(client)
    payload = _webhook(
        messages=[_text_message("wamid.in1", "Is the Goa package available?")],
        contacts=[{"profile": {"name": "Asha"}, "wa_id": CUSTOMER}],
    )
    client.post("/api/whatsapp/webhook", json=payload)
    client.post("/api/whatsapp/webhook", json=payload)

    client.post("/api/whatsapp/send", json={"to": CUSTOMER, "message": "Yes it is"}, headers=h)
    now = int(time.time())
    r = client.post(
        "/api/whatsapp/webhook",
        json=_webhook(statuses=[{"id": "wamid.out1", "status": "delivered", "timestamp": str(now), "recipient_id": CUSTOMER}]),
    )
    assert r.json["statuses"] == 1

    with session_scope(app) as s:
        inbound = s.query(WhatsAppMessage).filter(WhatsAppMessage.direction == "inbound").all()
        assert len(inbound) == 1
        assert inbound[0].meta["contactName"] == "Asha"
        outbound = s.query(WhatsAppMessage).filter(WhatsAppMessage.message_id == "wamid.out1").one()
        assert outbound.status == "delivered"
        assert outbound.delivered_at is not None

    chat = client.get("/api/whatsapp/chat").json
    contact = chat["contacts"][0]
    assert contact["phone"] == "+919876543210"
    assert contact["name"] == "Asha"
    assert contact["category"] == "two_way"
    assert contact["messageCount"] == 2
    convo = chat["conversations"]["+919876543210"]
    assert [m["direction"] for m in convo] == ["in", "out"]
    assert convo[1]["status"] == 2
    assert chat["stats"] == {"contacts": 1, "twoWay": 1, "templateOnly": 0}


def test_webhook_failed_status_records_error(app, client):
    h = _login(client)
    client.post("/api/whatsapp/send", json={"to": CUSTOMER, "message": "Hi", "checkWindow": False}, headers=h)
    client.post(
        "/api/whatsapp/webhook",
        json=_webhook(statuses=[{"id": "wamid.out1", "status": "failed", "timestamp": "1700000000", "errors": [{"code": 131026, "title": "Message undeliverable"}]}]),
    )
    with session_scope(app) as s:
        msg = s.query(WhatsAppMessage).one()
        assert msg.status == "failed"
        assert msg.error_code == "131026"
        assert msg.error_message == "Message undeliverable"


def test_late_delivered_receipt_does_not_downgrade_read(app, client):
    h = _login(client)
    client.post("/api/whatsapp/send", json={"to": CUSTOMER, "message": "Hi", "checkWindow": False}, headers=h)
    for status in ("read", "delivered", "sent"):
        client.post(
            "/api/whatsapp/webhook",
            json=_webhook(statuses=[{"id": "wamid.out1", "status": status, "timestamp": "1700000000", "recipient_id": CUSTOMER}]),
        )
    with session_scope(app) as s:
        msg = s.query(WhatsAppMessage).one()
        assert msg.status == "read"
        assert msg.read_at is not None
        assert msg.delivered_at is not None

    convo = client.get("/api/whatsapp/chat").json["conversations"]["+919876543210"]
    assert convo[0]["status"] == 3


def test_parse_inbound_types():
    body, wtype, meta = parse_inbound(
        {"from": CUSTOMER, "type": "interactive", "interactive": {"type": "button_reply", "button_reply": {"id": "b1", "title": "Book now"}}}
    )
    assert (body, wtype) == ("Book now", "interactive")
    assert meta["interactive"]["buttonReply"] == {"id": "b1", "title": "Book now"}

    body, wtype, meta = parse_inbound({"from": CUSTOMER, "type": "image", "image": {"id": "m1", "mime_type": "image/jpeg", "caption": "My passport"}})
    assert (body, wtype) == ("My passport", "image")
    assert meta["media"]["mimeType"] == "image/jpeg"

    body, wtype, meta = parse_inbound({"from": CUSTOMER, "type": "location", "location": {"latitude": 15.5, "longitude": 73.8, "name": "Baga Beach"}})
    assert (body, wtype) == ("Baga Beach", "location")

    body, wtype, meta = parse_inbound({"from": CUSTOMER, "type": "ephemeral"})
    assert (body, wtype) == ("", "ephemeral")
    assert meta["rawMessage"]["type"] == "ephemeral"


# ---------- Chat helpers ----------
def test_contact_address_helpers():
    assert normalize_contact_address("whatsapp:0091 98765 43210") == "+919876543210"
    assert normalize_contact_address("whatsapp:business") is None
    assert normalize_contact_address(None) is None
    assert format_contact_label(None) == "Unknown contact"


def test_template_text_helpers():
    assert substitute_template("Hi {{1}}, welcome to {{ 2 }}", {"1": "Asha"}) == "Hi Asha, welcome to {{2}}"
    assert extract_placeholders("{{1}} {{name}} {{1}}") == ["1", "name"]


def test_message_text_and_preview_labels():
    assert message_text(None, {"whatsappType": "location", "location": {"name": "Taj"}}) == "📍 Taj"
    assert message_text("", {"whatsappType": "document", "media": {"filename": "itinerary.pdf"}}) == "itinerary.pdf"
    assert message_text(None, {}) == "[No content]"
    assert preview_label(None) == "Start a conversation"
    assert preview_label({"text": "x", "metadata": {"templateName": "welcome"}}) == "Template • welcome"
    assert preview_label({"text": "x", "metadata": {"whatsappType": "image"}}) == "Media • Image"
    catalog = {"whatsappType": "interactive", "catalog": {"type": "product_list", "productIds": ["a", "b"]}}
    assert preview_label({"text": "", "metadata": catalog}) == "Catalog • 2 items"


def test_legacy_template_placeholder_is_resolved():
    m = WhatsAppMessage(
        id=1, body="[template:123]", direction="outbound", status="read", meta={}, created_at=datetime(2025, 5, 1, 9, 0)
    )
    templates = [{"id": "123", "name": "welcome", "components": [{"type": "BODY", "text": "Hello from TourDesk"}]}]
    built = build_chat_message(m, templates)
    assert built["text"] == "Hello from TourDesk"
    assert built["status"] == 3
    assert built["metadata"]["templateName"] == "welcome"

    unknown = build_chat_message(m, [])
    assert unknown["text"] == "Template: 123"
