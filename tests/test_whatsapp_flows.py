"""Tests for WhatsApp Flows management and prebuilt flow JSON."""
import json
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import Base, Permission, Role, User
from app.tourdesk.modules.whatsapp.client import GraphApiError
from app.tourdesk.modules.whatsapp.flows import (
    FlowError,
    build_appointment_flow,
    build_flow_from_template,
    build_lead_generation_flow,
    build_survey_flow,
    validate_flow_json,
)

LEAD_FLOW = {"id": "F1", "name": "goa_leads", "status": "DRAFT", "categories": ["LEAD_GENERATION"]}
FLOW_JSON = {"version": "7.3", "screens": [{"id": "S", "layout": {"type": "SingleColumnLayout", "children": [{"type": "Footer"}]}}]}


class FakeGraphClient:
    phone_number_id = "PNID"
    business_account_id = "WABA"

    def __init__(self):
        self.calls = []
        self.uploads = []
        self.fail = None
        self.assets = [{"name": "flow.json", "asset_type": "FLOW_JSON", "asset_content": json.dumps(FLOW_JSON)}]
        self.upload_errors = []
        self.publish_errors = []

    def request_json(self, method, path, *, params=None, body=None, retries=3, auth=True):
        self.calls.append((method, path, params, body))
        if self.fail is not None:
            raise self.fail
        if path == "WABA/flows":
            return {"data": [LEAD_FLOW]} if method == "GET" else {"id": "F9"}
        if path.endswith("/assets"):
            return {"data": self.assets}
        if path.endswith("/publish"):
            return {"success": not self.publish_errors, "validation_errors": self.publish_errors}
        if method == "GET":
            if (params or {}).get("fields") == "preview":
                return {"id": path} if path == "F2" else {"id": path, "preview": {"preview_url": "https://p/x", "expires_at": "t"}}
            return {**LEAD_FLOW, "id": path}
        return {"success": True}

    def upload_file(self, path, *, filename, content, content_type="application/octet-stream", fields=None):
        self.uploads.append((path, filename, json.loads(content), fields))
        return {"success": True, "validation_errors": self.upload_errors}

    def download(self, url):
        return json.dumps({**FLOW_JSON, "version": "7.1"}).encode("utf-8")


def _seed_all_permissions(s):
    perms = []
    for key, name in (("whatsapp.view", "WhatsApp: view chats"), ("whatsapp.manage", "WhatsApp: manage")):
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

    app = create_app()
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


# ---------- Flow JSON ----------
def test_validate_flow_json():
    assert validate_flow_json(FLOW_JSON) == []
    assert validate_flow_json({}) == ["Flow version is required", "Flow must have at least one screen"]
    assert validate_flow_json({"version": "7.3", "screens": [{"layout": {"type": "Other"}}]}) == [
        "Screen 0 missing id",
        "Screen None must have SingleColumnLayout",
        "Screen None must have components",
    ]


def test_lead_generation_flow_fields():
    flow = build_lead_generation_flow(
        collect_phone=False,
        collect_company=True,
        custom_fields=[{"name": "destination", "label": "Destination", "type": "dropdown", "options": ["Goa", "Kerala"]}],
    )
    form = flow["screens"][0]["layout"]["children"][0]
    assert [c.get("name") for c in form["children"]] == ["full_name", "email", "company", "destination", None]
    assert form["children"][3]["data-source"] == [{"id": "0", "title": "Goa"}, {"id": "1", "title": "Kerala"}]
    assert form["children"][-1]["on-click-action"] == {"name": "complete", "payload": {"screen": "LEAD_FORM"}}
    assert validate_flow_json(flow) == []


def test_survey_and_appointment_flows():
    survey = build_survey_flow(
        [
            {"id": "stay", "question": "Rate your stay", "type": "rating"},
            {"id": "again", "question": "Travel with us again?", "type": "yes_no", "required": False},
            {"id": "notes", "question": "Anything else?", "type": "text"},
        ]
    )
    children = survey["screens"][0]["layout"]["children"]
    assert children[0]["data-source"][4] == {"id": "5", "title": "⭐⭐⭐⭐⭐"}
    assert children[1]["required"] is False
    assert children[2] == {"type": "TextArea", "name": "notes", "label": "Anything else?", "required": True}

    appt = build_appointment_flow([{"id": "sight", "title": "Sightseeing"}], today=date(2025, 5, 1))
    assert [s["id"] for s in appt["screens"]] == ["SERVICE_SELECTION", "DATE_TIME_SELECTION"]
    picker = appt["screens"][1]["layout"]["children"][0]
    assert picker["min-date"] == "2025-05-01"
    assert appt["screens"][0]["layout"]["children"][0]["data-source"] == [{"id": "sight", "title": "Sightseeing"}]


def test_build_flow_from_template_errors():
    with pytest.raises(FlowError, match="Fields array is required"):
        build_flow_from_template("signup", {})
    with pytest.raises(FlowError, match="Unknown template type"):
        build_flow_from_template("quiz", {})
    flow, category = build_flow_from_template("signup", {"fields": [{"name": "email", "label": "Email", "helperText": "Work email"}]})
    assert category == "SIGN_UP"
    field = flow["screens"][0]["layout"]["children"][0]["children"][0]
    assert field == {"type": "TextInput", "name": "email", "label": "Email", "required": False, "helper-text": "Work email"}


# ---------- Routes ----------
def test_list_and_get_flows(client):
    _login(client)
    r = client.get("/api/whatsapp/flows")
    assert r.json == {"success": True, "data": [LEAD_FLOW], "count": 1}
    assert client.get("/api/whatsapp/flows?action=get&id=F1").json["data"]["name"] == "goa_leads"
    assert client.get("/api/whatsapp/flows?action=json&id=F1").json["data"] == FLOW_JSON
    assert client.get("/api/whatsapp/flows?action=preview&id=F1").json["data"]["preview_url"] == "https://p/x"

    r = client.get("/api/whatsapp/flows?action=preview&id=F2")
    assert r.status_code == 404
    assert r.json["error"] == "Flow preview not available. Publish the flow first."
    assert client.get("/api/whatsapp/flows?action=get").status_code == 400
    assert client.get("/api/whatsapp/flows?action=bogus&id=F1").status_code == 400


def test_flow_json_from_download_url(app, client):
    _login(client)
    app.extensions["whatsapp_client"].assets = [{"asset_type": "FLOW_JSON", "download_url": "https://cdn/flow.json"}]
    assert client.get("/api/whatsapp/flows?action=json&id=F1").json["data"]["version"] == "7.1"

    app.extensions["whatsapp_client"].assets = []
    r = client.get("/api/whatsapp/flows?action=json&id=F1")
    assert r.status_code == 404
    assert r.json["error"] == "Flow JSON asset not found"


def test_flow_actions(app, client):
    h = _login(client)
    fake = app.extensions["whatsapp_client"]

    r = client.post("/api/whatsapp/flows", json={"name": "goa_leads", "categories": ["LEAD_GENERATION"]}, headers=h)
    assert r.status_code == 201
    assert r.json["data"] == {"id": "F9"}
    assert fake.calls[-1][3] == {"name": "goa_leads", "categories": ["LEAD_GENERATION"]}
    assert client.post("/api/whatsapp/flows", json={"name": "x", "categories": ["PARTY"]}, headers=h).status_code == 400
    assert client.post("/api/whatsapp/flows", json={"name": "x"}, headers=h).status_code == 400

    r = client.post("/api/whatsapp/flows", json={"action": "update_json", "flowId": "F1", "flowJson": FLOW_JSON}, headers=h)
    assert r.status_code == 200
    path, filename, content, fields = fake.uploads[-1]
    assert (path, filename, content) == ("F1/assets", "flow.json", FLOW_JSON)
    assert fields == {"asset_type": "FLOW_JSON", "name": "flow.json"}

    r = client.post("/api/whatsapp/flows", json={"action": "update_json", "flowId": "F1", "flowJson": {}}, headers=h)
    assert r.status_code == 400
    assert "Flow version is required" in r.json["validation_errors"]

    fake.upload_errors = [{"error": "INVALID_PROPERTY"}]
    r = client.post("/api/whatsapp/flows", json={"action": "update_json", "flowId": "F1", "flowJson": FLOW_JSON}, headers=h)
    assert r.status_code == 400
    assert r.json["validation_errors"] == [{"error": "INVALID_PROPERTY"}]

    assert client.post("/api/whatsapp/flows", json={"action": "publish", "flowId": "F1"}, headers=h).json["success"] is True
    assert fake.calls[-1][:2] == ("POST", "F1/publish")
    assert client.post("/api/whatsapp/flows", json={"action": "deprecate", "flowId": "F1"}, headers=h).status_code == 200
    assert fake.calls[-1][:2] == ("POST", "F1/deprecate")
    assert client.post("/api/whatsapp/flows", json={"action": "publish"}, headers=h).status_code == 400

    assert client.delete("/api/whatsapp/flows?id=F1", headers=h).json["message"] == "Flow deleted successfully"
    assert fake.calls[-1][:2] == ("DELETE", "F1")
    assert client.delete("/api/whatsapp/flows", headers=h).status_code == 400


def test_create_flow_from_template(app, client):
    h = _login(client)
    fake = app.extensions["whatsapp_client"]
    assert [t["type"] for t in client.get("/api/whatsapp/flows/templates").json["templates"]] == [
        "signup",
        "appointment",
        "survey",
        "lead_generation",
    ]

    r = client.post(
        "/api/whatsapp/flows/templates",
        json={"type": "lead_generation", "options": {"flowName": "goa_leads"}, "autoPublish": True},
        headers=h,
    )
    assert r.status_code == 201
    data = r.json["data"]
    assert (data["flow_id"], data["flow_name"], data["status"], data["categories"]) == (
        "F9",
        "goa_leads",
        "PUBLISHED",
        ["LEAD_GENERATION"],
    )
    assert fake.uploads[-1][0] == "F9/assets"
    assert fake.calls[-1][:2] == ("POST", "F9/publish")

    fake.publish_errors = [{"error": "MISSING_ENDPOINT"}]
    r = client.post("/api/whatsapp/flows/templates", json={"type": "lead_generation", "autoPublish": True}, headers=h)
    assert r.status_code == 400
    assert r.json["flow_id"] == "F9"
    assert r.json["error"] == "Flow created but failed to publish"

    r = client.post("/api/whatsapp/flows/templates", json={"type": "survey", "options": {}}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Questions array is required for survey flow"
    r = client.post("/api/whatsapp/flows/templates", json={"type": "quiz"}, headers=h)
    assert r.json["available_types"] == ["signup", "appointment", "survey", "lead_generation"]


def test_flow_graph_errors_surface(app, client):
    _login(client)
    app.extensions["whatsapp_client"].fail = GraphApiError("Invalid OAuth access token", status=401, code=190)
    r = client.get("/api/whatsapp/flows")
    assert r.status_code == 502
    assert r.json == {"error": "Invalid OAuth access token", "errorCode": 190}
