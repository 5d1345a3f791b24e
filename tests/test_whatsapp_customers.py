"""Tests for WhatsApp customer records and CSV import."""
import io

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import AuditEvent, Base, Permission, Role, User
from app.tourdesk.modules.whatsapp.customers import (
    CustomerImportError,
    parse_customer_csv,
    sanitize_tags,
    validate_customer_payload,
)
from app.tourdesk.modules.whatsapp.models import WhatsAppCustomer

CSV = (
    "\ufeffFirst Name,Last Name,Mobile Number,Email,Tags\n"
    "Asha,Rao,09876543210,asha@example.com,vip|goa\n"
    "Ravi,,+91 98765 43210,,\n"
    ",NoName,12345,,\n"
    "Meera,Iyer,,,\n"
    ",,,,\n"
)


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


def _import(client, headers, data: str, **form):
    body = {"file": (io.BytesIO(data.encode("utf-8")), "customers.csv"), **form}
    return client.post("/api/whatsapp/customers/import", data=body, headers=headers, content_type="multipart/form-data")


# ---------- Helpers ----------
def test_sanitize_tags():
    assert sanitize_tags(["vip", " vip ", "", "goa", 5]) == ["vip", "goa"]
    assert sanitize_tags("vip") == ["vip"]
    assert sanitize_tags(None) == []


def test_validate_customer_payload():
    assert validate_customer_payload({}) == ["First name is required", "Phone number is required"]
    assert validate_customer_payload({"firstName": "Asha", "phoneNumber": "n/a"}) == ["Phone number must contain digits"]
    assert validate_customer_payload({"notes": "x"}, partial=True) == []
    assert validate_customer_payload({"firstName": " "}, partial=True) == ["First name is required"]


# ---------- CSV ----------
def test_parse_customer_csv():
    result = parse_customer_csv(CSV.encode("utf-8"), source_name="customers.csv", default_tags=["lead"])
    assert result.total_rows == 4
    assert result.valid_rows == 2
    assert result.skipped_rows == 2
    assert result.unique_phones == 1

    asha, ravi = result.customers
    assert asha["phone_number"] == "+919876543210"
    assert asha["tags"] == ["lead", "vip", "goa"]
    assert asha["imported_from"] == "customers.csv"
    assert ravi["last_name"] is None
    assert ravi["tags"] == ["lead"]

    summary = result.to_dict()
    assert summary["duplicates"] == [
        {
            "phoneNumber": "+919876543210",
            "occurrences": [{"rowNumber": 2, "name": "Asha Rao"}, {"rowNumber": 3, "name": "Ravi"}],
        }
    ]
    assert [(e["rowNumber"], e["message"]) for e in summary["errors"]] == [
        (4, "First name is required"),
        (5, "Mobile number is required"),
    ]
    assert summary["errors"][0]["row"] == {"last name": "NoName", "mobile number": "12345"}


def test_parse_customer_csv_rejects_bad_files():
    with pytest.raises(CustomerImportError, match="Uploaded file is empty"):
        parse_customer_csv(b"  ")
    with pytest.raises(CustomerImportError, match="No customer rows found"):
        parse_customer_csv(b"First Name,Mobile Number\n")
    with pytest.raises(CustomerImportError, match="Missing required columns: mobile number"):
        parse_customer_csv(b"First Name,Phone\nAsha,9876543210\n")


# ---------- Routes ----------
def test_customer_crud(app, client):
    h = _login(client)
    r = client.post(
        "/api/whatsapp/customers",
        json={"firstName": "Asha", "lastName": "Rao", "phoneNumber": "9876543210", "tags": ["vip", " vip", "goa"]},
        headers=h,
    )
    assert r.status_code == 201
    asha = r.json
    assert asha["phone_number"] == "+919876543210"
    assert asha["full_name"] == "Asha Rao"
    assert asha["tags"] == ["vip", "goa"]
    assert asha["is_opted_in"] is True

    r = client.post("/api/whatsapp/customers", json={"firstName": "Dup", "phoneNumber": "+919876543210"}, headers=h)
    assert r.status_code == 409
    assert client.post("/api/whatsapp/customers", json={}, headers=h).status_code == 400

    ravi = client.post(
        "/api/whatsapp/customers",
        json={"firstName": "Ravi", "phoneNumber": "+447700900123", "isOptedIn": False},
        headers=h,
    ).json

    assert client.get("/api/whatsapp/customers?search=asha").json["total"] == 1
    assert client.get("/api/whatsapp/customers?search=7700900").json["data"][0]["id"] == ravi["id"]
    assert client.get("/api/whatsapp/customers?tags=goa").json["total"] == 1
    opted_out = client.get("/api/whatsapp/customers?isOptedIn=false").json
    assert [c["first_name"] for c in opted_out["data"]] == ["Ravi"]
    assert client.get("/api/whatsapp/customers/tags").json["tags"] == [
        {"tag": "vip", "count": 1},
        {"tag": "goa", "count": 1},
    ]

    r = client.patch(f"/api/whatsapp/customers/{ravi['id']}", json={"phoneNumber": "09876543210"}, headers=h)
    assert r.status_code == 409
    r = client.patch(f"/api/whatsapp/customers/{ravi['id']}", json={"notes": "Prefers calls"}, headers=h)
    assert r.status_code == 200
    assert r.json["notes"] == "Prefers calls"
    assert r.json["is_opted_in"] is False

    assert client.delete(f"/api/whatsapp/customers/{ravi['id']}", headers=h).json == {"success": True}
    assert client.get(f"/api/whatsapp/customers/{ravi['id']}").status_code == 404

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id).all()]
    assert "whatsapp_customer.create" in actions
    assert "whatsapp_customer.delete" in actions


def test_customer_import_dry_run_then_apply(app, client):
    h = _login(client)
    r = _import(client, h, CSV, dryRun="true", tags="lead")
    assert r.status_code == 200
    assert r.json["dryRun"] is True
    assert r.json["validRows"] == 2
    with session_scope(app) as s:
        assert s.query(WhatsAppCustomer).count() == 0

    r = _import(client, h, CSV, tags="lead")
    assert r.status_code == 200
    assert r.json["created"] == 1
    assert r.json["updated"] == 1

    with session_scope(app) as s:
        c = s.query(WhatsAppCustomer).one()
        # later rows for the same phone win
        assert c.first_name == "Ravi"
        assert c.tags == ["lead"]
        assert c.imported_from == "customers.csv"


def test_customer_import_errors(client):
    h = _login(client)
    r = _import(client, h, "First Name,Mobile Number\n,9876543210\n")
    assert r.status_code == 422
    assert r.json["error"] == "No valid customer rows to import"

    r = _import(client, h, "Name,Phone\nAsha,9876543210\n")
    assert r.status_code == 400
    assert r.json["error"] == "Missing required columns: first name, mobile number"

    r = client.post("/api/whatsapp/customers/import", data={}, headers=h, content_type="multipart/form-data")
    assert r.status_code == 400
