import json

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.audit import mask_phone, record_event
from app.tourdesk.db import session_scope
from app.tourdesk.models import AuditEvent, Base, Permission, Role, User
from scripts.release import check_environment


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
        p = Permission(key="tour_queries.view", name="Tour Queries: view")
        r = Role(key="admin", name="Administrator")
        r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        viewer = User(email="viewer@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        s.add_all([p, r, u, viewer])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_api_access(client):
    # Anonymous gets 401 from the API
    r = client.get("/api/tourPackageQuery")
    assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["csrf_token"]

    r = client.get("/api/tourPackageQuery")
    assert r.status_code == 200
    assert r.json == []

    r = client.get("/auth/me")
    assert r.json["email"] == "admin@example.com"
    assert r.json["permissions"] == ["tour_queries.view"]


def test_login_rejects_bad_password(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_missing_permission_is_403(client):
    client.post("/auth/login", json={"email": "viewer@example.com", "password": "pw"})
    r = client.get("/api/tourPackageQuery")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "tour_queries.view"


def test_mutation_without_csrf_rejected(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.post("/api/tourPackageQuery", json={"locationId": 1})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_logout_clears_session(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_audit_metadata_masks_phones_and_credentials(app):
    with session_scope(app) as s:
        record_event(
            s,
            actor=None,
            action="whatsapp_customer.delete",
            metadata={"phone_number": "+919876543210", "access_token": "EAAG", "recipients": [{"phone": "9876543210"}]},
        )
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "whatsapp_customer.delete").one()
        assert json.loads(ev.metadata_json) == {
            "access_token": "[redacted]",
            "phone_number": "+91******3210",
            "recipients": [{"phone": "******3210"}],
        }
    assert mask_phone("1234") == "1234"


def test_release_environment_checks():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        check_environment({})
    with pytest.raises(RuntimeError, match="sqlite"):
        check_environment({"DATABASE_URL": "sqlite:///x.db", "ENV": "production"})
    with pytest.raises(RuntimeError, match="S3_BUCKET, S3_ACCESS_KEY_ID"):
        check_environment({"DATABASE_URL": "postgresql://db", "STORAGE_BACKEND": "s3", "S3_ENDPOINT": "https://s3", "S3_SECRET_ACCESS_KEY": "k"})

    warnings = check_environment({"DATABASE_URL": "postgresql://db"})
    assert warnings[0].startswith("WhatsApp is not configured")
    assert check_environment(
        {
            "DATABASE_URL": "postgresql://db",
            "META_WHATSAPP_ACCESS_TOKEN": "t",
            "META_WHATSAPP_PHONE_NUMBER_ID": "1",
            "META_WHATSAPP_BUSINESS_ACCOUNT_ID": "2",
            "META_WEBHOOK_VERIFY_TOKEN": "v",
            "META_WHATSAPP_CATALOG_ID": "c",
        }
    ) == []
