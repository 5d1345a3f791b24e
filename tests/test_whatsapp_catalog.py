"""Tests for the WhatsApp product catalog of tour packages."""
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import Base, Permission, Role, User
from app.tourdesk.modules.masters.models import Location, TourPackage
from app.tourdesk.modules.whatsapp.catalog import (
    build_description,
    build_product_payload,
    format_price_for_meta,
    validate_catalog_product_payload,
)
from app.tourdesk.modules.whatsapp.client import GraphApiError
from app.tourdesk.modules.whatsapp.models import WhatsAppCatalogProduct


class FakeGraphClient:
    phone_number_id = "PNID"
    business_account_id = "WABA"

    def __init__(self):
        self.calls = []
        self.sent = []
        self.fail = None

    def request_json(self, method, path, *, params=None, body=None, retries=3, auth=True):
        self.calls.append((method, path, body))
        if self.fail is not None:
            raise self.fail
        if path.endswith("/products"):
            return {"id": "meta-1"}
        return {"success": True}

    def send_message(self, payload):
        self.sent.append(payload)
        return {"messages": [{"id": f"wamid.out{len(self.sent)}"}]}


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

    app = create_app({"META_WHATSAPP_CATALOG_ID": "CAT", "PUBLIC_BASE_URL": "https://tours.example.com"})
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
        loc = Location(label="Goa")
        s.add_all(
            [
                r,
                u,
                loc,
                TourPackage(
                    name="Goa Beach Escape",
                    location=loc,
                    price=Decimal("24999.50"),
                    summary="Four nights by the sea",
                    highlights=["Baga beach", "Sunset cruise"],
                    inclusions=["Breakfast"],
                    exclusions=[],
                    image_urls=["https://cdn.example.com/goa-1.jpg", "https://cdn.example.com/goa-2.jpg"],
                ),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    return {"X-CSRF-Token": r.json["csrf_token"]}


# ---------- Payload ----------
def test_format_price_for_meta():
    assert format_price_for_meta(Decimal("24999.50")) == "25000"
    assert format_price_for_meta(100) == "100"
    assert format_price_for_meta(None) is None


def test_build_description():
    text = build_description("Sun and sand", ["Beach"], "Hotel", [" ", None])
    assert text == "Sun and sand\n\nHighlights:\n- Beach\n\nInclusions:\n- Hotel"
    assert build_description(None, [], [], []) == ""


def test_build_product_payload():
    p = WhatsAppCatalogProduct(
        retailer_id="TP-1",
        name="Goa Beach Escape",
        tour_package_id=1,
        price=Decimal("24999.50"),
        currency=None,
        is_available=False,
        url=None,
        summary=None,
        image_urls=["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"],
        highlights=[],
        inclusions=[],
        exclusions=[],
    )
    payload = build_product_payload(p, public_base_url="https://tours.example.com/")
    assert payload == {
        "retailer_id": "TP-1",
        "name": "Goa Beach Escape",
        "description": "Goa Beach Escape",
        "price": "25000",
        "currency": "INR",
        "availability": "out of stock",
        "condition": "new",
        "image_url": "https://cdn.example.com/a.jpg",
        "url": "https://tours.example.com/tour-packages/1",
        "brand": "Tour Package",
        "additional_image_urls": ["https://cdn.example.com/b.jpg"],
    }


def test_validate_catalog_product_payload():
    assert validate_catalog_product_payload({}) == ["Either tourPackageId or name is required"]
    assert validate_catalog_product_payload({"tourPackageId": "x"}) == ["tourPackageId must be a number"]
    assert validate_catalog_product_payload({"name": "Kerala", "price": "abc"}) == ["Price must be a number"]


# ---------- Routes ----------
def test_create_product_from_package(client):
    h = _login(client)
    r = client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 1}, headers=h)
    assert r.status_code == 201
    body = r.json
    assert body["retailer_id"] == "TP-1"
    assert body["name"] == "Goa Beach Escape"
    assert body["tour_package"] == "Goa Beach Escape"
    assert body["price"] == 24999.5
    assert body["highlights"] == ["Baga beach", "Sunset cruise"]
    assert body["sync_status"] == "pending"

    assert client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 1}, headers=h).status_code == 409
    assert client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 999}, headers=h).status_code == 404
    assert client.post("/api/whatsapp/catalog/products", json={}, headers=h).status_code == 400

    r = client.post("/api/whatsapp/catalog/products", json={"name": "Kerala Backwaters Special!", "price": "18,500"}, headers=h)
    assert r.json["retailer_id"] == "kerala-backwaters-special"
    assert r.json["price"] == 18500.0


def test_sync_creates_then_updates(app, client):
    h = _login(client)
    product = client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 1}, headers=h).json
    fake = app.extensions["whatsapp_client"]

    r = client.post(f"/api/whatsapp/catalog/products/{product['id']}/sync", headers=h)
    assert r.status_code == 200
    assert r.json["meta_product_id"] == "meta-1"
    assert r.json["sync_status"] == "synced"
    method, path, body = fake.calls[-1]
    assert (method, path) == ("POST", "CAT/products")
    assert body["url"] == "https://tours.example.com/tour-packages/1"
    assert body["description"].startswith("Four nights by the sea\n\nHighlights:")

    client.post(f"/api/whatsapp/catalog/products/{product['id']}/sync", headers=h)
    assert fake.calls[-1][1] == "meta-1"

    synced = client.get("/api/whatsapp/catalog/products?syncStatus=synced").json["products"]
    assert [p["id"] for p in synced] == [product["id"]]


def test_sync_failure_is_recorded(app, client):
    h = _login(client)
    product = client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 1}, headers=h).json
    app.extensions["whatsapp_client"].fail = GraphApiError("Invalid image url", status=400, code=100)

    r = client.post(f"/api/whatsapp/catalog/products/{product['id']}/sync", headers=h)
    assert r.status_code == 502
    assert r.json["error"] == "Invalid image url"

    with session_scope(app) as s:
        p = s.get(WhatsAppCatalogProduct, product["id"])
        assert p.sync_status == "failed"
        assert p.last_sync_error == "Invalid image url"

    assert client.post("/api/whatsapp/catalog/products/999/sync", headers=h).status_code == 404


def test_share_single_product_and_list(app, client):
    h = _login(client)
    first = client.post("/api/whatsapp/catalog/products", json={"tourPackageId": 1}, headers=h).json
    second = client.post("/api/whatsapp/catalog/products", json={"name": "Kerala Backwaters"}, headers=h).json
    fake = app.extensions["whatsapp_client"]

    r = client.post("/api/whatsapp/catalog/share", json={"to": "+919876543210", "productIds": [first["id"]]}, headers=h)
    assert r.status_code == 200
    assert r.json["products"] == ["TP-1"]
    single = fake.sent[-1]["interactive"]
    assert single["type"] == "product"
    assert single["action"] == {"catalog_id": "CAT", "product_retailer_id": "TP-1"}

    r = client.post(
        "/api/whatsapp/catalog/share",
        json={"to": "+919876543210", "productIds": [first["id"], second["id"]], "body": "Pick your trip"},
        headers=h,
    )
    assert r.json["products"] == ["TP-1", "kerala-backwaters"]
    listing = fake.sent[-1]["interactive"]
    assert listing["type"] == "product_list"
    assert listing["body"] == {"text": "Pick your trip"}
    assert listing["action"]["sections"] == [
        {
            "title": "Tour Packages",
            "product_items": [{"product_retailer_id": "TP-1"}, {"product_retailer_id": "kerala-backwaters"}],
        }
    ]

    chat = client.get("/api/whatsapp/chat").json
    assert chat["contacts"][0]["lastMessagePreview"] == "Catalog • 2 items"
    assert chat["stats"]["templateOnly"] == 1


def test_share_requires_products(client):
    h = _login(client)
    r = client.post("/api/whatsapp/catalog/share", json={"to": "+919876543210"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "Select at least one product to share"
    assert client.post("/api/whatsapp/catalog/share", json={}, headers=h).status_code == 400
