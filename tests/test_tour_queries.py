"""Tests for Tour Package Query CRUD."""
import io
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import AuditEvent, Base, Permission, Role, User
from app.tourdesk.modules.masters.models import Location, MealPlan, OccupancyType, RoomType
from app.tourdesk.modules.tour_queries.models import Itinerary, TourPackageQuery
from app.tourdesk.modules.tour_queries.service import normalize_policy, validate_tour_query_payload


def _seed_all_permissions(s):
    perm_keys = [
        ("tour_queries.view", "Tour Queries: view"),
        ("tour_queries.create", "Tour Queries: create"),
        ("tour_queries.edit", "Tour Queries: edit"),
        ("tour_queries.delete", "Tour Queries: delete"),
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

    app = create_app({"LOCAL_STORAGE_ROOT": str(tmp_path / "storage")})
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
        s.add_all(
            [
                Location(label="Kashmir"),
                Location(label="Ladakh"),
                RoomType(name="Deluxe"),
                OccupancyType(name="Double", max_persons=2, rank=2),
                MealPlan(code="CP", name="Continental Plan"),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client) -> dict:
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    return {"X-CSRF-Token": r.json["csrf_token"]}


def _payload(**overrides):
    body = {
        "locationId": 1,
        "customerName": "Asha Rao",
        "customerNumber": "+919876543210",
        "tourStartsFrom": "2025-05-01",
        "tourEndsOn": "2025-05-04",
        "numAdults": "2",
        "importantNotes": "Carry woollens",
        "inclusions": ["Breakfast", "Airport transfers"],
        "itineraries": [
            {
                "dayNumber": 1,
                "itineraryTitle": "Arrival in Srinagar",
                "hotelId": None,
                "activities": [{"activityTitle": "Shikara ride"}],
                "roomAllocations": [{"roomTypeId": 1, "occupancyTypeId": 1, "mealPlanId": 1, "quantity": 2}],
                "transportDetails": [{"vehicleTypeId": None, "quantity": 1, "isAirportPickupRequired": True}],
            },
            {"dayNumber": 2, "itineraryTitle": "Gulmarg"},
        ],
        "flightDetails": [{"date": "2025-05-01", "flightNumber": "6E 123", "from": "DEL", "to": "SXR"}],
    }
    body.update(overrides)
    return body


def test_normalize_policy():
    assert normalize_policy("Only one") == ["Only one"]
    assert normalize_policy(["a", "b"]) == ["a", "b"]
    assert normalize_policy(None) == []
    assert normalize_policy("") == []


def test_validate_payload():
    assert validate_tour_query_payload({}) == ["Location id is required"]
    errors = validate_tour_query_payload({"location_id": 1, "tourStartsFrom": "2025-05-04", "tourEndsOn": "2025-05-01"})
    assert errors == ["Tour start date must be on or before the end date."]
    assert validate_tour_query_payload({"locationId": 1, "tourStartsFrom": "05/01/2025"}) == [
        "Tour dates must be ISO dates (YYYY-MM-DD)."
    ]


def test_create_requires_location(client):
    h = _login(client)
    r = client.post("/api/tourPackageQuery", json={"customerName": "No Location"}, headers=h)
    assert r.status_code == 400
    assert r.json["errors"] == ["Location id is required"]

    r = client.post("/api/tourPackageQuery", json={"locationId": 999}, headers=h)
    assert r.status_code == 400
    assert r.json["errors"] == ["Location not found"]


def test_create_with_nested_children(app, client):
    h = _login(client)
    r = client.post("/api/tourPackageQuery", json=_payload(), headers=h)
    assert r.status_code == 201
    body = r.json

    assert body["tour_package_query_number"] == f"TPQ-{date.today():%Y%m%d}-0001"
    assert body["location"] == "Kashmir"
    assert body["tour_starts_from"] == "2025-05-01"
    assert body["num_adults"] == "2"
    assert body["important_notes"] == ["Carry woollens"]
    assert body["inclusions"] == ["Breakfast", "Airport transfers"]
    assert body["exclusions"] == []
    assert body["flight_details"][0]["from"] == "DEL"
    assert [it["itinerary_title"] for it in body["itineraries"]] == ["Arrival in Srinagar", "Gulmarg"]
    day1 = body["itineraries"][0]
    assert day1["activities"][0]["activity_title"] == "Shikara ride"
    assert day1["room_allocations"][0]["quantity"] == 2
    assert day1["transport_details"][0]["is_airport_pickup_required"] is True

    second = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json
    assert second["tour_package_query_number"].endswith("-0002")

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "tour_query.create").count() == 2


def test_list_filters(client):
    h = _login(client)
    client.post("/api/tourPackageQuery", json=_payload(), headers=h)
    client.post("/api/tourPackageQuery", json=_payload(locationId=2, isFeatured=True, associatePartnerId="ap-1"), headers=h)
    client.post("/api/tourPackageQuery", json=_payload(isArchived=True), headers=h)

    assert len(client.get("/api/tourPackageQuery").json) == 2
    assert len(client.get("/api/tourPackageQuery?locationId=2").json) == 1
    assert len(client.get("/api/tourPackageQuery?isFeatured=true").json) == 1
    assert len(client.get("/api/tourPackageQuery?associatePartnerId=ap-1").json) == 1
    archived = client.get("/api/tourPackageQuery?isArchived=true").json
    assert len(archived) == 1
    # List rows are summaries without nested children
    assert "itineraries" not in archived[0]


def test_detail_and_not_found(client):
    h = _login(client)
    created = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json
    r = client.get(f"/api/tourPackageQuery/{created['id']}")
    assert r.status_code == 200
    assert r.json["customer_name"] == "Asha Rao"
    assert client.get("/api/tourPackageQuery/999").status_code == 404


def test_patch_replaces_itineraries_and_keeps_other_fields(app, client):
    h = _login(client)
    created = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json

    r = client.patch(
        f"/api/tourPackageQuery/{created['id']}",
        json={"locationId": 2, "paymentPolicy": "50% advance", "itineraries": [{"dayNumber": 1, "itineraryTitle": "Leh"}]},
        headers=h,
    )
    assert r.status_code == 200
    body = r.json
    assert body["location"] == "Ladakh"
    assert body["payment_policy"] == ["50% advance"]
    assert body["customer_name"] == "Asha Rao"
    assert body["inclusions"] == ["Breakfast", "Airport transfers"]
    assert [it["itinerary_title"] for it in body["itineraries"]] == ["Leh"]

    with session_scope(app) as s:
        assert s.query(Itinerary).count() == 1

    r = client.patch(f"/api/tourPackageQuery/{created['id']}", json={"customerName": "X"}, headers=h)
    assert r.status_code == 400
    assert r.json["errors"] == ["Location id is required"]


def test_patch_rejects_unknown_location(client):
    h = _login(client)
    created = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json

    r = client.patch(f"/api/tourPackageQuery/{created['id']}", json={"locationId": 9999}, headers=h)
    assert r.status_code == 400
    assert r.json["errors"] == ["Location not found"]
    assert client.get(f"/api/tourPackageQuery/{created['id']}").json["location"] == "Kashmir"


def test_delete_cascades(app, client):
    h = _login(client)
    created = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json
    r = client.delete(f"/api/tourPackageQuery/{created['id']}", headers=h)
    assert r.status_code == 200
    assert r.json == {"ok": True, "id": created["id"]}
    assert client.get(f"/api/tourPackageQuery/{created['id']}").status_code == 404

    with session_scope(app) as s:
        assert s.query(TourPackageQuery).count() == 0
        assert s.query(Itinerary).count() == 0


def test_image_upload(client):
    h = _login(client)
    created = client.post("/api/tourPackageQuery", json=_payload(), headers=h).json

    r = client.post(
        f"/api/tourPackageQuery/{created['id']}/images",
        data={"file": (io.BytesIO(b"\x89PNG fake"), "cover.png", "image/png")},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    assert r.json["url"].startswith(f"/files/tour-queries/{created['id']}/")
    assert r.json["url"].endswith("cover.png")

    r = client.post(
        f"/api/tourPackageQuery/{created['id']}/images",
        data={"file": (io.BytesIO(b"GIF89a"), "anim.gif", "image/gif")},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    detail = client.get(f"/api/tourPackageQuery/{created['id']}").json
    assert len(detail["images"]) == 1
