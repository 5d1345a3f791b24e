"""Tests for master data: lookups, rates, tour packages and seasonal periods."""
from datetime import date
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.tourdesk import create_app
from app.tourdesk.db import session_scope
from app.tourdesk.models import Base, Permission, Role, User
from app.tourdesk.modules.masters.seasonal import (
    check_year_coverage,
    find_seasonal_period_for_date,
    format_seasonal_period,
    generate_date_ranges_for_year,
    periods_overlap,
    to_day_of_year,
    validate_seasonal_period,
)


def _seed_all_permissions(s):
    perm_keys = [
        ("admin.view", "Admin: view shell"),
        ("masters.view", "Masters: view"),
        ("masters.edit", "Masters: edit"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def client(tmp_path, monkeypatch):
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

    return app.test_client()


def _login(client) -> dict:
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    return {"X-CSRF-Token": r.json["csrf_token"]}


def _period(start, end):
    return SimpleNamespace(start_month=start[0], start_day=start[1], end_month=end[0], end_day=end[1], is_active=True)


# ---------- Seasonal helpers ----------
def test_to_day_of_year_is_sortable_key():
    assert to_day_of_year(1, 1) == 101
    assert to_day_of_year(12, 31) == 1231
    assert to_day_of_year(3, 5) < to_day_of_year(10, 1)


def test_wrapping_period_overlap():
    winter = _period((10, 1), (3, 31))
    spring = _period((3, 15), (5, 31))
    summer = _period((4, 1), (6, 30))
    assert periods_overlap(winter, spring)
    assert not periods_overlap(winter, summer)


def test_generate_date_ranges_for_wrapping_period():
    winter = _period((10, 1), (3, 31))
    assert generate_date_ranges_for_year(winter, 2025) == [
        (date(2025, 10, 1), date(2025, 12, 31)),
        (date(2026, 1, 1), date(2026, 3, 31)),
    ]
    summer = _period((4, 1), (6, 30))
    assert generate_date_ranges_for_year(summer, 2025) == [(date(2025, 4, 1), date(2025, 6, 30))]


def test_find_seasonal_period_for_date():
    winter = _period((10, 1), (3, 31))
    summer = _period((4, 1), (6, 30))
    assert find_seasonal_period_for_date(date(2025, 1, 15), [summer, winter]) is winter
    assert find_seasonal_period_for_date(date(2025, 5, 1), [summer, winter]) is summer
    assert find_seasonal_period_for_date(date(2025, 8, 1), [summer, winter]) is None


def test_format_seasonal_period():
    assert format_seasonal_period(_period((1, 1), (3, 31))) == "Jan 1 - Mar 31"


def test_validate_seasonal_period_errors():
    errors = validate_seasonal_period({"season_type": "RAINY", "name": " ", "start_month": 13, "start_day": 0})
    assert "Invalid season type" in errors
    assert "Season name is required" in errors
    assert "Start month must be between 1 and 12" in errors
    assert "Start day must be between 1 and 31" in errors
    assert "End month must be between 1 and 12" in errors


def test_year_coverage_reports_gaps_and_overlaps():
    report = check_year_coverage([_period((1, 1), (6, 30)), _period((6, 1), (9, 30))])
    assert report["is_complete"] is False
    assert len(report["overlaps"]) == 1
    assert report["gaps"] == [((10, 1), (12, 31))]

    full = check_year_coverage([_period((4, 1), (9, 30)), _period((10, 1), (3, 31))])
    assert full["is_complete"] is True
    assert full["gaps"] == []

    assert check_year_coverage([])["is_complete"] is False


# ---------- Lookups ----------
def test_lookups_require_auth(client):
    r = client.get("/api/masters/locations")
    assert r.status_code == 401


def test_lookup_create_and_list(client):
    h = _login(client)
    r = client.post("/api/masters/locations", json={"label": "Manali"}, headers=h)
    assert r.status_code == 201
    assert r.json["label"] == "Manali"

    r = client.post("/api/masters/meal-plans", json={"code": "cp", "name": "Continental Plan"}, headers=h)
    assert r.status_code == 201
    assert r.json["code"] == "CP"

    r = client.post("/api/masters/meal-plans", json={"code": "AP"}, headers=h)
    assert r.status_code == 400
    assert "Name is required." in r.json["errors"]

    r = client.get("/api/masters/locations")
    assert [row["label"] for row in r.json] == ["Manali"]

    r = client.get("/api/masters/unknown")
    assert r.status_code == 404


def test_hotel_pricing_create_and_deactivate(client):
    h = _login(client)
    loc = client.post("/api/masters/locations", json={"label": "Goa"}, headers=h).json
    hotel = client.post("/api/hotels", json={"name": "Sea View", "location_id": loc["id"]}, headers=h).json
    room = client.post("/api/masters/room-types", json={"name": "Deluxe"}, headers=h).json
    occ = client.post(
        "/api/masters/occupancy-types", json={"name": "Double", "max_persons": 2, "rank": 2}, headers=h
    ).json

    bad = client.post(
        "/api/hotel-pricing",
        json={"hotel_id": hotel["id"], "start_date": "2025-05-01", "end_date": "2025-04-01", "price": -1},
        headers=h,
    )
    assert bad.status_code == 400
    assert "Start date must be on or before end date." in bad.json["errors"]
    assert "Price cannot be negative." in bad.json["errors"]

    r = client.post(
        "/api/hotel-pricing",
        json={
            "hotel_id": hotel["id"],
            "room_type_id": room["id"],
            "occupancy_type_id": occ["id"],
            "start_date": "2025-04-01",
            "end_date": "2025-06-30",
            "price": "4500",
        },
        headers=h,
    )
    assert r.status_code == 201
    assert r.json["price"] == 4500.0
    assert r.json["currency"] == "INR"

    r = client.delete(f"/api/hotel-pricing/{r.json['id']}", headers=h)
    assert r.status_code == 200
    assert client.get(f"/api/hotel-pricing?hotelId={hotel['id']}").json == []
    assert len(client.get(f"/api/hotel-pricing?hotelId={hotel['id']}&includeInactive=1").json) == 1


def test_transport_pricing_rejects_unknown_type(client):
    h = _login(client)
    loc = client.post("/api/masters/locations", json={"label": "Jaipur"}, headers=h).json
    vt = client.post("/api/masters/vehicle-types", json={"name": "Innova", "capacity": 6}, headers=h).json
    r = client.post(
        "/api/transport-pricing",
        json={
            "location_id": loc["id"],
            "vehicle_type_id": vt["id"],
            "start_date": "2025-01-01",
            "end_date": "2025-12-31",
            "price": 3000,
            "transport_type": "PerWeek",
        },
        headers=h,
    )
    assert r.status_code == 400
    assert any("Invalid transport type" in e for e in r.json["errors"])


def test_tour_package_with_pricing_periods(client):
    h = _login(client)
    loc = client.post("/api/masters/locations", json={"label": "Kerala"}, headers=h).json
    attr = client.post("/api/masters/pricing-attributes", json={"name": "Per Person Cost"}, headers=h).json
    r = client.post(
        "/api/tourPackages",
        json={
            "name": "Kerala Backwaters",
            "location_id": loc["id"],
            "highlights": "Houseboat stay",
            "pricing_periods": [
                {
                    "start_date": "2025-01-01",
                    "end_date": "2025-03-31",
                    "number_of_rooms": 1,
                    "components": [{"pricing_attribute_id": attr["id"], "price": "12000"}],
                }
            ],
        },
        headers=h,
    )
    assert r.status_code == 201
    tp = r.json
    assert tp["highlights"] == ["Houseboat stay"]
    assert tp["pricing_periods"][0]["components"][0]["name"] == "Per Person Cost"

    r = client.post(
        f"/api/tourPackages/{tp['id']}/pricing",
        json={"start_date": "2025-04-01", "end_date": "2025-06-30", "components": []},
        headers=h,
    )
    assert r.status_code == 201
    detail = client.get(f"/api/tourPackages/{tp['id']}").json
    assert len(detail["pricing_periods"]) == 2


# ---------- Seasonal period routes ----------
def test_seasonal_periods_crud_and_coverage(client):
    h = _login(client)
    loc = client.post("/api/masters/locations", json={"label": "Shimla"}, headers=h).json
    base = f"/api/locations/{loc['id']}/seasonal-periods"

    r = client.post(base, json={"season_type": "PEAK_SEASON", "name": "Summer", "start_month": 4, "start_day": 1, "end_month": 6, "end_day": 30}, headers=h)
    assert r.status_code == 201
    assert r.json["label"] == "Apr 1 - Jun 30"
    pid = r.json["id"]

    r = client.post(base, json={"season_type": "BAD", "name": "x", "start_month": 1, "start_day": 1, "end_month": 2, "end_day": 1}, headers=h)
    assert r.status_code == 400

    r = client.patch(f"{base}/{pid}", json={"end_month": 9}, headers=h)
    assert r.status_code == 200
    assert r.json["label"] == "Apr 1 - Sep 30"

    cov = client.get(f"{base}/coverage").json
    assert cov["isComplete"] is True
    assert cov["gaps"] == [{"start": [1, 1], "end": [3, 31]}, {"start": [10, 1], "end": [12, 31]}]

    r = client.delete(f"{base}/{pid}", headers=h)
    assert r.status_code == 200
    assert client.get(base).json == []


def test_apply_seasonal_template(client):
    h = _login(client)
    loc = client.post("/api/masters/locations", json={"label": "Mussoorie"}, headers=h).json
    base = f"/api/locations/{loc['id']}/seasonal-periods"

    r = client.post(f"{base}/apply-template", json={"template": "hill_station"}, headers=h)
    assert r.status_code == 201
    assert {p["season_type"] for p in r.json} == {"PEAK_SEASON", "SHOULDER_SEASON", "OFF_SEASON"}

    cov = client.get(f"{base}/coverage").json
    assert cov["isComplete"] is True
    assert cov["gaps"] == []

    r = client.post(f"{base}/apply-template", json={"template": "ARCTIC"}, headers=h)
    assert r.status_code == 400
