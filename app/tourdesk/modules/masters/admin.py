from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.tourdesk.audit import record_event
from app.tourdesk.db import db_session
from app.tourdesk.models import User
from app.tourdesk.modules.masters.models import (
    Hotel,
    HotelPricing,
    Location,
    SeasonalPeriod,
    TourPackage,
    TransportPricing,
)
from app.tourdesk.modules.masters.seasonal import SEASONAL_TEMPLATES, check_year_coverage, validate_seasonal_period
from app.tourdesk.modules.masters.service import (
    LOOKUPS,
    add_pricing_period,
    apply_season_template,
    create_hotel,
    create_hotel_pricing,
    create_lookup,
    create_seasonal_period,
    create_tour_package,
    create_transport_pricing,
    deactivate_pricing,
    serialize_hotel,
    serialize_hotel_pricing,
    serialize_lookup,
    serialize_pricing_period,
    serialize_seasonal_period,
    serialize_tour_package,
    serialize_transport_pricing,
    update_seasonal_period,
    validate_hotel_pricing_payload,
    validate_lookup_payload,
    validate_tour_package_payload,
    validate_transport_pricing_payload,
)
from app.tourdesk.rbac import require_permission
from app.tourdesk.utils import parse_bool, parse_int

bp = Blueprint("masters", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return request.get_json(silent=True) or {}


# ---------- Lookups ----------
@bp.get("/masters/<kind>")
@require_permission("masters.view")
def lookup_list(kind: str):
    if kind not in LOOKUPS:
        return jsonify({"error": f"Unknown lookup: {kind}"}), 404
    model, key_field, _extra = LOOKUPS[kind]
    s = db_session()
    rows = s.query(model).order_by(getattr(model, key_field).asc()).all()
    return jsonify([serialize_lookup(r) for r in rows])


@bp.post("/masters/<kind>")
@require_permission("masters.edit")
def lookup_create(kind: str):
    if kind not in LOOKUPS:
        return jsonify({"error": f"Unknown lookup: {kind}"}), 404
    payload = _payload()
    errors = validate_lookup_payload(kind, payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    obj = create_lookup(s, kind, payload, _current_user())
    s.commit()
    return jsonify(serialize_lookup(obj)), 201


# ---------- Hotels ----------
@bp.get("/hotels")
@require_permission("masters.view")
def hotels_list():
    s = db_session()
    q = s.query(Hotel)
    location_id = parse_int(request.args.get("locationId"))
    if location_id is not None:
        q = q.filter(Hotel.location_id == location_id)
    return jsonify([serialize_hotel(h) for h in q.order_by(Hotel.name.asc()).all()])


@bp.post("/hotels")
@require_permission("masters.edit")
def hotels_create():
    payload = _payload()
    s = db_session()
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    location_id = parse_int(payload.get("location_id"))
    if location_id is None or not s.get(Location, location_id):
        errors.append("Location id is required")
    if errors:
        return jsonify({"errors": errors}), 400
    hotel = create_hotel(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_hotel(hotel)), 201


# ---------- Hotel pricing ----------
@bp.get("/hotel-pricing")
@require_permission("masters.view")
def hotel_pricing_list():
    s = db_session()
    q = s.query(HotelPricing)
    hotel_id = parse_int(request.args.get("hotelId"))
    if hotel_id is not None:
        q = q.filter(HotelPricing.hotel_id == hotel_id)
    if not parse_bool(request.args.get("includeInactive")):
        q = q.filter(HotelPricing.is_active.is_(True))
    rows = q.order_by(HotelPricing.start_date.desc()).all()
    return jsonify([serialize_hotel_pricing(r) for r in rows])


@bp.post("/hotel-pricing")
@require_permission("masters.edit")
def hotel_pricing_create():
    payload = _payload()
    errors = validate_hotel_pricing_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    row = create_hotel_pricing(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_hotel_pricing(row)), 201


@bp.delete("/hotel-pricing/<int:pricing_id>")
@require_permission("masters.edit")
def hotel_pricing_delete(pricing_id: int):
    s = db_session()
    row = s.get(HotelPricing, pricing_id)
    if not row:
        return jsonify({"error": "Hotel pricing not found"}), 404
    deactivate_pricing(s, row, _current_user(), reason=(_payload().get("reason") or None))
    s.commit()
    return jsonify({"ok": True})


# ---------- Transport pricing ----------
@bp.get("/transport-pricing")
@require_permission("masters.view")
def transport_pricing_list():
    s = db_session()
    q = s.query(TransportPricing).filter(TransportPricing.is_active.is_(True))
    location_id = parse_int(request.args.get("locationId"))
    if location_id is not None:
        q = q.filter(TransportPricing.location_id == location_id)
    rows = q.order_by(TransportPricing.start_date.desc()).all()
    return jsonify([serialize_transport_pricing(r) for r in rows])


@bp.post("/transport-pricing")
@require_permission("masters.edit")
def transport_pricing_create():
    payload = _payload()
    errors = validate_transport_pricing_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    row = create_transport_pricing(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_transport_pricing(row)), 201


@bp.delete("/transport-pricing/<int:pricing_id>")
@require_permission("masters.edit")
def transport_pricing_delete(pricing_id: int):
    s = db_session()
    row = s.get(TransportPricing, pricing_id)
    if not row:
        return jsonify({"error": "Transport pricing not found"}), 404
    deactivate_pricing(s, row, _current_user(), reason=(_payload().get("reason") or None))
    s.commit()
    return jsonify({"ok": True})


# ---------- Tour packages ----------
@bp.get("/tourPackages")
@require_permission("masters.view")
def tour_packages_list():
    s = db_session()
    q = s.query(TourPackage).filter(TourPackage.is_archived.is_(False))
    location_id = parse_int(request.args.get("locationId"))
    if location_id is not None:
        q = q.filter(TourPackage.location_id == location_id)
    rows = q.order_by(TourPackage.name.asc()).all()
    return jsonify([serialize_tour_package(tp) for tp in rows])


@bp.post("/tourPackages")
@require_permission("masters.edit")
def tour_packages_create():
    payload = _payload()
    errors = validate_tour_package_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    s = db_session()
    tp = create_tour_package(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_tour_package(tp, include_pricing=True)), 201


@bp.get("/tourPackages/<int:tour_package_id>")
@require_permission("masters.view")
def tour_package_detail(tour_package_id: int):
    s = db_session()
    tp = s.get(TourPackage, tour_package_id)
    if not tp:
        return jsonify({"error": "Tour package not found"}), 404
    return jsonify(serialize_tour_package(tp, include_pricing=True))


@bp.post("/tourPackages/<int:tour_package_id>/pricing")
@require_permission("masters.edit")
def tour_package_pricing_create(tour_package_id: int):
    s = db_session()
    tp = s.get(TourPackage, tour_package_id)
    if not tp:
        return jsonify({"error": "Tour package not found"}), 404
    payload = _payload()
    errors = validate_tour_package_payload({"name": tp.name, "location_id": tp.location_id, "pricing_periods": [payload]})
    if errors:
        return jsonify({"errors": errors}), 400
    row = add_pricing_period(s, tp, payload, _current_user())
    s.commit()
    return jsonify(serialize_pricing_period(row)), 201


# ---------- Seasonal periods ----------
def _location_or_404(s, location_id: int):
    loc = s.get(Location, location_id)
    if not loc:
        return None, (jsonify({"error": "Location not found"}), 404)
    return loc, None


@bp.get("/locations/<int:location_id>/seasonal-periods")
@require_permission("masters.view")
def seasonal_periods_list(location_id: int):
    s = db_session()
    loc, err = _location_or_404(s, location_id)
    if err:
        return err
    periods = sorted(loc.seasonal_periods, key=lambda p: (p.start_month, p.start_day))
    return jsonify([serialize_seasonal_period(p) for p in periods])


@bp.post("/locations/<int:location_id>/seasonal-periods")
@require_permission("masters.edit")
def seasonal_periods_create(location_id: int):
    s = db_session()
    loc, err = _location_or_404(s, location_id)
    if err:
        return err
    payload = _payload()
    errors = validate_seasonal_period(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    period = create_seasonal_period(s, loc, payload, _current_user())
    s.commit()
    return jsonify(serialize_seasonal_period(period)), 201


@bp.patch("/locations/<int:location_id>/seasonal-periods/<int:period_id>")
@require_permission("masters.edit")
def seasonal_period_update(location_id: int, period_id: int):
    s = db_session()
    period = s.get(SeasonalPeriod, period_id)
    if not period or period.location_id != location_id:
        return jsonify({"error": "Seasonal period not found"}), 404
    errors = update_seasonal_period(s, period, _payload(), _current_user())
    if errors:
        return jsonify({"errors": errors}), 400
    s.commit()
    return jsonify(serialize_seasonal_period(period))


@bp.delete("/locations/<int:location_id>/seasonal-periods/<int:period_id>")
@require_permission("masters.edit")
def seasonal_period_delete(location_id: int, period_id: int):
    s = db_session()
    period = s.get(SeasonalPeriod, period_id)
    if not period or period.location_id != location_id:
        return jsonify({"error": "Seasonal period not found"}), 404
    record_event(
        s,
        actor=_current_user(),
        action="seasonal_period.delete",
        entity_type="SeasonalPeriod",
        entity_id=str(period.id),
        metadata={"location_id": location_id, "name": period.name},
    )
    s.delete(period)
    s.commit()
    return jsonify({"ok": True})


@bp.get("/locations/<int:location_id>/seasonal-periods/coverage")
@require_permission("masters.view")
def seasonal_periods_coverage(location_id: int):
    s = db_session()
    loc, err = _location_or_404(s, location_id)
    if err:
        return err
    report = check_year_coverage(loc.seasonal_periods)
    return jsonify(
        {
            "isComplete": report["is_complete"],
            "gaps": [{"start": list(a), "end": list(b)} for a, b in report["gaps"]],
            "overlaps": [
                {"period1": serialize_seasonal_period(a), "period2": serialize_seasonal_period(b)}
                for a, b in report["overlaps"]
            ],
        }
    )


@bp.post("/locations/<int:location_id>/seasonal-periods/apply-template")
@require_permission("masters.edit")
def seasonal_periods_apply_template(location_id: int):
    s = db_session()
    loc, err = _location_or_404(s, location_id)
    if err:
        return err
    key = (_payload().get("template") or "").strip().upper()
    if key not in SEASONAL_TEMPLATES:
        return jsonify({"errors": [f"Unknown template. Must be one of: {', '.join(SEASONAL_TEMPLATES)}"]}), 400
    created = apply_season_template(s, loc, key, _current_user())
    s.commit()
    return jsonify([serialize_seasonal_period(p) for p in created]), 201
