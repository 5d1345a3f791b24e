from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.tourdesk.audit import record_event
from app.tourdesk.constants import TRANSPORT_PRICING_TYPES
from app.tourdesk.modules.masters.models import (
    Hotel,
    HotelPricing,
    Location,
    MealPlan,
    OccupancyType,
    PricingAttribute,
    PricingComponent,
    RoomType,
    SeasonalPeriod,
    TourPackage,
    TourPackagePricing,
    TransportPricing,
    VehicleType,
)
from app.tourdesk.modules.masters.seasonal import format_seasonal_period, validate_seasonal_period
from app.tourdesk.utils import as_list, clean_str, iso, money, parse_bool, parse_date, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tourdesk.models import User


# Simple name-keyed lookups share one create path: kind -> (model, required field, extra fields)
LOOKUPS: dict[str, tuple[type, str, tuple[str, ...]]] = {
    "locations": (Location, "label", ()),
    "room-types": (RoomType, "name", ()),
    "occupancy-types": (OccupancyType, "name", ("max_persons", "rank")),
    "meal-plans": (MealPlan, "code", ("name", "description")),
    "vehicle-types": (VehicleType, "name", ("capacity",)),
    "pricing-attributes": (PricingAttribute, "name", ("sort_order",)),
}


def serialize_lookup(obj) -> dict:
    out = {"id": obj.id}
    for col in obj.__table__.columns:
        if col.name in ("id", "created_at"):
            continue
        out[col.name] = getattr(obj, col.name)
    return out


def validate_lookup_payload(kind: str, payload: dict) -> list[str]:
    if kind not in LOOKUPS:
        return [f"Unknown lookup: {kind}"]
    _model, key_field, _extra = LOOKUPS[kind]
    errors = []
    if not clean_str(payload.get(key_field)):
        errors.append(f"{key_field.replace('_', ' ').capitalize()} is required.")
    if kind == "meal-plans" and not clean_str(payload.get("name")):
        errors.append("Name is required.")
    return errors


def create_lookup(s: "Session", kind: str, payload: dict, user: "User"):
    model, key_field, extra = LOOKUPS[kind]
    values: dict = {key_field: clean_str(payload.get(key_field))}
    if kind == "meal-plans":
        values[key_field] = values[key_field].upper()
    for field in extra:
        if field in ("max_persons", "rank", "capacity", "sort_order"):
            v = parse_int(payload.get(field))
            if v is not None:
                values[field] = v
        else:
            values[field] = clean_str(payload.get(field))
    obj = model(**values)
    s.add(obj)
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"masters.{kind}.create",
        entity_type=model.__name__,
        entity_id=str(obj.id),
        metadata={key_field: values[key_field]},
    )
    return obj


# ---------- Hotels ----------
def serialize_hotel(h: Hotel) -> dict:
    return {"id": h.id, "name": h.name, "location_id": h.location_id, "location": h.location.label if h.location else None, "link": h.link}


def create_hotel(s: "Session", payload: dict, user: "User") -> Hotel:
    hotel = Hotel(
        name=(payload.get("name") or "").strip(),
        location_id=parse_int(payload.get("location_id")),
        link=clean_str(payload.get("link")),
    )
    s.add(hotel)
    s.flush()
    record_event(s, actor=user, action="hotel.create", entity_type="Hotel", entity_id=str(hotel.id), metadata={"name": hotel.name})
    return hotel


# ---------- Hotel / transport rates ----------
def _validate_date_range(payload: dict, errors: list[str]) -> None:
    try:
        start = parse_date(payload.get("start_date"))
        end = parse_date(payload.get("end_date"))
    except ValueError:
        errors.append("Dates must be YYYY-MM-DD.")
        return
    if not start or not end:
        errors.append("Start date and end date are required.")
    elif start > end:
        errors.append("Start date must be on or before end date.")


def validate_hotel_pricing_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    for key, label in (("hotel_id", "Hotel"), ("room_type_id", "Room type"), ("occupancy_type_id", "Occupancy type")):
        if parse_int(payload.get(key)) is None:
            errors.append(f"{label} is required.")
    _validate_date_range(payload, errors)
    price = parse_decimal(payload.get("price"))
    if price is None:
        errors.append("Price is required.")
    elif price < 0:
        errors.append("Price cannot be negative.")
    return errors


def serialize_hotel_pricing(p: HotelPricing) -> dict:
    return {
        "id": p.id,
        "hotel_id": p.hotel_id,
        "hotel": p.hotel.name if p.hotel else None,
        "room_type_id": p.room_type_id,
        "room_type": p.room_type.name if p.room_type else None,
        "occupancy_type_id": p.occupancy_type_id,
        "occupancy_type": p.occupancy_type.name if p.occupancy_type else None,
        "meal_plan_id": p.meal_plan_id,
        "meal_plan": p.meal_plan.code if p.meal_plan else None,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "price": money(p.price),
        "currency": p.currency,
        "is_active": p.is_active,
    }


def create_hotel_pricing(s: "Session", payload: dict, user: "User") -> HotelPricing:
    row = HotelPricing(
        hotel_id=parse_int(payload.get("hotel_id")),
        room_type_id=parse_int(payload.get("room_type_id")),
        occupancy_type_id=parse_int(payload.get("occupancy_type_id")),
        meal_plan_id=parse_int(payload.get("meal_plan_id")),
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        price=parse_decimal(payload.get("price")),
        currency=(clean_str(payload.get("currency")) or "INR").upper(),
        notes=clean_str(payload.get("notes")),
        is_active=parse_bool(payload.get("is_active"), default=True),
        created_by_user_id=user.id,
    )
    s.add(row)
    s.flush()
    record_event(
        s,
        actor=user,
        action="hotel_pricing.create",
        entity_type="HotelPricing",
        entity_id=str(row.id),
        metadata={"hotel_id": row.hotel_id, "start": iso(row.start_date), "end": iso(row.end_date)},
    )
    return row


def validate_transport_pricing_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if parse_int(payload.get("location_id")) is None:
        errors.append("Location is required.")
    if parse_int(payload.get("vehicle_type_id")) is None:
        errors.append("Vehicle type is required.")
    _validate_date_range(payload, errors)
    price = parse_decimal(payload.get("price"))
    if price is None or price < 0:
        errors.append("Price must be a non-negative number.")
    ttype = (payload.get("transport_type") or "PerDay").strip()
    if ttype not in TRANSPORT_PRICING_TYPES:
        errors.append(f"Invalid transport type. Must be one of: {', '.join(TRANSPORT_PRICING_TYPES)}")
    return errors


def serialize_transport_pricing(p: TransportPricing) -> dict:
    return {
        "id": p.id,
        "location_id": p.location_id,
        "vehicle_type_id": p.vehicle_type_id,
        "vehicle_type": p.vehicle_type.name if p.vehicle_type else None,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "price": money(p.price),
        "transport_type": p.transport_type,
        "is_active": p.is_active,
    }


def create_transport_pricing(s: "Session", payload: dict, user: "User") -> TransportPricing:
    row = TransportPricing(
        location_id=parse_int(payload.get("location_id")),
        vehicle_type_id=parse_int(payload.get("vehicle_type_id")),
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        price=parse_decimal(payload.get("price")),
        transport_type=(payload.get("transport_type") or "PerDay").strip(),
        description=clean_str(payload.get("description")),
        is_active=parse_bool(payload.get("is_active"), default=True),
    )
    s.add(row)
    s.flush()
    record_event(s, actor=user, action="transport_pricing.create", entity_type="TransportPricing", entity_id=str(row.id))
    return row


def deactivate_pricing(s: "Session", row: HotelPricing | TransportPricing, user: "User", reason: str | None = None) -> None:
    """Rates are soft-deleted so old quotes can still be explained."""
    row.is_active = False
    record_event(
        s,
        actor=user,
        action=f"{row.__tablename__}.deactivate",
        entity_type=type(row).__name__,
        entity_id=str(row.id),
        reason=reason,
    )


# ---------- Tour packages ----------
def validate_tour_package_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not clean_str(payload.get("name")):
        errors.append("Name is required.")
    if parse_int(payload.get("location_id")) is None:
        errors.append("Location is required.")
    for idx, period in enumerate(payload.get("pricing_periods") or [], start=1):
        sub: list[str] = []
        _validate_date_range(period, sub)
        errors.extend(f"Pricing period {idx}: {e}" for e in sub)
    return errors


def serialize_pricing_period(p: TourPackagePricing) -> dict:
    return {
        "id": p.id,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "meal_plan_id": p.meal_plan_id,
        "meal_plan": p.meal_plan.code if p.meal_plan else None,
        "number_of_rooms": p.number_of_rooms,
        "description": p.description,
        "is_active": p.is_active,
        "components": [
            {
                "id": c.id,
                "pricing_attribute_id": c.pricing_attribute_id,
                "name": c.pricing_attribute.name if c.pricing_attribute else None,
                "price": c.price,
                "description": c.description,
            }
            for c in p.components
        ],
    }


def serialize_tour_package(tp: TourPackage, *, include_pricing: bool = False) -> dict:
    out = {
        "id": tp.id,
        "name": tp.name,
        "location_id": tp.location_id,
        "location": tp.location.label if tp.location else None,
        "tour_package_type": tp.tour_package_type,
        "num_days_night": tp.num_days_night,
        "price": money(tp.price),
        "summary": tp.summary,
        "highlights": tp.highlights or [],
        "inclusions": tp.inclusions or [],
        "exclusions": tp.exclusions or [],
        "image_urls": tp.image_urls or [],
        "is_archived": tp.is_archived,
    }
    if include_pricing:
        out["pricing_periods"] = [serialize_pricing_period(p) for p in tp.pricing_periods]
    return out


def _build_pricing_period(period: dict) -> TourPackagePricing:
    row = TourPackagePricing(
        start_date=parse_date(period.get("start_date")),
        end_date=parse_date(period.get("end_date")),
        meal_plan_id=parse_int(period.get("meal_plan_id")),
        number_of_rooms=parse_int(period.get("number_of_rooms"), default=1),
        description=clean_str(period.get("description")),
        is_active=parse_bool(period.get("is_active"), default=True),
    )
    for comp in period.get("components") or []:
        row.components.append(
            PricingComponent(
                pricing_attribute_id=parse_int(comp.get("pricing_attribute_id")),
                price=str(comp.get("price") if comp.get("price") not in (None, "") else "0"),
                description=clean_str(comp.get("description")),
            )
        )
    return row


def create_tour_package(s: "Session", payload: dict, user: "User") -> TourPackage:
    now = datetime.utcnow()
    tp = TourPackage(
        name=(payload.get("name") or "").strip(),
        location_id=parse_int(payload.get("location_id")),
        tour_package_type=clean_str(payload.get("tour_package_type")),
        num_days_night=clean_str(payload.get("num_days_night")),
        price=parse_decimal(payload.get("price")),
        summary=clean_str(payload.get("summary")),
        highlights=as_list(payload.get("highlights")),
        inclusions=as_list(payload.get("inclusions")),
        exclusions=as_list(payload.get("exclusions")),
        image_urls=as_list(payload.get("image_urls")),
        created_at=now,
        updated_at=now,
    )
    for period in payload.get("pricing_periods") or []:
        tp.pricing_periods.append(_build_pricing_period(period))
    s.add(tp)
    s.flush()
    record_event(
        s,
        actor=user,
        action="tour_package.create",
        entity_type="TourPackage",
        entity_id=str(tp.id),
        metadata={"name": tp.name, "pricing_periods": len(tp.pricing_periods)},
    )
    return tp


def add_pricing_period(s: "Session", tp: TourPackage, period: dict, user: "User") -> TourPackagePricing:
    row = _build_pricing_period(period)
    tp.pricing_periods.append(row)
    tp.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="tour_package.pricing_add",
        entity_type="TourPackagePricing",
        entity_id=str(row.id),
        metadata={"tour_package_id": tp.id, "start": iso(row.start_date), "end": iso(row.end_date)},
    )
    return row


# ---------- Seasonal periods ----------
def serialize_seasonal_period(p: SeasonalPeriod) -> dict:
    return {
        "id": p.id,
        "location_id": p.location_id,
        "season_type": p.season_type,
        "name": p.name,
        "start_month": p.start_month,
        "start_day": p.start_day,
        "end_month": p.end_month,
        "end_day": p.end_day,
        "description": p.description,
        "is_active": p.is_active,
        "label": format_seasonal_period(p),
    }


def create_seasonal_period(s: "Session", location: Location, payload: dict, user: "User") -> SeasonalPeriod:
    now = datetime.utcnow()
    period = SeasonalPeriod(
        season_type=payload["season_type"],
        name=payload["name"].strip(),
        start_month=int(payload["start_month"]),
        start_day=int(payload["start_day"]),
        end_month=int(payload["end_month"]),
        end_day=int(payload["end_day"]),
        description=clean_str(payload.get("description")),
        is_active=parse_bool(payload.get("is_active"), default=True),
        created_at=now,
        updated_at=now,
    )
    location.seasonal_periods.append(period)
    s.flush()
    record_event(
        s,
        actor=user,
        action="seasonal_period.create",
        entity_type="SeasonalPeriod",
        entity_id=str(period.id),
        metadata={"location_id": location.id, "name": period.name, "range": format_seasonal_period(period)},
    )
    return period


def update_seasonal_period(s: "Session", period: SeasonalPeriod, payload: dict, user: "User") -> list[str]:
    """Partial update. Returns validation errors (nothing is changed if any)."""
    merged = serialize_seasonal_period(period)
    merged.update({k: v for k, v in payload.items() if v is not None})
    errors = validate_seasonal_period(merged)
    if errors:
        return errors

    changes = {}
    for field in ("season_type", "name", "start_month", "start_day", "end_month", "end_day", "description", "is_active"):
        if field not in payload:
            continue
        new = payload[field]
        if field in ("start_month", "start_day", "end_month", "end_day"):
            new = int(new)
        elif field == "is_active":
            new = parse_bool(new, default=period.is_active)
        elif field == "name":
            new = (new or "").strip()
        if new != getattr(period, field):
            changes[field] = {"old": getattr(period, field), "new": new}
            setattr(period, field, new)
    period.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="seasonal_period.edit",
        entity_type="SeasonalPeriod",
        entity_id=str(period.id),
        metadata={"changes": changes},
    )
    return []


def apply_season_template(s: "Session", location: Location, template_key: str, user: "User") -> list[SeasonalPeriod]:
    """Replace a location's periods with one of the predefined templates."""
    from app.tourdesk.modules.masters.seasonal import SEASONAL_TEMPLATES

    template = SEASONAL_TEMPLATES[template_key]
    location.seasonal_periods.clear()
    s.flush()
    created = []
    for t in template:
        created.append(
            create_seasonal_period(
                s,
                location,
                {
                    "season_type": t.season_type,
                    "name": t.name,
                    "start_month": t.start[0],
                    "start_day": t.start[1],
                    "end_month": t.end[0],
                    "end_day": t.end[1],
                    "description": t.description,
                },
                user,
            )
        )
    return created
