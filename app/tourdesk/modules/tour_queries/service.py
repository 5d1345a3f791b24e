from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.tourdesk.audit import record_event
from app.tourdesk.constants import POLICY_FIELDS
from app.tourdesk.utils import as_list, clean_str, iso, money, parse_bool, parse_date, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tourdesk.models import User
    from app.tourdesk.modules.tour_queries.models import Itinerary, TourPackageQuery

logger = logging.getLogger(__name__)


# column -> accepted payload keys (API clients send camelCase)
SCALAR_FIELDS: dict[str, tuple[str, ...]] = {
    "inquiry_id": ("inquiryId",),
    "tour_package_query_number": ("tourPackageQueryNumber",),
    "tour_package_query_name": ("tourPackageQueryName",),
    "tour_package_query_type": ("tourPackageQueryType",),
    "customer_name": ("customerName",),
    "customer_number": ("customerNumber",),
    "num_days_night": ("numDaysNight",),
    "period": ("period",),
    "tour_highlights": ("tour_highlights", "tourHighlights"),
    "transport": ("transport",),
    "pickup_location": ("pickup_location", "pickupLocation"),
    "drop_location": ("drop_location", "dropLocation"),
    "num_adults": ("numAdults",),
    "num_child_5_to_12": ("numChild5to12",),
    "num_child_0_to_5": ("numChild0to5",),
    "price": ("price",),
    "price_per_adult": ("pricePerAdult",),
    "price_per_child_or_extra_bed": ("pricePerChildOrExtraBed",),
    "price_per_child_5_to_12_no_bed": ("pricePerChild5to12YearsNoBed",),
    "price_per_child_with_seat_below_5": ("pricePerChildwithSeatBelow5Years",),
    "remarks": ("remarks",),
    "disclaimer": ("disclaimer",),
    "assigned_to": ("assignedTo",),
    "assigned_to_mobile_number": ("assignedToMobileNumber",),
    "assigned_to_email": ("assignedToEmail",),
    "associate_partner_id": ("associatePartnerId",),
    "selected_template_type": ("selectedTemplateType",),
}

POLICY_ALIASES: dict[str, tuple[str, ...]] = {
    "inclusions": ("inclusions",),
    "exclusions": ("exclusions",),
    "important_notes": ("importantNotes",),
    "payment_policy": ("paymentPolicy",),
    "useful_tip": ("usefulTip",),
    "cancellation_policy": ("cancellationPolicy",),
    "airline_cancellation_policy": ("airlineCancellationPolicy",),
    "terms_conditions": ("termsconditions", "termsConditions"),
    "kitchen_group_policy": ("kitchenGroupPolicy",),
}


def _get(payload: dict, column: str, *aliases: str, default: Any = None) -> Any:
    for key in (column, *aliases):
        if key in payload:
            return payload[key]
    return default


def _has(payload: dict, column: str, *aliases: str) -> bool:
    return any(k in payload for k in (column, *aliases))


def normalize_policy(value: Any) -> list:
    """Policy fields are stored as lists; a single string becomes a one-item list."""
    return as_list(value)


def validate_tour_query_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if parse_int(_get(payload, "location_id", "locationId")) is None:
        errors.append("Location id is required")
    try:
        start = parse_date(_get(payload, "tour_starts_from", "tourStartsFrom"))
        end = parse_date(_get(payload, "tour_ends_on", "tourEndsOn"))
    except ValueError:
        errors.append("Tour dates must be ISO dates (YYYY-MM-DD).")
    else:
        if start and end and start > end:
            errors.append("Tour start date must be on or before the end date.")
    for idx, it in enumerate(_get(payload, "itineraries", default=None) or [], start=1):
        if not isinstance(it, dict):
            errors.append(f"Itinerary {idx} must be an object.")
    return errors


# ---------- Nested builders ----------
def _build_itinerary(data: dict) -> "Itinerary":
    from app.tourdesk.modules.tour_queries.models import Activity, Itinerary, RoomAllocation, TransportDetail

    it = Itinerary(
        day_number=parse_int(_get(data, "day_number", "dayNumber")),
        days=clean_str(_get(data, "days")),
        itinerary_title=clean_str(_get(data, "itinerary_title", "itineraryTitle")),
        itinerary_description=clean_str(_get(data, "itinerary_description", "itineraryDescription")),
        location_id=parse_int(_get(data, "location_id", "locationId")),
        hotel_id=parse_int(_get(data, "hotel_id", "hotelId")),
        number_of_rooms=clean_str(_get(data, "number_of_rooms", "numberofRooms")),
        room_category=clean_str(_get(data, "room_category", "roomCategory")),
        meals_included=clean_str(_get(data, "meals_included", "mealsIncluded")),
        image_urls=[img.get("url") if isinstance(img, dict) else img for img in as_list(_get(data, "itinerary_images", "itineraryImages"))],
    )
    for act in _get(data, "activities", default=None) or []:
        it.activities.append(
            Activity(
                activity_title=clean_str(_get(act, "activity_title", "activityTitle")),
                activity_description=clean_str(_get(act, "activity_description", "activityDescription")),
                location_id=parse_int(_get(act, "location_id", "locationId")),
                image_urls=[img.get("url") if isinstance(img, dict) else img for img in as_list(_get(act, "activity_images", "activityImages"))],
            )
        )
    for ra in _get(data, "room_allocations", "roomAllocations", default=None) or []:
        it.room_allocations.append(
            RoomAllocation(
                room_type_id=parse_int(_get(ra, "room_type_id", "roomTypeId")),
                occupancy_type_id=parse_int(_get(ra, "occupancy_type_id", "occupancyTypeId")),
                meal_plan_id=parse_int(_get(ra, "meal_plan_id", "mealPlanId")),
                quantity=parse_int(_get(ra, "quantity"), default=1),
                guest_names=clean_str(_get(ra, "guest_names", "guestNames")),
                voucher_number=clean_str(_get(ra, "voucher_number", "voucherNumber")),
                custom_room_type=clean_str(_get(ra, "custom_room_type", "customRoomType")),
            )
        )
    for td in _get(data, "transport_details", "transportDetails", default=None) or []:
        it.transport_details.append(
            TransportDetail(
                vehicle_type_id=parse_int(_get(td, "vehicle_type_id", "vehicleTypeId")),
                quantity=parse_int(_get(td, "quantity"), default=1),
                is_airport_pickup_required=parse_bool(_get(td, "is_airport_pickup_required", "isAirportPickupRequired")),
                is_airport_drop_required=parse_bool(_get(td, "is_airport_drop_required", "isAirportDropRequired")),
                pickup_location=clean_str(_get(td, "pickup_location", "pickupLocation")),
                drop_location=clean_str(_get(td, "drop_location", "dropLocation")),
                description=clean_str(_get(td, "description")),
            )
        )
    return it


def _replace_images(q: "TourPackageQuery", images: Any) -> None:
    from app.tourdesk.modules.tour_queries.models import QueryImage

    q.images.clear()
    for img in as_list(images):
        url = img.get("url") if isinstance(img, dict) else img
        if url:
            q.images.append(QueryImage(url=str(url)))


def _replace_flights(q: "TourPackageQuery", flights: Any) -> None:
    from app.tourdesk.modules.tour_queries.models import FlightDetail

    q.flight_details.clear()
    for fd in as_list(flights):
        q.flight_details.append(
            FlightDetail(
                flight_date=clean_str(_get(fd, "date", "flight_date")),
                flight_name=clean_str(_get(fd, "flight_name", "flightName")),
                flight_number=clean_str(_get(fd, "flight_number", "flightNumber")),
                from_place=clean_str(_get(fd, "from", "from_place")),
                to_place=clean_str(_get(fd, "to", "to_place")),
                departure_time=clean_str(_get(fd, "departure_time", "departureTime")),
                arrival_time=clean_str(_get(fd, "arrival_time", "arrivalTime")),
                flight_duration=clean_str(_get(fd, "flight_duration", "flightDuration")),
            )
        )


def _replace_itineraries(q: "TourPackageQuery", itineraries: Any) -> None:
    q.itineraries.clear()
    for it in as_list(itineraries):
        q.itineraries.append(_build_itinerary(it))


def _apply_scalars(q: "TourPackageQuery", payload: dict, *, partial: bool) -> dict:
    changes: dict = {}

    def _set(field: str, new: Any) -> None:
        old = getattr(q, field)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(q, field, new)

    for field, aliases in SCALAR_FIELDS.items():
        if partial and not _has(payload, field, *aliases):
            continue
        raw = _get(payload, field, *aliases)
        _set(field, clean_str(raw))

    for field, aliases in POLICY_ALIASES.items():
        if partial and not _has(payload, field, *aliases):
            continue
        _set(field, normalize_policy(_get(payload, field, *aliases)))

    if not partial or _has(payload, "location_id", "locationId"):
        _set("location_id", parse_int(_get(payload, "location_id", "locationId")))
    if not partial or _has(payload, "tour_starts_from", "tourStartsFrom"):
        _set("tour_starts_from", parse_date(_get(payload, "tour_starts_from", "tourStartsFrom")))
    if not partial or _has(payload, "tour_ends_on", "tourEndsOn"):
        _set("tour_ends_on", parse_date(_get(payload, "tour_ends_on", "tourEndsOn")))
    if not partial or _has(payload, "total_price", "totalPrice"):
        _set("total_price", parse_decimal(_get(payload, "total_price", "totalPrice")))
    if not partial or _has(payload, "pricing_section", "pricingSection"):
        _set("pricing_section", as_list(_get(payload, "pricing_section", "pricingSection")))
    if not partial or _has(payload, "selected_template_id", "selectedTemplateId"):
        _set("selected_template_id", parse_int(_get(payload, "selected_template_id", "selectedTemplateId")))
    if not partial or _has(payload, "selected_meal_plan_id", "selectedMealPlanId"):
        _set("selected_meal_plan_id", parse_int(_get(payload, "selected_meal_plan_id", "selectedMealPlanId")))
    if not partial or _has(payload, "occupancy_selections", "occupancySelections"):
        _set("occupancy_selections", as_list(_get(payload, "occupancy_selections", "occupancySelections")))
    for field, alias in (("is_featured", "isFeatured"), ("is_archived", "isArchived")):
        if not partial or _has(payload, field, alias):
            _set(field, parse_bool(_get(payload, field, alias)))

    # Dates are not JSON serializable in the audit payload.
    for k, v in changes.items():
        for side in ("old", "new"):
            if isinstance(v[side], date):
                v[side] = v[side].isoformat()
    return changes


def next_query_number(s: "Session", today: date | None = None) -> str:
    """TPQ-YYYYMMDD-NNNN, sequential per day."""
    from app.tourdesk.modules.tour_queries.models import TourPackageQuery

    today = today or date.today()
    prefix = f"TPQ-{today.strftime('%Y%m%d')}-"
    count = (
        s.query(TourPackageQuery)
        .filter(TourPackageQuery.tour_package_query_number.like(f"{prefix}%"))
        .count()
    )
    return f"{prefix}{count + 1:04d}"


def create_tour_query(s: "Session", payload: dict, user: "User") -> "TourPackageQuery":
    from app.tourdesk.modules.tour_queries.models import TourPackageQuery

    now = datetime.utcnow()
    q = TourPackageQuery(created_at=now, updated_at=now, created_by_user_id=user.id, updated_by_user_id=user.id)
    _apply_scalars(q, payload, partial=False)
    if not q.tour_package_query_number:
        q.tour_package_query_number = next_query_number(s)
    _replace_images(q, _get(payload, "images"))
    _replace_flights(q, _get(payload, "flight_details", "flightDetails"))
    _replace_itineraries(q, _get(payload, "itineraries"))
    s.add(q)
    s.flush()

    record_event(
        s,
        actor=user,
        action="tour_query.create",
        entity_type="TourPackageQuery",
        entity_id=str(q.id),
        metadata={
            "number": q.tour_package_query_number,
            "customer": q.customer_name,
            "itineraries": len(q.itineraries),
        },
    )
    logger.info("Created tour package query id=%s number=%s", q.id, q.tour_package_query_number)
    return q


def update_tour_query(s: "Session", q: "TourPackageQuery", payload: dict, user: "User") -> "TourPackageQuery":
    """
    Scalars present in the payload are updated; images, flights and itineraries
    are replaced wholesale when their key is present.
    """
    changes = _apply_scalars(q, payload, partial=True)
    if "location_id" in changes:
        s.expire(q, ["location"])
    replaced = []
    if "images" in payload:
        _replace_images(q, payload["images"])
        replaced.append("images")
    if _has(payload, "flight_details", "flightDetails"):
        _replace_flights(q, _get(payload, "flight_details", "flightDetails"))
        replaced.append("flight_details")
    if "itineraries" in payload:
        _replace_itineraries(q, payload["itineraries"])
        replaced.append("itineraries")
    if replaced:
        changes["replaced"] = replaced

    q.updated_at = datetime.utcnow()
    q.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="tour_query.edit",
        entity_type="TourPackageQuery",
        entity_id=str(q.id),
        metadata={"number": q.tour_package_query_number, "changes": changes},
    )
    return q


def delete_tour_query(s: "Session", q: "TourPackageQuery", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="tour_query.delete",
        entity_type="TourPackageQuery",
        entity_id=str(q.id),
        metadata={"number": q.tour_package_query_number, "customer": q.customer_name},
    )
    s.delete(q)


def add_query_image(s: "Session", q: "TourPackageQuery", file_bytes: bytes, filename: str, content_type: str, user: "User"):
    """Upload an image through the configured storage and attach it to the query."""
    from flask import current_app
    from app.tourdesk.storage import build_storage_key, storage_from_config
    from app.tourdesk.modules.tour_queries.models import QueryImage

    storage = storage_from_config(current_app.config)
    key = build_storage_key("tour-queries", q.id, filename)
    storage.put_bytes(key, file_bytes, content_type=content_type)
    img = QueryImage(url=storage.url_for(key), storage_key=key)
    q.images.append(img)
    s.flush()
    record_event(
        s,
        actor=user,
        action="tour_query.image_upload",
        entity_type="QueryImage",
        entity_id=str(img.id),
        metadata={"tour_package_query_id": q.id, "storage_key": key, "size_bytes": len(file_bytes)},
    )
    return img


# ---------- Serialization ----------
def serialize_itinerary(it: "Itinerary") -> dict:
    return {
        "id": it.id,
        "day_number": it.day_number,
        "days": it.days,
        "itinerary_title": it.itinerary_title,
        "itinerary_description": it.itinerary_description,
        "location_id": it.location_id,
        "hotel_id": it.hotel_id,
        "hotel": it.hotel.name if it.hotel else None,
        "number_of_rooms": it.number_of_rooms,
        "room_category": it.room_category,
        "meals_included": it.meals_included,
        "image_urls": it.image_urls or [],
        "activities": [
            {
                "id": a.id,
                "activity_title": a.activity_title,
                "activity_description": a.activity_description,
                "location_id": a.location_id,
                "image_urls": a.image_urls or [],
            }
            for a in it.activities
        ],
        "room_allocations": [
            {
                "id": r.id,
                "room_type_id": r.room_type_id,
                "occupancy_type_id": r.occupancy_type_id,
                "meal_plan_id": r.meal_plan_id,
                "quantity": r.quantity,
                "guest_names": r.guest_names,
                "voucher_number": r.voucher_number,
                "custom_room_type": r.custom_room_type,
            }
            for r in it.room_allocations
        ],
        "transport_details": [
            {
                "id": t.id,
                "vehicle_type_id": t.vehicle_type_id,
                "quantity": t.quantity,
                "is_airport_pickup_required": t.is_airport_pickup_required,
                "is_airport_drop_required": t.is_airport_drop_required,
                "pickup_location": t.pickup_location,
                "drop_location": t.drop_location,
                "description": t.description,
            }
            for t in it.transport_details
        ],
    }


def serialize_tour_query(q: "TourPackageQuery", *, detail: bool = True) -> dict:
    out: dict[str, Any] = {"id": q.id}
    for field in SCALAR_FIELDS:
        out[field] = getattr(q, field)
    out.update(
        {
            "location_id": q.location_id,
            "location": q.location.label if q.location else None,
            "tour_starts_from": iso(q.tour_starts_from),
            "tour_ends_on": iso(q.tour_ends_on),
            "total_price": money(q.total_price),
            "selected_template_id": q.selected_template_id,
            "selected_meal_plan_id": q.selected_meal_plan_id,
            "is_featured": q.is_featured,
            "is_archived": q.is_archived,
            "created_at": iso(q.created_at),
            "updated_at": iso(q.updated_at),
        }
    )
    if not detail:
        return out
    for field in POLICY_FIELDS:
        out[field] = getattr(q, field) or []
    out.update(
        {
            "pricing_section": q.pricing_section or [],
            "occupancy_selections": q.occupancy_selections or [],
            "images": [{"id": i.id, "url": i.url} for i in q.images],
            "flight_details": [
                {
                    "id": f.id,
                    "date": f.flight_date,
                    "flight_name": f.flight_name,
                    "flight_number": f.flight_number,
                    "from": f.from_place,
                    "to": f.to_place,
                    "departure_time": f.departure_time,
                    "arrival_time": f.arrival_time,
                    "flight_duration": f.flight_duration,
                }
                for f in q.flight_details
            ],
            "itineraries": [serialize_itinerary(it) for it in q.itineraries],
        }
    )
    return out
