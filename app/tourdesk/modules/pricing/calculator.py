"""
Hotel + transport cost calculator for a draft itinerary.

Rates come from the hotel_pricing / transport_pricing tables. For each room
allocation the active rate whose date range overlaps the tour wins, latest
start date first. Markup is applied once on the grand total.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.tourdesk.modules.masters.models import (
    HotelPricing,
    MealPlan,
    OccupancyType,
    RoomType,
    TransportPricing,
)
from app.tourdesk.utils import parse_date, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class PricingError(ValueError):
    pass


@dataclass
class RoomLine:
    room_type_id: int
    occupancy_type_id: int
    meal_plan_id: int | None
    quantity: int


@dataclass
class TransportLine:
    vehicle_type_id: int
    quantity: int = 1


@dataclass
class PricingItinerary:
    day_number: int
    location_id: int | None
    hotel_id: int | None
    room_allocations: list[RoomLine] = field(default_factory=list)
    transport_details: list[TransportLine] = field(default_factory=list)


@dataclass
class PricingRequest:
    tour_starts_from: date
    tour_ends_on: date
    itineraries: list[PricingItinerary]
    markup: Decimal = Decimal("0")
    include_names: bool = False


def _rooms_from(raw: list[dict] | None) -> list[RoomLine]:
    lines = []
    for r in raw or []:
        lines.append(
            RoomLine(
                room_type_id=parse_int(r.get("roomTypeId", r.get("room_type_id"))),
                occupancy_type_id=parse_int(r.get("occupancyTypeId", r.get("occupancy_type_id"))),
                meal_plan_id=parse_int(r.get("mealPlanId", r.get("meal_plan_id"))),
                quantity=parse_int(r.get("quantity"), default=0),
            )
        )
    return lines


def _transport_from(raw: list[dict] | None) -> list[TransportLine]:
    lines = []
    for t in raw or []:
        lines.append(
            TransportLine(
                vehicle_type_id=parse_int(t.get("vehicleTypeId", t.get("vehicle_type_id"))),
                quantity=parse_int(t.get("quantity"), default=1),
            )
        )
    return lines


def parse_pricing_request(payload: dict) -> PricingRequest:
    """
    Build a PricingRequest from the JSON body of /api/pricing/calculate.
    Raises PricingError("Missing required fields") when dates or itineraries are absent.
    """
    try:
        start = parse_date(payload.get("tourStartsFrom"))
        end = parse_date(payload.get("tourEndsOn"))
    except ValueError as e:
        raise PricingError(f"Invalid tour dates: {e}") from e
    itineraries_raw = payload.get("itineraries") or []
    if not start or not end or not itineraries_raw:
        raise PricingError("Missing required fields")

    itineraries = []
    for it in itineraries_raw:
        hotel_id = parse_int(it.get("hotelId"))
        location_id = parse_int(it.get("locationId"))
        if hotel_id is None or location_id is None:
            logger.debug("Skipping itinerary without hotel/location: day=%s", it.get("dayNumber"))
            continue
        itineraries.append(
            PricingItinerary(
                day_number=parse_int(it.get("dayNumber"), default=0),
                location_id=location_id,
                hotel_id=hotel_id,
                room_allocations=_rooms_from(it.get("roomAllocations")),
                transport_details=_transport_from(it.get("transportDetails")),
            )
        )
    markup = parse_decimal(payload.get("markup"), default=Decimal("0"))
    if markup is None:
        raise PricingError("Markup must be a finite number")
    return PricingRequest(
        tour_starts_from=start,
        tour_ends_on=end,
        itineraries=itineraries,
        markup=markup,
        include_names=bool(payload.get("includeNames")),
    )


def find_hotel_rate(s: "Session", *, hotel_id: int, room: RoomLine, start: date, end: date) -> HotelPricing | None:
    stmt = (
        select(HotelPricing)
        .where(
            HotelPricing.hotel_id == hotel_id,
            HotelPricing.room_type_id == room.room_type_id,
            HotelPricing.occupancy_type_id == room.occupancy_type_id,
            HotelPricing.is_active.is_(True),
            HotelPricing.start_date <= end,
            HotelPricing.end_date >= start,
        )
    )
    # no meal plan on the room line means any meal plan
    if room.meal_plan_id is not None:
        stmt = stmt.where(HotelPricing.meal_plan_id == room.meal_plan_id)
    stmt = stmt.order_by(HotelPricing.start_date.desc(), HotelPricing.id.desc()).limit(1)
    return s.execute(stmt).scalars().first()


def find_transport_rate(s: "Session", *, location_id: int, vehicle_type_id: int, start: date, end: date) -> TransportPricing | None:
    stmt = (
        select(TransportPricing)
        .where(
            TransportPricing.location_id == location_id,
            TransportPricing.vehicle_type_id == vehicle_type_id,
            TransportPricing.is_active.is_(True),
            TransportPricing.start_date <= end,
            TransportPricing.end_date >= start,
        )
        .order_by(TransportPricing.start_date.desc(), TransportPricing.id.desc())
        .limit(1)
    )
    return s.execute(stmt).scalars().first()


def _name_maps(s: "Session") -> tuple[dict[int, str], dict[int, str], dict[int, str]]:
    room_types = {r.id: r.name for r in s.query(RoomType).filter(RoomType.is_active.is_(True))}
    occupancies = {o.id: o.name for o in s.query(OccupancyType).filter(OccupancyType.is_active.is_(True))}
    meal_plans = {m.id: m.name for m in s.query(MealPlan).filter(MealPlan.is_active.is_(True))}
    return room_types, occupancies, meal_plans


def _num(value: Decimal) -> float | int:
    """Whole amounts go out as ints, the rest as floats."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def calculate_pricing(s: "Session", req: PricingRequest) -> dict[str, Any]:
    start, end = req.tour_starts_from, req.tour_ends_on
    names = _name_maps(s) if req.include_names else None

    accommodation_total = Decimal("0")
    transport_total = Decimal("0")
    days: list[dict] = []
    transport_rows: list[dict] = []

    for it in req.itineraries:
        day_accommodation = Decimal("0")
        day_transport = Decimal("0")
        room_breakdown = []
        day_transport_rows = []

        if it.hotel_id is not None:
            for room in it.room_allocations:
                if not room.quantity or room.quantity <= 0:
                    continue
                rate = find_hotel_rate(s, hotel_id=it.hotel_id, room=room, start=start, end=end)
                if rate is None:
                    continue
                cost = Decimal(rate.price) * room.quantity
                detail = {
                    "roomTypeId": room.room_type_id,
                    "occupancyTypeId": room.occupancy_type_id,
                    "mealPlanId": room.meal_plan_id,
                    "quantity": room.quantity,
                    "pricePerNight": _num(Decimal(rate.price)),
                    "totalCost": _num(cost),
                }
                if names is not None:
                    room_types, occupancies, meal_plans = names
                    detail["roomTypeName"] = room_types.get(room.room_type_id)
                    detail["occupancyTypeName"] = occupancies.get(room.occupancy_type_id)
                    detail["mealPlanName"] = meal_plans.get(room.meal_plan_id)
                room_breakdown.append(detail)
                day_accommodation += cost

        if it.location_id is not None:
            for t in it.transport_details:
                if t.vehicle_type_id is None:
                    continue
                rate = find_transport_rate(s, location_id=it.location_id, vehicle_type_id=t.vehicle_type_id, start=start, end=end)
                if rate is None or rate.vehicle_type is None:
                    continue
                # PerDay and PerTrip rates are both charged once per itinerary day.
                cost = Decimal(rate.price) * t.quantity
                day_transport += cost
                row = {
                    "day": it.day_number,
                    "vehicleTypeId": t.vehicle_type_id,
                    "vehicleType": rate.vehicle_type.name,
                    "quantity": t.quantity,
                    "pricePerUnit": _num(Decimal(rate.price)),
                    "pricingType": rate.transport_type,
                    "totalCost": _num(cost),
                }
                day_transport_rows.append(row)
                transport_rows.append(row)

        days.append(
            {
                "day": it.day_number,
                "accommodationCost": _num(day_accommodation),
                "transportCost": _num(day_transport),
                "totalCost": _num(day_accommodation + day_transport),
                "roomBreakdown": room_breakdown,
                "transportDetails": day_transport_rows,
            }
        )
        accommodation_total += day_accommodation
        transport_total += day_transport

    base = accommodation_total + transport_total
    markup_amount = base * req.markup / Decimal("100")
    total = (base + markup_amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return {
        "totalCost": int(total),
        "basePrice": _num(base),
        "appliedMarkup": {"percentage": _num(req.markup), "amount": _num(markup_amount)},
        "breakdown": {"accommodation": _num(accommodation_total), "transport": _num(transport_total)},
        "itineraryBreakdown": days,
        "transportDetails": transport_rows,
        "calculatedAt": datetime.utcnow().isoformat() + "Z",
    }


def calculate_variant_pricing(
    s: "Session",
    *,
    variant_id: str,
    variant_room_allocations: dict | None,
    variant_transport_details: dict | None,
    itineraries: list[dict],
    tour_starts_from: date,
    tour_ends_on: date,
    markup: Decimal = Decimal("0"),
) -> dict[str, Any]:
    """
    Price one package variant. Variant allocations are keyed
    {variant_id: {itinerary_id or "day-N": [rows]}}.
    """
    rooms_by_itinerary = (variant_room_allocations or {}).get(variant_id) or {}
    transport_by_itinerary = (variant_transport_details or {}).get(variant_id) or {}

    priced = []
    for it in itineraries:
        day_number = parse_int(it.get("dayNumber"), default=0)
        key = str(it.get("id") or f"day-{day_number}")
        priced.append(
            PricingItinerary(
                day_number=day_number,
                location_id=parse_int(it.get("locationId")),
                hotel_id=parse_int(it.get("hotelId")),
                room_allocations=_rooms_from(rooms_by_itinerary.get(key)),
                transport_details=_transport_from(transport_by_itinerary.get(key)),
            )
        )
    req = PricingRequest(
        tour_starts_from=tour_starts_from,
        tour_ends_on=tour_ends_on,
        itineraries=priced,
        markup=markup,
        include_names=True,
    )
    return calculate_pricing(s, req)


def format_currency(amount: Decimal | float | int, *, decimals: int = 0) -> str:
    """Indian grouping (12,34,567) with the rupee sign."""
    value = Decimal(str(amount)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    negative = value < 0
    whole, _, frac = f"{abs(value):.{decimals}f}".partition(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    out = f"₹{whole}" + (f".{frac}" if decimals else "")
    return f"-{out}" if negative else out
