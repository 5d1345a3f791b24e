from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from app.tourdesk.audit import record_event
from app.tourdesk.modules.hotel_pricing.parsers import HotelPricingRow, RowError
from app.tourdesk.modules.masters.models import Hotel, HotelPricing, MealPlan, OccupancyType, RoomType
from app.tourdesk.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User

logger = logging.getLogger(__name__)


def date_ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and end_a >= start_b


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class PreparedRow:
    row_number: int
    hotel_id: int
    room_type_id: int
    occupancy_type_id: int
    meal_plan_id: int | None
    start_date: date
    end_date: date
    price: Any
    is_active: bool
    notes: str | None

    @property
    def combination(self) -> tuple[int, int, int, int | None]:
        return (self.hotel_id, self.room_type_id, self.occupancy_type_id, self.meal_plan_id)


class _Lookups:
    def __init__(self, s: "Session"):
        hotels = s.query(Hotel).all()
        self.hotels_by_id = {h.id: h for h in hotels}
        self.hotels_by_name = {(_norm(h.name), _norm(h.location.label if h.location else "")): h for h in hotels}
        self.room_types = {_norm(r.name): r.id for r in s.query(RoomType).all()}
        self.occupancies = {_norm(o.name): o.id for o in s.query(OccupancyType).all()}
        self.meal_plans = {(m.code or "").strip().upper(): m.id for m in s.query(MealPlan).all()}

    def hotel_for(self, row: HotelPricingRow) -> Hotel | None:
        hotel = self.hotels_by_id.get(parse_int(row.hotel_id)) if row.hotel_id else None
        if hotel is None and (row.hotel_name or row.location_name):
            hotel = self.hotels_by_name.get((_norm(row.hotel_name), _norm(row.location_name)))
        return hotel


def prepare_rows(s: "Session", rows: list[HotelPricingRow]) -> tuple[list[PreparedRow], list[RowError], list[str]]:
    """Resolve names to ids; reject duplicates and warn on overlaps inside the upload."""
    lookups = _Lookups(s)
    prepared: list[PreparedRow] = []
    errors: list[RowError] = []
    warnings: list[str] = []
    seen: dict[tuple, int] = {}
    by_combination: dict[tuple, list[PreparedRow]] = {}

    for row in rows:
        row_errors: list[RowError] = []
        hotel = lookups.hotel_for(row)
        if hotel is None:
            row_errors.append(RowError(row.row_number, "Hotel could not be matched to database record", "hotel_id"))
        room_type_id = lookups.room_types.get(_norm(row.room_type_name))
        if room_type_id is None:
            row_errors.append(RowError(row.row_number, f'Room type "{row.room_type_name}" not found', "room_type_name"))
        occupancy_id = lookups.occupancies.get(_norm(row.occupancy_type_name))
        if occupancy_id is None:
            row_errors.append(
                RowError(row.row_number, f'Occupancy type "{row.occupancy_type_name}" not found', "occupancy_type_name")
            )
        meal_plan_id = None
        if row.meal_plan_code:
            meal_plan_id = lookups.meal_plans.get(row.meal_plan_code.strip().upper())
            if meal_plan_id is None:
                row_errors.append(
                    RowError(row.row_number, f'Meal plan code "{row.meal_plan_code}" not found', "meal_plan_code")
                )
        if row_errors:
            errors.extend(row_errors)
            continue

        p = PreparedRow(
            row_number=row.row_number,
            hotel_id=hotel.id,
            room_type_id=room_type_id,
            occupancy_type_id=occupancy_id,
            meal_plan_id=meal_plan_id,
            start_date=row.start_date,
            end_date=row.end_date,
            price=row.price,
            is_active=row.is_active,
            notes=row.notes,
        )
        key = p.combination + (p.start_date, p.end_date)
        if key in seen:
            errors.append(
                RowError(row.row_number, f"Duplicate pricing combination (matches row {seen[key]})", "start_date")
            )
            continue
        seen[key] = row.row_number

        earlier = by_combination.setdefault(p.combination, [])
        clash = next((e for e in earlier if date_ranges_overlap(e.start_date, e.end_date, p.start_date, p.end_date)), None)
        if clash is not None:
            warnings.append(
                f"Row {p.row_number} overlaps with row {clash.row_number} for the same hotel/room/occupancy combination in this upload."
            )
        earlier.append(p)
        prepared.append(p)

    return prepared, errors, warnings


def _existing_for(s: "Session", p: PreparedRow) -> list[HotelPricing]:
    q = s.query(HotelPricing).filter(
        HotelPricing.hotel_id == p.hotel_id,
        HotelPricing.room_type_id == p.room_type_id,
        HotelPricing.occupancy_type_id == p.occupancy_type_id,
        HotelPricing.is_active.is_(True),
    )
    if p.meal_plan_id is None:
        q = q.filter(HotelPricing.meal_plan_id.is_(None))
    else:
        q = q.filter(HotelPricing.meal_plan_id == p.meal_plan_id)
    return q.all()


def import_hotel_pricing(s: "Session", rows: list[HotelPricingRow], user: "User", *, dry_run: bool = False, file_name: str | None = None) -> dict:
    """
    Upsert parsed rows into hotel_pricing.

    A row with the exact same combination and date range updates the existing
    price; anything else is inserted. Overlaps with existing active pricing are
    returned as warnings. Nothing is written when there are errors or dry_run is set.
    """
    prepared, errors, warnings = prepare_rows(s, rows)
    summary: dict[str, Any] = {
        "processed": len(prepared),
        "created": 0,
        "updated": 0,
        "dry_run": dry_run,
        "errors": [{"row": e.row_number, "field": e.field, "message": e.message} for e in errors],
        "warnings": warnings,
    }
    if errors:
        return summary

    for p in prepared:
        existing = _existing_for(s, p)
        same = next((e for e in existing if e.start_date == p.start_date and e.end_date == p.end_date), None)
        for e in existing:
            if e is same:
                continue
            if date_ranges_overlap(p.start_date, p.end_date, e.start_date, e.end_date):
                msg = f"Row {p.row_number} overlaps existing pricing ({e.start_date.isoformat()} → {e.end_date.isoformat()})."
                if msg not in warnings:
                    warnings.append(msg)
        if dry_run:
            summary["updated" if same else "created"] += 1
            continue
        if same is not None:
            same.price = p.price
            same.is_active = p.is_active
            if p.notes:
                same.notes = p.notes
            summary["updated"] += 1
        else:
            s.add(
                HotelPricing(
                    hotel_id=p.hotel_id,
                    room_type_id=p.room_type_id,
                    occupancy_type_id=p.occupancy_type_id,
                    meal_plan_id=p.meal_plan_id,
                    start_date=p.start_date,
                    end_date=p.end_date,
                    price=p.price,
                    notes=p.notes,
                    is_active=p.is_active,
                    created_by_user_id=user.id,
                )
            )
            summary["created"] += 1

    if not dry_run:
        s.flush()
        record_event(
            s,
            actor=user,
            action="hotel_pricing.import",
            entity_type="HotelPricing",
            entity_id=file_name or "upload",
            metadata={k: summary[k] for k in ("processed", "created", "updated")} | {"warnings": len(warnings)},
        )
    logger.info(
        "Hotel pricing import file=%s dry_run=%s processed=%s created=%s updated=%s",
        file_name,
        dry_run,
        summary["processed"],
        summary["created"],
        summary["updated"],
    )
    return summary
