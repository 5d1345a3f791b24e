"""
Tour package pricing matcher.

Picks the single TourPackagePricing period that fits a query (dates, meal
plan, number of Double pax) and turns its components into a pricing section
and a total for the selected occupancies.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.tourdesk.audit import record_event
from app.tourdesk.constants import PAX_PER_UNIT, TEMPLATE_TYPE_TOUR_PACKAGE
from app.tourdesk.modules.masters.models import OccupancyType, PricingComponent, TourPackage, TourPackagePricing
from app.tourdesk.modules.masters.service import serialize_pricing_period
from app.tourdesk.modules.pricing.calculator import PricingError
from app.tourdesk.utils import parse_date, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User
    from app.tourdesk.modules.tour_queries.models import TourPackageQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccupancySelection:
    occupancy_type_id: int
    name: str
    count: int

    @property
    def lname(self) -> str:
        return self.name.lower()

    @property
    def is_double(self) -> bool:
        return "double" in self.lname

    @property
    def pax_per_unit(self) -> int:
        for keyword, pax in PAX_PER_UNIT.items():
            if keyword in self.lname:
                return pax
        return 1


def pax_per_unit(occupancy_name: str) -> int:
    return OccupancySelection(0, occupancy_name or "", 0).pax_per_unit


def total_pax(selections: list[OccupancySelection]) -> int:
    return sum(sel.count * sel.pax_per_unit for sel in selections)


def pricing_pax(selections: list[OccupancySelection]) -> int:
    """Only Double selections count towards the pax used to pick a period."""
    return sum(sel.count * sel.pax_per_unit for sel in selections if sel.is_double)


def _price(comp: PricingComponent) -> Decimal:
    return parse_decimal(comp.price, default=Decimal("0")) or Decimal("0")


def _comp_name(comp: PricingComponent) -> str:
    return (comp.pricing_attribute.name if comp.pricing_attribute else "").lower()


def _display_name(comp: PricingComponent, default: str) -> str:
    return (comp.pricing_attribute.name if comp.pricing_attribute else None) or default


def _is_cnb(name: str) -> bool:
    return "cnb" in name or ("child" in name and "no bed" in name)


def _is_extra_bed(name: str) -> bool:
    return "extra bed" in name or "extra mattress" in name


def _is_child_with_bed(name: str) -> bool:
    return "child" in name and "with bed" in name


def _keyword_match(occupancy: str, comp: str) -> bool | None:
    """
    True/False when the occupancy belongs to a known keyword family,
    None when it doesn't and the caller has to fall back.
    """
    if _is_cnb(occupancy):
        return _is_cnb(comp)
    if _is_extra_bed(occupancy):
        return "extra bed" in comp or "extrabed" in comp or "mattress" in comp
    if _is_child_with_bed(occupancy):
        return _is_child_with_bed(comp)
    if "infant" in occupancy:
        return "infant" in comp
    return None


def component_for_listing(sel: OccupancySelection, components: list[PricingComponent]) -> PricingComponent | None:
    """Listing fallback: any occupancy word longer than 2 characters."""
    for comp in components:
        name = _comp_name(comp)
        matched = _keyword_match(sel.lname, name)
        if matched is None:
            matched = any(len(w) > 2 and w in name for w in re.split(r"\s+", sel.lname))
        if matched:
            return comp
    return None


def component_for_total(sel: OccupancySelection, components: list[PricingComponent]) -> PricingComponent | None:
    """Total fallback: the full occupancy name."""
    for comp in components:
        name = _comp_name(comp)
        matched = _keyword_match(sel.lname, name)
        if matched is None:
            matched = sel.lname in name
        if matched:
            return comp
    return None


def load_selections(s: "Session", raw: list[dict] | None) -> list[OccupancySelection]:
    names = {o.id: o.name for o in s.query(OccupancyType).all()}
    out = []
    for r in raw or []:
        ot_id = parse_int(r.get("occupancyTypeId", r.get("occupancy_type_id")))
        if ot_id not in names:
            raise PricingError("Invalid occupancy type selected")
        out.append(OccupancySelection(ot_id, names[ot_id] or "", parse_int(r.get("count"), default=1)))
    return out


def validate_match_request(
    *,
    meal_plan_id: int | None,
    selections: list[OccupancySelection],
    start: date | None,
    end: date | None,
) -> str | None:
    if meal_plan_id is None:
        return "Please select a Meal Plan for Tour Package Pricing."
    if not selections:
        return "Please add at least one occupancy selection."
    if not start or not end:
        return "Please select tour start and end dates."
    if total_pax(selections) <= 0:
        return "Total number of guests must be greater than 0."
    if pricing_pax(selections) <= 0:
        return "You need at least one Double occupancy selection for tour package pricing."
    return None


def match_pricing_period(
    periods: list[TourPackagePricing],
    *,
    start: date,
    end: date,
    meal_plan_id: int,
    pax: int,
) -> TourPackagePricing:
    active = [p for p in periods if p.is_active]
    if not active:
        raise PricingError("No pricing periods found for the selected tour package.")
    matched = [
        p
        for p in active
        if start >= p.start_date and end <= p.end_date and p.meal_plan_id == meal_plan_id and p.number_of_rooms == pax
    ]
    if not matched:
        raise PricingError(
            f"No matching pricing period found for the selected criteria (Date, Meal Plan, {pax} Double PAX)."
        )
    if len(matched) > 1:
        logger.warning("Multiple pricing periods matched: ids=%s", [p.id for p in matched])
        raise PricingError(
            "Multiple pricing periods match the criteria. Cannot automatically apply price. "
            "Please refine Tour Package pricing definitions."
        )
    return matched[0]


def build_pricing_result(period: TourPackagePricing, selections: list[OccupancySelection]) -> dict[str, Any]:
    comps = list(period.components)
    per_person = next((c for c in comps if "per person" in _comp_name(c)), None)
    per_couple = next((c for c in comps if "per couple" in _comp_name(c)), None)

    section = []
    if per_person is not None:
        section.append({"name": _display_name(per_person, "Per Person Cost"), "price": per_person.price or "0", "description": "Cost per person"})
    if per_couple is not None:
        section.append({"name": _display_name(per_couple, "Per Couple Cost"), "price": per_couple.price or "0", "description": "Cost per couple"})
    for sel in selections:
        if sel.is_double:
            continue
        comp = component_for_listing(sel, comps)
        if comp is not None:
            section.append({"name": _display_name(comp, "Other Cost"), "price": comp.price or "0", "description": ""})

    total = Decimal("0")
    doubles = [sel for sel in selections if sel.is_double]
    if doubles:
        if per_couple is not None:
            total += _price(per_couple) * sum(sel.count for sel in doubles)
        elif per_person is not None:
            total += _price(per_person) * sum(sel.count * 2 for sel in doubles)
    for sel in selections:
        if sel.is_double:
            continue
        comp = component_for_total(sel, comps)
        if comp is not None:
            total += _price(comp) * sel.count

    return {
        "period": serialize_pricing_period(period),
        "components": section,
        "totalPrice": float(total),
        "pricingPax": pricing_pax(selections),
        "totalPax": total_pax(selections),
    }


def match_tour_package_pricing(s: "Session", payload: dict) -> dict[str, Any]:
    """Raises PricingError with a user-facing message when nothing can be applied."""
    tour_package_id = parse_int(payload.get("tourPackageId", payload.get("tour_package_id")))
    tp = s.get(TourPackage, tour_package_id) if tour_package_id is not None else None
    if tp is None:
        raise PricingError("Please select a Tour Package Template first.")

    template_type = payload.get("selectedTemplateType")
    if template_type and template_type != TEMPLATE_TYPE_TOUR_PACKAGE:
        raise PricingError("Auto calculation of pricing is only available for Tour Package templates.")

    try:
        start = parse_date(payload.get("tourStartsFrom"))
        end = parse_date(payload.get("tourEndsOn"))
    except ValueError as e:
        raise PricingError(f"Invalid tour dates: {e}") from e
    meal_plan_id = parse_int(payload.get("mealPlanId", payload.get("meal_plan_id")))
    selections = load_selections(s, payload.get("occupancySelections"))

    error = validate_match_request(meal_plan_id=meal_plan_id, selections=selections, start=start, end=end)
    if error:
        raise PricingError(error)

    period = match_pricing_period(
        list(tp.pricing_periods),
        start=start,
        end=end,
        meal_plan_id=meal_plan_id,
        pax=pricing_pax(selections),
    )
    result = build_pricing_result(period, selections)
    result["tourPackageId"] = tp.id
    result["mealPlanId"] = meal_plan_id
    result["occupancySelections"] = [
        {"occupancyTypeId": sel.occupancy_type_id, "count": sel.count, "paxPerUnit": sel.pax_per_unit}
        for sel in selections
    ]
    return result


def apply_pricing_to_query(s: "Session", q: "TourPackageQuery", result: dict, user: "User") -> None:
    before = float(q.total_price) if q.total_price is not None else None
    q.total_price = Decimal(str(result["totalPrice"]))
    q.pricing_section = result["components"]
    q.selected_meal_plan_id = result["mealPlanId"]
    q.occupancy_selections = result["occupancySelections"]
    q.selected_template_id = result["tourPackageId"]
    q.selected_template_type = TEMPLATE_TYPE_TOUR_PACKAGE
    q.updated_at = datetime.utcnow()
    q.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="tour_query.apply_package_pricing",
        entity_type="TourPackageQuery",
        entity_id=str(q.id),
        metadata={
            "tour_package_pricing_id": result["period"]["id"],
            "total_price": {"from": before, "to": result["totalPrice"]},
        },
    )
