"""
Seasonal periods are month/day ranges without a year (e.g. "Oct 1 - Mar 31").
A period whose end comes before its start wraps across the new year.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Protocol, Sequence

SEASON_TYPES = ("OFF_SEASON", "PEAK_SEASON", "SHOULDER_SEASON")

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# Leap year so Feb 29 has a slot when computing coverage.
_REFERENCE_YEAR = 2024


class PeriodLike(Protocol):
    start_month: int
    start_day: int
    end_month: int
    end_day: int


@dataclass(frozen=True)
class SeasonTemplate:
    season_type: str
    name: str
    start: tuple[int, int]  # (month, day)
    end: tuple[int, int]
    description: str = ""


SEASONAL_TEMPLATES: dict[str, tuple[SeasonTemplate, ...]] = {
    "HILL_STATION": (
        SeasonTemplate("PEAK_SEASON", "Summer Peak Season", (4, 1), (6, 30), "Pleasant weather, peak tourist season with higher demand"),
        SeasonTemplate("SHOULDER_SEASON", "Winter Pleasant Season", (10, 1), (3, 31), "Cool weather, moderate demand"),
        SeasonTemplate("OFF_SEASON", "Monsoon Off Season", (7, 1), (9, 30), "Monsoon season with limited tourism"),
    ),
    "BEACH_DESTINATION": (
        SeasonTemplate("PEAK_SEASON", "Winter Peak Season", (12, 1), (2, 28), "Perfect weather, highest demand for beach holidays"),
        SeasonTemplate("SHOULDER_SEASON", "Pleasant Season", (3, 1), (5, 31), "Good weather with moderate prices"),
        SeasonTemplate("OFF_SEASON", "Monsoon Off Season", (6, 1), (11, 30), "Monsoon and hot weather, lower prices"),
    ),
    "DESERT_DESTINATION": (
        SeasonTemplate("PEAK_SEASON", "Winter Peak Season", (11, 1), (2, 28), "Pleasant weather, ideal for desert tourism"),
        SeasonTemplate("SHOULDER_SEASON", "Spring/Autumn Season", (3, 1), (4, 30), "Moderately warm weather"),
        SeasonTemplate("OFF_SEASON", "Summer Off Season", (5, 1), (10, 31), "Very hot weather, minimal tourism"),
    ),
    "CULTURAL_CITY": (
        SeasonTemplate("PEAK_SEASON", "Winter Peak Season", (10, 1), (3, 31), "Pleasant weather for sightseeing"),
        SeasonTemplate("SHOULDER_SEASON", "Spring/Summer Season", (4, 1), (6, 30), "Warm weather, moderate demand"),
        SeasonTemplate("OFF_SEASON", "Monsoon Off Season", (7, 1), (9, 30), "Monsoon season, reduced outdoor activities"),
    ),
}


def to_day_of_year(month: int, day: int) -> int:
    """Sortable month/day key (month*100 + day), not a calendar ordinal."""
    return month * 100 + day


def _wraps(p: PeriodLike) -> bool:
    return to_day_of_year(p.start_month, p.start_day) > to_day_of_year(p.end_month, p.end_day)


def _segments(p: PeriodLike) -> list[tuple[int, int]]:
    start = to_day_of_year(p.start_month, p.start_day)
    end = to_day_of_year(p.end_month, p.end_day)
    if start <= end:
        return [(start, end)]
    return [(start, to_day_of_year(12, 31)), (to_day_of_year(1, 1), end)]


def periods_overlap(a: PeriodLike, b: PeriodLike) -> bool:
    for s1, e1 in _segments(a):
        for s2, e2 in _segments(b):
            if s1 <= e2 and e1 >= s2:
                return True
    return False


def generate_date_ranges_for_year(period: PeriodLike, year: int) -> list[tuple[date, date]]:
    """Concrete date ranges for `year`; a wrapping period spills into `year + 1`."""
    if not _wraps(period):
        return [(date(year, period.start_month, period.start_day), date(year, period.end_month, period.end_day))]
    return [
        (date(year, period.start_month, period.start_day), date(year, 12, 31)),
        (date(year + 1, 1, 1), date(year + 1, period.end_month, period.end_day)),
    ]


def contains(period: PeriodLike, d: date) -> bool:
    value = to_day_of_year(d.month, d.day)
    return any(s <= value <= e for s, e in _segments(period))


def find_seasonal_period_for_date(d: date, periods: Sequence[PeriodLike]) -> PeriodLike | None:
    for period in periods:
        if contains(period, d):
            return period
    return None


def validate_seasonal_period(payload: dict) -> list[str]:
    """Validate a seasonal period payload. Returns list of errors."""
    errors: list[str] = []

    if payload.get("season_type") not in SEASON_TYPES:
        errors.append("Invalid season type")

    if not (payload.get("name") or "").strip():
        errors.append("Season name is required")

    def _in_range(key: str, hi: int) -> bool:
        try:
            v = int(payload.get(key))
        except (TypeError, ValueError):
            return False
        return 1 <= v <= hi

    if not _in_range("start_month", 12):
        errors.append("Start month must be between 1 and 12")
    if not _in_range("end_month", 12):
        errors.append("End month must be between 1 and 12")
    if not _in_range("start_day", 31):
        errors.append("Start day must be between 1 and 31")
    if not _in_range("end_day", 31):
        errors.append("End day must be between 1 and 31")
    return errors


def format_seasonal_period(period: PeriodLike) -> str:
    start = MONTH_NAMES[period.start_month - 1]
    end = MONTH_NAMES[period.end_month - 1]
    return f"{start} {period.start_day} - {end} {period.end_day}"


def check_year_coverage(periods: Sequence) -> dict:
    """
    Report overlaps and uncovered stretches among active periods.
    Complete means at least one period and no overlaps.
    """
    active = [p for p in periods if getattr(p, "is_active", True)]
    overlaps = []
    for i in range(len(active)):
        for j in range(i + 1, len(active)):
            if periods_overlap(active[i], active[j]):
                overlaps.append((active[i], active[j]))

    gaps: list[tuple[tuple[int, int], tuple[int, int]]] = []
    if active:
        d = date(_REFERENCE_YEAR, 1, 1)
        gap_start: date | None = None
        while d.year == _REFERENCE_YEAR:
            covered = any(contains(p, d) for p in active)
            if not covered and gap_start is None:
                gap_start = d
            elif covered and gap_start is not None:
                prev = d - timedelta(days=1)
                gaps.append(((gap_start.month, gap_start.day), (prev.month, prev.day)))
                gap_start = None
            d += timedelta(days=1)
        if gap_start is not None:
            gaps.append(((gap_start.month, gap_start.day), (12, 31)))

    return {
        "is_complete": bool(active) and not overlaps,
        "gaps": gaps,
        "overlaps": overlaps,
    }
