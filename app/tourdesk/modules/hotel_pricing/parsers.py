"""
Hotel pricing upload parser (.xlsx via openpyxl, or .csv).

The first row is the header. Headers are normalized (lowercase, runs of
non-alphanumerics -> "_") and matched against COLUMN_ALIASES.
"""
from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from app.tourdesk.constants import DEFAULT_CURRENCY

logger = logging.getLogger(__name__)

PREFERRED_SHEET = "uploadtemplate"

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "hotel_id": ("hotel_id", "hotelid", "hotel_code", "hotel"),
    "hotel_name": ("hotel_name", "hotelname", "name"),
    "location_name": ("location_name", "location", "destination"),
    "room_type_name": ("room_type_name", "roomtype", "room_type", "room"),
    "occupancy_type_name": ("occupancy_type_name", "occupancy", "occupancy_type", "pax"),
    "meal_plan_code": ("meal_plan_code", "mealplan", "meal_plan", "plan"),
    "start_date": ("start_date", "from", "from_date", "start"),
    "end_date": ("end_date", "to", "to_date", "end"),
    "price_per_night": ("price_per_night", "price", "rate", "amount"),
    "currency": ("currency",),
    "is_active": ("is_active", "active", "status"),
    "notes": ("notes", "note", "remarks", "comment"),
}

REQUIRED_COLUMNS = ("hotel_id", "room_type_name", "occupancy_type_name", "start_date", "end_date", "price_per_night")

# Day-first before month-first; ambiguous dates read as dd/mm.
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y", "%m-%d-%Y", "%d.%m.%Y", "%m.%d.%Y")

TRUE_VALUES = {"true", "t", "yes", "y", "1", "active", "enabled"}
FALSE_VALUES = {"false", "f", "no", "n", "0", "inactive", "disabled"}

EXCEL_EPOCH = date(1899, 12, 30)


class ImportParseError(ValueError):
    """The file as a whole can't be read (bad format, no sheet, missing columns)."""


@dataclass(frozen=True)
class RowError:
    row_number: int
    message: str
    field: str | None = None


@dataclass(frozen=True)
class HotelPricingRow:
    row_number: int
    hotel_id: str | None
    hotel_name: str | None
    location_name: str | None
    room_type_name: str
    occupancy_type_name: str
    meal_plan_code: str | None
    start_date: date
    end_date: date
    price: Decimal
    is_active: bool
    currency: str | None
    notes: str | None


@dataclass
class ParseResult:
    rows: list[HotelPricingRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)


def normalize_header(label: Any) -> str:
    if label is None:
        return ""
    return re.sub(r"[^a-z0-9]+", "_", str(label).strip().lower()).strip("_")


def resolve_header_indexes(headers: list[str]) -> dict[str, int]:
    out: dict[str, int] = {}
    for column, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in headers:
                out[column] = headers.index(alias)
                break
    return out


def coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = str(value).strip()
    return s or None


def coerce_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    cleaned = re.sub(r"[ ,]", "", str(value))
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def coerce_bool(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    s = str(value).strip().lower()
    if s in TRUE_VALUES:
        return True
    if s in FALSE_VALUES:
        return False
    return None


def coerce_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Excel serial day number
        return EXCEL_EPOCH + timedelta(days=int(value))
    s = coerce_str(value)
    if not s:
        return None
    if re.fullmatch(r"\d+", s):
        return EXCEL_EPOCH + timedelta(days=int(s))
    if "T" in s:
        s = s.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def _is_empty(row: tuple | list) -> bool:
    return all(c is None or (isinstance(c, str) and not c.strip()) for c in row)


def _read_xlsx(data: bytes) -> tuple[str, list[tuple]]:
    from openpyxl import load_workbook

    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        raise ImportParseError(f"Could not read workbook: {e}") from e
    if not wb.sheetnames:
        raise ImportParseError("No worksheets found in uploaded file")
    sheet_name = next((n for n in wb.sheetnames if n.lower() == PREFERRED_SHEET), wb.sheetnames[0])
    ws = wb[sheet_name]
    table = [tuple(r) for r in ws.iter_rows(values_only=True)]
    wb.close()
    return sheet_name, table


def _read_csv(data: bytes) -> tuple[str, list[tuple]]:
    text = data.decode("utf-8-sig", errors="replace")
    return "csv", [tuple(r) for r in csv.reader(io.StringIO(text))]


def parse_hotel_pricing_file(filename: str, data: bytes) -> ParseResult:
    """
    Parse an uploaded pricing sheet.

    Returns a ParseResult with valid rows and per-row errors. Raises
    ImportParseError when the file can't be read or required columns are missing.
    """
    name = (filename or "").lower()
    if name.endswith(".xlsx") or name.endswith(".xlsm"):
        sheet_name, table = _read_xlsx(data)
    elif name.endswith(".csv"):
        sheet_name, table = _read_csv(data)
    else:
        raise ImportParseError("Unsupported file type. Upload a .xlsx or .csv file.")

    # openpyxl reports formatted-but-empty rows past the data.
    while table and _is_empty(table[-1]):
        table.pop()

    result = ParseResult(stats={"sheetName": sheet_name, "totalRows": 0, "dataRows": 0, "skippedEmptyRows": 0, "fileName": filename})
    if not table:
        result.errors.append(RowError(1, "Worksheet is empty"))
        return result

    headers = [normalize_header(h) for h in table[0]]
    idx = resolve_header_indexes(headers)
    missing = [c for c in REQUIRED_COLUMNS if c not in idx]
    if missing:
        raise ImportParseError(f"Missing required columns: {', '.join(missing)}")

    def cell(row: tuple, column: str) -> Any:
        i = idx.get(column)
        if i is None or i >= len(row):
            return None
        return row[i]

    for i, raw in enumerate(table[1:], start=2):  # 1 = header
        if _is_empty(raw):
            result.stats["skippedEmptyRows"] += 1
            continue
        result.stats["dataRows"] += 1

        hotel_id = coerce_str(cell(raw, "hotel_id"))
        hotel_name = coerce_str(cell(raw, "hotel_name"))
        room_type = coerce_str(cell(raw, "room_type_name"))
        occupancy = coerce_str(cell(raw, "occupancy_type_name"))
        start = coerce_date(cell(raw, "start_date"))
        end = coerce_date(cell(raw, "end_date"))
        price = coerce_decimal(cell(raw, "price_per_night"))
        currency = coerce_str(cell(raw, "currency"))

        errs: list[RowError] = []
        if not hotel_id and not hotel_name:
            errs.append(RowError(i, "Hotel ID is required", "hotel_id"))
        if not room_type:
            errs.append(RowError(i, "Room type is required", "room_type_name"))
        if not occupancy:
            errs.append(RowError(i, "Occupancy type is required", "occupancy_type_name"))
        if not start:
            errs.append(RowError(i, "Start date is invalid or missing", "start_date"))
        if not end:
            errs.append(RowError(i, "End date is invalid or missing", "end_date"))
        if start and end and start > end:
            errs.append(RowError(i, "Start date must be on or before end date", "start_date"))
        if price is None:
            errs.append(RowError(i, "Price must be a valid number", "price_per_night"))
        elif price < 0:
            errs.append(RowError(i, "Price cannot be negative", "price_per_night"))

        if currency and currency.upper() != DEFAULT_CURRENCY:
            result.warnings.append(f'Row {i}: Currency "{currency}" detected and ignored (pricing stored in INR)')

        if errs:
            result.errors.extend(errs)
            continue

        active = coerce_bool(cell(raw, "is_active"))
        result.rows.append(
            HotelPricingRow(
                row_number=i,
                hotel_id=hotel_id,
                hotel_name=hotel_name,
                location_name=coerce_str(cell(raw, "location_name")),
                room_type_name=room_type,
                occupancy_type_name=occupancy,
                meal_plan_code=coerce_str(cell(raw, "meal_plan_code")),
                start_date=start,
                end_date=end,
                price=price,
                is_active=True if active is None else active,
                currency=currency,
                notes=coerce_str(cell(raw, "notes")),
            )
        )

    result.stats["totalRows"] = max(len(table) - 1, 0)
    logger.info(
        "Parsed hotel pricing file %s: sheet=%s rows=%s errors=%s",
        filename,
        sheet_name,
        len(result.rows),
        len(result.errors),
    )
    return result
