from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.tourdesk.audit import record_event
from app.tourdesk.modules.whatsapp.models import WhatsAppCustomer
from app.tourdesk.modules.whatsapp.phone import digits_only, normalize_whatsapp_phone
from app.tourdesk.utils import iso, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
REQUIRED_CSV_HEADERS = ("first name", "mobile number")


class CustomerImportError(ValueError):
    pass


def sanitize_tags(tags: Any) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = [tags]
    out: list[str] = []
    for tag in tags:
        t = tag.strip() if isinstance(tag, str) else ""
        if t and t not in out:
            out.append(t)
    return out


def _get(payload: dict, *keys: str) -> Any:
    for k in keys:
        if k in payload:
            return payload[k]
    return None


def _opt(value: Any) -> str | None:
    s = (value or "").strip() if isinstance(value, str) else value
    return s or None


def validate_customer_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    first = _get(payload, "first_name", "firstName")
    phone = _get(payload, "phone_number", "phoneNumber")
    if not partial or first is not None:
        if not (first or "").strip():
            errors.append("First name is required")
    if not partial or phone is not None:
        try:
            normalize_whatsapp_phone(phone)
        except ValueError as e:
            errors.append(str(e))
    return errors


def _apply(c: WhatsAppCustomer, payload: dict, *, partial: bool) -> None:
    def present(*keys: str) -> bool:
        return not partial or any(k in payload for k in keys)

    if present("first_name", "firstName"):
        c.first_name = (_get(payload, "first_name", "firstName") or "").strip()
    if present("last_name", "lastName"):
        c.last_name = _opt(_get(payload, "last_name", "lastName"))
    if present("phone_number", "phoneNumber"):
        c.phone_number = normalize_whatsapp_phone(_get(payload, "phone_number", "phoneNumber"))
    if present("email"):
        c.email = _opt(payload.get("email"))
    if present("tags"):
        c.tags = sanitize_tags(payload.get("tags"))
    if present("notes"):
        c.notes = _opt(payload.get("notes"))
    if "is_opted_in" in payload or "isOptedIn" in payload:
        c.is_opted_in = parse_bool(_get(payload, "is_opted_in", "isOptedIn"), default=True)
    elif not partial:
        c.is_opted_in = True


def find_by_phone(s: "Session", phone: str) -> WhatsAppCustomer | None:
    return s.query(WhatsAppCustomer).filter(WhatsAppCustomer.phone_number == phone).one_or_none()


def create_customer(s: "Session", payload: dict, user: "User | None") -> WhatsAppCustomer:
    now = datetime.utcnow()
    c = WhatsAppCustomer(created_at=now, updated_at=now)
    _apply(c, payload, partial=False)
    if find_by_phone(s, c.phone_number) is not None:
        raise ValueError(f"A customer with phone {c.phone_number} already exists")
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="whatsapp_customer.create", entity_type="WhatsAppCustomer", entity_id=str(c.id))
    return c


def update_customer(s: "Session", c: WhatsAppCustomer, payload: dict, user: "User | None") -> WhatsAppCustomer:
    old_phone = c.phone_number
    _apply(c, payload, partial=True)
    if c.phone_number != old_phone:
        other = find_by_phone(s, c.phone_number)
        if other is not None and other.id != c.id:
            raise ValueError(f"A customer with phone {c.phone_number} already exists")
    c.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="whatsapp_customer.update",
        entity_type="WhatsAppCustomer",
        entity_id=str(c.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return c


def delete_customer(s: "Session", c: WhatsAppCustomer, user: "User | None") -> None:
    record_event(
        s,
        actor=user,
        action="whatsapp_customer.delete",
        entity_type="WhatsAppCustomer",
        entity_id=str(c.id),
        metadata={"phone_number": c.phone_number},
    )
    s.delete(c)


def tag_counts(s: "Session") -> list[dict[str, Any]]:
    counts: dict[str, int] = {}
    for (tags,) in s.query(WhatsAppCustomer.tags).all():
        for tag in tags or []:
            key = tag.strip() if isinstance(tag, str) else ""
            if key:
                counts[key] = counts.get(key, 0) + 1
    return [{"tag": t, "count": n} for t, n in counts.items()]


def list_customers(
    s: "Session",
    *,
    search: str | None = None,
    tags: list[str] | None = None,
    is_opted_in: bool | None = None,
    skip: int = 0,
    take: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    q = s.query(WhatsAppCustomer)
    if is_opted_in is not None:
        q = q.filter(WhatsAppCustomer.is_opted_in.is_(is_opted_in))
    if search and search.strip():
        term = f"%{search.strip().lower()}%"
        clauses = [
            func.lower(WhatsAppCustomer.first_name).like(term),
            func.lower(WhatsAppCustomer.last_name).like(term),
            func.lower(WhatsAppCustomer.email).like(term),
        ]
        digits = digits_only(search)
        if len(digits) >= 4:
            clauses.append(WhatsAppCustomer.phone_number.like(f"%{digits}%"))
        q = q.filter(or_(*clauses))

    rows = q.order_by(WhatsAppCustomer.created_at.desc(), WhatsAppCustomer.id.desc()).all()
    wanted = sanitize_tags(tags)
    if wanted:
        # JSON containment differs between sqlite and Postgres; filter in Python.
        rows = [c for c in rows if set(wanted) & set(c.tags or [])]
    return {
        "data": rows[skip : skip + take],
        "total": len(rows),
        "tags": tag_counts(s),
    }


def upsert_whatsapp_customers(
    s: "Session", customers: list[dict], user: "User | None", *, imported_from: str | None = None
) -> dict[str, int]:
    """Insert or update by normalized phone. Later rows for the same phone win."""
    created = updated = 0
    now = datetime.utcnow()
    for item in customers:
        phone = normalize_whatsapp_phone(item["phone_number"])
        c = find_by_phone(s, phone)
        if c is None:
            c = WhatsAppCustomer(phone_number=phone, created_at=now, tags=[], is_opted_in=True)
            s.add(c)
            created += 1
        else:
            updated += 1
        c.first_name = item["first_name"].strip()
        c.last_name = _opt(item.get("last_name"))
        c.email = _opt(item.get("email"))
        if item.get("tags") is not None:
            c.tags = sanitize_tags(item["tags"])
        c.notes = _opt(item.get("notes"))
        c.imported_from = item.get("imported_from") or imported_from
        c.imported_at = item.get("imported_at") or now
        c.updated_at = now
        s.flush()
    record_event(
        s,
        actor=user,
        action="whatsapp_customer.import",
        entity_type="WhatsAppCustomer",
        metadata={"created": created, "updated": updated, "source": imported_from},
    )
    return {"created": created, "updated": updated}


# ---------- CSV ----------
@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str
    row: dict[str, str] = field(default_factory=dict)


@dataclass
class CustomerCsvResult:
    customers: list[dict]
    total_rows: int
    valid_rows: int
    skipped_rows: int
    unique_phones: int
    duplicates: list[dict]
    errors: list[CsvRowError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "skippedRows": self.skipped_rows,
            "uniquePhones": self.unique_phones,
            "duplicates": self.duplicates,
            "errors": [{"rowNumber": e.row_number, "message": e.message, "row": e.row} for e in self.errors],
        }


def _sanitize_header(header: str | None) -> str:
    return (header or "").replace("\ufeff", "").strip().lower()


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.replace("\u00a0", " ").replace("\r", "").replace("\t", "").strip()
    return s or None


def _split_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [t.strip() for t in re.split(r"[,|]", raw) if t.strip()]


def parse_customer_csv(
    data: bytes | str, *, source_name: str | None = None, default_tags: list[str] | None = None
) -> CustomerCsvResult:
    text = data.decode("utf-8-sig", errors="replace") if isinstance(data, bytes) else data
    text = text.strip()
    if not text:
        raise CustomerImportError("Uploaded file is empty")

    reader = csv.reader(io.StringIO(text))
    header = next(reader, [])
    records = [r for r in reader if any((c or "").strip() for c in r)]
    if not records:
        raise CustomerImportError("No customer rows found in CSV")

    headers = [_sanitize_header(h) for h in header]
    missing = [h for h in REQUIRED_CSV_HEADERS if h not in headers]
    if missing:
        raise CustomerImportError(f"Missing required columns: {', '.join(missing)}")

    customers: list[dict] = []
    occurrences: dict[str, list[dict]] = {}
    errors: list[CsvRowError] = []
    now = datetime.utcnow()

    for index, record in enumerate(records):
        row_number = index + 2
        row = {h or str(i): record[i] for i, h in enumerate(headers) if i < len(record)}
        snapshot = {k: v for k, v in ((k, _clean(v)) for k, v in row.items()) if v is not None}

        def get(key: str) -> str | None:
            return _clean(row.get(key))

        first_name = get("first name")
        mobile = get("mobile number")
        if not first_name:
            errors.append(CsvRowError(row_number, "First name is required", snapshot))
            continue
        if not mobile:
            errors.append(CsvRowError(row_number, "Mobile number is required", snapshot))
            continue
        try:
            phone = normalize_whatsapp_phone(mobile)
        except ValueError as e:
            errors.append(CsvRowError(row_number, str(e) or "Invalid phone number", snapshot))
            continue

        last_name = get("last name")
        customers.append(
            {
                "first_name": first_name,
                "last_name": last_name,
                "phone_number": phone,
                "email": get("email"),
                "tags": sanitize_tags((default_tags or []) + _split_tags(get("tags"))) or None,
                "notes": get("notes"),
                "imported_from": source_name,
                "imported_at": now,
            }
        )
        display = " ".join(p for p in (first_name, last_name) if p)
        occurrences.setdefault(phone, []).append({"rowNumber": row_number, "name": display})

    duplicates = [
        {"phoneNumber": phone, "occurrences": rows} for phone, rows in occurrences.items() if len(rows) > 1
    ]
    return CustomerCsvResult(
        customers=customers,
        total_rows=len(records),
        valid_rows=len(customers),
        skipped_rows=len(records) - len(customers),
        unique_phones=len(occurrences),
        duplicates=duplicates,
        errors=errors,
    )


def serialize_customer(c: WhatsAppCustomer) -> dict:
    return {
        "id": c.id,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "full_name": c.full_name,
        "phone_number": c.phone_number,
        "email": c.email,
        "tags": c.tags or [],
        "notes": c.notes,
        "is_opted_in": c.is_opted_in,
        "imported_from": c.imported_from,
        "imported_at": iso(c.imported_at),
        "last_contacted_at": iso(c.last_contacted_at),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
