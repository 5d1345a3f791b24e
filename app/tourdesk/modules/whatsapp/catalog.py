from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from app.tourdesk.audit import record_event
from app.tourdesk.constants import DEFAULT_CURRENCY
from app.tourdesk.modules.masters.models import TourPackage
from app.tourdesk.modules.whatsapp.client import GraphApiError, MetaGraphClient
from app.tourdesk.modules.whatsapp.models import WhatsAppCatalogProduct
from app.tourdesk.utils import as_list, iso, money, parse_bool, parse_decimal, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User

logger = logging.getLogger(__name__)

MAX_ADDITIONAL_IMAGES = 10
BRAND = "Tour Package"


def _strings(value: Any) -> list[str]:
    return [v.strip() for v in as_list(value) if isinstance(v, str) and v.strip()]


def build_description(summary: str | None, highlights: Any, inclusions: Any, exclusions: Any) -> str:
    segments: list[str] = []
    if summary and summary.strip():
        segments.append(summary.strip())
    for label, items in (("Highlights", highlights), ("Inclusions", inclusions), ("Exclusions", exclusions)):
        values = _strings(items)
        if values:
            segments.append(f"{label}:\n- " + "\n- ".join(values))
    return "\n\n".join(segments)


def format_price_for_meta(amount: Decimal | float | int | None) -> str | None:
    if amount is None:
        return None
    return str(int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def product_url(p: WhatsAppCatalogProduct, public_base_url: str | None) -> str | None:
    if p.url:
        return p.url
    if public_base_url and p.tour_package_id:
        return f"{public_base_url.rstrip('/')}/tour-packages/{p.tour_package_id}"
    return None


def build_product_payload(p: WhatsAppCatalogProduct, *, public_base_url: str | None = None) -> dict[str, Any]:
    """Graph catalog product body for create and update calls."""
    images = _strings(p.image_urls)
    payload: dict[str, Any] = {
        "retailer_id": p.retailer_id,
        "name": p.name,
        "description": build_description(p.summary, p.highlights, p.inclusions, p.exclusions) or p.name,
        "price": format_price_for_meta(p.price),
        "currency": p.currency or DEFAULT_CURRENCY,
        "availability": "in stock" if p.is_available else "out of stock",
        "condition": "new",
        "image_url": images[0] if images else None,
        "url": product_url(p, public_base_url),
        "brand": BRAND,
    }
    extra = images[1 : MAX_ADDITIONAL_IMAGES + 1]
    if extra:
        payload["additional_image_urls"] = extra
    return {k: v for k, v in payload.items() if v is not None}


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")[:64]


def validate_catalog_product_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    package_id = payload.get("tourPackageId", payload.get("tour_package_id"))
    if package_id is None and not (payload.get("name") or "").strip():
        errors.append("Either tourPackageId or name is required")
    if package_id is not None and parse_int(package_id) is None:
        errors.append("tourPackageId must be a number")
    price = payload.get("price")
    if price not in (None, "") and parse_decimal(price) is None:
        errors.append("Price must be a number")
    return errors


def create_catalog_product(s: "Session", payload: dict, user: "User | None") -> WhatsAppCatalogProduct:
    """
    Catalog entry for a tour package. Fields not given in the payload are
    copied from the linked package.
    """
    package_id = parse_int(payload.get("tourPackageId", payload.get("tour_package_id")))
    pkg = s.get(TourPackage, package_id) if package_id is not None else None
    if package_id is not None and pkg is None:
        raise LookupError("Tour package not found")

    def pick(key: str, alt: str, fallback: Any) -> Any:
        if key in payload:
            return payload[key]
        if alt in payload:
            return payload[alt]
        return fallback

    name = (pick("name", "name", pkg.name if pkg else "") or "").strip()
    retailer_id = (pick("retailerId", "retailer_id", None) or "").strip()
    if not retailer_id:
        retailer_id = f"TP-{pkg.id}" if pkg else _slug(name)
    if s.query(WhatsAppCatalogProduct).filter(WhatsAppCatalogProduct.retailer_id == retailer_id).first():
        raise ValueError(f"Retailer id {retailer_id} is already in the catalog")

    now = datetime.utcnow()
    p = WhatsAppCatalogProduct(
        tour_package_id=pkg.id if pkg else None,
        retailer_id=retailer_id,
        name=name,
        summary=pick("summary", "description", pkg.summary if pkg else None),
        price=parse_decimal(pick("price", "price", pkg.price if pkg else None)),
        currency=pick("currency", "currency", None) or DEFAULT_CURRENCY,
        is_available=parse_bool(pick("isAvailable", "is_available", True), default=True),
        url=pick("url", "url", None),
        image_urls=_strings(pick("imageUrls", "image_urls", pkg.image_urls if pkg else [])),
        highlights=_strings(pick("highlights", "highlights", pkg.highlights if pkg else [])),
        inclusions=_strings(pick("inclusions", "inclusions", pkg.inclusions if pkg else [])),
        exclusions=_strings(pick("exclusions", "exclusions", pkg.exclusions if pkg else [])),
        sync_status="pending",
        created_at=now,
        updated_at=now,
    )
    s.add(p)
    s.flush()
    record_event(
        s,
        actor=user,
        action="whatsapp_catalog.create",
        entity_type="WhatsAppCatalogProduct",
        entity_id=str(p.id),
        metadata={"retailer_id": retailer_id, "tour_package_id": p.tour_package_id},
    )
    return p


def sync_catalog_product(
    s: "Session",
    p: WhatsAppCatalogProduct,
    client: MetaGraphClient,
    *,
    catalog_id: str,
    public_base_url: str | None = None,
    user: "User | None" = None,
) -> WhatsAppCatalogProduct:
    """Push a product to the Meta catalog. Re-raises GraphApiError after recording it on the row."""
    if not catalog_id:
        raise GraphApiError("META_WHATSAPP_CATALOG_ID is not configured")
    p.sync_status = "in_progress"
    p.last_sync_error = None
    s.flush()

    payload = build_product_payload(p, public_base_url=public_base_url)
    try:
        if p.meta_product_id:
            client.request_json("POST", p.meta_product_id, body=payload, retries=0)
        else:
            data = client.request_json("POST", f"{catalog_id}/products", body=payload, retries=0)
            p.meta_product_id = data.get("id")
    except GraphApiError as e:
        logger.warning("Catalog sync for %s failed: %s", p.retailer_id, e.message)
        p.sync_status = "failed"
        p.last_sync_error = e.message
        p.updated_at = datetime.utcnow()
        s.flush()
        raise

    now = datetime.utcnow()
    p.sync_status = "synced"
    p.last_synced_at = now
    p.updated_at = now
    record_event(
        s,
        actor=user,
        action="whatsapp_catalog.sync",
        entity_type="WhatsAppCatalogProduct",
        entity_id=str(p.id),
        metadata={"meta_product_id": p.meta_product_id},
    )
    return p


def serialize_catalog_product(p: WhatsAppCatalogProduct) -> dict:
    return {
        "id": p.id,
        "tour_package_id": p.tour_package_id,
        "tour_package": p.tour_package.name if p.tour_package else None,
        "retailer_id": p.retailer_id,
        "meta_product_id": p.meta_product_id,
        "name": p.name,
        "summary": p.summary,
        "price": money(p.price),
        "currency": p.currency,
        "is_available": p.is_available,
        "url": p.url,
        "image_urls": p.image_urls or [],
        "highlights": p.highlights or [],
        "inclusions": p.inclusions or [],
        "exclusions": p.exclusions or [],
        "sync_status": p.sync_status,
        "last_sync_error": p.last_sync_error,
        "last_synced_at": iso(p.last_synced_at),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }
