"""
Outbound WhatsApp messaging and the local message log.

Every send goes through _deliver(): the Graph call is made, and the result
(sent or failed) is persisted as a WhatsAppMessage so the chat view and the
audit trail see the same thing Meta saw.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_

from app.tourdesk.constants import MESSAGING_WINDOW_HOURS, WHATSAPP_ADDRESS_PREFIX
from app.tourdesk.modules.whatsapp.client import GraphApiError, MetaGraphClient, message_id_from
from app.tourdesk.modules.whatsapp.models import WhatsAppCustomer, WhatsAppMessage
from app.tourdesk.modules.whatsapp.phone import normalize_e164, phone_variants
from app.tourdesk.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video", "document", "audio")
STATUS_TIMESTAMP_FIELDS = {"delivered": "delivered_at", "read": "read_at", "sent": "sent_at"}
STATUS_RANK = {"pending": 0, "sent": 1, "delivered": 2, "read": 3}


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    record: WhatsAppMessage | None = None
    error: str | None = None
    error_code: int | None = None
    raw: dict | None = None


def _customer_for(s: "Session", phone: str) -> WhatsAppCustomer | None:
    return s.query(WhatsAppCustomer).filter(WhatsAppCustomer.phone_number == normalize_e164(phone)).one_or_none()


def _deliver(
    s: "Session",
    client: MetaGraphClient,
    *,
    to: str,
    payload: dict[str, Any],
    body_text: str,
    meta: dict[str, Any],
    user: "User | None" = None,
) -> SendResult:
    destination = normalize_e164(to)
    payload = {"messaging_product": "whatsapp", "to": destination, **payload}
    customer = _customer_for(s, destination)
    now = datetime.utcnow()

    msg = WhatsAppMessage(
        to_address=f"{WHATSAPP_ADDRESS_PREFIX}{destination}",
        from_address=f"{WHATSAPP_ADDRESS_PREFIX}{client.phone_number_id}",
        body=body_text,
        direction="outbound",
        meta={**meta, "payload": payload},
        customer_id=customer.id if customer else None,
        created_by_user_id=user.id if user else None,
        created_at=now,
        updated_at=now,
    )
    try:
        data = client.send_message(payload)
    except GraphApiError as e:
        logger.warning("WhatsApp send to %s failed: %s (code=%s)", destination, e.message, e.code)
        msg.status = "failed"
        msg.error_message = e.message
        msg.error_code = str(e.code) if e.code is not None else None
        s.add(msg)
        s.flush()
        return SendResult(success=False, record=msg, error=e.message, error_code=e.code, raw=e.payload)

    wamid = message_id_from(data)
    msg.message_id = wamid
    msg.status = "sent"
    msg.sent_at = now
    s.add(msg)
    if customer is not None:
        customer.last_contacted_at = now
    s.flush()
    logger.info("WhatsApp %s sent to %s wamid=%s", meta.get("whatsappType"), destination, wamid)
    return SendResult(success=True, message_id=wamid, record=msg, raw=data)


# ---------- Send ----------
def send_text_message(
    s: "Session", client: MetaGraphClient, to: str, body: str, user: "User | None" = None, *, preview_url: bool = False
) -> SendResult:
    payload = {"recipient_type": "individual", "type": "text", "text": {"preview_url": preview_url, "body": body}}
    return _deliver(s, client, to=to, payload=payload, body_text=body, meta={"whatsappType": "text"}, user=user)


def template_preview_text(template_name: str, body_params: list | None) -> str:
    if body_params:
        return f"Template {template_name} :: {' | '.join(str(p) for p in body_params)}"
    return f"[template:{template_name}]"


def send_template_message(
    s: "Session",
    client: MetaGraphClient,
    to: str,
    template_name: str,
    *,
    language: str = "en_US",
    body_params: list | None = None,
    header_params: list[dict] | None = None,
    button_params: list[dict] | None = None,
    template_meta: dict[str, Any] | None = None,
    user: "User | None" = None,
) -> SendResult:
    """
    body_params are plain values; header_params are ready-made Graph parameter
    dicts; button_params are whole "button" components.
    """
    components: list[dict] = []
    if header_params:
        components.append({"type": "header", "parameters": header_params})
    if body_params:
        components.append({"type": "body", "parameters": [{"type": "text", "text": str(v)} for v in body_params]})
    for button in button_params or []:
        components.append(button)

    template: dict[str, Any] = {"name": template_name, "language": {"code": language}}
    if components:
        template["components"] = components

    meta = {
        "whatsappType": "template",
        "templateName": template_name,
        "language": language,
        "variables": {str(i + 1): str(v) for i, v in enumerate(body_params or [])},
        **(template_meta or {}),
    }
    return _deliver(
        s,
        client,
        to=to,
        payload={"type": "template", "template": template},
        body_text=template_preview_text(template_name, body_params),
        meta=meta,
        user=user,
    )


def send_media_message(
    s: "Session",
    client: MetaGraphClient,
    to: str,
    media_type: str,
    link: str,
    *,
    caption: str | None = None,
    filename: str | None = None,
    user: "User | None" = None,
) -> SendResult:
    if media_type not in MEDIA_TYPES:
        raise ValueError(f"Unsupported media type {media_type!r}. Must be one of: {', '.join(MEDIA_TYPES)}")
    media: dict[str, Any] = {"link": link}
    if caption and media_type != "audio":
        media["caption"] = caption
    if filename and media_type == "document":
        media["filename"] = filename
    body_text = caption or f"[Media: {link}]"
    meta = {"whatsappType": media_type, "media": {k: v for k, v in (("url", link), ("caption", caption), ("filename", filename)) if v}}
    return _deliver(s, client, to=to, payload={"type": media_type, media_type: media}, body_text=body_text, meta=meta, user=user)


def send_interactive_product(
    s: "Session",
    client: MetaGraphClient,
    to: str,
    *,
    catalog_id: str,
    product_retailer_id: str,
    body: str | None = None,
    footer: str | None = None,
    user: "User | None" = None,
) -> SendResult:
    interactive: dict[str, Any] = {
        "type": "product",
        "action": {"catalog_id": catalog_id, "product_retailer_id": product_retailer_id},
    }
    if body:
        interactive["body"] = {"text": body}
    if footer:
        interactive["footer"] = {"text": footer}
    meta = {
        "whatsappType": "interactive",
        "interactive": {"type": "product", "bodyText": body},
        "catalog": {"type": "product", "catalogId": catalog_id, "productRetailerId": product_retailer_id},
    }
    return _deliver(
        s,
        client,
        to=to,
        payload={"recipient_type": "individual", "type": "interactive", "interactive": interactive},
        body_text=body or f"[product:{product_retailer_id}]",
        meta=meta,
        user=user,
    )


def send_interactive_product_list(
    s: "Session",
    client: MetaGraphClient,
    to: str,
    *,
    catalog_id: str,
    sections: list[dict],
    header: str,
    body: str,
    footer: str | None = None,
    user: "User | None" = None,
) -> SendResult:
    """sections: [{"title": str, "product_retailer_ids": [..]}]"""
    if not sections:
        raise ValueError("At least one section is required")
    graph_sections = [
        {
            "title": sec.get("title") or "Packages",
            "product_items": [{"product_retailer_id": rid} for rid in sec.get("product_retailer_ids") or []],
        }
        for sec in sections
    ]
    interactive: dict[str, Any] = {
        "type": "product_list",
        "header": {"type": "text", "text": header},
        "body": {"text": body},
        "action": {"catalog_id": catalog_id, "sections": graph_sections},
    }
    if footer:
        interactive["footer"] = {"text": footer}
    meta = {
        "whatsappType": "interactive",
        "interactive": {"type": "product_list", "bodyText": body},
        "catalog": {
            "type": "product_list",
            "catalogId": catalog_id,
            "productIds": [i["product_retailer_id"] for sec in graph_sections for i in sec["product_items"]],
            "sections": [
                {"title": sec["title"], "productItems": [i["product_retailer_id"] for i in sec["product_items"]]}
                for sec in graph_sections
            ],
        },
    }
    return _deliver(
        s,
        client,
        to=to,
        payload={"recipient_type": "individual", "type": "interactive", "interactive": interactive},
        body_text=body,
        meta=meta,
        user=user,
    )


# ---------- 24h customer-service window ----------
def check_messaging_window(s: "Session", phone: str, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    last = (
        s.query(WhatsAppMessage)
        .filter(WhatsAppMessage.direction == "inbound", WhatsAppMessage.from_address.in_(phone_variants(phone)))
        .order_by(WhatsAppMessage.created_at.desc())
        .first()
    )
    if last is None:
        return {"canMessage": False, "hoursRemaining": 0, "lastInboundAt": None}
    elapsed = now - last.created_at
    window = timedelta(hours=MESSAGING_WINDOW_HOURS)
    remaining = max((window - elapsed).total_seconds() / 3600, 0)
    return {"canMessage": elapsed < window, "hoursRemaining": round(remaining, 2), "lastInboundAt": iso(last.created_at)}


# ---------- Inbound + status ----------
def record_inbound_message(
    s: "Session",
    *,
    from_phone: str,
    to_phone_number_id: str,
    wamid: str | None,
    body: str,
    whatsapp_type: str,
    extra_meta: dict[str, Any] | None = None,
    contact_name: str | None = None,
    received_at: datetime | None = None,
) -> tuple[WhatsAppMessage, bool]:
    """Store an inbound message.

    Returns the row and whether it was created; re-deliveries of the same wamid
    return the existing row with False.
    """
    if wamid:
        existing = s.query(WhatsAppMessage).filter(WhatsAppMessage.message_id == wamid).first()
        if existing is not None:
            return existing, False
    phone = normalize_e164(from_phone)
    customer = _customer_for(s, phone)
    meta: dict[str, Any] = {"whatsappType": whatsapp_type, **(extra_meta or {})}
    if contact_name:
        meta["contactName"] = contact_name
    when = received_at or datetime.utcnow()
    msg = WhatsAppMessage(
        message_id=wamid,
        from_address=f"{WHATSAPP_ADDRESS_PREFIX}{phone}",
        to_address=f"{WHATSAPP_ADDRESS_PREFIX}{to_phone_number_id}",
        body=body,
        direction="inbound",
        status="received",
        meta=meta,
        customer_id=customer.id if customer else None,
        created_at=when,
        updated_at=when,
    )
    s.add(msg)
    s.flush()
    return msg, True


def update_message_status(
    s: "Session",
    wamid: str,
    status: str,
    *,
    timestamp: datetime | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> int:
    """Apply a delivery status to every stored message with this wamid. Returns rows touched.

    Receipts never move a message backwards: a late "delivered" after "read" only
    fills in the missing timestamp.
    """
    when = timestamp or datetime.utcnow()
    rows = s.query(WhatsAppMessage).filter(WhatsAppMessage.message_id == wamid).all()
    for m in rows:
        if status == "failed" or STATUS_RANK.get(status, 0) > STATUS_RANK.get(m.status or "", 0):
            m.status = status
        m.updated_at = when
        ts_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if ts_field and getattr(m, ts_field) is None:
            setattr(m, ts_field, when)
        if status == "failed":
            m.error_code = error_code
            m.error_message = error_message
    return len(rows)


def list_messages(s: "Session", *, limit: int, phone: str | None = None) -> list[WhatsAppMessage]:
    q = s.query(WhatsAppMessage)
    if phone:
        variants = phone_variants(phone)
        q = q.filter(or_(WhatsAppMessage.from_address.in_(variants), WhatsAppMessage.to_address.in_(variants)))
    return q.order_by(WhatsAppMessage.created_at.desc(), WhatsAppMessage.id.desc()).limit(limit).all()


def serialize_message(m: WhatsAppMessage) -> dict:
    return {
        "id": m.id,
        "message_id": m.message_id,
        "from": m.from_address,
        "to": m.to_address,
        "message": m.body,
        "direction": m.direction,
        "status": m.status,
        "metadata": m.meta or {},
        "error_code": m.error_code,
        "error_message": m.error_message,
        "sent_at": iso(m.sent_at),
        "delivered_at": iso(m.delivered_at),
        "read_at": iso(m.read_at),
        "created_at": iso(m.created_at),
        "customer_id": m.customer_id,
    }
