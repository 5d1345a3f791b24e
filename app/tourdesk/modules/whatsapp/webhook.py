"""
Meta WhatsApp webhook: subscription handshake, inbound messages and
delivery status callbacks. Authenticated by the X-Hub-Signature-256 HMAC
rather than the admin session, so the blueprint is exempt from CSRF.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import Blueprint, current_app, jsonify, request

from app.tourdesk.db import db_session
from app.tourdesk.modules.whatsapp.campaigns import apply_recipient_status, mark_recipient_responded
from app.tourdesk.modules.whatsapp.service import record_inbound_message, update_message_status
from app.tourdesk.security import verify_hub_signature

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

bp = Blueprint("whatsapp_webhook", __name__)


def _ts(value: Any) -> datetime | None:
    try:
        return datetime.utcfromtimestamp(int(value))
    except (TypeError, ValueError):
        return None


def parse_inbound(message: dict) -> tuple[str, str, dict[str, Any]]:
    """Return (body text, whatsappType, extra metadata) for one webhook message object."""
    wtype = message.get("type") or "unknown"
    data = message.get(wtype) if isinstance(message.get(wtype), dict) else {}
    meta: dict[str, Any] = {"waId": message.get("from")}

    if wtype == "text":
        return data.get("body") or "", "text", meta

    if wtype in ("image", "video", "audio", "document", "sticker"):
        meta["media"] = {
            "id": data.get("id"),
            "mimeType": data.get("mime_type"),
            "caption": data.get("caption"),
            "filename": data.get("filename"),
            "sha256": data.get("sha256"),
        }
        meta["textPreview"] = data.get("caption") or data.get("filename")
        return data.get("caption") or "", wtype, meta

    if wtype == "location":
        meta["location"] = {
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
            "name": data.get("name"),
            "address": data.get("address"),
            "url": data.get("url"),
        }
        return data.get("name") or data.get("address") or "", wtype, meta

    if wtype == "contacts":
        shared = message.get("contacts") or []
        meta["sharedContacts"] = shared
        return "", wtype, meta

    if wtype == "interactive":
        itype = data.get("type")
        interactive: dict[str, Any] = {"type": itype, "original": data}
        body = ""
        if itype == "button_reply":
            reply = data.get("button_reply") or {}
            interactive["buttonReply"] = {"id": reply.get("id"), "title": reply.get("title")}
            body = reply.get("title") or ""
        elif itype == "list_reply":
            reply = data.get("list_reply") or {}
            interactive["listReply"] = {
                "id": reply.get("id"),
                "title": reply.get("title"),
                "description": reply.get("description"),
            }
            body = reply.get("title") or ""
        elif itype == "nfm_reply":
            reply = data.get("nfm_reply") or {}
            interactive["nfmReply"] = reply
            body = reply.get("body") or ""
        meta["interactive"] = interactive
        return body, wtype, meta

    if wtype == "button":
        # quick-reply tap on a template button
        meta["interactive"] = {"type": "button", "buttonReply": {"title": data.get("text"), "payload": data.get("payload")}}
        return data.get("text") or "", "interactive", meta

    if wtype == "order":
        items = data.get("product_items") or []
        meta["catalog"] = {
            "type": "product_list",
            "catalogId": data.get("catalog_id"),
            "productIds": [i.get("product_retailer_id") for i in items if i.get("product_retailer_id")],
        }
        meta["order"] = data
        return data.get("text") or "", "interactive", meta

    if wtype == "reaction":
        meta["reaction"] = data
        return data.get("emoji") or "", wtype, meta

    meta["rawMessage"] = message
    return "", wtype, meta


def process_webhook_payload(s: "Session", payload: dict) -> dict[str, int]:
    counts = {"messages": 0, "statuses": 0}
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id") or ""
            names = {
                c.get("wa_id"): (c.get("profile") or {}).get("name")
                for c in value.get("contacts") or []
                if isinstance(c, dict)
            }

            for message in value.get("messages") or []:
                sender = message.get("from") or ""
                body, wtype, meta = parse_inbound(message)
                _, created = record_inbound_message(
                    s,
                    from_phone=sender,
                    to_phone_number_id=phone_number_id,
                    wamid=message.get("id"),
                    body=body,
                    whatsapp_type=wtype,
                    extra_meta=meta,
                    contact_name=names.get(sender),
                    received_at=_ts(message.get("timestamp")),
                )
                if created:
                    mark_recipient_responded(s, sender)
                counts["messages"] += 1

            for status in value.get("statuses") or []:
                wamid = status.get("id")
                if not wamid:
                    continue
                err = (status.get("errors") or [{}])[0]
                code = str(err["code"]) if err.get("code") is not None else None
                message = err.get("message") or err.get("title") or (err.get("error_data") or {}).get("details")
                when = _ts(status.get("timestamp"))
                update_message_status(
                    s, wamid, status.get("status") or "", timestamp=when, error_code=code, error_message=message
                )
                apply_recipient_status(
                    s, wamid, status.get("status") or "", timestamp=when, error_code=code, error_message=message
                )
                counts["statuses"] += 1
    return counts


@bp.get("/whatsapp/webhook")
def whatsapp_webhook_verify():
    mode = request.args.get("hub.mode")
    token = request.args.get("hub.verify_token")
    challenge = request.args.get("hub.challenge", "")
    expected = current_app.config.get("META_WEBHOOK_VERIFY_TOKEN") or ""
    if mode == "subscribe" and expected and token == expected:
        return challenge, 200, {"Content-Type": "text/plain"}
    logger.warning("Webhook verification rejected (mode=%s)", mode)
    return jsonify({"error": "Verification failed"}), 403


@bp.post("/whatsapp/webhook")
def whatsapp_webhook_receive():
    raw = request.get_data(cache=True)
    secret = current_app.config.get("META_APP_SECRET") or ""
    if secret and not verify_hub_signature(secret, raw, request.headers.get("X-Hub-Signature-256")):
        logger.warning("Webhook signature mismatch from %s", request.remote_addr)
        return jsonify({"error": "Invalid signature"}), 401

    payload = request.get_json(silent=True) or {}
    s = db_session()
    try:
        counts = process_webhook_payload(s, payload)
        s.commit()
    except Exception:
        s.rollback()
        # always 200 once the signature checks out
        logger.exception("Failed to process WhatsApp webhook payload")
        return jsonify({"ok": True, "error": "processing_failed"})
    logger.info("Webhook processed: %s messages, %s statuses", counts["messages"], counts["statuses"])
    return jsonify({"ok": True, **counts})
