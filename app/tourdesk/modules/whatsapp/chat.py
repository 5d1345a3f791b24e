"""
Conversation view built from the flat WhatsApp message log.

Messages are grouped per contact phone; each conversation is ordered
oldest first and contacts are ordered by their latest message.
"""
from __future__ import annotations

import re
from typing import Any, Iterable

from app.tourdesk.modules.whatsapp.models import WhatsAppMessage
from app.tourdesk.modules.whatsapp.phone import strip_whatsapp_prefix
from app.tourdesk.utils import iso

PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")
LEGACY_TEMPLATE_RE = re.compile(r"\[template:([^\]]+)\]")
STATUS_TICKS = {"sent": 1, "delivered": 2, "read": 3}


def normalize_contact_address(value: str | None) -> str | None:
    if not value:
        return None
    stripped = strip_whatsapp_prefix(value)
    if not stripped or stripped.lower() == "business":
        return None
    if stripped.startswith("+"):
        return stripped
    digits = re.sub(r"[^\d]", "", stripped)
    if not digits:
        return stripped
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    return f"+{digits}"


def format_contact_label(value: str | None) -> str:
    normalized = normalize_contact_address(value)
    if normalized:
        return normalized
    return strip_whatsapp_prefix(value) or "Unknown contact"


def avatar_text(phone: str) -> str:
    return re.sub(r"\D", "", phone)[-2:] or "CT"


def status_ticks(status: str | None) -> int:
    return STATUS_TICKS.get(status or "", 0)


def substitute_template(body: str | None, variables: dict[str, Any] | None) -> str:
    if not body:
        return ""
    variables = variables or {}

    def repl(m: re.Match) -> str:
        key = m.group(1)
        return str(variables[key]) if variables.get(key) is not None else f"{{{{{key}}}}}"

    return PLACEHOLDER_RE.sub(repl, body)


def extract_placeholders(text: str | None) -> list[str]:
    out: list[str] = []
    for key in PLACEHOLDER_RE.findall(text or ""):
        if key not in out:
            out.append(key)
    return out


def _template_body(template: dict) -> str:
    if template.get("body"):
        return template["body"]
    for comp in template.get("components") or []:
        if (comp.get("type") or "").upper() == "BODY":
            return comp.get("text") or ""
    return ""


def _template_buttons(template: dict | None) -> list | None:
    if not template:
        return None
    for comp in template.get("components") or []:
        if (comp.get("type") or "").upper() == "BUTTONS":
            return comp.get("buttons") or []
    return None


def message_text(body: str | None, meta: dict[str, Any]) -> str:
    """Human-readable text for a stored message, based on its whatsappType."""
    text = body or meta.get("textPreview") or "[No content]"
    wtype = meta.get("whatsappType")
    if not wtype or wtype == "text":
        return text
    media = meta.get("media") or {}
    if wtype == "image":
        return media.get("caption") or meta.get("textPreview") or "📷 Image"
    if wtype == "video":
        return media.get("caption") or "🎞️ Video"
    if wtype == "audio":
        return "🎧 Audio message"
    if wtype == "document":
        return media.get("filename") or "📄 Document"
    if wtype == "sticker":
        return "🩵 Sticker"
    if wtype == "location":
        name = (meta.get("location") or {}).get("name")
        return f"📍 {name}" if name else "📍 Location shared"
    if wtype == "contacts":
        count = len(meta.get("sharedContacts") or []) or 1
        return f"👥 Shared {count} contacts" if count > 1 else "👤 Shared contact"
    if wtype == "interactive":
        catalog = meta.get("catalog") or {}
        interactive = meta.get("interactive") or {}
        if catalog.get("type") == "product":
            label = catalog.get("productRetailerId") or meta.get("textPreview") or "Catalog product"
            return f"🛍️ Catalog • {label}"
        if catalog.get("type") == "product_list":
            count = len(catalog.get("productIds") or [])
            return f"🛍️ Catalog • {count} item{'' if count == 1 else 's'}" if count else "🛍️ Catalog shared"
        if (interactive.get("buttonReply") or {}).get("title"):
            return f"↩️ Button reply: {interactive['buttonReply']['title']}"
        if (interactive.get("listReply") or {}).get("title"):
            return f"📋 List reply: {interactive['listReply']['title']}"
        return "🧾 Interactive response"
    return meta.get("textPreview") or text


def preview_label(message: dict | None) -> str:
    """One-line label for the contact list, from a built chat message."""
    if not message:
        return "Start a conversation"
    meta = message.get("metadata") or {}
    if meta.get("templateName") or meta.get("templateId"):
        return f"Template • {meta.get('templateName') or meta.get('templateId')}"
    wtype = meta.get("whatsappType")
    if not wtype or wtype == "text":
        return message.get("text") or ""
    media = meta.get("media") or {}
    if wtype in ("image", "video", "audio"):
        return f"Media • {wtype.capitalize()}"
    if wtype == "document":
        return f"Document • {media['filename']}" if media.get("filename") else "Media • Document"
    if wtype == "sticker":
        return "Sticker"
    if wtype == "location":
        name = (meta.get("location") or {}).get("name")
        return f"Location • {name}" if name else "Location shared"
    if wtype == "contacts":
        count = len(meta.get("sharedContacts") or []) or 1
        return f"Contacts • {count} shared" if count > 1 else "Contact shared"
    if wtype == "interactive":
        interactive = meta.get("interactive") or {}
        catalog = meta.get("catalog") or {}
        if (interactive.get("buttonReply") or {}).get("title"):
            return f"Button reply • {interactive['buttonReply']['title']}"
        if (interactive.get("listReply") or {}).get("title"):
            return f"List reply • {interactive['listReply']['title']}"
        if catalog.get("type") == "product":
            label = catalog.get("productRetailerId") or interactive.get("bodyText")
            return f"Catalog • {label}" if label else "Catalog product"
        if catalog.get("type") == "product_list":
            count = len(catalog.get("productIds") or [])
            if count:
                return f"Catalog • {count} item{'' if count == 1 else 's'}"
            return interactive.get("bodyText") or "Catalog selection"
    return message.get("text") or ""


def _find_template(templates: list[dict], template_id: Any = None, name: Any = None) -> dict | None:
    for t in templates:
        if (template_id and t.get("id") == template_id) or (name and t.get("name") == name):
            return t
    return None


def build_chat_message(m: WhatsAppMessage, templates: list[dict]) -> dict[str, Any]:
    meta = dict(m.meta or {})
    text = message_text(m.body, meta)
    template_meta: dict[str, Any] = {}

    if meta.get("templateId") or meta.get("templateName"):
        template = _find_template(templates, meta.get("templateId"), meta.get("templateName"))
        buttons = meta.get("buttons") if isinstance(meta.get("buttons"), list) else _template_buttons(template)
        template_meta = {
            "templateId": (template or {}).get("id") or meta.get("templateId"),
            "templateName": (template or {}).get("name") or meta.get("templateName"),
            "headerImage": meta.get("headerImage") or (meta.get("header") or {}).get("image"),
            "buttons": buttons,
            "flowButtons": meta.get("flowButtons") if isinstance(meta.get("flowButtons"), list) else None,
            "components": (template or {}).get("components") or meta.get("components"),
            "variables": meta.get("variables"),
        }

    if text.startswith("[template:"):
        found = LEGACY_TEMPLATE_RE.search(text)
        if found:
            template = _find_template(templates, template_id=found.group(1))
            if template:
                text = _template_body(template)
                template_meta = {
                    "templateId": template.get("id"),
                    "templateName": template.get("name"),
                    "buttons": _template_buttons(template),
                    "components": template.get("components"),
                }
            else:
                text = f"Template: {found.group(1)}"

    return {
        "id": m.id,
        "text": text,
        "direction": "in" if m.direction == "inbound" else "out",
        "ts": iso(m.created_at),
        "status": status_ticks(m.status),
        "metadata": {**meta, **template_meta},
    }


def contact_phone_for(m: WhatsAppMessage) -> str | None:
    from_n = normalize_contact_address(m.from_address)
    to_n = normalize_contact_address(m.to_address)
    if m.direction == "inbound":
        return from_n or to_n
    return to_n or from_n


def _display_name(m: WhatsAppMessage) -> tuple[str, bool]:
    """(name, is_known): a known name is a customer or profile name, never a phone."""
    customer = m.customer
    if customer is not None:
        return customer.full_name, True
    profile = (m.meta or {}).get("contactName")
    if profile:
        return profile, True
    label = format_contact_label(m.from_address if m.direction == "inbound" else m.to_address)
    return label, False


def build_conversations(messages: Iterable[WhatsAppMessage], templates: list[dict] | None = None) -> dict[str, Any]:
    templates = templates or []
    contacts: dict[str, dict] = {}
    convos: dict[str, list[tuple[Any, dict]]] = {}

    for m in messages:
        phone = contact_phone_for(m)
        if not phone:
            continue
        name, known = _display_name(m)
        contact = contacts.get(phone)
        if contact is None:
            contacts[phone] = {"id": phone, "name": name, "phone": phone, "avatarText": avatar_text(phone)}
        elif known and contact["name"] != name:
            contact["name"] = name
        convos.setdefault(phone, []).append((m.created_at, build_chat_message(m, templates)))

    conversations: dict[str, list[dict]] = {}
    last_ts: dict[str, Any] = {}
    for phone, items in convos.items():
        items.sort(key=lambda pair: pair[0])
        conversations[phone] = [msg for _, msg in items]
        last_ts[phone] = items[-1][0]

    ordered = sorted(contacts.values(), key=lambda c: last_ts[c["id"]], reverse=True)
    for contact in ordered:
        convo = conversations[contact["id"]]
        contact["category"] = "two_way" if any(x["direction"] == "in" for x in convo) else "template_only"
        contact["lastMessagePreview"] = preview_label(convo[-1] if convo else None)
        contact["lastMessageAt"] = convo[-1]["ts"] if convo else None
        contact["messageCount"] = len(convo)

    return {
        "contacts": ordered,
        "conversations": conversations,
        "stats": {
            "contacts": len(ordered),
            "twoWay": sum(1 for c in ordered if c["category"] == "two_way"),
            "templateOnly": sum(1 for c in ordered if c["category"] == "template_only"),
        },
    }
