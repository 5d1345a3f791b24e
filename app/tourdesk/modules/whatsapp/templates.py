"""
WhatsApp message template management (WABA message_templates edge),
component builders and parameter analysis.
"""
from __future__ import annotations

import re
import time
from datetime import datetime
from typing import Any

from app.tourdesk.modules.whatsapp.client import GraphApiError, MetaGraphClient

TEMPLATE_CATEGORIES = ("AUTHENTICATION", "MARKETING", "UTILITY")
TEMPLATE_STATUSES = ("APPROVED", "PENDING", "REJECTED", "PAUSED", "DISABLED", "DELETED")
MEDIA_HEADER_FORMATS = ("IMAGE", "VIDEO", "DOCUMENT")
DEFAULT_FIELDS = (
    "id",
    "name",
    "language",
    "status",
    "category",
    "components",
    "rejected_reason",
    "quality_score",
    "last_updated_time",
)

PARAM_RE = re.compile(r"\{\{([a-zA-Z0-9_]+)\}\}")
ANY_PARAM_RE = re.compile(r"\{\{[^}]+\}\}")


def _waba(client: MetaGraphClient) -> str:
    if not client.business_account_id:
        raise GraphApiError("Missing META_WHATSAPP_BUSINESS_ACCOUNT_ID")
    return client.business_account_id


# ---------- Management ----------
def list_templates(
    client: MetaGraphClient,
    *,
    limit: int = 100,
    after: str | None = None,
    fields: tuple[str, ...] | list[str] = DEFAULT_FIELDS,
    status: str | None = None,
    category: str | None = None,
    language: str | None = None,
) -> dict[str, Any]:
    params = {
        "limit": limit,
        "fields": ",".join(fields),
        "after": after,
        "status": status,
        "category": category,
        "language": language,
    }
    return client.request_json("GET", f"{_waba(client)}/message_templates", params=params)


def get_all_templates(
    client: MetaGraphClient, *, status: str | None = None, category: str | None = None, language: str | None = None
) -> list[dict]:
    """Follow cursor paging until Graph stops returning a next page."""
    out: list[dict] = []
    after = None
    while True:
        page = list_templates(client, limit=100, after=after, status=status, category=category, language=language)
        out.extend(page.get("data") or [])
        paging = page.get("paging") or {}
        after = (paging.get("cursors") or {}).get("after")
        if not (after and paging.get("next")):
            break
    return out


def get_template(client: MetaGraphClient, template_id: str) -> dict[str, Any]:
    return client.request_json("GET", template_id, params={"fields": ",".join(DEFAULT_FIELDS)})


def create_template(client: MetaGraphClient, request: dict[str, Any]) -> dict[str, Any]:
    """A string example on an IMAGE/VIDEO/DOCUMENT header is wrapped as header_handle."""
    components = []
    for comp in request.get("components") or []:
        if (
            comp.get("type") == "HEADER"
            and comp.get("format") in MEDIA_HEADER_FORMATS
            and isinstance(comp.get("example"), str)
        ):
            comp = {**comp, "example": {"header_handle": [comp["example"]]}}
        components.append(comp)
    body = {**request, "components": components}
    return client.request_json("POST", f"{_waba(client)}/message_templates", body=body, retries=0)


def delete_template(client: MetaGraphClient, name: str | None = None, hsm_id: str | None = None) -> dict[str, Any]:
    if not name and not hsm_id:
        raise ValueError("Template name or id is required")
    params = {"hsm_id": hsm_id} if hsm_id else {"name": name}
    if hsm_id and name:
        params["name"] = name
    return client.request_json("DELETE", f"{_waba(client)}/message_templates", params=params, retries=0)


def edit_template(client: MetaGraphClient, template_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    return client.request_json("POST", template_id, body=updates, retries=0)


def search_templates(
    client: MetaGraphClient,
    *,
    name: str | None = None,
    content: str | None = None,
    category: str | None = None,
    status: str | None = None,
    language: str | None = None,
) -> list[dict]:
    templates = get_all_templates(client, status=status, category=category, language=language)
    return filter_templates(templates, name=name, content=content)


def filter_templates(templates: list[dict], *, name: str | None = None, content: str | None = None) -> list[dict]:
    out = templates
    if name:
        q = name.lower()
        out = [t for t in out if q in (t.get("name") or "").lower()]
    if content:
        q = content.lower()
        out = [t for t in out if q in (_component(t, "BODY") or {}).get("text", "").lower()]
    return out


def get_templates_by_category(client: MetaGraphClient, category: str) -> list[dict]:
    return get_all_templates(client, category=category, status="APPROVED")


# ---------- Builders ----------
def build_text_header(text: str, parameter_format: str | None = None, example: str | None = None) -> dict:
    comp: dict[str, Any] = {"type": "HEADER", "format": "TEXT", "text": text}
    if example:
        if parameter_format == "named":
            m = PARAM_RE.search(text)
            if m:
                comp["example"] = {"header_text_named_params": [{"param_name": m.group(1), "example": example}]}
        else:
            comp["example"] = {"header_text": [example]}
    return comp


def build_media_header(fmt: str, handle_or_url: str) -> dict:
    if fmt not in MEDIA_HEADER_FORMATS:
        raise ValueError(f"Unsupported header format {fmt!r}")
    return {"type": "HEADER", "format": fmt, "example": {"header_handle": [handle_or_url]}}


def build_location_header() -> dict:
    return {"type": "HEADER", "format": "LOCATION"}


def build_body(text: str, parameter_format: str | None = None, examples: list[str] | dict[str, str] | None = None) -> dict:
    comp: dict[str, Any] = {"type": "BODY", "text": text}
    if parameter_format == "named" and isinstance(examples, dict):
        comp["example"] = {"body_text_named_params": [{"param_name": k, "example": v} for k, v in examples.items()]}
    elif isinstance(examples, list):
        comp["example"] = {"body_text": [examples]}
    return comp


def build_footer(text: str) -> dict:
    return {"type": "FOOTER", "text": text}


def build_quick_reply_button(text: str) -> dict:
    return {"type": "QUICK_REPLY", "text": text}


def build_phone_button(text: str, phone_number: str) -> dict:
    return {"type": "PHONE_NUMBER", "text": text, "phone_number": phone_number}


def build_url_button(text: str, url: str, example: str | None = None) -> dict:
    button: dict[str, Any] = {"type": "URL", "text": text, "url": url}
    if example and "{{" in url:
        button["example"] = [example]
    return button


def build_copy_code_button(example_code: str) -> dict:
    return {"type": "COPY_CODE", "example": example_code}


def build_flow_button(
    text: str,
    *,
    flow_id: str | None = None,
    flow_name: str | None = None,
    flow_json: Any = None,
    flow_action: str | None = None,
    navigate_screen: str | None = None,
    icon: str | None = None,
) -> dict:
    button: dict[str, Any] = {"type": "FLOW", "text": text}
    optional = {
        "flow_id": flow_id,
        "flow_name": flow_name,
        "flow_json": flow_json,
        "flow_action": flow_action,
        "navigate_screen": navigate_screen,
        "icon": icon,
    }
    button.update({k: v for k, v in optional.items() if v})
    return button


def build_otp_button(
    otp_type: str,
    text: str,
    *,
    autofill_text: str | None = None,
    package_name: str | None = None,
    signature_hash: str | None = None,
) -> dict:
    if otp_type not in ("COPY_CODE", "ONE_TAP"):
        raise ValueError("otp_type must be COPY_CODE or ONE_TAP")
    button: dict[str, Any] = {"type": "OTP", "otp_type": otp_type, "text": text}
    optional = {"autofill_text": autofill_text, "package_name": package_name, "signature_hash": signature_hash}
    button.update({k: v for k, v in optional.items() if v})
    return button


def build_buttons(buttons: list[dict]) -> dict:
    return {"type": "BUTTONS", "buttons": buttons}


# ---------- Analysis ----------
def _component(template: dict, ctype: str) -> dict | None:
    for comp in template.get("components") or []:
        if (comp.get("type") or "").upper() == ctype:
            return comp
    return None


def extract_parameters(text: str | None) -> list[str]:
    return PARAM_RE.findall(text or "")


def extract_template_parameters(template: dict) -> dict[str, Any]:
    """{"header": [...], "body": [...], "buttons": {index: [...]}}, keys present only when needed."""
    params: dict[str, Any] = {}
    for comp in template.get("components") or []:
        ctype = (comp.get("type") or "").upper()
        if ctype == "HEADER" and comp.get("text"):
            found = extract_parameters(comp["text"])
            if found:
                params["header"] = found
        elif ctype == "BODY":
            found = extract_parameters(comp.get("text"))
            if found:
                params["body"] = found
        elif ctype == "BUTTONS":
            for i, button in enumerate(comp.get("buttons") or []):
                if button.get("type") == "URL" and "{{" in (button.get("url") or ""):
                    params.setdefault("buttons", {})[i] = extract_parameters(button["url"])
    return params


def validate_template_parameters(template: dict, parameters: dict[str, Any]) -> dict[str, Any]:
    errors: list[str] = []
    required = extract_template_parameters(template)
    if required.get("header") and not parameters.get("header"):
        errors.append(f"Header parameter required: {', '.join(required['header'])}")
    if required.get("body"):
        body = parameters.get("body") or []
        if len(body) < len(required["body"]):
            errors.append(f"Body requires {len(required['body'])} parameters: {', '.join(required['body'])}")
    buttons = parameters.get("buttons") or {}
    for i, names in (required.get("buttons") or {}).items():
        if not (buttons.get(i) or buttons.get(str(i))):
            errors.append(f"Button {i} requires parameters: {', '.join(names)}")
    return {"valid": not errors, "errors": errors}


def preview_template(template: dict, parameters: dict[str, Any] | None = None) -> str:
    parameters = parameters or {}
    parts: list[str] = []
    for comp in template.get("components") or []:
        ctype = (comp.get("type") or "").upper()
        if ctype == "HEADER" and comp.get("text"):
            text = comp["text"]
            if parameters.get("header"):
                text = ANY_PARAM_RE.sub(str(parameters["header"]), text)
            parts.append(f"[{text}]")
        elif ctype == "BODY":
            text = comp.get("text") or ""
            for i, value in enumerate(parameters.get("body") or []):
                positional = f"{{{{{i + 1}}}}}"
                if positional in text:
                    text = text.replace(positional, str(value), 1)
                else:
                    text = PARAM_RE.sub(str(value), text, count=1)
            parts.append(text)
        elif ctype == "FOOTER":
            parts.append(f"[{comp.get('text') or ''}]")
        elif ctype == "BUTTONS":
            lines = ["Buttons:"]
            button_params = parameters.get("buttons") or {}
            for i, button in enumerate(comp.get("buttons") or []):
                btype = button.get("type")
                if btype == "QUICK_REPLY":
                    lines.append(f"  [{button.get('text')}]")
                elif btype == "PHONE_NUMBER":
                    lines.append(f"  📞 {button.get('text')}: {button.get('phone_number')}")
                elif btype == "URL":
                    url = button.get("url") or ""
                    for value in button_params.get(i) or button_params.get(str(i)) or []:
                        url = ANY_PARAM_RE.sub(str(value), url, count=1)
                    lines.append(f"  🔗 {button.get('text')}: {url}")
                elif btype == "COPY_CODE":
                    lines.append("  📋 Copy Code")
                elif btype == "FLOW":
                    lines.append(f"  ⚡ {button.get('text')} (Flow)")
            parts.append("\n".join(lines))
    return "\n\n".join(parts).strip()


def _updated_epoch(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00").replace("+0000", "+00:00")).timestamp()
    except ValueError:
        return None


def analyze_template_quality(templates: list[dict], *, now: float | None = None) -> dict[str, Any]:
    now = time.time() if now is None else now
    by_status: dict[str, int] = {}
    by_category: dict[str, int] = {}
    by_quality = {"GREEN": 0, "YELLOW": 0, "RED": 0, "UNKNOWN": 0}
    total_age = 0.0
    for t in templates:
        by_status[t.get("status") or "UNKNOWN"] = by_status.get(t.get("status") or "UNKNOWN", 0) + 1
        by_category[t.get("category") or "UNKNOWN"] = by_category.get(t.get("category") or "UNKNOWN", 0) + 1
        quality = ((t.get("quality_score") or {}).get("score")) or "UNKNOWN"
        by_quality[quality] = by_quality.get(quality, 0) + 1
        updated = _updated_epoch(t.get("last_updated_time"))
        if updated is not None:
            total_age += now - updated
    return {
        "total": len(templates),
        "byStatus": by_status,
        "byCategory": by_category,
        "byQuality": by_quality,
        "averageAge": (total_age / len(templates) / 86400) if templates else 0,
    }


def template_summary(template: dict) -> dict[str, Any]:
    """Flattened view stored on sent messages so the chat can render buttons and headers later."""
    header = _component(template, "HEADER") or {}
    buttons_comp = _component(template, "BUTTONS") or {}
    buttons = buttons_comp.get("buttons") or []
    header_image = None
    if header.get("format") == "IMAGE":
        handles = (header.get("example") or {}).get("header_handle") or []
        header_image = handles[0] if handles else None
    return {
        "templateId": template.get("id"),
        "templateName": template.get("name"),
        "headerImage": header_image,
        "buttons": [{"type": b.get("type"), "text": b.get("text"), "url": b.get("url")} for b in buttons],
        "flowButtons": [b for b in buttons if b.get("type") == "FLOW"],
        "components": template.get("components") or [],
    }
