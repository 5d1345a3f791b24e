import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.tourdesk.models import AuditEvent, User

# Graph credentials never land in the audit trail; customer phones are masked.
REDACTED_KEYS = frozenset({"access_token", "app_secret", "password", "token"})
PHONE_KEYS = frozenset({"phone", "phone_number", "phoneNumber"})


def mask_phone(value: str) -> str:
    """+919876543210 -> +91******3210"""
    digits = sum(ch.isdigit() for ch in value)
    if digits <= 4:
        return value
    keep_head = 3 if value.startswith("+") else 0
    head, tail = value[:keep_head], value[-4:]
    return head + "*" * (len(value) - keep_head - 4) + tail


def scrub_metadata(value: Any) -> Any:
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in REDACTED_KEYS:
                out[k] = "[redacted]"
            elif k in PHONE_KEYS and isinstance(v, str):
                out[k] = mask_phone(v)
            else:
                out[k] = scrub_metadata(v)
        return out
    if isinstance(value, (list, tuple)):
        return [scrub_metadata(v) for v in value]
    return value


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append an audit row for a booking, rate or WhatsApp change.

    Works from scripts and campaign runs too (no request context: no ip / request id).
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        client_ip=request.remote_addr if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(scrub_metadata(metadata), sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev
