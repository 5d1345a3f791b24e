"""
Template broadcast campaigns.

A campaign is sent synchronously by an admin request: pending recipients
are sent one template message each, throttled to the campaign rate limit
and bounded by the configured batch size. Delivery and read receipts
arrive later through the webhook and are folded into the counters by
apply_recipient_status().
"""
from __future__ import annotations

import logging
import math
import re
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import func

from app.tourdesk.audit import record_event
from app.tourdesk.constants import CAMPAIGN_DEFAULT_RATE_PER_MINUTE, CAMPAIGN_MAX_RETRIES, META_ERROR_OPTED_OUT, NO_RETRY_ERROR_CODES
from app.tourdesk.modules.whatsapp.client import MetaGraphClient
from app.tourdesk.modules.whatsapp.customers import find_by_phone
from app.tourdesk.modules.whatsapp.models import (
    CAMPAIGN_STATUSES,
    RECIPIENT_STATUSES,
    WhatsAppCampaign,
    WhatsAppCampaignRecipient,
)
from app.tourdesk.modules.whatsapp.phone import normalize_e164
from app.tourdesk.modules.whatsapp.service import send_template_message
from app.tourdesk.utils import iso, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.tourdesk.models import User

logger = logging.getLogger(__name__)

ERROR_CODE_RE = re.compile(r"\(#(\d+)\)")
EDITABLE_STATUSES = ("draft", "scheduled")
SENDABLE_RECIPIENT_STATUSES = ("pending", "retry")
# receipt order; a late "delivered" never downgrades a "read"
RECEIPT_RANK = {"pending": 0, "retry": 0, "sent": 1, "delivered": 2, "read": 3, "responded": 4}


class CampaignError(ValueError):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


# ---------- Send helpers ----------
def extract_error_code(error: Any, code: Any = None) -> str | None:
    if isinstance(error, str):
        m = ERROR_CODE_RE.search(error)
        if m:
            return m.group(1)
    return str(code) if code is not None else None


def should_retry(error_code: str | None) -> bool:
    if not error_code:
        return True
    return error_code not in {str(c) for c in NO_RETRY_ERROR_CODES}


def is_within_send_window(start: int | None, end: int | None, hour: int) -> bool:
    if start is None or end is None:
        return True
    if start <= end:
        return start <= hour < end
    # window wraps past midnight, e.g. 21 -> 9
    return hour >= start or hour < end


def body_params_from(variables: dict[str, Any]) -> list[Any]:
    keys = sorted((k for k in variables if str(k).isdigit()), key=lambda k: int(k))
    return [variables[k] for k in keys]


# ---------- CRUD ----------
def _get(payload: dict, column: str, *aliases: str, default: Any = None) -> Any:
    for key in (column, *aliases):
        if key in payload:
            return payload[key]
    return default


def validate_campaign_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not (_get(payload, "name") or "").strip():
        errors.append("Campaign name is required")
    if not (_get(payload, "template_name", "templateName") or "").strip():
        errors.append("Template name is required")
    rate = _get(payload, "rate_limit", "rateLimit")
    if rate is not None and (parse_int(rate) is None or parse_int(rate) <= 0):
        errors.append("Rate limit must be a positive number")
    for key, alias in (("send_window_start", "sendWindowStart"), ("send_window_end", "sendWindowEnd")):
        raw = _get(payload, key, alias)
        if raw in (None, ""):
            continue
        hour = parse_int(raw)
        if hour is None or not 0 <= hour <= 23:
            errors.append(f"{alias} must be an hour between 0 and 23")
    recipients = _get(payload, "recipients", default=[])
    if recipients is not None and not isinstance(recipients, list):
        errors.append("Recipients must be a list")
    return errors


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


def add_recipients(s: "Session", campaign: WhatsAppCampaign, raw: list[dict]) -> int:
    """Attach recipients; blank phones are dropped and duplicates of existing phones skipped."""
    if campaign.status not in EDITABLE_STATUSES:
        raise CampaignError("Recipients can only be added to draft or scheduled campaigns")
    existing = {r.phone_number for r in campaign.recipients}
    added = 0
    for item in raw or []:
        phone_raw = (_get(item, "phone_number", "phoneNumber", "phone") or "").strip()
        if not phone_raw:
            continue
        phone = normalize_e164(phone_raw)
        if phone in existing:
            continue
        customer = find_by_phone(s, phone)
        customer_id = _get(item, "customer_id", "customerId") or (customer.id if customer else None)
        name = _get(item, "name") or (customer.full_name if customer else None)
        campaign.recipients.append(
            WhatsAppCampaignRecipient(
                phone_number=phone,
                customer_id=customer_id,
                name=name,
                variables=_get(item, "variables") or {},
                status="pending",
                retry_count=0,
                created_at=datetime.utcnow(),
            )
        )
        existing.add(phone)
        added += 1
    campaign.total_recipients = len(campaign.recipients)
    campaign.updated_at = datetime.utcnow()
    s.flush()
    return added


def create_campaign(s: "Session", payload: dict, user: "User | None") -> WhatsAppCampaign:
    now = datetime.utcnow()
    scheduled_for = _parse_dt(_get(payload, "scheduled_for", "scheduledFor"))
    start = _get(payload, "send_window_start", "sendWindowStart")
    end = _get(payload, "send_window_end", "sendWindowEnd")
    c = WhatsAppCampaign(
        name=payload["name"].strip(),
        description=_get(payload, "description"),
        template_name=_get(payload, "template_name", "templateName").strip(),
        template_language=_get(payload, "template_language", "templateLanguage") or "en_US",
        template_variables=_get(payload, "template_variables", "templateVariables") or {},
        status="scheduled" if scheduled_for else "draft",
        scheduled_for=scheduled_for,
        rate_limit=parse_int(_get(payload, "rate_limit", "rateLimit"), CAMPAIGN_DEFAULT_RATE_PER_MINUTE),
        send_window_start=parse_int(start) if start not in (None, "") else None,
        send_window_end=parse_int(end) if end not in (None, "") else None,
        total_recipients=0,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
    )
    s.add(c)
    s.flush()
    add_recipients(s, c, _get(payload, "recipients", default=[]) or [])
    record_event(
        s,
        actor=user,
        action="whatsapp_campaign.create",
        entity_type="WhatsAppCampaign",
        entity_id=str(c.id),
        metadata={"template": c.template_name, "recipients": c.total_recipients},
    )
    return c


def set_campaign_status(
    s: "Session", c: WhatsAppCampaign, status: str, user: "User | None", *, scheduled_for: Any = None
) -> WhatsAppCampaign:
    if status not in CAMPAIGN_STATUSES:
        raise CampaignError("Invalid status")
    now = datetime.utcnow()
    old = c.status
    c.status = status
    if status == "sending":
        c.started_at = now
    if status == "completed":
        c.completed_at = now
    if status == "scheduled" and scheduled_for is not None:
        c.scheduled_for = _parse_dt(scheduled_for)
    c.updated_at = now
    record_event(
        s,
        actor=user,
        action="whatsapp_campaign.status",
        entity_type="WhatsAppCampaign",
        entity_id=str(c.id),
        metadata={"from": old, "to": status},
    )
    return c


def update_campaign(s: "Session", c: WhatsAppCampaign, payload: dict, user: "User | None") -> WhatsAppCampaign:
    if c.status not in EDITABLE_STATUSES:
        raise CampaignError("Cannot edit campaign in current status")
    if _get(payload, "name"):
        c.name = payload["name"].strip()
    if "description" in payload:
        c.description = payload["description"]
    if _get(payload, "template_name", "templateName"):
        c.template_name = _get(payload, "template_name", "templateName").strip()
    if _get(payload, "template_language", "templateLanguage"):
        c.template_language = _get(payload, "template_language", "templateLanguage")
    if _get(payload, "template_variables", "templateVariables") is not None:
        c.template_variables = _get(payload, "template_variables", "templateVariables")
    if "scheduled_for" in payload or "scheduledFor" in payload:
        c.scheduled_for = _parse_dt(_get(payload, "scheduled_for", "scheduledFor"))
        c.status = "scheduled" if c.scheduled_for else "draft"
    rate = _get(payload, "rate_limit", "rateLimit")
    if rate is not None:
        c.rate_limit = parse_int(rate, c.rate_limit)
    c.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="whatsapp_campaign.update",
        entity_type="WhatsAppCampaign",
        entity_id=str(c.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return c


def delete_campaign(s: "Session", c: WhatsAppCampaign, user: "User | None") -> str:
    """A campaign that is sending is cancelled instead of deleted. Returns "cancelled" or "deleted"."""
    if c.status == "sending":
        c.status = "cancelled"
        c.completed_at = datetime.utcnow()
        record_event(s, actor=user, action="whatsapp_campaign.cancel", entity_type="WhatsAppCampaign", entity_id=str(c.id))
        return "cancelled"
    record_event(
        s,
        actor=user,
        action="whatsapp_campaign.delete",
        entity_type="WhatsAppCampaign",
        entity_id=str(c.id),
        metadata={"name": c.name},
    )
    s.delete(c)
    return "deleted"


def list_recipients(
    s: "Session", campaign_id: int, *, page: int = 1, limit: int = 50, status: str | None = None
) -> dict[str, Any]:
    page = max(page, 1)
    limit = max(min(limit, 500), 1)
    q = s.query(WhatsAppCampaignRecipient).filter(WhatsAppCampaignRecipient.campaign_id == campaign_id)
    if status:
        q = q.filter(WhatsAppCampaignRecipient.status == status)
    total = q.count()
    rows = q.order_by(WhatsAppCampaignRecipient.created_at.desc(), WhatsAppCampaignRecipient.id.desc())
    rows = rows.offset((page - 1) * limit).limit(limit).all()
    return {
        "recipients": [serialize_recipient(r) for r in rows],
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)},
    }


def campaign_stats(s: "Session", c: WhatsAppCampaign) -> dict[str, Any]:
    by_status = dict(
        s.query(WhatsAppCampaignRecipient.status, func.count(WhatsAppCampaignRecipient.id))
        .filter(WhatsAppCampaignRecipient.campaign_id == c.id)
        .group_by(WhatsAppCampaignRecipient.status)
        .all()
    )
    sent = c.sent_count or 0

    def rate(n: int) -> float:
        return round(n / sent * 100, 2) if sent else 0.0

    return {
        "byStatus": {st: by_status.get(st, 0) for st in RECIPIENT_STATUSES},
        "total": c.total_recipients,
        "sent": sent,
        "delivered": c.delivered_count,
        "read": c.read_count,
        "failed": c.failed_count,
        "responded": c.responded_count,
        "deliveryRate": rate(c.delivered_count),
        "readRate": rate(c.read_count),
        "responseRate": rate(c.responded_count),
    }


# ---------- Sending ----------
def _handle_failure(c: WhatsAppCampaign, r: WhatsAppCampaignRecipient, message: str, code: str | None) -> None:
    now = datetime.utcnow()
    r.error_code = code
    r.error_message = message
    if should_retry(code) and r.retry_count < CAMPAIGN_MAX_RETRIES:
        r.status = "retry"
        r.retry_count += 1
        r.last_retry_at = now
        return
    r.status = "opted_out" if code == str(META_ERROR_OPTED_OUT) else "failed"
    r.failed_at = now
    c.failed_count += 1


def run_campaign(
    s: "Session",
    campaign: WhatsAppCampaign,
    client: MetaGraphClient,
    *,
    user: "User | None" = None,
    sleep: Callable[[float], Any] = time.sleep,
    now: Callable[[], datetime] = datetime.now,
    max_batch: int = 500,
) -> dict[str, Any]:
    """
    Send pending (and retry-marked) recipients. Returns a summary with the
    final campaign status. Leaves the campaign "paused" when the send window
    closes, and "scheduled" while recipients are still pending or marked
    for retry (batch limit hit, or retryable failures).
    """
    if campaign.status not in EDITABLE_STATUSES:
        raise CampaignError("Campaign cannot be sent in current status")
    queue = [r for r in campaign.recipients if r.status in SENDABLE_RECIPIENT_STATUSES]
    if not queue:
        raise CampaignError("Campaign has no pending recipients")

    campaign.status = "sending"
    campaign.started_at = campaign.started_at or datetime.utcnow()
    s.flush()

    delay = 60 / (campaign.rate_limit or CAMPAIGN_DEFAULT_RATE_PER_MINUTE)
    sent = failed = retry = 0
    processed = 0
    try:
        for r in queue:
            if processed >= max_batch:
                break
            if not is_within_send_window(campaign.send_window_start, campaign.send_window_end, now().hour):
                logger.info("Campaign %s outside send window, pausing", campaign.id)
                campaign.status = "paused"
                break
            if processed:
                sleep(delay)
            processed += 1

            variables = {**(campaign.template_variables or {}), **(r.variables or {})}
            result = send_template_message(
                s,
                client,
                r.phone_number,
                campaign.template_name,
                language=campaign.template_language,
                body_params=body_params_from(variables),
                template_meta={"campaignId": campaign.id, "recipientId": r.id},
                user=user,
            )
            if result.success:
                r.status = "sent"
                r.sent_at = datetime.utcnow()
                r.message_id = result.message_id
                r.error_code = None
                r.error_message = None
                campaign.sent_count += 1
                sent += 1
            else:
                _handle_failure(campaign, r, result.error or "Unknown error", extract_error_code(result.error, result.error_code))
                if r.status == "retry":
                    retry += 1
                else:
                    failed += 1
            s.flush()
    except Exception:
        logger.exception("Campaign %s failed while sending", campaign.id)
        campaign.status = "failed"
        campaign.completed_at = datetime.utcnow()
        s.flush()
        raise

    remaining = sum(1 for r in campaign.recipients if r.status in SENDABLE_RECIPIENT_STATUSES)
    if campaign.status == "sending":
        if remaining:
            campaign.status = "scheduled"
        else:
            campaign.status = "completed"
            campaign.completed_at = datetime.utcnow()
    campaign.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="whatsapp_campaign.send",
        entity_type="WhatsAppCampaign",
        entity_id=str(campaign.id),
        metadata={"sent": sent, "failed": failed, "retry": retry, "status": campaign.status},
    )
    return {
        "campaignId": campaign.id,
        "status": campaign.status,
        "processed": processed,
        "sent": sent,
        "failed": failed,
        "retry": retry,
        "remaining": remaining,
    }


# ---------- Webhook receipts ----------
def apply_recipient_status(
    s: "Session",
    wamid: str,
    status: str,
    *,
    timestamp: datetime | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> int:
    when = timestamp or datetime.utcnow()
    rows = s.query(WhatsAppCampaignRecipient).filter(WhatsAppCampaignRecipient.message_id == wamid).all()
    for r in rows:
        c = r.campaign
        if status == "failed":
            if r.status != "failed":
                r.status = "failed"
                r.failed_at = when
                r.error_code = error_code
                r.error_message = error_message
                c.failed_count += 1
            continue
        if status in ("delivered", "read") and r.delivered_at is None:
            r.delivered_at = when
            c.delivered_count += 1
        if status == "read" and r.read_at is None:
            r.read_at = when
            c.read_count += 1
        if RECEIPT_RANK.get(status, 0) > RECEIPT_RANK.get(r.status, 0):
            r.status = status
    return len(rows)


def mark_recipient_responded(s: "Session", phone: str) -> WhatsAppCampaignRecipient | None:
    """Credit an inbound reply to the most recent campaign message sent to this phone."""
    r = (
        s.query(WhatsAppCampaignRecipient)
        .filter(
            WhatsAppCampaignRecipient.phone_number == normalize_e164(phone),
            WhatsAppCampaignRecipient.status.in_(("sent", "delivered", "read")),
        )
        .order_by(WhatsAppCampaignRecipient.sent_at.desc())
        .first()
    )
    if r is None:
        return None
    r.status = "responded"
    r.campaign.responded_count += 1
    return r


def serialize_recipient(r: WhatsAppCampaignRecipient) -> dict:
    return {
        "id": r.id,
        "campaign_id": r.campaign_id,
        "customer_id": r.customer_id,
        "phone_number": r.phone_number,
        "name": r.name,
        "variables": r.variables or {},
        "status": r.status,
        "message_id": r.message_id,
        "retry_count": r.retry_count,
        "error_code": r.error_code,
        "error_message": r.error_message,
        "sent_at": iso(r.sent_at),
        "delivered_at": iso(r.delivered_at),
        "read_at": iso(r.read_at),
        "failed_at": iso(r.failed_at),
        "created_at": iso(r.created_at),
    }


def serialize_campaign(c: WhatsAppCampaign) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "template_name": c.template_name,
        "template_language": c.template_language,
        "template_variables": c.template_variables or {},
        "status": c.status,
        "scheduled_for": iso(c.scheduled_for),
        "rate_limit": c.rate_limit,
        "send_window_start": c.send_window_start,
        "send_window_end": c.send_window_end,
        "total_recipients": c.total_recipients,
        "sent_count": c.sent_count,
        "delivered_count": c.delivered_count,
        "read_count": c.read_count,
        "failed_count": c.failed_count,
        "responded_count": c.responded_count,
        "started_at": iso(c.started_at),
        "completed_at": iso(c.completed_at),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
