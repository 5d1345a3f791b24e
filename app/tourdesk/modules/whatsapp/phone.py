from __future__ import annotations

import re

from app.tourdesk.constants import WHATSAPP_ADDRESS_PREFIX

DEFAULT_COUNTRY_CODE = "91"


def digits_only(value: str | None) -> str:
    return re.sub(r"[^0-9]", "", value or "")


def normalize_e164(raw: str | None) -> str:
    """Best-effort E.164 for outbound sends. Returns the input unchanged if it has no digits."""
    if not raw:
        return raw or ""
    trimmed = raw.strip()
    digits = digits_only(trimmed)
    if not digits:
        return trimmed
    if trimmed.startswith("+"):
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    return f"+{digits}"


def normalize_whatsapp_phone(raw: str | None) -> str:
    """
    Phone normalization for customer records. Bare local numbers are
    assumed to be Indian (+91).

    Raises ValueError for empty input or input without digits.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValueError("Phone number is required")
    digits = digits_only(trimmed)
    if not digits:
        raise ValueError("Phone number must contain digits")
    if trimmed.startswith("+"):
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if digits.startswith("0"):
        return f"+{DEFAULT_COUNTRY_CODE}{digits[1:]}"
    if len(digits) <= 10:
        return f"+{DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"


def to_whatsapp_address(phone: str) -> str:
    return f"{WHATSAPP_ADDRESS_PREFIX}{normalize_e164(phone)}"


def strip_whatsapp_prefix(address: str | None) -> str:
    s = (address or "").strip()
    if s.lower().startswith(WHATSAPP_ADDRESS_PREFIX):
        s = s[len(WHATSAPP_ADDRESS_PREFIX):]
    return s.strip()


def phone_variants(phone: str) -> list[str]:
    """Stored address forms for a phone; used to match messages against a contact."""
    e164 = normalize_e164(phone)
    bare = e164.lstrip("+")
    return [f"{WHATSAPP_ADDRESS_PREFIX}{e164}", f"{WHATSAPP_ADDRESS_PREFIX}{bare}", e164, bare]
