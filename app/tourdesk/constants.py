"""
Central constants for the TourDesk application.
"""
from __future__ import annotations

# Policy list fields on a Tour Package Query (stored as JSON lists)
POLICY_FIELDS = (
    "inclusions",
    "exclusions",
    "important_notes",
    "payment_policy",
    "useful_tip",
    "cancellation_policy",
    "airline_cancellation_policy",
    "terms_conditions",
    "kitchen_group_policy",
)

# Tour package template types
TEMPLATE_TYPE_TOUR_PACKAGE = "TourPackage"

# Occupancy name keyword -> persons per unit (anything else counts as 1)
PAX_PER_UNIT = {"double": 2, "triple": 3, "quad": 4}

# Transport pricing types
TRANSPORT_PRICING_TYPES = ("PerDay", "PerTrip")

DEFAULT_CURRENCY = "INR"

# WhatsApp
WHATSAPP_ADDRESS_PREFIX = "whatsapp:"
MESSAGING_WINDOW_HOURS = 24
DEFAULT_MESSAGE_FETCH_LIMIT = 1000

# Meta error codes
META_ERROR_REENGAGEMENT = 131047  # outside the 24h customer-service window
META_ERROR_OPTED_OUT = 131050  # user stopped marketing messages
META_ERROR_NOT_DELIVERED = 131049  # ecosystem engagement limit
META_ERROR_INVALID_PARAMETER = 100
NO_RETRY_ERROR_CODES = frozenset(
    {META_ERROR_NOT_DELIVERED, META_ERROR_OPTED_OUT, META_ERROR_INVALID_PARAMETER, META_ERROR_REENGAGEMENT}
)
CAMPAIGN_MAX_RETRIES = 3
CAMPAIGN_DEFAULT_RATE_PER_MINUTE = 10
