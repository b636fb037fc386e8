"""
Central constants for the Steward application.
"""
from __future__ import annotations

PARTICIPATION_STATUSES = ("active", "deceased", "homebound", "military", "inactive", "school")

SEX_VALUES = ("male", "female", "other")

SEQUENCE_VALUES = ("head_of_house", "spouse", "child")

HOUSEHOLD_TYPES = ("family", "single", "other")

RECEIVED_BY_VALUES = (
    "adult_confirmation",
    "affirmation_of_faith",
    "baptism",
    "junior_confirmation",
    "transfer",
    "with_parents",
    "other_denomination",
    "unknown",
)

REMOVED_BY_VALUES = (
    "death",
    "excommunication",
    "inactivity",
    "moved_no_transfer",
    "released",
    "removed_by_request",
    "transfer",
    "other",
)

SERVICE_TYPES = ("divine_service", "midweek_lent", "midweek_advent", "festival")

SERVICE_TYPE_LABELS = {
    "divine_service": "Divine Service",
    "midweek_lent": "Midweek Lent",
    "midweek_advent": "Midweek Advent",
    "festival": "Festival",
}

SUBSCRIPTION_STATUSES = ("active", "past_due", "canceled", "unpaid")

SUBSCRIPTION_PLANS = ("free", "basic", "premium")

# Seeded for every new church, in display order.
DEFAULT_GIVING_CATEGORIES = (
    ("Current", 1),
    ("Mission", 2),
    ("Memorials", 3),
    ("Debt", 4),
    ("School", 5),
    ("Miscellaneous", 6),
)

# Envelope 0 is reserved for loose-plate giving recorded against the guest member.
GUEST_MEMBERSHIP_CODE = "GUEST"
GUEST_ENVELOPE_NUMBER = 0

INVITATION_TTL_DAYS = 7

MIN_PASSWORD_LENGTH = 8

MAX_PAGE_SIZE = 100
