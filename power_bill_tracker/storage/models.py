"""
Data models for storage layer.

Defines billing records and user accounts as persisted by the stores.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


ROLE_USER = "user"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_USER, ROLE_ADMIN)


@dataclass(frozen=True)
class BillingRecord:
    """One electricity bill for one meter in one calendar month.

    At most one record may exist per (subject_number, month, year).
    `id`, `created_by` and `recorded_at` are stamped on insert and never
    change afterwards.
    """
    subject_number: str
    month: int
    year: int
    usage_units: Decimal
    total_cost: Decimal
    meter_code: str = ""
    fuel_adjustment_rate: Decimal = Decimal("0")
    id: Optional[str] = None
    created_by: Optional[str] = None
    recorded_at: Optional[datetime] = None


# Fields a caller may change through an update.
MUTABLE_FIELDS = (
    "subject_number",
    "meter_code",
    "month",
    "year",
    "usage_units",
    "total_cost",
    "fuel_adjustment_rate",
)


@dataclass(frozen=True)
class UserAccount:
    """Whitelisted user with a role."""
    id: str
    email: str
    role: str = ROLE_USER
