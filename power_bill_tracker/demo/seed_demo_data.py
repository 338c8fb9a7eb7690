# power_bill_tracker/demo/seed_demo_data.py

from decimal import Decimal

from power_bill_tracker.core.errors import DuplicateRecord
from power_bill_tracker.core.reconciliation import ReconciliationEngine
from power_bill_tracker.storage.models import BillingRecord

DEMO_ACTOR = "demo"

# (subject, month, year, units, cost incl. VAT)
DEMO_BILLS = [
    ("012892858", 11, 2023, "1180", "5310.00"),
    ("012892858", 12, 2023, "1215", "5467.50"),
    ("012892858", 1, 2024, "1302", "5859.00"),
    ("012892858", 2, 2024, "1254", "5643.00"),
    ("012892858", 1, 2025, "1190", "5414.50"),
    ("012642429", 11, 2023, "640", "2880.00"),
    ("012642429", 12, 2023, "702", "3159.00"),
    ("012642429", 1, 2024, "688", "3096.00"),
    ("012642429", 2, 2024, "655", "2947.50"),
    ("012642429", 1, 2025, "610", "2775.50"),
]


def seed_demo_data(engine: ReconciliationEngine) -> int:
    """Insert the demo bills, skipping periods that already have one.

    Returns:
        Number of records inserted
    """
    inserted = 0
    for subject, month, year, units, cost in DEMO_BILLS:
        candidate = BillingRecord(
            subject_number=subject,
            month=month,
            year=year,
            usage_units=Decimal(units),
            total_cost=Decimal(cost),
        )
        try:
            engine.save(candidate, DEMO_ACTOR)
        except DuplicateRecord:
            continue
        inserted += 1
    return inserted
