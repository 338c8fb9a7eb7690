"""
Candidate record validation and import row preparation.

Turns loosely typed input (form fields, parsed CSV rows) into well-typed
`BillingRecord` candidates before anything touches the store.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .errors import ValidationError
from .meters import MeterMapping
from power_bill_tracker.storage.models import BillingRecord

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("subject_number", "month", "year", "usage_units", "total_cost")

# CSV column -> record field
CSV_COLUMNS = {
    "user_number": "subject_number",
    "meter_code": "meter_code",
    "month": "month",
    "year": "year",
    "electricity_usage": "usage_units",
    "total_with_vat": "total_cost",
    "ft_rate": "fuel_adjustment_rate",
}
REQUIRED_CSV_HEADERS = ("user_number", "month", "year", "electricity_usage", "total_with_vat")


@dataclass
class PreparedImport:
    """Rows ready for the batch importer plus the rows that were dropped."""
    records: List[BillingRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def build_candidate(fields: Mapping[str, Any], meter_mapping: MeterMapping) -> BillingRecord:
    """Validate raw fields and build an unsaved BillingRecord.

    Args:
        fields: Raw values keyed by record field name
        meter_mapping: Lookup used when no meter code is supplied

    Returns:
        Candidate record without id, created_by or recorded_at

    Raises:
        ValidationError: If a required field is missing or a numeric field
            is not a valid number in range
    """
    for name in REQUIRED_FIELDS:
        if _is_blank(fields.get(name)):
            raise ValidationError(f"{name} is required")

    # Subject numbers may look numeric but keep their leading zeros.
    subject_number = str(fields["subject_number"]).strip()

    month = _to_int("month", fields["month"])
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be between 1 and 12, got {month}")

    year = _to_int("year", fields["year"])
    if not 1000 <= year <= 9999:
        raise ValidationError(f"year must have four digits, got {year}")

    usage_units = _to_decimal("usage_units", fields["usage_units"])
    total_cost = _to_decimal("total_cost", fields["total_cost"])
    if usage_units < 0:
        raise ValidationError("usage_units cannot be negative")
    if total_cost < 0:
        raise ValidationError("total_cost cannot be negative")

    ft_raw = fields.get("fuel_adjustment_rate")
    fuel_adjustment_rate = (
        Decimal("0") if _is_blank(ft_raw) else _to_decimal("fuel_adjustment_rate", ft_raw)
    )

    meter_raw = fields.get("meter_code")
    meter_code = meter_mapping.resolve(
        subject_number, None if _is_blank(meter_raw) else str(meter_raw).strip()
    )

    return BillingRecord(
        subject_number=subject_number,
        meter_code=meter_code,
        month=month,
        year=year,
        usage_units=usage_units,
        total_cost=total_cost,
        fuel_adjustment_rate=fuel_adjustment_rate,
    )


def prepare_import_rows(
    rows: Iterable[Mapping[str, Any]],
    meter_mapping: MeterMapping,
    headers: Optional[Sequence[str]] = None,
) -> PreparedImport:
    """Validate parsed CSV rows for the batch importer.

    Rows without a user_number or with a non-numeric month are dropped, as
    are rows whose other values fail validation. Each drop is reported as
    "row <n>: skipped - <reason>" where n is the 1-based data row.

    Args:
        rows: Parsed rows keyed by CSV header
        meter_mapping: Lookup for rows without a meter_code
        headers: CSV header row; taken from the first row when omitted

    Returns:
        PreparedImport with candidate records and skip messages

    Raises:
        ValidationError: If required columns are missing
    """
    rows = list(rows)
    if headers is None:
        headers = list(rows[0].keys()) if rows else list(REQUIRED_CSV_HEADERS)

    missing = [h for h in REQUIRED_CSV_HEADERS if h not in headers]
    if missing:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")

    prepared = PreparedImport()
    for position, row in enumerate(rows, start=1):
        if _is_blank(row.get("user_number")):
            prepared.skipped.append(f"row {position}: skipped - missing user_number")
            continue
        try:
            _to_int("month", row.get("month"))
        except ValidationError:
            prepared.skipped.append(f"row {position}: skipped - month is not a number")
            continue

        fields = {CSV_COLUMNS[col]: value for col, value in row.items() if col in CSV_COLUMNS}
        try:
            prepared.records.append(build_candidate(fields, meter_mapping))
        except ValidationError as e:
            prepared.skipped.append(f"row {position}: skipped - {e}")

    if prepared.skipped:
        logger.info("Dropped %d of %d import rows", len(prepared.skipped), len(rows))
    return prepared


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not number.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    return number


def _to_int(name: str, value: Any) -> int:
    if _is_blank(value):
        raise ValidationError(f"{name} is required")
    number = _to_decimal(name, value)
    # Bound the exponent before int() expands it.
    if number.adjusted() > 9:
        raise ValidationError(f"{name} is out of range")
    if number != number.to_integral_value():
        raise ValidationError(f"{name} must be a whole number, got {value!r}")
    return int(number)
