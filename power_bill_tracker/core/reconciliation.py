"""
Insert-or-update reconciliation for interactive record entry.

State per period key (subject, month, year):
1. absent -> present: insert, stamping created_by and recorded_at
2. present -> present: update of an already located record

Deletion is never part of this flow.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .duplicates import DuplicateGuard
from .errors import DuplicateRecord, RecordNotFound
from .meters import DEFAULT_METER_MAPPING, MeterMapping
from power_bill_tracker.storage.models import BillingRecord, MUTABLE_FIELDS
from power_bill_tracker.storage.repository import RecordStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SaveOutcome:
    """Result of a single-record save."""
    record_id: str
    created: bool  # False when an existing record was updated


@dataclass(frozen=True)
class EditLookup:
    """Existing record located for a period, used to prefill an edit."""
    record_id: str
    record: BillingRecord


class ReconciliationEngine:
    """Decides insert vs. update for an incoming billing record.

    The duplicate check on insert is authoritative. `lookup_for_edit` is
    advisory: it lets a caller switch to edit mode before saving.
    """

    def __init__(
        self,
        store: RecordStore,
        meter_mapping: MeterMapping = DEFAULT_METER_MAPPING,
        guard: Optional[DuplicateGuard] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.meter_mapping = meter_mapping
        self.guard = guard or DuplicateGuard(store)
        self.clock = clock

    def save(
        self,
        candidate: BillingRecord,
        actor_id: str,
        record_id: Optional[str] = None,
    ) -> SaveOutcome:
        """Save a candidate record.

        Without `record_id` the record is inserted after the duplicate check.
        With `record_id` the located record is updated in place; its id,
        created_by and recorded_at never change.

        Args:
            candidate: Validated record to save
            actor_id: Identifier of the acting user
            record_id: Id of a record previously found by lookup_for_edit

        Returns:
            SaveOutcome with the record id and whether it was created

        Raises:
            DuplicateRecord: If inserting into an occupied period, or an update
                moves the record onto another record's period
            RecordNotFound: If record_id doesn't exist
            StoreUnavailable: If the store fails
        """
        candidate = replace(
            candidate,
            meter_code=self.meter_mapping.resolve(candidate.subject_number, candidate.meter_code),
        )
        if record_id is None:
            return SaveOutcome(record_id=self._insert(candidate, actor_id), created=True)
        self._update(record_id, candidate)
        return SaveOutcome(record_id=record_id, created=False)

    def lookup_for_edit(self, subject_number: str, month: int, year: int) -> Optional[EditLookup]:
        """Find the existing record for a period, if any.

        Returns:
            EditLookup for the existing record, or None to signal create mode
        """
        matches = self.store.query_by_equality({
            "subject_number": str(subject_number),
            "month": int(month),
            "year": int(year),
        })
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Found %d records for %s in %s/%s; editing the earliest",
                len(matches), subject_number, month, year,
            )
        record = min(matches, key=_recorded_sort_key)
        return EditLookup(record_id=record.id, record=record)

    def _insert(self, candidate: BillingRecord, actor_id: str) -> str:
        if self.guard.exists(candidate.subject_number, candidate.month, candidate.year):
            logger.info(
                "Rejected duplicate for %s in %s/%s",
                candidate.subject_number, candidate.month, candidate.year,
            )
            raise DuplicateRecord(candidate.subject_number, candidate.month, candidate.year)

        record = replace(candidate, id=None, created_by=actor_id, recorded_at=self.clock())
        record_id = self.store.insert(record)
        logger.info(
            "Inserted record %s for %s in %s/%s",
            record_id, record.subject_number, record.month, record.year,
        )
        return record_id

    def _update(self, record_id: str, candidate: BillingRecord) -> None:
        current = self.store.get_by_id(record_id)
        if current is None:
            raise RecordNotFound(record_id)

        key = (candidate.subject_number, candidate.month, candidate.year)
        if key != (current.subject_number, current.month, current.year) and self.guard.exists(
            *key, exclude_id=record_id
        ):
            raise DuplicateRecord(*key)

        self.store.update(record_id, update_payload(candidate))
        logger.info("Updated record %s for %s in %s/%s", record_id, *key)


def update_payload(candidate: BillingRecord) -> Dict[str, Any]:
    """Fields of a candidate that an update may write."""
    return {name: getattr(candidate, name) for name in MUTABLE_FIELDS}


def _recorded_sort_key(record: BillingRecord):
    # Records without a timestamp sort last.
    stamp = record.recorded_at.isoformat() if record.recorded_at else ""
    return (record.recorded_at is None, stamp, record.id or "")
