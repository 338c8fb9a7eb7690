"""
Bulk import of billing records.

Rows go through the same duplicate check as interactive entry but an
import never updates: each row is either skipped as a duplicate or
inserted. Rows are processed strictly in order, one at a time, so error
messages line up with input positions and a period repeated later in the
same batch is caught against the earlier row's committed insert.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .duplicates import DuplicateGuard
from .errors import DuplicateRecord
from .meters import DEFAULT_METER_MAPPING, MeterMapping
from .reconciliation import utc_now
from power_bill_tracker.storage.models import BillingRecord
from power_bill_tracker.storage.repository import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Outcome of a batch import.

    Duplicates are counted in `duplicates` and also reported in `errors`.
    """
    success: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duplicates": self.duplicates,
            "errors": list(self.errors),
        }


class BatchImporter:
    """Inserts a sequence of candidate records, isolating per-row failures."""

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

    def import_records(self, records: Iterable[BillingRecord], actor_id: str) -> ImportResult:
        """Import records in order, never letting one row abort the batch.

        Args:
            records: Validated candidate records
            actor_id: Identifier of the acting user, stamped as created_by

        Returns:
            ImportResult with success and duplicate counts and row messages
        """
        result = ImportResult()

        for position, record in enumerate(records, start=1):
            record = replace(
                record,
                id=None,
                meter_code=self.meter_mapping.resolve(record.subject_number, record.meter_code),
            )
            try:
                if self.guard.exists(record.subject_number, record.month, record.year):
                    self._count_duplicate(result, position, record)
                    continue
                self.store.insert(replace(record, created_by=actor_id, recorded_at=self.clock()))
                result.success += 1
            except DuplicateRecord:
                # Unique index caught a concurrent insert of the same period.
                self._count_duplicate(result, position, record)
            except Exception as e:
                logger.warning("Import row %d failed: %s", position, e, exc_info=True)
                result.errors.append(f"row {position}: error - {e}")

        logger.info(
            "Import finished: %d inserted, %d duplicates, %d errors",
            result.success, result.duplicates, len(result.errors),
        )
        return result

    @staticmethod
    def _count_duplicate(result: ImportResult, position: int, record: BillingRecord) -> None:
        result.duplicates += 1
        result.errors.append(
            f"row {position}: duplicate for {record.subject_number} - {record.month}/{record.year}"
        )
