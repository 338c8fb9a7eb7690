"""
Duplicate detection for billing periods.

One bill per subject per month is enforced here, at the application layer,
immediately before every insert.
"""

from typing import Optional

from power_bill_tracker.storage.repository import RecordStore


class DuplicateGuard:
    """Answers whether a subject already has a record for a period.

    The check and the following insert are two separate store calls, so two
    concurrent writers can both see "not exists". Initialize the schema with
    `enforce_unique_period=True` to close that window at the storage layer.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def exists(
        self,
        subject_number: str,
        month: int,
        year: int,
        exclude_id: Optional[str] = None,
    ) -> bool:
        """Check for an existing record in (month, year) for the subject.

        Args:
            subject_number: Compared as a string, never coerced to a number
            month: Compared as an integer
            year: Compared as an integer
            exclude_id: Record id to ignore, used when re-checking an update

        Returns:
            True if at least one other matching record exists
        """
        matches = self.store.query_by_equality({
            "subject_number": str(subject_number),
            "month": int(month),
            "year": int(year),
        })
        return any(record.id != exclude_id for record in matches)
