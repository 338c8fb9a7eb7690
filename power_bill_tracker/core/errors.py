"""
Error hierarchy for the billing tracker.

Core code raises these and lets them propagate; only the CLI turns them
into user-facing messages and exit codes.
"""


class TrackerError(Exception):
    """Base error for all billing tracker operations."""


class DuplicateRecord(TrackerError):
    """A record already exists for this subject and period."""

    def __init__(self, subject_number: str, month: int, year: int):
        super().__init__(
            f"A record for {subject_number} in {month}/{year} already exists"
        )
        self.subject_number = subject_number
        self.month = month
        self.year = year


class ValidationError(TrackerError):
    """Missing required field or non-numeric required value."""


class StoreUnavailable(TrackerError):
    """The record store failed (I/O, permission, locking)."""


class RecordNotFound(TrackerError):
    """No record exists for the given id."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class Unauthorized(TrackerError):
    """The actor lacks the role required for the operation."""
