"""
Repository pattern for billing record access.

The core only talks to a `RecordStore`: generic CRUD plus equality-filtered
queries. `SQLiteRecordStore` is the bundled implementation.
"""

import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import BillingRecord, MUTABLE_FIELDS
from power_bill_tracker.core.errors import (
    DuplicateRecord,
    RecordNotFound,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

TABLE_NAME = "electricity_records"

# Fields that may appear in an equality filter.
FILTERABLE_FIELDS = ("subject_number", "meter_code", "month", "year", "created_by")

_DECIMAL_FIELDS = ("usage_units", "total_cost", "fuel_adjustment_rate")

_COLUMNS = (
    "id",
    "subject_number",
    "meter_code",
    "month",
    "year",
    "usage_units",
    "total_cost",
    "fuel_adjustment_rate",
    "created_by",
    "recorded_at",
)


class RecordStore(ABC):
    """Document-style store for billing records.

    Every operation may raise `StoreUnavailable`. Query results carry no
    ordering guarantee.
    """

    @abstractmethod
    def insert(self, record: BillingRecord) -> str:
        """Persist a new record and return its assigned id."""

    @abstractmethod
    def update(self, record_id: str, fields: Mapping[str, Any]) -> None:
        """Apply a partial update to an existing record."""

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Remove a record."""

    @abstractmethod
    def get_by_id(self, record_id: str) -> Optional[BillingRecord]:
        """Return the record with this id, or None."""

    @abstractmethod
    def query_by_equality(self, filters: Mapping[str, Any]) -> List[BillingRecord]:
        """Return every record whose fields equal all of `filters`."""


class SQLiteRecordStore(RecordStore):
    """Record store backed by a single SQLite table.

    Monetary fields are stored as TEXT so Decimal values round-trip exactly.
    Every sqlite3 failure surfaces as `StoreUnavailable`, except a unique
    index violation, which surfaces as `DuplicateRecord`.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open record store {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(f"Record store failure: {e}") from e
        finally:
            conn.close()

    def insert(self, record: BillingRecord) -> str:
        record_id = uuid.uuid4().hex
        row = _record_to_row(record)
        row["id"] = record_id
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            with self._session() as conn:
                conn.execute(
                    f"INSERT INTO {TABLE_NAME} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    [row[col] for col in _COLUMNS],
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecord(record.subject_number, record.month, record.year) from e
        logger.debug("Inserted record %s", record_id)
        return record_id

    def update(self, record_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        if not fields:
            if self.get_by_id(record_id) is None:
                raise RecordNotFound(record_id)
            return

        names = list(fields)
        assignments = ", ".join(f"{name} = ?" for name in names)
        params = [_to_column(name, fields[name]) for name in names]
        params.append(record_id)
        try:
            with self._session() as conn:
                cursor = conn.execute(
                    f"UPDATE {TABLE_NAME} SET {assignments} WHERE id = ?", params
                )
                updated = cursor.rowcount
        except sqlite3.IntegrityError as e:
            current = self.get_by_id(record_id)
            merged = {**_record_to_row(current), **fields} if current else dict(fields)
            raise DuplicateRecord(
                str(merged.get("subject_number", "")),
                int(merged.get("month", 0)),
                int(merged.get("year", 0)),
            ) from e
        if updated == 0:
            raise RecordNotFound(record_id)

    def delete(self, record_id: str) -> None:
        with self._session() as conn:
            cursor = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE id = ?", (record_id,))
            deleted = cursor.rowcount
        if deleted == 0:
            raise RecordNotFound(record_id)

    def get_by_id(self, record_id: str) -> Optional[BillingRecord]:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM {TABLE_NAME} WHERE id = ?",
                (record_id,),
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def query_by_equality(self, filters: Mapping[str, Any]) -> List[BillingRecord]:
        unknown = set(filters) - set(FILTERABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported filter fields: {sorted(unknown)}")

        query = f"SELECT {', '.join(_COLUMNS)} FROM {TABLE_NAME}"
        params = []
        conditions = []
        for name, value in filters.items():
            conditions.append(f"{name} = ?")
            params.append(value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_record(row) for row in rows]


def _to_column(name: str, value: Any) -> Any:
    if name in _DECIMAL_FIELDS:
        return str(Decimal(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _record_to_row(record: BillingRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "subject_number": record.subject_number,
        "meter_code": record.meter_code or "",
        "month": record.month,
        "year": record.year,
        "usage_units": str(record.usage_units),
        "total_cost": str(record.total_cost),
        "fuel_adjustment_rate": str(record.fuel_adjustment_rate),
        "created_by": record.created_by,
        "recorded_at": record.recorded_at.isoformat() if record.recorded_at else None,
    }


def _row_to_record(row: sqlite3.Row) -> BillingRecord:
    recorded_at = row["recorded_at"]
    return BillingRecord(
        id=row["id"],
        subject_number=row["subject_number"],
        meter_code=row["meter_code"] or "",
        month=row["month"],
        year=row["year"],
        usage_units=Decimal(row["usage_units"]),
        total_cost=Decimal(row["total_cost"]),
        fuel_adjustment_rate=Decimal(row["fuel_adjustment_rate"]),
        created_by=row["created_by"],
        recorded_at=datetime.fromisoformat(recorded_at) if recorded_at else None,
    )


# Store instances by database path
_stores: Dict[str, SQLiteRecordStore] = {}


def get_record_store(db_path: str = DEFAULT_DB_PATH) -> SQLiteRecordStore:
    """Get the shared record store for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of SQLiteRecordStore
    """
    if db_path not in _stores:
        _stores[db_path] = SQLiteRecordStore(db_path)
    return _stores[db_path]


def initialize_schema(db_path: str = DEFAULT_DB_PATH, enforce_unique_period: bool = False) -> None:
    """Create the electricity_records table and its lookup indexes.

    The (subject_number, month, year) index backs the duplicate check. With
    `enforce_unique_period` it becomes a UNIQUE index, closing the
    check-then-insert race at the storage layer.

    Args:
        db_path: Path to SQLite database file
        enforce_unique_period: Create the period index as UNIQUE

    Raises:
        StoreUnavailable: If the schema cannot be created, including when
            existing rows already violate the unique period index
    """
    period_index = (
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_records_period"
        if enforce_unique_period
        else "CREATE INDEX IF NOT EXISTS idx_records_period"
    )
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot open record store {db_path}: {e}") from e
    try:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id TEXT PRIMARY KEY,
                subject_number TEXT NOT NULL,
                meter_code TEXT NOT NULL DEFAULT '',
                month INTEGER NOT NULL,
                year INTEGER NOT NULL,
                usage_units TEXT NOT NULL,
                total_cost TEXT NOT NULL,
                fuel_adjustment_rate TEXT NOT NULL DEFAULT '0',
                created_by TEXT,
                recorded_at TEXT
            )
        """)
        conn.execute(f"{period_index} ON {TABLE_NAME} (subject_number, month, year)")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_records_year ON {TABLE_NAME} (year)")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_records_month ON {TABLE_NAME} (month)")
        conn.commit()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Cannot initialize record store {db_path}: {e}") from e
    finally:
        conn.close()


def fetch_records(
    store: RecordStore,
    year: Optional[int] = None,
    month: Optional[int] = None,
    subject_number: Optional[str] = None,
) -> List[BillingRecord]:
    """Fetch records, optionally filtered, newest period first.

    Args:
        store: Record store to query
        year: Optional filter for a specific year
        month: Optional filter for a specific month
        subject_number: Optional filter for a specific subject

    Returns:
        List of records ordered by (year, month) descending
    """
    filters: Dict[str, Any] = {}
    if year:
        filters["year"] = int(year)
    if month:
        filters["month"] = int(month)
    if subject_number:
        filters["subject_number"] = str(subject_number)

    records = store.query_by_equality(filters)
    return sorted(records, key=lambda r: (r.year, r.month), reverse=True)
