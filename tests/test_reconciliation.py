"""
Unit tests for duplicate detection and insert-or-update reconciliation.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from power_bill_tracker.core.duplicates import DuplicateGuard
from power_bill_tracker.core.errors import DuplicateRecord, RecordNotFound
from power_bill_tracker.core.meters import MeterMapping
from power_bill_tracker.core.reconciliation import ReconciliationEngine, update_payload
from power_bill_tracker.storage.models import BillingRecord
from power_bill_tracker.storage.repository import SQLiteRecordStore, initialize_schema


def make_candidate(subject="012892858", month=3, year=2024, units="1200", cost="5400.50", **kwargs):
    return BillingRecord(
        subject_number=subject,
        month=month,
        year=year,
        usage_units=Decimal(units),
        total_cost=Decimal(cost),
        **kwargs
    )


class FixedClock:
    """Clock that advances one minute per call."""

    def __init__(self, start=datetime(2024, 4, 1, 8, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        now = self.current
        self.current = now + timedelta(minutes=1)
        return now


class StoreTestCase:
    """Temporary database shared by the test classes below."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.store = SQLiteRecordStore(self.db_path)
        self.clock = FixedClock()
        self.engine = ReconciliationEngine(
            self.store,
            meter_mapping=MeterMapping({"012892858": "19000343"}),
            clock=self.clock,
        )

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestDuplicateGuard(StoreTestCase):
    """Test the period existence check."""

    def test_empty_store(self):
        assert DuplicateGuard(self.store).exists("012892858", 3, 2024) is False

    def test_detects_existing_period(self):
        self.store.insert(make_candidate())
        guard = DuplicateGuard(self.store)

        assert guard.exists("012892858", 3, 2024) is True
        assert guard.exists("012892858", 4, 2024) is False
        assert guard.exists("012642429", 3, 2024) is False

    def test_month_and_year_may_arrive_as_strings(self):
        """Form input is coerced before comparison."""
        self.store.insert(make_candidate())

        assert DuplicateGuard(self.store).exists("012892858", "3", "2024") is True

    def test_excluded_id_is_ignored(self):
        record_id = self.store.insert(make_candidate())
        guard = DuplicateGuard(self.store)

        assert guard.exists("012892858", 3, 2024, exclude_id=record_id) is False
        self.store.insert(make_candidate())
        assert guard.exists("012892858", 3, 2024, exclude_id=record_id) is True


class TestSaveInsert(StoreTestCase):
    """Test the insert path."""

    def test_insert_stamps_actor_and_time(self):
        outcome = self.engine.save(make_candidate(), "user-1")

        assert outcome.created is True
        stored = self.store.get_by_id(outcome.record_id)
        assert stored.created_by == "user-1"
        assert stored.recorded_at == datetime(2024, 4, 1, 8, 0, tzinfo=timezone.utc)
        assert stored.meter_code == "19000343"

    def test_unknown_subject_gets_empty_meter(self):
        outcome = self.engine.save(make_candidate(subject="555"), "user-1")

        assert self.store.get_by_id(outcome.record_id).meter_code == ""

    def test_second_insert_for_period_is_rejected(self):
        """At most one record per subject and period."""
        self.engine.save(make_candidate(), "user-1")

        with pytest.raises(DuplicateRecord) as excinfo:
            self.engine.save(make_candidate(cost="1.00"), "user-2")

        assert str(excinfo.value) == "A record for 012892858 in 3/2024 already exists"
        assert len(self.store.query_by_equality({})) == 1

    def test_same_period_different_subject_is_allowed(self):
        self.engine.save(make_candidate(), "user-1")
        self.engine.save(make_candidate(subject="012642429"), "user-1")

        assert len(self.store.query_by_equality({"month": 3, "year": 2024})) == 2

    def test_repeated_saves_keep_one_record_per_period(self):
        """Any sequence of saves leaves each period with at most one record."""
        periods = [(1, 2024), (2, 2024), (1, 2024), (12, 2023), (2, 2024), (1, 2025)]
        for month, year in periods:
            try:
                self.engine.save(make_candidate(month=month, year=year), "user-1")
            except DuplicateRecord:
                pass

        stored = [(r.month, r.year) for r in self.store.query_by_equality({})]
        assert sorted(stored) == sorted(set(periods))


class TestSaveUpdate(StoreTestCase):
    """Test the update path."""

    def test_update_keeps_identity_and_audit_fields(self):
        """id, created_by and recorded_at survive an update."""
        original = self.engine.save(make_candidate(), "user-1")
        before = self.store.get_by_id(original.record_id)

        outcome = self.engine.save(
            make_candidate(cost="6000", fuel_adjustment_rate=Decimal("0.39")),
            "user-2",
            record_id=original.record_id,
        )

        assert outcome.created is False
        assert outcome.record_id == original.record_id
        after = self.store.get_by_id(original.record_id)
        assert after.total_cost == Decimal("6000")
        assert after.fuel_adjustment_rate == Decimal("0.39")
        assert after.created_by == "user-1"
        assert after.recorded_at == before.recorded_at

    def test_update_missing_record(self):
        with pytest.raises(RecordNotFound, match="Record not found: nope"):
            self.engine.save(make_candidate(), "user-1", record_id="nope")

    def test_update_onto_occupied_period_is_rejected(self):
        self.engine.save(make_candidate(month=3), "user-1")
        april = self.engine.save(make_candidate(month=4), "user-1")

        with pytest.raises(DuplicateRecord):
            self.engine.save(make_candidate(month=3), "user-1", record_id=april.record_id)

        assert self.store.get_by_id(april.record_id).month == 4

    def test_update_onto_free_period(self):
        april = self.engine.save(make_candidate(month=4), "user-1")

        self.engine.save(make_candidate(month=5), "user-1", record_id=april.record_id)

        assert self.store.get_by_id(april.record_id).month == 5

    def test_update_without_key_change_skips_recheck(self):
        """A record never collides with itself."""
        record = self.engine.save(make_candidate(), "user-1")

        self.engine.save(make_candidate(units="1300"), "user-1", record_id=record.record_id)

        assert self.store.get_by_id(record.record_id).usage_units == Decimal("1300")

    def test_update_payload_excludes_audit_fields(self):
        payload = update_payload(make_candidate(id="x", created_by="someone"))

        assert "id" not in payload
        assert "created_by" not in payload
        assert "recorded_at" not in payload
        assert payload["total_cost"] == Decimal("5400.50")


class TestLookupForEdit(StoreTestCase):
    """Test locating an existing record for edit mode."""

    def test_no_match_means_create_mode(self):
        assert self.engine.lookup_for_edit("012892858", 3, 2024) is None

    def test_single_match(self):
        saved = self.engine.save(make_candidate(), "user-1")

        found = self.engine.lookup_for_edit("012892858", "3", "2024")

        assert found.record_id == saved.record_id
        assert found.record.total_cost == Decimal("5400.50")

    def test_multiple_matches_pick_earliest(self):
        """Legacy duplicates resolve to the earliest recorded one."""
        late = self.store.insert(make_candidate(
            recorded_at=datetime(2024, 5, 1, tzinfo=timezone.utc)
        ))
        early = self.store.insert(make_candidate(
            recorded_at=datetime(2024, 4, 1, tzinfo=timezone.utc)
        ))

        found = self.engine.lookup_for_edit("012892858", 3, 2024)

        assert found.record_id == early
        assert found.record_id != late

    def test_lookup_then_save_updates(self):
        """Saving with the located id updates instead of duplicating."""
        self.engine.save(make_candidate(), "user-1")
        found = self.engine.lookup_for_edit("012892858", 3, 2024)

        self.engine.save(make_candidate(cost="4999"), "user-1", record_id=found.record_id)

        records = self.store.query_by_equality({})
        assert len(records) == 1
        assert records[0].total_cost == Decimal("4999")
