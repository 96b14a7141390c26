"""Tests for the audit recorder."""
import logging
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from recordbook.shared.database import (
    ConnectionManager,
    DatabaseConfig,
    InMemoryDocumentStore,
    RepositoryError,
)
from recordbook.shared.database.postgres_store import PostgresDocumentStore
from recordbook.shared.models import AuditAction, AuditEntityType, AuditValidationError
from recordbook.services.audit_service.audit_recorder import AuditRecorder
from recordbook.services.audit_service.audit_repository import AuditRepository
from recordbook.services.audit_service.checksum import compute_checksum, verify_record

START = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


class SteppingClock:
    """Returns START, then advances one second per call."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        value = START + timedelta(seconds=self.calls)
        self.calls += 1
        return value


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def recorder(store, clock):
    return AuditRecorder(AuditRepository(store), clock=clock)


def grade_created(**overrides):
    fields = dict(
        action="CREATE",
        entity_type="GRADE",
        entity_id="g1",
        user_id="t1",
        user_name="Ana Pop",
        user_role="teacher",
        new_data={"grade": 8, "subject": "Math"},
        school_id="s1",
        student_id="st1",
    )
    fields.update(overrides)
    return fields


class TestCreate:
    """Tests for AuditRecorder.create."""

    def test_creates_record(self, recorder, store):
        record = recorder.create(**grade_created())

        assert record.record_id
        assert record.action == AuditAction.CREATE
        assert record.entity_type == AuditEntityType.GRADE
        assert record.old_data is None
        assert record.new_data == {"grade": 8, "subject": "Math"}
        assert record.timestamp == START
        assert record.timestamp_ms == 1700000000000
        assert store.count("audit_logs") == 1

    def test_checksum_uses_captured_timestamp(self, recorder, clock):
        record = recorder.create(**grade_created())

        assert clock.calls == 1
        assert record.checksum == compute_checksum(
            "CREATE", "GRADE", "g1", "t1", None, {"grade": 8, "subject": "Math"}, 1700000000000
        )
        assert verify_record(record).valid is True

    def test_stored_record_round_trips(self, recorder):
        record = recorder.create(**grade_created(reason="First evaluation", ip_address="10.0.0.1"))

        stored = recorder.repository.get(record.record_id)

        assert stored == record

    def test_optional_fields_default(self, recorder):
        record = recorder.create(
            action="DELETE",
            entity_type="ABSENCE",
            entity_id="a1",
            user_id="t1",
            user_name="Ana Pop",
            old_data={"date": "2024-09-02"},
        )

        assert record.user_role == ""
        assert record.reason == ""
        assert record.school_id is None
        assert record.new_data is None

    def test_accepts_enum_values(self, recorder):
        record = recorder.create(**grade_created(action=AuditAction.UPDATE, old_data={"grade": 6}))

        assert record.action == AuditAction.UPDATE

    def test_snapshots_are_copied(self, recorder):
        new_data = {"grade": 8, "history": [1, 2]}
        record = recorder.create(**grade_created(new_data=new_data))

        new_data["grade"] = 10
        new_data["history"].append(3)

        assert record.new_data == {"grade": 8, "history": [1, 2]}
        assert recorder.repository.get(record.record_id).new_data == {"grade": 8, "history": [1, 2]}

    def test_naive_clock_treated_as_utc(self, store):
        recorder = AuditRecorder(AuditRepository(store), clock=lambda: datetime(2023, 11, 14, 22, 13, 20))

        record = recorder.create(**grade_created())

        assert record.timestamp_ms == 1700000000000

    def test_logs_creation(self, recorder, caplog):
        with caplog.at_level(logging.INFO):
            recorder.create(**grade_created())

        assert "AUDIT_RECORD_CREATED" in caplog.text


class TestCreateValidation:
    """Tests for input validation in AuditRecorder.create."""

    @pytest.mark.parametrize("missing", ["action", "entity_type", "entity_id", "user_id", "user_name"])
    def test_missing_required_field(self, recorder, store, missing):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(**{missing: ""}))

        assert str(exc_info.value) == f"Missing required audit log fields: {missing}"
        assert exc_info.value.field == missing
        assert store.count("audit_logs") == 0

    def test_lists_all_missing_fields(self, recorder):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(entity_id="", user_name=None))

        assert str(exc_info.value) == "Missing required audit log fields: entity_id, user_name"
        assert exc_info.value.field is None

    def test_invalid_action(self, recorder, store):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(action="ARCHIVE"))

        assert str(exc_info.value) == "Invalid action type: ARCHIVE"
        assert exc_info.value.field == "action"
        assert store.count("audit_logs") == 0

    def test_invalid_entity_type(self, recorder, store):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(entity_type="HOMEWORK"))

        assert str(exc_info.value) == "Invalid entity type: HOMEWORK"
        assert exc_info.value.field == "entity_type"
        assert store.count("audit_logs") == 0

    def test_validation_error_is_value_error(self, recorder):
        with pytest.raises(ValueError):
            recorder.create(**grade_created(action="archive"))

    def test_store_failure_propagates(self, clock):
        store = MagicMock()
        store.insert.side_effect = RepositoryError("store offline")
        recorder = AuditRecorder(AuditRepository(store), clock=clock)

        with pytest.raises(RepositoryError):
            recorder.create(**grade_created())


class TestRecordMutation:
    """Tests for the best-effort AuditRecorder.record_mutation."""

    def test_returns_record(self, recorder):
        record = recorder.record_mutation(**grade_created())

        assert record is not None
        assert record.entity_id == "g1"

    def test_store_failure_is_swallowed(self, clock, caplog):
        store = MagicMock()
        store.insert.side_effect = RepositoryError("store offline")
        recorder = AuditRecorder(AuditRepository(store), clock=clock)

        with caplog.at_level(logging.ERROR):
            result = recorder.record_mutation(**grade_created())

        assert result is None
        assert "AUDIT_RECORD_FAILED" in caplog.text

    def test_validation_errors_still_raise(self, recorder):
        with pytest.raises(AuditValidationError):
            recorder.record_mutation(**grade_created(action="ARCHIVE"))


class TestSnapshotNormalization:
    """Snapshots are stored in the canonical form the checksum covers."""

    def test_dates_stored_as_iso_strings(self, recorder):
        record = recorder.create(**grade_created(new_data={"grade": 8, "date": datetime(2024, 9, 1)}))

        stored = recorder.repository.get(record.record_id)
        assert stored.new_data == {"date": "2024-09-01T00:00:00", "grade": 8}
        assert record.new_data == stored.new_data
        assert verify_record(stored).valid

    def test_tuples_and_integral_floats(self, recorder):
        record = recorder.create(**grade_created(new_data={"marks": (6, 7.0), "average": 6.5}))

        assert record.new_data == {"average": 6.5, "marks": [6, 7]}
        assert verify_record(recorder.repository.get(record.record_id)).valid

    def test_lone_surrogate_in_snapshot(self, recorder):
        record = recorder.create(**grade_created(new_data={"note": "\ud800"}))

        assert verify_record(recorder.repository.get(record.record_id)).valid

    def test_snapshot_must_be_an_object(self, recorder, store):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(new_data=["grade", 8]))

        assert exc_info.value.field == "new_data"
        assert store.count("audit_logs") == 0

    def test_unserializable_value_is_rejected(self, recorder, store):
        with pytest.raises(AuditValidationError) as exc_info:
            recorder.create(**grade_created(action="UPDATE", old_data={"grade": object()}))

        assert exc_info.value.field == "old_data"
        assert store.count("audit_logs") == 0

    def test_postgres_backed_mutation_with_dates(self, clock):
        cursor = MagicMock()
        connection = MagicMock()
        connection.cursor.return_value.__enter__.return_value = cursor
        manager = ConnectionManager(DatabaseConfig(host="localhost"))
        manager._pool = MagicMock()
        manager._pool.getconn.return_value = connection

        def execute(query, params=None):
            # psycopg2 serializes Json parameters while executing
            if query.startswith("INSERT"):
                params[2].dumps(params[2].adapted)

        cursor.execute.side_effect = execute
        recorder = AuditRecorder(AuditRepository(PostgresDocumentStore(manager)), clock=clock)

        record = recorder.record_mutation(
            **grade_created(new_data={"grade": 8, "date": datetime(2024, 9, 1)})
        )

        assert record is not None
        assert record.new_data["date"] == "2024-09-01T00:00:00"
        connection.commit.assert_called_once()
