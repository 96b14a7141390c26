"""Tests for the in-memory document store."""
import pytest

from recordbook.shared.database import (
    FieldFilter,
    InMemoryDocumentStore,
    equal,
)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


class TestFieldFilter:
    """Tests for FieldFilter evaluation."""

    def test_rejects_unknown_operator(self):
        with pytest.raises(ValueError):
            FieldFilter("grade", ">", 5)

    def test_equality(self):
        assert equal("grade", 8).matches({"grade": 8})
        assert not equal("grade", 8).matches({"grade": 7})

    def test_missing_field_matches_only_none_equality(self):
        assert equal("schoolId", None).matches({})
        assert not equal("schoolId", "s1").matches({})
        assert not FieldFilter("timestamp", ">=", "2024").matches({})

    def test_range_against_null_never_matches(self):
        assert not FieldFilter("timestamp", "<=", "2024").matches({"timestamp": None})

    def test_range(self):
        doc = {"timestamp": "2024-09-02"}

        assert FieldFilter("timestamp", ">=", "2024-09-01").matches(doc)
        assert FieldFilter("timestamp", "<=", "2024-09-02").matches(doc)
        assert not FieldFilter("timestamp", ">=", "2024-09-03").matches(doc)


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    def test_insert_assigns_unique_ids(self, store):
        first = store.insert("audit_logs", {"n": 1})
        second = store.insert("audit_logs", {"n": 2})

        assert first and second
        assert first != second
        assert store.count("audit_logs") == 2

    def test_get_by_id(self, store):
        document_id = store.insert("audit_logs", {"n": 1})

        stored = store.get_by_id("audit_logs", document_id)

        assert stored.document_id == document_id
        assert stored.data == {"n": 1}

    def test_get_by_id_unknown(self, store):
        assert store.get_by_id("audit_logs", "missing") is None

    def test_collections_are_separate(self, store):
        document_id = store.insert("audit_logs", {"n": 1})

        assert store.get_by_id("grades", document_id) is None
        assert store.query("grades") == []

    def test_inserted_document_is_copied(self, store):
        document = {"snapshot": {"grade": 8}}
        document_id = store.insert("audit_logs", document)

        document["snapshot"]["grade"] = 10

        assert store.get_by_id("audit_logs", document_id).data["snapshot"]["grade"] == 8

    def test_returned_document_is_copied(self, store):
        document_id = store.insert("audit_logs", {"snapshot": {"grade": 8}})

        store.get_by_id("audit_logs", document_id).data["snapshot"]["grade"] = 1

        assert store.get_by_id("audit_logs", document_id).data["snapshot"]["grade"] == 8

    def test_query_filters_are_conjunctive(self, store):
        store.insert("audit_logs", {"schoolId": "s1", "action": "CREATE"})
        store.insert("audit_logs", {"schoolId": "s1", "action": "UPDATE"})
        store.insert("audit_logs", {"schoolId": "s2", "action": "CREATE"})

        results = store.query("audit_logs", filters=[equal("schoolId", "s1"), equal("action", "CREATE")])

        assert [d.data for d in results] == [{"schoolId": "s1", "action": "CREATE"}]

    def test_query_orders_then_limits(self, store):
        for ts in ("2024-01-02", "2024-01-03", "2024-01-01"):
            store.insert("audit_logs", {"timestamp": ts})

        results = store.query("audit_logs", order_by="timestamp", descending=True, limit=2)

        assert [d.data["timestamp"] for d in results] == ["2024-01-03", "2024-01-02"]

    def test_query_ties_keep_insertion_order(self, store):
        first = store.insert("audit_logs", {"timestamp": "2024-01-01"})
        second = store.insert("audit_logs", {"timestamp": "2024-01-01"})

        ascending = store.query("audit_logs", order_by="timestamp")
        descending = store.query("audit_logs", order_by="timestamp", descending=True)

        assert [d.document_id for d in ascending] == [first, second]
        assert [d.document_id for d in descending] == [second, first]

    def test_query_excludes_documents_without_order_field(self, store):
        store.insert("audit_logs", {"timestamp": "2024-01-01"})
        store.insert("audit_logs", {"other": True})

        assert len(store.query("audit_logs", order_by="timestamp")) == 1
        assert len(store.query("audit_logs")) == 2

    def test_query_equal(self, store):
        store.insert("audit_logs", {"userId": "t1", "timestamp": "2024-01-01"})
        store.insert("audit_logs", {"userId": "t2", "timestamp": "2024-01-02"})

        results = store.query_equal("audit_logs", "userId", "t1", order_by="timestamp")

        assert [d.data["userId"] for d in results] == ["t1"]

    def test_ensure_index_is_noop(self, store):
        assert store.ensure_index("audit_logs", ("schoolId", "timestamp")) is None

    def test_lifecycle_hooks(self, store):
        store.insert("audit_logs", {"timestamp": "2024-01-01"})

        store.ensure_schema()
        assert store.health_check() == {"status": "ready", "healthy": True}
        store.close()

        assert store.count("audit_logs") == 1
