"""Tests for the PostgreSQL document store."""
import pytest
from unittest.mock import MagicMock

import psycopg2

from recordbook.shared.database import FieldFilter, RepositoryError, equal
from recordbook.shared.database.connection import ConnectionManager, DatabaseConfig
from recordbook.shared.database.postgres_store import PostgresDocumentStore


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture
def manager(connection):
    manager = ConnectionManager(DatabaseConfig(host="localhost"))
    manager._pool = MagicMock()
    manager._pool.getconn.return_value = connection
    return manager


@pytest.fixture
def store(manager):
    return PostgresDocumentStore(manager)


class TestPostgresDocumentStore:
    """Tests for PostgresDocumentStore."""

    def test_rejects_invalid_table_name(self):
        with pytest.raises(ValueError):
            PostgresDocumentStore(MagicMock(), table_name="documents; DROP TABLE x")

    def test_insert(self, store, connection, cursor):
        document_id = store.insert("audit_logs", {"action": "CREATE"})

        query, params = cursor.execute.call_args.args
        assert query.startswith("INSERT INTO documents")
        assert params[0] == document_id
        assert params[1] == "audit_logs"
        assert params[2].adapted == {"action": "CREATE"}
        connection.commit.assert_called_once()

    def test_insert_failure_raises_repository_error(self, store, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("server closed")

        with pytest.raises(RepositoryError) as exc_info:
            store.insert("audit_logs", {"action": "CREATE"})

        assert isinstance(exc_info.value.__cause__, psycopg2.OperationalError)

    def test_get_by_id(self, store, cursor):
        cursor.fetchall.return_value = [("abc", {"action": "CREATE"})]

        document = store.get_by_id("audit_logs", "abc")

        assert document.document_id == "abc"
        assert document.data == {"action": "CREATE"}
        assert cursor.execute.call_args.args[1] == ("audit_logs", "abc")

    def test_get_by_id_missing(self, store, cursor):
        cursor.fetchall.return_value = []

        assert store.get_by_id("audit_logs", "abc") is None

    def test_query_builds_filters_order_and_limit(self, store, cursor):
        cursor.fetchall.return_value = [("a", {"schoolId": "s1"})]

        results = store.query(
            "audit_logs",
            filters=[equal("schoolId", "s1"), FieldFilter("timestamp", ">=", "2024-01-01")],
            order_by="timestamp",
            descending=True,
            limit=5,
        )

        query, params = cursor.execute.call_args.args
        assert "data @> %s" in query
        assert "(data->>%s) >= %s" in query
        assert "ORDER BY (data->>%s) DESC, seq DESC" in query
        assert query.endswith("LIMIT %s")
        assert params[0] == "audit_logs"
        assert params[1].adapted == {"schoolId": "s1"}
        assert params[2:4] == ["timestamp", "2024-01-01"]
        assert params[-1] == 5
        assert [d.document_id for d in results] == ["a"]

    def test_query_without_order_uses_insertion_order(self, store, cursor):
        cursor.fetchall.return_value = []

        store.query("audit_logs")

        query = cursor.execute.call_args.args[0]
        assert "ORDER BY seq ASC" in query
        assert "LIMIT" not in query

    def test_query_failure_raises_repository_error(self, store, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("timeout")

        with pytest.raises(RepositoryError):
            store.query("audit_logs")

    def test_ensure_schema(self, store, connection, cursor):
        store.ensure_schema()

        statements = [call.args[0] for call in cursor.execute.call_args_list]
        assert "CREATE TABLE IF NOT EXISTS documents" in statements[0]
        assert "USING GIN" in statements[1]
        connection.commit.assert_called_once()

    def test_ensure_index(self, store, cursor):
        store.ensure_index("audit_logs", ("schoolId", "timestamp"))

        statement = cursor.execute.call_args.args[0]
        assert "CREATE INDEX IF NOT EXISTS documents_audit_logs_schoolid_timestamp" in statement
        assert "((data->>'schoolId'))" in statement

    def test_ensure_index_rejects_invalid_field(self, store):
        with pytest.raises(ValueError):
            store.ensure_index("audit_logs", ("school'Id",))

    def test_failed_statement_rolls_back_and_returns_connection(self, store, manager, connection, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("statement timeout")

        with pytest.raises(RepositoryError):
            store.query("audit_logs")

        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()
        manager._pool.putconn.assert_called_once_with(connection)

    def test_health_check_reports_table(self, store, cursor):
        cursor.fetchone.return_value = ("documents",)

        health = store.health_check()

        assert health["healthy"] is True
        cursor.execute.assert_called_once_with("SELECT to_regclass(%s)", ("documents",))

    def test_health_check_missing_table(self, store, cursor):
        cursor.fetchone.return_value = (None,)

        health = store.health_check()

        assert health["status"] == "schema_missing"
        assert health["healthy"] is False

    def test_close_releases_pool(self, store, manager):
        pool = manager._pool

        store.close()

        pool.closeall.assert_called_once()
        assert manager.initialized is False
