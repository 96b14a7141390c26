"""PostgreSQL backend for the document store contract.

Documents live in a single JSONB table keyed by (collection, id). The
table is only ever written with INSERT; there is no UPDATE or DELETE path.

Equality filters use JSONB containment so they can be served by the GIN
index. Range filters compare the text form of a field, which is correct
for the fixed-width ISO-8601 timestamps the services store.
"""
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2.extras import Json

from .connection import ConnectionManager
from .document_store import DocumentStore, FieldFilter, StoredDocument
from .errors import RepositoryError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# PostgreSQL truncates identifiers beyond 63 bytes
_MAX_IDENTIFIER_LENGTH = 63


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


class PostgresDocumentStore(DocumentStore):
    """Document store over a PostgreSQL JSONB table."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str = "documents",
    ):
        """Initialize the store.

        Args:
            connection_manager: PostgreSQL connection manager
            table_name: Name of the documents table
        """
        self.connection_manager = connection_manager
        self.table_name = _check_identifier(table_name)

        logger.info(
            "POSTGRES_DOCUMENT_STORE_INITIALIZED",
            extra={"table_name": table_name}
        )

    def ensure_schema(self) -> None:
        """Create the documents table and its base indexes if missing."""
        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                collection TEXT NOT NULL,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {self.table_name}_data_gin "
            f"ON {self.table_name} USING GIN (data jsonb_path_ops)",
        ]
        self._execute(statements, "DOCUMENT_SCHEMA_CREATE_FAILED")
        logger.info("DOCUMENT_SCHEMA_READY", extra={"table_name": self.table_name})

    def ensure_index(self, collection: str, fields: Tuple[str, ...]) -> None:
        for name in fields:
            _check_identifier(name)

        index_name = "_".join((self.table_name, collection) + tuple(fields)).lower()
        index_name = _check_identifier(index_name[:_MAX_IDENTIFIER_LENGTH])
        columns = ", ".join(f"((data->>'{name}'))" for name in fields)

        statement = (
            f"CREATE INDEX IF NOT EXISTS {index_name} "
            f"ON {self.table_name} (collection, {columns})"
        )
        self._execute([statement], "DOCUMENT_INDEX_CREATE_FAILED")

        logger.info(
            "DOCUMENT_INDEX_READY",
            extra={"collection": collection, "fields": list(fields)}
        )

    def insert(self, collection: str, document: Dict[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        query = f"INSERT INTO {self.table_name} (id, collection, data) VALUES (%s, %s, %s)"

        try:
            with self.connection_manager.transaction() as cur:
                cur.execute(query, (document_id, collection, Json(document)))
        except psycopg2.Error as e:
            logger.error(
                "DOCUMENT_STORE_INSERT_FAILED",
                extra={"collection": collection, "error": str(e)}
            )
            raise RepositoryError(f"Failed to insert into {collection}: {e}") from e

        return document_id

    def get_by_id(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        query = f"SELECT id, data FROM {self.table_name} WHERE collection = %s AND id = %s"
        rows = self._fetch(query, (collection, document_id), collection)
        if not rows:
            return None
        return self._row_to_document(rows[0])

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        query, params = self._build_query(collection, filters, order_by, descending, limit)
        return [self._row_to_document(row) for row in self._fetch(query, params, collection)]

    def _build_query(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> Tuple[str, List[Any]]:
        query = f"SELECT id, data FROM {self.table_name} WHERE collection = %s"
        params: List[Any] = [collection]

        for f in filters:
            if f.op == "==":
                query += " AND data @> %s"
                params.append(Json({f.field: f.value}))
            else:
                query += f" AND (data->>%s) {f.op} %s"
                params.extend([f.field, f.value])

        direction = "DESC" if descending else "ASC"
        if order_by is not None:
            query += " AND data ? %s"
            params.append(order_by)
            query += f" ORDER BY (data->>%s) {direction}, seq {direction}"
            params.append(order_by)
        else:
            query += f" ORDER BY seq {direction}"

        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        return query, params

    def _fetch(self, query: str, params: Sequence[Any], collection: str) -> List[tuple]:
        try:
            with self.connection_manager.transaction() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            logger.error(
                "DOCUMENT_STORE_QUERY_FAILED",
                extra={"collection": collection, "error": str(e)}
            )
            raise RepositoryError(f"Failed to query {collection}: {e}") from e

    def _execute(self, statements: Sequence[str], failure_event: str) -> None:
        try:
            with self.connection_manager.transaction() as cur:
                for statement in statements:
                    cur.execute(statement)
        except psycopg2.Error as e:
            logger.error(failure_event, extra={"error": str(e)})
            raise RepositoryError(f"Schema operation failed: {e}") from e

    def health_check(self) -> Dict[str, Any]:
        """Connectivity plus presence of the documents table."""
        return self.connection_manager.health_check(table_name=self.table_name)

    def close(self) -> None:
        self.connection_manager.close()
        logger.info("POSTGRES_DOCUMENT_STORE_CLOSED", extra={"table_name": self.table_name})

    def _row_to_document(self, row: tuple) -> StoredDocument:
        """Convert a (id, data) row to a StoredDocument."""
        return StoredDocument(document_id=row[0], data=row[1] or {})
