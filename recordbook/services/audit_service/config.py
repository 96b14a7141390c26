"""Audit Service configuration."""
import os
from dataclasses import dataclass
from typing import Optional

from recordbook.shared.database import (
    ConnectionManager,
    DocumentStore,
    InMemoryDocumentStore,
    get_connection_manager,
)

from .audit_repository import DEFAULT_COLLECTION
from .query_engine import DEFAULT_RECENT_LIMIT

BACKENDS = ("memory", "postgres")


@dataclass(frozen=True)
class AuditConfig:
    """Configuration for the audit trail."""
    store_backend: str = "memory"
    collection: str = DEFAULT_COLLECTION
    documents_table: str = "documents"
    recent_limit: int = DEFAULT_RECENT_LIMIT
    port: int = 8004

    def __post_init__(self):
        if self.store_backend not in BACKENDS:
            raise ValueError(
                f"AUDIT_STORE_BACKEND must be one of {', '.join(BACKENDS)}, "
                f"got {self.store_backend!r}"
            )
        if self.recent_limit < 1:
            raise ValueError(f"recent_limit must be positive, got {self.recent_limit}")

    @classmethod
    def from_env(cls) -> "AuditConfig":
        """Create config from environment variables.

        Environment variables:
            AUDIT_STORE_BACKEND: memory or postgres (default memory)
            AUDIT_COLLECTION: Collection name (default audit_logs)
            AUDIT_DOCUMENTS_TABLE: PostgreSQL documents table (default documents)
            AUDIT_RECENT_LIMIT: Default size of the recent feed (default 50)
            PORT: HTTP port (default 8004)
        """
        return cls(
            store_backend=os.getenv("AUDIT_STORE_BACKEND", "memory"),
            collection=os.getenv("AUDIT_COLLECTION", DEFAULT_COLLECTION),
            documents_table=os.getenv("AUDIT_DOCUMENTS_TABLE", "documents"),
            recent_limit=int(os.getenv("AUDIT_RECENT_LIMIT", str(DEFAULT_RECENT_LIMIT))),
            port=int(os.getenv("PORT", "8004")),
        )


def build_document_store(
    config: AuditConfig,
    connection_manager: Optional[ConnectionManager] = None,
) -> DocumentStore:
    """Instantiate the configured document store backend."""
    if config.store_backend == "postgres":
        from recordbook.shared.database.postgres_store import PostgresDocumentStore

        return PostgresDocumentStore(
            connection_manager or get_connection_manager(),
            table_name=config.documents_table,
        )
    return InMemoryDocumentStore()
