"""Document storage for Record Book services.

Provides the document store contract used by repositories, an in-memory
backend for development and tests, and a PostgreSQL JSONB backend with
connection pooling.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
    get_connection_manager,
)
from .document_store import (
    DocumentStore,
    FieldFilter,
    InMemoryDocumentStore,
    StoredDocument,
    equal,
)
from .errors import (
    RepositoryError,
    NotFoundError,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "get_connection_manager",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "StoredDocument",
    "equal",
    "RepositoryError",
    "NotFoundError",
]
