"""Document store contract and the in-memory backend.

The record book keeps its data in a hosted document store. Services only
depend on the small contract below:

- insert a document into a named collection and get back a store-assigned id
- fetch a document by id
- query a collection with conjunctive field filters, one ordering field
  and an optional result limit

Documents are JSON-like dictionaries. Backends never mutate or delete
documents on behalf of the audit trail; there is deliberately no update or
delete primitive here.
"""
import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

SUPPORTED_OPERATORS = ("==", ">=", "<=")


@dataclass(frozen=True)
class FieldFilter:
    """A single condition on a top-level document field."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Dict[str, Any]) -> bool:
        """Evaluate the filter against a document.

        Missing fields never match range comparisons.
        """
        if self.field not in document:
            return self.op == "==" and self.value is None

        actual = document[self.field]
        if self.op == "==":
            return actual == self.value
        if actual is None or self.value is None:
            return False
        if self.op == ">=":
            return actual >= self.value
        return actual <= self.value


@dataclass(frozen=True)
class StoredDocument:
    """A document as returned by the store, paired with its id."""
    document_id: str
    data: Dict[str, Any] = field(default_factory=dict)


def equal(field_name: str, value: Any) -> FieldFilter:
    """Shorthand for an equality filter."""
    return FieldFilter(field_name, "==", value)


class DocumentStore(ABC):
    """Abstract document store used by repositories."""

    @abstractmethod
    def insert(self, collection: str, document: Dict[str, Any]) -> str:
        """Insert a document and return its store-assigned id.

        Raises:
            RepositoryError: If the store rejects the write
        """

    @abstractmethod
    def get_by_id(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        """Fetch a document by id, or None if it does not exist."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        """Return documents matching every filter.

        Ordering is applied before the limit. Documents with equal ordering
        values keep insertion order (reversed when descending).
        """

    def query_equal(
        self,
        collection: str,
        field_name: str,
        value: Any,
        *filters: FieldFilter,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        """Equality query on one field, composable with further filters."""
        return self.query(
            collection,
            filters=(equal(field_name, value),) + tuple(filters),
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    def ensure_schema(self) -> None:
        """Create backing tables if the backend needs any."""
        return None

    def ensure_index(self, collection: str, fields: Tuple[str, ...]) -> None:
        """Create a composite index if the backend supports one."""
        return None

    def health_check(self) -> Dict[str, Any]:
        """Report whether the store can serve requests."""
        return {"status": "ready", "healthy": True}

    def close(self) -> None:
        """Release connections held by the backend."""
        return None


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store for development and tests.

    Documents are deep-copied on the way in and out, so callers can never
    alter what the store holds.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}
        self._sequence = 0
        self._lock = threading.Lock()

        logger.info("IN_MEMORY_DOCUMENT_STORE_INITIALIZED")

    def insert(self, collection: str, document: Dict[str, Any]) -> str:
        document_id = uuid.uuid4().hex
        with self._lock:
            self._sequence += 1
            self._collections.setdefault(collection, {})[document_id] = (
                self._sequence,
                copy.deepcopy(document),
            )

        logger.debug(
            "DOCUMENT_STORED_MEMORY",
            extra={"collection": collection, "document_id": document_id},
        )
        return document_id

    def get_by_id(self, collection: str, document_id: str) -> Optional[StoredDocument]:
        with self._lock:
            stored = self._collections.get(collection, {}).get(document_id)
        if stored is None:
            return None
        return StoredDocument(document_id=document_id, data=copy.deepcopy(stored[1]))

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        with self._lock:
            rows = list(self._collections.get(collection, {}).items())

        rows = [
            (document_id, sequence, data)
            for document_id, (sequence, data) in rows
            if all(f.matches(data) for f in filters)
        ]

        if order_by is not None:
            # Documents without the ordering field are excluded, as in hosted stores
            rows = [row for row in rows if row[2].get(order_by) is not None]
            rows.sort(key=lambda row: (row[2][order_by], row[1]), reverse=descending)
        else:
            rows.sort(key=lambda row: row[1], reverse=descending)

        if limit is not None:
            rows = rows[:limit]

        return [
            StoredDocument(document_id=document_id, data=copy.deepcopy(data))
            for document_id, _, data in rows
        ]

    def count(self, collection: str) -> int:
        """Number of documents held in a collection."""
        with self._lock:
            return len(self._collections.get(collection, {}))
