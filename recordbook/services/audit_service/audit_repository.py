"""Audit repository: append-only storage of audit records.

Maps AuditRecord objects to documents in the ``audit_logs`` collection and
back. Document field names are the camelCase names used by the rest of
the record book, so reporting tools can read the collection directly.

The repository offers append, lookup by id and filtered reads. It has no
update or delete operation.
"""
import dataclasses
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from recordbook.shared.database import DocumentStore, FieldFilter, equal
from recordbook.shared.models import AuditAction, AuditEntityType, AuditRecord
from recordbook.shared.utils import ensure_utc, from_storage_string, to_storage_string

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "audit_logs"

# Composite indexes backing every supported query shape
AUDIT_LOG_INDEXES: Tuple[Tuple[str, ...], ...] = (
    ("entityId", "entityType", "timestamp"),
    ("studentId", "entityType", "timestamp"),
    ("studentId", "timestamp"),
    ("schoolId", "entityType", "timestamp"),
    ("schoolId", "action", "timestamp"),
    ("schoolId", "entityType", "action", "timestamp"),
    ("userId", "entityType", "timestamp"),
    ("userId", "action", "timestamp"),
    ("userId", "entityType", "action", "timestamp"),
)


class AuditRepository:
    """Repository for immutable audit records over a document store."""

    def __init__(self, store: DocumentStore, collection: str = DEFAULT_COLLECTION):
        """Initialize audit repository.

        Args:
            store: Document store backend
            collection: Collection holding audit documents
        """
        self.store = store
        self.collection = collection

        logger.info(
            "AUDIT_REPOSITORY_INITIALIZED",
            extra={
                "backend": type(store).__name__,
                "collection": collection,
            }
        )

    def ensure_indexes(self) -> None:
        """Create the composite indexes used by audit queries."""
        for fields in AUDIT_LOG_INDEXES:
            self.store.ensure_index(self.collection, fields)

    def append(self, record: AuditRecord) -> AuditRecord:
        """Append a record and return it with the store-assigned id.

        Raises:
            RepositoryError: If storage fails
        """
        record_id = self.store.insert(self.collection, self._record_to_document(record))

        logger.debug(
            "AUDIT_RECORD_STORED",
            extra={"record_id": record_id, "action": record.action.value}
        )
        return dataclasses.replace(record, record_id=record_id)

    def get(self, record_id: str) -> Optional[AuditRecord]:
        """Fetch one record, or None if the id is unknown."""
        document = self.store.get_by_id(self.collection, record_id)
        if document is None:
            return None
        return self._document_to_record(document.document_id, document.data)

    def find(
        self,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        school_id: Optional[str] = None,
        student_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditRecord]:
        """Records matching every given filter, newest first.

        Date bounds are inclusive. ``limit`` is applied after ordering.
        """
        filters: List[FieldFilter] = []

        if entity_type is not None:
            filters.append(equal("entityType", entity_type.value))
        if entity_id is not None:
            filters.append(equal("entityId", entity_id))
        if action is not None:
            filters.append(equal("action", action.value))
        if user_id is not None:
            filters.append(equal("userId", user_id))
        if school_id is not None:
            filters.append(equal("schoolId", school_id))
        if student_id is not None:
            filters.append(equal("studentId", student_id))
        if start_date is not None:
            filters.append(FieldFilter("timestamp", ">=", to_storage_string(start_date)))
        if end_date is not None:
            filters.append(FieldFilter("timestamp", "<=", to_storage_string(end_date)))

        documents = self.store.query(
            self.collection,
            filters=filters,
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [self._document_to_record(d.document_id, d.data) for d in documents]

    def _record_to_document(self, record: AuditRecord) -> Dict[str, Any]:
        """Convert AuditRecord to a store document (id is assigned by the store)."""
        return {
            "action": record.action.value,
            "entityType": record.entity_type.value,
            "entityId": record.entity_id,
            "userId": record.user_id,
            "userName": record.user_name,
            "userRole": record.user_role,
            "oldData": record.old_data,
            "newData": record.new_data,
            "reason": record.reason,
            "schoolId": record.school_id,
            "studentId": record.student_id,
            "ipAddress": record.ip_address,
            "timestamp": to_storage_string(record.timestamp),
            "timestampMs": record.timestamp_ms,
            "checksum": record.checksum,
        }

    def _document_to_record(self, document_id: str, data: Dict[str, Any]) -> AuditRecord:
        """Convert a stored document to AuditRecord."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, datetime):
            timestamp = ensure_utc(timestamp)
        else:
            timestamp = from_storage_string(timestamp)

        return AuditRecord(
            record_id=document_id,
            action=AuditAction(data["action"]),
            entity_type=AuditEntityType(data["entityType"]),
            entity_id=data["entityId"],
            user_id=data["userId"],
            user_name=data.get("userName", ""),
            user_role=data.get("userRole") or "",
            timestamp=timestamp,
            timestamp_ms=int(data["timestampMs"]),
            checksum=data.get("checksum", ""),
            old_data=data.get("oldData"),
            new_data=data.get("newData"),
            reason=data.get("reason") or "",
            school_id=data.get("schoolId"),
            student_id=data.get("studentId"),
            ip_address=data.get("ipAddress"),
        )
