"""Audit trail domain models for grade and absence mutations.

Every CREATE/UPDATE/DELETE on a grade or an absence leaves one immutable
AuditRecord. The actor identity is copied into the record at event time so
the trail stays readable after the account changes or is removed.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union


class AuditValidationError(ValueError):
    """Audit input rejected before anything reaches the store.

    Attributes:
        field: Name of the offending field, or None when several are missing
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuditAction(Enum):
    """Mutations that are recorded in the audit trail."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: Union["AuditAction", str]) -> "AuditAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise AuditValidationError(f"Invalid action type: {value}", field="action") from None


class AuditEntityType(Enum):
    """Entity kinds whose mutations are audited."""
    GRADE = "GRADE"
    ABSENCE = "ABSENCE"

    @classmethod
    def parse(cls, value: Union["AuditEntityType", str]) -> "AuditEntityType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise AuditValidationError(
                f"Invalid entity type: {value}", field="entity_type"
            ) from None


Snapshot = Dict[str, Any]


@dataclass(frozen=True)
class AuditRecord:
    """One immutable entry of the audit trail.

    Stored in the ``audit_logs`` collection. ``timestamp_ms`` is the exact
    value that went into ``checksum``; ``timestamp`` is kept for ordering
    and display.
    """
    record_id: str
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: str
    user_id: str
    user_name: str
    user_role: str
    timestamp: datetime
    timestamp_ms: int
    checksum: str
    old_data: Optional[Snapshot] = None   # None for CREATE
    new_data: Optional[Snapshot] = None   # None for DELETE
    reason: str = ""
    school_id: Optional[str] = None
    student_id: Optional[str] = None
    ip_address: Optional[str] = None

    @property
    def actor_label(self) -> str:
        """Composite actor key used by statistics: ``"name (id)"``."""
        return f"{self.user_name} ({self.user_id})"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation using the stored field names."""
        return {
            "id": self.record_id,
            "action": self.action.value,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "userRole": self.user_role,
            "oldData": self.old_data,
            "newData": self.new_data,
            "reason": self.reason,
            "schoolId": self.school_id,
            "studentId": self.student_id,
            "ipAddress": self.ip_address,
            "timestamp": self.timestamp.isoformat(),
            "timestampMs": self.timestamp_ms,
            "checksum": self.checksum,
        }
