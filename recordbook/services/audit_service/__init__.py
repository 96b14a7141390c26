"""Audit Service: append-only trail of grade and absence mutations.

Every CREATE/UPDATE/DELETE of a grade or absence is recorded with
before/after snapshots, the actor, and an integrity checksum. Readers can
query the trail, reconstruct an entity's history with field-level diffs,
verify individual records and compute per-school statistics.

The checksum is a lightweight fingerprint, not a cryptographic seal; see
``checksum`` for its limits.
"""

from recordbook.shared.models import (
    AuditAction,
    AuditEntityType,
    AuditRecord,
    AuditValidationError,
)

from .audit_recorder import AuditRecorder
from .audit_repository import AUDIT_LOG_INDEXES, AuditRepository
from .audit_statistics import AuditStatistics, AuditStatisticsAggregator
from .checksum import VerificationResult, compute_checksum, verify_record
from .config import AuditConfig
from .history import ChangedField, EntityHistory, HistoryReconstructor, TimelineEntry
from .query_engine import AuditQueryEngine
from .service import AuditService

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditRecord",
    "AuditValidationError",
    "AuditRecorder",
    "AuditRepository",
    "AUDIT_LOG_INDEXES",
    "AuditStatistics",
    "AuditStatisticsAggregator",
    "VerificationResult",
    "compute_checksum",
    "verify_record",
    "AuditConfig",
    "ChangedField",
    "EntityHistory",
    "HistoryReconstructor",
    "TimelineEntry",
    "AuditQueryEngine",
    "AuditService",
]
