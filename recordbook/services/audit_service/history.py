"""Entity history reconstruction.

Turns the audit records of one grade or absence into a numbered timeline
with field-level diffs and creator/last-modifier provenance.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from recordbook.shared.models import AuditAction, AuditEntityType, AuditRecord

from .canonical import serialize
from .query_engine import AuditQueryEngine


@dataclass(frozen=True)
class ChangedField:
    """One field whose value differs between the old and new snapshot."""
    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "oldValue": self.old_value, "newValue": self.new_value}


@dataclass(frozen=True)
class TimelineEntry:
    """An audit record placed in its entity's timeline.

    ``sequence_number`` counts from 1 for the oldest record.
    """
    record: AuditRecord
    sequence_number: int
    changes: List[ChangedField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = self.record.to_dict()
        result["changes"] = [change.to_dict() for change in self.changes]
        result["sequenceNumber"] = self.sequence_number
        return result


@dataclass(frozen=True)
class EntityHistory:
    """Complete audit history of one entity, newest entry first."""
    entity_type: AuditEntityType
    entity_id: str
    total_changes: int
    history: List[TimelineEntry] = field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    last_modified_by: Optional[str] = None
    last_modified_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "totalChanges": self.total_changes,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastModifiedBy": self.last_modified_by,
            "lastModifiedAt": self.last_modified_at.isoformat() if self.last_modified_at else None,
            "history": [entry.to_dict() for entry in self.history],
        }


def diff_snapshots(
    old_data: Dict[str, Any],
    new_data: Dict[str, Any],
) -> List[ChangedField]:
    """Fields of ``new_data`` whose canonical value differs from ``old_data``.

    Only keys present in the new snapshot are inspected, so a key dropped
    outright is not reported. A key that is new in ``new_data`` is reported
    with ``old_value=None``.
    """
    changes = []
    for key, new_value in new_data.items():
        if key not in old_data:
            changes.append(ChangedField(field=key, old_value=None, new_value=new_value))
        elif serialize(old_data[key]) != serialize(new_value):
            changes.append(ChangedField(field=key, old_value=old_data[key], new_value=new_value))
    return changes


def _changes_for(record: AuditRecord) -> List[ChangedField]:
    if record.action != AuditAction.UPDATE:
        return []
    if record.old_data is None or record.new_data is None:
        return []
    return diff_snapshots(record.old_data, record.new_data)


class HistoryReconstructor:
    """Builds entity timelines from the audit trail."""

    def __init__(self, queries: AuditQueryEngine):
        self.queries = queries

    def get_entity_history(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
    ) -> EntityHistory:
        """Reconstruct the full history of one grade or absence.

        Args:
            entity_type: GRADE or ABSENCE
            entity_id: Entity identifier

        Returns:
            EntityHistory whose entries are newest first; an entity with no
            records yields ``total_changes=0`` and an empty history
        """
        parsed_type = AuditEntityType.parse(entity_type)
        records = self.queries.get_by_entity(parsed_type, entity_id)

        if not records:
            return EntityHistory(entity_type=parsed_type, entity_id=entity_id, total_changes=0)

        total = len(records)
        timeline = [
            TimelineEntry(
                record=record,
                sequence_number=total - index,
                changes=_changes_for(record),
            )
            for index, record in enumerate(records)
        ]

        newest, oldest = records[0], records[-1]
        return EntityHistory(
            entity_type=parsed_type,
            entity_id=entity_id,
            total_changes=total,
            history=timeline,
            created_by=oldest.user_name,
            created_at=oldest.timestamp,
            last_modified_by=newest.user_name,
            last_modified_at=newest.timestamp,
        )
