"""Read-side queries over the audit trail.

Every operation returns records newest first, with any limit applied after
ordering. No match is an empty list, never an error.

Scope identifiers (entity, student, school, user) are required; an empty
one is rejected instead of widening the query to the whole trail. A limit,
when given, must be at least 1: zero is an error here, not "no limit".
"""
from datetime import datetime
from typing import List, Optional, Union

from recordbook.shared.models import (
    AuditAction,
    AuditEntityType,
    AuditRecord,
    AuditValidationError,
)

from .audit_repository import AuditRepository

DEFAULT_RECENT_LIMIT = 50

ActionFilter = Optional[Union[AuditAction, str]]
EntityTypeFilter = Optional[Union[AuditEntityType, str]]


def _action(value: ActionFilter) -> Optional[AuditAction]:
    return AuditAction.parse(value) if value else None


def _entity_type(value: EntityTypeFilter) -> Optional[AuditEntityType]:
    return AuditEntityType.parse(value) if value else None


def require_scope(value: Optional[str], field: str) -> str:
    """Return ``value`` or raise AuditValidationError if it is empty."""
    if not value:
        raise AuditValidationError(f"Missing required query parameter: {field}", field=field)
    return value


def check_limit(limit: Optional[int]) -> Optional[int]:
    """Return ``limit`` or raise AuditValidationError if it is below 1."""
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise AuditValidationError(f"Invalid limit: {limit}", field="limit")
    return limit


class AuditQueryEngine:
    """Parameterized retrieval by entity, student, school, user or recency."""

    def __init__(self, repository: AuditRepository, recent_limit: int = DEFAULT_RECENT_LIMIT):
        self.repository = repository
        self.recent_limit = check_limit(recent_limit)

    def get_record(self, record_id: str) -> Optional[AuditRecord]:
        if not record_id:
            return None
        return self.repository.get(record_id)

    def get_by_entity(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
    ) -> List[AuditRecord]:
        """All records for one grade or absence."""
        return self.repository.find(
            entity_type=AuditEntityType.parse(entity_type),
            entity_id=require_scope(entity_id, "entity_id"),
        )

    def get_by_student(
        self,
        student_id: str,
        *,
        entity_type: EntityTypeFilter = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditRecord]:
        return self.repository.find(
            student_id=require_scope(student_id, "student_id"),
            entity_type=_entity_type(entity_type),
            start_date=start_date,
            end_date=end_date,
            limit=check_limit(limit),
        )

    def get_by_school(
        self,
        school_id: str,
        *,
        entity_type: EntityTypeFilter = None,
        action: ActionFilter = None,
        user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditRecord]:
        return self.repository.find(
            school_id=require_scope(school_id, "school_id"),
            entity_type=_entity_type(entity_type),
            action=_action(action),
            user_id=user_id or None,
            start_date=start_date,
            limit=check_limit(limit),
        )

    def get_by_user(
        self,
        user_id: str,
        *,
        entity_type: EntityTypeFilter = None,
        action: ActionFilter = None,
        limit: Optional[int] = None,
    ) -> List[AuditRecord]:
        """Records of the changes made by one actor."""
        return self.repository.find(
            user_id=require_scope(user_id, "user_id"),
            entity_type=_entity_type(entity_type),
            action=_action(action),
            limit=check_limit(limit),
        )

    def get_recent(
        self,
        limit: Optional[int] = None,
        *,
        school_id: Optional[str] = None,
        entity_type: EntityTypeFilter = None,
        action: ActionFilter = None,
    ) -> List[AuditRecord]:
        """Most recent records across the system, optionally scoped."""
        return self.repository.find(
            school_id=school_id or None,
            entity_type=_entity_type(entity_type),
            action=_action(action),
            limit=check_limit(limit) if limit is not None else self.recent_limit,
        )
