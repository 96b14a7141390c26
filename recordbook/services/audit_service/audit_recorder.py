"""Audit recorder - the only writer of the audit trail.

Grade and absence mutation code calls the recorder after it has committed
its own change, passing the before/after snapshots and the actor.
"""
import logging
from typing import Any, Dict, Optional, Union

from recordbook.shared.database import RepositoryError
from recordbook.shared.models import (
    AuditAction,
    AuditEntityType,
    AuditRecord,
    AuditValidationError,
)
from recordbook.shared.utils import Clock, ensure_utc, to_epoch_ms, utc_now

from .audit_repository import AuditRepository
from .canonical import canonicalize
from .checksum import compute_checksum

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("action", "entity_type", "entity_id", "user_id", "user_name")


def _snapshot(data: Optional[Dict[str, Any]], field: str) -> Optional[Dict[str, Any]]:
    """Detached copy of a snapshot in its canonical JSON form.

    The stored snapshot is exactly what the checksum covers, on every
    backend: dates become ISO strings, tuples become lists and integral
    floats become ints. Later edits by the caller cannot reach it.

    Raises:
        AuditValidationError: If the snapshot has no JSON representation
    """
    if data is None:
        return None
    if not isinstance(data, dict):
        raise AuditValidationError(f"{field} must be an object", field=field)
    try:
        return canonicalize(data)
    except (TypeError, ValueError) as e:
        raise AuditValidationError(f"Invalid {field}: {e}", field=field) from e


class AuditRecorder:
    """Validates audit events and appends them to the repository.

    Holds no state besides its collaborators, so one instance can serve
    concurrent callers.
    """

    def __init__(self, repository: AuditRepository, clock: Clock = utc_now):
        """Initialize audit recorder.

        Args:
            repository: Append-only audit repository
            clock: Returns the current time; injected for deterministic tests
        """
        self.repository = repository
        self.clock = clock

        logger.info("AUDIT_RECORDER_INITIALIZED")

    def create(
        self,
        action: Union[AuditAction, str],
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
        user_id: str,
        user_name: str,
        user_role: str = "",
        old_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        reason: str = "",
        school_id: Optional[str] = None,
        student_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditRecord:
        """Record one mutation.

        Args:
            action: CREATE, UPDATE or DELETE
            entity_type: GRADE or ABSENCE
            entity_id: Identifier of the mutated grade/absence
            user_id: Actor identifier
            user_name: Actor display name, captured as of now
            user_role: Actor role (teacher, school_admin, ...)
            old_data: Snapshot before the mutation (None for CREATE)
            new_data: Snapshot after the mutation (None for DELETE)
            reason: Free-text justification
            school_id: School the entity belongs to
            student_id: Student the entity belongs to
            ip_address: Actor's IP address, if known

        Returns:
            The stored AuditRecord, including its store-assigned id

        Raises:
            AuditValidationError: Missing fields, unknown action/entity type or
                a snapshot with no JSON form;
                nothing is written
            RepositoryError: The store rejected the write
        """
        supplied = {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user_id": user_id,
            "user_name": user_name,
        }
        missing = [name for name in REQUIRED_FIELDS if not supplied[name]]
        if missing:
            raise AuditValidationError(
                f"Missing required audit log fields: {', '.join(missing)}",
                field=missing[0] if len(missing) == 1 else None,
            )

        parsed_action = AuditAction.parse(action)
        parsed_entity_type = AuditEntityType.parse(entity_type)

        old_snapshot = _snapshot(old_data, "old_data")
        new_snapshot = _snapshot(new_data, "new_data")

        timestamp = ensure_utc(self.clock())
        timestamp_ms = to_epoch_ms(timestamp)

        checksum = compute_checksum(
            parsed_action,
            parsed_entity_type,
            entity_id,
            user_id,
            old_snapshot,
            new_snapshot,
            timestamp_ms,
        )

        record = self.repository.append(AuditRecord(
            record_id="",
            action=parsed_action,
            entity_type=parsed_entity_type,
            entity_id=entity_id,
            user_id=user_id,
            user_name=user_name,
            user_role=user_role or "",
            timestamp=timestamp,
            timestamp_ms=timestamp_ms,
            checksum=checksum,
            old_data=old_snapshot,
            new_data=new_snapshot,
            reason=reason or "",
            school_id=school_id,
            student_id=student_id,
            ip_address=ip_address,
        ))

        logger.info(
            "AUDIT_RECORD_CREATED",
            extra={
                "record_id": record.record_id,
                "action": parsed_action.value,
                "entity_type": parsed_entity_type.value,
                "entity_id": entity_id,
                "user_role": user_role,
                "school_id": school_id,
                "checksum": checksum,
            }
        )
        return record

    def record_mutation(self, **fields: Any) -> Optional[AuditRecord]:
        """Best-effort variant of :meth:`create` for mutation side effects.

        The primary grade/absence change is already committed when this runs.
        A store failure is logged and swallowed so it never fails or rolls
        back that change; the trail may then have a gap. Validation errors
        still propagate.

        Returns:
            The stored record, or None if the store failed
        """
        try:
            return self.create(**fields)
        except RepositoryError as e:
            logger.error(
                "AUDIT_RECORD_FAILED",
                extra={
                    "action": str(fields.get("action")),
                    "entity_type": str(fields.get("entity_type")),
                    "entity_id": fields.get("entity_id"),
                    "error": str(e),
                }
            )
            return None
