"""Integrity checksum for audit records.

The checksum is a 32-bit rolling hash (``h = h * 31 + c`` over the UTF-16
code units of the canonical payload, wrapped to signed 32-bit) rendered in
base 36. The algorithm and top-level payload layout match the fingerprints
the record book has always stored, but snapshot keys are sorted here while
older records hashed them in insertion order, and float text can differ
(``1e-07`` here vs ``1e-7``). A legacy record therefore verifies only when
its snapshot keys were already in sorted order and it holds no such floats.

It is NOT cryptographically secure. It catches accidental corruption and
naive edits, but anyone who knows the algorithm can forge a matching
checksum, and collisions are easy to find. Do not treat a passing check as
proof that a record was never tampered with.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from recordbook.shared.models import AuditAction, AuditEntityType, AuditRecord

from .canonical import serialize

logger = logging.getLogger(__name__)

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_UINT32 = 0xFFFFFFFF


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of an integrity check.

    ``valid=False`` with ``error=None`` means the checksums differ;
    ``error`` is only set when the record could not be checked at all.
    """
    valid: bool
    record_id: str
    stored_checksum: Optional[str] = None
    calculated_checksum: Optional[str] = None
    timestamp: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def not_found(cls, record_id: str) -> "VerificationResult":
        return cls(valid=False, record_id=record_id, error="Audit log not found")

    @property
    def is_mismatch(self) -> bool:
        return not self.valid and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"valid": self.valid, "auditLogId": self.record_id}
        if self.error is not None:
            result["error"] = self.error
            return result
        result.update({
            "storedChecksum": self.stored_checksum,
            "calculatedChecksum": self.calculated_checksum,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        })
        return result


def fold_hash(text: str) -> int:
    """Fold a string into a signed 32-bit integer.

    Iterates UTF-16 code units so characters outside the BMP contribute two
    surrogate units. Lone surrogates, which JSON text may carry, fold as
    single units.
    """
    encoded = text.encode("utf-16-be", "surrogatepass")
    value = 0
    for i in range(0, len(encoded), 2):
        unit = (encoded[i] << 8) | encoded[i + 1]
        value = (((value << 5) - value) + unit) & _UINT32
    return value - 0x100000000 if value & 0x80000000 else value


def to_base36(number: int) -> str:
    """Render an integer in base 36 with a leading '-' for negatives."""
    if number == 0:
        return "0"

    digits = []
    magnitude = abs(number)
    while magnitude:
        magnitude, remainder = divmod(magnitude, 36)
        digits.append(_BASE36_DIGITS[remainder])

    if number < 0:
        digits.append("-")
    return "".join(reversed(digits))


def checksum_payload(
    action: AuditAction,
    entity_type: AuditEntityType,
    entity_id: str,
    user_id: str,
    old_data: Optional[Dict[str, Any]],
    new_data: Optional[Dict[str, Any]],
    timestamp_ms: int,
) -> str:
    """Canonical string that the checksum is computed over.

    Field order is fixed; snapshot contents are canonicalized.
    """
    payload = {
        "action": AuditAction.parse(action).value,
        "entityType": AuditEntityType.parse(entity_type).value,
        "entityId": entity_id,
        "userId": user_id,
        "oldData": old_data,
        "newData": new_data,
        "timestamp": timestamp_ms,
    }
    return serialize(payload, sort_keys=False)


def compute_checksum(
    action: AuditAction,
    entity_type: AuditEntityType,
    entity_id: str,
    user_id: str,
    old_data: Optional[Dict[str, Any]],
    new_data: Optional[Dict[str, Any]],
    timestamp_ms: int,
) -> str:
    """Compute the integrity fingerprint of an audit event."""
    payload = checksum_payload(
        action, entity_type, entity_id, user_id, old_data, new_data, timestamp_ms
    )
    return to_base36(fold_hash(payload))


def verify_record(record: AuditRecord) -> VerificationResult:
    """Recompute a record's checksum from its stored fields and compare.

    A mismatch is reported, never raised.
    """
    calculated = compute_checksum(
        record.action,
        record.entity_type,
        record.entity_id,
        record.user_id,
        record.old_data,
        record.new_data,
        record.timestamp_ms,
    )
    valid = calculated == record.checksum

    if valid:
        logger.info(
            "AUDIT_RECORD_VERIFIED",
            extra={"record_id": record.record_id, "checksum": calculated}
        )
    else:
        logger.critical(
            "AUDIT_RECORD_TAMPERED",
            extra={
                "record_id": record.record_id,
                "stored": record.checksum,
                "computed": calculated,
            }
        )

    return VerificationResult(
        valid=valid,
        record_id=record.record_id,
        stored_checksum=record.checksum,
        calculated_checksum=calculated,
        timestamp=record.timestamp,
    )
