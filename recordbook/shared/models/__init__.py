"""Shared domain models for the Record Book platform."""
from .audit import (
    AuditAction,
    AuditEntityType,
    AuditRecord,
    AuditValidationError,
)

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditRecord",
    "AuditValidationError",
]
