"""School-level audit statistics."""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from recordbook.shared.models import AuditRecord

from .audit_repository import AuditRepository
from .query_engine import require_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditStatistics:
    """Record counts grouped four ways; each grouping sums to total_logs."""
    total_logs: int = 0
    by_action: Dict[str, int] = field(default_factory=dict)
    by_entity_type: Dict[str, int] = field(default_factory=dict)
    by_user: Dict[str, int] = field(default_factory=dict)
    by_date: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalLogs": self.total_logs,
            "byAction": dict(self.by_action),
            "byEntityType": dict(self.by_entity_type),
            "byUser": dict(self.by_user),
            "byDate": dict(self.by_date),
        }


def summarize(records: Iterable[AuditRecord]) -> AuditStatistics:
    """Group records by action, entity type, actor and UTC calendar day."""
    by_action: Counter = Counter()
    by_entity_type: Counter = Counter()
    by_user: Counter = Counter()
    by_date: Counter = Counter()
    total = 0

    for record in records:
        total += 1
        by_action[record.action.value] += 1
        by_entity_type[record.entity_type.value] += 1
        by_user[record.actor_label] += 1
        by_date[record.timestamp.astimezone(timezone.utc).date().isoformat()] += 1

    return AuditStatistics(
        total_logs=total,
        by_action=dict(by_action),
        by_entity_type=dict(by_entity_type),
        by_user=dict(by_user),
        by_date=dict(by_date),
    )


class AuditStatisticsAggregator:
    """Computes statistics over a school's audit records."""

    def __init__(self, repository: AuditRepository):
        self.repository = repository

    def get_statistics(
        self,
        school_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditStatistics:
        """Statistics for one school, optionally bounded by date (inclusive).

        Raises:
            AuditValidationError: If ``school_id`` is empty
        """
        records = self.repository.find(
            school_id=require_scope(school_id, "school_id"),
            start_date=start_date,
            end_date=end_date,
        )
        stats = summarize(records)

        logger.info(
            "AUDIT_STATISTICS_COMPUTED",
            extra={"school_id": school_id, "total_logs": stats.total_logs}
        )
        return stats
