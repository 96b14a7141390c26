"""Audit service facade.

Wires recorder, queries, history, verification and statistics over one
document store and one clock. The facade keeps no state of its own, so a
single instance is shared by all request threads.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from recordbook.shared.database import DocumentStore, NotFoundError
from recordbook.shared.models import AuditEntityType, AuditRecord
from recordbook.shared.utils import Clock, utc_now

from .audit_recorder import AuditRecorder
from .audit_repository import DEFAULT_COLLECTION, AuditRepository
from .audit_statistics import AuditStatistics, AuditStatisticsAggregator
from .checksum import VerificationResult, verify_record
from .config import AuditConfig, build_document_store
from .history import EntityHistory, HistoryReconstructor
from .query_engine import DEFAULT_RECENT_LIMIT, AuditQueryEngine

logger = logging.getLogger(__name__)


class AuditService:
    """Entry point for writers and readers of the audit trail."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utc_now,
        collection: str = DEFAULT_COLLECTION,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ):
        """Initialize the service.

        Args:
            store: Document store holding the audit collection
            clock: Time source for new records
            collection: Audit collection name
            recent_limit: Default size of the recent feed
        """
        self.store = store
        self.repository = AuditRepository(store, collection=collection)
        self.recorder = AuditRecorder(self.repository, clock=clock)
        self.queries = AuditQueryEngine(self.repository, recent_limit=recent_limit)
        self.history = HistoryReconstructor(self.queries)
        self.statistics = AuditStatisticsAggregator(self.repository)

    @classmethod
    def from_config(cls, config: Optional[AuditConfig] = None) -> "AuditService":
        """Build a service over the configured backend, ready to serve.

        Creates the documents table and the audit indexes when missing.

        Raises:
            RepositoryError: If the backend cannot be prepared
        """
        config = config or AuditConfig.from_env()
        store = build_document_store(config)
        service = cls(store, collection=config.collection, recent_limit=config.recent_limit)

        store.ensure_schema()
        service.repository.ensure_indexes()

        logger.info(
            "AUDIT_SERVICE_CONFIGURED",
            extra={"backend": config.store_backend, "collection": config.collection}
        )
        return service

    def health_check(self) -> Dict[str, Any]:
        return self.store.health_check()

    def close(self) -> None:
        self.store.close()
        logger.info("AUDIT_SERVICE_CLOSED")

    # Writes

    def create(self, **fields: Any) -> AuditRecord:
        """See :meth:`AuditRecorder.create`."""
        return self.recorder.create(**fields)

    def record_mutation(self, **fields: Any) -> Optional[AuditRecord]:
        """See :meth:`AuditRecorder.record_mutation`."""
        return self.recorder.record_mutation(**fields)

    # Reads

    def get_record(self, record_id: str) -> Optional[AuditRecord]:
        return self.queries.get_record(record_id)

    def require_record(self, record_id: str) -> AuditRecord:
        """Like :meth:`get_record` but raises NotFoundError for unknown ids."""
        record = self.queries.get_record(record_id)
        if record is None:
            raise NotFoundError(f"Audit log not found: {record_id}")
        return record

    def get_by_entity(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
    ) -> List[AuditRecord]:
        return self.queries.get_by_entity(entity_type, entity_id)

    def get_by_student(self, student_id: str, **options: Any) -> List[AuditRecord]:
        return self.queries.get_by_student(student_id, **options)

    def get_by_school(self, school_id: str, **options: Any) -> List[AuditRecord]:
        return self.queries.get_by_school(school_id, **options)

    def get_by_user(self, user_id: str, **options: Any) -> List[AuditRecord]:
        return self.queries.get_by_user(user_id, **options)

    def get_recent(self, limit: Optional[int] = None, **filters: Any) -> List[AuditRecord]:
        return self.queries.get_recent(limit, **filters)

    def get_entity_history(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
    ) -> EntityHistory:
        return self.history.get_entity_history(entity_type, entity_id)

    def verify(self, record_id: str) -> VerificationResult:
        """Check one stored record against its checksum.

        Returns a not-found result rather than raising for unknown ids.
        """
        record = self.queries.get_record(record_id)
        if record is None:
            logger.warning("AUDIT_RECORD_NOT_FOUND", extra={"record_id": record_id})
            return VerificationResult.not_found(record_id)
        return verify_record(record)

    def get_statistics(
        self,
        school_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditStatistics:
        return self.statistics.get_statistics(school_id, start_date, end_date)
