"""Audit Service HTTP handler - grade and absence audit trail endpoints.

Thin JSON adapter over AuditService. Callers are expected to be behind the
record book's session layer; this module does no authorization.

Endpoints:
- GET  /health, /ready
- POST /audit/records - Record a mutation
- GET  /audit/records/<id> - Fetch one record
- GET  /audit/records/<id>/verify - Integrity check
- GET  /audit/entities/<entity_type>/<entity_id> - Records of one entity
- GET  /audit/entities/<entity_type>/<entity_id>/history - Timeline with diffs
- GET  /audit/students/<student_id>
- GET  /audit/schools/<school_id>
- GET  /audit/schools/<school_id>/statistics
- GET  /audit/users/<user_id>
- GET  /audit/recent
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from recordbook.shared.database import RepositoryError
from recordbook.shared.models import AuditRecord

from .config import AuditConfig
from .service import AuditService

logger = logging.getLogger(__name__)

app = Flask(__name__)

_service: Optional[AuditService] = None


def get_service() -> AuditService:
    """Get or create the global audit service."""
    global _service
    if _service is None:
        _service = AuditService.from_config()
    return _service


def set_service(service: Optional[AuditService]) -> None:
    """Set the global audit service (for testing)."""
    global _service
    _service = service


def _parse_date(name: str) -> Optional[datetime]:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid {name}: {value}") from None


def _parse_limit(default: Optional[int] = None) -> Optional[int]:
    value = request.args.get("limit")
    if not value:
        return default
    try:
        limit = int(value)
    except ValueError:
        raise ValueError(f"Invalid limit: {value}") from None
    if limit < 1:
        raise ValueError(f"Invalid limit: {value}")
    return limit


def _records_response(records: List[AuditRecord]):
    return jsonify({
        "count": len(records),
        "records": [record.to_dict() for record in records],
    }), 200


@app.errorhandler(ValueError)
def handle_bad_request(error: ValueError):
    # AuditValidationError is a ValueError
    return jsonify({
        "error": str(error),
        "field": getattr(error, "field", None),
    }), 400


@app.errorhandler(RepositoryError)
def handle_store_failure(error: RepositoryError):
    logger.error("AUDIT_STORE_ERROR", extra={"path": request.path, "error": str(error)})
    return jsonify({"error": "Audit store unavailable"}), 500


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "audit-service"}), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check; 503 until the audit store answers."""
    if _service is None:
        return jsonify({"status": "not_ready"}), 503

    store_health = _service.health_check()
    if not store_health.get("healthy"):
        return jsonify({"status": "not_ready", "store": store_health}), 503
    return jsonify({"status": "ready", "store": store_health}), 200


@app.route("/audit/records", methods=["POST"])
def create_record():
    """Record a grade/absence mutation.

    Request Body:
        {
            "action": "UPDATE",
            "entityType": "GRADE",
            "entityId": "grade_123",
            "userId": "teacher_001",
            "userName": "Ana Pop",
            "userRole": "teacher",
            "oldData": {"grade": 6},
            "newData": {"grade": 8},
            "reason": "Re-evaluation",
            "schoolId": "school_001",
            "studentId": "student_042"
        }
    """
    data: Dict[str, Any] = request.get_json(silent=True) or {}
    if not data:
        return jsonify({"error": "Request body required"}), 400

    record = get_service().create(
        action=data.get("action"),
        entity_type=data.get("entityType"),
        entity_id=data.get("entityId"),
        user_id=data.get("userId"),
        user_name=data.get("userName"),
        user_role=data.get("userRole") or "",
        old_data=data.get("oldData"),
        new_data=data.get("newData"),
        reason=data.get("reason") or "",
        school_id=data.get("schoolId"),
        student_id=data.get("studentId"),
        ip_address=data.get("ipAddress") or request.remote_addr,
    )
    return jsonify(record.to_dict()), 201


@app.route("/audit/records/<record_id>", methods=["GET"])
def get_record(record_id: str):
    record = get_service().get_record(record_id)
    if record is None:
        return jsonify({"error": "Audit log not found"}), 404
    return jsonify(record.to_dict()), 200


@app.route("/audit/records/<record_id>/verify", methods=["GET"])
def verify_record(record_id: str):
    """Verify one record; a checksum mismatch is a 200 with valid=false."""
    result = get_service().verify(record_id)
    status = 404 if result.error else 200
    return jsonify(result.to_dict()), status


@app.route("/audit/entities/<entity_type>/<entity_id>", methods=["GET"])
def entity_records(entity_type: str, entity_id: str):
    return _records_response(get_service().get_by_entity(entity_type, entity_id))


@app.route("/audit/entities/<entity_type>/<entity_id>/history", methods=["GET"])
def entity_history(entity_type: str, entity_id: str):
    history = get_service().get_entity_history(entity_type, entity_id)
    return jsonify(history.to_dict()), 200


@app.route("/audit/students/<student_id>", methods=["GET"])
def student_records(student_id: str):
    records = get_service().get_by_student(
        student_id,
        entity_type=request.args.get("entity_type"),
        start_date=_parse_date("start_date"),
        end_date=_parse_date("end_date"),
        limit=_parse_limit(),
    )
    return _records_response(records)


@app.route("/audit/schools/<school_id>", methods=["GET"])
def school_records(school_id: str):
    records = get_service().get_by_school(
        school_id,
        entity_type=request.args.get("entity_type"),
        action=request.args.get("action"),
        user_id=request.args.get("user_id"),
        start_date=_parse_date("start_date"),
        limit=_parse_limit(),
    )
    return _records_response(records)


@app.route("/audit/schools/<school_id>/statistics", methods=["GET"])
def school_statistics(school_id: str):
    stats = get_service().get_statistics(
        school_id,
        start_date=_parse_date("start_date"),
        end_date=_parse_date("end_date"),
    )
    return jsonify(stats.to_dict()), 200


@app.route("/audit/users/<user_id>", methods=["GET"])
def user_records(user_id: str):
    records = get_service().get_by_user(
        user_id,
        entity_type=request.args.get("entity_type"),
        action=request.args.get("action"),
        limit=_parse_limit(),
    )
    return _records_response(records)


@app.route("/audit/recent", methods=["GET"])
def recent_records():
    records = get_service().get_recent(
        _parse_limit(),
        school_id=request.args.get("school_id"),
        entity_type=request.args.get("entity_type"),
        action=request.args.get("action"),
    )
    return _records_response(records)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    config = AuditConfig.from_env()
    service = AuditService.from_config(config)
    set_service(service)
    try:
        app.run(host="0.0.0.0", port=config.port, debug=False)
    finally:
        service.close()
