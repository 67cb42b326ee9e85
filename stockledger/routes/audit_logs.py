from flask import Blueprint, current_app, jsonify, request

from stockledger.audit import AuditLogWriter
from stockledger.errors import ValidationError
from stockledger.extensions import db
from stockledger.security import current_actor, require_access
from stockledger.utils.parsing import parse_positive_int

bp = Blueprint("audit_logs", __name__, url_prefix="/api/logs")


@bp.get("")
@require_access("logs")
def list_logs():
    config = current_app.config
    page = parse_positive_int(request.args.get("page"), default=1)
    per_page = parse_positive_int(
        request.args.get("perPage"),
        default=config.get("AUDIT_LOG_PAGE_SIZE", 25),
        maximum=config.get("AUDIT_LOG_MAX_PAGE_SIZE", 200),
    )
    result = AuditLogWriter(db.session).search(
        query=request.args.get("q"),
        action=request.args.get("action"),
        page=page,
        per_page=per_page,
    )
    return jsonify(result)


@bp.get("/history/<path:sku>")
@require_access("logs")
def sku_history(sku):
    entries = AuditLogWriter(db.session).history_for(sku.strip())
    return jsonify(
        {
            "sku": sku.strip(),
            "items": [entry.to_dict() for entry in entries],
            "netChange": sum(entry.delta or 0 for entry in entries),
        }
    )


@bp.post("/bulk-delete")
@require_access("logs", "delete")
def bulk_delete_logs():
    payload = request.get_json(silent=True) or {}
    ids = payload.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("Select at least one log entry.", field="ids")
    try:
        identifiers = [int(identifier) for identifier in ids]
    except (TypeError, ValueError):
        raise ValidationError("Log entry ids must be numbers.", field="ids")

    deleted = AuditLogWriter(db.session).bulk_delete(identifiers)
    db.session.commit()
    current_app.logger.info("%s removed %s audit log entries", current_actor(), deleted)
    return jsonify({"success": True, "deleted": deleted})
