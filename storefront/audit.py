from typing import Dict, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .extensions import mongo
from .helpers import (
    build_pagination,
    get_pagination_args,
    isoformat,
    normalize_email,
    parse_iso_date,
    search_regex,
    utcnow,
)
from .security import get_user_role, require_admin_user

audit_bp = Blueprint("audit", __name__, url_prefix="/audit-logs")


def sanitize_metadata(metadata: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    sanitized: Dict[str, str] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        sanitized[str(key)] = str(value)
    return sanitized


def record_audit_log(actor, action: str, metadata: Optional[Dict] = None):
    if not action:
        return
    try:
        log_document = {
            "user_id": None,
            "user_email": None,
            "user_name": "",
            "action": action,
            "metadata": sanitize_metadata(metadata),
            "created_at": utcnow(),
        }
        if actor:
            log_document["user_id"] = str(actor.get("_id") or "") or None
            log_document["user_email"] = normalize_email(actor.get("email")) or None
            log_document["user_name"] = actor.get("name", "") or ""
            log_document["metadata"].setdefault("user_role", get_user_role(actor))
        mongo.db.audit_logs.insert_one(log_document)
    except Exception as exc:
        current_app.logger.warning("Unable to record audit log: %s", exc)


def serialize_audit_log(document):
    if not document:
        return {}
    metadata = document.get("metadata")
    return {
        "id": str(document.get("_id")),
        "user_id": document.get("user_id") or "",
        "user_email": document.get("user_email") or "",
        "user_name": document.get("user_name") or "",
        "action": document.get("action") or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created_at": isoformat(document.get("created_at")),
    }


# --- ROUTES ---


@audit_bp.route("", methods=["GET"])
@jwt_required()
def list_audit_logs():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    page, limit, search_term = get_pagination_args()
    start_param = request.args.get("start") or request.args.get("from")
    end_param = request.args.get("end") or request.args.get("to")

    query: Dict[str, object] = {}
    if search_term:
        regex = search_regex(search_term)
        query["$or"] = [
            {"user_email": regex},
            {"user_name": regex},
            {"action": regex},
        ]

    start_date = parse_iso_date(start_param)
    end_date = parse_iso_date(end_param, end_of_day=True)
    if start_date or end_date:
        created_filter: Dict[str, object] = {}
        if start_date:
            created_filter["$gte"] = start_date
        if end_date:
            created_filter["$lt"] = end_date
        query["created_at"] = created_filter

    cursor = (
        mongo.db.audit_logs.find(query)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    logs = [serialize_audit_log(document) for document in cursor]
    total = mongo.db.audit_logs.count_documents(query)

    return jsonify({"logs": logs, "pagination": build_pagination(page, limit, total)})
