from typing import Dict, List, Optional

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .extensions import mongo
from .helpers import (
    build_pagination,
    error_response,
    fetch_document,
    get_pagination_args,
    isoformat,
    paginate,
    parse_bool,
    parse_iso_date,
    safe_float,
    search_regex,
    utcnow,
)
from .security import require_active_user, require_admin_user

promo_codes_bp = Blueprint("promo_codes", __name__, url_prefix="/promo-codes")

INVALID_PROMO_CODE_MESSAGE = "Invalid or expired promo code"


def normalize_code(value) -> str:
    return str(value or "").strip()


def serialize_promo_code(promo_document):
    if not promo_document:
        return None

    return {
        "id": str(promo_document.get("_id")),
        "code": promo_document.get("code", ""),
        "percentage": promo_document.get("percentage", 0),
        "is_active": promo_document.get("is_active") is not False,
        "expiry_date": isoformat(promo_document.get("expiry_date")),
        "description": promo_document.get("description", "") or "",
        "created_at": isoformat(promo_document.get("created_at")),
        "updated_at": isoformat(promo_document.get("updated_at")),
    }


def fetch_promo_code(promo_code_id):
    return fetch_document(mongo.db.promo_codes, promo_code_id, "Promo code")


def find_valid_promo_code(code: Optional[str]):
    """Return the active, unexpired promo code matching ``code`` exactly."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    return mongo.db.promo_codes.find_one(
        {
            "code": normalized,
            "is_active": True,
            "$or": [
                {"expiry_date": None},
                {"expiry_date": {"$gt": utcnow()}},
            ],
        }
    )


def code_taken(code: str, exclude_id=None) -> bool:
    query: Dict[str, object] = {"code": code}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return mongo.db.promo_codes.find_one(query) is not None


def build_promo_code_fields(payload: Dict, *, partial: bool):
    fields: Dict[str, object] = {}
    errors: Dict[str, List[str]] = {}

    if "code" in payload or not partial:
        code = normalize_code(payload.get("code"))
        if not code:
            errors["code"] = ["Code is required"]
        else:
            fields["code"] = code

    if "percentage" in payload or not partial:
        percentage = safe_float(payload.get("percentage"), None)
        if percentage is None or isinstance(payload.get("percentage"), bool):
            errors["percentage"] = ["Percentage must be a number"]
        elif percentage < 0 or percentage > 100:
            errors["percentage"] = ["Percentage must be between 0 and 100"]
        else:
            fields["percentage"] = percentage

    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"))
        if is_active is None:
            errors["is_active"] = ["is_active must be a boolean"]
        else:
            fields["is_active"] = is_active

    if "expiry_date" in payload:
        raw_expiry = payload.get("expiry_date")
        if raw_expiry in (None, ""):
            fields["expiry_date"] = None
        else:
            expiry_date = parse_iso_date(raw_expiry)
            if expiry_date is None:
                errors["expiry_date"] = ["Expiry date must be an ISO 8601 date"]
            else:
                fields["expiry_date"] = expiry_date

    if "description" in payload:
        fields["description"] = str(payload.get("description") or "").strip()

    return fields, errors


# --- ROUTES ---


@promo_codes_bp.route("", methods=["POST"])
@jwt_required()
def create_promo_code():
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    fields, errors = build_promo_code_fields(payload, partial=False)
    if errors:
        return error_response("Validation failed", 400, errors)

    if code_taken(fields["code"]):
        return error_response("Promo code already exists", 400)

    timestamp = utcnow()
    promo_document = {
        "is_active": True,
        "expiry_date": None,
        "description": "",
        **fields,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.promo_codes.insert_one(promo_document)
    promo_document["_id"] = insert_result.inserted_id

    record_audit_log(
        current_user,
        "Created promo code",
        {"code": promo_document["code"], "percentage": promo_document["percentage"]},
    )

    return jsonify(serialize_promo_code(promo_document)), 201


@promo_codes_bp.route("", methods=["GET"])
@jwt_required()
def list_promo_codes():
    _, user_error = require_active_user()
    if user_error:
        return user_error

    page, limit, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        query["code"] = search_regex(search_term)

    documents, total = paginate(
        mongo.db.promo_codes, query, page, limit, sort=[("created_at", -1)]
    )
    return jsonify(
        {
            "promo_codes": [serialize_promo_code(document) for document in documents],
            "pagination": build_pagination(page, limit, total),
        }
    )


@promo_codes_bp.route("/validate/<code>", methods=["GET"])
@jwt_required()
def validate_promo_code(code: str):
    _, user_error = require_active_user()
    if user_error:
        return user_error

    promo_document = find_valid_promo_code(code)
    if not promo_document:
        return error_response(INVALID_PROMO_CODE_MESSAGE, 404)
    return jsonify(serialize_promo_code(promo_document))


@promo_codes_bp.route("/<promo_code_id>", methods=["GET"])
@jwt_required()
def get_promo_code(promo_code_id: str):
    _, user_error = require_active_user()
    if user_error:
        return user_error

    promo_document, load_error = fetch_promo_code(promo_code_id)
    if load_error:
        return load_error
    return jsonify(serialize_promo_code(promo_document))


@promo_codes_bp.route("/<promo_code_id>", methods=["PATCH"])
@jwt_required()
def update_promo_code(promo_code_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    promo_document, load_error = fetch_promo_code(promo_code_id)
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    fields, errors = build_promo_code_fields(payload, partial=True)
    if errors:
        return error_response("Validation failed", 400, errors)
    if not fields:
        return error_response("Provide at least one field to update.")

    if "code" in fields and code_taken(fields["code"], exclude_id=promo_document["_id"]):
        return error_response("Promo code already exists", 400)

    fields["updated_at"] = utcnow()
    mongo.db.promo_codes.update_one({"_id": promo_document["_id"]}, {"$set": fields})
    updated_promo = mongo.db.promo_codes.find_one({"_id": promo_document["_id"]})

    record_audit_log(
        current_user,
        "Updated promo code",
        {"code": updated_promo.get("code", ""), "fields": ",".join(sorted(fields))},
    )

    return jsonify(serialize_promo_code(updated_promo))


@promo_codes_bp.route("/<promo_code_id>", methods=["DELETE"])
@jwt_required()
def delete_promo_code(promo_code_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    promo_document, load_error = fetch_promo_code(promo_code_id)
    if load_error:
        return load_error

    mongo.db.promo_codes.delete_one({"_id": promo_document["_id"]})
    record_audit_log(current_user, "Deleted promo code", {"code": promo_document.get("code", "")})

    return jsonify(
        {
            "message": "Promo code removed successfully.",
            "promo_code": {"id": str(promo_document["_id"])},
        }
    )
