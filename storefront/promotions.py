from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .extensions import mongo
from .helpers import (
    build_pagination,
    error_response,
    fetch_document,
    field_error,
    get_pagination_args,
    get_request_payload,
    isoformat,
    paginate,
    parse_bool,
    search_regex,
    utcnow,
)
from .security import require_admin_user
from .uploads import build_upload_url, get_uploaded_files, remove_image, save_image

promotions_bp = Blueprint("promotions", __name__, url_prefix="/promotions")

PROMOTION_UPLOAD_SUBFOLDER = "promotions"


def serialize_promotion(promotion_document):
    if not promotion_document:
        return None

    return {
        "id": str(promotion_document.get("_id")),
        "title": promotion_document.get("title", ""),
        "description": promotion_document.get("description", "") or "",
        "banner_img": build_upload_url(promotion_document.get("banner_img")),
        "is_active": promotion_document.get("is_active") is not False,
        "created_at": isoformat(promotion_document.get("created_at")),
        "updated_at": isoformat(promotion_document.get("updated_at")),
    }


def fetch_promotion(promotion_id):
    return fetch_document(mongo.db.promotions, promotion_id, "Promotion")


def read_is_active(payload: Dict):
    is_active = parse_bool(payload.get("is_active"))
    if is_active is None:
        return None, field_error("is_active", "is_active must be a boolean")
    return is_active, None


# --- ROUTES ---


@promotions_bp.route("", methods=["POST"])
@jwt_required()
def create_promotion():
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = get_request_payload()
    title = str(payload.get("title") or "").strip()
    if not title:
        return field_error("title", "A promotion title is required.")

    is_active = True
    if "is_active" in payload:
        is_active, bool_error = read_is_active(payload)
        if bool_error:
            return bool_error

    banner_files = get_uploaded_files("banner_img")
    if not banner_files:
        return field_error("banner_img", "Banner image is required")

    banner_path, banner_error = save_image(banner_files[0], PROMOTION_UPLOAD_SUBFOLDER)
    if banner_error:
        return field_error("banner_img", banner_error)

    timestamp = utcnow()
    promotion_document = {
        "title": title,
        "description": str(payload.get("description") or "").strip(),
        "banner_img": banner_path,
        "is_active": is_active,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.promotions.insert_one(promotion_document)
    promotion_document["_id"] = insert_result.inserted_id

    record_audit_log(
        current_user,
        "Created promotion",
        {"promotion_id": str(insert_result.inserted_id), "title": title},
    )

    return jsonify(serialize_promotion(promotion_document)), 201


@promotions_bp.route("", methods=["GET"])
def list_promotions():
    page, limit, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        query["title"] = search_regex(search_term)

    if request.args.get("is_active") is not None:
        is_active = parse_bool(request.args.get("is_active"))
        if is_active is None:
            return error_response("is_active must be a boolean", 400)
        query["is_active"] = is_active

    documents, total = paginate(
        mongo.db.promotions, query, page, limit, sort=[("created_at", -1)]
    )
    return jsonify(
        {
            "promotions": [serialize_promotion(document) for document in documents],
            "pagination": build_pagination(page, limit, total),
        }
    )


@promotions_bp.route("/<promotion_id>", methods=["GET"])
def get_promotion(promotion_id: str):
    promotion_document, load_error = fetch_promotion(promotion_id)
    if load_error:
        return load_error
    return jsonify(serialize_promotion(promotion_document))


@promotions_bp.route("/<promotion_id>", methods=["PATCH"])
@jwt_required()
def update_promotion(promotion_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    promotion_document, load_error = fetch_promotion(promotion_id)
    if load_error:
        return load_error

    payload = get_request_payload()
    updates: Dict[str, object] = {}

    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if not title:
            return field_error("title", "A promotion title is required.")
        updates["title"] = title
    if "description" in payload:
        updates["description"] = str(payload.get("description") or "").strip()
    if "is_active" in payload:
        is_active, bool_error = read_is_active(payload)
        if bool_error:
            return bool_error
        updates["is_active"] = is_active

    banner_files = get_uploaded_files("banner_img")
    if banner_files:
        banner_path, banner_error = save_image(banner_files[0], PROMOTION_UPLOAD_SUBFOLDER)
        if banner_error:
            return field_error("banner_img", banner_error)
        updates["banner_img"] = banner_path

    if not updates:
        return error_response("Provide at least one field to update.")

    updates["updated_at"] = utcnow()
    mongo.db.promotions.update_one({"_id": promotion_document["_id"]}, {"$set": updates})
    if "banner_img" in updates:
        remove_image(promotion_document.get("banner_img"))

    updated_promotion = mongo.db.promotions.find_one({"_id": promotion_document["_id"]})

    record_audit_log(
        current_user,
        "Updated promotion",
        {"promotion_id": str(promotion_document["_id"]), "fields": ",".join(sorted(updates))},
    )

    return jsonify(serialize_promotion(updated_promotion))


@promotions_bp.route("/<promotion_id>", methods=["DELETE"])
@jwt_required()
def delete_promotion(promotion_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    promotion_document, load_error = fetch_promotion(promotion_id)
    if load_error:
        return load_error

    mongo.db.promotions.delete_one({"_id": promotion_document["_id"]})
    remove_image(promotion_document.get("banner_img"))

    record_audit_log(
        current_user,
        "Deleted promotion",
        {
            "promotion_id": str(promotion_document["_id"]),
            "title": promotion_document.get("title", ""),
        },
    )

    return jsonify(
        {
            "message": "Promotion removed successfully.",
            "promotion": {"id": str(promotion_document["_id"])},
        }
    )
