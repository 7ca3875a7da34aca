from typing import Dict, List

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .extensions import mongo
from .helpers import error_response, is_valid_url, isoformat, parse_bool, utcnow
from .security import require_admin_user

store_config_bp = Blueprint("store_config", __name__, url_prefix="/store-config")

DEFAULT_STORE_NAME = "My E-commerce Store"
DEFAULT_SEO_DESCRIPTION = "Welcome to our online store"

URL_FIELDS = ("logo_url", "banner_url")
TEXT_FIELDS = ("seo_description", "seo_keywords")
NESTED_FIELDS = {
    "social_links": ("facebook", "twitter", "instagram", "youtube"),
    "contact_info": ("email", "phone", "address"),
    "appearance": ("primary_color", "secondary_color", "accent_color"),
}


def default_store_config() -> Dict:
    timestamp = utcnow()
    return {
        "store_name": DEFAULT_STORE_NAME,
        "logo_url": "",
        "banner_url": "",
        "seo_description": DEFAULT_SEO_DESCRIPTION,
        "seo_keywords": "",
        "is_maintenance_mode": False,
        "social_links": {},
        "contact_info": {},
        "appearance": {},
        "created_at": timestamp,
        "updated_at": timestamp,
    }


def ensure_store_config():
    """Create the singleton store configuration when none exists."""
    if mongo.db.store_config.count_documents({}) == 0:
        mongo.db.store_config.insert_one(default_store_config())
        current_app.logger.info("Created default store configuration")


def serialize_store_config(config_document):
    if not config_document:
        return None

    serialized = {"id": str(config_document.get("_id"))}
    serialized["store_name"] = config_document.get("store_name", "")
    for field in URL_FIELDS + TEXT_FIELDS:
        serialized[field] = config_document.get(field, "") or ""
    serialized["is_maintenance_mode"] = bool(config_document.get("is_maintenance_mode"))
    for field, keys in NESTED_FIELDS.items():
        stored = config_document.get(field) or {}
        serialized[field] = {key: stored[key] for key in keys if key in stored}
    serialized["created_at"] = isoformat(config_document.get("created_at"))
    serialized["updated_at"] = isoformat(config_document.get("updated_at"))
    return serialized


def build_store_config_updates(payload: Dict, existing: Dict):
    """Validate a partial update, merging nested objects key by key.

    Keys outside the configuration shape are dropped, so the document returned
    by ``GET /store-config`` can be edited and sent back as is.
    """
    updates: Dict[str, object] = {}
    errors: Dict[str, List[str]] = {}

    if "store_name" in payload:
        store_name = str(payload.get("store_name") or "").strip()
        if not store_name:
            errors["store_name"] = ["Store name is required"]
        else:
            updates["store_name"] = store_name

    for field in URL_FIELDS:
        if field in payload:
            value = str(payload.get(field) or "").strip()
            if value and not is_valid_url(value):
                errors[field] = [f"{field} must be a valid http or https URL"]
            else:
                updates[field] = value

    for field in TEXT_FIELDS:
        if field in payload:
            updates[field] = str(payload.get(field) or "").strip()

    if "is_maintenance_mode" in payload:
        flag = parse_bool(payload.get("is_maintenance_mode"))
        if flag is None:
            errors["is_maintenance_mode"] = ["is_maintenance_mode must be a boolean"]
        else:
            updates["is_maintenance_mode"] = flag

    for section, keys in NESTED_FIELDS.items():
        if section not in payload:
            continue
        section_payload = payload.get(section)
        if not isinstance(section_payload, dict):
            errors[section] = [f"{section} must be an object"]
            continue
        merged = dict(existing.get(section) or {})
        for key, raw_value in section_payload.items():
            if key in keys:
                merged[key] = str(raw_value or "").strip()
        updates[section] = merged

    return updates, errors


# --- ROUTES ---


@store_config_bp.route("", methods=["GET"])
def get_store_config():
    config_document = mongo.db.store_config.find_one({})
    if not config_document:
        return error_response("Store configuration not found", 404)
    return jsonify(serialize_store_config(config_document))


@store_config_bp.route("", methods=["PUT"])
@jwt_required()
def update_store_config():
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    config_document = mongo.db.store_config.find_one({})
    if not config_document:
        return error_response("Store configuration not found", 404)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return error_response("A JSON object is required.", 400)

    updates, errors = build_store_config_updates(payload, config_document)
    if errors:
        return error_response("Validation failed", 400, errors)
    if not updates:
        return error_response("Provide at least one field to update.")

    updates["updated_at"] = utcnow()
    mongo.db.store_config.update_one({"_id": config_document["_id"]}, {"$set": updates})
    updated_config = mongo.db.store_config.find_one({"_id": config_document["_id"]})

    record_audit_log(
        current_user,
        "Updated store configuration",
        {"fields": ",".join(sorted(key for key in updates if key != "updated_at"))},
    )

    return jsonify(serialize_store_config(updated_config))
