from typing import Dict, List

from flask import Blueprint, jsonify
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
    normalize_object_id_value,
    paginate,
    search_regex,
    utcnow,
)
from .security import require_admin_user
from .uploads import build_upload_url, get_uploaded_files, remove_image, save_image

categories_bp = Blueprint("categories", __name__, url_prefix="/categories")

CATEGORY_UPLOAD_SUBFOLDER = "categories"


def normalize_category_name(value) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).strip()


def serialize_category(category_document):
    if not category_document:
        return None

    return {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", ""),
        "description": category_document.get("description", "") or "",
        "image": build_upload_url(category_document.get("image")),
        "created_at": isoformat(category_document.get("created_at")),
        "updated_at": isoformat(category_document.get("updated_at")),
    }


def fetch_category(category_id):
    return fetch_document(mongo.db.categories, category_id, "Category")


def fetch_categories_by_ids(category_ids) -> Dict:
    normalized_ids: List = []
    for value in category_ids or []:
        object_id = normalize_object_id_value(value)
        if object_id is not None and object_id not in normalized_ids:
            normalized_ids.append(object_id)
    if not normalized_ids:
        return {}
    category_documents = mongo.db.categories.find({"_id": {"$in": normalized_ids}})
    return {document["_id"]: document for document in category_documents}


# --- ROUTES ---


@categories_bp.route("", methods=["POST"])
@jwt_required()
def create_category():
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = get_request_payload()
    name = normalize_category_name(payload.get("name"))
    description = str(payload.get("description") or "").strip()

    if not name:
        return field_error("name", "A category name is required.")

    image_files = get_uploaded_files("image")
    if not image_files:
        return field_error("image", "Image file is required")

    image_path, image_error = save_image(image_files[0], CATEGORY_UPLOAD_SUBFOLDER)
    if image_error:
        return field_error("image", image_error)

    timestamp = utcnow()
    category_document = {
        "name": name,
        "description": description,
        "image": image_path,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.categories.insert_one(category_document)
    category_document["_id"] = insert_result.inserted_id

    record_audit_log(
        current_user,
        "Created category",
        {"category_id": str(insert_result.inserted_id), "name": name},
    )

    return jsonify(serialize_category(category_document)), 201


@categories_bp.route("", methods=["GET"])
def list_categories():
    page, limit, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        query["name"] = search_regex(search_term)

    documents, total = paginate(
        mongo.db.categories, query, page, limit, sort=[("name", 1)]
    )
    return jsonify(
        {
            "categories": [serialize_category(document) for document in documents],
            "pagination": build_pagination(page, limit, total),
        }
    )


@categories_bp.route("/<category_id>", methods=["GET"])
def get_category(category_id: str):
    category_document, load_error = fetch_category(category_id)
    if load_error:
        return load_error
    return jsonify(serialize_category(category_document))


@categories_bp.route("/<category_id>", methods=["PATCH"])
@jwt_required()
def update_category(category_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    category_document, load_error = fetch_category(category_id)
    if load_error:
        return load_error

    payload = get_request_payload()
    updates: Dict[str, object] = {}

    if "name" in payload:
        name = normalize_category_name(payload.get("name"))
        if not name:
            return field_error("name", "A category name is required.")
        updates["name"] = name
    if "description" in payload:
        updates["description"] = str(payload.get("description") or "").strip()

    image_files = get_uploaded_files("image")
    if image_files:
        image_path, image_error = save_image(image_files[0], CATEGORY_UPLOAD_SUBFOLDER)
        if image_error:
            return field_error("image", image_error)
        updates["image"] = image_path

    if not updates:
        return error_response("Provide at least one field to update.")

    updates["updated_at"] = utcnow()
    mongo.db.categories.update_one({"_id": category_document["_id"]}, {"$set": updates})
    if "image" in updates:
        remove_image(category_document.get("image"))

    updated_category = mongo.db.categories.find_one({"_id": category_document["_id"]})

    record_audit_log(
        current_user,
        "Updated category",
        {"category_id": str(category_document["_id"]), "fields": ",".join(sorted(updates))},
    )

    return jsonify(serialize_category(updated_category))


@categories_bp.route("/<category_id>", methods=["DELETE"])
@jwt_required()
def delete_category(category_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    category_document, load_error = fetch_category(category_id)
    if load_error:
        return load_error

    mongo.db.categories.delete_one({"_id": category_document["_id"]})
    remove_image(category_document.get("image"))

    record_audit_log(
        current_user,
        "Deleted category",
        {
            "category_id": str(category_document["_id"]),
            "name": category_document.get("name", ""),
        },
    )

    return jsonify(
        {
            "message": f'"{category_document.get("name", "Category")}" has been removed from the catalog.',
            "category": {"id": str(category_document["_id"])},
        }
    )
