import math
from typing import Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required, verify_jwt_in_request

from .audit import record_audit_log
from .categories import fetch_categories_by_ids, fetch_category
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
    parse_bool,
    parse_int,
    round_money,
    search_regex,
    utcnow,
)
from .security import require_admin_user
from .uploads import (
    build_upload_url,
    get_uploaded_files,
    remove_image,
    save_image,
    save_images,
)

products_bp = Blueprint("products", __name__, url_prefix="/products")

PRODUCT_UPLOAD_SUBFOLDER = "products"
MAX_PRODUCT_IMAGES = 10
DEFAULT_SHOWCASE_LIMIT = 10
PRICE_FIELDS = {
    "buy_price": "Buy price",
    "sell_price": "Sell price",
    "flash_price": "Flash price",
}
BOOLEAN_FIELDS = ("is_on_stock", "is_on_flash", "is_featured")


def effective_price(product_document) -> float:
    if product_document.get("is_on_flash") and product_document.get("flash_price") is not None:
        return float(product_document["flash_price"])
    return float(product_document.get("sell_price") or 0)


def serialize_category_summary(category_document):
    if not category_document:
        return None
    return {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", ""),
        "image": build_upload_url(category_document.get("image")),
        "description": category_document.get("description", "") or "",
    }


def serialize_product(product_document, category_map=None):
    if not product_document:
        return None

    category_id = product_document.get("category")
    category = None
    if category_map is not None and category_id in category_map:
        category = serialize_category_summary(category_map[category_id])
    elif category_id:
        category = {"id": str(category_id)}

    flash_price = product_document.get("flash_price")
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", "") or "",
        "main_image": build_upload_url(product_document.get("main_image")),
        "images": [
            build_upload_url(path) for path in product_document.get("images") or []
        ],
        "category": category,
        "is_on_stock": bool(product_document.get("is_on_stock", True)),
        "stock": int(product_document.get("stock", 0) or 0),
        "buy_price": round_money(product_document.get("buy_price")),
        "sell_price": round_money(product_document.get("sell_price")),
        "is_on_flash": bool(product_document.get("is_on_flash")),
        "flash_price": round_money(flash_price) if flash_price is not None else None,
        "is_featured": bool(product_document.get("is_featured")),
        "price": round_money(effective_price(product_document)),
        "created_at": isoformat(product_document.get("created_at")),
        "updated_at": isoformat(product_document.get("updated_at")),
    }


def serialize_products(product_documents) -> List[Dict]:
    product_documents = list(product_documents)
    category_map = fetch_categories_by_ids(
        [document.get("category") for document in product_documents]
    )
    return [serialize_product(document, category_map) for document in product_documents]


def fetch_product(product_id):
    return fetch_document(mongo.db.products, product_id, "Product")


def fetch_products_by_ids(product_ids) -> Dict:
    normalized_ids = []
    for value in product_ids or []:
        object_id = normalize_object_id_value(value)
        if object_id is not None and object_id not in normalized_ids:
            normalized_ids.append(object_id)
    if not normalized_ids:
        return {}
    cursor = mongo.db.products.find({"_id": {"$in": normalized_ids}})
    return {document["_id"]: document for document in cursor}


def parse_price(raw_value, label: str):
    if isinstance(raw_value, bool):
        return None, f"{label} must be a valid number"
    try:
        numeric = float(raw_value)
    except (TypeError, ValueError):
        return None, f"{label} must be a valid number"
    if not math.isfinite(numeric):
        return None, f"{label} must be a valid number"
    if numeric < 0:
        return None, f"{label} must not be negative"
    return round_money(numeric), None


def has_value(payload: Dict, field: str) -> bool:
    value = payload.get(field)
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def build_product_fields(payload: Dict, existing: Optional[Dict] = None):
    """Validate a create or partial update payload.

    Returns ``(fields, errors)`` where ``errors`` maps field names to
    messages. Pricing rules are checked against the stored product when
    ``existing`` is given.
    """
    partial = existing is not None
    fields: Dict[str, object] = {}
    errors: Dict[str, List[str]] = {}

    for field, label in (("name", "Name"), ("description", "Description")):
        if has_value(payload, field):
            fields[field] = str(payload[field]).strip()
        elif not partial or field in payload:
            errors[field] = [f"{label} is required"]

    if has_value(payload, "category"):
        category_document, _ = fetch_category(payload["category"])
        if not category_document:
            errors["category"] = ["Category not found"]
        else:
            fields["category"] = category_document["_id"]
    elif not partial:
        errors["category"] = ["Category is required"]

    for field, label in PRICE_FIELDS.items():
        if has_value(payload, field):
            price_value, price_error = parse_price(payload[field], label)
            if price_error:
                errors[field] = [price_error]
            else:
                fields[field] = price_value
        elif not partial and field != "flash_price":
            errors[field] = [f"{label} is required"]

    for field in BOOLEAN_FIELDS:
        if field in payload:
            parsed = parse_bool(payload.get(field))
            if parsed is None:
                errors[field] = [f"{field} must be a boolean"]
            else:
                fields[field] = parsed

    if has_value(payload, "stock"):
        stock_value = parse_int(payload.get("stock"))
        if stock_value is None or stock_value < 0:
            errors["stock"] = ["Stock must be a whole number of at least 0"]
        else:
            fields["stock"] = stock_value

    if errors:
        return fields, errors

    effective = {**(existing or {}), **fields}
    buy_price = effective.get("buy_price")
    sell_price = effective.get("sell_price")
    if buy_price is not None and sell_price is not None and sell_price <= buy_price:
        errors["sell_price"] = ["Selling price must be greater than buying price"]

    if effective.get("is_on_flash"):
        flash_price = effective.get("flash_price")
        if flash_price is None:
            errors["flash_price"] = ["Flash price is required when enabling flash sale"]
        elif sell_price is not None and flash_price >= sell_price:
            errors["flash_price"] = ["Flash price must be lower than the selling price"]

    return fields, errors


def list_products_response(query: Dict, sort=None):
    page, limit, _ = get_pagination_args()
    documents, total = paginate(mongo.db.products, query, page, limit, sort=sort)
    return jsonify(
        {
            "products": serialize_products(documents),
            "pagination": build_pagination(page, limit, total),
        }
    )


def get_showcase_limit() -> int:
    limit = parse_int(request.args.get("limit"), DEFAULT_SHOWCASE_LIMIT)
    if not limit or limit < 1:
        limit = DEFAULT_SHOWCASE_LIMIT
    return min(limit, current_app.config["MAX_PAGE_SIZE"])


def collect_product_images(product_document) -> List[str]:
    stored_paths: List[str] = []
    if product_document.get("main_image"):
        stored_paths.append(str(product_document["main_image"]))
    for path in product_document.get("images") or []:
        if path and str(path) not in stored_paths:
            stored_paths.append(str(path))
    return stored_paths


# --- ROUTES ---


@products_bp.route("", methods=["POST"])
@jwt_required()
def create_product():
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = get_request_payload()
    fields, errors = build_product_fields(payload)
    if errors:
        return error_response("Validation failed", 400, errors)

    main_image_files = get_uploaded_files("main_image")
    if not main_image_files:
        return field_error("main_image", "Main product image is required")

    gallery_files = get_uploaded_files("images")
    if len(gallery_files) > MAX_PRODUCT_IMAGES:
        return field_error(
            "images", f"You can upload up to {MAX_PRODUCT_IMAGES} additional images."
        )

    main_image, image_error = save_image(main_image_files[0], PRODUCT_UPLOAD_SUBFOLDER)
    if image_error:
        return field_error("main_image", image_error)

    gallery_paths, gallery_error = save_images(gallery_files, PRODUCT_UPLOAD_SUBFOLDER)
    if gallery_error:
        remove_image(main_image)
        return field_error("images", gallery_error)

    timestamp = utcnow()
    product_document = {
        "is_on_stock": True,
        "stock": 0,
        "is_on_flash": False,
        "is_featured": False,
        **fields,
        "main_image": main_image,
        "images": gallery_paths,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.products.insert_one(product_document)
    product_document["_id"] = insert_result.inserted_id

    record_audit_log(
        current_user,
        "Created product",
        {"product_id": str(insert_result.inserted_id), "product_name": fields.get("name")},
    )

    category_map = fetch_categories_by_ids([product_document.get("category")])
    return (
        jsonify(
            {
                "message": "Product created successfully",
                "data": serialize_product(product_document, category_map),
            }
        ),
        201,
    )


@products_bp.route("", methods=["GET"])
def list_products():
    _, _, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        query["name"] = search_regex(search_term)
    return list_products_response(query)


@products_bp.route("/search", methods=["GET"])
def search_products():
    _, _, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        regex = search_regex(search_term)
        query["$or"] = [{"name": regex}, {"description": regex}]
    return list_products_response(query, sort=[("created_at", -1)])


@products_bp.route("/featured", methods=["GET"])
def list_featured_products():
    return list_products_response({"is_featured": True})


@products_bp.route("/flash", methods=["GET"])
def list_flash_products():
    return list_products_response({"is_on_flash": True})


@products_bp.route("/category/<category_id>", methods=["GET"])
def list_products_by_category(category_id: str):
    category_object_id = normalize_object_id_value(category_id)
    if category_object_id is None:
        return error_response("Invalid category identifier.", 400)
    return list_products_response({"category": category_object_id})


@products_bp.route("/latest", methods=["GET"])
def list_latest_products():
    limit = get_showcase_limit()
    cursor = (
        mongo.db.products.find({"is_on_stock": True})
        .sort("created_at", -1)
        .limit(limit)
    )
    return jsonify({"products": serialize_products(cursor)})


@products_bp.route("/recommended", methods=["GET"])
def list_recommended_products():
    verify_jwt_in_request(optional=True)
    limit = get_showcase_limit()
    featured_query = {"is_featured": True, "is_on_stock": True}

    if not get_jwt_identity():
        documents = list(mongo.db.products.find(featured_query).limit(limit))
        return jsonify({"products": serialize_products(documents)})

    # Signed-in users get half featured picks and half of the newest stock.
    half = max(limit // 2, 1)
    featured = list(mongo.db.products.find(featured_query).limit(half))
    seen = {document["_id"] for document in featured}
    latest = [
        document
        for document in mongo.db.products.find({"is_on_stock": True})
        .sort("created_at", -1)
        .limit(half + len(seen))
        if document["_id"] not in seen
    ][: limit - len(featured)]
    return jsonify({"products": serialize_products(featured + latest)})


@products_bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    category_map = fetch_categories_by_ids([product_document.get("category")])
    return jsonify(serialize_product(product_document, category_map))


@products_bp.route("/<product_id>", methods=["PATCH"])
@jwt_required()
def update_product(product_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    payload = get_request_payload()
    updates, errors = build_product_fields(payload, existing=product_document)
    if errors:
        return error_response("Validation failed", 400, errors)

    main_image_files = get_uploaded_files("main_image")
    gallery_files = get_uploaded_files("images")
    if len(gallery_files) > MAX_PRODUCT_IMAGES:
        return field_error(
            "images", f"You can upload up to {MAX_PRODUCT_IMAGES} additional images."
        )

    replaced_paths: List[str] = []
    if main_image_files:
        main_image, image_error = save_image(main_image_files[0], PRODUCT_UPLOAD_SUBFOLDER)
        if image_error:
            return field_error("main_image", image_error)
        updates["main_image"] = main_image
        if product_document.get("main_image"):
            replaced_paths.append(product_document["main_image"])

    if gallery_files:
        gallery_paths, gallery_error = save_images(gallery_files, PRODUCT_UPLOAD_SUBFOLDER)
        if gallery_error:
            remove_image(updates.get("main_image"))
            return field_error("images", gallery_error)
        updates["images"] = gallery_paths
        replaced_paths.extend(product_document.get("images") or [])

    if not updates:
        return error_response("Provide at least one field to update.")

    updates["updated_at"] = utcnow()
    mongo.db.products.update_one({"_id": product_document["_id"]}, {"$set": updates})
    remove_image(replaced_paths)

    updated_product = mongo.db.products.find_one({"_id": product_document["_id"]})
    category_map = fetch_categories_by_ids([updated_product.get("category")])

    record_audit_log(
        current_user,
        "Updated product",
        {
            "product_id": str(product_document["_id"]),
            "fields": ",".join(sorted(key for key in updates if key != "updated_at")),
        },
    )

    return jsonify(
        {
            "message": "Product updated successfully",
            "data": serialize_product(updated_product, category_map),
        }
    )


@products_bp.route("/<product_id>", methods=["DELETE"])
@jwt_required()
def delete_product(product_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    mongo.db.products.delete_one({"_id": product_document["_id"]})
    remove_image(collect_product_images(product_document))

    record_audit_log(
        current_user,
        "Deleted product",
        {
            "product_id": str(product_document["_id"]),
            "product_name": product_document.get("name", ""),
        },
    )

    return jsonify({"message": "Product removed successfully."})
