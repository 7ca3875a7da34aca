from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .categories import fetch_categories_by_ids
from .extensions import mongo
from .helpers import (
    build_pagination,
    error_response,
    fetch_document,
    get_pagination_args,
    is_valid_email,
    isoformat,
    normalize_email,
    normalize_object_id_value,
    paginate,
    parse_bool,
    parse_int,
    round_money,
    search_regex,
    utcnow,
)
from .products import effective_price, fetch_product, fetch_products_by_ids, serialize_product
from .security import (
    ALLOWED_USER_ROLES,
    ROLE_USER,
    get_user_role,
    hash_password,
    require_active_user,
    require_admin_user,
)

users_bp = Blueprint("users", __name__, url_prefix="/users")

MIN_PASSWORD_LENGTH = 6


def serialize_user(user_document):
    if not user_document:
        return None

    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": get_user_role(user_document),
        "is_active": user_document.get("is_active") is not False,
        "cart": [
            {
                "product": str(item.get("product")),
                "quantity": int(item.get("quantity") or 0),
            }
            for item in user_document.get("cart") or []
        ],
        "wishlist": [str(product_id) for product_id in user_document.get("wishlist") or []],
        "created_at": isoformat(user_document.get("created_at")),
        "updated_at": isoformat(user_document.get("updated_at")),
    }


def fetch_user(user_id):
    return fetch_document(mongo.db.users, user_id, "User")


def email_taken(email: str, exclude_id=None) -> bool:
    query: Dict[str, object] = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return mongo.db.users.find_one(query) is not None


def build_user_fields(payload: Dict, *, partial: bool, privileged: bool):
    """Validate user input, returning ``(fields, errors)``.

    ``role`` and ``is_active`` are only read for administrators.
    """
    fields: Dict[str, object] = {}
    errors: Dict[str, List[str]] = {}

    if "name" in payload or not partial:
        name = str(payload.get("name") or "").strip()
        if not name:
            errors["name"] = ["Name is required"]
        else:
            fields["name"] = name

    if "email" in payload or not partial:
        email = normalize_email(payload.get("email"))
        if not is_valid_email(email):
            errors["email"] = ["A valid email address is required"]
        else:
            fields["email"] = email

    if "password" in payload or not partial:
        password = str(payload.get("password") or "")
        if len(password) < MIN_PASSWORD_LENGTH:
            errors["password"] = [
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            ]
        else:
            fields["password"] = hash_password(password)

    if privileged and "role" in payload:
        role = str(payload.get("role") or "").strip().lower()
        if role not in ALLOWED_USER_ROLES:
            errors["role"] = ["Role must be 'admin' or 'user'"]
        else:
            fields["role"] = role

    if privileged and "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"))
        if is_active is None:
            errors["is_active"] = ["is_active must be a boolean"]
        else:
            fields["is_active"] = is_active

    return fields, errors


def create_user_document(fields: Dict):
    timestamp = utcnow()
    user_document = {
        "role": ROLE_USER,
        "is_active": True,
        "cart": [],
        "wishlist": [],
        **fields,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.users.insert_one(user_document)
    user_document["_id"] = insert_result.inserted_id
    return user_document


def apply_user_update(user_document, fields: Dict):
    if "email" in fields and email_taken(fields["email"], exclude_id=user_document["_id"]):
        return None, error_response("Email already exists", 400)

    fields["updated_at"] = utcnow()
    mongo.db.users.update_one({"_id": user_document["_id"]}, {"$set": fields})
    return mongo.db.users.find_one({"_id": user_document["_id"]}), None


def clear_cart(user_id):
    mongo.db.users.update_one(
        {"_id": user_id}, {"$set": {"cart": [], "updated_at": utcnow()}}
    )


def serialize_cart(user_document):
    cart = user_document.get("cart") or []
    product_map = fetch_products_by_ids([item.get("product") for item in cart])
    category_map = fetch_categories_by_ids(
        [product.get("category") for product in product_map.values()]
    )

    items = []
    subtotal = 0.0
    total_items = 0
    for item in cart:
        product_document = product_map.get(item.get("product"))
        if not product_document:
            continue
        quantity = int(item.get("quantity") or 0)
        subtotal += effective_price(product_document) * quantity
        total_items += quantity
        items.append(
            {
                "product": serialize_product(product_document, category_map),
                "quantity": quantity,
            }
        )

    return {
        "cart": items,
        "total_items": total_items,
        "subtotal": round_money(subtotal),
    }


def serialize_wishlist(user_document):
    wishlist = user_document.get("wishlist") or []
    product_map = fetch_products_by_ids(wishlist)
    category_map = fetch_categories_by_ids(
        [product.get("category") for product in product_map.values()]
    )
    return {
        "wishlist": [
            serialize_product(product_map[product_id], category_map)
            for product_id in wishlist
            if product_id in product_map
        ]
    }


def parse_quantity(value):
    quantity = parse_int(value)
    if quantity is None or quantity < 1:
        return None, error_response(
            "Quantity must be at least 1", 400, {"quantity": ["Quantity must be at least 1"]}
        )
    return quantity, None


# --- ROUTES ---


@users_bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    fields, errors = build_user_fields(payload, partial=False, privileged=False)
    if errors:
        return error_response("Validation failed", 400, errors)

    if email_taken(fields["email"]):
        return error_response("Email already exists", 400)

    user_document = create_user_document({**fields, "role": ROLE_USER, "is_active": True})
    record_audit_log(
        user_document, "Registered new account", {"user_id": str(user_document["_id"])}
    )

    return (
        jsonify({"message": "Registration successful", "data": serialize_user(user_document)}),
        201,
    )


@users_bp.route("/profile", methods=["GET"])
@jwt_required()
def get_profile():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error
    return jsonify(serialize_user(current_user))


@users_bp.route("/profile", methods=["PATCH"])
@jwt_required()
def update_profile():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    payload = request.get_json(silent=True) or {}
    fields, errors = build_user_fields(payload, partial=True, privileged=False)
    if errors:
        return error_response("Validation failed", 400, errors)
    if not fields:
        return error_response("Provide at least one field to update.")

    updated_user, update_error = apply_user_update(current_user, fields)
    if update_error:
        return update_error

    return jsonify(serialize_user(updated_user))


# Cart


@users_bp.route("/cart", methods=["GET"])
@jwt_required()
def get_cart():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error
    return jsonify(serialize_cart(current_user))


@users_bp.route("/cart", methods=["POST"])
@jwt_required()
def add_to_cart():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    payload = request.get_json(silent=True) or {}
    if normalize_object_id_value(payload.get("product_id")) is None:
        return error_response(
            "Invalid product identifier.", 400, {"product_id": ["A valid product id is required"]}
        )
    quantity, quantity_error = parse_quantity(payload.get("quantity"))
    if quantity_error:
        return quantity_error

    product_document, load_error = fetch_product(payload.get("product_id"))
    if load_error:
        return load_error

    cart = list(current_user.get("cart") or [])
    for item in cart:
        if item.get("product") == product_document["_id"]:
            item["quantity"] = int(item.get("quantity") or 0) + quantity
            break
    else:
        cart.append({"product": product_document["_id"], "quantity": quantity})

    mongo.db.users.update_one(
        {"_id": current_user["_id"]}, {"$set": {"cart": cart, "updated_at": utcnow()}}
    )
    current_user["cart"] = cart
    return jsonify(serialize_cart(current_user))


@users_bp.route("/cart/<product_id>", methods=["PATCH"])
@jwt_required()
def update_cart_quantity(product_id: str):
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    payload = request.get_json(silent=True) or {}
    quantity, quantity_error = parse_quantity(payload.get("quantity"))
    if quantity_error:
        return quantity_error

    product_object_id = normalize_object_id_value(product_id)
    cart = list(current_user.get("cart") or [])
    for item in cart:
        if product_object_id is not None and item.get("product") == product_object_id:
            item["quantity"] = quantity
            break
    else:
        return error_response("Product not found in cart", 404)

    mongo.db.users.update_one(
        {"_id": current_user["_id"]}, {"$set": {"cart": cart, "updated_at": utcnow()}}
    )
    current_user["cart"] = cart
    return jsonify(serialize_cart(current_user))


@users_bp.route("/cart/<product_id>", methods=["DELETE"])
@jwt_required()
def remove_from_cart(product_id: str):
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    product_object_id = normalize_object_id_value(product_id)
    cart = [
        item
        for item in current_user.get("cart") or []
        if item.get("product") != product_object_id
    ]
    mongo.db.users.update_one(
        {"_id": current_user["_id"]}, {"$set": {"cart": cart, "updated_at": utcnow()}}
    )
    current_user["cart"] = cart
    return jsonify(serialize_cart(current_user))


@users_bp.route("/cart", methods=["DELETE"])
@jwt_required()
def clear_cart_route():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    clear_cart(current_user["_id"])
    return jsonify({"message": "Cart cleared successfully"})


# Wishlist


@users_bp.route("/wishlist", methods=["GET"])
@jwt_required()
def get_wishlist():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error
    return jsonify(serialize_wishlist(current_user))


@users_bp.route("/wishlist/<product_id>", methods=["POST"])
@jwt_required()
def add_to_wishlist(product_id: str):
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    wishlist = list(current_user.get("wishlist") or [])
    if product_document["_id"] not in wishlist:
        wishlist.append(product_document["_id"])
        mongo.db.users.update_one(
            {"_id": current_user["_id"]},
            {"$set": {"wishlist": wishlist, "updated_at": utcnow()}},
        )
    current_user["wishlist"] = wishlist
    return jsonify(serialize_wishlist(current_user))


@users_bp.route("/wishlist/<product_id>", methods=["DELETE"])
@jwt_required()
def remove_from_wishlist(product_id: str):
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    product_object_id = normalize_object_id_value(product_id)
    wishlist = [
        stored_id
        for stored_id in current_user.get("wishlist") or []
        if stored_id != product_object_id
    ]
    mongo.db.users.update_one(
        {"_id": current_user["_id"]},
        {"$set": {"wishlist": wishlist, "updated_at": utcnow()}},
    )
    current_user["wishlist"] = wishlist
    return jsonify(serialize_wishlist(current_user))


# Administration


@users_bp.route("", methods=["GET"])
@jwt_required()
def list_users():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    page, limit, search_term = get_pagination_args()
    query: Dict[str, object] = {}
    if search_term:
        regex = search_regex(search_term)
        query["$or"] = [{"name": regex}, {"email": regex}]

    role_filter = (request.args.get("role") or "").strip().lower()
    if role_filter:
        if role_filter not in ALLOWED_USER_ROLES:
            return error_response("Role must be 'admin' or 'user'", 400)
        query["role"] = role_filter

    if request.args.get("is_active") is not None:
        is_active = parse_bool(request.args.get("is_active"))
        if is_active is None:
            return error_response("is_active must be a boolean", 400)
        query["is_active"] = is_active

    documents, total = paginate(
        mongo.db.users, query, page, limit, sort=[("created_at", -1)]
    )
    return jsonify(
        {
            "users": [serialize_user(document) for document in documents],
            "pagination": build_pagination(page, limit, total),
        }
    )


@users_bp.route("", methods=["POST"])
@jwt_required()
def create_user():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    fields, errors = build_user_fields(payload, partial=False, privileged=True)
    if errors:
        return error_response("Validation failed", 400, errors)

    if email_taken(fields["email"]):
        return error_response("Email already exists", 400)

    user_document = create_user_document(fields)
    record_audit_log(
        admin_user,
        "Created user",
        {"target_email": user_document["email"], "role": get_user_role(user_document)},
    )
    return jsonify(serialize_user(user_document)), 201


@users_bp.route("/<user_id>", methods=["GET"])
@jwt_required()
def get_user(user_id: str):
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error
    return jsonify(serialize_user(user_document))


@users_bp.route("/<user_id>", methods=["PATCH"])
@jwt_required()
def update_user(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    fields, errors = build_user_fields(payload, partial=True, privileged=True)
    if errors:
        return error_response("Validation failed", 400, errors)
    if not fields:
        return error_response("Provide at least one field to update.")

    updated_user, update_error = apply_user_update(user_document, fields)
    if update_error:
        return update_error

    record_audit_log(
        admin_user,
        "Updated user",
        {
            "target_email": updated_user.get("email", ""),
            "fields": ",".join(sorted(key for key in fields if key != "updated_at")),
        },
    )
    return jsonify(serialize_user(updated_user))


@users_bp.route("/<user_id>", methods=["DELETE"])
@jwt_required()
def delete_user(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_document, load_error = fetch_user(user_id)
    if load_error:
        return load_error

    if user_document["_id"] == admin_user["_id"]:
        return error_response("You cannot delete your own account.", 400)

    mongo.db.users.delete_one({"_id": user_document["_id"]})
    record_audit_log(
        admin_user,
        "Deleted user",
        {"target_email": user_document.get("email", ""), "name": user_document.get("name", "")},
    )

    display_name = user_document.get("name") or "User"
    return jsonify(
        {
            "message": f"{display_name} has been removed from the directory.",
            "user": serialize_user(user_document),
        }
    )
