import re
from typing import Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .extensions import mongo
from .helpers import (
    build_pagination,
    error_response,
    fetch_document,
    field_error,
    get_pagination_args,
    isoformat,
    normalize_object_id_value,
    paginate,
    parse_int,
    round_money,
    utcnow,
)
from .notifications import send_order_confirmation_email
from .products import effective_price, fetch_product, fetch_products_by_ids
from .promo_codes import INVALID_PROMO_CODE_MESSAGE, find_valid_promo_code
from .security import ROLE_ADMIN, get_user_role, require_active_user, require_admin_user
from .uploads import build_upload_url
from .users import clear_cart

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")

ORDER_STATUS_PENDING = "pending"
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_CARD)

phone_regex = re.compile(r"^\+?[0-9 ()-]{6,20}$")

# field, label, minimum length
SHIPPING_FIELDS = (
    ("full_name", "Full name", 2),
    ("address", "Address", 5),
    ("city", "City", 2),
    ("state", "State", 2),
    ("zip_code", "Zip code", 4),
)


def mask_card_number(card_number: str) -> str:
    digits = re.sub(r"\D", "", str(card_number or ""))
    return f"****{digits[-4:]}"


def serialize_order_product(product_document):
    if not product_document:
        return None
    flash_price = product_document.get("flash_price")
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "main_image": build_upload_url(product_document.get("main_image")),
        "images": [build_upload_url(path) for path in product_document.get("images") or []],
        "sell_price": round_money(product_document.get("sell_price")),
        "flash_price": round_money(flash_price) if flash_price is not None else None,
        "is_on_flash": bool(product_document.get("is_on_flash")),
    }


def serialize_order(order_document, product_map=None, creator_map=None):
    if not order_document:
        return None

    product_map = product_map or {}
    creator_id = order_document.get("order_creator")
    creator = {"id": str(creator_id)} if creator_id else None
    if creator_map and creator_id in creator_map:
        creator_document = creator_map[creator_id]
        creator = {
            "id": str(creator_id),
            "name": creator_document.get("name", ""),
            "email": creator_document.get("email", ""),
        }

    lines = []
    for line in order_document.get("products") or []:
        product_id = line.get("product")
        product = serialize_order_product(product_map.get(product_id)) or {"id": str(product_id)}
        lines.append(
            {
                "product": product,
                "quantity": int(line.get("quantity") or 0),
                "price": round_money(line.get("price")),
            }
        )

    payment_details = order_document.get("payment_details") or {}
    return {
        "id": str(order_document.get("_id")),
        "products": lines,
        "order_creator": creator,
        "shipping_details": order_document.get("shipping_details") or {},
        "payment_details": {
            key: value
            for key, value in payment_details.items()
            if key in ("payment_method", "card_number", "expiry_date")
        },
        "status": order_document.get("status", ORDER_STATUS_PENDING),
        "subtotal": round_money(order_document.get("subtotal")),
        "promo_discount": round_money(order_document.get("promo_discount")),
        "promo_code": order_document.get("promo_code"),
        "vat": round_money(order_document.get("vat")),
        "total": round_money(order_document.get("total")),
        "created_at": isoformat(order_document.get("created_at")),
        "updated_at": isoformat(order_document.get("updated_at")),
    }


def serialize_orders(order_documents, include_creator: bool = False) -> List[Dict]:
    order_documents = list(order_documents)
    product_map = fetch_products_by_ids(
        [
            line.get("product")
            for document in order_documents
            for line in document.get("products") or []
        ]
    )
    creator_map = None
    if include_creator:
        creator_ids = list({document.get("order_creator") for document in order_documents})
        creator_map = {
            document["_id"]: document
            for document in mongo.db.users.find({"_id": {"$in": creator_ids}})
        }
    return [serialize_order(document, product_map, creator_map) for document in order_documents]


def validate_shipping_details(shipping_payload) -> Dict:
    errors: Dict[str, List[str]] = {}
    if not isinstance(shipping_payload, dict):
        return {"shipping_details": ["Shipping details are required"]}

    for field, label, minimum in SHIPPING_FIELDS:
        value = str(shipping_payload.get(field) or "").strip()
        if len(value) < minimum:
            errors[f"shipping_details.{field}"] = [
                f"{label} must be at least {minimum} characters long"
            ]

    phone = str(shipping_payload.get("phone") or "").strip()
    if not phone_regex.match(phone):
        errors["shipping_details.phone"] = ["A valid phone number is required"]

    return errors


def parse_order_lines(raw_lines):
    """Return ``([(product_id, quantity)], errors)`` for the requested lines."""
    if not isinstance(raw_lines, list) or not raw_lines:
        return [], {"products": ["At least one product is required"]}

    lines = []
    errors: Dict[str, List[str]] = {}
    for index, entry in enumerate(raw_lines):
        if not isinstance(entry, dict):
            errors[f"products.{index}"] = ["Each line needs a product and a quantity"]
            continue
        product_id = normalize_object_id_value(entry.get("product"))
        if product_id is None:
            errors[f"products.{index}.product"] = ["A valid product id is required"]
        quantity = parse_int(entry.get("quantity"))
        if quantity is None or quantity < 1:
            errors[f"products.{index}.quantity"] = ["Quantity must be at least 1"]
        if product_id is not None and quantity is not None and quantity >= 1:
            lines.append((product_id, quantity))
    return lines, errors


def normalize_payment_method(payment_payload) -> str:
    return str(payment_payload.get("payment_method") or "").strip().lower()


def validate_payment_details(payment_payload) -> Dict[str, List[str]]:
    if not isinstance(payment_payload, dict):
        return {"payment_details": ["Payment details are required"]}
    if normalize_payment_method(payment_payload) not in PAYMENT_METHODS:
        return {"payment_details.payment_method": ["Payment method must be 'cash' or 'card'"]}
    return {}


def build_payment_details(payment_payload):
    """Build the stored payment details from an already validated payload."""
    payment_method = normalize_payment_method(payment_payload)

    payment_details: Dict[str, object] = {"payment_method": payment_method}
    if payment_method == PAYMENT_METHOD_CARD:
        card_number = str(payment_payload.get("card_number") or "").strip()
        expiry_date = str(payment_payload.get("expiry_date") or "").strip()
        cvv = str(payment_payload.get("cvv") or "").strip()
        if not card_number or not expiry_date or not cvv:
            return None, error_response("Card details are required for card payment", 400)
        # The CVV is checked for presence only and never persisted.
        payment_details["card_number"] = mask_card_number(card_number)
        payment_details["expiry_date"] = expiry_date

    return payment_details, None


def fetch_order(order_id):
    return fetch_document(mongo.db.orders, order_id, "Order")


def dispatch_order_confirmation(order_document, customer, product_names: Dict):
    if not (current_app.config.get("RESEND_API_KEY") or "").strip():
        return False
    sent, email_error = send_order_confirmation_email(
        order_document, customer.get("email", ""), product_names
    )
    if not sent:
        current_app.logger.warning(
            "Order confirmation email for %s failed: %s", order_document.get("_id"), email_error
        )
    return sent


# --- ROUTES ---


@orders_bp.route("", methods=["POST"])
@jwt_required()
def create_order():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    payload = request.get_json(silent=True) or {}
    requested_lines, errors = parse_order_lines(payload.get("products"))
    errors.update(validate_shipping_details(payload.get("shipping_details")))
    errors.update(validate_payment_details(payload.get("payment_details")))
    if errors:
        return error_response("Validation failed", 400, errors)

    order_lines = []
    product_names: Dict = {}
    for product_id, quantity in requested_lines:
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if not product_document.get("is_on_stock", True):
            return error_response(
                f"Product {product_document.get('name', '')} is out of stock", 400
            )
        product_names[product_document["_id"]] = product_document.get("name", "")
        order_lines.append(
            {
                "product": product_document["_id"],
                "quantity": quantity,
                "price": round_money(effective_price(product_document)),
            }
        )

    subtotal = sum(line["price"] * line["quantity"] for line in order_lines)

    promo_discount = 0.0
    promo_code: Optional[str] = None
    if payload.get("promo_code"):
        promo_document = find_valid_promo_code(payload.get("promo_code"))
        if not promo_document:
            return error_response(INVALID_PROMO_CODE_MESSAGE, 404)
        promo_code = promo_document["code"]
        promo_discount = subtotal * float(promo_document.get("percentage") or 0) / 100

    payment_details, payment_error = build_payment_details(payload.get("payment_details"))
    if payment_error:
        return payment_error

    vat = (subtotal - promo_discount) * float(current_app.config["VAT_RATE"])
    total = subtotal - promo_discount + vat

    shipping_payload = payload["shipping_details"]
    timestamp = utcnow()
    order_document = {
        "products": order_lines,
        "order_creator": current_user["_id"],
        "shipping_details": {
            field: str(shipping_payload.get(field) or "").strip()
            for field in ("full_name", "phone", "address", "city", "state", "zip_code")
        },
        "payment_details": payment_details,
        "status": ORDER_STATUS_PENDING,
        "subtotal": round_money(subtotal),
        "promo_discount": round_money(promo_discount),
        "promo_code": promo_code,
        "vat": round_money(vat),
        "total": round_money(total),
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    insert_result = mongo.db.orders.insert_one(order_document)
    order_document["_id"] = insert_result.inserted_id

    clear_cart(current_user["_id"])
    current_app.logger.info(
        "Order %s placed by %s for %.2f",
        insert_result.inserted_id,
        current_user.get("email"),
        order_document["total"],
    )

    email_sent = dispatch_order_confirmation(order_document, current_user, product_names)

    return (
        jsonify(
            {
                "message": "Order created successfully",
                "data": serialize_orders([order_document])[0],
                "email_sent": email_sent,
            }
        ),
        201,
    )


@orders_bp.route("", methods=["GET"])
@jwt_required()
def list_orders():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    page, limit, _ = get_pagination_args()
    query: Dict[str, object] = {}
    status_filter = (request.args.get("status") or "").strip().lower()
    if status_filter:
        if status_filter not in ORDER_STATUSES:
            return error_response("Invalid order status", 400)
        query["status"] = status_filter

    documents, total = paginate(
        mongo.db.orders, query, page, limit, sort=[("created_at", -1)]
    )
    return jsonify(
        {
            "orders": serialize_orders(documents, include_creator=True),
            "pagination": build_pagination(page, limit, total),
        }
    )


@orders_bp.route("/my-orders", methods=["GET"])
@jwt_required()
def list_my_orders():
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    page, limit, _ = get_pagination_args()
    query = {"order_creator": current_user["_id"]}
    documents, total = paginate(
        mongo.db.orders, query, page, limit, sort=[("created_at", -1)]
    )
    return jsonify(
        {
            "orders": serialize_orders(documents),
            "pagination": build_pagination(page, limit, total),
        }
    )


@orders_bp.route("/<order_id>", methods=["GET"])
@jwt_required()
def get_order(order_id: str):
    current_user, user_error = require_active_user()
    if user_error:
        return user_error

    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    if (
        get_user_role(current_user) != ROLE_ADMIN
        and order_document.get("order_creator") != current_user["_id"]
    ):
        return error_response("You do not have access to this order.", 403)

    return jsonify(serialize_orders([order_document], include_creator=True)[0])


@orders_bp.route("/<order_id>/status", methods=["PATCH"])
@jwt_required()
def update_order_status(order_id: str):
    current_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    order_document, load_error = fetch_order(order_id)
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    status = str(payload.get("status") or "").strip().lower()
    if status not in ORDER_STATUSES:
        return field_error(
            "status", f"Status must be one of: {', '.join(ORDER_STATUSES)}"
        )

    mongo.db.orders.update_one(
        {"_id": order_document["_id"]},
        {"$set": {"status": status, "updated_at": utcnow()}},
    )
    updated_order = mongo.db.orders.find_one({"_id": order_document["_id"]})

    record_audit_log(
        current_user,
        "Updated order status",
        {
            "order_id": str(order_document["_id"]),
            "from": order_document.get("status", ORDER_STATUS_PENDING),
            "to": status,
        },
    )

    return jsonify(serialize_orders([updated_order], include_creator=True)[0])
