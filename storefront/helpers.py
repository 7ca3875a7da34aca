import math
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app, jsonify, request

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
url_regex = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes, so store them the same way.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def is_valid_url(value: Optional[str]) -> bool:
    return bool(value and url_regex.match(str(value).strip()))


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def parse_int(value, default: Optional[int] = None) -> Optional[int]:
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(numeric) or numeric != int(numeric):
        return default
    return int(numeric)


def parse_bool(value, default: Optional[bool] = None) -> Optional[bool]:
    """Coerce JSON booleans and multipart form strings to a bool."""
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return default


def round_money(value: float) -> float:
    return round(float(value or 0), 2)


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def isoformat(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()
    return None


def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    candidate = str(value).strip()
    if not candidate:
        return None
    normalized = candidate.replace("Z", "+00:00")
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        normalized = f"{candidate}T00:00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        return parsed + timedelta(days=1)
    return parsed


def get_request_payload() -> Dict:
    """Read the body of a JSON or multipart/form-data request."""
    if request.form:
        return request.form.to_dict()
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def error_response(message: str, status: int = 400, errors: Optional[Dict] = None):
    body: Dict[str, object] = {"message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def field_error(field: str, message: str, status: int = 400):
    return error_response(message, status, {field: [message]})


def invalid_identifier(label: str):
    return error_response(f"Invalid {label} identifier.", 400)


def fetch_document(collection, document_id, label: str):
    """Load a document by id, returning ``(document, error_response)``."""
    object_id = normalize_object_id_value(document_id)
    if object_id is None:
        return None, invalid_identifier(label.lower())

    document = collection.find_one({"_id": object_id})
    if not document:
        return None, error_response(f"{label} not found", 404)

    return document, None


# --- Pagination ---


def get_pagination_args() -> Tuple[int, int, str]:
    default_limit = current_app.config["DEFAULT_PAGE_SIZE"]
    max_limit = current_app.config["MAX_PAGE_SIZE"]

    page = parse_int(request.args.get("page"), 1) or 1
    page = max(page, 1)
    limit = parse_int(request.args.get("limit"), default_limit) or default_limit
    limit = min(max(limit, 1), max_limit)
    search = (request.args.get("search") or "").strip()
    return page, limit, search


def search_regex(search_term: str):
    return re.compile(re.escape(search_term), re.IGNORECASE)


def paginate(collection, query: Dict, page: int, limit: int, sort=None):
    cursor = collection.find(query)
    if sort:
        cursor = cursor.sort(sort)
    documents = list(cursor.skip((page - 1) * limit).limit(limit))
    total = collection.count_documents(query)
    return documents, total


def build_pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
