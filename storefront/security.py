from typing import Optional

import bcrypt
from flask import current_app, jsonify
from flask_jwt_extended import get_jwt_identity

from .extensions import mongo
from .helpers import normalize_object_id_value

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ALLOWED_USER_ROLES = {ROLE_ADMIN, ROLE_USER}


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, stored_hash) -> bool:
    if not password or not stored_hash:
        return False
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), bytes(stored_hash))
    except ValueError:
        return False


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALLOWED_USER_ROLES else ROLE_USER


def get_user_role(user_document) -> str:
    if not user_document:
        return ROLE_USER
    return normalize_role(user_document.get("role", ROLE_USER))


def get_current_user():
    user_id = normalize_object_id_value(get_jwt_identity())
    if user_id is None:
        return None
    return mongo.db.users.find_one({"_id": user_id})


def require_role(*roles: str):
    """Resolve the signed-in user and check it holds one of ``roles``.

    Returns ``(user, None)`` on success and ``(None, error_response)``
    otherwise. Admins pass every check; an empty ``roles`` only requires
    an active account.
    """
    allowed = {normalize_role(role) for role in roles if role}

    current_user = get_current_user()
    if not current_user:
        return None, (jsonify({"message": "User not authenticated"}), 401)

    if current_user.get("is_active") is False:
        return None, (jsonify({"message": "This account has been deactivated."}), 403)

    user_role = get_user_role(current_user)
    if user_role == ROLE_ADMIN or not allowed or user_role in allowed:
        return current_user, None

    return (
        None,
        (
            jsonify({"message": "You need additional permissions to perform this action."}),
            403,
        ),
    )


def require_admin_user():
    return require_role(ROLE_ADMIN)


def require_active_user():
    return require_role()


def register_jwt_handlers(jwt_manager):
    @jwt_manager.unauthorized_loader
    def missing_token(reason):
        return jsonify({"message": "User not authenticated"}), 401

    @jwt_manager.invalid_token_loader
    def invalid_token(reason):
        current_app.logger.warning("Rejected invalid token: %s", reason)
        return jsonify({"message": "Invalid or expired token"}), 401

    @jwt_manager.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Invalid or expired token"}), 401
