from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token, jwt_required

from .audit import record_audit_log
from .extensions import mongo
from .helpers import error_response, normalize_email, utcnow
from .security import check_password, get_current_user, get_user_role
from .users import serialize_user

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def issue_access_token(user_document) -> str:
    return create_access_token(
        identity=str(user_document["_id"]),
        additional_claims={
            "email": user_document.get("email", ""),
            "role": get_user_role(user_document),
        },
    )


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password", ""))

    if not email or not password:
        return error_response("Email and password are required.", 400)

    user = mongo.db.users.find_one({"email": email})
    if not user or not check_password(password, user.get("password")):
        return error_response("Invalid credentials", 401)

    if user.get("is_active") is False:
        return error_response("This account has been deactivated.", 403)

    mongo.db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login_at": utcnow()}})

    token = issue_access_token(user)
    record_audit_log(
        user,
        "Signed in",
        {"ip": request.headers.get("X-Forwarded-For", request.remote_addr)},
    )

    return jsonify(
        {
            "access_token": token,
            "user": {
                "id": str(user["_id"]),
                "name": user.get("name", ""),
                "email": user.get("email", ""),
                "role": get_user_role(user),
            },
        }
    )


@auth_bp.route("/me", methods=["GET"])
@jwt_required()
def me():
    user = get_current_user()
    if not user:
        return error_response("User not authenticated", 401)
    return jsonify(serialize_user(user))
