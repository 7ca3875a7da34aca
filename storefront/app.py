import logging
import os
import time
from datetime import timedelta
from logging.handlers import TimedRotatingFileHandler

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .api_docs import api_docs_bp, register_openapi_command
from .audit import audit_bp
from .auth import auth_bp
from .categories import categories_bp
from .extensions import jwt, mongo
from .orders import orders_bp
from .products import products_bp
from .promo_codes import promo_codes_bp
from .promotions import promotions_bp
from .security import register_jwt_handlers
from .seed import register_seed_command
from .statistics import statistics_bp
from .store_config import ensure_store_config, store_config_bp
from .users import users_bp

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_RETENTION_DAYS = 30

BLUEPRINTS = (
    auth_bp,
    users_bp,
    categories_bp,
    products_bp,
    promotions_bp,
    promo_codes_bp,
    orders_bp,
    statistics_bp,
    store_config_bp,
    audit_bp,
    api_docs_bp,
)


def load_config(app: Flask, test_config=None):
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/storefront"
    )
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        hours=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_HOURS", "24"))
    )
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["VAT_RATE"] = float(os.getenv("VAT_RATE", "0.15"))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    app.config["LOG_DIR"] = os.getenv("LOG_DIR", "").strip()
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["ORDER_EMAIL_SENDER"] = os.getenv(
        "ORDER_EMAIL_SENDER", "orders@example.com"
    )
    app.config["DEFAULT_PAGE_SIZE"] = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    app.config["MAX_PAGE_SIZE"] = int(os.getenv("MAX_PAGE_SIZE", "100"))
    app.config["CREATE_INDEXES"] = True

    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)


def configure_logging(app: Flask):
    level = getattr(logging, app.config["LOG_LEVEL"], logging.INFO)
    app.logger.setLevel(level)

    # app.logger is shared by every app built from this module.
    for handler in list(app.logger.handlers):
        if isinstance(handler, TimedRotatingFileHandler):
            app.logger.removeHandler(handler)
            handler.close()

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return

    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    combined_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "combined.log"),
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    combined_handler.setLevel(level)
    combined_handler.setFormatter(formatter)

    error_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "error.log"),
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    app.logger.addHandler(combined_handler)
    app.logger.addHandler(error_handler)


def configure_cors(app: Flask):
    allowed_origins = []
    for variable in ("CORS_ORIGIN", "CORS_ALLOWED_ORIGINS"):
        for origin in os.getenv(variable, "").split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")


def configure_proxy(app: Flask):
    # Honor proxy headers so generated upload URLs keep the public origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )


def register_request_logging(app: Flask):
    @app.before_request
    def start_timer():
        g.request_started_at = time.perf_counter()

    @app.after_request
    def log_request(response):
        started_at = g.get("request_started_at")
        duration_ms = (time.perf_counter() - started_at) * 1000 if started_at else 0.0
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        app.logger.log(
            level,
            "%s %s %s %.1fms",
            request.method,
            request.path,
            response.status_code,
            duration_ms,
        )
        return response


def format_upload_limit(size_bytes: int) -> str:
    megabytes = size_bytes / (1024 * 1024)
    if megabytes >= 1:
        return f"{round(megabytes, 1):g}MB"
    return f"{round(size_bytes / 1024, 1):g}KB"


def register_error_handlers(app: Flask):
    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        if exc.code is None or exc.code < 400:
            return exc
        message = exc.description or exc.name
        if exc.code == 413:
            limit = format_upload_limit(app.config["MAX_CONTENT_LENGTH"])
            message = f"Uploaded payload exceeds the {limit} limit."
        return jsonify({"message": message}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_exception(exc: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error"}), 500


def ensure_indexes(app: Flask):
    db = mongo.db
    try:
        db.users.create_index("email", unique=True)
        db.promo_codes.create_index("code", unique=True)
        db.products.create_index("category")
        db.products.create_index([("created_at", -1)])
        db.orders.create_index("order_creator")
        db.orders.create_index([("created_at", -1)])
        db.audit_logs.create_index([("created_at", -1)])
    except Exception as exc:
        app.logger.warning("Unable to ensure database indexes: %s", exc)


def create_app(test_config=None) -> Flask:
    """Create and configure the Flask application."""
    load_dotenv()
    app = Flask(__name__)

    load_config(app, test_config)
    configure_logging(app)
    configure_proxy(app)
    configure_cors(app)

    mongo.init_app(app)
    jwt.init_app(app)
    register_jwt_handlers(jwt)

    register_request_logging(app)
    register_error_handlers(app)

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    register_seed_command(app)
    register_openapi_command(app)

    with app.app_context():
        if app.config["CREATE_INDEXES"]:
            ensure_indexes(app)
        try:
            ensure_store_config()
        except Exception as exc:
            app.logger.warning("Failed to initialize store config: %s", exc)

    return app


if __name__ == "__main__":
    application = create_app()
    port = int(os.environ.get("PORT", 5000))
    application.run(host="0.0.0.0", port=port)
