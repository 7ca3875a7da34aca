import json
import os
import re
from typing import Dict

import click
from apispec import APISpec
from flask import Blueprint, current_app, jsonify, render_template

api_docs_bp = Blueprint("api_docs", __name__)

API_TITLE = "E-commerce API"
API_VERSION = "1.0"
API_DESCRIPTION = "The E-commerce API documentation"
BEARER_SCHEME = "bearerAuth"
DEFAULT_DOCS_OUTPUT = os.path.join("docs", "swagger.json")

# blueprint name -> (tag, description)
API_TAGS = {
    "auth": ("auth", "Authentication endpoints"),
    "users": ("users", "User management endpoints"),
    "products": ("products", "Product management endpoints"),
    "categories": ("categories", "Category management endpoints"),
    "orders": ("orders", "Order management endpoints"),
    "promo_codes": ("promo-codes", "Promo code management endpoints"),
    "promotions": ("promotions", "Promotion management endpoints"),
    "statistics": ("statistics", "Statistics endpoints"),
    "store_config": ("store-config", "Store configuration endpoints"),
    "audit": ("audit-logs", "Audit log endpoints"),
}

DOCUMENTED_METHODS = ("get", "post", "put", "patch", "delete")
rule_argument_regex = re.compile(r"<(?:[^<>:]+:)?([^<>]+)>")


def openapi_path(rule: str) -> str:
    return rule_argument_regex.sub(r"{\1}", rule)


def operation_summary(endpoint: str, view_func) -> str:
    docstring = (view_func.__doc__ or "").strip()
    if docstring:
        return docstring.splitlines()[0]
    return endpoint.rsplit(".", 1)[-1].replace("_", " ").capitalize()


def requires_token(view_func) -> bool:
    # jwt_required() wraps the view with functools.wraps.
    return hasattr(view_func, "__wrapped__")


def build_operation(rule, view_func, tag: str) -> Dict:
    operation: Dict[str, object] = {
        "tags": [tag],
        "summary": operation_summary(rule.endpoint, view_func),
        "operationId": rule.endpoint.replace(".", "_"),
        "responses": {"200": {"description": "Successful response"}},
    }
    parameters = [
        {"name": argument, "in": "path", "required": True, "schema": {"type": "string"}}
        for argument in sorted(rule.arguments)
    ]
    if parameters:
        operation["parameters"] = parameters
    if requires_token(view_func):
        operation["security"] = [{BEARER_SCHEME: []}]
        operation["responses"]["401"] = {"description": "Missing or invalid token"}
    return operation


def build_openapi_spec(app) -> Dict:
    """Describe every blueprint route as an OpenAPI 3 document."""
    spec = APISpec(
        title=API_TITLE,
        version=API_VERSION,
        openapi_version="3.0.3",
        info={"description": API_DESCRIPTION},
    )
    spec.components.security_scheme(
        BEARER_SCHEME, {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
    )
    for tag, description in API_TAGS.values():
        spec.tag({"name": tag, "description": description})

    paths: Dict[str, Dict] = {}
    for rule in sorted(app.url_map.iter_rules(), key=lambda item: item.rule):
        blueprint_name = rule.endpoint.split(".", 1)[0] if "." in rule.endpoint else None
        if blueprint_name not in API_TAGS:
            continue
        view_func = app.view_functions[rule.endpoint]
        tag = API_TAGS[blueprint_name][0]
        operations = paths.setdefault(openapi_path(rule.rule), {})
        for method in sorted(rule.methods or ()):
            method = method.lower()
            if method in DOCUMENTED_METHODS:
                operations[method] = build_operation(rule, view_func, tag)

    for path, operations in paths.items():
        spec.path(path=path, operations=operations)
    return spec.to_dict()


# --- ROUTES ---


@api_docs_bp.route("/api-json", methods=["GET"])
def openapi_document():
    return jsonify(build_openapi_spec(current_app))


@api_docs_bp.route("/api", methods=["GET"])
def swagger_ui():
    return render_template("swagger_ui.html", title=API_TITLE, spec_url="/api-json")


def register_openapi_command(app):
    @app.cli.command("openapi")
    @click.option(
        "--output",
        default=DEFAULT_DOCS_OUTPUT,
        show_default=True,
        help="Where to write the OpenAPI document.",
    )
    def openapi_command(output):
        """Write the OpenAPI document to a JSON file."""
        directory = os.path.dirname(output)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output, "w", encoding="utf-8") as handle:
            json.dump(build_openapi_spec(app), handle, indent=2)
        app.logger.info("Wrote OpenAPI document to %s", output)
        click.echo(f"OpenAPI document written to {output}")
