from datetime import timedelta
from typing import Dict, List, Optional

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .extensions import mongo
from .helpers import error_response, isoformat, round_money, utcnow
from .security import require_admin_user

statistics_bp = Blueprint("statistics", __name__, url_prefix="/statistics")

LOW_STOCK_THRESHOLD = 10
TOP_SELLING_LIMIT = 5
RECENT_ORDERS_LIMIT = 5
SALES_CHART_DAYS = 7

# period -> (lookback, $dateToString format)
REVENUE_PERIODS = {
    "daily": (timedelta(days=30), "%Y-%m-%d"),
    "monthly": (timedelta(days=12 * 30), "%Y-%m"),
    "yearly": (timedelta(days=5 * 365), "%Y"),
}

LOW_STOCK_QUERY = {"stock": {"$gt": 0, "$lt": LOW_STOCK_THRESHOLD}}


def start_of_day(moment):
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment):
    return start_of_day(moment).replace(day=1)


def created_between(start, end=None) -> Dict:
    window: Dict[str, object] = {"$gte": start}
    if end is not None:
        window["$lt"] = end
    return {"created_at": window}


def sum_revenue(match: Optional[Dict] = None) -> float:
    pipeline: List[Dict] = []
    if match:
        pipeline.append({"$match": match})
    pipeline.append({"$group": {"_id": None, "total": {"$sum": "$total"}}})
    result = list(mongo.db.orders.aggregate(pipeline))
    if not result:
        return 0.0
    return round_money(result[0].get("total"))


def percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def comparison(current: float, previous: float) -> Dict:
    return {
        "current": current,
        "previous": previous,
        "percentage_change": percentage_change(current, previous),
    }


def top_selling_products() -> List[Dict]:
    pipeline = [
        {"$unwind": "$products"},
        {
            "$group": {
                "_id": "$products.product",
                "total_quantity": {"$sum": "$products.quantity"},
                "total_revenue": {
                    "$sum": {"$multiply": ["$products.price", "$products.quantity"]}
                },
            }
        },
        {"$sort": {"total_quantity": -1}},
        {"$limit": TOP_SELLING_LIMIT},
        {
            "$lookup": {
                "from": "products",
                "localField": "_id",
                "foreignField": "_id",
                "as": "product_info",
            }
        },
        {"$unwind": "$product_info"},
    ]
    return [
        {
            "id": str(entry["_id"]),
            "name": entry["product_info"].get("name", ""),
            "total_quantity": int(entry.get("total_quantity") or 0),
            "total_revenue": round_money(entry.get("total_revenue")),
        }
        for entry in mongo.db.orders.aggregate(pipeline)
    ]


def revenue_by_date(start, date_format: str) -> List[Dict]:
    pipeline = [
        {"$match": {"created_at": {"$gte": start}}},
        {
            "$group": {
                "_id": {"$dateToString": {"format": date_format, "date": "$created_at"}},
                "revenue": {"$sum": "$total"},
                "orders": {"$sum": 1},
            }
        },
        {"$sort": {"_id": 1}},
    ]
    return [
        {
            "date": entry["_id"],
            "revenue": round_money(entry.get("revenue")),
            "orders": int(entry.get("orders") or 0),
        }
        for entry in mongo.db.orders.aggregate(pipeline)
    ]


def build_sales_chart(now) -> List[Dict]:
    first_day = start_of_day(now) - timedelta(days=SALES_CHART_DAYS - 1)
    recorded = {entry["date"]: entry for entry in revenue_by_date(first_day, "%Y-%m-%d")}

    chart = []
    for offset in range(SALES_CHART_DAYS):
        day = (first_day + timedelta(days=offset)).strftime("%Y-%m-%d")
        chart.append(recorded.get(day) or {"date": day, "revenue": 0.0, "orders": 0})
    return chart


def recent_orders() -> List[Dict]:
    order_documents = list(
        mongo.db.orders.find().sort("created_at", -1).limit(RECENT_ORDERS_LIMIT)
    )
    creator_ids = list({document.get("order_creator") for document in order_documents})
    creator_names = {
        document["_id"]: document.get("name", "")
        for document in mongo.db.users.find({"_id": {"$in": creator_ids}})
    }
    return [
        {
            "id": str(document["_id"]),
            "customer_name": creator_names.get(document.get("order_creator")) or "Unknown",
            "total": round_money(document.get("total")),
            "status": document.get("status"),
            "created_at": isoformat(document.get("created_at")),
        }
        for document in order_documents
    ]


# --- ROUTES ---


@statistics_bp.route("/dashboard", methods=["GET"])
@jwt_required()
def dashboard():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    now = utcnow()
    today = created_between(start_of_day(now))
    this_month = created_between(start_of_month(now))

    return jsonify(
        {
            "users": {
                "total": mongo.db.users.count_documents({}),
                "new_today": mongo.db.users.count_documents(today),
                "new_this_month": mongo.db.users.count_documents(this_month),
            },
            "orders": {
                "total": mongo.db.orders.count_documents({}),
                "today": mongo.db.orders.count_documents(today),
                "this_month": mongo.db.orders.count_documents(this_month),
            },
            "revenue": {
                "total": sum_revenue(),
                "today": sum_revenue(today),
                "this_month": sum_revenue(this_month),
            },
            "products": {
                "total": mongo.db.products.count_documents({}),
                "low_stock": mongo.db.products.count_documents(LOW_STOCK_QUERY),
                "out_of_stock": mongo.db.products.count_documents({"stock": 0}),
            },
            "top_selling": top_selling_products(),
        }
    )


@statistics_bp.route("/revenue", methods=["GET"])
@jwt_required()
def revenue():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    period = (request.args.get("period") or "monthly").strip().lower()
    if period not in REVENUE_PERIODS:
        return error_response("Period must be one of: daily, monthly, yearly", 400)

    lookback, date_format = REVENUE_PERIODS[period]
    return jsonify(
        {
            "period": period,
            "revenue": revenue_by_date(utcnow() - lookback, date_format),
        }
    )


@statistics_bp.route("/extended-dashboard", methods=["GET"])
@jwt_required()
def extended_dashboard():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    now = utcnow()
    current_month = start_of_month(now)
    previous_month = start_of_month(current_month - timedelta(days=1))
    current_window = created_between(current_month)
    previous_window = created_between(previous_month, current_month)

    current_revenue = sum_revenue(current_window)
    previous_revenue = sum_revenue(previous_window)
    current_orders = mongo.db.orders.count_documents(current_window)
    previous_orders = mongo.db.orders.count_documents(previous_window)
    current_customers = mongo.db.users.count_documents(current_window)
    previous_customers = mongo.db.users.count_documents(previous_window)

    return jsonify(
        {
            "total_revenue": current_revenue,
            "total_orders": current_orders,
            "total_customers": mongo.db.users.count_documents({}),
            "low_stock_count": mongo.db.products.count_documents(LOW_STOCK_QUERY),
            "recent_orders": recent_orders(),
            "sales_chart": build_sales_chart(now),
            "comparison_stats": {
                "revenue": comparison(current_revenue, previous_revenue),
                "orders": comparison(current_orders, previous_orders),
                "customers": comparison(current_customers, previous_customers),
            },
        }
    )
