from datetime import timedelta

from storefront.extensions import mongo
from storefront.helpers import utcnow


def insert_order(app, total, created_at, lines=(), creator=None, status="pending"):
    document = {
        "products": [
            {"product": product_id, "quantity": quantity, "price": price}
            for product_id, quantity, price in lines
        ],
        "order_creator": creator,
        "status": status,
        "total": total,
        "created_at": created_at,
        "updated_at": created_at,
    }
    with app.app_context():
        return mongo.db.orders.insert_one(document).inserted_id


def insert_products(app, *names):
    timestamp = utcnow()
    with app.app_context():
        result = mongo.db.products.insert_many(
            [{"name": name, "stock": 20, "created_at": timestamp} for name in names]
        )
    return result.inserted_ids


class TestDashboard:
    def test_counts_users_and_stock_levels(self, app, client, admin_headers, customer):
        timestamp = utcnow()
        with app.app_context():
            mongo.db.products.insert_many(
                [
                    {"name": "Plenty", "stock": 50, "created_at": timestamp},
                    {"name": "Low", "stock": 3, "created_at": timestamp},
                    {"name": "None", "stock": 0, "created_at": timestamp},
                ]
            )

        response = client.get("/statistics/dashboard", headers=admin_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["users"]["total"] == 2
        assert body["users"]["new_today"] == 2
        assert body["orders"]["total"] == 0
        assert body["revenue"]["total"] == 0.0
        assert body["products"] == {"total": 3, "low_stock": 1, "out_of_stock": 1}
        assert body["top_selling"] == []

    def test_requires_admin(self, client, user_headers):
        assert client.get("/statistics/dashboard", headers=user_headers).status_code == 403


class TestRevenue:
    def test_rejects_unknown_period(self, client, admin_headers):
        response = client.get("/statistics/revenue?period=weekly", headers=admin_headers)
        assert response.status_code == 400

    def test_empty_revenue(self, client, admin_headers):
        response = client.get("/statistics/revenue", headers=admin_headers)
        assert response.get_json() == {"period": "monthly", "revenue": []}


class TestExtendedDashboard:
    def test_empty_store(self, client, admin_headers):
        response = client.get("/statistics/extended-dashboard", headers=admin_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["total_revenue"] == 0.0
        assert body["total_orders"] == 0
        assert body["total_customers"] == 1
        assert body["recent_orders"] == []
        assert len(body["sales_chart"]) == 7
        assert all(day["orders"] == 0 for day in body["sales_chart"])
        assert body["sales_chart"][-1]["date"] == utcnow().strftime("%Y-%m-%d")
        assert body["comparison_stats"]["revenue"]["percentage_change"] == 0.0
        assert body["comparison_stats"]["customers"] == {
            "current": 1,
            "previous": 0,
            "percentage_change": 100.0,
        }


class TestWithOrders:
    def test_top_selling_products_by_quantity(self, app, client, admin_headers):
        product_ids = insert_products(app, "A", "B", "C", "D", "E", "F")
        now = utcnow()
        for position, product_id in enumerate(product_ids):
            insert_order(app, 10.0, now, lines=[(product_id, position + 1, 2.0)])
        insert_order(app, 10.0, now, lines=[(product_ids[0], 10, 2.0)])

        body = client.get("/statistics/dashboard", headers=admin_headers).get_json()

        top_selling = body["top_selling"]
        assert [entry["name"] for entry in top_selling] == ["A", "F", "E", "D", "C"]
        assert top_selling[0]["total_quantity"] == 11
        assert top_selling[0]["total_revenue"] == 22.0
        assert body["orders"]["total"] == 7
        assert body["revenue"]["total"] == 70.0

    def test_daily_revenue_is_grouped_by_day(self, app, client, admin_headers):
        now = utcnow()
        two_days_ago = now - timedelta(days=2)
        insert_order(app, 11.5, two_days_ago)
        insert_order(app, 15.0, now)
        insert_order(app, 8.0, now)
        insert_order(app, 99.0, now - timedelta(days=45))

        response = client.get("/statistics/revenue?period=daily", headers=admin_headers)

        assert response.get_json() == {
            "period": "daily",
            "revenue": [
                {"date": two_days_ago.strftime("%Y-%m-%d"), "revenue": 11.5, "orders": 1},
                {"date": now.strftime("%Y-%m-%d"), "revenue": 23.0, "orders": 2},
            ],
        }

    def test_sales_chart_fills_missing_days(self, app, client, admin_headers):
        now = utcnow()
        insert_order(app, 40.0, now)
        insert_order(app, 12.0, now - timedelta(days=2))
        insert_order(app, 75.0, now - timedelta(days=10))

        body = client.get("/statistics/extended-dashboard", headers=admin_headers).get_json()

        chart = body["sales_chart"]
        assert [day["date"] for day in chart] == [
            (now - timedelta(days=offset)).strftime("%Y-%m-%d") for offset in range(6, -1, -1)
        ]
        assert chart[-1] == {"date": now.strftime("%Y-%m-%d"), "revenue": 40.0, "orders": 1}
        assert chart[-3]["revenue"] == 12.0
        assert [day["orders"] for day in chart[:4]] == [0, 0, 0, 0]
        assert chart[-2] == {
            "date": (now - timedelta(days=1)).strftime("%Y-%m-%d"),
            "revenue": 0.0,
            "orders": 0,
        }

    def test_month_over_month_comparison(self, app, client, admin_headers, customer):
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        last_month = month_start - timedelta(days=1)
        insert_order(app, 150.0, now, creator=customer["_id"])
        insert_order(app, 100.0, last_month)
        insert_order(app, 100.0, last_month)

        body = client.get("/statistics/extended-dashboard", headers=admin_headers).get_json()

        stats = body["comparison_stats"]
        assert body["total_revenue"] == 150.0
        assert stats["revenue"] == {"current": 150.0, "previous": 200.0, "percentage_change": -25.0}
        assert stats["orders"] == {"current": 1, "previous": 2, "percentage_change": -50.0}
        assert body["recent_orders"][0]["customer_name"] == "Customer"
        assert body["recent_orders"][0]["total"] == 150.0
