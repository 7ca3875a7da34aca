from datetime import timedelta

import pytest
import resend
from bson import ObjectId

from storefront.extensions import mongo
from storefront.helpers import utcnow

SHIPPING = {
    "full_name": "Jane Doe",
    "phone": "+1 555 123 4567",
    "address": "1 Main Street",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
}


def order_payload(product_id, quantity=2, **overrides):
    payload = {
        "products": [{"product": product_id, "quantity": quantity}],
        "shipping_details": dict(SHIPPING),
        "payment_details": {"payment_method": "cash"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def product(make_product):
    return make_product()


class TestCreateOrder:
    def test_cash_order_totals(self, client, user_headers, product):
        response = client.post("/orders", json=order_payload(product["id"]), headers=user_headers)

        assert response.status_code == 201
        body = response.get_json()
        order = body["data"]
        assert body["email_sent"] is False
        assert order["status"] == "pending"
        assert order["subtotal"] == 300.0
        assert order["promo_discount"] == 0.0
        assert order["vat"] == 45.0
        assert order["total"] == 345.0
        assert order["products"][0]["price"] == 150.0
        assert order["products"][0]["product"]["name"] == "Phone"

    def test_promo_code_and_card_payment(self, app, client, admin_headers, user_headers, product):
        client.post(
            "/promo-codes",
            json={
                "code": "WELCOME10",
                "percentage": 10,
                "expiry_date": (utcnow() + timedelta(days=1)).isoformat(),
            },
            headers=admin_headers,
        )
        payload = order_payload(
            product["id"],
            promo_code="WELCOME10",
            payment_details={
                "payment_method": "card",
                "card_number": "4111111111111234",
                "expiry_date": "12/30",
                "cvv": "123",
            },
        )

        response = client.post("/orders", json=payload, headers=user_headers)

        assert response.status_code == 201
        order = response.get_json()["data"]
        assert order["promo_discount"] == 30.0
        assert order["vat"] == 40.5
        assert order["total"] == 310.5
        assert order["promo_code"] == "WELCOME10"
        assert order["payment_details"] == {
            "payment_method": "card",
            "card_number": "****1234",
            "expiry_date": "12/30",
        }
        with app.app_context():
            stored = mongo.db.orders.find_one({"_id": ObjectId(order["id"])})
        assert "cvv" not in stored["payment_details"]

    def test_flash_price_is_charged(self, client, user_headers, make_product):
        flash = make_product(is_on_flash="true", flash_price="100")
        response = client.post(
            "/orders", json=order_payload(flash["id"], quantity=1), headers=user_headers
        )
        assert response.get_json()["data"]["subtotal"] == 100.0

    def test_card_details_required(self, client, user_headers, product):
        payload = order_payload(product["id"], payment_details={"payment_method": "card"})
        response = client.post("/orders", json=payload, headers=user_headers)
        assert response.status_code == 400
        assert response.get_json()["message"] == "Card details are required for card payment"

    def test_invalid_promo_code(self, client, user_headers, product):
        payload = order_payload(product["id"], promo_code="NOPE")
        response = client.post("/orders", json=payload, headers=user_headers)
        assert response.status_code == 404

    def test_out_of_stock_product(self, client, user_headers, make_product):
        sold_out = make_product(name="Rare", is_on_stock="false")
        response = client.post("/orders", json=order_payload(sold_out["id"]), headers=user_headers)
        assert response.status_code == 400
        assert response.get_json()["message"] == "Product Rare is out of stock"

    def test_missing_product(self, client, user_headers):
        response = client.post("/orders", json=order_payload(str(ObjectId())), headers=user_headers)
        assert response.status_code == 404

    def test_empty_order_and_bad_shipping(self, client, user_headers):
        payload = order_payload(None)
        payload["products"] = []
        payload["shipping_details"] = {"full_name": "J", "phone": "abc"}

        response = client.post("/orders", json=payload, headers=user_headers)

        assert response.status_code == 400
        errors = response.get_json()["errors"]
        assert "products" in errors
        assert "shipping_details.full_name" in errors
        assert "shipping_details.phone" in errors

    def test_payment_method_checked_before_product_lookup(self, client, user_headers):
        payload = order_payload(str(ObjectId()), payment_details={"payment_method": "bitcoin"})

        response = client.post("/orders", json=payload, headers=user_headers)

        assert response.status_code == 400
        errors = response.get_json()["errors"]
        assert errors["payment_details.payment_method"] == [
            "Payment method must be 'cash' or 'card'"
        ]

    def test_payment_details_required(self, client, user_headers, product):
        payload = order_payload(product["id"])
        del payload["payment_details"]

        response = client.post("/orders", json=payload, headers=user_headers)

        assert response.status_code == 400
        assert "payment_details" in response.get_json()["errors"]

    def test_order_clears_cart(self, client, user_headers, product):
        client.post(
            "/users/cart", json={"product_id": product["id"], "quantity": 2}, headers=user_headers
        )
        client.post("/orders", json=order_payload(product["id"]), headers=user_headers)
        assert client.get("/users/cart", headers=user_headers).get_json()["cart"] == []


class TestOrderEmail:
    def test_confirmation_email_sent_when_configured(
        self, app, client, user_headers, product, monkeypatch
    ):
        sent = []
        app.config["RESEND_API_KEY"] = "re_test_key"
        monkeypatch.setattr(resend.Emails, "send", lambda params: sent.append(params) or {"id": "1"})

        response = client.post("/orders", json=order_payload(product["id"]), headers=user_headers)

        assert response.get_json()["email_sent"] is True
        assert sent[0]["to"] == ["customer@example.com"]
        assert "Phone" in sent[0]["text"]

    def test_email_failure_does_not_fail_order(
        self, app, client, user_headers, product, monkeypatch
    ):
        def broken_send(params):
            raise RuntimeError("smtp down")

        app.config["RESEND_API_KEY"] = "re_test_key"
        monkeypatch.setattr(resend.Emails, "send", broken_send)

        response = client.post("/orders", json=order_payload(product["id"]), headers=user_headers)

        assert response.status_code == 201
        assert response.get_json()["email_sent"] is False


class TestReadOrders:
    def test_my_orders_only_lists_own(self, client, user_headers, admin_headers, product):
        client.post("/orders", json=order_payload(product["id"]), headers=user_headers)
        client.post("/orders", json=order_payload(product["id"]), headers=admin_headers)

        mine = client.get("/orders/my-orders", headers=user_headers).get_json()
        everything = client.get("/orders", headers=admin_headers).get_json()

        assert mine["pagination"]["total"] == 1
        assert everything["pagination"]["total"] == 2
        assert everything["orders"][0]["order_creator"]["email"] in {
            "customer@example.com",
            "admin@example.com",
        }

    def test_admin_list_requires_admin(self, client, user_headers):
        assert client.get("/orders", headers=user_headers).status_code == 403

    def test_other_users_cannot_read_order(
        self, client, user_headers, create_user, auth_headers, product
    ):
        order = client.post(
            "/orders", json=order_payload(product["id"]), headers=user_headers
        ).get_json()["data"]
        stranger = auth_headers(create_user("stranger@example.com"))

        assert client.get(f"/orders/{order['id']}", headers=user_headers).status_code == 200
        assert client.get(f"/orders/{order['id']}", headers=stranger).status_code == 403


class TestOrderStatus:
    def test_admin_updates_status(self, client, user_headers, admin_headers, product):
        order = client.post(
            "/orders", json=order_payload(product["id"]), headers=user_headers
        ).get_json()["data"]

        response = client.patch(
            f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.get_json()["status"] == "shipped"

    def test_unknown_status(self, client, user_headers, admin_headers, product):
        order = client.post(
            "/orders", json=order_payload(product["id"]), headers=user_headers
        ).get_json()["data"]
        response = client.patch(
            f"/orders/{order['id']}/status", json={"status": "lost"}, headers=admin_headers
        )
        assert response.status_code == 400

    def test_users_cannot_update_status(self, client, user_headers, product):
        order = client.post(
            "/orders", json=order_payload(product["id"]), headers=user_headers
        ).get_json()["data"]
        response = client.patch(
            f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=user_headers
        )
        assert response.status_code == 403
