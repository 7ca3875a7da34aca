from flask_jwt_extended import decode_token

from storefront.extensions import mongo

PASSWORD = "secret123"


class TestLogin:
    def test_login_returns_token_and_profile(self, app, client, customer):
        response = client.post(
            "/auth/login", json={"email": "Customer@Example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["user"] == {
            "id": str(customer["_id"]),
            "name": "Customer",
            "email": "customer@example.com",
            "role": "user",
        }
        with app.app_context():
            claims = decode_token(body["access_token"])
        assert claims["sub"] == str(customer["_id"])
        assert claims["role"] == "user"
        assert claims["email"] == "customer@example.com"

    def test_wrong_password_is_rejected(self, client, customer):
        response = client.post(
            "/auth/login", json={"email": "customer@example.com", "password": "wrong-pass"}
        )
        assert response.status_code == 401
        assert response.get_json()["message"] == "Invalid credentials"

    def test_unknown_email_is_rejected(self, client):
        response = client.post(
            "/auth/login", json={"email": "ghost@example.com", "password": PASSWORD}
        )
        assert response.status_code == 401

    def test_missing_fields(self, client):
        response = client.post("/auth/login", json={"email": "customer@example.com"})
        assert response.status_code == 400

    def test_inactive_account_cannot_sign_in(self, client, create_user):
        create_user("sleepy@example.com", is_active=False)
        response = client.post(
            "/auth/login", json={"email": "sleepy@example.com", "password": PASSWORD}
        )
        assert response.status_code == 403

    def test_login_is_audited(self, app, client, customer):
        client.post("/auth/login", json={"email": "customer@example.com", "password": PASSWORD})
        with app.app_context():
            log = mongo.db.audit_logs.find_one({"action": "Signed in"})
        assert log["user_email"] == "customer@example.com"


class TestMe:
    def test_me_returns_current_user_without_password(self, client, customer, user_headers):
        response = client.get("/auth/me", headers=user_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["email"] == "customer@example.com"
        assert "password" not in body

    def test_me_requires_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.get_json()["message"] == "User not authenticated"

    def test_me_with_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_me_after_user_deleted(self, app, client, customer, user_headers):
        with app.app_context():
            mongo.db.users.delete_one({"_id": customer["_id"]})
        response = client.get("/auth/me", headers=user_headers)
        assert response.status_code == 401
