import io

import flask_pymongo
import mongomock
import pytest

from storefront import create_app
from storefront.auth import issue_access_token
from storefront.extensions import mongo
from storefront.helpers import utcnow
from storefront.security import ROLE_ADMIN, ROLE_USER, hash_password

TEST_PASSWORD = "secret123"


@pytest.fixture
def app(monkeypatch, tmp_path):
    # flask_pymongo builds its client from the name bound in its own module.
    monkeypatch.setattr(flask_pymongo, "MongoClient", mongomock.MongoClient)
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)

    application = create_app(
        {
            "TESTING": True,
            "MONGO_URI": "mongodb://localhost:27017/storefront_test",
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "LOG_DIR": "",
            "RESEND_API_KEY": "",
            "VAT_RATE": 0.15,
        }
    )
    yield application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def create_user(app):
    def _create_user(email, role=ROLE_USER, name="Test User", is_active=True):
        timestamp = utcnow()
        document = {
            "name": name,
            "email": email,
            "password": hash_password(TEST_PASSWORD),
            "role": role,
            "is_active": is_active,
            "cart": [],
            "wishlist": [],
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        with app.app_context():
            document["_id"] = mongo.db.users.insert_one(document).inserted_id
        return document

    return _create_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_document):
        with app.app_context():
            token = issue_access_token(user_document)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def admin_user(create_user):
    return create_user("admin@example.com", role=ROLE_ADMIN, name="Admin")


@pytest.fixture
def customer(create_user):
    return create_user("customer@example.com", name="Customer")


@pytest.fixture
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)


@pytest.fixture
def user_headers(customer, auth_headers):
    return auth_headers(customer)


def image_file(filename="photo.png"):
    return (io.BytesIO(b"\x89PNG\r\n\x1a\nfake-image-bytes"), filename)


@pytest.fixture
def make_category(client, admin_headers):
    def _make_category(name="Electronics", description="Gadgets"):
        response = client.post(
            "/categories",
            data={"name": name, "description": description, "image": image_file()},
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    return _make_category


@pytest.fixture
def make_product(client, admin_headers, make_category):
    def _make_product(category_id=None, **overrides):
        if category_id is None:
            category_id = make_category()["id"]
        data = {
            "name": "Phone",
            "description": "A smart phone",
            "category": category_id,
            "buy_price": "100",
            "sell_price": "150",
            "stock": "5",
        }
        data.update({key: str(value) for key, value in overrides.items()})
        data["main_image"] = image_file("main.jpg")
        response = client.post(
            "/products",
            data=data,
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return _make_product


@pytest.fixture
def upload():
    return image_file
