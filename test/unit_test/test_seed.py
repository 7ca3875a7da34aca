import random

from storefront.extensions import mongo
from storefront.seed import PRODUCTS_PER_CATEGORY, seed_database


class TestSeedDatabase:
    def test_seed_replaces_existing_data(self, app, customer):
        with app.app_context():
            summary = seed_database(rng=random.Random(7))

            assert summary == {
                "users": 2,
                "categories": 5,
                "products": 5 * PRODUCTS_PER_CATEGORY,
                "promo_codes": 2,
                "promotions": 10,
            }
            assert mongo.db.users.find_one({"email": "customer@example.com"}) is None
            assert mongo.db.users.find_one({"email": "admin@example.com"})["role"] == "admin"

            for product in mongo.db.products.find():
                assert product["sell_price"] > product["buy_price"]
                if product["is_on_flash"]:
                    assert product["flash_price"] < product["sell_price"]

    def test_seeded_admin_can_sign_in(self, app, client):
        with app.app_context():
            seed_database(password="seeded-pass", rng=random.Random(1))

        response = client.post(
            "/auth/login", json={"email": "admin@example.com", "password": "seeded-pass"}
        )
        assert response.status_code == 200
        assert response.get_json()["user"]["role"] == "admin"

    def test_cli_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed", "--password", "cli-pass"])

        assert result.exit_code == 0
        assert "Database seeded successfully!" in result.output
