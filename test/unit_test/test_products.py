import os

from bson import ObjectId

from storefront.extensions import mongo


def product_form(category_id, **overrides):
    data = {
        "name": "Laptop",
        "description": "Portable computer",
        "category": category_id,
        "buy_price": "500",
        "sell_price": "800",
    }
    data.update(overrides)
    return data


class TestCreateProduct:
    def test_create_with_defaults(self, make_product):
        product = make_product()

        assert product["name"] == "Phone"
        assert product["category"]["name"] == "Electronics"
        assert product["is_on_stock"] is True
        assert product["is_on_flash"] is False
        assert product["is_featured"] is False
        assert product["stock"] == 5
        assert product["price"] == 150.0
        assert "/uploads/products/" in product["main_image"]

    def test_gallery_images(self, client, admin_headers, make_category, upload):
        category = make_category()
        data = product_form(category["id"])
        data["main_image"] = upload("main.png")
        data["images"] = [upload("a.jpg"), upload("b.jpeg")]

        response = client.post(
            "/products", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert response.status_code == 201
        assert len(response.get_json()["data"]["images"]) == 2

    def test_rejected_gallery_image_removes_saved_files(
        self, app, client, admin_headers, make_category, upload
    ):
        category = make_category()
        products_folder = os.path.join(app.config["UPLOAD_FOLDER"], "products")
        data = product_form(category["id"])
        data["main_image"] = upload("main.png")
        data["images"] = [upload("a.jpg"), upload("b.gif")]

        response = client.post(
            "/products", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert response.status_code == 400
        assert "images" in response.get_json()["errors"]
        assert os.listdir(products_folder) == []
        with app.app_context():
            assert mongo.db.products.count_documents({}) == 0

    def test_main_image_required(self, client, admin_headers, make_category):
        category = make_category()
        response = client.post(
            "/products",
            data=product_form(category["id"]),
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert "main_image" in response.get_json()["errors"]

    def test_sell_price_must_exceed_buy_price(self, client, admin_headers, make_category, upload):
        category = make_category()
        data = product_form(category["id"], sell_price="400")
        data["main_image"] = upload()

        response = client.post(
            "/products", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert response.status_code == 400
        assert response.get_json()["errors"]["sell_price"] == [
            "Selling price must be greater than buying price"
        ]

    def test_flash_sale_needs_flash_price(self, client, admin_headers, make_category, upload):
        category = make_category()
        data = product_form(category["id"], is_on_flash="true")
        data["main_image"] = upload()

        response = client.post(
            "/products", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert response.status_code == 400
        assert "flash_price" in response.get_json()["errors"]

    def test_unknown_category(self, client, admin_headers, upload):
        data = product_form(str(ObjectId()))
        data["main_image"] = upload()
        response = client.post(
            "/products", data=data, headers=admin_headers, content_type="multipart/form-data"
        )
        assert response.status_code == 400
        assert response.get_json()["errors"]["category"] == ["Category not found"]

    def test_flash_price_is_the_effective_price(self, make_product):
        product = make_product(is_on_flash="yes", flash_price="120")
        assert product["price"] == 120.0


class TestListings:
    def test_search_matches_description(self, client, make_product):
        category_id = make_product(name="Phone", description="Has a camera")["category"]["id"]
        make_product(category_id=category_id, name="Desk", description="Wooden")

        response = client.get("/products/search?search=camera")

        assert [product["name"] for product in response.get_json()["products"]] == ["Phone"]

    def test_list_searches_name_only(self, client, make_product):
        make_product(name="Phone", description="Desk companion")
        response = client.get("/products?search=desk")
        assert response.get_json()["products"] == []

    def test_featured_and_flash(self, client, make_product):
        category_id = make_product(is_featured="true")["category"]["id"]
        make_product(category_id=category_id, name="Deal", is_on_flash="1", flash_price="99")

        featured = client.get("/products/featured").get_json()["products"]
        flash = client.get("/products/flash").get_json()["products"]

        assert [product["name"] for product in featured] == ["Phone"]
        assert [product["name"] for product in flash] == ["Deal"]

    def test_by_category(self, client, make_product, make_category):
        product = make_product()
        other = make_category("Garden")

        listed = client.get(f"/products/category/{product['category']['id']}").get_json()
        empty = client.get(f"/products/category/{other['id']}").get_json()

        assert listed["pagination"]["total"] == 1
        assert empty["products"] == []
        assert client.get("/products/category/bad-id").status_code == 400

    def test_latest_skips_out_of_stock(self, client, make_product):
        category_id = make_product(name="Old")["category"]["id"]
        make_product(category_id=category_id, name="Gone", is_on_stock="false")

        latest = client.get("/products/latest?limit=5").get_json()["products"]

        assert [product["name"] for product in latest] == ["Old"]

    def test_recommended_for_anonymous_is_featured(self, client, make_product):
        category_id = make_product(name="Star", is_featured="true")["category"]["id"]
        make_product(category_id=category_id, name="Plain")

        recommended = client.get("/products/recommended").get_json()["products"]

        assert [product["name"] for product in recommended] == ["Star"]

    def test_recommended_for_user_mixes_latest(self, client, user_headers, make_product):
        category_id = make_product(name="Star", is_featured="true")["category"]["id"]
        make_product(category_id=category_id, name="Plain")

        recommended = client.get("/products/recommended?limit=4", headers=user_headers)
        names = [product["name"] for product in recommended.get_json()["products"]]

        assert sorted(names) == ["Plain", "Star"]

    def test_get_product_populates_category(self, client, make_product):
        product = make_product()
        response = client.get(f"/products/{product['id']}")
        assert response.get_json()["category"]["name"] == "Electronics"


class TestUpdateProduct:
    def test_partial_update_revalidates_against_stored_prices(
        self, client, admin_headers, make_product
    ):
        product = make_product()

        response = client.patch(
            f"/products/{product['id']}", json={"sell_price": 90}, headers=admin_headers
        )

        assert response.status_code == 400
        assert "sell_price" in response.get_json()["errors"]

    def test_enable_flash_sale(self, client, admin_headers, make_product):
        product = make_product()

        response = client.patch(
            f"/products/{product['id']}",
            json={"is_on_flash": True, "flash_price": 130},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Product updated successfully"
        assert body["data"]["price"] == 130.0

    def test_negative_stock(self, client, admin_headers, make_product):
        product = make_product()
        response = client.patch(
            f"/products/{product['id']}", json={"stock": -1}, headers=admin_headers
        )
        assert response.status_code == 400


class TestDeleteProduct:
    def test_delete(self, app, client, admin_headers, make_product):
        product = make_product()

        response = client.delete(f"/products/{product['id']}", headers=admin_headers)

        assert response.status_code == 200
        with app.app_context():
            assert mongo.db.products.count_documents({}) == 0

    def test_delete_requires_admin(self, client, user_headers, make_product):
        product = make_product()
        response = client.delete(f"/products/{product['id']}", headers=user_headers)
        assert response.status_code == 403
