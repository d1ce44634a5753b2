import pytest
from fastapi.testclient import TestClient

from storefront.catalog import UnavailableCatalogService
from storefront.main import build_storefront, create_app
from storefront.payment_gateway import SimulatedGateway
from storefront.visitors import Storefront

from tests.doubles import SUPPORT_EMAIL, FailingOrderCatalog

VISITOR = "visitor123"
BUYER = {"name": "Ada Lovelace", "email": "ada@example.com", "phone": "555-0100"}


def checkout_ready(client, *product_ids):
    for product_id in product_ids:
        assert client.post(f"/cart/{VISITOR}/items", json={"product_id": product_id}).status_code == 201
    assert client.post(f"/checkout/{VISITOR}").status_code == 200


def submitted(client, *product_ids):
    checkout_ready(client, *product_ids)
    response = client.post(f"/checkout/{VISITOR}/submit", json=BUYER)
    assert response.status_code == 200
    return response.json()


class TestBrowsing:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["catalog_backend"] == "fixture"
        assert body["payment_gateway"] == "hosted"

    def test_categories(self, client):
        categories = {entry["id"]: entry for entry in client.get("/categories").json()}

        assert set(categories) == {"html-css-js", "python", "opensource"}
        assert categories["python"]["subcategories"][0] == "All"

    def test_products_filtered_by_category(self, client):
        products = client.get("/products", params={"category": "opensource", "subcategory": "All"}).json()

        assert {product["id"] for product in products} == {"p-landing", "p-renamer"}
        assert all(product["is_opensource"] for product in products)

    def test_product_details(self, client):
        response = client.get("/products/p-todo")

        assert response.status_code == 200
        assert response.json()["name"] == "Todo Web App"
        assert client.get("/products/p-404").status_code == 404


class TestCart:
    def test_add_items_and_totals(self, client):
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-portfolio"})
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-todo"})
        response = client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-todo"})

        assert response.status_code == 201
        cart = response.json()
        assert cart["total_amount"] == "49.99"
        assert cart["item_count"] == 3
        assert [(item["product_id"], item["quantity"]) for item in cart["items"]] == [("p-portfolio", 1), ("p-todo", 2)]
        assert cart["items"][1]["item_total"] == "20.00"
        assert cart["degraded"] is False

    def test_cart_survives_between_requests(self, client):
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-snake"})

        cart = client.get(f"/cart/{VISITOR}").json()

        assert cart["items"][0]["product_id"] == "p-snake"
        assert client.get("/cart/someone-else").json()["items"] == []

    def test_unknown_product_rejected(self, client):
        response = client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-404"})

        assert response.status_code == 404
        assert client.get(f"/cart/{VISITOR}").json()["items"] == []

    def test_free_product_cannot_be_added(self, client):
        response = client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-landing"})
        assert response.status_code == 400

    def test_update_quantity_and_remove(self, client):
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-portfolio"})
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-todo"})

        cart = client.put(f"/cart/{VISITOR}/items/p-todo", json={"quantity": 3}).json()
        assert cart["total_amount"] == "59.99"

        cart = client.put(f"/cart/{VISITOR}/items/p-todo", json={"quantity": 0}).json()
        assert [item["product_id"] for item in cart["items"]] == ["p-portfolio"]

        assert client.put(f"/cart/{VISITOR}/items/p-portfolio", json={"quantity": -1}).status_code == 400

        cart = client.delete(f"/cart/{VISITOR}/items/p-portfolio").json()
        assert cart["items"] == []
        assert client.delete(f"/cart/{VISITOR}/items/p-portfolio").status_code == 200

    def test_buy_now_replaces_cart(self, client):
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-portfolio"})
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-todo"})

        cart = client.post(f"/cart/{VISITOR}/buy-now", json={"product_id": "p-scraper"}).json()

        assert [(item["product_id"], item["quantity"]) for item in cart["items"]] == [("p-scraper", 1)]
        assert cart["total_amount"] == "19.99"

    def test_clear_cart(self, client):
        client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-portfolio"})

        cart = client.delete(f"/cart/{VISITOR}").json()

        assert cart["items"] == []
        assert cart["total_amount"] == "0.00"


class TestCheckout:
    def test_empty_cart_cannot_enter_checkout(self, client):
        response = client.post(f"/checkout/{VISITOR}")

        assert response.status_code == 400
        assert client.get(f"/checkout/{VISITOR}").json()["state"] == "idle"

    def test_invalid_email_rejected(self, client):
        checkout_ready(client, "p-portfolio")

        response = client.post(f"/checkout/{VISITOR}/submit", json={"name": "Bob", "email": "bob@"})

        assert response.status_code == 422
        assert "email" in response.json()["detail"]["errors"]
        session = client.get(f"/checkout/{VISITOR}").json()
        assert session["state"] == "awaiting_input"
        assert session["can_submit"] is True

    def test_submit_opens_hosted_gateway(self, client):
        body = submitted(client, "p-portfolio", "p-todo", "p-todo")

        assert body["state"] == "awaiting_gateway"
        assert body["view"] == "processing"
        assert body["can_submit"] is False
        assert body["total_amount"] == "49.99"
        assert body["order_id"].startswith("ORD-")
        assert "merchantId=255781290131" in body["redirect_url"]
        assert f"orderId={body['order_id']}" in body["redirect_url"]

    def test_double_submit_conflicts(self, client):
        submitted(client, "p-portfolio")

        response = client.post(f"/checkout/{VISITOR}/submit", json=BUYER)

        assert response.status_code == 409

    def test_success_callback_shows_receipt_and_empties_cart(self, client, storefront):
        order_id = submitted(client, "p-portfolio", "p-todo")["order_id"]

        response = client.post(
            f"/checkout/{VISITOR}/callback",
            json={"outcome": "success", "payload": {"orderId": order_id, "transactionId": "TXN-77"}},
        )

        body = response.json()
        assert body["state"] == "succeeded"
        assert body["view"] == "receipt"
        assert body["receipt"]["transaction_reference"] == "TXN-77"
        assert body["receipt"]["total"] == "39.99"
        assert body["receipt"]["items"][0]["download_ref"] == "https://cdn.example.com/p-portfolio/source.zip"
        assert client.get(f"/cart/{VISITOR}").json()["items"] == []
        assert storefront.catalog.get_order(order_id).payment_reference == "TXN-77"

    def test_success_callback_with_unreadable_amount(self, client, storefront):
        order_id = submitted(client, "p-portfolio")["order_id"]

        response = client.post(
            f"/checkout/{VISITOR}/callback",
            json={"outcome": "success", "payload": {"orderId": order_id, "transactionId": "TXN-9", "amount": "29.99 USD"}},
        )

        assert response.status_code == 200
        assert response.json()["view"] == "receipt"
        assert storefront.catalog.get_order(order_id).payment_reference == "TXN-9"

    def test_error_callback_then_retry(self, client):
        order_id = submitted(client, "p-portfolio")["order_id"]

        body = client.post(
            f"/checkout/{VISITOR}/callback",
            json={"outcome": "error", "payload": {"orderId": order_id, "message": "Card declined"}},
        ).json()

        assert body["state"] == "failed"
        assert body["view"] == "payment_failed"
        assert body["message"] == "Card declined"
        assert len(client.get(f"/cart/{VISITOR}").json()["items"]) == 1

        body = client.post(f"/checkout/{VISITOR}/retry").json()
        assert body["state"] == "awaiting_input"

        body = client.post(f"/checkout/{VISITOR}/submit", json={}).json()
        assert body["state"] == "awaiting_gateway"
        assert body["order_id"] != order_id

    def test_cancel_callback_keeps_cart(self, client):
        order_id = submitted(client, "p-portfolio")["order_id"]

        body = client.post(f"/checkout/{VISITOR}/callback", json={"outcome": "cancel", "payload": {"orderId": order_id}}).json()

        assert body["view"] == "cancelled"
        assert body["message"] == "Payment was cancelled."
        assert len(client.get(f"/cart/{VISITOR}").json()["items"]) == 1

    def test_unknown_callback_outcome(self, client):
        submitted(client, "p-portfolio")

        response = client.post(f"/checkout/{VISITOR}/callback", json={"outcome": "refund", "payload": {}})

        assert response.status_code == 400

    def test_retry_without_failure_conflicts(self, client):
        checkout_ready(client, "p-portfolio")
        assert client.post(f"/checkout/{VISITOR}/retry").status_code == 409

    def test_order_write_failure_asks_for_support(self, settings):
        storefront = Storefront(settings, FailingOrderCatalog(), SimulatedGateway(success_rate=1.0))
        with TestClient(create_app(storefront)) as client:
            body = submitted(client, "p-portfolio")

            assert body["state"] == "succeeded"
            assert body["view"] == "support_required"
            assert SUPPORT_EMAIL in body["message"]
            assert body["receipt"] is None
            assert len(client.get(f"/cart/{VISITOR}").json()["items"]) == 1
            assert client.post(f"/checkout/{VISITOR}").status_code == 409
            assert client.get(f"/checkout/{VISITOR}").json()["view"] == "support_required"

    def test_unconfigured_gateway_fails_attempt(self, settings):
        settings = settings.model_copy(update={"merchant_id": ""})
        storefront = build_storefront(settings)
        with TestClient(create_app(storefront)) as client:
            body = submitted(client, "p-portfolio")

            assert body["state"] == "failed"
            assert "not configured" in body["message"]


class TestDownloadsAndAdmin:
    def test_free_download_recorded(self, client, storefront):
        response = client.post("/products/p-landing/download")

        assert response.status_code == 200
        assert response.json()["download_url"] == "https://cdn.example.com/p-landing/source.zip"
        assert storefront.catalog.downloads == ["p-landing"]

    def test_paid_product_is_not_a_free_download(self, client):
        assert client.post("/products/p-portfolio/download").status_code == 403

    def test_admin_crud(self, client):
        payload = {
            "name": "Chat Bot",
            "main_category": "python",
            "subcategory": "AI/ML",
            "price": "12.50",
            "images": ["https://cdn.test/bot.jpg"],
        }
        created = client.post("/admin/products", json=payload)
        assert created.status_code == 201
        product_id = created.json()["id"]

        updated = client.put(f"/admin/products/{product_id}", json={**payload, "status": "inactive"})
        assert updated.json()["status"] == "inactive"
        assert client.get(f"/products/{product_id}").status_code == 404
        assert product_id in [product["id"] for product in client.get("/admin/products").json()]

        assert client.delete(f"/admin/products/{product_id}").status_code == 200
        assert client.delete(f"/admin/products/{product_id}").status_code == 404

    def test_admin_missing_fields(self, client):
        response = client.post("/admin/products", json={"name": "No Category"})

        assert response.status_code == 422
        assert "main_category" in response.json()["detail"]


@pytest.fixture
def unavailable_client(settings):
    storefront = Storefront(settings, UnavailableCatalogService(), SimulatedGateway())
    with TestClient(create_app(storefront)) as client:
        yield client


class TestUnavailableCatalog:
    def test_products_unavailable(self, unavailable_client):
        assert unavailable_client.get("/products").status_code == 503

    def test_cart_add_unavailable(self, unavailable_client):
        assert unavailable_client.post(f"/cart/{VISITOR}/items", json={"product_id": "p-portfolio"}).status_code == 503

    def test_cart_still_readable(self, unavailable_client):
        assert unavailable_client.get(f"/cart/{VISITOR}").json()["items"] == []
