# Overview: Flask test-client coverage for the JSON API and its error mapping.

import pytest


@pytest.fixture
def ids(db_session, supplier, customer, product, small, medium, other_product):
    """Plain ids so requests do not depend on objects from the test session."""
    return {
        "supplier": supplier.id,
        "customer": customer.id,
        "product": product.id,
        "small": small.id,
        "medium": medium.id,
        "jeans_product": other_product.id,
    }


def _sale(client, ids, quantity=4, variant="small"):
    return client.post("/api/sales", json={
        "customer_id": ids["customer"],
        "lines": [{"product_id": ids["product"], "variant_id": ids[variant], "quantity": quantity}],
    })


class TestSystemRoutes:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


class TestOrderRoutes:

    def test_create_purchase(self, client, ids):
        resp = client.post("/api/purchases", json={
            "supplier_id": ids["supplier"],
            "lines": [{"product_id": ids["product"], "variant_id": ids["small"], "quantity": 5, "unit_price_cents": 700}],
        })

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["kind"] == "PURCHASE"
        assert order["total_cents"] == 3500
        assert order["lines"][0]["quantity"] == 5

        stock = client.get(f"/api/stock/products/{ids['product']}").get_json()
        assert stock["variants"][0]["stock_quantity"] == 15

    def test_create_sale_and_cancel_twice(self, client, ids):
        resp = _sale(client, ids)
        assert resp.status_code == 201
        order_id = resp.get_json()["order"]["id"]

        resp = client.post(f"/api/sales/{order_id}/cancel", json={"reason": "Duplicate ticket"})
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "CANCELLED"
        assert resp.get_json()["order"]["cancel_reason"] == "Duplicate ticket"

        resp = client.post(f"/api/sales/{order_id}/cancel")
        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "state"

        stock = client.get(f"/api/stock/products/{ids['product']}").get_json()
        assert stock["variants"][0]["stock_quantity"] == 10

    def test_insufficient_stock_is_409_with_details(self, client, ids):
        resp = _sale(client, ids, quantity=6, variant="medium")

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["kind"] == "insufficient_stock"
        assert body["details"]["items"][0]["deficit"] == 1

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"customer_id": 1},
            {"customer_id": 1, "lines": []},
            {"customer_id": "abc", "lines": [{"product_id": 1, "variant_id": 1, "quantity": 1}]},
            {"customer_id": 1, "lines": [{"product_id": 1, "variant_id": 1, "quantity": 1.5}]},
        ],
    )
    def test_malformed_sale_is_400(self, client, ids, payload):
        resp = client.post("/api/sales", json=payload)
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "validation"

    def test_non_json_body_is_400(self, client, ids):
        resp = client.post("/api/purchases", data="not json", content_type="text/plain")
        assert resp.status_code == 400

    def test_cancel_unknown_purchase_is_404(self, client, db_session):
        resp = client.post("/api/purchases/99999/cancel")
        assert resp.status_code == 404
        assert resp.get_json()["kind"] == "not_found"

    def test_list_and_get_orders(self, client, ids):
        order_id = _sale(client, ids, quantity=2).get_json()["order"]["id"]

        resp = client.get("/api/orders?kind=SALE&status=ACTIVE")
        assert resp.status_code == 200
        assert [o["id"] for o in resp.get_json()["orders"]] == [order_id]

        resp = client.get(f"/api/orders/{order_id}")
        assert resp.status_code == 200
        assert resp.get_json()["net_total_cents"] == 3000

    def test_list_orders_bad_date_is_400(self, client, db_session):
        resp = client.get("/api/orders?from=yesterday")
        assert resp.status_code == 400


class TestReturnRoutes:

    def test_return_lifecycle(self, client, ids):
        sale_id = _sale(client, ids).get_json()["order"]["id"]

        resp = client.post("/api/returns", json={
            "sale_order_id": sale_id,
            "product_id": ids["product"],
            "quantity": 2,
            "reason": "Too small",
        })
        assert resp.status_code == 201
        ret = resp.get_json()["return"]
        assert ret["amount_cents"] == 3000
        return_id = ret["id"]

        resp = client.post("/api/returns", json={
            "sale_order_id": sale_id,
            "product_id": ids["product"],
            "quantity": 3,
            "reason": "Too small",
        })
        assert resp.status_code == 409

        resp = client.patch(f"/api/returns/{return_id}", json={"reason": "Seam split"})
        assert resp.status_code == 200
        assert resp.get_json()["return"]["reason"] == "Seam split"

        resp = client.post(f"/api/returns/{return_id}/refund", json={"method": "CARD"})
        assert resp.get_json()["return"]["refund_method"] == "CARD"

        resp = client.post(f"/api/returns/{return_id}/toggle")
        assert resp.get_json()["return"]["status"] == "ANNULLED"

        resp = client.post(f"/api/returns/{return_id}/annul")
        assert resp.status_code == 409

        resp = client.get(f"/api/sales/{sale_id}/returns")
        assert [r["id"] for r in resp.get_json()["returns"]] == [return_id]

        movements = client.get(f"/api/stock/movements?return_id={return_id}").get_json()["movements"]
        assert sorted(m["delta"] for m in movements) == [-2, 2]

    def test_short_reason_update_is_400(self, client, ids):
        sale_id = _sale(client, ids).get_json()["order"]["id"]
        return_id = client.post("/api/returns", json={
            "sale_order_id": sale_id, "product_id": ids["product"], "quantity": 1, "reason": "Too small",
        }).get_json()["return"]["id"]

        resp = client.patch(f"/api/returns/{return_id}", json={"reason": "no"})
        assert resp.status_code == 400

    def test_get_unknown_return_is_404(self, client, db_session):
        assert client.get("/api/returns/99999").status_code == 404


class TestStockRoutes:

    def test_unknown_product_is_404(self, client, db_session):
        assert client.get("/api/stock/products/99999").status_code == 404

    def test_movements_filter_validation(self, client, db_session):
        assert client.get("/api/stock/movements?variant_id=x").status_code == 400
