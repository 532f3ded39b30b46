"""
HTTP surface tests: status codes, actor enforcement and error bodies.
"""

import pytest


@pytest.fixture
def stocked(db_session, store_a, product, user, stock):
    stock(store_a, product, 10, "10.00")
    return store_a, product


class TestSystemRoutes:

    def test_health(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        assert client.get("/api/version").status_code == 200


class TestActorRequired:

    def test_missing_actor_header(self, client, db_session, store_a, supplier, product):
        response = client.post("/api/purchase-orders", json={})

        assert response.status_code == 401
        assert response.get_json()["error_type"] == "Unauthorized"

    def test_unknown_actor(self, client, db_session):
        response = client.post("/api/stock-adjustments", json={}, headers={"X-Actor-Id": "9999"})
        assert response.status_code == 401

    def test_reads_do_not_need_actor(self, client, db_session):
        assert client.get("/api/purchase-orders").status_code == 200


class TestPurchaseOrderRoutes:

    def test_create_and_walk_to_ordered(self, client, actor_headers, store_a, supplier, product):
        response = client.post(
            "/api/purchase-orders",
            json={
                "store_id": store_a.id,
                "supplier_id": supplier.id,
                "order_date": "2024-06-01",
                "items": [{"product_id": product.id, "quantity_ordered": 4, "unit_cost": "2.50"}],
            },
            headers=actor_headers,
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["status"] == "draft"
        assert body["subtotal"] == "10.00"

        po_id = body["id"]
        for action, status in (("submit", "pending"), ("approve", "approved"), ("order", "ordered")):
            response = client.post(f"/api/purchase-orders/{po_id}/{action}", headers=actor_headers)
            assert response.status_code == 200
            assert response.get_json()["status"] == status

        item_id = body["items"][0]["id"]
        response = client.post(
            f"/api/purchase-orders/{po_id}/receive",
            json={"items": [{"item_id": item_id, "quantity_received": 4}]},
            headers=actor_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["status"] == "received"

    def test_illegal_transition_is_409(self, client, actor_headers, store_a, supplier, product):
        created = client.post(
            "/api/purchase-orders",
            json={
                "store_id": store_a.id,
                "supplier_id": supplier.id,
                "order_date": "2024-06-01",
                "items": [{"product_id": product.id, "quantity_ordered": 1, "unit_cost": "1.00"}],
            },
            headers=actor_headers,
        ).get_json()

        response = client.post(f"/api/purchase-orders/{created['id']}/approve", headers=actor_headers)

        assert response.status_code == 409
        body = response.get_json()
        assert body["error_type"] == "IllegalStateTransitionError"
        assert body["current_status"] == "draft"

    def test_missing_document_is_404(self, client, db_session):
        response = client.get("/api/purchase-orders/424242")

        assert response.status_code == 404
        assert response.get_json()["error_type"] == "NotFoundError"

    def test_validation_error_is_400(self, client, actor_headers, store_a, supplier):
        response = client.post(
            "/api/purchase-orders",
            json={"store_id": store_a.id, "supplier_id": supplier.id, "order_date": "2024-06-01", "items": []},
            headers=actor_headers,
        )

        assert response.status_code == 400
        assert response.get_json()["error_type"] == "ValidationError"

    def test_oversized_quantity_is_400(self, client, actor_headers, store_a, supplier, product):
        response = client.post(
            "/api/purchase-orders",
            json={
                "store_id": store_a.id,
                "supplier_id": supplier.id,
                "order_date": "2024-06-01",
                "items": [{"product_id": product.id, "quantity_ordered": 10 ** 20, "unit_cost": "1.00"}],
            },
            headers=actor_headers,
        )

        assert response.status_code == 400
        body = response.get_json()
        assert body["error_type"] == "ValidationError"
        assert "out of range" in body["error"]


class TestInventoryRoutes:

    def test_oversell_reports_resulting_quantity(self, client, actor_headers, stocked):
        store, product = stocked

        response = client.post(
            "/api/inventory/sales",
            json={"store_id": store.id, "product_id": product.id, "quantity": 11, "sale_id": 5},
            headers=actor_headers,
        )

        assert response.status_code == 409
        body = response.get_json()
        assert body["error_type"] == "NegativeStockError"
        assert body["resulting_quantity"] == -1

    def test_damaged_return(self, client, actor_headers, stocked):
        store, product = stocked

        response = client.post(
            "/api/inventory/returns",
            json={
                "store_id": store.id,
                "product_id": product.id,
                "quantity": 1,
                "return_id": 3,
                "condition": "damaged",
            },
            headers=actor_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["restocked"] is False

    def test_movement_feed_and_verify(self, client, stocked):
        response = client.get("/api/movements?type=purchase")
        assert response.status_code == 200
        assert response.get_json()["pagination"]["total"] == 1

        verify = client.get("/api/movements/verify").get_json()
        assert verify["checked"] == 1
        assert verify["inconsistent"] == 0


class TestAlertRoutes:

    def test_csv_export_headers(self, client, db_session):
        response = client.get("/api/alerts/export")

        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert "attachment; filename=minimum_stock_alerts_" in response.headers["Content-Disposition"]

    def test_counts(self, client, db_session):
        assert client.get("/api/alerts/counts").get_json() == {"total": 0, "critical": 0, "warning": 0}
