"""Integration tests for Inventory API endpoints via TestClient."""

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from inventory.api.routes import inventory_router
from inventory.stock.stock import ReservationStatus, get_reservation
from shared.database import unit_of_work, utcnow
from shared.http import register_exception_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(inventory_router)
    return TestClient(app)


def _register(client, name="Desk Lamp", price="24.99", initial_stock=20, **extra):
    """Helper: POST /inventory/products and return the response body."""
    response = client.post(
        "/inventory/products",
        json={"name": name, "price": price, "initial_stock": initial_stock, **extra},
    )
    assert response.status_code == 201
    return response.json()


def _reserve(client, product_id, quantity, holder_id="cart-001", **extra):
    return client.post(
        "/inventory/reservations",
        json={"product_id": product_id, "holder_id": holder_id, "quantity": quantity, **extra},
    )


class TestProductEndpoints:
    def test_register_product(self, client):
        body = _register(client, initial_stock=20)

        assert body["name"] == "Desk Lamp"
        assert Decimal(str(body["price"])) == Decimal("24.99")
        assert (body["stock"], body["reserved"], body["available"]) == (20, 0, 20)
        assert body["track_inventory"] is True

    def test_register_rejects_non_positive_price(self, client):
        response = client.post("/inventory/products", json={"name": "Free", "price": "0"})
        assert response.status_code == 422

    def test_available_stock(self, client):
        product = _register(client, initial_stock=10)
        _reserve(client, product["product_id"], 4)

        response = client.get(f"/inventory/products/{product['product_id']}/available")

        assert response.status_code == 200
        assert response.json() == {
            "product_id": product["product_id"],
            "stock": 10,
            "reserved": 4,
            "available": 6,
            "track_inventory": True,
        }

    def test_unknown_product_is_404(self, client):
        response = client.get("/inventory/products/missing/available")

        assert response.status_code == 404
        assert response.json()["error"] == "product_not_found"

    def test_set_stock(self, client):
        product = _register(client, initial_stock=10)

        response = client.put(
            f"/inventory/products/{product['product_id']}/stock",
            json={"quantity": 25, "notes": "Delivery"},
        )

        assert response.status_code == 200
        assert response.json()["stock"] == 25

    def test_set_stock_below_reserved_conflicts(self, client):
        product = _register(client, initial_stock=10)
        _reserve(client, product["product_id"], 6)

        response = client.put(f"/inventory/products/{product['product_id']}/stock", json={"quantity": 5})

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_stock"

    def test_change_price(self, client):
        product = _register(client)

        response = client.put(f"/inventory/products/{product['product_id']}/price", json={"price": "29.50"})

        assert response.status_code == 200
        assert Decimal(str(response.json()["price"])) == Decimal("29.50")


class TestHistoryEndpoint:
    def test_history_lists_entries_in_order(self, client):
        product = _register(client, initial_stock=10)
        _reserve(client, product["product_id"], 2)

        response = client.get(f"/inventory/products/{product['product_id']}/history")

        assert response.status_code == 200
        body = response.json()
        assert [entry["change_type"] for entry in body["entries"]] == ["stock_in", "reserved"]
        assert body["entries"][1]["quantity_change"] == -2
        assert body["next_cursor"] is None

    def test_history_pagination(self, client):
        product = _register(client, initial_stock=10)
        for _ in range(3):
            _reserve(client, product["product_id"], 1)

        first = client.get(f"/inventory/products/{product['product_id']}/history", params={"limit": 2}).json()
        second = client.get(
            f"/inventory/products/{product['product_id']}/history",
            params={"limit": 2, "cursor": first["next_cursor"]},
        ).json()

        assert len(first["entries"]) == 2
        assert len(second["entries"]) == 2
        assert second["next_cursor"] is None
        assert first["entries"][-1]["id"] < second["entries"][0]["id"]

    def test_history_limit_is_bounded(self, client):
        product = _register(client)
        response = client.get(f"/inventory/products/{product['product_id']}/history", params={"limit": 501})
        assert response.status_code == 422


class TestReservationEndpoints:
    def test_reserve(self, client):
        product = _register(client, initial_stock=5)

        response = _reserve(client, product["product_id"], 3, expires_in_minutes=5)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == ReservationStatus.ACTIVE.value
        assert body["holder_type"] == "cart"
        assert body["quantity"] == 3

    def test_reserve_more_than_available_conflicts(self, client):
        product = _register(client, initial_stock=2)

        response = _reserve(client, product["product_id"], 3)

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_stock"
        assert "quantity" in response.json()["messages"]

    def test_cancel_reservation(self, client):
        product = _register(client, initial_stock=5)
        reservation = _reserve(client, product["product_id"], 3).json()

        response = client.post(
            f"/inventory/reservations/{reservation['reservation_id']}/cancel",
            json={"reason": "Changed mind"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == ReservationStatus.RELEASED.value
        available = client.get(f"/inventory/products/{product['product_id']}/available").json()
        assert available["available"] == 5

    def test_cancel_twice_conflicts(self, client):
        product = _register(client, initial_stock=5)
        reservation = _reserve(client, product["product_id"], 1).json()
        client.post(f"/inventory/reservations/{reservation['reservation_id']}/cancel")

        response = client.post(f"/inventory/reservations/{reservation['reservation_id']}/cancel")

        assert response.status_code == 409
        assert response.json()["error"] == "already_terminal"

    def test_cleanup_expired(self, client):
        product = _register(client, initial_stock=5)
        reservation = _reserve(client, product["product_id"], 2).json()

        response = client.post(
            "/inventory/cleanup-expired",
            json={"as_of": (utcnow() + timedelta(hours=1)).isoformat()},
        )

        assert response.status_code == 200
        assert response.json() == {"expired_count": 1}
        with unit_of_work() as session:
            assert get_reservation(session, reservation["reservation_id"]).status == ReservationStatus.EXPIRED.value

    def test_cleanup_without_body_leaves_fresh_holds(self, client):
        product = _register(client, initial_stock=5)
        _reserve(client, product["product_id"], 2)

        response = client.post("/inventory/cleanup-expired")

        assert response.json() == {"expired_count": 0}


class TestReportEndpoints:
    def test_alerts(self, client):
        low = _register(client, name="Bulbs", initial_stock=3, low_stock_threshold=5)
        _register(client, name="Shades", initial_stock=50)

        response = client.get("/inventory/alerts")

        assert response.status_code == 200
        alerts = response.json()
        assert [alert["product_id"] for alert in alerts] == [low["product_id"]]
        assert alerts[0]["is_critical"] is False

    def test_report(self, client):
        _register(client, name="Bulbs", initial_stock=0, low_stock_threshold=5)
        _register(client, name="Shades", initial_stock=50)

        body = client.get("/inventory/report").json()

        assert body["total_products"] == 2
        assert body["out_of_stock_products"] == 1
        assert body["low_stock_products"] == 1
        assert body["total_stock"] == 50
        assert body["alerts"][0]["product_name"] == "Bulbs"
