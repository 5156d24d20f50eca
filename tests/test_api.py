"""
Tests for the FastAPI layer (`api/`).

The service graph runs over the in-memory store; the Supabase-backed
dependency is replaced with `app.dependency_overrides`.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_order_service
from api.main import app

MISSING = "00000000-0000-0000-0000-0000000000ff"


@pytest.fixture
def client(service):
    app.dependency_overrides[get_order_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_order(client: TestClient, product_id: UUID, quantity: int, **extra) -> dict:
    payload = {
        "line_items": [{"product_id": str(product_id), "quantity": quantity}],
        "shipping": {"method": "pickup", "recipient_name": "Juan Dela Cruz"},
        "guest": {"name": "Juan Dela Cruz", "email": "juan@example.com"},
    }
    payload.update(extra)
    response = client.post("/api/v1/orders", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_order_lifecycle_over_http(client, make_product) -> None:
    product = make_product(price="100.00", stock=12)
    order = _create_order(client, product.product_id, 10)
    order_id = order["order_id"]

    assert order["status"] == "pending"
    assert Decimal(order["total"]) == Decimal("1000.00")
    assert order["guest_email"] == "juan@example.com"

    paid = client.post(f"/api/v1/orders/{order_id}/confirm-payment")
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"

    for status in ("preparing", "shipped", "completed"):
        body = {"status": status}
        if status == "shipped":
            body["tracking_number"] = "LBC-123"
        response = client.post(f"/api/v1/orders/{order_id}/status", json=body)
        assert response.status_code == 200, response.text

    completed = client.get(f"/api/v1/orders/{order_id}").json()
    assert completed["status"] == "completed"
    assert completed["tracking_number"] == "LBC-123"
    assert completed["return_eligible"] is True

    assert client.post(f"/api/v1/orders/{order_id}/refunds", json={"amount": "600"}).status_code == 201
    over = client.post(f"/api/v1/orders/{order_id}/refunds", json={"amount": "500"})
    assert over.status_code == 409
    assert over.json()["error"] == "refund_exceeds_order_total"

    refunds = client.get(f"/api/v1/orders/{order_id}/refunds").json()
    assert Decimal(refunds["refunded_total"]) == Decimal("600.00")
    assert Decimal(refunds["order_total"]) == Decimal("1000.00")


def test_out_of_stock_is_a_conflict(client, make_product) -> None:
    product = make_product(stock=1)
    response = client.post(
        "/api/v1/orders",
        json={
            "line_items": [{"product_id": str(product.product_id), "quantity": 2}],
            "shipping": {"method": "pickup"},
            "guest": {"name": "Juan", "email": "juan@example.com"},
        },
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "out_of_stock"
    assert body["status_code"] == 409


def test_create_order_validation(client, make_product) -> None:
    product = make_product()
    bad_method = client.post(
        "/api/v1/orders",
        json={
            "line_items": [{"product_id": str(product.product_id), "quantity": 1}],
            "shipping": {"method": "drone"},
            "guest": {"name": "Juan", "email": "juan@example.com"},
        },
    )
    assert bad_method.status_code == 400

    no_items = client.post("/api/v1/orders", json={"line_items": [], "shipping": {"method": "pickup"}})
    assert no_items.status_code == 422

    no_customer = client.post(
        "/api/v1/orders",
        json={"line_items": [{"product_id": str(product.product_id), "quantity": 1}], "shipping": {"method": "pickup"}},
    )
    assert no_customer.status_code == 400
    assert no_customer.json()["error"] == "invalid_request"


def test_illegal_and_invalid_status_changes(client, make_product) -> None:
    product = make_product()
    order_id = _create_order(client, product.product_id, 1)["order_id"]

    invalid = client.post(f"/api/v1/orders/{order_id}/status", json={"status": "lost"})
    assert invalid.status_code == 400

    illegal = client.post(f"/api/v1/orders/{order_id}/status", json={"status": "shipped"})
    assert illegal.status_code == 409
    assert illegal.json()["error"] == "illegal_transition"

    cancelled = client.post(f"/api/v1/orders/{order_id}/cancel", json={"actor": "customer"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_unknown_order_is_404(client) -> None:
    response = client.get(f"/api/v1/orders/{MISSING}")
    assert response.status_code == 404
    assert response.json()["error"] == "order_not_found"


def test_inventory_endpoints(client, make_product) -> None:
    product = make_product(name="Oil Filter", stock=3, threshold=2)
    base = f"/api/v1/inventory/{product.product_id}"

    added = client.post(f"{base}/adjustments", json={"delta": 5, "reason": "restock", "note": "Supplier delivery"})
    assert added.status_code == 201
    assert added.json()["new_quantity"] == 8

    too_many = client.post(f"{base}/adjustments", json={"delta": -9, "reason": "damaged"})
    assert too_many.status_code == 409
    assert too_many.json()["error"] == "insufficient_stock"

    assert client.post(f"{base}/adjustments", json={"delta": 1, "reason": "gift"}).status_code == 400
    zero = client.post(f"{base}/adjustments", json={"delta": 0, "reason": "correction"})
    assert zero.status_code == 400
    assert zero.json()["error"] == "invalid_request"

    level = client.get(f"{base}/stock").json()
    assert level["stock_quantity"] == level["ledger_stock"] == 8
    assert level["is_consistent"] is True

    history = client.get("/api/v1/inventory/adjustments", params={"product_id": str(product.product_id)}).json()
    assert [a["quantity_delta"] for a in history["adjustments"]] == [5, 3]

    client.post(f"{base}/adjustments", json={"delta": -7, "reason": "shrinkage"})
    low = client.get("/api/v1/inventory/low-stock").json()
    assert [item["name"] for item in low["items"]] == ["Oil Filter"]
    assert low["items"][0]["stock_status"] == "low_stock"


def test_bulk_adjustments(client, make_product) -> None:
    product = make_product(stock=2)
    response = client.post(
        "/api/v1/inventory/adjustments/bulk",
        json={
            "items": [
                {"product_id": str(product.product_id), "delta": 4, "reason": "restock"},
                {"product_id": str(product.product_id), "delta": -10, "reason": "damaged"},
                {"product_id": MISSING, "delta": 1},
            ]
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] == 1
    assert body["failed"] == 2
    assert [r["error"] for r in body["results"]] == [None, "insufficient_stock", "product_not_found"]


def test_unknown_product_stock_is_404(client) -> None:
    response = client.get(f"/api/v1/inventory/{MISSING}/stock")
    assert response.status_code == 404
    assert response.json()["error"] == "product_not_found"


def test_discount_endpoints(client) -> None:
    created = client.post(
        "/api/v1/discounts",
        json={"code": "save10", "discount_type": "percentage", "value": "10", "min_purchase": "500"},
    )
    assert created.status_code == 201
    discount = created.json()
    assert discount["code"] == "SAVE10"

    duplicate = client.post("/api/v1/discounts", json={"code": "SAVE10", "discount_type": "fixed", "value": "5"})
    assert duplicate.status_code == 400

    bad_type = client.post("/api/v1/discounts", json={"code": "X", "discount_type": "bogo", "value": "5"})
    assert bad_type.status_code == 400

    naive = client.post(
        "/api/v1/discounts",
        json={"code": "NAIVE", "discount_type": "fixed", "value": "5", "expires_at": "2025-12-31T00:00:00"},
    )
    assert naive.status_code == 400

    quote = client.post("/api/v1/discounts/validate", json={"code": "Save10", "subtotal": "1000"}).json()
    assert Decimal(quote["discount_amount"]) == Decimal("100.00")
    assert Decimal(quote["subtotal_after_discount"]) == Decimal("900.00")

    too_small = client.post("/api/v1/discounts/validate", json={"code": "SAVE10", "subtotal": "400"})
    assert too_small.status_code == 400
    assert too_small.json()["error"] == "min_purchase_not_met"

    assert [d["code"] for d in client.get("/api/v1/discounts").json()["discounts"]] == ["SAVE10"]
    assert client.delete(f"/api/v1/discounts/{discount['discount_id']}").status_code == 204
    assert client.delete(f"/api/v1/discounts/{discount['discount_id']}").status_code == 404
