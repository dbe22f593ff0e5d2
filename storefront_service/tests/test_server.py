"""Tests for the Storefront Service HTTP surface."""

from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

from storefront_service.config import load_settings
from storefront_service.schemas import LISTINGS
from storefront_service.server import app, state
from storefront_service.store import StoreUnavailable


@pytest.fixture
def test_client(store, notifier, immediate_executor):
    """Create a test client over the seeded in-memory store."""
    state.configure(load_settings({}), store=store, notifier=notifier, executor=immediate_executor)
    yield TestClient(app)
    state.close()


@pytest.fixture
def valid_order():
    """Create a valid order request body."""
    return {
        "item_id": "L2",
        "variation_id": "V1",
        "quantity": 2,
        "item_name": "Linen shirt",
        "buyer_id": "buyer-1",
        "seller_id": "seller-1",
        "price": 4500.0,
        "shipping": 300.0,
        "total": 9300.0,
        "payment_method": "card",
        "payment_reference": "pay-42",
    }


def test_health_check(test_client):
    response = test_client.get("/health")
    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"status": "healthy"}


def test_readiness_check(test_client):
    response = test_client.get("/health/ready")
    assert response.json() == {"status": "ready", "store": "connected"}


def test_readiness_check_store_down(mocker, test_client, store):
    mocker.patch.object(store, "get_document", side_effect=StoreUnavailable("connection refused"))
    response = test_client.get("/health/ready")
    assert response.json() == {"status": "not ready", "store": "disconnected"}


def test_unconfigured_service_is_unavailable():
    client = TestClient(app)
    assert client.get("/health/ready").json()["status"] == "not ready"
    assert client.get("/orders/ord-1").status_code == HTTPStatus.SERVICE_UNAVAILABLE


def test_order_round_trip(test_client, valid_order, stock_of):
    """Create, read and cancel an order over HTTP."""
    response = test_client.post("/orders", json=valid_order)
    assert response.status_code == HTTPStatus.CREATED
    order_id = response.json()["order_id"]
    assert stock_of("L2", "V1") == 3

    response = test_client.get(f"/orders/{order_id}")
    assert response.status_code == HTTPStatus.OK
    assert response.json()["status"] == "PENDING"

    response = test_client.post(f"/orders/{order_id}/cancel", json={"reason": "duplicate"})
    assert response.status_code == HTTPStatus.OK
    assert response.json()["stock_restored"] is True
    assert stock_of("L2", "V1") == 5

    response = test_client.post(f"/orders/{order_id}/cancel")
    assert response.json()["already_closed"] is True


def test_create_order_insufficient_stock(test_client, valid_order):
    response = test_client.post("/orders", json={**valid_order, "variation_id": "V2"})
    assert response.status_code == HTTPStatus.CONFLICT
    assert response.json()["available"] == 0


def test_create_order_unknown_listing(test_client, valid_order):
    response = test_client.post("/orders", json={**valid_order, "item_id": "missing"})
    assert response.status_code == HTTPStatus.NOT_FOUND


def test_create_order_without_variation(test_client, valid_order):
    response = test_client.post("/orders", json={**valid_order, "variation_id": None})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_create_order_invalid_body(test_client, valid_order):
    response = test_client.post("/orders", json={**valid_order, "quantity": 0})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_get_unknown_order(test_client):
    assert test_client.get("/orders/ord-missing").status_code == HTTPStatus.NOT_FOUND


def test_status_transitions(test_client, valid_order):
    order_id = test_client.post("/orders", json=valid_order).json()["order_id"]

    response = test_client.patch(f"/orders/{order_id}/status", json={"status": "SHIPPED"})
    assert response.json()["status"] == "SHIPPED"

    response = test_client.post(f"/orders/{order_id}/refund")
    assert response.json()["status"] == "REFUNDED"

    response = test_client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"})
    assert response.status_code == HTTPStatus.CONFLICT


def test_payment_callback(test_client, valid_order, notifier):
    order_id = test_client.post("/orders", json=valid_order).json()["order_id"]

    response = test_client.post("/payments/status", json={"payment_reference": "pay-42", "payment_status": "completed"})

    assert response.status_code == HTTPStatus.OK
    assert response.json()["payment_status"] == "completed"
    assert [event.value for event in notifier.events_for(order_id)] == ["order.created", "order.payment_completed"]


def test_availability(test_client):
    response = test_client.get("/listings/L1/availability", params={"quantity": 4})
    assert response.json() == {"available": False, "current_stock": 3}

    response = test_client.get("/listings/L2/availability", params={"variation_id": "V1"})
    assert response.json() == {"available": True, "current_stock": 5}

    response = test_client.get("/listings/L1/availability", params={"quantity": 0})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_low_stock_endpoints(test_client):
    response = test_client.get("/listings/L1/low-stock")
    assert response.json()["warnings"] == ["Low stock: 3 units remaining"]

    response = test_client.get("/sellers/seller-1/low-stock", params={"threshold": 0})
    body = response.json()
    assert body["total_low_stock_items"] == 1
    assert body["low_stock_items"][0]["id"] == "L2"

    response = test_client.get("/listings/L1/low-stock", params={"threshold": -3})
    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


def test_transient_failure_maps_to_503(mocker, test_client, store):
    mocker.patch.object(store, "get_document", side_effect=StoreUnavailable("connection refused"))
    response = test_client.get("/listings/L1/low-stock")
    assert response.status_code == HTTPStatus.SERVICE_UNAVAILABLE


def test_corrupt_listing_is_a_server_error(test_client, store):
    """Unreadable stored data is not blamed on the caller."""
    store.seed(LISTINGS, "L9", {"owner": "seller-1", "name": "Broken", "quantity": "lots"})
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/listings/L9/low-stock")

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
