"""Test fixtures for the storefront service tests."""

from concurrent.futures import Executor, Future

import pytest

from storefront_service.advisor import LowStockAdvisor
from storefront_service.ledger import StockLedger
from storefront_service.lifecycle import OrderLifecycle
from storefront_service.schemas import LISTINGS, OrderDraft
from storefront_service.store import InMemoryDocumentStore


class ImmediateExecutor(Executor):
    """Runs submitted callables inline so notification effects are visible right away."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class RecordingNotifier:
    """Notification gateway that remembers every event it was given."""

    def __init__(self):
        self.sent = []

    def notify(self, order, event):
        self.sent.append((order.id, event))

    def events_for(self, order_id):
        return [event for sent_id, event in self.sent if sent_id == order_id]


@pytest.fixture
def store():
    """Create an in-memory store with two seeded listings.

    Returns:
        InMemoryDocumentStore: ``L1`` is a simple listing with 3 units;
            ``L2`` has variations ``V1`` (5 units) and ``V2`` (0 units).
    """
    store = InMemoryDocumentStore(max_attempts=25)
    store.seed(LISTINGS, "L1", {"owner": "seller-1", "name": "Clay mug", "quantity": 3, "has_variations": False})
    store.seed(
        LISTINGS,
        "L2",
        {
            "owner": "seller-1",
            "name": "Linen shirt",
            "quantity": 5,
            "has_variations": True,
            "variations": [
                {"id": "V1", "name": "Small", "price_change": 0, "quantity": 5},
                {"id": "V2", "name": "Large", "price_change": 200, "quantity": 0},
            ],
        },
    )
    return store


@pytest.fixture
def ledger(store):
    return StockLedger(store)


@pytest.fixture
def advisor(store):
    return LowStockAdvisor(store)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def lifecycle(store, ledger, notifier, immediate_executor):
    """Create an order lifecycle whose notifications run inline."""
    lifecycle = OrderLifecycle(store, ledger, notifier=notifier, executor=immediate_executor)
    yield lifecycle
    lifecycle.close()


@pytest.fixture
def draft():
    """Create a draft buying 2 units of the simple listing ``L1``."""
    return OrderDraft(
        item_id="L1",
        quantity=2,
        item_name="Clay mug",
        buyer_id="buyer-1",
        buyer_email="buyer@example.com",
        seller_id="seller-1",
        price=1200.0,
        shipping=300.0,
        total=2700.0,
    )


@pytest.fixture
def stock_of(store):
    """Return a reader for a listing's stock (or one variation's) straight from the store."""

    def read(item_id, variation_id=None):
        data = store.get_document(LISTINGS, item_id).data
        if variation_id is None:
            return data["quantity"]
        return next(v["quantity"] for v in data["variations"] if v["id"] == variation_id)

    return read
