"""Unit tests for the notification gateways."""

import json
from unittest.mock import MagicMock, patch

import pytest

from storefront_service.notifier import KafkaOrderNotifier, LoggingNotifier, build_notifier
from storefront_service.schemas import Order, OrderEvent


@pytest.fixture
def test_order():
    """Create a persisted order fixture."""
    return Order(id="ord-0001", item_id="L1", quantity=2, buyer_email="buyer@example.com")


@pytest.fixture
def test_notifier():
    """Create a Kafka notifier fixture pointing to localhost."""
    return KafkaOrderNotifier("localhost:9092")


def test_notifier_initialization():
    """Test that the Kafka producer is created with the expected settings."""
    mock_producer_instance = MagicMock()
    mock_producer_class = MagicMock(return_value=mock_producer_instance)

    with patch("storefront_service.notifier.Producer", new=mock_producer_class):
        notifier = KafkaOrderNotifier("dump:9092", topic="orders.test")

        mock_producer_class.assert_called_once_with(
            {"bootstrap.servers": "dump:9092", "message.timeout.ms": 5000, "partitioner": "consistent_random"}
        )
        assert notifier.producer == mock_producer_instance
        assert notifier.topic == "orders.test"


def test_notify_publishes_event(test_notifier, test_order):
    """Test that an order event is produced keyed by order id."""
    with patch.object(test_notifier, "_producer") as mock_producer:
        test_notifier.notify(test_order, OrderEvent.CREATED)

        mock_producer.produce.assert_called_once_with(
            topic="orders.events",
            key=b"ord-0001",
            value=json.dumps({"event": "order.created", "order": test_order.model_dump(mode="json")}),
            on_delivery=test_notifier._delivery_callback,
        )
        mock_producer.poll.assert_called_once_with(0)


def test_notify_buffer_full(test_notifier, test_order):
    """Test that a full producer buffer is flushed and reported to the caller."""
    with patch.object(test_notifier, "_producer") as mock_producer:
        mock_producer.produce.side_effect = BufferError("queue full")

        with pytest.raises(BufferError):
            test_notifier.notify(test_order, OrderEvent.STATUS_CHANGED)

        mock_producer.flush.assert_called_once_with()


def test_close_flushes(test_notifier):
    with patch.object(test_notifier, "_producer") as mock_producer:
        mock_producer.flush.return_value = 0
        test_notifier.close(timeout=1.0)
        mock_producer.flush.assert_called_once_with(1.0)


def test_logging_notifier(test_order):
    LoggingNotifier().notify(test_order, OrderEvent.PAYMENT_COMPLETED)


def test_build_notifier():
    assert isinstance(build_notifier("log"), LoggingNotifier)
    with patch("storefront_service.notifier.Producer"):
        assert isinstance(build_notifier("kafka", "kafka:9092", topic="orders.x"), KafkaOrderNotifier)
    with pytest.raises(ValueError):
        build_notifier("sms")
