"""Notification gateway adapters for order events.

Rendering and delivering emails happens downstream; this service only hands
finalized orders over. Delivery is best-effort and never feeds back into
stock decisions.
"""

import json
from typing import Protocol

from confluent_kafka import Producer

from .logger import component_logger
from .schemas import Order, OrderEvent

logger = component_logger("notifier")


class NotificationGateway(Protocol):
    """Protocol for anything that can be told about an order event."""

    def notify(self, order: Order, event: OrderEvent) -> None:
        """Send a confirmation or status-change message for an order.

        Args:
            order: The order as persisted
            event: What happened to it
        """
        ...


class LoggingNotifier:
    """Notifier used when no broker is configured; only logs the event."""

    def notify(self, order: Order, event: OrderEvent) -> None:
        logger.info(
            f"[STUB] Would send {event.value} for order {order.id} | status={order.status.value} | "
            f"buyer={order.buyer_email or order.buyer_id}"
        )

    def close(self) -> None:
        pass


class KafkaOrderNotifier:
    """Publishes order events to Kafka for the notification sender.

    Messages are keyed by order id so every event of one order lands on the
    same partition and is consumed in order.

    Attributes:
        topic: Topic order events are published to.
    """

    def __init__(self, bootstrap_servers: str, topic: str = "orders.events"):
        """Initialize the Kafka producer.

        Args:
            bootstrap_servers: Comma-separated list of Kafka broker addresses.
            topic: Topic order events are published to.
        """
        self.topic = topic
        self._producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "message.timeout.ms": 5000,
                "partitioner": "consistent_random",
            }
        )

    @property
    def producer(self):
        """The underlying Kafka producer instance."""
        return self._producer

    def _delivery_callback(self, err, msg):
        if err:
            logger.error(f"Order event failed delivery: {err}")
        else:
            logger.debug(f"Order event delivered to {msg.topic()} [p:{msg.partition()}]")

    def notify(self, order: Order, event: OrderEvent) -> None:
        """Publish an order event.

        Raises:
            BufferError: If the producer's internal buffer is full.
        """
        payload = {"event": event.value, "order": order.model_dump(mode="json")}
        try:
            self._producer.produce(
                topic=self.topic,
                key=order.id.encode("utf-8"),
                value=json.dumps(payload),
                on_delivery=self._delivery_callback,
            )
            self._producer.poll(0)
        except BufferError:
            logger.warning("Producer buffer full, flushing...")
            self._producer.flush()
            raise

    def close(self, timeout: float = 10.0) -> None:
        """Wait for pending events to be delivered."""
        remaining = self._producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} order events still pending delivery")


def build_notifier(backend: str, bootstrap_servers: str = "", topic: str = "orders.events"):
    """Return the configured notification gateway.

    Raises:
        ValueError: Unknown backend
    """
    if backend == "log":
        return LoggingNotifier()
    if backend == "kafka":
        return KafkaOrderNotifier(bootstrap_servers, topic=topic)
    raise ValueError(f"Unknown notifier backend: {backend}")
