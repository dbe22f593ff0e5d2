"""Environment-driven settings for the Storefront Service."""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration.

    Attributes:
        service_name: Name bound into every log record.
        log_level: Minimum log level.
        log_file: Optional rotating log file path.
        log_json: Emit JSON log records.
        store_backend: Document store adapter to use.
        database_url: SQLAlchemy URL for the ``sql`` backend.
        transaction_max_attempts: Attempts per store transaction before giving up.
        transaction_retry_backoff: Seconds slept per attempt after a write conflict.
        low_stock_threshold: Default threshold for low stock warnings.
        notifier_backend: Notification gateway adapter to use.
        kafka_bootstrap_servers: Kafka brokers for the ``kafka`` notifier.
        order_events_topic: Topic order notifications are published to.
    """

    service_name: str = "storefront-service"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False
    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///storefront.db"
    transaction_max_attempts: int = Field(5, ge=1)
    transaction_retry_backoff: float = Field(0.05, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    notifier_backend: Literal["log", "kafka"] = "log"
    kafka_bootstrap_servers: str = "kafka:9092"
    order_events_topic: str = "orders.events"


ENV_VARS = {
    "service_name": "SERVICE_NAME",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "log_json": "LOG_JSON",
    "store_backend": "STORE_BACKEND",
    "database_url": "DATABASE_URL",
    "transaction_max_attempts": "TRANSACTION_MAX_ATTEMPTS",
    "transaction_retry_backoff": "TRANSACTION_RETRY_BACKOFF",
    "low_stock_threshold": "LOW_STOCK_THRESHOLD",
    "notifier_backend": "NOTIFIER_BACKEND",
    "kafka_bootstrap_servers": "KAFKA_BOOTSTRAP_SERVERS",
    "order_events_topic": "ORDER_EVENTS_TOPIC",
}


def load_settings(environ: Optional[dict] = None) -> Settings:
    """Build settings from environment variables.

    Unset variables fall back to the model defaults; pydantic coerces the
    strings and rejects invalid values.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Settings: Validated settings
    """
    environ = os.environ if environ is None else environ
    values = {field: environ[var] for field, var in ENV_VARS.items() if environ.get(var) not in (None, "")}
    return Settings(**values)
