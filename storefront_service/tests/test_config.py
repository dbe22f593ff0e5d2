"""Tests for settings loading and package metadata."""

import pytest
from loguru import logger as loguru_logger
from logging_utils import get_component_logger
from pydantic import ValidationError

from storefront_service import __version__
from storefront_service.config import load_settings
from storefront_service.logger import configure_logging


def test_version():
    assert __version__ == "0.1.0"


def test_defaults():
    settings = load_settings({})
    assert settings.service_name == "storefront-service"
    assert settings.store_backend == "memory"
    assert settings.transaction_max_attempts == 5
    assert settings.transaction_retry_backoff == 0.05
    assert settings.low_stock_threshold == 5
    assert settings.notifier_backend == "log"
    assert settings.kafka_bootstrap_servers == "kafka:9092"
    assert settings.order_events_topic == "orders.events"


def test_environment_overrides():
    settings = load_settings(
        {
            "STORE_BACKEND": "sql",
            "DATABASE_URL": "postgresql://shop@db/shop",
            "TRANSACTION_MAX_ATTEMPTS": "8",
            "LOW_STOCK_THRESHOLD": "2",
            "LOG_JSON": "true",
            "LOG_FILE": "",
        }
    )
    assert settings.store_backend == "sql"
    assert settings.database_url == "postgresql://shop@db/shop"
    assert settings.transaction_max_attempts == 8
    assert settings.low_stock_threshold == 2
    assert settings.log_json is True
    assert settings.log_file is None


@pytest.mark.parametrize(
    "environ",
    [
        {"STORE_BACKEND": "firestore"},
        {"TRANSACTION_MAX_ATTEMPTS": "0"},
        {"LOW_STOCK_THRESHOLD": "-1"},
        {"NOTIFIER_BACKEND": "pigeon"},
    ],
)
def test_invalid_values_fail_fast(environ):
    with pytest.raises(ValidationError):
        load_settings(environ)


def test_component_logger_binds_service():
    records = []
    sink_id = loguru_logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        get_component_logger("storefront-service", "ledger").info("Stock reduced")
    finally:
        loguru_logger.remove(sink_id)

    assert records[0]["extra"]["service"] == "storefront-service.ledger"
    assert records[0]["message"] == "Stock reduced"


def test_logging_follows_settings(tmp_path):
    """Service name and log file come from the settings the logger is built with."""
    log_file = tmp_path / "storefront.log"
    try:
        service_logger = configure_logging(
            load_settings({"SERVICE_NAME": "storefront-test", "LOG_FILE": str(log_file), "LOG_LEVEL": "DEBUG"})
        )
        service_logger.debug("Stock restored")
        written = log_file.read_text()
    finally:
        configure_logging(load_settings())

    assert "storefront-test | " in written
    assert "Stock restored" in written
