"""Logger module for the Storefront Service."""

from logging_utils.config import get_component_logger, setup_service_logger

from .config import Settings, load_settings

settings = load_settings()
SERVICE_NAME = settings.service_name


def configure_logging(settings: Settings):
    """Install the log sinks described by the settings and return the service logger."""
    return setup_service_logger(
        settings.service_name,
        log_level=settings.log_level,
        log_file=settings.log_file,
        json_logs=settings.log_json,
    )


logger = configure_logging(settings)


def component_logger(component: str):
    """Return the service logger bound to one component (ledger, lifecycle, ...)."""
    return get_component_logger(SERVICE_NAME, component)


__all__ = ["logger", "component_logger", "configure_logging"]
