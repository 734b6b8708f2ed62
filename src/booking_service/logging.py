"""Logging entry points for the booking service."""

from __future__ import annotations

import logging

from service_commons.logging import get_named_logger
from service_commons.logging import setup_logging as setup_namespace_logging

LOGGER_NAMESPACE = "booking_service"


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """Configure JSON logging for every logger under the booking_service namespace."""
    logger = setup_namespace_logging(level, LOGGER_NAMESPACE, log_directory)
    logger.debug("Logging configured", extra={"service": service_name, "level": level})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the service namespace (pass __name__)."""
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return get_named_logger(LOGGER_NAMESPACE, name)
