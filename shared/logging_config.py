"""
logging_config.py - Centralized JSON Logging Configuration

PURPOSE:
    Provides structured JSON logging for the storefront service with timezone-aware
    timestamps and checkout context injection.

KEY FEATURES:
    - JSON Format: All logs are formatted as JSON for easy parsing and aggregation
    - Timezone Aware: Timestamps use the zone passed to setup_logging (default UTC) via ZoneInfo
    - Checkout Context: Supports visitor_id, order_id and correlation_id passed through `extra=`
    - Service Context: Automatically adds service_name to all log entries
    - Exception Handling: Full stack traces included in log entries

JSON LOG FIELDS:
    - timestamp: ISO 8601 format (e.g., "2026-10-19T22:48:51.001014+00:00")
    - level: Log level (INFO, ERROR, WARNING, DEBUG, CRITICAL)
    - logger: Module name where log originated (e.g., "storefront.cart_store")
    - message: The actual log message
    - service_name: Name of the service (injected automatically)
    - correlation_id / visitor_id / order_id: Optional checkout context
    - exception: Full stack trace (only when exc_info is set)

USAGE:
    from shared.logging_config import setup_logging
    setup_logging("storefront", level="INFO")

    logger = logging.getLogger(__name__)
    logger.info("Order recorded", extra={"order_id": "ORD-1A2B3C4D5E6F", "visitor_id": "v-42"})

EXAMPLE JSON OUTPUT:
    {
        "timestamp": "2026-10-19T22:54:47.583146+00:00",
        "level": "INFO",
        "logger": "storefront.reconciler",
        "message": "Order ORD-1A2B3C4D5E6F recorded",
        "service_name": "storefront",
        "order_id": "ORD-1A2B3C4D5E6F"
    }
"""

import json
import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo
from typing import Any, Dict

CONTEXT_FIELDS = ("correlation_id", "service_name", "visitor_id", "order_id")


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON logs with checkout context."""

    def __init__(self, tz: str = "UTC"):
        super().__init__()
        self.tz = ZoneInfo(tz)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, self.tz).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceFilter(logging.Filter):
    """Stamps service_name on every record passing through the handler."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        return True


def setup_logging(service_name: str, level: str = "INFO", tz: str = "UTC") -> None:
    """Setup JSON logging for a service. Safe to call more than once."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # uvicorn reload and test runs call this repeatedly
    for existing in list(logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(tz))
    handler.addFilter(ServiceFilter(service_name))
    logger.addHandler(handler)
