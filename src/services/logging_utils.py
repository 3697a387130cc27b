"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across costing, recipe and consumption
operations.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="record_sale",
        outcome="success",
        order_id="1042",
        records=7,
    )

    log_operation(
        logger,
        operation="record_sale",
        outcome="product_not_found",
        level=logging.WARNING,
        external_product_id=991,
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "cafe_cost.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance under the 'cafe_cost.services' prefix.

    Example:
        >>> logger = get_service_logger("src.services.consumption_service")
        >>> logger.name
        'cafe_cost.services.consumption_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter for structured logging,
    so handlers can pick fields such as order_id or product_id directly.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "record_sale", "update_material_price")
        outcome: Outcome description (e.g., "success", "product_not_found")
        level: Log level (default: INFO)
        **context: Additional context fields (entity IDs, counts, error details)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
