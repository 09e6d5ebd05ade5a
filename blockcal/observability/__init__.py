"""
Observability module: structured logging and batch correlation ids.

Usage:
    from blockcal.observability import get_logger, BatchContext

    logger = get_logger(__name__)
    logger.info("Applying batch", extra={"commands": 4})

    with BatchContext() as ctx:
        logger.info("Batch started")  # carries batch_id=ctx.batch_id
"""

from .context import BatchContext, BatchInfo, current_batch, generate_batch_id, get_batch_id, set_batch_id
from .logging import (
    HumanFormatter,
    JSONFormatter,
    configure_log_file,
    configure_logging,
    get_logger,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "configure_log_file",
    "JSONFormatter",
    "HumanFormatter",
    # Context
    "BatchContext",
    "BatchInfo",
    "current_batch",
    "generate_batch_id",
    "get_batch_id",
    "set_batch_id",
]
