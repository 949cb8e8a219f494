"""
Comprehensive logging system using structlog.
Provides structured logging with different output formats and levels.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Enable debug mode for more verbose logging
    """

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Configure structlog processors
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    # Add format-specific processors
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Set up file logging if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class WorkerLogger:
    """
    Specialized logger for worker events with context management.
    """

    def __init__(self, name: str = "worker"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'WorkerLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def log_cache_hit(self, partition: str, url: str, stale: bool = False) -> None:
        """Log a response served from a cache partition."""
        self.logger.debug(
            "Serving from cache",
            partition=partition,
            url=url,
            stale=stale,
            **self.context
        )

    def log_cache_miss(self, partition: str, url: str) -> None:
        """Log a cache miss."""
        self.logger.debug(
            "Cache miss",
            partition=partition,
            url=url,
            **self.context
        )

    def log_network_failure(self, url: str, error: str, fallback: Optional[str] = None) -> None:
        """Log a failed network fetch and the fallback chosen for it."""
        self.logger.warning(
            "Network request failed",
            url=url,
            error=error,
            fallback=fallback,
            **self.context
        )

    def log_storage_failure(self, operation: str, partition: str, error: str) -> None:
        """Log a best-effort storage operation that failed."""
        self.logger.error(
            "Cache storage operation failed",
            operation=operation,
            partition=partition,
            error=error,
            **self.context
        )

    def log_partition_deleted(self, name: str) -> None:
        """Log deletion of a superseded cache partition."""
        self.logger.info(
            "Deleting old cache",
            partition=name,
            **self.context
        )

    def log_sync_item(self, item_id: str, item_type: str, success: bool, error: Optional[str] = None) -> None:
        """Log replay of a single queued item."""
        level = "debug" if success else "warning"
        getattr(self.logger, level)(
            "Sync item replayed" if success else "Sync item failed",
            item_id=item_id,
            item_type=item_type,
            success=success,
            error=error,
            **self.context
        )

    def log_notification(self, event: str, tag: str, action: Optional[str] = None) -> None:
        """Log a notification lifecycle event."""
        self.logger.info(
            "Notification event",
            notification_event=event,
            tag=tag,
            action=action,
            **self.context
        )
