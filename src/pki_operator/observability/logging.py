"""
Structured logging utilities for the PKI operator.

This module provides correlation ID tracking, structured log formatting,
and certificate audit logging for production troubleshooting. Key material
is never handed to a logger.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Extra fields copied into the JSON output when present on a record
STRUCTURED_FIELDS = (
    "cluster_name",
    "namespace",
    "operation",
    "action",
    "certificate_name",
    "change_reasons",
    "duration",
    "error_type",
)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Add correlation ID to the log record.

        Args:
            record: The log record to process

        Returns:
            True to allow the record to be processed
        """
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for logs with correlation ID support.

    Formats log records as structured JSON for better parsing and analysis
    in production monitoring systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as structured JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log message
        """
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Unique correlation ID string
    """
    return str(uuid.uuid4())[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get("")


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Set up structured logging for the operator.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Set specific logger levels for third-party libraries
    logging.getLogger("kopf").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger for PKI reconciliation passes with structured logging support.

    Provides convenient methods for logging reconciliation and certificate
    events with proper correlation ID tracking and structured data.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self,
        cluster_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Log the start of a reconciliation pass.

        Args:
            cluster_name: Name of the owning cluster
            namespace: Namespace of the cluster
            correlation_id: Optional correlation ID (will generate if not provided)

        Returns:
            The correlation ID used for this pass
        """
        if correlation_id is None:
            correlation_id = generate_correlation_id()

        set_correlation_id(correlation_id)

        self.logger.info(
            f"Starting PKI reconciliation for {namespace}/{cluster_name}",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )

        return correlation_id

    def log_reconciliation_success(
        self,
        cluster_name: str,
        namespace: str,
        action: str,
        change_reasons: list[str],
        duration: float,
    ) -> None:
        self.logger.info(
            f"PKI reconciliation completed for {namespace}/{cluster_name}: {action}",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "action": action,
                "change_reasons": change_reasons,
                "duration": duration,
            },
        )

    def log_reconciliation_error(
        self,
        cluster_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Log a failed reconciliation pass.

        Args:
            cluster_name: Name of the owning cluster
            namespace: Namespace of the cluster
            error: The error that occurred
            duration: Pass duration in seconds
        """
        self.logger.error(
            f"PKI reconciliation failed for {namespace}/{cluster_name}: {error}",
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=True,
        )

    def log_certificate_event(
        self,
        action: str,
        cluster_name: str,
        namespace: str,
        certificate_name: str,
        message: str,
    ) -> None:
        """Audit a single certificate change, never its material."""
        self.logger.info(
            message,
            extra={
                "cluster_name": cluster_name,
                "namespace": namespace,
                "operation": "certificate",
                "action": action,
                "certificate_name": certificate_name,
            },
        )

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with extra data."""
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with extra data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with extra data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message with extra data."""
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
