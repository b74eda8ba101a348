"""
Logging configuration for the Power Platform UI test task.

Provides structured JSON logging, Azure Pipelines aware text output, file
rotation outside CI and process-wide masking of registered secrets.
"""

import logging
import logging.handlers
import json
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Set

from .config import Config
from . import pipeline


MASK = "***"


class SecretMaskingFilter(logging.Filter):
    """Replaces every registered secret value with a mask in log records."""

    def __init__(self):
        super().__init__()
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, value: Optional[str]) -> None:
        if value:
            with self._lock:
                self._secrets.add(value)

    def clear(self) -> None:
        with self._lock:
            self._secrets.clear()

    def mask(self, text: str) -> str:
        """Mask all known secrets in a string, longest first."""
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, MASK)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask(value)
        if isinstance(value, dict):
            return {k: self._mask_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._mask_value(v) for v in value]
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        record.msg = self.mask(record.getMessage())
        record.args = ()
        if hasattr(record, "metadata"):
            record.metadata = self._mask_value(record.metadata)
        return True


_secret_filter = SecretMaskingFilter()


def register_secret(value: Optional[str]) -> None:
    """Mask a secret in every log handler and in the pipeline output."""
    if not value:
        return
    _secret_filter.add(value)
    pipeline.set_secret(value)


def register_secrets(values: Iterable[Optional[str]]) -> None:
    for value in values:
        register_secret(value)


def mask_secrets(text: str) -> str:
    """Mask registered secrets in arbitrary text."""
    return _secret_filter.mask(text)


def get_secret_filter() -> SecretMaskingFilter:
    return _secret_filter


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name,
            "run_id": self.run_id,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "metadata"):
            log_entry["metadata"] = record.metadata

        for attr in ["operation", "state", "duration", "status_code"]:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for local runs."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        message = f"[{timestamp}] {record.levelname:8} {record.name:20} | {record.getMessage()}"
        message += f" (run: {self.run_id[:8]})"

        if hasattr(record, "metadata") and record.metadata:
            metadata_str = " | ".join(f"{k}={v}" for k, v in record.metadata.items())
            message += f" | {metadata_str}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class AzurePipelinesFormatter(logging.Formatter):
    """Formatter that lets the Azure Pipelines agent highlight warnings and errors."""

    PREFIXES = {
        logging.DEBUG: "##[debug]",
        logging.WARNING: "##[warning]",
        logging.ERROR: "##[error]",
        logging.CRITICAL: "##[error]",
    }

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        prefix = self.PREFIXES.get(record.levelno, "")
        message = f"{prefix}{record.getMessage()}"

        if hasattr(record, "metadata") and record.metadata:
            metadata_str = " | ".join(f"{k}={v}" for k, v in record.metadata.items())
            message += f" | {metadata_str}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def _build_formatter(config: Config, run_id: str) -> logging.Formatter:
    if config.log_format == "json":
        return StructuredFormatter(run_id)
    if config.log_format == "azure":
        return AzurePipelinesFormatter(run_id)
    return TextFormatter(run_id)


def setup_logging(config: Config, run_id: str) -> logging.Logger:
    """
    Set up logging configuration based on environment and config.

    Args:
        config: Configuration object with logging settings
        run_id: Unique run identifier for log correlation

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    # WARN is accepted as an alias of WARNING
    log_level = getattr(logging, config.log_level)
    root_logger.setLevel(log_level)

    formatter = _build_formatter(config, run_id)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    console_handler.addFilter(_secret_filter)
    root_logger.addHandler(console_handler)

    # File handler for non-CI environments
    if not config.is_ci_mode:
        file_handler = logging.handlers.RotatingFileHandler(
            config.get_log_file_path(),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        file_handler.addFilter(_secret_filter)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("ppuitest.logging")
    logger.info(
        "Logging configured",
        extra={
            "metadata": {
                "run_id": run_id,
                "log_level": config.log_level,
                "log_format": config.log_format,
                "ci_mode": config.is_ci_mode,
            }
        },
    )

    return root_logger


def get_logger(name: str, **context) -> logging.Logger:
    """
    Get a logger with optional context.

    Args:
        name: Logger name (typically module name)
        **context: Additional context to include in log records

    Returns:
        Configured logger with context
    """
    logger = logging.getLogger(name)

    if context:

        class ContextAdapter(logging.LoggerAdapter):
            def process(self, msg, kwargs):
                if "extra" not in kwargs:
                    kwargs["extra"] = {}
                kwargs["extra"].update(self.extra)
                return msg, kwargs

        return ContextAdapter(logger, context)

    return logger


def log_performance(
    logger: logging.Logger, operation: str, duration: float, **metadata
):
    """
    Log performance metrics for operations.

    Args:
        logger: Logger instance
        operation: Name of the operation
        duration: Duration in seconds
        **metadata: Additional metadata to include
    """
    logger.info(
        f"Performance: {operation} completed in {duration:.2f}s",
        extra={"metadata": {"operation": operation, "duration": duration, **metadata}},
    )


def log_dataverse_call(
    logger: logging.Logger,
    method: str,
    path: str,
    status: int,
    duration: float,
    **metadata,
):
    """
    Log a Dataverse Web API call for debugging.

    Args:
        logger: Logger instance
        method: HTTP method
        path: Request path relative to the Web API root
        status: HTTP status code
        duration: Call duration in seconds
        **metadata: Additional metadata
    """
    success = 200 <= status < 300
    level = logging.DEBUG if success else logging.WARNING

    logger.log(
        level,
        f"Dataverse call: {method} {path} -> {status} in {duration:.3f}s",
        extra={
            "metadata": {
                "method": method,
                "path": path,
                "status_code": status,
                "duration": duration,
                "success": success,
                **metadata,
            }
        },
    )
