"""Structured logging setup for pipeline services."""

import logging
import json
import sys
from datetime import datetime, timezone

from ..config.settings import LoggingConfig


# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'message', 'asctime'
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""

        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Text formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        level = record.levelname

        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.COLORS['RESET']}"

        # Format: timestamp [LEVEL] logger: message
        formatted = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class ServiceContextFilter(logging.Filter):
    """Stamp every record with the emitting service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record):
        record.service = self.service_name
        return True


def setup_logging(config: LoggingConfig, service_name: str = "worker") -> None:
    """
    Setup logging configuration for the service.

    Args:
        config: Logging configuration
        service_name: Name of the service for log context
    """

    if config.format.lower() == 'json':
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    if config.output.lower() == 'stdout':
        handler = logging.StreamHandler(sys.stdout)
    elif config.output.lower() == 'stderr':
        handler = logging.StreamHandler(sys.stderr)
    else:
        # File output
        handler = logging.FileHandler(config.output)

    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Configure specific loggers to reduce noise
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={config.level}, format={config.format}, "
        f"output={config.output}, service={service_name}"
    )


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context."""

    extra = {f"ctx_{key}": value for key, value in context.items()}
    logger.log(level, message, extra=extra)


def log_error_with_context(logger: logging.Logger, error: Exception, operation: str, **context):
    """Log an error with its type and the operation that produced it."""

    log_with_context(
        logger,
        logging.ERROR,
        f"Error in {operation}: {error}",
        operation=operation,
        error_type=type(error).__name__,
        error_message=str(error),
        **context
    )
