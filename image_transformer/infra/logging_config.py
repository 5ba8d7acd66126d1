import logging
import sys
import json
from datetime import datetime, timezone

ACCESS_LOG_FIELDS = (
    "method", "path", "status_code", "duration_ms",
    "content_type", "content_length", "error_type",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Pipeline context
        if hasattr(record, "request_id"):
            log_data["request_id"] = record.request_id
        if hasattr(record, "stage"):
            log_data["stage"] = record.stage
        if hasattr(record, "endpoint"):
            log_data["endpoint"] = record.endpoint

        # Access log
        for key in ACCESS_LOG_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []
        if hasattr(record, "request_id"):
            context_parts.append(f"req={str(record.request_id)[:8]}")
        if hasattr(record, "endpoint"):
            context_parts.append(f"endpoint={record.endpoint}")
        if hasattr(record, "stage"):
            context_parts.append(f"stage={record.stage}")

        context = f" [{' '.join(context_parts)}]" if context_parts else ""

        line = (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name}{context} - {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure application logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format (for production)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Add request context to log records"""

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            endpoint: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "request_id": request_id,
                "endpoint": endpoint,
            }.items() if v is not None
        }

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)


def mask_url(url: str) -> str:
    """Reduce a URL to scheme and host for logging.

    Example: ``mask_url("https://cdn.example.com/a/b.jpg?sig=x")`` →
    ``"https://cdn.example.com/…"``

    Query strings on image URLs often carry signatures or tokens.
    """
    from urllib.parse import urlsplit

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "<invalid-url>"
    return f"{parts.scheme}://{parts.netloc}/…"
