"""Structured logging setup shared by the API server and the CLI."""

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

# Record attributes that carry request context into structured output
CONTEXT_ATTRIBUTES = ("conversation_id", "request_id", "intent_type")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attribute in CONTEXT_ATTRIBUTES:
            value = getattr(record, attribute, None)
            if value is not None:
                log_data[attribute] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class SimpleFormatter(logging.Formatter):
    """Console formatter with colored level names."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as `[LEVEL] logger: message`.

        Args:
            record: Log record to format

        Returns:
            Formatted log string
        """
        level = record.levelname
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        formatted = f"[{level}] {record.name}: {record.getMessage()}"

        conversation_id = getattr(record, "conversation_id", None)
        if conversation_id:
            formatted += f" (conversation={conversation_id})"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    structured: bool = False,
    quiet: bool = False,
) -> None:
    """Set up application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for JSON file logging
        structured: Use structured JSON logging on the console
        quiet: Only show warnings and errors from engine modules (CLI mode)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr if quiet else sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    if structured:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(SimpleFormatter(use_color=sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())  # Files are always JSON
        root_logger.addHandler(file_handler)

    # Third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if quiet:
        logging.getLogger("nlquery").setLevel(logging.WARNING)
        logging.getLogger("__main__").setLevel(logging.WARNING)
    else:
        root_logger.info(f"Logging initialized at {log_level} level")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
