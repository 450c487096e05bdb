"""
Logging configuration for the SkyGuide chat service.

Provides:
- ColorFormatter: ANSI color-coded log output
- setup_logging(): configure the root logger
- log_message_in / log_message_out / log_provider: chat pathway helpers

Usage:
    from logging_config import setup_logging, log_message_in
    setup_logging()
    logger = logging.getLogger(__name__)
    log_message_in(logger, "What is the reserve call-out policy?", stream=True)
"""
import logging
import sys
from typing import Optional

COLORS = {
    "RESET": "\033[0m",
    "BOLD": "\033[1m",
    "DIM": "\033[2m",
    "MSG_IN": "\033[96m",  # cyan
    "MSG_OUT": "\033[92m",  # green
    "PROVIDER": "\033[94m",  # blue
    "ERROR": "\033[91m",
    "WARN": "\033[33m",
    "DEBUG": "\033[90m",
}


class ColorFormatter(logging.Formatter):
    """Formatter with per-level colors."""

    LEVEL_COLORS = {
        logging.DEBUG: COLORS["DEBUG"],
        logging.INFO: COLORS["RESET"],
        logging.WARNING: COLORS["WARN"],
        logging.ERROR: COLORS["ERROR"],
        logging.CRITICAL: COLORS["ERROR"] + COLORS["BOLD"],
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, COLORS["RESET"])
        timestamp = self.formatTime(record, "%H:%M:%S")
        level = record.levelname[:4]

        formatted = (
            f"{COLORS['DIM']}{timestamp}{COLORS['RESET']} "
            f"[{color}{level}{COLORS['RESET']}] "
            f"{COLORS['DIM']}{record.name}{COLORS['RESET']} "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure colored logging for the application."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


def log_message_in(logger: logging.Logger, message: str, **context) -> None:
    """Log an incoming user message with a short preview."""
    preview = message[:80] + "..." if len(message) > 80 else message
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    logger.info(f"{COLORS['MSG_IN']}>>> MESSAGE{COLORS['RESET']} {preview} [{ctx}]")


def log_message_out(
    logger: logging.Logger,
    conversation_id: Optional[str] = None,
    length: int = 0,
    has_reference: bool = False,
) -> None:
    """Log an outgoing assistant response."""
    logger.info(
        f"{COLORS['MSG_OUT']}<<< RESPONSE{COLORS['RESET']} "
        f"conversation={conversation_id} chars={length} reference={has_reference}"
    )


def log_provider(logger: logging.Logger, event: str, **context) -> None:
    """Log a call to the assistant provider.

    Args:
        logger: Logger instance
        event: Short event name (create_thread, post_message, run, ...)
        **context: Identifiers worth correlating (thread, run, attempt)
    """
    ctx = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    logger.info(f"{COLORS['PROVIDER']}[PROVIDER]{COLORS['RESET']} {event} {ctx}".rstrip())
