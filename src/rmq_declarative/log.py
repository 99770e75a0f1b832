"""Loguru configuration for structured logging.

Library modules log through ``loguru.logger`` with keyword extras. Log lines
emitted while a delivery is processed carry ``consumer`` and
``delivery_tag`` extras, which both formats surface.
"""

import json
import logging
import sys
from datetime import timezone

from loguru import logger

from rmq_declarative.config import Settings, get_settings


def _set_log_context(record: dict) -> None:
    extra = record["extra"]
    context = ""
    if "consumer" in extra:
        context = f"[{extra['consumer']}"
        if "delivery_tag" in extra:
            context += f"#{extra['delivery_tag']}"
        context += "] "
    # Passed as a field so braces in consumer names stay literal
    extra["log_context"] = context


def text_formatter(record: dict) -> str:
    """Human-readable formatter for development.

    Includes consumer and delivery tag when available.
    """
    _set_log_context(record)
    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[log_context]}</cyan>"
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>\n{exception}"
    )


def file_formatter(record: dict) -> str:
    """Uncoloured variant of :func:`text_formatter` for the text file sink."""
    _set_log_context(record)
    return (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[log_context]}"
        "{name}:{function}:{line} - {message}\n{exception}"
    )


def json_sink(message) -> None:
    """Custom sink that outputs JSON formatted logs."""
    record = message.record

    log_entry = {
        "timestamp": record["time"].astimezone(timezone.utc).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
    }

    for key, value in record["extra"].items():
        # Skip complex objects that can't be serialized
        try:
            json.dumps(value)
            log_entry[key] = value
        except (TypeError, ValueError):
            log_entry[key] = str(value)

    if record["exception"] is not None:
        log_entry["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
            "traceback": record["exception"].traceback is not None,
        }

    sys.stdout.write(json.dumps(log_entry) + "\n")
    sys.stdout.flush()


class InterceptHandler(logging.Handler):
    """Handler to redirect standard library logging to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(settings: Settings | None = None) -> None:
    """Configure Loguru for the process.

    Sets up structured logging based on configuration:
    - JSON format for production (LOG_FORMAT=json)
    - Human-readable format for development (LOG_FORMAT=text)
    """
    settings = settings or get_settings()

    # Remove default handler
    logger.remove()

    if settings.log_format == "json":
        logger.add(
            json_sink,
            level=settings.log_level,
            backtrace=True,
            diagnose=False,  # Disable diagnose in production for security
        )
    else:
        logger.add(
            sys.stdout,
            format=text_formatter,
            level=settings.log_level,
            colorize=True,
            backtrace=True,
            diagnose=True,
        )

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
            level=settings.log_level,
            format=file_formatter if settings.log_format == "text" else "{message}",
            serialize=settings.log_format == "json",
            backtrace=True,
            diagnose=False,
        )

    if settings.log_intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logger.info(
        "Logging configured",
        level=settings.log_level,
        format=settings.log_format,
        log_file=settings.log_file,
    )
