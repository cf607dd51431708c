"""
Structured logging configuration using loguru.
Provides consistent logging across the application.
"""
import sys
import json
from loguru import logger
from typing import Any, Dict

from friendmap.config import settings


def serialize_record(record: Dict[str, Any]) -> str:
    """Serialize log record to JSON format."""
    subset = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    # Add extra fields if present
    if record.get("extra"):
        subset["extra"] = {
            key: str(value) for key, value in record["extra"].items() if key != "serialized"
        }

    # Add exception if present
    if record.get("exception"):
        subset["exception"] = str(record["exception"])

    return json.dumps(subset)


def _json_format(record: Dict[str, Any]) -> str:
    record["extra"]["serialized"] = serialize_record(record)
    return "{extra[serialized]}\n"


def setup_logger() -> None:
    """Configure loguru logger with structured output."""

    # Remove default handler
    logger.remove()

    if settings.LOG_FORMAT == "json":
        logger.add(sys.stderr, level=settings.LOG_LEVEL, format=_json_format)
    else:
        logger.add(
            sys.stderr,
            level=settings.LOG_LEVEL,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        )

    # Optional file sink
    if settings.LOG_FILE is not None:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.LOG_FILE,
            rotation="100 MB",
            retention="10 days",
            level=settings.LOG_LEVEL,
            format=_json_format if settings.LOG_FORMAT == "json" else "{time} | {level} | {name}:{function}:{line} - {message}",
        )

    logger.debug("Logger initialized", log_level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)


# Initialize logger on import
setup_logger()

# Export configured logger
__all__ = ["logger"]
