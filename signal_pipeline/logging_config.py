"""
Centralized logging configuration for the signal pipeline.

Modules log through logging.getLogger(__name__); entry points call
setup_logging() or configure_default_logging() once to attach handlers:
- coloured console output
- optional rotating log file
- optional JSON lines for log shippers
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"
_JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        color = self.COLORS.get(original)
        if color:
            record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = original


def _formats(json_format: bool) -> Tuple[str, str]:
    if json_format:
        return _JSON_FORMAT, "%Y-%m-%dT%H:%M:%S"
    return _TEXT_FORMAT, "%Y-%m-%d %H:%M:%S"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def setup_logging(
    name: Optional[str] = None,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    rotation: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Attach console and/or file handlers to a logger.

    Args:
        name: Logger name (defaults to root logger)
        level: Log level name; falls back to $LOG_LEVEL, then INFO
        log_file: Log file path; falls back to $LOG_FILE, None disables file logging
        console: Log to stdout
        json_format: One JSON object per line instead of text
        rotation: Rotate the log file at max_bytes
        max_bytes: Rotation size
        backup_count: Rotated files to keep

    Returns:
        The configured logger

    Example:
        >>> logger = setup_logging("signal_pipeline", level="DEBUG")
        >>> logger.info("Pipeline started")
    """
    logger = logging.getLogger(name)

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    if log_file is None:
        log_file = os.getenv("LOG_FILE")

    log_format, date_format = _formats(json_format)

    if console:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        formatter_cls = logging.Formatter if json_format else ColoredFormatter
        handler.setFormatter(formatter_cls(log_format, date_format))
        logger.addHandler(handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        if rotation:
            file_handler: logging.Handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        else:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format, date_format))
        logger.addHandler(file_handler)

    if name is not None:
        logger.propagate = False
    return logger


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    message: str = "An exception occurred",
    level: int = logging.ERROR,
) -> None:
    """Log an exception with its traceback."""
    logger.log(level, f"{message}: {exc}", exc_info=exc)


def configure_default_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure root logging from the environment.

    An explicit level (e.g. from a command-line flag) wins over LOG_LEVEL.

    Reads:
    - LOG_LEVEL: Logging level (default: INFO)
    - LOG_FILE: Log file path (default: no file)
    - LOG_JSON: JSON format (default: false)
    - LOG_CONSOLE: Console output (default: true)
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE")
    json_format = _env_flag("LOG_JSON", "false")
    console = _env_flag("LOG_CONSOLE", "true")

    root = setup_logging(level=level, log_file=log_file, console=console, json_format=json_format)
    logging.getLogger("signal_pipeline").info(
        f"Logging initialized: level={level} file={log_file} json={json_format} console={console}"
    )
    return root
