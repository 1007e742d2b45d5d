"""Centralized logging setup: console + optional rotating file, with token redaction."""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import clean_env, parse_bool, parse_int

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 10

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]{8,}", re.IGNORECASE)
_ACCESS_TOKEN_RE = re.compile(r"\b((?:APP_USR|TEST)-[0-9A-Za-z\-]{4})[0-9A-Za-z\-]+")


class RedactTokensFilter(logging.Filter):
    """Mask bearer / Mercado Pago access tokens that slip into log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        redacted = _BEARER_RE.sub(r"\1***", message)
        redacted = _ACCESS_TOKEN_RE.sub(r"\1***", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(service_name: str) -> None:
    """Configure root logger for console + rotating file output."""
    level_name = clean_env(os.getenv("LOG_LEVEL"), DEFAULT_LOG_LEVEL).upper() or DEFAULT_LOG_LEVEL
    level = getattr(logging, level_name, logging.INFO)
    redact = RedactTokensFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if parse_bool(os.getenv("LOG_TO_FILE"), default=True):
        log_dir = clean_env(os.getenv("LOG_DIR"), DEFAULT_LOG_DIR) or DEFAULT_LOG_DIR
        log_file_name = clean_env(os.getenv("LOG_FILE_NAME"), f"{service_name}.log") or f"{service_name}.log"
        max_bytes = parse_int(os.getenv("LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES)
        backup_count = parse_int(os.getenv("LOG_BACKUP_COUNT"), DEFAULT_LOG_BACKUP_COUNT)
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    Path(log_dir) / log_file_name,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        except Exception as error:
            # Keep service alive even if file logging target is unavailable.
            logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, force=True)
            for handler in logging.getLogger().handlers:
                handler.addFilter(redact)
            logging.getLogger(__name__).warning(
                "File logging disabled: failed to initialize %s (%s)",
                log_dir,
                error,
            )
            return

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redact)
        root_logger.addHandler(handler)

    # aiohttp access log is noisy for webhook bursts.
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))
