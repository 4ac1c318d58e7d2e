"""Console logging with optional rotating file output."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 10


def _parse_int(value, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def configure_logging(service_name: str) -> None:
    """Configure the root logger; a file handler is added only when LOG_DIR is set."""
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers = [logging.StreamHandler()]
    file_error = None

    log_dir = os.getenv("LOG_DIR", "").strip()
    if log_dir:
        file_name = os.getenv("LOG_FILE_NAME", f"{service_name}.log").strip()
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    Path(log_dir) / file_name,
                    maxBytes=_parse_int(os.getenv("LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
                    backupCount=_parse_int(os.getenv("LOG_BACKUP_COUNT"), DEFAULT_LOG_BACKUP_COUNT),
                    encoding="utf-8",
                )
            )
        except OSError as error:
            file_error = error

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    if file_error is not None:
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", log_dir, file_error)
