"""Root and uvicorn logger wiring: console always, rotating file when LOG_FILE is set."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from livesync.config import get_settings

_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
_DATE_FORMAT = "%H:%M:%S"


def _build_file_handler(log_path: str) -> RotatingFileHandler:
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FORMAT, _DATE_FORMAT))
    file_handler.name = "livesync_file"
    return file_handler


def _build_stream_handler() -> logging.StreamHandler:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(_FORMAT, _DATE_FORMAT))
    stream_handler.name = "livesync_stream"
    return stream_handler


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    logger.handlers = []
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False


def configure_logging(level: str | None = None, log_file: str | None = None) -> str | None:
    """Install handlers once at process start. Returns the log file path, if any."""
    settings = get_settings()
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    log_path = log_file if log_file is not None else settings.LOG_FILE

    handlers: list[logging.Handler] = [_build_stream_handler()]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(_build_file_handler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(level_name)
    _replace_handlers(root_logger, handlers)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.setLevel(level_name)
        _replace_handlers(uv_logger, handlers)

    root_logger.info("Logging initialized (level=%s, file=%s)", level_name, log_path or "-")
    return log_path or None
