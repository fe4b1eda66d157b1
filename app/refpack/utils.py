from __future__ import annotations

import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from urllib.parse import unquote, urlparse

from . import config

LOGGER = logging.getLogger("refpack")
_LOGGER_INITIALISED = False
_CURRENT_LOG_FILE: Path = config.LOG_FILE

UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')
MAX_TITLE_CHARS = 80


def _configure_logger(log_path: Path) -> None:
    """Configure the shared application logger to write to ``log_path``."""

    global _LOGGER_INITIALISED, _CURRENT_LOG_FILE

    ensure_dirs()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(threadName)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    LOGGER.setLevel(logging.INFO)
    LOGGER.addHandler(stream_handler)
    LOGGER.addHandler(file_handler)
    LOGGER.propagate = False

    _CURRENT_LOG_FILE = log_path
    _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    """Initialise the logger lazily using the default log file."""

    if _LOGGER_INITIALISED:
        return

    _configure_logger(config.LOG_FILE)


def setup_run_logger() -> Path:
    """Rotate to a fresh timestamped log file for the current batch."""

    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    log_path = config.LOG_DIR / f"batch_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def get_current_log_path() -> Path:
    """Return the path to the log file currently receiving log lines."""

    _ensure_logger()
    return _CURRENT_LOG_FILE


def ensure_dirs() -> None:
    """Ensure that the application's expected directory structure exists."""

    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active log file."""

    _ensure_logger()
    LOGGER.info(message)


def sanitize_filename_component(component: str | None) -> str:
    """Replace path-hostile characters in ``component`` with underscores."""

    if not component:
        return ""

    cleaned = "".join(ch if ord(ch) >= 32 else " " for ch in component)
    cleaned = UNSAFE_FILENAME_CHARS.sub("_", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip(" .")


def sanitize_title(title: str | None, reference_id: int) -> str:
    """Return a filename stem for a reference title.

    Falls back to ``Reference_<id>`` when nothing usable survives.
    """

    cleaned = sanitize_filename_component(title)
    if len(cleaned) > MAX_TITLE_CHARS:
        cleaned = cleaned[:MAX_TITLE_CHARS].rstrip(" .")
    return cleaned or f"Reference_{reference_id}"


def truncate_to_max_bytes(value: str, max_bytes: int) -> str:
    """Truncate *value* so its UTF-8 byte length does not exceed *max_bytes*."""

    encoded = value.encode("utf-8")
    if len(encoded) <= max_bytes:
        return value

    encoded = encoded[:max_bytes]
    while encoded and (encoded[-1] & 0b11000000) == 0b10000000:
        encoded = encoded[:-1]

    return encoded.decode("utf-8", "ignore")


def url_basename(url: str) -> str:
    """Return the decoded last path segment of ``url`` (may be empty)."""

    path = urlparse(url).path
    return unquote(path.rsplit("/", 1)[-1]) if path else ""


def redact_url(url: str) -> str:
    """Strip the query string so signed tokens never reach the logs."""

    try:
        parsed = urlparse(url)
        return parsed._replace(query="", fragment="").geturl()
    except ValueError:
        return url


__all__ = [
    "ensure_dirs",
    "setup_run_logger",
    "get_current_log_path",
    "log_line",
    "sanitize_filename_component",
    "sanitize_title",
    "truncate_to_max_bytes",
    "url_basename",
    "redact_url",
]
