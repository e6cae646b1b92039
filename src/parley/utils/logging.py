"""Logging setup and per-send log adapters."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, MutableMapping

__all__ = ["setup_logging", "get_logger", "get_log_path", "SendLogAdapter", "send_logger"]

_DEFAULT_LOG_DIR = Path.home() / ".parley" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_DEBUG_VALUES = {"1", "true", "yes", "on", "debug"}
_CONFIGURED = False
_LOG_PATH: Path | None = None


class SendLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the guard token of the send that emitted it.

    Log lines from overlapping sends interleave; the prefix is what lets a
    reader tell a superseded send's late callbacks apart from its successor's.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        token = (self.extra or {}).get("token")
        label = token if token is not None else "No CallID"
        return f"[{label}] {msg}", kwargs


def send_logger(logger: logging.Logger, token: Any) -> SendLogAdapter:
    """Return an adapter tagging ``logger`` output with ``token``."""

    return SendLogAdapter(logger, {"token": token})


def setup_logging(
    level: int | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating file handler and optional console output.

    When ``level`` is omitted, ``PARLEY_DEBUG_LOGGING`` selects DEBUG, otherwise INFO.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    if level is None:
        level = logging.DEBUG if _env_debug_enabled() else logging.INFO

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "parley.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(level)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_transport_loggers(level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the log file configured by :func:`setup_logging`, if any."""

    return _LOG_PATH


def _env_debug_enabled() -> bool:
    return os.environ.get("PARLEY_DEBUG_LOGGING", "").strip().lower() in _DEBUG_VALUES


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("PARLEY_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _quiet_transport_loggers(root_level: int) -> None:
    # Streaming chunks make httpx/openai chatty at DEBUG.
    quiet_level = max(logging.WARNING, root_level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
