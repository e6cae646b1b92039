"""Shared utility helpers."""

from .logging import SendLogAdapter, get_log_path, get_logger, send_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "get_log_path", "SendLogAdapter", "send_logger"]
