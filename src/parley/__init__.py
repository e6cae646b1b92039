"""Parley: message-send orchestration for an assistant side panel."""

__version__ = "0.1.0"
