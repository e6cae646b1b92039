"""Error taxonomy for the send pipeline.

Every failure the engine reasons about is one of these classes. Collaborator
implementations wrap library exceptions (``httpx.HTTPError``,
``openai.APIError``) at their boundary so the core only sees this hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Machine-readable identifiers carried by :class:`ParleyError`."""

    CONFIG = "config_error"
    TRANSPORT = "transport_error"
    CANCELLED = "operation_cancelled"
    STAGE = "stage_error"
    SCRAPE = "scrape_error"
    OPTIMIZE = "optimize_error"
    PAGE_READ = "page_read_error"
    SEARCH = "search_error"


@dataclass(eq=False)
class ParleyError(Exception):
    """Base exception for all send pipeline failures.

    Attributes:
        message: Human-readable description, surfaced verbatim in error turns.
        error_code: Machine-readable error identifier.
        details: Additional structured information for logs.
    """

    message: str = ""
    error_code: str = "parley_error"
    details: dict[str, Any] = field(default_factory=dict)

    # Whether the engine ends the send when this error escapes a stage.
    fatal: ClassVar[bool] = True

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class ConfigError(ParleyError):
    """Missing model, unknown backend host or otherwise unusable settings."""

    error_code: str = field(default=ErrorCode.CONFIG)


@dataclass(eq=False)
class TransportError(ParleyError):
    """Stream or network failure while talking to a model backend."""

    error_code: str = field(default=ErrorCode.TRANSPORT)
    status_code: int | None = None


@dataclass(eq=False)
class OperationCancelledError(ParleyError):
    """The send was stopped by the user or superseded by a newer send."""

    message: str = "Operation cancelled"
    error_code: str = field(default=ErrorCode.CANCELLED)

    fatal: ClassVar[bool] = False


@dataclass(eq=False)
class StageError(ParleyError):
    """A pre-processing stage failed; the pipeline recovers locally."""

    error_code: str = field(default=ErrorCode.STAGE)

    fatal: ClassVar[bool] = False


@dataclass(eq=False)
class ScrapeError(StageError):
    """Fetching or extracting a URL mentioned in the message failed."""

    error_code: str = field(default=ErrorCode.SCRAPE)
    url: str | None = None


@dataclass(eq=False)
class OptimizeError(StageError):
    """The model could not rewrite the search query."""

    error_code: str = field(default=ErrorCode.OPTIMIZE)


@dataclass(eq=False)
class PageReadError(StageError):
    """Reading the active browser tab (or its PDF) failed."""

    error_code: str = field(default=ErrorCode.PAGE_READ)


@dataclass(eq=False)
class SearchError(ParleyError):
    """A web search failed for a reason other than cancellation.

    Unlike other stage errors this ends the send: in web mode the search
    result is the reason the user asked.
    """

    error_code: str = field(default=ErrorCode.SEARCH)
    provider: str | None = None


__all__ = [
    "ErrorCode",
    "ParleyError",
    "ConfigError",
    "TransportError",
    "OperationCancelledError",
    "StageError",
    "ScrapeError",
    "OptimizeError",
    "PageReadError",
    "SearchError",
]
