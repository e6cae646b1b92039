"""Message-send orchestration: transcript, guard, cancellation, pipeline, dispatch.

The compute strategies and the engine depend on :mod:`parley.ai`, which in
turn imports the error types from here, so they are resolved lazily.
"""

from importlib import import_module
from typing import Any

from .cancellation import CancellationController, CancellationScope
from .collaborators import (
    AuthContext,
    ChunkCallback,
    ComputeStrategy,
    PageReader,
    QueryOptimizer,
    Scraper,
    StreamingTransport,
    UpdateCallback,
    WebSearcher,
)
from .errors import (
    ConfigError,
    ErrorCode,
    OperationCancelledError,
    OptimizeError,
    PageReadError,
    ParleyError,
    ScrapeError,
    SearchError,
    StageError,
    TransportError,
)
from .guard import CompletionGuard
from .turn_store import TurnStore
from .types import (
    ApiMessage,
    ChatStatus,
    ContextFragment,
    GuardToken,
    SendState,
    SessionFlags,
    Turn,
    TurnStatus,
    TurnUpdate,
)
from .reconciler import CANCELLED_BY_USER_NOTICE, ReconcileResult, StreamReconciler, apply_update, merge_content
from .dispatch import DispatchRequest, DispatchSelector, build_payload, select_strategy

_LAZY_EXPORTS = {
    "MediumComputeStrategy": "compute",
    "HighComputeStrategy": "compute",
    "SendEngine": "engine",
}

__all__ = [
    # Core types
    "ApiMessage",
    "ChatStatus",
    "ContextFragment",
    "GuardToken",
    "SendState",
    "SessionFlags",
    "Turn",
    "TurnStatus",
    "TurnUpdate",
    # Errors
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
    # Collaborator contracts
    "AuthContext",
    "ChunkCallback",
    "UpdateCallback",
    "Scraper",
    "QueryOptimizer",
    "WebSearcher",
    "StreamingTransport",
    "ComputeStrategy",
    "PageReader",
    # Components
    "CompletionGuard",
    "CancellationController",
    "CancellationScope",
    "TurnStore",
    "CANCELLED_BY_USER_NOTICE",
    "ReconcileResult",
    "StreamReconciler",
    "apply_update",
    "merge_content",
    "DispatchRequest",
    "DispatchSelector",
    "build_payload",
    "select_strategy",
    "MediumComputeStrategy",
    "HighComputeStrategy",
    "SendEngine",
]


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(import_module(f"{__name__}.{module_name}"), name)
    globals()[name] = value
    return value
