"""
Lethe: context pruning for long-running LLM agent sessions.

Primary entry point::

    from lethe import ContextEngine, LetheConfig

    engine = ContextEngine(host, LetheConfig())
    result = await engine.handle_update("ses_1")
    if result is not None:
        send_to_model(result.messages)
"""

from lethe.engine import ContextEngine, make_id
from lethe.errors import (
    AlreadyPrunedError,
    InvalidReasonError,
    InvalidTargetError,
    LetheError,
    MessageFetchTimeout,
    PersistenceError,
    ProtectedFilePathError,
    ProtectedToolError,
    StrategyError,
    UnknownHashError,
    ValidationError,
)
from lethe.events.bus import EventBus, LetheEvent
from lethe.host import HostClient, StaticHost
from lethe.models import (
    AggregatedStats,
    LetheConfig,
    Message,
    MessagePart,
    MessageWithParts,
    OperationResult,
    ReasoningPart,
    RestoreResult,
    SessionInfo,
    SessionState,
    TextPart,
    ToolPart,
    UpdateResult,
)
from lethe.operations.manual import DistillEntry
from lethe.store.persistence import StatePersistence
from lethe.tokens.estimator import TokenEstimator
from lethe.view import build_view

__version__ = "0.1.0"

__all__ = [
    # Core
    "ContextEngine",
    "make_id",
    "build_view",
    # Host
    "HostClient",
    "StaticHost",
    # Config
    "LetheConfig",
    # Models
    "Message",
    "MessagePart",
    "MessageWithParts",
    "ReasoningPart",
    "SessionInfo",
    "TextPart",
    "ToolPart",
    "SessionState",
    "DistillEntry",
    # Results
    "AggregatedStats",
    "OperationResult",
    "RestoreResult",
    "UpdateResult",
    # Events
    "EventBus",
    "LetheEvent",
    # Persistence
    "StatePersistence",
    # Tokens
    "TokenEstimator",
    # Errors
    "LetheError",
    "ValidationError",
    "UnknownHashError",
    "AlreadyPrunedError",
    "ProtectedToolError",
    "ProtectedFilePathError",
    "InvalidReasonError",
    "InvalidTargetError",
    "StrategyError",
    "PersistenceError",
    "MessageFetchTimeout",
]
