"""Lethe data models."""

from lethe.models.config import (
    AutomataConfig,
    CacheConfig,
    DeduplicationConfig,
    HashingConfig,
    LetheConfig,
    ManualConfig,
    PurgeErrorsConfig,
    QuerySupersedeConfig,
    ReasoningCompressionConfig,
    StoreConfig,
    SupersedeWritesConfig,
    TruncationConfig,
)
from lethe.models.message import (
    FilePart,
    Message,
    MessagePart,
    MessageWithParts,
    ReasoningPart,
    SessionInfo,
    SnapshotPart,
    SourceUrlPart,
    StepFinishPart,
    StepStartPart,
    TextPart,
    ToolPart,
    ToolStatus,
)
from lethe.models.results import (
    AggregatedStats,
    OperationResult,
    PipelineResult,
    RankedCandidate,
    RestoreResult,
    StrategyResult,
    UpdateResult,
)
from lethe.models.state import (
    Cursors,
    DiscardRecord,
    PruneSets,
    SessionState,
    SessionStats,
    TodoItem,
    ToolParameterEntry,
)

__all__ = [
    # Config
    "AutomataConfig",
    "CacheConfig",
    "DeduplicationConfig",
    "HashingConfig",
    "LetheConfig",
    "ManualConfig",
    "PurgeErrorsConfig",
    "QuerySupersedeConfig",
    "ReasoningCompressionConfig",
    "StoreConfig",
    "SupersedeWritesConfig",
    "TruncationConfig",
    # Message parts
    "TextPart",
    "ReasoningPart",
    "ToolPart",
    "ToolStatus",
    "StepStartPart",
    "StepFinishPart",
    "FilePart",
    "SnapshotPart",
    "SourceUrlPart",
    "MessagePart",
    # Messages
    "Message",
    "MessageWithParts",
    "SessionInfo",
    # State
    "Cursors",
    "DiscardRecord",
    "PruneSets",
    "SessionState",
    "SessionStats",
    "TodoItem",
    "ToolParameterEntry",
    # Results
    "AggregatedStats",
    "OperationResult",
    "PipelineResult",
    "RankedCandidate",
    "RestoreResult",
    "StrategyResult",
    "UpdateResult",
]
