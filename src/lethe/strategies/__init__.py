"""Automatic pruning strategies."""

from lethe.strategies.base import (
    OmissionEditor,
    OmissionStrategy,
    RewriteEditor,
    RewriteStrategy,
    Strategy,
    StrategyAction,
    StrategyContext,
)
from lethe.strategies.deduplication import Deduplication
from lethe.strategies.pipeline import StrategyPipeline, default_strategies
from lethe.strategies.purge_errors import PurgeErrors
from lethe.strategies.reasoning_compression import ReasoningCompression
from lethe.strategies.supersede_queries import SupersedeQueries
from lethe.strategies.supersede_writes import SupersedeWrites
from lethe.strategies.truncation import Truncation

__all__ = [
    "Deduplication",
    "OmissionEditor",
    "OmissionStrategy",
    "PurgeErrors",
    "ReasoningCompression",
    "RewriteEditor",
    "RewriteStrategy",
    "Strategy",
    "StrategyAction",
    "StrategyContext",
    "StrategyPipeline",
    "SupersedeQueries",
    "SupersedeWrites",
    "Truncation",
    "default_strategies",
]
