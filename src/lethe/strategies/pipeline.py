"""Run the automatic strategies in their fixed order with best-effort composition."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from lethe.errors import StrategyError
from lethe.events.bus import EventBus, LetheEvent
from lethe.events.payloads import StrategyAppliedPayload, StrategyFailedPayload
from lethe.models.config import LetheConfig
from lethe.models.message import MessageWithParts
from lethe.models.results import PipelineResult
from lethe.models.state import SessionState
from lethe.strategies.base import Strategy, StrategyContext
from lethe.strategies.deduplication import Deduplication
from lethe.strategies.purge_errors import PurgeErrors
from lethe.strategies.reasoning_compression import ReasoningCompression
from lethe.strategies.supersede_queries import SupersedeQueries
from lethe.strategies.supersede_writes import SupersedeWrites
from lethe.strategies.truncation import Truncation
from lethe.tokens.estimator import TokenEstimator

_logger = structlog.get_logger("lethe.strategies")


def default_strategies() -> list[Strategy]:
    """The automatic strategies, in the order they must run."""
    return [
        Deduplication(),
        SupersedeWrites(),
        SupersedeQueries(),
        PurgeErrors(),
        Truncation(),
        ReasoningCompression(),
    ]


class StrategyPipeline:
    """
    Apply each enabled strategy once per update.

    Each strategy sees the prune sets and rewrites committed by the ones
    before it. A strategy that raises is logged, reported as failed and its
    staged changes are dropped; the rest still run.

    Example::

        pipeline = StrategyPipeline(config, estimator)
        result = pipeline.run(state, messages)
        print(result.tokens_saved)
    """

    def __init__(
        self,
        config: LetheConfig,
        estimator: TokenEstimator,
        event_bus: EventBus | None = None,
        strategies: Sequence[Strategy] | None = None,
    ) -> None:
        self._config = config
        self._estimator = estimator
        self._event_bus = event_bus or EventBus()
        self.strategies: list[Strategy] = (
            list(strategies) if strategies is not None else default_strategies()
        )

    def run(self, state: SessionState, messages: Sequence[MessageWithParts]) -> PipelineResult:
        result = PipelineResult()
        ctx = StrategyContext.build(state, self._config, messages, self._estimator)
        session_id = state.session_id or ""

        for strategy in self.strategies:
            if not strategy.enabled(self._config):
                continue
            editor = strategy.editor(ctx)
            try:
                strategy.apply(ctx, editor)
            except Exception as exc:
                error = StrategyError(strategy.name, exc)
                _logger.warning(
                    "strategy_failed",
                    session_id=session_id,
                    strategy=strategy.name,
                    error=str(error),
                    exc_info=True,
                )
                result.failed.append(strategy.name)
                failed: StrategyFailedPayload = {
                    "session_id": session_id,
                    "strategy": strategy.name,
                    "error": str(exc),
                }
                self._event_bus.publish(LetheEvent.STRATEGY_FAILED, dict(failed))
                continue

            outcome = editor.commit()
            result.results.append(outcome)
            if outcome.count == 0:
                continue
            _logger.info(
                "strategy_applied",
                session_id=session_id,
                strategy=strategy.name,
                action=str(outcome.action),
                count=outcome.count,
                tokens_saved=outcome.tokens_saved,
            )
            applied: StrategyAppliedPayload = {
                "session_id": session_id,
                "strategy": strategy.name,
                "action": str(outcome.action),
                "count": outcome.count,
                "tokens_saved": outcome.tokens_saved,
            }
            self._event_bus.publish(LetheEvent.STRATEGY_APPLIED, dict(applied))
        return result
