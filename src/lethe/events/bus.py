"""In-process pub/sub event bus for Lethe state and pruning events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["LetheEvent", dict[str, Any]], None | Awaitable[None]]


class LetheEvent(StrEnum):
    """All event types published by Lethe components.

    Typed payload definitions for each event live in
    :mod:`lethe.events.payloads`.

    **Payload schemas by event:**

    ``SESSION_INITIALIZED``
        :class:`~lethe.events.payloads.SessionInitializedPayload`

    ``COMPACTION_DETECTED``
        :class:`~lethe.events.payloads.CompactionDetectedPayload`

    ``STRATEGY_APPLIED``, ``STRATEGY_FAILED``
        :class:`~lethe.events.payloads.StrategyAppliedPayload`,
        :class:`~lethe.events.payloads.StrategyFailedPayload`

    ``UNITS_DISCARDED``, ``UNITS_DISTILLED``, ``UNITS_RESTORED``
        :class:`~lethe.events.payloads.UnitsChangedPayload`

    ``STATE_SAVED``
        :class:`~lethe.events.payloads.StateSavedPayload`

    ``UPDATE_ABANDONED``
        :class:`~lethe.events.payloads.UpdateAbandonedPayload`
    """

    # Session lifecycle
    SESSION_INITIALIZED = "session.initialized"
    COMPACTION_DETECTED = "compaction.detected"

    # Automatic strategies
    STRATEGY_APPLIED = "strategy.applied"
    STRATEGY_FAILED = "strategy.failed"

    # Manual operations
    UNITS_DISCARDED = "units.discarded"
    UNITS_DISTILLED = "units.distilled"
    UNITS_RESTORED = "units.restored"

    # Persistence / update loop
    STATE_SAVED = "state.saved"
    UPDATE_ABANDONED = "update.abandoned"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_applied(event, payload):
            print(f"{payload['strategy']} pruned {payload['count']} units")

        bus.subscribe(LetheEvent.STRATEGY_APPLIED, on_applied)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[LetheEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("lethe.events")

    def subscribe(self, event: LetheEvent, handler: Handler) -> None:
        """Register a handler for a specific event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: LetheEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: LetheEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks; outside a running
        loop their coroutine is closed unawaited.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    self._schedule(event, handler, result)
            except Exception as exc:
                self._log_failure(event, handler, exc)

    def _schedule(self, event: LetheEvent, handler: Handler, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._log_failure(event, handler, t.exception())

        task.add_done_callback(_done)

    def _log_failure(self, event: LetheEvent, handler: Handler, exc: BaseException | None) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
