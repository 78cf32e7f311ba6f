"""Typed event -> handler registry.

Built explicitly at startup: each EventKind maps to exactly one async
handler. dispatch() awaits the handler and returns whatever it returns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.suitecrm_sync.events.schemas import EventKind, SurveyEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Any], Awaitable[Any]]


class EventRegistry:
    """Maps event kinds to their handlers."""

    def __init__(self) -> None:
        self._handlers: dict[EventKind, EventHandler] = {}

    def register(self, kind: EventKind, handler: EventHandler) -> None:
        """Bind ``handler`` to ``kind``, replacing any previous binding."""
        if kind in self._handlers:
            logger.info("events.handler_replaced", kind=kind.value)
        self._handlers[kind] = handler

    def has_handler(self, kind: EventKind) -> bool:
        return kind in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(self, event: SurveyEvent) -> Any:
        """Invoke the handler registered for ``event.kind``.

        Raises:
            KeyError: If no handler is registered for the event's kind.
        """
        kind = event.kind
        handler = self._handlers.get(kind)
        if handler is None:
            raise KeyError(f"No handler registered for {kind.value}")
        logger.debug("events.dispatch", kind=kind.value, survey_id=event.survey_id)
        return await handler(event)
