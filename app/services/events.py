# =============================================================================
# Event Sink — Structured Observability Hook
# =============================================================================
#
# Orchestrators report what happened (verification started, verdict
# recorded, grounding skipped, ...) through this capability instead of
# writing log lines themselves. The default sink forwards to `logging`
# with the fields attached under `extra={"structured": ...}`, so a JSON
# formatter or log shipper can pick them up without parsing messages.
#
# Tests swap in a recording sink to assert on events.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger("app.events")

# Events that indicate degraded behaviour are logged at WARNING
_WARNING_EVENTS = {
    "verification.unavailable",
    "verification.discarded",
    "chat.grounding_failed",
    "chat.unavailable",
}


class EventSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """Default sink: one log record per event."""

    def emit(self, event: str, **fields: Any) -> None:
        level = logging.WARNING if event in _WARNING_EVENTS else logging.INFO
        logger.log(level, event, extra={"structured": {"event": event, **fields}})
