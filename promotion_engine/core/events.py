"""Event emitters for the promotion engine."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from promotion_engine.core.events_model import PromotionEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "run.started",
    "stage.started",
    "cutover.phase_changed",
    "cutover.completed",
    "cutover.failed",
    "gate.pending",
    "gate.resolved",
    "ledger.recorded",
    "run.finished",
}


def _validate(event: PromotionEvent) -> None:
    if event.event_type not in ALLOWED_EVENTS:
        raise ValueError(f"Invalid event type: {event.event_type}")


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[PromotionEvent]) -> None:
        """Emit one or more events."""
        pass


class LoggingEventEmitter(EventEmitter):
    """Logs every event."""

    def emit(self, events: Iterable[PromotionEvent]) -> None:
        for event in events:
            _validate(event)
            logger.info(f"[EVENT] {event.event_type} | run={event.run_id} | {event.metadata}")


class RecordingEventEmitter(EventEmitter):
    """Keeps events in memory for inspection."""

    def __init__(self):
        self.events: List[PromotionEvent] = []

    def emit(self, events: Iterable[PromotionEvent]) -> None:
        for event in events:
            _validate(event)
            self.events.append(event)

    def of_type(self, event_type: str) -> List[PromotionEvent]:
        return [e for e in self.events if e.event_type == event_type]


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[PromotionEvent]) -> None:
        pass
