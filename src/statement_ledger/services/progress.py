"""
Progress events for preview and commit.

The orchestrator publishes ProgressEvents on a ProgressChannel. Callers either
drain the channel after (or between) calls, or subscribe a listener to see
events as they are published. Events keep publication order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ProgressStep(str, Enum):
    """Named phases of the import pipeline."""

    PARSING = "parsing"
    CHECKING_DUPLICATES = "checking_duplicates"
    PROCESSING = "processing"
    IMPORTING = "importing"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update. current/total are set while importing."""

    step: ProgressStep
    progress: int | None = None  # 0-100
    current: int | None = None
    total: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"step": self.step.value}
        if self.progress is not None:
            data["progress"] = self.progress
        if self.current is not None:
            data["current"] = self.current
        if self.total is not None:
            data["total"] = self.total
        return data


ProgressListener = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Ordered buffer of progress events with optional listeners."""

    def __init__(self, listener: ProgressListener | None = None):
        self._events: list[ProgressEvent] = []
        self._listeners: list[ProgressListener] = []
        self._lock = threading.Lock()
        if listener is not None:
            self.subscribe(listener)

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def publish(self, event: ProgressEvent) -> None:
        """Append an event and hand it to every listener.

        A failing listener is logged and does not interrupt the pipeline.
        """
        with self._lock:
            self._events.append(event)
        logger.debug("Progress: %s", event.to_dict())
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for %s", event.step.value)

    def emit(
        self,
        step: ProgressStep,
        progress: int | None = None,
        current: int | None = None,
        total: int | None = None,
    ) -> ProgressEvent:
        event = ProgressEvent(step=step, progress=progress, current=current, total=total)
        self.publish(event)
        return event

    @property
    def events(self) -> list[ProgressEvent]:
        """Snapshot of buffered events."""
        with self._lock:
            return list(self._events)

    def drain(self) -> Iterator[ProgressEvent]:
        """Yield and remove all buffered events, oldest first."""
        with self._lock:
            pending, self._events = self._events, []
        yield from pending

    def steps(self) -> list[ProgressStep]:
        return [event.step for event in self.events]

    def __iter__(self) -> Iterator[ProgressEvent]:
        return iter(self.events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
