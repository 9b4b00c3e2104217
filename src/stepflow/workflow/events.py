"""Lifecycle notifications emitted by the engine.

The event sink is a :class:`queue.Queue` owned by the observer (dashboard,
logger). The engine only ever calls ``put_nowait`` on it: when the queue is
full the event is dropped and a warning is logged, so a slow consumer can never
stall the execution loop. The engine never closes or drains the sink.
"""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stepflow.workflow.state import utc_now

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    CHECKPOINT_SAVED = "checkpoint_saved"
    CHECKPOINT_FAILED = "checkpoint_failed"


class WorkflowEvent(BaseModel):
    """A transient notification about one run. Never persisted."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    run_id: str
    step: str = ""
    event: str = ""
    message: str = ""
    error: str | None = None
    duration: timedelta | None = None
    resumed: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


EventSink = queue.Queue  # queue.Queue[WorkflowEvent]


class EventEmitter:
    """Non-blocking writer to an optional, externally owned sink."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        return self._dropped

    def emit(self, event: WorkflowEvent) -> bool:
        """Offer ``event`` to the sink. Returns ``False`` if it was dropped."""

        if self.sink is None:
            return True
        try:
            self.sink.put_nowait(event)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.warning(
                "Event sink full, dropping event",
                extra={"run_id": event.run_id, "kind": event.kind.value, "step": event.step},
            )
            return False
        return True
