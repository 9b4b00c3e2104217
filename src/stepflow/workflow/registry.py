from __future__ import annotations

import threading
from typing import Protocol

from stepflow.workflow.errors import HandlerNotFoundError
from stepflow.workflow.state import WorkflowState

CancelToken = threading.Event


class StepHandler(Protocol):
    """The capability pair every step implementation provides.

    Both methods return a transition event name (e.g. ``"success"``) and signal
    failure by raising. ``dry_run`` must not produce external side effects; it
    only simulates the transition decision.

    Handlers should check ``cancel`` during long operations. The engine never
    interrupts a handler mid-call.
    """

    def execute(self, cancel: CancelToken, state: WorkflowState) -> str: ...

    def dry_run(self, cancel: CancelToken, state: WorkflowState) -> str: ...


class Registry:
    """Maps handler names to :class:`StepHandler` implementations.

    Registration happens once at startup. After :meth:`freeze` (or once the
    registry is shared between engines) it is read-only, and lookups are plain
    dict reads that are safe from any number of threads.
    """

    def __init__(self, handlers: dict[str, StepHandler] | None = None) -> None:
        self._handlers: dict[str, StepHandler] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(self, name: str, handler: StepHandler) -> None:
        if not name:
            raise ValueError("handler name must not be empty")
        if handler is None:
            raise ValueError(f"handler {name!r} must not be None")
        with self._lock:
            if self._frozen:
                raise RuntimeError(f"registry is frozen; cannot register {name!r}")
            if name in self._handlers:
                raise ValueError(f"handler {name!r} is already registered")
            self._handlers[name] = handler

    def freeze(self) -> Registry:
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> StepHandler:
        try:
            return self._handlers[name]
        except KeyError:
            raise HandlerNotFoundError(name) from None

    def has(self, name: str) -> bool:
        return name in self._handlers

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
