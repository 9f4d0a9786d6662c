"""Engine activity state machine.

``IDLE -> RESOLVING -> IDLE`` and ``IDLE -> PAINTING -> IDLE`` are the only
transitions. A host that watches the tree for changes should ignore (or
debounce) mutations observed while :attr:`EngineStatus.is_mutating` is
true; those are the engine's own edits. Any attempt to start a second
activity while one is running raises :class:`ReentrantCallError`.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import StrEnum

log = logging.getLogger(__name__)


class EngineState(StrEnum):
    IDLE = "idle"
    RESOLVING = "resolving"
    PAINTING = "painting"


class ReentrantCallError(RuntimeError):
    def __init__(self, current: EngineState, requested: EngineState) -> None:
        super().__init__(f"cannot enter {requested} while {current}")
        self.current = current
        self.requested = requested


type StateListener = Callable[[EngineState, EngineState], None]


class EngineStatus:
    def __init__(self) -> None:
        self._state = EngineState.IDLE
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is not EngineState.IDLE

    @property
    def is_mutating(self) -> bool:
        return self._state is EngineState.PAINTING

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(old, new)``; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set(self, new: EngineState) -> None:
        old, self._state = self._state, new
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                log.exception("engine state listener failed")

    @contextmanager
    def activity(self, state: EngineState) -> Iterator[None]:
        if state is EngineState.IDLE:
            raise ValueError("IDLE is not an activity")
        if self._state is not EngineState.IDLE:
            raise ReentrantCallError(self._state, state)
        self._set(state)
        try:
            yield
        finally:
            self._set(EngineState.IDLE)
