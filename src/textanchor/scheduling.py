"""Frame schedulers for the virtual renderer.

The renderer only needs three things from its host: a millisecond clock, a
way to run a callback on the next frame, and a way to cancel that request.
``ManualFrameScheduler`` drives frames explicitly (headless hosts, scripts,
tests); ``AsyncioFrameScheduler`` runs them off an asyncio event loop.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from typing import Protocol

log = logging.getLogger(__name__)

type FrameCallback = Callable[[float], None]


class FrameScheduler(Protocol):
    def now(self) -> float: ...

    def request_frame(self, callback: FrameCallback) -> int: ...

    def cancel_frame(self, handle: int) -> None: ...


class ManualFrameScheduler:
    """Deterministic scheduler with a virtual clock.

    ``step_ms`` advances the clock on every :meth:`now` read, which makes
    time-budgeted loops observable without real time passing.
    """

    def __init__(self, *, start_ms: float = 0.0, step_ms: float = 0.0, frame_ms: float = 16.0) -> None:
        self._clock = start_ms
        self.step_ms = step_ms
        self.frame_ms = frame_ms
        self._ids = itertools.count(1)
        self._pending: dict[int, FrameCallback] = {}
        self.frames_run = 0

    def now(self) -> float:
        current = self._clock
        self._clock += self.step_ms
        return current

    def advance(self, ms: float) -> None:
        self._clock += ms

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run_frame(self) -> int:
        """Advance one frame and run the callbacks queued before it began."""
        self._clock += self.frame_ms
        due = list(self._pending.items())
        self._pending.clear()
        timestamp = self._clock
        for _handle, callback in due:
            callback(timestamp)
        self.frames_run += 1
        return len(due)

    def drain(self, max_frames: int = 1000) -> int:
        """Run frames until nothing is pending; returns frames run."""
        frames = 0
        while self._pending and frames < max_frames:
            self.run_frame()
            frames += 1
        if self._pending:
            log.warning("drain stopped after %d frames with %d pending", frames, len(self._pending))
        return frames


class AsyncioFrameScheduler:
    """Run frame callbacks every ``frame_ms`` on an asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, *, frame_ms: float = 16.0) -> None:
        self.loop = loop or asyncio.get_running_loop()
        self.frame_ms = frame_ms
        self._ids = itertools.count(1)
        self._timers: dict[int, asyncio.TimerHandle] = {}

    def now(self) -> float:
        return self.loop.time() * 1000.0

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._ids)

        def fire() -> None:
            self._timers.pop(handle, None)
            callback(self.now())

        self._timers[handle] = self.loop.call_later(self.frame_ms / 1000.0, fire)
        return handle

    def cancel_frame(self, handle: int) -> None:
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()
