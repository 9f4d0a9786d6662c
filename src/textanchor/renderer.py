"""Viewport-driven incremental painting of many annotations.

Annotations are ordered by a coarse estimate of their vertical position,
derived from ``Position.text_offset`` with a fixed line-height /
characters-per-line model (no layout is consulted). For a viewport the
renderer keeps painted exactly the annotations whose estimate falls in the
viewport expanded by ``buffer_factor`` viewport heights above and below.

Work is spread across frames:

- ``render`` calls closer together than ``throttle_ms`` collapse into one
  deferred render on the next frame, using the latest viewport;
- evictions happen immediately and in full;
- new annotations are queued and painted in batches, each bounded by
  ``frame_budget_ms`` and ``batch_size``; leftovers continue next frame.

Each annotation is resolved and painted atomically; paint order across
annotations is unspecified.
"""
from __future__ import annotations

import logging
from bisect import bisect_left, bisect_right
from collections.abc import Callable
from dataclasses import dataclass

from textanchor.anchor_types import Annotation
from textanchor.config import EngineConfig
from textanchor.painter import SpanPainter
from textanchor.resolver import AnchorResolver
from textanchor.scheduling import FrameScheduler
from textanchor.status import EngineState, EngineStatus, ReentrantCallError
from textanchor.tree import Node

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Viewport:
    scroll_top: float
    viewport_height: float
    content_height: float = 0.0


@dataclass(frozen=True, slots=True)
class VisibleRange:
    start_index: int
    end_index: int  # exclusive

    def __len__(self) -> int:
        return max(0, self.end_index - self.start_index)


@dataclass(frozen=True, slots=True)
class RendererStats:
    total: int
    painted: int
    queued: int
    failed: int
    last_render_ms: float


type ViewportSource = Callable[[], Viewport]


class VirtualAnnotationRenderer:
    def __init__(
        self,
        container: Node,
        *,
        resolver: AnchorResolver,
        painter: SpanPainter,
        scheduler: FrameScheduler,
        status: EngineStatus | None = None,
        config: EngineConfig | None = None,
        viewport_source: ViewportSource | None = None,
    ) -> None:
        self.container: Node | None = container
        self.resolver = resolver
        self.painter = painter
        self.scheduler = scheduler
        self.status = status or EngineStatus()
        self.config = config or EngineConfig()
        self.viewport_source = viewport_source

        self._sorted: list[Annotation] = []
        self._positions: list[float] = []
        self._painted: set[str] = set()
        self._queue: list[str] = []
        self._failed: set[str] = set()
        self._last_render = float("-inf")
        self._pending_viewport: Viewport | None = None
        self._throttle_handle: int | None = None
        self._batch_handle: int | None = None
        self._destroyed = False

    # -- model -------------------------------------------------------------

    def estimate_position(self, annotation: Annotation) -> float:
        line = annotation.position.text_offset // self.config.chars_per_line
        return line * self.config.line_height_px

    def set_annotations(self, annotations: list[Annotation]) -> None:
        """Replace the annotation set; painted annotations no longer in it are removed."""
        self._sorted = sorted(annotations, key=lambda a: a.position.text_offset)
        self._positions = [self.estimate_position(a) for a in self._sorted]
        keep = {a.id for a in self._sorted}
        for annotation_id in sorted(self._painted - keep):
            self._unpaint(annotation_id)
        self._queue = [i for i in self._queue if i in keep]
        self._failed.clear()

    def invalidate(self) -> None:
        """Forget paint failures so the next render retries them."""
        self._failed.clear()

    @property
    def painted_ids(self) -> frozenset[str]:
        return frozenset(self._painted)

    @property
    def queued_ids(self) -> tuple[str, ...]:
        return tuple(self._queue)

    def compute_visible_range(self, viewport: Viewport) -> VisibleRange:
        buffer = viewport.viewport_height * self.config.buffer_factor
        top = max(0.0, viewport.scroll_top - buffer)
        bottom = viewport.scroll_top + viewport.viewport_height + buffer
        return VisibleRange(
            start_index=bisect_left(self._positions, top),
            end_index=bisect_right(self._positions, bottom),
        )

    # -- rendering ---------------------------------------------------------

    def render(self, viewport: Viewport | None = None) -> None:
        if self._destroyed or self.container is None:
            return
        if viewport is None:
            if self.viewport_source is None:
                raise ValueError("render() needs a viewport or a viewport_source")
            viewport = self.viewport_source()

        now = self.scheduler.now()
        if now - self._last_render < self.config.throttle_ms:
            self._pending_viewport = viewport
            if self._throttle_handle is None:
                self._throttle_handle = self.scheduler.request_frame(self._run_deferred)
            return
        if self._throttle_handle is not None:
            self.scheduler.cancel_frame(self._throttle_handle)
            self._throttle_handle = None
        self._pending_viewport = None
        self._last_render = now

        visible = self.compute_visible_range(viewport)
        wanted = [a.id for a in self._sorted[visible.start_index:visible.end_index]]
        wanted_set = set(wanted)

        for annotation_id in sorted(self._painted - wanted_set):
            self._unpaint(annotation_id)
        self._queue = [i for i in self._queue if i in wanted_set]
        queued = set(self._queue)
        for annotation_id in wanted:
            if annotation_id in self._painted or annotation_id in queued or annotation_id in self._failed:
                continue
            self._queue.append(annotation_id)
            queued.add(annotation_id)

        if self._queue and self._batch_handle is None:
            self._batch_handle = self.scheduler.request_frame(self._run_batch)

    def _run_deferred(self, _timestamp: float) -> None:
        self._throttle_handle = None
        viewport, self._pending_viewport = self._pending_viewport, None
        if viewport is not None:
            self._last_render = float("-inf")
            self.render(viewport)

    def _run_batch(self, _timestamp: float) -> None:
        self._batch_handle = None
        if self._destroyed or self.container is None:
            return
        if self.status.is_busy:
            # Another engine activity holds the tree; try again next frame.
            self._batch_handle = self.scheduler.request_frame(self._run_batch)
            return
        by_id = {a.id: a for a in self._sorted}
        started = self.scheduler.now()
        done = 0
        while self._queue and done < self.config.batch_size:
            if done and self.scheduler.now() - started >= self.config.frame_budget_ms:
                break
            annotation_id = self._queue.pop(0)
            annotation = by_id.get(annotation_id)
            if annotation is not None and not self._paint(annotation):
                break
            done += 1
        if self._queue:
            self._batch_handle = self.scheduler.request_frame(self._run_batch)

    def _paint(self, annotation: Annotation) -> bool:
        """Paint one annotation. False when the engine refused the call."""
        container = self.container
        try:
            with self.status.activity(EngineState.RESOLVING):
                span = self.resolver.resolve_annotation(annotation, container)
            if span is None:
                self._failed.add(annotation.id)
                return True
            with self.status.activity(EngineState.PAINTING):
                handle = self.painter.paint(
                    span, container, annotation.id, annotation.style.color,
                    note_count=len(annotation.notes),
                )
        except ReentrantCallError as exc:
            log.warning("skipping paint of %s: %s", annotation.id, exc)
            self._queue.insert(0, annotation.id)
            return False
        except Exception:
            log.exception("rendering annotation %s failed", annotation.id)
            self._failed.add(annotation.id)
            return True
        if handle is None:
            self._failed.add(annotation.id)
        else:
            self._painted.add(annotation.id)
        return True

    def _unpaint(self, annotation_id: str) -> None:
        if self.container is not None:
            try:
                with self.status.activity(EngineState.PAINTING):
                    self.painter.unpaint(annotation_id, self.container)
            except ReentrantCallError as exc:
                log.warning("cannot unpaint %s now: %s", annotation_id, exc)
                return
        self._painted.discard(annotation_id)

    # -- lifecycle ---------------------------------------------------------

    def stats(self) -> RendererStats:
        return RendererStats(
            total=len(self._sorted),
            painted=len(self._painted),
            queued=len(self._queue),
            failed=len(self._failed),
            last_render_ms=self._last_render if self._last_render != float("-inf") else 0.0,
        )

    def destroy(self) -> None:
        """Cancel scheduled work, unpaint everything and detach from the container."""
        if self._throttle_handle is not None:
            self.scheduler.cancel_frame(self._throttle_handle)
            self._throttle_handle = None
        if self._batch_handle is not None:
            self.scheduler.cancel_frame(self._batch_handle)
            self._batch_handle = None
        for annotation_id in sorted(self._painted):
            self._unpaint(annotation_id)
        self._painted.clear()
        self._queue.clear()
        self._failed.clear()
        self._sorted = []
        self._positions = []
        self._pending_viewport = None
        self._destroyed = True
        self.container = None
