"""Public façade of the anchor engine.

Wires the codecs, resolver, relation detector, painter and renderer around
one :class:`SoupTree` host and exposes the operations a reader UI needs:

    create_annotation        selection -> painted Annotation (not persisted)
    restore_annotation       stored Annotation -> painted again
    update_annotation        repaint after a style / notes change
    remove_annotation        unpaint by id
    restore_all, clear_all   whole-chapter restore and cleanup
    classify_against_existing
    attach_renderer          viewport-driven painting for large sets

Every operation takes the container explicitly and holds it only for the
duration of the call (the renderer holds it until ``destroy``). Failures
are reported as ``None`` / ``False``, never raised; unexpected host errors
are logged.

Events
------
``marker_activated``   :class:`MarkerActivated` (annotation id + interaction)
``annotations_changed`` :class:`AnnotationsChanged` (kind + annotation id)

Subscribe with :meth:`AnnotationEngine.subscribe`; it returns an
unsubscribe callable. Listener errors are logged and swallowed.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from textanchor.anchor_types import (
    Annotation,
    AnnotationStyle,
    Note,
    RelationRecord,
    Span,
    new_id,
    utc_now_iso,
)
from textanchor.config import EngineConfig
from textanchor.offsets import span_interval, text_between
from textanchor.painter import PaintHandle, SpanPainter
from textanchor.path_codec import PathCodec
from textanchor.relations import RelationDetector
from textanchor.renderer import VirtualAnnotationRenderer, ViewportSource
from textanchor.resolver import AnchorResolver
from textanchor.scheduling import FrameScheduler, ManualFrameScheduler
from textanchor.soup_tree import SoupTree
from textanchor.span_codec import SpanCodec
from textanchor.status import EngineState, EngineStatus, ReentrantCallError
from textanchor.text_match import TextFallbackMatcher
from textanchor.tree import Node

log = logging.getLogger(__name__)

type EventKind = Literal["marker_activated", "annotations_changed"]


@dataclass(frozen=True, slots=True)
class MarkerActivated:
    annotation_id: str
    interaction: str  # "click" | "hover" | "keyboard" | host-defined


@dataclass(frozen=True, slots=True)
class AnnotationsChanged:
    kind: str  # "created" | "restored" | "updated" | "removed" | "cleared"
    annotation_id: str = ""


@dataclass(frozen=True, slots=True)
class RestoreReport:
    restored: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()


@dataclass(slots=True)
class _Listeners:
    marker_activated: list[Callable[[Any], None]] = field(default_factory=list)
    annotations_changed: list[Callable[[Any], None]] = field(default_factory=list)


class AnnotationEngine:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.tree = SoupTree(self.config)
        self.paths = PathCodec(self.tree)
        self.span_codec = SpanCodec(self.tree, self.paths)
        self.matcher = TextFallbackMatcher(
            self.tree, prefix_length=self.config.fallback_prefix_length,
        )
        self.resolver = AnchorResolver(self.span_codec, self.matcher)
        self.relations = RelationDetector(
            self.tree, self.resolver,
            candidate_limit=self.config.relation_candidate_limit,
        )
        self.painter = SpanPainter(self.tree)
        self.status = EngineStatus()
        self._listeners = _Listeners()

    # -- events ------------------------------------------------------------

    def subscribe(self, kind: EventKind, listener: Callable[[Any], None]) -> Callable[[], None]:
        bucket: list[Callable[[Any], None]] = getattr(self._listeners, kind)
        bucket.append(listener)

        def unsubscribe() -> None:
            if listener in bucket:
                bucket.remove(listener)

        return unsubscribe

    def _emit(self, kind: EventKind, event: object) -> None:
        for listener in list(getattr(self._listeners, kind)):
            try:
                listener(event)
            except Exception:
                log.exception("%s listener failed", kind)

    def activate_marker(self, annotation_id: str, interaction: str = "click") -> None:
        self._emit("marker_activated", MarkerActivated(annotation_id, interaction))

    def handle_interaction(self, node: Node, interaction: str, container: Node) -> str | None:
        """Map an interaction on any node to the annotation it falls in.

        Walks up from *node* to *container*; the innermost marker wins.
        Emits ``marker_activated`` and returns the id, or ``None`` when the
        node is not inside a marker.
        """
        current: Node | None = node
        while current is not None and current is not container:
            annotation_id = self.tree.marker_id(current)
            if annotation_id is not None:
                self.activate_marker(annotation_id, interaction)
                return annotation_id
            current = self.tree.parent(current)
        return None

    # -- internals ---------------------------------------------------------

    def _resolve(self, annotation: Annotation, container: Node) -> Span | None:
        with self.status.activity(EngineState.RESOLVING):
            return self.resolver.resolve_annotation(annotation, container)

    def _paint(self, span: Span, annotation: Annotation, container: Node) -> PaintHandle | None:
        with self.status.activity(EngineState.PAINTING):
            return self.painter.paint(
                span, container, annotation.id, annotation.style.color,
                note_count=len(annotation.notes),
            )

    def _unpaint(self, annotation_id: str, container: Node) -> int:
        with self.status.activity(EngineState.PAINTING):
            return self.painter.unpaint(annotation_id, container)

    # -- public contract ---------------------------------------------------

    def create_annotation(
        self,
        selection: Span,
        container: Node,
        style: AnnotationStyle | None = None,
        *,
        scope: str = "",
        note: str | None = None,
    ) -> Annotation | None:
        """Serialize and paint *selection*. The result is not persisted."""
        try:
            position = self.span_codec.serialize(selection, container)
            if position is None:
                log.debug("selection is not inside the container; nothing to anchor")
                return None
            interval = span_interval(self.tree, container, selection)
            if interval is None or interval[1] <= interval[0]:
                return None
            now = utc_now_iso()
            annotation = Annotation(
                id=new_id(),
                position=position,
                text=text_between(self.tree, container, *interval),
                style=style or AnnotationStyle(),
                notes=(Note.create(note),) if note else (),
                scope=scope,
                created_at=now,
                updated_at=now,
            )
            if self._paint(selection, annotation, container) is None:
                return None
        except ReentrantCallError as exc:
            log.warning("create_annotation refused: %s", exc)
            return None
        except Exception:
            log.exception("create_annotation failed")
            return None
        self._emit("annotations_changed", AnnotationsChanged("created", annotation.id))
        return annotation

    def restore_annotation(self, annotation: Annotation, container: Node) -> bool:
        """Resolve and paint a stored annotation; ``True`` when painted."""
        try:
            span = self._resolve(annotation, container)
            if span is None:
                log.debug("annotation %s could not be resolved", annotation.id)
                return False
            handle = self._paint(span, annotation, container)
        except ReentrantCallError as exc:
            log.warning("restore_annotation refused: %s", exc)
            return False
        except Exception:
            log.exception("restore_annotation %s failed", annotation.id)
            return False
        if handle is None:
            return False
        self._emit("annotations_changed", AnnotationsChanged("restored", annotation.id))
        return True

    def update_annotation(self, annotation: Annotation, container: Node) -> bool:
        """Repaint *annotation* after its style or notes changed."""
        try:
            self._unpaint(annotation.id, container)
            span = self._resolve(annotation, container)
            handle = self._paint(span, annotation, container) if span is not None else None
        except ReentrantCallError as exc:
            log.warning("update_annotation refused: %s", exc)
            return False
        except Exception:
            log.exception("update_annotation %s failed", annotation.id)
            return False
        if handle is None:
            return False
        self._emit("annotations_changed", AnnotationsChanged("updated", annotation.id))
        return True

    def remove_annotation(self, annotation_id: str, container: Node) -> bool:
        try:
            removed = self._unpaint(annotation_id, container)
        except ReentrantCallError as exc:
            log.warning("remove_annotation refused: %s", exc)
            return False
        if removed == 0:
            return False
        self._emit("annotations_changed", AnnotationsChanged("removed", annotation_id))
        return True

    def restore_all(
        self,
        annotations: list[Annotation],
        container: Node,
        *,
        scope: str | None = None,
    ) -> RestoreReport:
        """Restore every annotation (optionally only those of *scope*)."""
        restored: list[str] = []
        failed: list[str] = []
        skipped: list[str] = []
        for annotation in annotations:
            if scope is not None and annotation.scope != scope:
                skipped.append(annotation.id)
            elif self.restore_annotation(annotation, container):
                restored.append(annotation.id)
            else:
                failed.append(annotation.id)
        log.info("restored %d annotations, %d failed", len(restored), len(failed))
        return RestoreReport(tuple(restored), tuple(failed), tuple(skipped))

    def clear_all(self, container: Node) -> int:
        """Unwrap every marker in *container*."""
        try:
            with self.status.activity(EngineState.PAINTING):
                count = self.painter.unpaint_all(container)
        except ReentrantCallError as exc:
            log.warning("clear_all refused: %s", exc)
            return 0
        if count:
            self._emit("annotations_changed", AnnotationsChanged("cleared"))
        return count

    def classify_against_existing(
        self,
        annotation: Annotation,
        existing: list[Annotation],
        container: Node,
    ) -> list[RelationRecord]:
        try:
            with self.status.activity(EngineState.RESOLVING):
                return self.relations.classify_against(annotation, existing, container)
        except ReentrantCallError as exc:
            log.warning("classify_against_existing refused: %s", exc)
            return []

    def attach_renderer(
        self,
        container: Node,
        viewport_source: ViewportSource,
        *,
        scheduler: FrameScheduler | None = None,
        annotations: list[Annotation] | None = None,
    ) -> VirtualAnnotationRenderer:
        renderer = VirtualAnnotationRenderer(
            container,
            resolver=self.resolver,
            painter=self.painter,
            scheduler=scheduler or ManualFrameScheduler(frame_ms=self.config.frame_interval_ms),
            status=self.status,
            config=self.config,
            viewport_source=viewport_source,
        )
        if annotations:
            renderer.set_annotations(annotations)
        return renderer
