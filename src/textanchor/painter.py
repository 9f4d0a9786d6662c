"""Paint resolved spans as marker elements, and remove them again.

Two plans:

- **Single run**: both endpoints sit under the same parent and no block
  element lies between them. At most two text splits, then one marker
  wraps the whole sibling run.
- **Segmented**: anything else (cross-block spans, spans whose endpoints
  sit in different inline elements). Every intersected text node is split
  at the span boundaries and only its covered piece is wrapped. Block
  elements are never merged, moved or removed; only their text children
  change. All markers carry the same annotation id.

Whitespace-only pieces are not wrapped in the segmented plan; they are the
inter-block formatting whitespace a marker would only pollute.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from textanchor.anchor_types import Boundary, Span
from textanchor.edit_script import (
    EditOp,
    EditScript,
    MarkerSpec,
    SplitText,
    WrapRange,
    apply_script,
)
from textanchor.offsets import boundary_at, span_interval
from textanchor.soup_tree import SoupTree
from textanchor.tree import Node, pre_order_text_nodes

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, eq=False)
class PaintHandle:
    annotation_id: str
    markers: tuple[Node, ...]
    script: EditScript | None
    cross_block: bool = False
    reused: bool = False


class SpanPainter:
    def __init__(self, tree: SoupTree) -> None:
        self.tree = tree

    # -- queries -----------------------------------------------------------

    def block_of(self, node: Node, container: Node) -> Node | None:
        """Nearest block-level ancestor of *node* below or at *container*."""
        current = self.tree.parent(node)
        while current is not None:
            if self.tree.is_block(current) or current is container:
                return current
            current = self.tree.parent(current)
        return None

    def is_cross_block(self, span: Span, container: Node) -> bool:
        if span.start.node is span.end.node:
            return False
        return self.block_of(span.start.node, container) is not self.block_of(span.end.node, container)

    def markers_for(self, annotation_id: str, container: Node) -> list[Node]:
        return self.tree.find_markers(container, annotation_id)

    # -- planning ----------------------------------------------------------

    def plan(
        self,
        span: Span,
        container: Node,
        annotation_id: str,
        style: str,
        *,
        note_count: int = 0,
    ) -> EditScript | None:
        """Edit script painting *span*, or ``None`` for a degenerate span."""
        interval = span_interval(self.tree, container, span)
        if interval is None or interval[1] <= interval[0]:
            return None
        start = boundary_at(self.tree, container, interval[0], "start")
        end = boundary_at(self.tree, container, interval[1], "end")
        if start is None or end is None:
            return None
        spec = MarkerSpec(annotation_id=annotation_id, style=style)
        if self._single_run(start, end):
            script = self._plan_single(start, end, spec)
        else:
            script = self._plan_segments(start, end, container, spec)
        if script.wrap_count == 0:
            return None
        if note_count > 0:
            script = _flag_last_marker(script, note_count)
        return script

    def _single_run(self, start: Boundary, end: Boundary) -> bool:
        if start.node is end.node:
            return True
        parent = self.tree.parent(start.node)
        if parent is None or self.tree.parent(end.node) is not parent:
            return False
        siblings = self.tree.children(parent)
        lo = next((i for i, c in enumerate(siblings) if c is start.node), -1)
        hi = next((i for i, c in enumerate(siblings) if c is end.node), -1)
        if lo < 0 or hi < lo:
            return False
        return not any(self._contains_block(c) for c in siblings[lo + 1:hi])

    def _contains_block(self, node: Node) -> bool:
        if self.tree.is_block(node):
            return True
        return any(self._contains_block(c) for c in self.tree.children(node))

    def _plan_single(self, start: Boundary, end: Boundary, spec: MarkerSpec) -> EditScript:
        if start.node is end.node:
            ops, piece = _cut("n0", len(self.tree.text_of(start.node)), start.offset, end.offset)
            return EditScript(
                ops=(*ops, WrapRange(piece, piece, spec)),
                inputs=(("n0", start.node),),
            )
        ops: list[EditOp] = []
        first, last = "start", "end"
        end_len = len(self.tree.text_of(end.node))
        if end.offset < end_len:
            ops.append(SplitText("end", end.offset, "end.l", "end.r"))
            last = "end.l"
        if start.offset > 0:
            ops.append(SplitText("start", start.offset, "start.l", "start.r"))
            first = "start.r"
        ops.append(WrapRange(first, last, spec))
        return EditScript(
            ops=tuple(ops),
            inputs=(("start", start.node), ("end", end.node)),
        )

    def _plan_segments(
        self,
        start: Boundary,
        end: Boundary,
        container: Node,
        spec: MarkerSpec,
    ) -> EditScript:
        ops: list[EditOp] = []
        inputs: list[tuple[str, Node]] = []
        inside = False
        for node in pre_order_text_nodes(self.tree, container):
            if node is start.node:
                inside = True
            if not inside:
                continue
            text = self.tree.text_of(node)
            lo = start.offset if node is start.node else 0
            hi = end.offset if node is end.node else len(text)
            if hi > lo and text[lo:hi].strip():
                slot = f"n{len(inputs)}"
                inputs.append((slot, node))
                cut_ops, piece = _cut(slot, len(text), lo, hi)
                ops.extend(cut_ops)
                ops.append(WrapRange(piece, piece, spec))
            if node is end.node:
                break
        return EditScript(ops=tuple(ops), inputs=tuple(inputs))

    # -- painting ----------------------------------------------------------

    def paint(
        self,
        span: Span,
        container: Node,
        annotation_id: str,
        style: str,
        *,
        note_count: int = 0,
    ) -> PaintHandle | None:
        """Paint *span*. Existing markers for the id are reused, not doubled."""
        existing = self.markers_for(annotation_id, container)
        if existing:
            log.debug("annotation %s already painted; skipping", annotation_id)
            return PaintHandle(annotation_id, tuple(existing), None, reused=True)
        script = self.plan(span, container, annotation_id, style, note_count=note_count)
        if script is None:
            return None
        cross_block = self.is_cross_block(span, container)
        try:
            markers = apply_script(self.tree, script, container)
        except Exception:
            log.exception("painting annotation %s failed; tree left unpainted", annotation_id)
            return None
        return PaintHandle(annotation_id, tuple(markers), script, cross_block=cross_block)

    def unpaint(self, annotation_id: str, container: Node) -> int:
        """Unwrap every marker of *annotation_id*; returns how many were removed."""
        try:
            return self.tree.unwrap_markers(container, annotation_id)
        except Exception:
            log.exception("unpainting annotation %s failed", annotation_id)
            return 0

    def unpaint_all(self, container: Node) -> int:
        try:
            return self.tree.unwrap_markers(container)
        except Exception:
            log.exception("clearing markers failed")
            return 0


def _cut(slot: str, length: int, lo: int, hi: int) -> tuple[list[EditOp], str]:
    """Split ops isolating ``[lo, hi)`` of the text in *slot*; returns the piece slot."""
    ops: list[EditOp] = []
    piece = slot
    if hi < length:
        ops.append(SplitText(piece, hi, f"{piece}.l", f"{piece}.r"))
        piece = f"{piece}.l"
    if lo > 0:
        ops.append(SplitText(piece, lo, f"{piece}.l", f"{piece}.r"))
        piece = f"{piece}.r"
    return ops, piece


def _flag_last_marker(script: EditScript, note_count: int) -> EditScript:
    ops = list(script.ops)
    for i in range(len(ops) - 1, -1, -1):
        op = ops[i]
        if isinstance(op, WrapRange):
            marker = MarkerSpec(op.marker.annotation_id, op.marker.style, note_count)
            ops[i] = WrapRange(op.first, op.last, marker)
            break
    return EditScript(ops=tuple(ops), inputs=script.inputs)
