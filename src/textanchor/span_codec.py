"""Serialize live spans to :class:`Position` records and restore them.

Both endpoints go through :class:`PathCodec`. Offsets are stored in the
logical coordinate space of the endpoint's text run, so a position remains
valid while markers come and go around it.

Restoring is forgiving: once both paths decode, offset problems are
repaired rather than reported, because an approximate highlight beats a
lost one. Repair order for a text endpoint whose run is empty or whose
offset overshoots the run:

1. the following sibling text runs of the same parent (nearest first),
   carrying the overshoot as the new offset;
2. the preceding sibling text runs (nearest first), offset clamped;
3. the first non-empty text node inside the parent element (pre-order);
4. the original run, offset clamped.
"""
from __future__ import annotations

import logging
from typing import Literal

from textanchor.anchor_types import Boundary, PathPoint, Position, Span
from textanchor.offsets import flat_offset, normalize_boundary
from textanchor.path_codec import PathCodec
from textanchor.tree import (
    Node,
    TextRun,
    TreeQuery,
    children_of_kind,
    pre_order_text_nodes,
    text_run_for,
)

log = logging.getLogger(__name__)


class SpanCodec:
    def __init__(self, tree: TreeQuery, path_codec: PathCodec | None = None) -> None:
        self.tree = tree
        self.paths = path_codec or PathCodec(tree)

    # -- serialize ---------------------------------------------------------

    def serialize(self, span: Span, container: Node) -> Position | None:
        """Encode *span*; ``None`` if either endpoint cannot be anchored."""
        start = normalize_boundary(self.tree, container, span.start, "start")
        end = normalize_boundary(self.tree, container, span.end, "end")
        if start is None or end is None:
            return None
        start_point = self._encode_point(start, container)
        end_point = self._encode_point(end, container)
        if start_point is None or end_point is None:
            return None
        text_offset = flat_offset(self.tree, container, start) or 0
        return Position(start=start_point, end=end_point, text_offset=text_offset)

    def _encode_point(self, boundary: Boundary, container: Node) -> PathPoint | None:
        path = self.paths.encode(boundary.node, container)
        if path is None:
            return None
        if not self.tree.is_text(boundary.node):
            return PathPoint(path=path, offset=boundary.offset)
        located = text_run_for(self.tree, boundary.node)
        if located is None:
            return None
        _parent, run, _idx = located
        base = run.base_of(boundary.node) or 0
        return PathPoint(path=path, offset=base + boundary.offset)

    # -- deserialize -------------------------------------------------------

    def deserialize(self, position: Position, container: Node) -> Span | None:
        """Restore *position*; ``None`` only on a structural lookup miss."""
        start = self._decode_point(position.start, container, "start")
        if start is None:
            return None
        end = self._decode_point(position.end, container, "end")
        if end is None:
            return None
        a = flat_offset(self.tree, container, start)
        b = flat_offset(self.tree, container, end)
        if a is not None and b is not None and b < a:
            log.debug("restored span is reversed (%d > %d); collapsing", a, b)
            end = start
        return Span(start=start, end=end)

    def _decode_point(
        self,
        point: PathPoint,
        container: Node,
        side: Literal["start", "end"],
    ) -> Boundary | None:
        target = self.paths.decode(point.path, container)
        if target is None:
            return None
        offset = max(0, point.offset)
        if isinstance(target, TextRun):
            return self._repair_text(target, offset, side)
        kids = self.tree.children(target)
        boundary = Boundary(target, min(offset, len(kids)))
        return normalize_boundary(self.tree, container, boundary, side) or boundary

    def _repair_text(self, run: TextRun, offset: int, side: Literal["start", "end"]) -> Boundary:
        prefer_end = side == "end"
        if run.length > 0 and offset <= run.length:
            node, off = run.locate(offset, prefer_end=prefer_end)
            return Boundary(node, off)

        located = text_run_for(self.tree, run.nodes[0])
        if located is not None:
            parent, _run, idx = located
            runs = children_of_kind(self.tree, parent, "text")
            overshoot = max(0, offset - run.length)
            for sibling in runs[idx + 1:]:
                if isinstance(sibling, TextRun) and sibling.length > 0:
                    node, off = sibling.locate(min(overshoot, sibling.length), prefer_end=prefer_end)
                    log.debug("repaired offset %d into following text run", offset)
                    return Boundary(node, off)
            for sibling in reversed(runs[:idx]):
                if isinstance(sibling, TextRun) and sibling.length > 0:
                    node, off = sibling.locate(min(offset, sibling.length), prefer_end=prefer_end)
                    log.debug("repaired offset %d into preceding text run", offset)
                    return Boundary(node, off)
            for text_node in pre_order_text_nodes(self.tree, parent):
                length = len(self.tree.text_of(text_node))
                if length > 0:
                    log.debug("repaired offset %d into first text of parent", offset)
                    return Boundary(text_node, min(offset, length))

        node, off = run.locate(min(offset, run.length), prefer_end=prefer_end)
        return Boundary(node, off)
