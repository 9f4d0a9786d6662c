"""Flattened character offsets over a container.

A span's endpoints are tree coordinates; relation detection, the text
fallback and the painter all need the same span as a ``[start, end)``
interval over the container's flattened text. These helpers convert in
both directions. Every walk is O(n) in the size of the container.
"""
from __future__ import annotations

from typing import Literal

from textanchor.anchor_types import Boundary, Span
from textanchor.tree import Node, TreeQuery, ancestors_until, pre_order_text_nodes


def subtree_text_length(tree: TreeQuery, node: Node) -> int:
    if tree.is_text(node):
        return len(tree.text_of(node))
    return sum(len(tree.text_of(t)) for t in pre_order_text_nodes(tree, node))


def _offset_before(tree: TreeQuery, container: Node, node: Node) -> int | None:
    """Characters of flattened text that precede *node* inside *container*."""
    chain = ancestors_until(tree, node, container)
    if chain is None:
        return None
    total = 0
    for current in chain:
        parent = tree.parent(current)
        if parent is None:
            return None
        for sibling in tree.children(parent):
            if sibling is current:
                break
            total += subtree_text_length(tree, sibling)
    return total


def flat_offset(tree: TreeQuery, container: Node, boundary: Boundary) -> int | None:
    """Flattened offset of *boundary*, or ``None`` if it is outside *container*.

    Text boundaries count characters; element boundaries count the text of
    the element's first ``offset`` children.
    """
    before = _offset_before(tree, container, boundary.node)
    if before is None:
        return None
    if tree.is_text(boundary.node):
        length = len(tree.text_of(boundary.node))
        return before + max(0, min(boundary.offset, length))
    kids = tree.children(boundary.node)
    idx = max(0, min(boundary.offset, len(kids)))
    return before + sum(subtree_text_length(tree, k) for k in kids[:idx])


def span_interval(tree: TreeQuery, container: Node, span: Span) -> tuple[int, int] | None:
    """``[start, end)`` interval of *span*; a reversed span is collapsed."""
    start = flat_offset(tree, container, span.start)
    end = flat_offset(tree, container, span.end)
    if start is None or end is None:
        return None
    return start, max(start, end)


def boundary_at(
    tree: TreeQuery,
    container: Node,
    offset: int,
    prefer: Literal["start", "end"] = "start",
) -> Boundary | None:
    """Text boundary at flattened *offset*.

    Zero-length text nodes are never returned. At a seam between two text
    nodes, ``prefer="start"`` yields the beginning of the later node and
    ``prefer="end"`` the end of the earlier one, so a span built from a
    start/end pair never straddles a node it does not cover.
    """
    nodes = [
        (n, len(tree.text_of(n)))
        for n in pre_order_text_nodes(tree, container)
    ]
    nodes = [(n, ln) for n, ln in nodes if ln > 0]
    if not nodes:
        return None
    total = sum(ln for _, ln in nodes)
    offset = max(0, min(offset, total))
    acc = 0
    for n, ln in nodes:
        if prefer == "start" and offset < acc + ln:
            return Boundary(n, offset - acc)
        if prefer == "end" and offset <= acc + ln and (offset > acc or acc == 0):
            return Boundary(n, offset - acc)
        acc += ln
    last, last_len = nodes[-1]
    return Boundary(last, last_len)


def normalize_boundary(
    tree: TreeQuery,
    container: Node,
    boundary: Boundary,
    prefer: Literal["start", "end"],
) -> Boundary | None:
    """Re-express *boundary* as a boundary inside a non-empty text node."""
    if tree.is_text(boundary.node) and tree.text_of(boundary.node):
        length = len(tree.text_of(boundary.node))
        if 0 < boundary.offset < length:
            return Boundary(boundary.node, boundary.offset)
    offset = flat_offset(tree, container, boundary)
    if offset is None:
        return None
    return boundary_at(tree, container, offset, prefer)


def text_between(tree: TreeQuery, container: Node, start: int, end: int) -> str:
    """Flattened text in ``[start, end)``."""
    parts: list[str] = []
    acc = 0
    for node in pre_order_text_nodes(tree, container):
        text = tree.text_of(node)
        lo, hi = acc, acc + len(text)
        if hi > start and lo < end:
            parts.append(text[max(start, lo) - lo:min(end, hi) - lo])
        acc = hi
        if acc >= end:
            break
    return "".join(parts)


def span_text(tree: TreeQuery, container: Node, span: Span) -> str | None:
    interval = span_interval(tree, container, span)
    if interval is None:
        return None
    return text_between(tree, container, *interval)
