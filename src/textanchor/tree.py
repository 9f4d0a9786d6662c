"""Host-agnostic tree queries.

The engine never talks to a concrete tree API directly. Everything it needs
is expressed through the six primitives of :class:`TreeQuery` (see
:mod:`textanchor.soup_tree` for the BeautifulSoup host) plus the derived
queries in this module.

Logical view
------------
Paths and offsets are computed over a *logical* view of the tree in which
marker elements are transparent and consecutive text nodes coalesce into a
single :class:`TextRun`. Painting an annotation splits text nodes and wraps
pieces in markers; in the logical view nothing has moved, so positions
captured before and after painting stay interchangeable.
"""
from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

type Node = Any
type NodeKind = Literal["text", "element"]


class TreeQuery(Protocol):
    """Minimal read capability the engine needs from a host tree."""

    def parent(self, node: Node) -> Node | None: ...

    def children(self, node: Node) -> Sequence[Node]: ...

    def is_text(self, node: Node) -> bool: ...

    def tag_name(self, node: Node) -> str: ...

    def text_of(self, node: Node) -> str: ...

    def is_marker(self, node: Node) -> bool: ...


@dataclass(frozen=True, slots=True, eq=False)
class TextRun:
    """Maximal run of adjacent physical text nodes in the logical view."""

    nodes: tuple[Node, ...]
    lengths: tuple[int, ...]

    @property
    def length(self) -> int:
        return sum(self.lengths)

    def base_of(self, node: Node) -> int | None:
        """Logical offset at which *node* starts inside this run."""
        base = 0
        for n, ln in zip(self.nodes, self.lengths):
            if n is node:
                return base
            base += ln
        return None

    def locate(self, offset: int, *, prefer_end: bool) -> tuple[Node, int]:
        """Map a logical offset to a physical ``(text node, offset)`` pair.

        At a seam between two nodes, ``prefer_end`` picks the end of the
        earlier node; otherwise the start of the later one. Empty nodes are
        skipped unless the whole run is empty.
        """
        offset = max(0, min(offset, self.length))
        candidates = [
            (n, ln) for n, ln in zip(self.nodes, self.lengths) if ln > 0
        ] or [(self.nodes[0], self.lengths[0])]
        acc = 0
        for n, ln in candidates:
            if prefer_end and offset <= acc + ln:
                return n, offset - acc
            if not prefer_end and offset < acc + ln:
                return n, offset - acc
            acc += ln
        last, last_len = candidates[-1]
        return last, last_len


type LogicalChild = Node | TextRun


# ---------------------------------------------------------------------------
# Derived queries
# ---------------------------------------------------------------------------


def logical_children(tree: TreeQuery, element: Node) -> list[LogicalChild]:
    """Children of *element* with markers flattened and text runs merged."""
    out: list[LogicalChild] = []
    run_nodes: list[Node] = []

    def flush() -> None:
        if run_nodes:
            out.append(TextRun(
                nodes=tuple(run_nodes),
                lengths=tuple(len(tree.text_of(n)) for n in run_nodes),
            ))
            run_nodes.clear()

    def visit(nodes: Sequence[Node]) -> None:
        for child in nodes:
            if tree.is_text(child):
                run_nodes.append(child)
            elif tree.is_marker(child):
                visit(tree.children(child))
            elif tree.tag_name(child):
                flush()
                out.append(child)

    visit(tree.children(element))
    flush()
    return out


def children_of_kind(
    tree: TreeQuery,
    element: Node,
    kind: NodeKind,
    tag: str = "",
) -> list[LogicalChild]:
    """Logical children of one kind; elements are further filtered by tag."""
    kids = logical_children(tree, element)
    if kind == "text":
        return [c for c in kids if isinstance(c, TextRun)]
    return [
        c for c in kids
        if not isinstance(c, TextRun) and tree.tag_name(c) == tag
    ]


def logical_parent(tree: TreeQuery, node: Node) -> Node | None:
    """Nearest ancestor that is not a marker."""
    current = tree.parent(node)
    while current is not None and tree.is_marker(current):
        current = tree.parent(current)
    return current


def ancestors_until(tree: TreeQuery, node: Node, stop: Node) -> list[Node] | None:
    """Chain ``[node, parent, ...]`` up to but excluding *stop*.

    Returns ``None`` when *stop* is not an ancestor of *node*. ``[]`` when
    *node* is *stop* itself.
    """
    chain: list[Node] = []
    current: Node | None = node
    while current is not None:
        if current is stop:
            return chain
        chain.append(current)
        current = tree.parent(current)
    return None


def pre_order_text_nodes(tree: TreeQuery, root: Node) -> Iterator[Node]:
    """Physical text nodes under *root* in document order."""
    stack: list[Node] = list(reversed(tree.children(root)))
    while stack:
        node = stack.pop()
        if tree.is_text(node):
            yield node
        elif tree.tag_name(node):
            stack.extend(reversed(tree.children(node)))


def text_run_for(tree: TreeQuery, node: Node) -> tuple[Node, TextRun, int] | None:
    """Locate the logical run holding physical text *node*.

    Returns ``(logical parent, run, run index among text runs)``.
    """
    parent = logical_parent(tree, node)
    if parent is None:
        return None
    runs = children_of_kind(tree, parent, "text")
    for idx, run in enumerate(runs):
        if run.base_of(node) is not None:
            return parent, run, idx  # type: ignore[return-value]
    return None


def flattened_text(tree: TreeQuery, container: Node) -> str:
    """Concatenated text content of *container*."""
    return "".join(tree.text_of(n) for n in pre_order_text_nodes(tree, container))
