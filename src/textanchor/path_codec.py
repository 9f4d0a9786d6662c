"""Structural paths from a container to a node.

A path is a tuple of :class:`PathStep`; each step picks either the n-th
logical text run of its parent or the n-th child element carrying a given
tag. Siblings are counted only among nodes of the same kind (and, for
elements, the same tag), so inserting a ``<img>`` between two ``<p>`` does
not invalidate paths into the second paragraph. Inserting another ``<p>``
does, and the text fallback then takes over.

String form is XPath-like with 1-based ordinals::

    /div[1]/p[2]/text()[1]

``"/"`` denotes the container itself.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from textanchor.tree import (
    LogicalChild,
    Node,
    TextRun,
    TreeQuery,
    children_of_kind,
    logical_parent,
    text_run_for,
)

_STEP_RE = re.compile(r"^(text\(\)|[A-Za-z_][\w:.\-]*)\[(\d+)\]$")


@dataclass(frozen=True, slots=True)
class PathStep:
    """One level of a :data:`NodePath`. ``index`` is 0-based."""

    kind: Literal["element", "text"]
    index: int
    tag: str = ""

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"PathStep.index must be >= 0, got {self.index}")
        if self.kind == "element" and not self.tag:
            raise ValueError("element steps require a tag name")
        if self.kind == "text" and self.tag:
            raise ValueError("text steps carry no tag name")


type NodePath = tuple[PathStep, ...]


def format_path(path: NodePath) -> str:
    parts = [
        f"text()[{s.index + 1}]" if s.kind == "text" else f"{s.tag}[{s.index + 1}]"
        for s in path
    ]
    return "/" + "/".join(parts)


def parse_path(raw: str) -> NodePath | None:
    """Parse the string form back into steps. ``None`` on malformed input."""
    raw = raw.strip()
    if not raw.startswith("/"):
        return None
    if raw == "/":
        return ()
    steps: list[PathStep] = []
    for part in raw[1:].split("/"):
        m = _STEP_RE.match(part)
        if m is None or int(m.group(2)) < 1:
            return None
        name, ordinal = m.group(1), int(m.group(2)) - 1
        if name == "text()":
            steps.append(PathStep("text", ordinal))
        else:
            steps.append(PathStep("element", ordinal, name))
    # A text run has no children; it can only terminate a path.
    if any(s.kind == "text" for s in steps[:-1]):
        return None
    return tuple(steps)


class PathCodec:
    """Encode nodes as :data:`NodePath` relative to a container, and back."""

    def __init__(self, tree: TreeQuery) -> None:
        self.tree = tree

    def encode(self, node: Node, container: Node) -> NodePath | None:
        """Path from *container* to *node*.

        ``None`` when *node* is not a descendant of *container* or is a
        marker element (markers are not addressable; their content is).
        """
        tree = self.tree
        if node is container:
            return ()
        if tree.is_marker(node):
            return None
        steps: list[PathStep] = []
        current: Node = node
        while current is not container:
            if tree.is_text(current):
                located = text_run_for(tree, current)
                if located is None:
                    return None
                parent, _run, idx = located
                steps.append(PathStep("text", idx))
            elif tree.tag_name(current):
                parent = logical_parent(tree, current)
                if parent is None:
                    return None
                tag = tree.tag_name(current)
                same = children_of_kind(tree, parent, "element", tag)
                idx = next((i for i, c in enumerate(same) if c is current), -1)
                if idx < 0:
                    return None
                steps.append(PathStep("element", idx, tag))
            else:
                return None
            current = parent
        steps.reverse()
        return tuple(steps)

    def decode(self, path: NodePath, container: Node) -> LogicalChild | None:
        """Walk *path* down from *container*.

        Text steps resolve to a :class:`TextRun` (the logical text node).
        Any unsatisfiable step yields ``None``; this never raises.
        """
        current: LogicalChild = container
        for step in path:
            if isinstance(current, TextRun):
                return None
            if step.kind == "text":
                candidates = children_of_kind(self.tree, current, "text")
            else:
                candidates = children_of_kind(self.tree, current, "element", step.tag)
            if step.index >= len(candidates):
                return None
            current = candidates[step.index]
        return current
