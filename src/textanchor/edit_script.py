"""Reversible edit scripts for painting and unpainting.

The painter never mutates a tree itself. It plans an :class:`EditScript`,
an ordered list of three primitive operations over named slots, and hands
it to an :class:`EditHost` that knows how to touch the real tree:

    SplitText(source, offset, left, right)
        split the text node bound to ``source`` at ``offset`` and bind the
        two halves to ``left`` / ``right``
    WrapRange(first, last, marker)
        wrap the siblings ``first`` .. ``last`` (inclusive) in one marker
    UnwrapMarker(annotation_id)
        remove every marker tagged with the id, keeping its children

Slots start out bound to the script's ``inputs``. Planning is pure, so the
interesting logic is testable by inspecting ops without any tree.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from textanchor.tree import Node

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MarkerSpec:
    annotation_id: str
    style: str
    note_count: int = 0


@dataclass(frozen=True, slots=True)
class SplitText:
    source: str
    offset: int
    left: str
    right: str


@dataclass(frozen=True, slots=True)
class WrapRange:
    first: str
    last: str
    marker: MarkerSpec


@dataclass(frozen=True, slots=True)
class UnwrapMarker:
    annotation_id: str


type EditOp = SplitText | WrapRange | UnwrapMarker


@dataclass(frozen=True, slots=True, eq=False)
class EditScript:
    ops: tuple[EditOp, ...]
    inputs: tuple[tuple[str, Node], ...] = ()

    @property
    def wrap_count(self) -> int:
        return sum(1 for op in self.ops if isinstance(op, WrapRange))

    def annotation_ids(self) -> list[str]:
        seen: list[str] = []
        for op in self.ops:
            if isinstance(op, WrapRange) and op.marker.annotation_id not in seen:
                seen.append(op.marker.annotation_id)
        return seen

    def inverse(self) -> EditScript:
        """Script that removes every marker this one creates.

        Splits are not undone; the text content is restored exactly, the
        node fragmentation is not.
        """
        return EditScript(ops=tuple(UnwrapMarker(i) for i in self.annotation_ids()))


class EditHost(Protocol):
    def split_text(self, node: Node, offset: int) -> tuple[Node, Node]: ...

    def wrap_range(self, first: Node, last: Node, marker: MarkerSpec) -> Node: ...

    def unwrap_markers(self, container: Node, annotation_id: str | None = None) -> int: ...

    def unwrap_marker(self, marker: Node) -> None: ...


def apply_script(host: EditHost, script: EditScript, container: Node) -> list[Node]:
    """Apply *script* and return the markers it created.

    On failure every marker created so far is unwrapped again before the
    exception propagates, so a failed paint never leaves a partial marker
    set behind.
    """
    slots: dict[str, Node] = dict(script.inputs)
    created: list[Node] = []
    try:
        for op in script.ops:
            match op:
                case SplitText(source=src, offset=offset, left=left, right=right):
                    slots[left], slots[right] = host.split_text(slots[src], offset)
                case WrapRange(first=first, last=last, marker=spec):
                    created.append(host.wrap_range(slots[first], slots[last], spec))
                case UnwrapMarker(annotation_id=annotation_id):
                    host.unwrap_markers(container, annotation_id)
    except Exception:
        _rollback(host, created)
        raise
    return created


def _rollback(host: EditHost, markers: Sequence[Node]) -> None:
    for marker in reversed(markers):
        try:
            host.unwrap_marker(marker)
        except Exception:
            log.exception("rollback of a partially applied edit script failed")
