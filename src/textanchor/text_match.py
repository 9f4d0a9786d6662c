"""Locate a span by its text when the structural path no longer resolves.

Pure text operations over the container's flattened text. Whitespace is
collapsed on both sides before matching, with a per-character inverse map
back into the raw flattened text so the match can be turned into exact
tree boundaries.

Matching tiers:
    1. exact substring of the normalized snapshot;
    2. the first ``prefix_length`` characters of the snapshot, extended
       for as long as snapshot and document keep agreeing (tolerates
       trailing drift such as changed punctuation).

When the text occurs more than once, the first occurrence wins.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from textanchor.anchor_types import Span
from textanchor.offsets import boundary_at
from textanchor.tree import Node, TreeQuery, flattened_text

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class NormalizedText:
    """Whitespace-collapsed text plus normalized -> raw offset map."""

    text: str
    raw_index: tuple[int, ...]

    def raw_span(self, start: int, end: int) -> tuple[int, int]:
        """Raw ``[start, end)`` covering normalized ``[start, end)``."""
        return self.raw_index[start], self.raw_index[end - 1] + 1


def normalize_whitespace(raw: str) -> NormalizedText:
    """Collapse every whitespace run to one space, keeping an inverse map."""
    chars: list[str] = []
    index: list[int] = []
    pos = 0
    for m in _WS_RE.finditer(raw):
        for i in range(pos, m.start()):
            chars.append(raw[i])
            index.append(i)
        chars.append(" ")
        index.append(m.start())
        pos = m.end()
    for i in range(pos, len(raw)):
        chars.append(raw[i])
        index.append(i)
    return NormalizedText(text="".join(chars), raw_index=tuple(index))


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _common_prefix_length(a: str, b: str) -> int:
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    return i


def find_text_interval(
    snapshot: str,
    document: str,
    *,
    prefix_length: int = 20,
) -> tuple[int, int] | None:
    """Raw ``[start, end)`` of *snapshot* inside *document*, or ``None``."""
    needle = collapse_whitespace(snapshot)
    if not needle:
        return None
    haystack = normalize_whitespace(document)

    pos = haystack.text.find(needle)
    length = len(needle)
    if pos < 0:
        prefix = needle[:prefix_length]
        if len(prefix) == len(needle):
            return None
        pos = haystack.text.find(prefix)
        if pos < 0:
            return None
        length = _common_prefix_length(haystack.text[pos:], needle)
    return haystack.raw_span(pos, pos + length)


class TextFallbackMatcher:
    """Find a live span whose text matches an annotation's snapshot."""

    def __init__(self, tree: TreeQuery, *, prefix_length: int = 20) -> None:
        self.tree = tree
        self.prefix_length = prefix_length

    def find_by_text(self, snapshot_text: str, container: Node) -> Span | None:
        document = flattened_text(self.tree, container)
        interval = find_text_interval(
            snapshot_text, document, prefix_length=self.prefix_length,
        )
        if interval is None:
            return None
        start = boundary_at(self.tree, container, interval[0], "start")
        end = boundary_at(self.tree, container, interval[1], "end")
        if start is None or end is None:
            return None
        return Span(start=start, end=end)
