"""BeautifulSoup host adapter.

Implements :class:`~textanchor.tree.TreeQuery` and
:class:`~textanchor.edit_script.EditHost` over a bs4 parse tree:

- ``Tag`` is an element node;
- ``NavigableString`` is a text node, except comments, CDATA, doctypes,
  declarations and processing instructions (``PreformattedString``) and
  strings inside ``<script>``, ``<style>`` and ``<template>``.

bs4 compares strings by value and tags by structure, so every lookup here
goes by identity (``is`` / ``Tag.index``).
"""
from __future__ import annotations

from collections.abc import Sequence

from bs4 import BeautifulSoup, Tag
from bs4.element import NavigableString, PageElement, PreformattedString

from textanchor.config import EngineConfig
from textanchor.edit_script import MarkerSpec

_RAW_TEXT_PARENTS = frozenset({"script", "style", "template"})


def parse_html(html: str, parser: str = "html.parser") -> BeautifulSoup:
    return BeautifulSoup(html, parser)


def _classes(tag: Tag) -> list[str]:
    raw = tag.get("class")
    if raw is None:
        return []
    if isinstance(raw, str):
        return raw.split()
    return [str(c) for c in raw]


class SoupTree:
    """Tree queries and edits for BeautifulSoup trees."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    # -- TreeQuery ---------------------------------------------------------

    def parent(self, node: PageElement) -> Tag | None:
        return node.parent

    def children(self, node: PageElement) -> Sequence[PageElement]:
        if isinstance(node, Tag):
            return list(node.contents)
        return []

    def is_text(self, node: PageElement) -> bool:
        if not isinstance(node, NavigableString) or isinstance(node, PreformattedString):
            return False
        parent = node.parent
        return parent is None or parent.name not in _RAW_TEXT_PARENTS

    def tag_name(self, node: PageElement) -> str:
        if isinstance(node, Tag):
            return node.name or ""
        return ""

    def text_of(self, node: PageElement) -> str:
        if self.is_text(node):
            return str(node)
        return ""

    def is_marker(self, node: PageElement) -> bool:
        cfg = self.config
        return (
            isinstance(node, Tag)
            and node.name == cfg.marker_tag
            and cfg.marker_class in _classes(node)
            and node.has_attr(cfg.id_attribute)
        )

    def is_block(self, node: PageElement) -> bool:
        return isinstance(node, Tag) and (node.name or "").lower() in self.config.block_tags

    # -- markers -----------------------------------------------------------

    def marker_id(self, node: PageElement) -> str | None:
        if not self.is_marker(node):
            return None
        return str(node.get(self.config.id_attribute))  # type: ignore[union-attr]

    def find_markers(self, container: Tag, annotation_id: str | None = None) -> list[Tag]:
        cfg = self.config
        if annotation_id is None:
            attrs: dict[str, object] = {cfg.id_attribute: True}
        else:
            attrs = {cfg.id_attribute: annotation_id}
        return [
            t for t in container.find_all(cfg.marker_tag, attrs=attrs)
            if isinstance(t, Tag) and self.is_marker(t)
        ]

    def _new_marker(self, anchor: PageElement, spec: MarkerSpec) -> Tag:
        cfg = self.config
        attrs = {
            "class": cfg.marker_class,
            cfg.id_attribute: spec.annotation_id,
            cfg.style_attribute: spec.style,
        }
        if spec.note_count > 0:
            attrs[cfg.note_count_attribute] = str(spec.note_count)
        root: PageElement | None = anchor
        while root is not None and root.parent is not None:
            root = root.parent
        if isinstance(root, BeautifulSoup):
            return root.new_tag(cfg.marker_tag, attrs=attrs)
        return Tag(name=cfg.marker_tag, attrs=attrs)

    # -- EditHost ----------------------------------------------------------

    def split_text(self, node: NavigableString, offset: int) -> tuple[NavigableString, NavigableString]:
        text = str(node)
        if not 0 < offset < len(text):
            raise ValueError(f"split offset {offset} outside (0, {len(text)})")
        left = NavigableString(text[:offset])
        right = NavigableString(text[offset:])
        node.replace_with(left)
        left.insert_after(right)
        return left, right

    def wrap_range(self, first: PageElement, last: PageElement, marker: MarkerSpec) -> Tag:
        parent = first.parent
        if parent is None or last.parent is not parent:
            raise ValueError("wrap_range endpoints must share a parent")
        run: list[PageElement] = []
        node: PageElement | None = first
        while node is not None:
            run.append(node)
            if node is last:
                break
            node = node.next_sibling
        else:
            raise ValueError("wrap_range: last is not a following sibling of first")
        wrapper = self._new_marker(first, marker)
        parent.insert(parent.index(first), wrapper)
        for item in run:
            wrapper.append(item.extract())
        return wrapper

    def unwrap_marker(self, marker: Tag) -> None:
        parent = marker.parent
        marker.unwrap()
        if parent is not None and self.config.merge_text_on_unpaint:
            parent.smooth()

    def unwrap_markers(self, container: Tag, annotation_id: str | None = None) -> int:
        markers = self.find_markers(container, annotation_id)
        for marker in markers:
            self.unwrap_marker(marker)
        return len(markers)
