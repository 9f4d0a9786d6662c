"""Single entry point for turning a stored :class:`Position` into a live span.

Fallback chain:
    1. ``SpanCodec.deserialize`` (structural path + repaired offsets);
    2. ``TextFallbackMatcher.find_by_text`` with the annotation's snapshot,
       only when tier 1 could not decode a path.

Resolution is a pure query; it never mutates the tree.
"""
from __future__ import annotations

from textanchor.anchor_types import (
    Annotation,
    Err,
    Ok,
    Position,
    ResolutionError,
    ResolvedSpan,
    Result,
    Span,
)
from textanchor.path_codec import format_path
from textanchor.span_codec import SpanCodec
from textanchor.text_match import TextFallbackMatcher
from textanchor.tree import Node


class AnchorResolver:
    def __init__(self, span_codec: SpanCodec, matcher: TextFallbackMatcher) -> None:
        self.span_codec = span_codec
        self.matcher = matcher

    def resolve_detailed(
        self,
        position: Position,
        container: Node,
        snapshot_text: str | None = None,
    ) -> Result[ResolvedSpan, ResolutionError]:
        span = self.span_codec.deserialize(position, container)
        if span is not None:
            return Ok(ResolvedSpan(span=span, method="path"))
        attempted = f"{format_path(position.start.path)} .. {format_path(position.end.path)}"
        if not snapshot_text:
            return Err(ResolutionError("path_not_found", attempted))
        span = self.matcher.find_by_text(snapshot_text, container)
        if span is not None:
            return Ok(ResolvedSpan(span=span, method="text"))
        return Err(ResolutionError("text_not_found", snapshot_text[:40]))

    def resolve(
        self,
        position: Position,
        container: Node,
        snapshot_text: str | None = None,
    ) -> Span | None:
        match self.resolve_detailed(position, container, snapshot_text):
            case Ok(value=resolved):
                return resolved.span
            case _:
                return None

    def resolve_annotation(self, annotation: Annotation, container: Node) -> Span | None:
        return self.resolve(annotation.position, container, annotation.text)
