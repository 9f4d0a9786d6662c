"""Engine configuration.

All tunables of the anchor engine live in one frozen record so that a host
can load them from JSON once and thread the same instance through every
component. Defaults reproduce the behaviour of the reader the engine was
built for (28px lines, ~50 characters per line, 8ms paint budget per frame).
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from textanchor.io_utils import load_json

# Paragraph-like containers. A span whose endpoints sit under different
# members of this set is painted segment by segment.
DEFAULT_BLOCK_TAGS: frozenset[str] = frozenset({
    "p", "div", "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "ul", "ol", "blockquote", "pre", "section", "article",
    "table", "tr", "td", "th", "figure", "figcaption",
})


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables shared by the codecs, painter and virtual renderer."""

    # Marker element
    marker_tag: str = "span"
    marker_class: str = "anchor-highlight"
    id_attribute: str = "data-annotation-id"
    style_attribute: str = "data-style"
    note_count_attribute: str = "data-note-count"
    block_tags: frozenset[str] = DEFAULT_BLOCK_TAGS
    merge_text_on_unpaint: bool = True

    # Text fallback
    fallback_prefix_length: int = 20

    # Relation detection
    relation_candidate_limit: int = 10

    # Virtual renderer
    buffer_factor: float = 5.0          # viewport heights above and below
    throttle_ms: float = 16.0           # minimum interval between renders
    frame_budget_ms: float = 8.0        # paint time allowed per frame
    batch_size: int = 50                # hard cap on paints per frame
    line_height_px: float = 28.0
    chars_per_line: int = 50
    frame_interval_ms: float = 16.0     # asyncio scheduler frame period

    def __post_init__(self) -> None:
        if not self.marker_tag:
            raise ValueError("marker_tag must be non-empty")
        if self.fallback_prefix_length <= 0:
            raise ValueError(
                f"fallback_prefix_length must be > 0, got {self.fallback_prefix_length}"
            )
        if self.relation_candidate_limit <= 0:
            raise ValueError(
                f"relation_candidate_limit must be > 0, got {self.relation_candidate_limit}"
            )
        if self.buffer_factor < 0:
            raise ValueError(f"buffer_factor must be >= 0, got {self.buffer_factor}")
        if self.frame_budget_ms <= 0 or self.throttle_ms < 0:
            raise ValueError("frame_budget_ms must be > 0 and throttle_ms >= 0")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {self.batch_size}")
        if self.line_height_px <= 0 or self.chars_per_line <= 0:
            raise ValueError("line_height_px and chars_per_line must be > 0")
        if self.frame_interval_ms <= 0:
            raise ValueError(
                f"frame_interval_ms must be > 0, got {self.frame_interval_ms}"
            )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EngineConfig:
        """Build a config from a plain mapping. Unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {k: v for k, v in raw.items() if k in known}
        if "block_tags" in kwargs:
            kwargs["block_tags"] = frozenset(str(t).lower() for t in kwargs["block_tags"])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Path) -> EngineConfig:
        raw = load_json(path)
        if not isinstance(raw, dict):
            raise ValueError(f"config root must be an object: {path}")
        return cls.from_dict(raw)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        out["block_tags"] = sorted(self.block_tags)
        return out
