"""Core types shared by every layer of the anchor engine.

Two families live here:

- *Live* types (:class:`Boundary`, :class:`Span`) hold references into a
  host tree. They are only meaningful while that tree is alive and compare
  by identity, never by value.
- *Records* (:class:`Position`, :class:`Note`, :class:`Annotation`, ...)
  are plain, frozen and serializable. The engine produces and consumes
  them; persisting them is the caller's business.

Type hierarchy:
  Ok[T] / Err[E]   Result ADT for operations that report a typed reason
  Boundary, Span   Live tree coordinates
  PathPoint        Serialized endpoint (structural path + offset)
  Position         Serialized span
  Note             Free-text note attached to an annotation
  Relation         Overlap classification between two annotations
  RelationRecord   One classified relation, as stored on an annotation
  AnnotationStyle  Visual style token
  Annotation       User-created anchor record
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from textanchor.io_utils import dumps_jsonl, loads_jsonl
from textanchor.path_codec import NodePath, format_path, parse_path
from textanchor.tree import Node


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format."""
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid4())


# ---------------------------------------------------------------------------
# Result ADT
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Ok[T]:
    """Success case of Result[T, E].

    Usage::

        match resolver.resolve_detailed(position, container, text):
            case Ok(value=resolved): paint(resolved.span)
            case Err(error=e): log.debug(e.reason)
    """
    value: T


@dataclass(frozen=True, slots=True)
class Err[E]:
    """Failure case of Result[T, E]. Keeps the reason a plain None would erase."""
    error: E


type Result[T, E] = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Live coordinates
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, eq=False)
class Boundary:
    """A point in a live tree.

    ``offset`` is a character offset for text nodes and a child index for
    element nodes.
    """
    node: Node
    offset: int


@dataclass(frozen=True, slots=True, eq=False)
class Span:
    """A live, resolved range between two boundaries."""
    start: Boundary
    end: Boundary

    @property
    def collapsed(self) -> bool:
        return self.start.node is self.end.node and self.start.offset == self.end.offset


# ---------------------------------------------------------------------------
# Serialized positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PathPoint:
    """Serialized endpoint. Out-of-range offsets are repaired on restore."""
    path: NodePath
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {"path": format_path(self.path), "offset": self.offset}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PathPoint:
        path = parse_path(str(raw.get("path", "")))
        if path is None:
            raise ValueError(f"malformed node path: {raw.get('path')!r}")
        return cls(path=path, offset=int(raw.get("offset", 0)))


@dataclass(frozen=True, slots=True)
class Position:
    """Serializable encoding of a span's endpoints.

    ``text_offset`` is the flattened character offset of the start endpoint
    at capture time. It is advisory (used for coarse ordering), never used
    to resolve the span.
    """
    start: PathPoint
    end: PathPoint
    text_offset: int = 0
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "text_offset": self.text_offset,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Position:
        return cls(
            start=PathPoint.from_dict(raw["start"]),
            end=PathPoint.from_dict(raw["end"]),
            text_offset=int(raw.get("text_offset", 0)),
            created_at=str(raw.get("created_at", "")),
        )


# ---------------------------------------------------------------------------
# Annotation records
# ---------------------------------------------------------------------------


class Relation(StrEnum):
    CONTAINS = "contains"
    CONTAINED = "contained"
    INTERSECT = "intersect"
    INDEPENDENT = "independent"


@dataclass(frozen=True, slots=True)
class RelationRecord:
    type: Relation
    other_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "other_id": self.other_id}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RelationRecord:
        return cls(type=Relation(raw["type"]), other_id=str(raw["other_id"]))


@dataclass(frozen=True, slots=True)
class Note:
    id: str
    content: str
    created_at: str
    updated_at: str
    tags: tuple[str, ...] = ()

    @classmethod
    def create(cls, content: str, tags: tuple[str, ...] = ()) -> Note:
        now = utc_now_iso()
        return cls(id=new_id(), content=content, created_at=now, updated_at=now, tags=tags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Note:
        return cls(
            id=str(raw["id"]),
            content=str(raw.get("content", "")),
            created_at=str(raw.get("created_at", "")),
            updated_at=str(raw.get("updated_at", "")),
            tags=tuple(str(t) for t in raw.get("tags", ())),
        )


@dataclass(frozen=True, slots=True)
class AnnotationStyle:
    """Visual style. ``color`` is a token the host maps to real CSS."""
    color: str = "yellow"

    def __post_init__(self) -> None:
        if not self.color or any(c.isspace() for c in self.color):
            raise ValueError(f"style color token must be a single word, got {self.color!r}")


@dataclass(frozen=True, slots=True)
class Annotation:
    """A user-created anchor.

    ``text`` is the snapshot of the anchored text at creation time and is the
    ground truth for the text fallback; the ``with_*`` helpers never touch
    it. ``position`` may be replaced (``with_position``) after a repair.
    """
    id: str
    position: Position
    text: str
    style: AnnotationStyle = field(default_factory=AnnotationStyle)
    notes: tuple[Note, ...] = ()
    relations: tuple[RelationRecord, ...] = ()
    scope: str = ""
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Annotation.id must be non-empty")

    def with_note(self, note: Note) -> Annotation:
        return replace(self, notes=(*self.notes, note), updated_at=utc_now_iso())

    def with_style(self, style: AnnotationStyle) -> Annotation:
        return replace(self, style=style, updated_at=utc_now_iso())

    def with_relations(self, relations: tuple[RelationRecord, ...]) -> Annotation:
        return replace(self, relations=relations, updated_at=utc_now_iso())

    def with_position(self, position: Position) -> Annotation:
        return replace(self, position=position, updated_at=utc_now_iso())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "position": self.position.to_dict(),
            "text": self.text,
            "style": {"color": self.style.color},
            "notes": [n.to_dict() for n in self.notes],
            "relations": [r.to_dict() for r in self.relations],
            "scope": self.scope,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Annotation:
        style = raw.get("style") or {}
        return cls(
            id=str(raw["id"]),
            position=Position.from_dict(raw["position"]),
            text=str(raw.get("text", "")),
            style=AnnotationStyle(color=str(style.get("color", "yellow"))),
            notes=tuple(Note.from_dict(n) for n in raw.get("notes", ())),
            relations=tuple(RelationRecord.from_dict(r) for r in raw.get("relations", ())),
            scope=str(raw.get("scope", "")),
            created_at=str(raw.get("created_at", "")),
            updated_at=str(raw.get("updated_at", "")),
        )


def dumps_annotations(annotations: list[Annotation]) -> bytes:
    """Encode annotations as JSON Lines bytes."""
    return dumps_jsonl([a.to_dict() for a in annotations])


def loads_annotations(raw: bytes) -> list[Annotation]:
    """Decode JSON Lines bytes into annotations. Malformed records raise."""
    return [Annotation.from_dict(record) for record in loads_jsonl(raw)]


# ---------------------------------------------------------------------------
# Resolution outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, eq=False)
class ResolvedSpan:
    span: Span
    method: str  # "path" | "text"


@dataclass(frozen=True, slots=True)
class ResolutionError:
    """Typed failure for span resolution."""
    reason: str  # "path_not_found" | "text_not_found"
    detail: str = ""
